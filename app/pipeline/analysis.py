from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass

from app.ai.types import LanguageModelClient
from app.core.config import settings
from app.pipeline.errors import (
    AnalysisDegraded,
    AnalysisFailed,
    PipelineCancelled,
    RateLimited,
    ServiceUnavailable,
)
from app.pipeline.models import JobContext
from app.pipeline.prompts import build_feedback_prompt, build_markdown_prompt
from app.pipeline.resilience import CancellationToken, RetryPolicy, call_with_policy

logger = logging.getLogger(__name__)

_MARKDOWN_OPEN_FENCE_RE = re.compile(r"^```(?:markdown|md)?\s*", re.IGNORECASE)
_MARKDOWN_CLOSE_FENCE_RE = re.compile(r"\s*```\s*$")


def strip_markdown_fence(text: str) -> str:
    cleaned = (text or "").strip()
    cleaned = _MARKDOWN_OPEN_FENCE_RE.sub("", cleaned, count=1)
    return _MARKDOWN_CLOSE_FENCE_RE.sub("", cleaned, count=1)


@dataclass(frozen=True)
class AnalysisResult:
    feedback_text: str
    markdown_text: str | None = None
    degraded: AnalysisDegraded | None = None


class AnalysisCoordinator:
    """Runs the feedback and markdown completions side by side.

    Feedback is required; when it fails the markdown call is cancelled and
    ``AnalysisFailed`` is raised. Markdown is best-effort and only ever
    degrades the result.
    """

    def __init__(self, llm: LanguageModelClient, *, policy: RetryPolicy):
        self._llm = llm
        self._policy = policy

    async def _feedback(self, text: str, context: JobContext, token: CancellationToken) -> str:
        prompt = build_feedback_prompt(text, context)
        return await call_with_policy(
            lambda: self._llm.complete(
                prompt,
                temperature=settings.feedback_temperature,
                max_tokens=settings.feedback_max_tokens,
            ),
            policy=self._policy,
            token=token,
            label="feedback",
        )

    async def _markdown(self, text: str, token: CancellationToken) -> str:
        prompt = build_markdown_prompt(text)
        raw = await call_with_policy(
            lambda: self._llm.complete(
                prompt,
                temperature=settings.markdown_temperature,
                max_tokens=settings.markdown_max_tokens,
            ),
            policy=self._policy,
            token=token,
            label="markdown",
        )
        return strip_markdown_fence(raw)

    async def analyze(self, text: str, context: JobContext, token: CancellationToken) -> AnalysisResult:
        feedback_task = asyncio.ensure_future(self._feedback(text, context, token))
        markdown_task = asyncio.ensure_future(self._markdown(text, token))

        try:
            await asyncio.wait({feedback_task})
        except asyncio.CancelledError:
            feedback_task.cancel()
            markdown_task.cancel()
            await asyncio.gather(feedback_task, markdown_task, return_exceptions=True)
            raise

        feedback_error = feedback_task.exception()
        if feedback_error is not None:
            markdown_task.cancel()
            await asyncio.gather(markdown_task, return_exceptions=True)
            if isinstance(feedback_error, PipelineCancelled):
                raise feedback_error
            unavailable = isinstance(feedback_error, (ServiceUnavailable, RateLimited))
            logger.warning("feedback_failed unavailable=%s error=%s", unavailable, feedback_error)
            raise AnalysisFailed(
                f"Resume analysis failed: {feedback_error}",
                service_unavailable=unavailable,
            ) from feedback_error

        feedback_text = feedback_task.result() or ""
        markdown_res = (await asyncio.gather(markdown_task, return_exceptions=True))[0]

        if isinstance(markdown_res, PipelineCancelled):
            raise markdown_res
        if isinstance(markdown_res, BaseException):
            if not isinstance(markdown_res, Exception):
                raise markdown_res
            logger.warning("markdown_degraded error=%s", markdown_res)
            return AnalysisResult(
                feedback_text=feedback_text,
                degraded=AnalysisDegraded("markdown", str(markdown_res) or type(markdown_res).__name__),
            )

        markdown_text = markdown_res or None
        if markdown_text is None:
            return AnalysisResult(
                feedback_text=feedback_text,
                degraded=AnalysisDegraded("markdown", "Markdown conversion returned no content"),
            )
        return AnalysisResult(feedback_text=feedback_text, markdown_text=markdown_text)
