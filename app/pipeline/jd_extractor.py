from __future__ import annotations

import asyncio
import logging
import re

from app.ai.types import LanguageModelClient
from app.core.config import settings
from app.parsing.parse import parse_document_bytes
from app.pipeline.errors import CollaboratorError, JobDescriptionExtractionFailed
from app.pipeline.json_extract import extract_json
from app.pipeline.models import NOT_SPECIFIED, JobContext, SourceDocument
from app.pipeline.prompts import build_jd_extraction_prompt
from app.pipeline.resilience import CancellationToken, RetryPolicy, call_with_policy

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_FIELD_MAX_CHARS = 200


def sanitize_jd_text(text: str, *, min_chars: int, max_chars: int) -> str:
    """Collapse whitespace, drop control characters and cap the length.

    Raises ``JobDescriptionExtractionFailed`` when the cleaned text is shorter
    than ``min_chars``. Text over ``max_chars`` is cut and suffixed with ``...``.
    """
    cleaned = _CONTROL_CHARS_RE.sub("", _WHITESPACE_RE.sub(" ", text or "")).strip()
    if not cleaned:
        raise JobDescriptionExtractionFailed(
            "Could not extract text from the job description file. "
            "Please ensure the file contains readable text."
        )
    if len(cleaned) < min_chars:
        raise JobDescriptionExtractionFailed(
            "Extracted job description text is too short. Please check the file contents."
        )
    if len(cleaned) > max_chars:
        logger.info("jd_text_truncated chars=%s limit=%s", len(cleaned), max_chars)
        cleaned = cleaned[:max_chars] + "..."
    return cleaned


def _text_field(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class JobDescriptionExtractor:
    """Turns an uploaded JD file into a job context (title, company, description)."""

    def __init__(self, llm: LanguageModelClient, *, policy: RetryPolicy):
        self._llm = llm
        self._policy = policy

    async def extract(self, document: SourceDocument, token: CancellationToken) -> JobContext:
        try:
            parsed = await asyncio.to_thread(parse_document_bytes, document.filename, document.content)
        except NotImplementedError as exc:
            raise JobDescriptionExtractionFailed(str(exc)) from exc
        for warning in parsed.parsing_warnings:
            logger.warning("jd_parse_warning file=%s warning=%s", document.filename, warning)

        jd_text = sanitize_jd_text(
            parsed.text,
            min_chars=settings.jd_text_min_chars,
            max_chars=settings.jd_text_max_chars,
        )

        prompt = build_jd_extraction_prompt(jd_text)
        try:
            raw = await call_with_policy(
                lambda: self._llm.complete(
                    prompt,
                    temperature=settings.jd_extract_temperature,
                    max_tokens=settings.jd_extract_max_tokens,
                ),
                policy=self._policy,
                token=token,
                label="jd_extract",
            )
        except CollaboratorError as exc:
            raise JobDescriptionExtractionFailed(f"Job description extraction failed: {exc}") from exc

        data = extract_json(raw)
        if not isinstance(data, dict):
            logger.warning("jd_extract_unparseable preview=%r", (raw or "")[:200])
            raise JobDescriptionExtractionFailed("Failed to parse the extracted job description information")

        description = _text_field(data.get("jobDescription"))
        if description is None:
            raise JobDescriptionExtractionFailed("Missing job description in extraction response")

        context = JobContext(
            job_title=(_text_field(data.get("jobTitle")) or NOT_SPECIFIED)[:_FIELD_MAX_CHARS],
            company_name=(_text_field(data.get("companyName")) or NOT_SPECIFIED)[:_FIELD_MAX_CHARS],
            job_description=description,
        )
        logger.info(
            "jd_extracted file=%s title=%r company=%r description_chars=%s",
            document.filename,
            context.job_title,
            context.company_name,
            len(context.job_description),
        )
        return context
