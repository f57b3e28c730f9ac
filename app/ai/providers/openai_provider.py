from __future__ import annotations

import base64
import logging
import os
from typing import Optional, Sequence

import openai
from openai import AsyncOpenAI

from app.ai.types import ChatMessage
from app.pipeline.errors import CollaboratorError, InvalidImage, RateLimited, ServiceUnavailable

logger = logging.getLogger(__name__)

_OCR_INSTRUCTIONS = (
    "Extract all text from this resume image. Preserve the reading order and "
    "section structure. Return plain text only, without commentary."
)


def _map_openai_error(exc: openai.OpenAIError, *, vision: bool = False) -> CollaboratorError:
    if isinstance(exc, openai.RateLimitError):
        return RateLimited(str(exc))
    if isinstance(exc, (openai.APIConnectionError, openai.InternalServerError)):
        # APITimeoutError is a subclass of APIConnectionError.
        return ServiceUnavailable(str(exc))
    if vision and isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
        return InvalidImage(str(exc))
    return CollaboratorError(str(exc), code="ai_error")


class OpenAIProvider:
    def __init__(
        self,
        model: str,
        vision_model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 60.0,
        max_retries: int = 0,
    ):
        self._model = model
        self._vision_model = vision_model or model
        key = (api_key or os.getenv("OPENAI_API_KEY") or "").strip()
        if not key:
            raise RuntimeError("OPENAI_API_KEY is missing")

        # Retries happen in the pipeline's policies, so the SDK's own default to 0.
        self._client = AsyncOpenAI(
            api_key=key,
            base_url=(base_url or os.getenv("OPENAI_BASE_URL") or None),
            timeout=float(os.getenv("OPENAI_TIMEOUT_S", str(timeout_s))),
            max_retries=int(os.getenv("OPENAI_MAX_RETRIES", str(max_retries))),
        )

    async def _chat(
        self,
        *,
        model: str,
        messages: Sequence[ChatMessage] | list[dict],
        temperature: float,
        max_tokens: int,
        vision: bool = False,
    ) -> str:
        payload = [
            {"role": m.role, "content": m.content} if isinstance(m, ChatMessage) else m
            for m in messages
        ]
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=payload,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.OpenAIError as exc:
            logger.warning("openai_call_failed model=%s vision=%s: %s", model, vision, exc)
            raise _map_openai_error(exc, vision=vision) from exc

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        return await self._chat(
            model=self._model,
            messages=[ChatMessage(role="user", content=prompt)],
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def extract_text(self, image_bytes: bytes, mime_type: str) -> str:
        if not image_bytes:
            raise InvalidImage("Image payload is empty")
        encoded = base64.b64encode(image_bytes).decode("utf-8")
        messages = [
            {"role": "system", "content": _OCR_INSTRUCTIONS},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "Read this resume image and return its text."},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                ],
            },
        ]
        return await self._chat(
            model=self._vision_model,
            messages=messages,
            temperature=0.0,
            max_tokens=4096,
            vision=True,
        )
