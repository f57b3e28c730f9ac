from __future__ import annotations

import logging

from app.ai.types import VisionClient
from app.core.config import settings
from app.pipeline.errors import CollaboratorError, ExtractionFailed
from app.pipeline.resilience import CancellationToken, RetryPolicy, call_with_policy
from app.services.file_security import sniff_image_mime
from app.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


class TextExtractor:
    def __init__(
        self,
        store: ObjectStore,
        vision: VisionClient,
        *,
        storage_policy: RetryPolicy,
        ocr_policy: RetryPolicy,
        default_mime: str | None = None,
    ):
        self._store = store
        self._vision = vision
        self._storage_policy = storage_policy
        self._ocr_policy = ocr_policy
        self._default_mime = default_mime or settings.default_image_mime

    async def extract_text(self, image_ref: str, token: CancellationToken) -> str:
        """OCR the stored image. An empty string is a valid result here."""
        try:
            image_bytes = await call_with_policy(
                lambda: self._store.get(image_ref),
                policy=self._storage_policy,
                token=token,
                label=f"fetch {image_ref}",
            )
        except CollaboratorError as exc:
            raise ExtractionFailed(f"Could not read stored image: {exc}") from exc

        mime = sniff_image_mime(image_bytes, default=self._default_mime)
        try:
            text = await call_with_policy(
                lambda: self._vision.extract_text(image_bytes, mime),
                policy=self._ocr_policy,
                token=token,
                label="ocr",
            )
        except CollaboratorError as exc:
            raise ExtractionFailed(f"Text extraction failed: {exc}") from exc

        text = text or ""
        logger.info("text_extracted ref=%s mime=%s chars=%s", image_ref, mime, len(text))
        return text
