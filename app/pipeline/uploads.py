from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from app.pipeline.errors import PipelineCancelled, UploadFailed
from app.pipeline.models import SourceDocument
from app.pipeline.resilience import CancellationToken, RetryPolicy, call_with_policy
from app.services.file_security import CONTENT_TYPE_EXTENSION_HINTS, detect_image_mime
from app.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    original_ref: str
    converted_ref: str


class UploadCoordinator:
    def __init__(self, store: ObjectStore, *, policy: RetryPolicy):
        self._store = store
        self._policy = policy

    async def _put(
        self,
        content: bytes,
        content_type: str,
        owner_scope: str,
        filename: str,
        token: CancellationToken,
    ) -> str:
        return await call_with_policy(
            lambda: self._store.put(content, content_type, owner_scope, filename),
            policy=self._policy,
            token=token,
            label=f"upload {filename}",
        )

    async def store(
        self,
        original: SourceDocument,
        converted: bytes,
        owner_scope: str,
        token: CancellationToken,
    ) -> UploadResult:
        """Store the original and the converted image concurrently.

        Both puts always run to completion. A failure on either side fails the
        whole call; a put that did succeed is left in place.
        """
        converted_type = detect_image_mime(converted) or "image/png"
        converted_ext = CONTENT_TYPE_EXTENSION_HINTS.get(converted_type, "png")
        stem = original.filename.rsplit(".", 1)[0] if "." in original.filename else original.filename
        original_res, converted_res = await asyncio.gather(
            self._put(original.content, original.content_type, owner_scope, original.filename, token),
            self._put(converted, converted_type, owner_scope, f"{stem or 'resume'}-page1.{converted_ext}", token),
            return_exceptions=True,
        )

        for res in (original_res, converted_res):
            if isinstance(res, PipelineCancelled):
                raise res
            if isinstance(res, BaseException) and not isinstance(res, Exception):
                raise res

        original_failed = isinstance(original_res, Exception)
        converted_failed = isinstance(converted_res, Exception)
        if original_failed or converted_failed:
            which = "both" if original_failed and converted_failed else ("original" if original_failed else "converted")
            logger.warning(
                "upload_failed which=%s original_error=%s converted_error=%s",
                which,
                original_res if original_failed else None,
                converted_res if converted_failed else None,
            )
            cause = original_res if original_failed else converted_res
            raise UploadFailed(which) from cause

        return UploadResult(original_ref=original_res, converted_ref=converted_res)
