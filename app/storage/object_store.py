from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from pathlib import Path
from typing import Protocol

from app.pipeline.errors import ObjectNotFound, StoreUnavailable

logger = logging.getLogger(__name__)

_SCOPE_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class ObjectStore(Protocol):
    async def put(
        self,
        content: bytes,
        content_type: str,
        owner_scope: str,
        filename: str | None = None,
    ) -> str: ...

    async def get(self, ref: str) -> bytes: ...

    async def exists(self, ref: str) -> bool: ...


def _safe_segment(value: str, fallback: str) -> str:
    cleaned = _SCOPE_RE.sub("-", (value or "").strip()).strip("-.")
    return cleaned[:80] or fallback


class LocalObjectStore:
    """Filesystem-backed object store.

    Refs look like ``<owner_scope>/<uuid>-<filename>``; a ``.meta.json``
    sidecar keeps the content type. Blocking file I/O runs in a worker thread.
    """

    def __init__(self, root: str | Path):
        self._root = Path(root)

    def _path_for(self, ref: str) -> Path:
        candidate = (self._root / ref).resolve()
        root = self._root.resolve()
        if root not in candidate.parents:
            raise ObjectNotFound(ref)
        return candidate

    def _write(self, ref: str, content: bytes, content_type: str) -> None:
        path = self._path_for(ref)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
            path.with_name(path.name + ".meta.json").write_text(
                json.dumps({"content_type": content_type, "size": len(content)}),
                encoding="utf-8",
            )
        except OSError as exc:
            raise StoreUnavailable(f"Failed to write object '{ref}': {exc}") from exc

    def _read(self, ref: str) -> bytes:
        path = self._path_for(ref)
        if not path.is_file():
            raise ObjectNotFound(ref)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StoreUnavailable(f"Failed to read object '{ref}': {exc}") from exc

    async def put(
        self,
        content: bytes,
        content_type: str,
        owner_scope: str,
        filename: str | None = None,
    ) -> str:
        scope = _safe_segment(owner_scope, "anonymous")
        name = _safe_segment(filename or "", "object")
        ref = f"{scope}/{uuid.uuid4().hex}-{name}"
        await asyncio.to_thread(self._write, ref, content, content_type)
        logger.info("object_stored ref=%s bytes=%s content_type=%s", ref, len(content), content_type)
        return ref

    async def get(self, ref: str) -> bytes:
        return await asyncio.to_thread(self._read, ref)

    async def exists(self, ref: str) -> bool:
        try:
            path = self._path_for(ref)
        except ObjectNotFound:
            return False
        return await asyncio.to_thread(path.is_file)
