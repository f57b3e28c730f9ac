from __future__ import annotations

import asyncio
import logging

import fitz

from app.core.config import settings
from app.pipeline.errors import ConversionFailed
from app.services.file_security import IMAGE_EXTENSIONS

logger = logging.getLogger(__name__)


class DocumentConverter:
    """Turn an uploaded resume into a single raster image.

    PDFs are rendered page one only, scaled so the page is roughly
    ``target_width`` pixels wide. Raster inputs are returned as-is.
    """

    def __init__(self, *, target_width: int | None = None, max_scale: float | None = None):
        self._target_width = target_width or settings.pdf_render_target_width
        self._max_scale = max_scale or settings.pdf_render_max_scale

    def _scale_for(self, page_width: float) -> float:
        if page_width <= 0:
            return 1.0
        return min(self._max_scale, max(1.0, self._target_width / page_width))

    def _render_pdf(self, content: bytes) -> bytes:
        try:
            doc = fitz.open(stream=content, filetype="pdf")
        except Exception as exc:  # noqa: BLE001 - fitz raises several unrelated types
            raise ConversionFailed(f"Could not open PDF: {exc}") from exc

        try:
            if doc.page_count < 1:
                raise ConversionFailed("PDF has no pages")
            page = doc.load_page(0)
            scale = self._scale_for(page.rect.width)
            pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
            image = pix.tobytes("png")
        except ConversionFailed:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ConversionFailed(f"Failed to render PDF: {exc}") from exc
        finally:
            doc.close()

        if not image:
            raise ConversionFailed("PDF rendered to an empty image")
        logger.info("pdf_rendered bytes_in=%s bytes_out=%s scale=%.2f", len(content), len(image), scale)
        return image

    async def convert(self, source_bytes: bytes, source_format: str) -> bytes:
        fmt = (source_format or "").strip().lower().lstrip(".")
        if not source_bytes:
            raise ConversionFailed("Document is empty")
        if fmt == "pdf":
            return await asyncio.to_thread(self._render_pdf, source_bytes)
        if fmt in IMAGE_EXTENSIONS:
            return source_bytes
        raise ConversionFailed(f"Unsupported document format '{fmt or 'unknown'}'")
