from __future__ import annotations

import logging
from io import BytesIO
from zipfile import BadZipFile, ZipFile

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSION_HINTS = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "txt",
    "text/markdown": "md",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}

EXTENSION_CONTENT_TYPES = {
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "txt": "text/plain",
    "md": "text/markdown",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
}

RESUME_EXTENSIONS = frozenset({"pdf", "png", "jpg", "jpeg", "gif", "webp"})
JD_EXTENSIONS = frozenset({"pdf", "docx", "txt", "md"})
IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "webp"})

PDF_MAGIC = b"%PDF-"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
JPEG_MAGIC = b"\xff\xd8\xff"
GIF_MAGICS = (b"GIF87a", b"GIF89a")
WEBP_RIFF_MAGIC = b"RIFF"
WEBP_WEBP_MAGIC = b"WEBP"
ZIP_MAGICS = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")


def _is_zip_payload(content: bytes) -> bool:
    return any(content.startswith(prefix) for prefix in ZIP_MAGICS)


def _zip_has_paths(content: bytes, prefixes: tuple[str, ...]) -> bool:
    try:
        with ZipFile(BytesIO(content)) as archive:
            names = archive.namelist()
        return any(any(name.startswith(prefix) for prefix in prefixes) for name in names)
    except (BadZipFile, OSError):
        return False


def _is_probably_text_payload(content: bytes) -> bool:
    if not content:
        return False
    sample = content[:4096]
    if b"\x00" in sample:
        return False
    printable = 0
    for byte in sample:
        if byte in (9, 10, 13) or 32 <= byte <= 126 or byte >= 128:
            printable += 1
    return (printable / len(sample)) >= 0.75


def extension_from_filename(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].strip().lower()[:20]


def content_type_for_extension(ext: str) -> str:
    return EXTENSION_CONTENT_TYPES.get(ext.lower(), "application/octet-stream")


def validate_upload_signature(*, filename: str, content: bytes) -> None:
    ext = extension_from_filename(filename)
    if ext == "doc":
        raise ValueError("Legacy .doc is not supported. Convert to .docx.")

    if ext == "pdf":
        if not content.startswith(PDF_MAGIC):
            raise ValueError("File signature does not match .pdf content.")
        return

    if ext == "docx":
        if not _is_zip_payload(content) or not _zip_has_paths(content, ("word/",)):
            raise ValueError("File signature does not match .docx content.")
        return

    if ext in {"txt", "md"}:
        if not _is_probably_text_payload(content):
            raise ValueError(f"File signature does not match .{ext} text content.")
        return

    if ext == "png":
        if not content.startswith(PNG_MAGIC):
            raise ValueError("File signature does not match .png content.")
        return

    if ext in {"jpg", "jpeg"}:
        if not content.startswith(JPEG_MAGIC):
            raise ValueError("File signature does not match .jpg/.jpeg content.")
        return

    if ext == "gif":
        if not any(content.startswith(magic) for magic in GIF_MAGICS):
            raise ValueError("File signature does not match .gif content.")
        return

    if ext == "webp":
        if len(content) < 12 or not content.startswith(WEBP_RIFF_MAGIC) or content[8:12] != WEBP_WEBP_MAGIC:
            raise ValueError("File signature does not match .webp content.")
        return

    raise ValueError(f"Unsupported file type '.{ext}'.")


def detect_image_mime(content: bytes) -> str | None:
    """Identify PNG/JPEG/GIF/WebP from signature bytes; None when unknown."""
    if content.startswith(PNG_MAGIC[:4]):
        return "image/png"
    if content.startswith(JPEG_MAGIC[:2]):
        return "image/jpeg"
    if content.startswith(b"GIF"):
        return "image/gif"
    if content.startswith(WEBP_RIFF_MAGIC):
        return "image/webp"
    return None


def sniff_image_mime(content: bytes, default: str = "image/png") -> str:
    """Best-effort mime for an image payload.

    Upstream content types are not trusted. Unknown signatures fall back to a
    marker search and finally to ``default`` instead of rejecting the image.
    """
    detected = detect_image_mime(content)
    if detected:
        return detected

    logger.warning("image_mime_unknown signature=%s", content[:4].hex())
    head = content[:1024]
    if b"PNG" in head:
        return "image/png"
    if b"JFIF" in head or b"Exif" in head:
        return "image/jpeg"
    return default
