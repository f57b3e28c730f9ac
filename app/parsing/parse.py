from __future__ import annotations

from io import BytesIO

from docx import Document
from pypdf import PdfReader

from .models import ParsedBlock, ParsedDoc


def _parse_txt(content: bytes) -> tuple[str, list[ParsedBlock], list[str]]:
    text = content.decode("utf-8", errors="replace")
    return text, [], []


def _parse_pdf(content: bytes) -> tuple[str, list[ParsedBlock], list[str]]:
    warnings: list[str] = []
    blocks: list[ParsedBlock] = []

    try:
        reader = PdfReader(BytesIO(content))
        text_parts: list[str] = []
        for index, page in enumerate(reader.pages, start=1):
            page_text = (page.extract_text() or "").strip()
            if page_text:
                text_parts.append(page_text)
                blocks.append(ParsedBlock(page=index, text=page_text))
        if not text_parts:
            warnings.append("No extractable text found in PDF.")
        return "\n".join(text_parts), blocks, warnings
    except Exception as exc:  # noqa: BLE001 - pypdf raises a wide range of errors on damaged files
        warnings.append(f"PDF parsing failed: {exc}")
        return "", blocks, warnings


def _parse_docx(content: bytes) -> tuple[str, list[ParsedBlock], list[str]]:
    warnings: list[str] = []
    blocks: list[ParsedBlock] = []

    try:
        document = Document(BytesIO(content))
    except Exception as exc:  # noqa: BLE001 - python-docx surfaces zip and xml errors as-is
        warnings.append(f"DOCX parsing failed: {exc}")
        return "", blocks, warnings

    paragraphs = [p.text.strip() for p in document.paragraphs if p.text and p.text.strip()]
    for paragraph_text in paragraphs:
        blocks.append(ParsedBlock(page=None, text=paragraph_text))
    if not paragraphs:
        warnings.append("No extractable text found in DOCX.")
    return "\n".join(paragraphs), blocks, warnings


def parse_document_bytes(filename: str, content: bytes) -> ParsedDoc:
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if extension in {"txt", "md"}:
        text, blocks, warnings = _parse_txt(content)
    elif extension == "pdf":
        text, blocks, warnings = _parse_pdf(content)
    elif extension == "docx":
        text, blocks, warnings = _parse_docx(content)
    else:
        raise NotImplementedError(
            f"Unsupported file type '.{extension}'. Supported types: .txt, .md, .pdf, .docx"
        )

    return ParsedDoc(
        filename=filename,
        source_type=extension,
        text=text,
        blocks=blocks,
        parsing_warnings=warnings,
    )
