from __future__ import annotations

import io

from pypdf import PdfReader


class PdfTextError(RuntimeError):
    pass


def is_pdf_type(content_type: str | None) -> bool:
    return "pdf" in (content_type or "").lower()


def extract_pdf_text(data: bytes) -> str:
    """Return the text layer of every page, joined by newlines."""
    if not data:
        raise PdfTextError("Empty PDF upload")
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except Exception as exc:  # noqa: BLE001
        raise PdfTextError(f"Failed to read PDF: {exc}") from exc
    return "\n".join(pages)
