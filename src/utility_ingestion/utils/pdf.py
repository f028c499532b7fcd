"""PDF utilities for bill extraction: page rendering (PyMuPDF) and text layer (pdfplumber)."""

from __future__ import annotations

import io

import fitz  # PyMuPDF
import pdfplumber

MAX_BILL_PAGES = 6


def render_pdf_to_images(file_bytes: bytes, dpi: int = 200, max_pages: int = MAX_BILL_PAGES) -> list[bytes]:
    """Render the first *max_pages* pages to PNG image bytes at the given DPI."""
    doc = fitz.open(stream=file_bytes, filetype="pdf")
    try:
        zoom = dpi / 72
        matrix = fitz.Matrix(zoom, zoom)
        return [
            page.get_pixmap(matrix=matrix).tobytes("png")
            for index, page in enumerate(doc)
            if index < max_pages
        ]
    finally:
        doc.close()


def extract_text_layer(file_bytes: bytes, max_pages: int = MAX_BILL_PAGES) -> str:
    """Embedded text of the first pages, joined with page markers.

    Scanned bills have no text layer and yield an empty string.
    """
    parts: list[str] = []
    with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
        for number, page in enumerate(pdf.pages[:max_pages], start=1):
            text = (page.extract_text() or "").strip()
            if text:
                parts.append(f"--- page {number} ---\n{text}")
    return "\n\n".join(parts)


def detect_file_type(file_bytes: bytes) -> str:
    """Detect file type from magic bytes.

    Returns one of ``"pdf"``, ``"png"``, ``"jpeg"``, ``"heic"``, ``"webp"`` or ``"unknown"``.
    """
    if file_bytes[:4] == b"%PDF":
        return "pdf"
    if file_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if file_bytes[:2] == b"\xff\xd8":
        return "jpeg"
    if file_bytes[4:8] == b"ftyp" and file_bytes[8:12] in (b"heic", b"heix", b"mif1", b"msf1"):
        return "heic"
    if file_bytes[:4] == b"RIFF" and file_bytes[8:12] == b"WEBP":
        return "webp"
    return "unknown"


def get_page_count(file_bytes: bytes) -> int:
    """Return the number of pages in a PDF."""
    doc = fitz.open(stream=file_bytes, filetype="pdf")
    try:
        return len(doc)
    finally:
        doc.close()
