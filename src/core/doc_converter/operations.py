"""Conversion operations backed by PyMuPDF.

Every operation writes its output units (pages, images, text files) into the
conversion's destination directory and calls ``tracker.checkpoint`` after each
unit, which is where an in-process conversion gets cancelled once its budget
has elapsed.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import fitz  # PyMuPDF

from .errors import InvalidDocumentError, NoStructuredContentError, PasswordRequiredError

if TYPE_CHECKING:
    from .dispatch import (
        ExtractClippedImages,
        ExtractPlainText,
        ExtractRawImages,
        ExtractStructuredText,
        ExtractWordlist,
        RenderPages,
    )


class Checkpoint(Protocol):
    def checkpoint(self, units_done: int) -> None:  # pragma: no cover - interface
        ...


def open_document(source: Path, password: str | None) -> fitz.Document:
    try:
        document = fitz.open(str(source))
    except (RuntimeError, ValueError, OSError) as exc:
        raise InvalidDocumentError(f"Unable to open document: {exc}") from exc
    if document.needs_pass:
        if not password or not document.authenticate(password):
            document.close()
            raise PasswordRequiredError("Document is encrypted and the password is missing or invalid")
    return document


def _save_pixmap(pixmap: fitz.Pixmap, target: Path, image_format: str) -> None:
    if pixmap.n - pixmap.alpha >= 4:
        pixmap = fitz.Pixmap(fitz.csRGB, pixmap)
    if pixmap.alpha and image_format in {"jpg", "jpeg", "pnm", "ppm"}:
        pixmap = fitz.Pixmap(pixmap, 0)
    pixmap.save(str(target), output=image_format)


def render_pages(conversion: RenderPages, tracker: Checkpoint) -> int:
    conversion.destination.mkdir(parents=True, exist_ok=True)
    matrix = fitz.Matrix(conversion.scaling, conversion.scaling)
    with open_document(conversion.source, conversion.password) as document:
        for index, page in enumerate(document, start=1):
            pixmap = page.get_pixmap(matrix=matrix)
            _save_pixmap(pixmap, conversion.destination / f"page_{index}.{conversion.format}", conversion.format)
            tracker.checkpoint(index)
        return document.page_count


def extract_raw_images(conversion: ExtractRawImages, tracker: Checkpoint) -> int:
    conversion.destination.mkdir(parents=True, exist_ok=True)
    written = 0
    with open_document(conversion.source, conversion.password) as document:
        seen: set[int] = set()
        for page_number, page in enumerate(document, start=1):
            for image in page.get_images(full=True):
                xref = image[0]
                if xref in seen:
                    continue
                seen.add(xref)
                pixmap = fitz.Pixmap(document, xref)
                written += 1
                target = conversion.destination / f"page_{page_number}_image_{written}.{conversion.format}"
                _save_pixmap(pixmap, target, conversion.format)
            tracker.checkpoint(page_number)
    return written


def extract_clipped_images(conversion: ExtractClippedImages, tracker: Checkpoint) -> int:
    conversion.destination.mkdir(parents=True, exist_ok=True)
    written = 0
    with open_document(conversion.source, conversion.password) as document:
        for page_number, page in enumerate(document, start=1):
            for info in page.get_image_info():
                clip = fitz.Rect(info["bbox"]) & page.rect
                if clip.is_empty:
                    continue
                written += 1
                pixmap = page.get_pixmap(clip=clip)
                target = conversion.destination / f"page_{page_number}_image_{written}.{conversion.format}"
                _save_pixmap(pixmap, target, conversion.format)
            tracker.checkpoint(page_number)
    return written


def extract_plain_text(conversion: ExtractPlainText, tracker: Checkpoint) -> int:
    conversion.destination.mkdir(parents=True, exist_ok=True)
    with open_document(conversion.source, conversion.password) as document:
        for index, page in enumerate(document, start=1):
            text = page.get_text("text")
            (conversion.destination / f"page_{index}.txt").write_text(text, encoding="utf-8")
            tracker.checkpoint(index)
        return document.page_count


def extract_wordlist(conversion: ExtractWordlist, tracker: Checkpoint) -> int:
    conversion.destination.mkdir(parents=True, exist_ok=True)
    with open_document(conversion.source, conversion.password) as document:
        for index, page in enumerate(document, start=1):
            words = [entry[4] for entry in page.get_text("words")]
            payload = "\n".join(words) + ("\n" if words else "")
            (conversion.destination / f"page_{index}_words.txt").write_text(payload, encoding="utf-8")
            tracker.checkpoint(index)
        return document.page_count


def has_structure_tree(document: fitz.Document) -> bool:
    if not document.is_pdf:
        return False
    kind, _ = document.xref_get_key(document.pdf_catalog(), "StructTreeRoot")
    return kind not in {"null", ""}


def extract_structured_text(conversion: ExtractStructuredText, tracker: Checkpoint) -> int:
    with open_document(conversion.source, conversion.password) as document:
        if not has_structure_tree(document):
            raise NoStructuredContentError("Document has no structured content")
        conversion.destination.mkdir(parents=True, exist_ok=True)
        for index, page in enumerate(document, start=1):
            markup = page.get_text("xhtml")
            (conversion.destination / f"page_{index}.xhtml").write_text(markup, encoding="utf-8")
            tracker.checkpoint(index)
        return document.page_count


__all__ = [
    "Checkpoint",
    "extract_clipped_images",
    "extract_plain_text",
    "extract_raw_images",
    "extract_structured_text",
    "extract_wordlist",
    "has_structure_tree",
    "open_document",
    "render_pages",
]
