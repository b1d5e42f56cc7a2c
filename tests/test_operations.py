from __future__ import annotations

from pathlib import Path

import fitz  # PyMuPDF
import pytest

from conftest import USER_PASSWORD
from core.doc_converter.dispatch import (
    ExtractClippedImages,
    ExtractPlainText,
    ExtractRawImages,
    ExtractStructuredText,
    ExtractWordlist,
    RenderPages,
)
from core.doc_converter.errors import InvalidDocumentError, NoStructuredContentError, PasswordRequiredError
from core.doc_converter.operations import (
    extract_clipped_images,
    extract_plain_text,
    extract_raw_images,
    extract_structured_text,
    extract_wordlist,
    has_structure_tree,
    open_document,
    render_pages,
)


class RecordingTracker:
    def __init__(self) -> None:
        self.units: list[int] = []

    def checkpoint(self, units_done: int) -> None:
        self.units.append(units_done)


def test_render_pages_writes_one_image_per_page(sample_pdf: Path, tmp_path: Path) -> None:
    tracker = RecordingTracker()
    destination = tmp_path / "out"
    count = render_pages(RenderPages(sample_pdf, destination, "png", scaling=0.5), tracker)
    assert count == 3
    assert tracker.units == [1, 2, 3]
    assert sorted(p.name for p in destination.iterdir()) == ["page_1.png", "page_2.png", "page_3.png"]
    pixmap = fitz.Pixmap(str(destination / "page_1.png"))
    assert (pixmap.width, pixmap.height) == (100, 100)


def test_render_pages_to_jpeg(sample_pdf: Path, tmp_path: Path) -> None:
    destination = tmp_path / "out"
    render_pages(RenderPages(sample_pdf, destination, "jpg"), RecordingTracker())
    assert (destination / "page_3.jpg").read_bytes()[:2] == b"\xff\xd8"


def test_extract_raw_images(image_pdf: Path, tmp_path: Path) -> None:
    destination = tmp_path / "images"
    written = extract_raw_images(ExtractRawImages(image_pdf, destination, "png"), RecordingTracker())
    assert written == 2
    assert sorted(p.name for p in destination.iterdir()) == ["page_1_image_1.png", "page_2_image_2.png"]


def test_extract_clipped_images(image_pdf: Path, tmp_path: Path) -> None:
    destination = tmp_path / "clips"
    tracker = RecordingTracker()
    written = extract_clipped_images(ExtractClippedImages(image_pdf, destination, "png"), tracker)
    assert written == 2
    assert tracker.units == [1, 2]
    assert sorted(p.name for p in destination.iterdir()) == ["page_1_image_1.png", "page_2_image_2.png"]


def test_extract_plain_text(sample_pdf: Path, tmp_path: Path) -> None:
    destination = tmp_path / "text"
    extract_plain_text(ExtractPlainText(sample_pdf, destination), RecordingTracker())
    assert "Page 2 hello world" in (destination / "page_2.txt").read_text(encoding="utf-8")


def test_extract_wordlist(sample_pdf: Path, tmp_path: Path) -> None:
    destination = tmp_path / "words"
    extract_wordlist(ExtractWordlist(sample_pdf, destination), RecordingTracker())
    words = (destination / "page_1_words.txt").read_text(encoding="utf-8").split()
    assert words == ["Page", "1", "hello", "world"]


def test_structured_text_requires_structure_tree(sample_pdf: Path, tmp_path: Path) -> None:
    destination = tmp_path / "structured"
    with pytest.raises(NoStructuredContentError, match="no structured content"):
        extract_structured_text(ExtractStructuredText(sample_pdf, destination), RecordingTracker())
    assert not destination.exists()


def test_has_structure_tree_detects_tagged_catalog(sample_pdf: Path, tmp_path: Path) -> None:
    with fitz.open(str(sample_pdf)) as document:
        assert not has_structure_tree(document)
        xref = document.get_new_xref()
        document.update_object(xref, "<< /Type /StructTreeRoot >>")
        document.xref_set_key(document.pdf_catalog(), "StructTreeRoot", f"{xref} 0 R")
        assert has_structure_tree(document)


def test_open_document_password_handling(encrypted_pdf: Path) -> None:
    with pytest.raises(PasswordRequiredError):
        open_document(encrypted_pdf, None)
    with pytest.raises(PasswordRequiredError):
        open_document(encrypted_pdf, "wrong")
    with open_document(encrypted_pdf, USER_PASSWORD) as document:
        assert document.page_count == 1


def test_open_document_missing_file(tmp_path: Path) -> None:
    with pytest.raises(InvalidDocumentError):
        open_document(tmp_path / "absent.pdf", None)


def test_extract_raw_images_skips_shared_images(tmp_path: Path) -> None:
    source = tmp_path / "shared.pdf"
    document = fitz.open()
    pixmap = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 8, 8), False)
    pixmap.clear_with(90)
    first = document.new_page(width=100, height=100)
    xref = first.insert_image(fitz.Rect(10, 10, 50, 50), stream=pixmap.tobytes("png"))
    second = document.new_page(width=100, height=100)
    second.insert_image(fitz.Rect(10, 10, 50, 50), xref=xref)
    document.save(str(source))
    document.close()

    destination = tmp_path / "images"
    assert extract_raw_images(ExtractRawImages(source, destination, "png"), RecordingTracker()) == 1
    assert [p.name for p in destination.iterdir()] == ["page_1_image_1.png"]
