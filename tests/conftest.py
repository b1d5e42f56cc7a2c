from __future__ import annotations

import os
import sys
from pathlib import Path

import fitz  # PyMuPDF
import pytest

from core.doc_converter.config import AppConfig, RuntimeConfig

CONTEXT_URL = "http://localhost:8080/docjobs"
USER_PASSWORD = "secret"


def build_config(tmp_path: Path, **runtime_overrides: object) -> AppConfig:
    runtime = RuntimeConfig(
        workspace_dir=tmp_path / "workspace",
        context_url=CONTEXT_URL,
        execution="in_process",
    )
    runtime.jobs.worker_pool_size = 1
    for key, value in runtime_overrides.items():
        setattr(runtime, key, value)
    return AppConfig(runtime=runtime)


def write_pdf(path: Path, pages: int = 3, *, with_image: bool = False, **save_options: object) -> Path:
    document = fitz.open()
    for number in range(1, pages + 1):
        page = document.new_page(width=200, height=200)
        page.insert_text((20, 40), f"Page {number} hello world")
        if with_image:
            pixmap = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 16, 16), False)
            pixmap.clear_with(40 * number)
            page.insert_image(fitz.Rect(50, 80, 150, 180), stream=pixmap.tobytes("png"))
    document.save(str(path), **save_options)
    document.close()
    return path


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script run by the current interpreter."""

    path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    path.chmod(0o755)
    return path


posix_only = pytest.mark.skipif(os.name != "posix", reason="needs POSIX executables and process groups")


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return build_config(tmp_path)


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    return write_pdf(tmp_path / "sample.pdf")


@pytest.fixture
def image_pdf(tmp_path: Path) -> Path:
    return write_pdf(tmp_path / "pictures.pdf", pages=2, with_image=True)


@pytest.fixture
def encrypted_pdf(tmp_path: Path) -> Path:
    return write_pdf(
        tmp_path / "locked.pdf",
        pages=1,
        encryption=fitz.PDF_ENCRYPT_AES_256,
        owner_pw="owner",
        user_pw=USER_PASSWORD,
    )


@pytest.fixture
def corrupt_file(tmp_path: Path) -> Path:
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"%PDF-1.7\nthis is not really a pdf\n")
    return path
