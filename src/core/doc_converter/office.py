from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from .config import OfficeConfig
from .runner import ProcessOutcome, run_bounded_process

logger = logging.getLogger(__name__)


class OfficeConverter(Protocol):
    def convert_to_pdf(self, path: Path) -> ProcessOutcome:  # pragma: no cover - interface
        ...


class SofficeConverter:
    """Converts office documents to a sibling PDF with a headless office suite."""

    def __init__(self, config: OfficeConfig) -> None:
        self._executable = config.executable
        self._timeout_s = config.timeout_s

    def command(self, path: Path) -> list[str]:
        return [self._executable, "--headless", "--convert-to", "pdf", path.name]

    def convert_to_pdf(self, path: Path) -> ProcessOutcome:
        logger.info("Converting %s to PDF with %s", path.name, self._executable)
        return run_bounded_process(self.command(path), self._timeout_s, cwd=path.parent)


def pdf_sibling(path: Path) -> Path:
    return path.with_suffix(".pdf")


__all__ = ["OfficeConverter", "SofficeConverter", "pdf_sibling"]
