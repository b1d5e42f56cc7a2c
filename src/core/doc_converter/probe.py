from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import fitz  # PyMuPDF

from .errors import InvalidDocumentError, PasswordRequiredError


@dataclass(frozen=True, slots=True)
class ProbeResult:
    page_count: int
    encrypted: bool


class Prober(Protocol):
    def probe(self, path: Path, password: str | None = None) -> ProbeResult:  # pragma: no cover - interface
        ...


class DocumentProber:
    """Opens a document to check it is readable before committing to a conversion."""

    def probe(self, path: Path, password: str | None = None) -> ProbeResult:
        if not path.exists():
            raise InvalidDocumentError(f"Source file does not exist: {path.name}")
        try:
            document = fitz.open(str(path))
        except (RuntimeError, ValueError, OSError) as exc:
            raise InvalidDocumentError(f"Unable to read {path.name}: {exc}") from exc
        with document:
            encrypted = bool(document.needs_pass)
            if encrypted and (not password or not document.authenticate(password)):
                raise PasswordRequiredError(
                    f"{path.name} is encrypted and the password is missing or invalid"
                )
            page_count = document.page_count
        if page_count <= 0:
            raise InvalidDocumentError(f"{path.name} contains no pages")
        return ProbeResult(page_count=page_count, encrypted=encrypted)


__all__ = ["DocumentProber", "ProbeResult", "Prober"]
