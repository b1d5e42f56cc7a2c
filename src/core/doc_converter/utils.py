from __future__ import annotations

import hashlib
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from .config import AppConfig


SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(slots=True)
class WorkspacePaths:
    job_id: str
    input_dir: Path
    output_dir: Path
    log_file: Path


def slugify(value: str, max_length: int = 120) -> str:
    normalized = SAFE_FILENAME_RE.sub("-", value.strip())
    normalized = re.sub("-+", "-", normalized)
    normalized = normalized.replace("-.", ".")
    normalized = normalized.strip("-._")
    if not normalized:
        normalized = "file"
    if len(normalized) > max_length:
        normalized = normalized[:max_length]
    return normalized


def generate_job_id(prefix: str = "job") -> str:
    epoch_ms = int(time.time() * 1000)
    random_bits = hashlib.sha256(os.urandom(16)).hexdigest()[:8]
    return f"{prefix}-{epoch_ms}-{random_bits}"


def workspace_paths(config: AppConfig, job_id: str) -> WorkspacePaths:
    base = config.runtime.workspace_dir
    output_dir = base / "output" / job_id
    return WorkspacePaths(
        job_id=job_id,
        input_dir=base / "input" / job_id,
        output_dir=output_dir,
        log_file=output_dir / config.runtime.log_file,
    )


def ensure_workspace(config: AppConfig, job_id: str) -> WorkspacePaths:
    paths = workspace_paths(config, job_id)
    paths.input_dir.mkdir(parents=True, exist_ok=True)
    paths.output_dir.mkdir(parents=True, exist_ok=True)
    return paths


def atomic_write(path: Path, data: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding=encoding) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
    os.replace(tmp.name, path)


def split_name(filename: str) -> tuple[str, str]:
    """Return the stem and lower-cased extension (without dot) of *filename*."""

    stem, dot, ext = filename.rpartition(".")
    if not dot or not stem:
        return filename, ""
    return stem, ext.lower()
