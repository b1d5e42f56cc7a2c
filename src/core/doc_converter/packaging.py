from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from zipfile import ZIP_DEFLATED, ZipFile

from .config import AppConfig
from .utils import workspace_paths

logger = logging.getLogger(__name__)


class RemoteStorage(Protocol):
    def put(self, local_file: Path, display_name: str, job_id: str) -> str:  # pragma: no cover - interface
        ...


class DirectoryRemoteStorage:
    """Copies archives to a mounted share and returns their public URL."""

    def __init__(self, root: Path, base_url: str = "") -> None:
        self._root = root
        self._base_url = base_url.rstrip("/")

    def put(self, local_file: Path, display_name: str, job_id: str) -> str:
        destination = self._root / job_id / display_name
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(local_file, destination)
        if self._base_url:
            return f"{self._base_url}/{job_id}/{display_name}"
        return destination.resolve().as_uri()


@dataclass(slots=True)
class PackageResult:
    zip_path: Path
    download_url: str
    remote_url: str | None = None

    def custom_fields(self) -> dict[str, str]:
        fields = {"downloadUrl": self.download_url}
        if self.remote_url:
            fields["remoteUrl"] = self.remote_url
        return fields


class OutputPackager:
    def __init__(self, config: AppConfig, remote: RemoteStorage | None = None) -> None:
        self._config = config
        self._remote = remote

    def archive_path(self, job_id: str, name: str) -> Path:
        return workspace_paths(self._config, job_id).output_dir / f"{name}.zip"

    def download_url(self, job_id: str, name: str) -> str:
        return f"{self._config.runtime.context_url}/output/{job_id}/{name}.zip"

    def entries(self, job_id: str, name: str) -> list[tuple[Path, str]]:
        output_dir = workspace_paths(self._config, job_id).output_dir
        content_dir = output_dir / name
        zip_path = self.archive_path(job_id, name).resolve()
        entries: list[tuple[Path, str]] = []
        if not content_dir.exists():
            return entries
        for file_path in sorted(content_dir.rglob("*")):
            if not file_path.is_file() or file_path.resolve() == zip_path:
                continue
            relative = file_path.relative_to(output_dir)
            if ".." in relative.parts:
                continue
            entries.append((file_path, relative.as_posix()))
        return entries

    def package(self, job_id: str, name: str) -> PackageResult:
        zip_path = self.archive_path(job_id, name)
        entries = self.entries(job_id, name)
        with ZipFile(zip_path, "w", compression=ZIP_DEFLATED) as archive:
            for file_path, arcname in entries:
                archive.write(file_path, arcname)
        result = PackageResult(zip_path=zip_path, download_url=self.download_url(job_id, name))
        if self._remote is not None:
            try:
                result.remote_url = self._remote.put(zip_path, zip_path.name, job_id)
            except Exception:
                logger.exception("Remote upload of %s failed for job %s", zip_path.name, job_id)
        return result


def build_remote_storage(config: AppConfig) -> RemoteStorage | None:
    if not config.remote.enabled or config.remote.directory is None:
        return None
    return DirectoryRemoteStorage(config.remote.directory, config.remote.base_url)


__all__ = [
    "DirectoryRemoteStorage",
    "OutputPackager",
    "PackageResult",
    "RemoteStorage",
    "build_remote_storage",
]
