from __future__ import annotations

from pathlib import Path
from zipfile import ZipFile

from conftest import CONTEXT_URL
from core.doc_converter.config import AppConfig, RemoteConfig
from core.doc_converter.packaging import (
    DirectoryRemoteStorage,
    OutputPackager,
    build_remote_storage,
)
from core.doc_converter.utils import ensure_workspace


class FailingRemote:
    def put(self, local_file: Path, display_name: str, job_id: str) -> str:
        raise OSError("share unavailable")


def populate(config: AppConfig, job_id: str = "job-1", name: str = "report") -> Path:
    content = ensure_workspace(config, job_id).output_dir / name
    (content / "nested").mkdir(parents=True)
    (content / "page_1.png").write_bytes(b"png-1")
    (content / "page_2.png").write_bytes(b"png-2")
    (content / "nested" / "notes.txt").write_text("notes", encoding="utf-8")
    return content


def test_package_mirrors_output_tree(config: AppConfig) -> None:
    populate(config)
    result = OutputPackager(config).package("job-1", "report")

    assert result.zip_path == config.runtime.workspace_dir / "output" / "job-1" / "report.zip"
    assert result.download_url == f"{CONTEXT_URL}/output/job-1/report.zip"
    assert result.custom_fields() == {"downloadUrl": result.download_url}
    with ZipFile(result.zip_path) as archive:
        assert archive.namelist() == ["report/nested/notes.txt", "report/page_1.png", "report/page_2.png"]
        assert archive.read("report/page_2.png") == b"png-2"


def test_packaging_twice_yields_the_same_entries(config: AppConfig) -> None:
    populate(config)
    packager = OutputPackager(config)
    first = packager.package("job-1", "report")
    with ZipFile(first.zip_path) as archive:
        first_names = archive.namelist()
    second = packager.package("job-1", "report")
    with ZipFile(second.zip_path) as archive:
        assert archive.namelist() == first_names
    assert "report.zip" not in {Path(name).name for name in first_names}


def test_existing_archive_is_not_packaged(config: AppConfig) -> None:
    content = populate(config)
    packager = OutputPackager(config)
    stray = packager.archive_path("job-1", "report")
    stray.write_bytes(b"old archive")
    names = [arcname for _, arcname in packager.entries("job-1", "report")]
    assert all(not name.endswith(".zip") for name in names)
    assert len(names) == len([p for p in content.rglob("*") if p.is_file()])


def test_missing_content_produces_empty_archive(config: AppConfig) -> None:
    ensure_workspace(config, "job-2")
    result = OutputPackager(config).package("job-2", "empty")
    with ZipFile(result.zip_path) as archive:
        assert archive.namelist() == []


def test_remote_copy_is_recorded(config: AppConfig, tmp_path: Path) -> None:
    populate(config)
    remote = DirectoryRemoteStorage(tmp_path / "share", "https://files.example.com/jobs/")
    result = OutputPackager(config, remote).package("job-1", "report")
    assert result.remote_url == "https://files.example.com/jobs/job-1/report.zip"
    assert (tmp_path / "share" / "job-1" / "report.zip").is_file()
    assert result.custom_fields()["remoteUrl"] == result.remote_url


def test_remote_failure_is_ignored(config: AppConfig) -> None:
    populate(config)
    result = OutputPackager(config, FailingRemote()).package("job-1", "report")
    assert result.remote_url is None
    assert result.zip_path.is_file()
    assert "remoteUrl" not in result.custom_fields()


def test_remote_storage_is_built_from_config(config: AppConfig, tmp_path: Path) -> None:
    assert build_remote_storage(config) is None
    config.remote = RemoteConfig(directory=tmp_path / "share")
    storage = build_remote_storage(config)
    assert isinstance(storage, DirectoryRemoteStorage)
    source = tmp_path / "a.zip"
    source.write_bytes(b"zip")
    assert storage.put(source, "a.zip", "job-9") == (tmp_path / "share" / "job-9" / "a.zip").resolve().as_uri()
