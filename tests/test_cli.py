from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from core.doc_converter.cli import app

runner = CliRunner()


def write_config(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        f'[runtime]\nworkspace_dir = "{(tmp_path / "workspace").as_posix()}"\nexecution = "in_process"\n',
        encoding="utf-8",
    )
    return path


def test_formats_lists_encoders() -> None:
    result = runner.invoke(app, ["formats", "--config", "absent.toml"])
    assert result.exit_code == 0
    assert "png" in result.stdout.split()


def test_validate_reports_violations() -> None:
    result = runner.invoke(app, ["validate", "--setting", "mode=convertToImages"])
    assert result.exit_code == 1
    assert 'Required setting "format" missing' in result.stdout


def test_validate_accepts_settings() -> None:
    result = runner.invoke(app, ["validate", "-s", "mode=extractText", "-s", "type=plainText"])
    assert result.exit_code == 0
    assert "mode=extractText" in result.stdout


def test_convert_runs_a_job(tmp_path: Path, sample_pdf: Path) -> None:
    config = write_config(tmp_path)
    result = runner.invoke(
        app,
        ["convert", str(sample_pdf), "-s", "mode=convertToImages", "-s", "format=png", "--config", str(config)],
    )
    assert result.exit_code == 0, result.stdout
    assert "Success" in result.stdout
    assert "sample.zip" in result.stdout

    status = runner.invoke(app, ["status", "--config", str(config)])
    assert status.exit_code == 0
    assert "processed" in status.stdout


def test_convert_reports_failure(tmp_path: Path, encrypted_pdf: Path) -> None:
    config = write_config(tmp_path)
    result = runner.invoke(
        app,
        ["convert", str(encrypted_pdf), "-s", "mode=extractText", "-s", "type=plainText", "--config", str(config)],
    )
    assert result.exit_code == 1
    assert "1070" in result.stdout


def test_status_of_unknown_job(tmp_path: Path) -> None:
    result = runner.invoke(app, ["status", "job-missing", "--config", str(write_config(tmp_path))])
    assert result.exit_code == 1
    assert "Unknown job" in result.stdout


def test_show_config_prints_effective_settings(tmp_path: Path) -> None:
    result = runner.invoke(app, ["show-config", "--config", str(write_config(tmp_path))])
    assert result.exit_code == 0, result.stdout
    assert '"worker_pool_size"' in result.stdout
    assert '"in_process"' in result.stdout
