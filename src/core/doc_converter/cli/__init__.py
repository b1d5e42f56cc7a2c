from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import AppConfig, dump_config, load_config
from ..orchestrator import ConversionOrchestrator
from ..store import JobState, JobStore
from ..validation import SettingsValidationError, validate_settings

console = Console()

app = typer.Typer(help="Document conversion job runner")


def _load_config(path: Path | None) -> AppConfig:
    return load_config(path)


def _parse_settings(pairs: list[str]) -> dict[str, str]:
    settings: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--setting")
        settings[key.strip()] = value
    return settings


def _print_violations(exc: SettingsValidationError) -> None:
    console.print("[red]Invalid settings[/red]")
    for violation in exc.violations:
        console.print(f"  {escape(violation)}")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def convert(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    setting: list[str] = typer.Option([], "--setting", "-s", help="Conversion setting as KEY=VALUE"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    cfg = _load_config(config)
    orchestrator = ConversionOrchestrator(cfg)
    try:
        record = orchestrator.submit(file.name, file.read_bytes(), _parse_settings(setting))
    except SettingsValidationError as exc:
        _print_violations(exc)
        orchestrator.shutdown()
        raise typer.Exit(2) from exc
    try:
        final = orchestrator.wait(record.job_id)
    finally:
        orchestrator.shutdown(wait=True)
    if final is None or final.state is not JobState.PROCESSED:
        code = final.error_code if final else None
        message = final.error_message if final else "job record missing"
        console.print(f"[red]Conversion failed[/red]: {code} - {escape(message or '')}")
        raise typer.Exit(1)
    console.print(f"[green]Success[/green]: job {final.job_id}")
    console.print(f"Pages: {final.custom_fields.get('pageCount', '?')}")
    console.print(f"Download URL: {final.custom_fields['downloadUrl']}")
    if "remoteUrl" in final.custom_fields:
        console.print(f"Remote copy: {final.custom_fields['remoteUrl']}")


@app.command()
def validate(
    setting: list[str] = typer.Option([], "--setting", "-s", help="Conversion setting as KEY=VALUE"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    cfg = _load_config(config)
    try:
        params = validate_settings(_parse_settings(setting), cfg.encoder_formats)
    except SettingsValidationError as exc:
        _print_violations(exc)
        raise typer.Exit(1) from exc
    console.print(f"[green]Valid[/green]: mode={params.mode.value}")


@app.command()
def formats(config: Path | None = typer.Option(None, "--config", help="Path to config.toml")) -> None:
    cfg = _load_config(config)
    for name in cfg.encoder_formats:
        console.print(name)


@app.command("show-config")
def show_config(config: Path | None = typer.Option(None, "--config", help="Path to config.toml")) -> None:
    console.print_json(dump_config(_load_config(config)))


@app.command()
def status(
    job_id: str | None = typer.Argument(None, help="Job to show; lists recent jobs when omitted"),
    limit: int = typer.Option(20, "--limit", min=1, help="Number of recent jobs to list"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    cfg = _load_config(config)
    store = JobStore(cfg)
    if job_id is not None:
        record = store.get(job_id)
        if record is None:
            console.print(f"[red]Unknown job[/red]: {escape(job_id)}")
            raise typer.Exit(1)
        console.print_json(data=record.to_payload())
        return
    table = Table(title="Recent jobs")
    table.add_column("Job ID")
    table.add_column("State")
    table.add_column("Error")
    table.add_column("Source")
    for item in store.list_latest(limit):
        error = item.get("error_code")
        table.add_row(
            str(item.get("job_id")),
            str(item.get("state")),
            str(error) if error is not None else "-",
            str(item.get("source_filename") or "-"),
        )
    console.print(table)


if __name__ == "__main__":
    app()
