from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal, Mapping


CONFIG_FILE = Path("config.toml")

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class JobsConfig:
    worker_pool_size: int = 0


@dataclass(slots=True)
class RuntimeConfig:
    workspace_dir: Path = Path("workspace")
    context_url: str = ""
    log_file: str = "log.jsonl"
    enable_local_api: bool = False
    execution: Literal["subprocess", "in_process"] = "subprocess"
    max_conversion_duration_s: float = 600.0
    worker_memory_mb: int = 0
    jobs: JobsConfig = field(default_factory=JobsConfig)


@dataclass(slots=True)
class OfficeConfig:
    executable: str = "soffice"
    timeout_s: float = 60.0


@dataclass(slots=True)
class RemoteConfig:
    directory: Path | None = None
    base_url: str = ""

    @property
    def enabled(self) -> bool:
        return self.directory is not None


@dataclass(slots=True)
class APIConfig:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass(slots=True)
class AppConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    office: OfficeConfig = field(default_factory=OfficeConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    formats: tuple[str, ...] = ("png", "jpg", "jpeg", "pnm", "ppm", "pam", "psd")
    api: APIConfig = field(default_factory=APIConfig)

    @property
    def encoder_formats(self) -> tuple[str, ...]:
        return self.formats


def _read_toml(path: Path) -> Mapping[str, object]:
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _build_jobs(data: Mapping[str, object] | None) -> JobsConfig:
    if not data:
        return JobsConfig()
    return JobsConfig(worker_pool_size=int(data.get("worker_pool_size", 0)))


def _build_runtime(data: Mapping[str, object] | None) -> RuntimeConfig:
    if not data:
        return RuntimeConfig()
    jobs = _build_jobs(data.get("jobs") if isinstance(data.get("jobs"), Mapping) else None)
    execution = str(data.get("execution", "subprocess"))
    if execution not in {"subprocess", "in_process"}:
        raise ValueError(f"Unsupported execution strategy: {execution!r}")
    return RuntimeConfig(
        workspace_dir=Path(str(data.get("workspace_dir", "workspace"))),
        context_url=str(data.get("context_url", "")).rstrip("/"),
        log_file=str(data.get("log_file", "log.jsonl")),
        enable_local_api=bool(data.get("enable_local_api", False)),
        execution=execution,  # type: ignore[arg-type]
        max_conversion_duration_s=float(data.get("max_conversion_duration_s", 600.0)),
        worker_memory_mb=int(data.get("worker_memory_mb", 0)),
        jobs=jobs,
    )


def _build_office(data: Mapping[str, object] | None) -> OfficeConfig:
    if not data:
        return OfficeConfig()
    executable = str(data.get("executable") or "")
    if not executable:
        logger.warning('Office converter executable was not set. Using a value of "soffice"')
        executable = "soffice"
    return OfficeConfig(executable=executable, timeout_s=float(data.get("timeout_s", 60.0)))


def _build_remote(data: Mapping[str, object] | None) -> RemoteConfig:
    if not data or not data.get("directory"):
        return RemoteConfig()
    return RemoteConfig(
        directory=Path(str(data["directory"])),
        base_url=str(data.get("base_url", "")).rstrip("/"),
    )


def _build_api(data: Mapping[str, object] | None) -> APIConfig:
    if not data:
        return APIConfig()
    return APIConfig(host=str(data.get("host", "127.0.0.1")), port=int(data.get("port", 8000)))


def _tuple_of_strings(value: object | None, default: Iterable[str]) -> tuple[str, ...]:
    if not value:
        return tuple(default)
    if isinstance(value, str):
        return (value.lower(),)
    if isinstance(value, Iterable):
        return tuple(str(item).lower() for item in value)
    raise TypeError(f"Unsupported formats configuration: {value!r}")


def _section(raw: Mapping[str, object], name: str) -> Mapping[str, object] | None:
    value = raw.get(name)
    return value if isinstance(value, Mapping) else None


def load_config(path: Path | None = None) -> AppConfig:
    path = path or CONFIG_FILE
    raw = _read_toml(path)
    formats_data = raw.get("formats")
    return AppConfig(
        runtime=_build_runtime(_section(raw, "runtime")),
        office=_build_office(_section(raw, "office")),
        remote=_build_remote(_section(raw, "remote")),
        formats=_tuple_of_strings(formats_data, AppConfig().formats),
        api=_build_api(_section(raw, "api")),
    )


def dump_config(config: AppConfig) -> str:
    payload = {
        "runtime": {
            "workspace_dir": str(config.runtime.workspace_dir),
            "context_url": config.runtime.context_url,
            "log_file": config.runtime.log_file,
            "enable_local_api": config.runtime.enable_local_api,
            "execution": config.runtime.execution,
            "max_conversion_duration_s": config.runtime.max_conversion_duration_s,
            "worker_memory_mb": config.runtime.worker_memory_mb,
            "jobs": {
                "worker_pool_size": config.runtime.jobs.worker_pool_size,
            },
        },
        "office": {
            "executable": config.office.executable,
            "timeout_s": config.office.timeout_s,
        },
        "remote": {
            "directory": str(config.remote.directory) if config.remote.directory else "",
            "base_url": config.remote.base_url,
        },
        "formats": list(config.encoder_formats),
        "api": {
            "host": config.api.host,
            "port": config.api.port,
        },
    }
    return json.dumps(payload, indent=2)


__all__ = [
    "AppConfig",
    "APIConfig",
    "JobsConfig",
    "OfficeConfig",
    "RemoteConfig",
    "RuntimeConfig",
    "dump_config",
    "load_config",
]
