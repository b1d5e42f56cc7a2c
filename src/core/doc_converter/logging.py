from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class StageTimings:
    preconvert_ms: float = 0.0
    probe_ms: float = 0.0
    convert_ms: float = 0.0
    package_ms: float = 0.0


@dataclass(slots=True)
class RunLogEntry:
    job_id: str
    source: str
    state: str
    settings: dict[str, str]
    error_code: int | None
    error_message: str | None
    timings: StageTimings
    custom_fields: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timings"] = asdict(self.timings)
        payload["settings"] = {k: ("***" if k == "password" else v) for k, v in self.settings.items()}
        return payload


class RunLogger:
    def __init__(self, log_file: Path) -> None:
        self._log_file = log_file

    def append(self, entry: RunLogEntry) -> None:
        self._log_file.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self._log_file.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


__all__ = ["RunLogEntry", "RunLogger", "StageTimings"]
