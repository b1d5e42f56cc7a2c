from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Mapping

from .config import AppConfig
from .utils import atomic_write


ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).strftime(ISO_FORMAT)


class JobState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in {JobState.PROCESSED, JobState.ERROR}


_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.QUEUED: frozenset({JobState.PROCESSING}),
    JobState.PROCESSING: frozenset({JobState.PROCESSED, JobState.ERROR}),
    JobState.PROCESSED: frozenset(),
    JobState.ERROR: frozenset(),
}


class JobStateError(RuntimeError):
    pass


class JobNotFoundError(KeyError):
    pass


@dataclass(slots=True)
class JobRecord:
    job_id: str
    state: JobState = JobState.QUEUED
    settings: dict[str, str] = field(default_factory=dict)
    custom_fields: dict[str, str] = field(default_factory=dict)
    error_code: int | None = None
    error_message: str | None = None
    source_filename: str | None = None
    submitted_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None

    def to_payload(self) -> dict[str, object | None]:
        payload = asdict(self)
        payload["state"] = self.state.value
        return payload

    @classmethod
    def from_payload(cls, data: Mapping[str, object]) -> JobRecord:
        settings = data.get("settings")
        custom = data.get("custom_fields")
        error_code = data.get("error_code")
        return cls(
            job_id=str(data.get("job_id")),
            state=JobState(str(data.get("state", JobState.QUEUED.value))),
            settings={str(k): str(v) for k, v in settings.items()} if isinstance(settings, dict) else {},
            custom_fields={str(k): str(v) for k, v in custom.items()} if isinstance(custom, dict) else {},
            error_code=int(error_code) if error_code is not None else None,  # type: ignore[arg-type]
            error_message=str(data.get("error_message")) if data.get("error_message") else None,
            source_filename=str(data.get("source_filename")) if data.get("source_filename") else None,
            submitted_at=str(data.get("submitted_at")) if data.get("submitted_at") else None,
            started_at=str(data.get("started_at")) if data.get("started_at") else None,
            finished_at=str(data.get("finished_at")) if data.get("finished_at") else None,
        )


class JobStore:
    """File-backed job records with enforced lifecycle transitions.

    Each record lives in its own JSON file replaced atomically on every write,
    so a status reader never observes a half-applied update. Records in a
    terminal state are immutable.
    """

    def __init__(self, config: AppConfig) -> None:
        self._root = config.runtime.workspace_dir / "_jobs"
        self._index_dir = config.runtime.workspace_dir / "_index"
        self._jobs_index = self._index_dir / "jobs.jsonl"
        self._latest_file = self._index_dir / "latest.json"
        self._lock = threading.RLock()
        self._root.mkdir(parents=True, exist_ok=True)
        self._index_dir.mkdir(parents=True, exist_ok=True)

    def status_path(self, job_id: str) -> Path:
        return self._root / f"{job_id}.json"

    def create(self, record: JobRecord) -> JobRecord:
        with self._lock:
            if self.status_path(record.job_id).exists():
                raise JobStateError(f"Job {record.job_id} already exists")
            if record.state is not JobState.QUEUED:
                raise JobStateError(f"New job {record.job_id} must start queued, not {record.state.value}")
            record.submitted_at = record.submitted_at or _iso(_utc_now())
            self._write(record)
            self._append_index(record)
        return record

    def get(self, job_id: str) -> JobRecord | None:
        path = self.status_path(job_id)
        if not path.exists():
            return None
        return JobRecord.from_payload(json.loads(path.read_text(encoding="utf-8")))

    def _require(self, job_id: str) -> JobRecord:
        record = self.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    def _transition(self, record: JobRecord, target: JobState) -> None:
        if target not in _TRANSITIONS[record.state]:
            raise JobStateError(
                f"Job {record.job_id} cannot move from {record.state.value} to {target.value}"
            )
        record.state = target

    def start(self, job_id: str) -> JobRecord:
        with self._lock:
            record = self._require(job_id)
            self._transition(record, JobState.PROCESSING)
            record.started_at = _iso(_utc_now())
            self._write(record)
        return record

    def set_custom_values(self, job_id: str, values: Mapping[str, str]) -> JobRecord:
        with self._lock:
            record = self._require(job_id)
            if record.state is not JobState.PROCESSING:
                raise JobStateError(f"Job {job_id} is {record.state.value}; fields can only change while processing")
            record.custom_fields.update({str(k): str(v) for k, v in values.items()})
            self._write(record)
        return record

    def complete(self, job_id: str, values: Mapping[str, str]) -> JobRecord:
        with self._lock:
            record = self._require(job_id)
            merged = {**record.custom_fields, **{str(k): str(v) for k, v in values.items()}}
            if not merged.get("downloadUrl"):
                raise JobStateError(f"Job {job_id} cannot be processed without a downloadUrl")
            self._transition(record, JobState.PROCESSED)
            record.custom_fields = merged
            record.finished_at = _iso(_utc_now())
            self._write(record)
            self._append_index(record)
        return record

    def fail(self, job_id: str, code: int, message: str) -> JobRecord:
        with self._lock:
            record = self._require(job_id)
            self._transition(record, JobState.ERROR)
            record.error_code = int(code)
            record.error_message = message
            record.finished_at = _iso(_utc_now())
            self._write(record)
            self._append_index(record)
        return record

    def _write(self, record: JobRecord) -> None:
        atomic_write(self.status_path(record.job_id), json.dumps(record.to_payload(), indent=2))

    def _append_index(self, record: JobRecord) -> None:
        payload = record.to_payload()
        with self._jobs_index.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")
        latest = [item for item in self._load_latest() if item.get("job_id") != record.job_id]
        latest.append(payload)
        latest = latest[-200:]
        atomic_write(self._latest_file, json.dumps(latest, indent=2))

    def _load_latest(self) -> list[dict[str, object]]:
        if not self._latest_file.exists():
            return []
        try:
            return json.loads(self._latest_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return []

    def list_latest(self, limit: int = 50) -> list[dict[str, object]]:
        latest = self._load_latest()
        if limit <= 0:
            return latest
        return latest[-limit:]


__all__ = [
    "JobNotFoundError",
    "JobRecord",
    "JobState",
    "JobStateError",
    "JobStore",
]
