from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from core.doc_converter.store import JobRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthStatus(BaseModel):
    status: str
    version: str


class SubmittedJob(_CamelModel):
    job_id: str
    state: str
    submitted_at: str | None = None


class JobStatus(_CamelModel):
    job_id: str
    state: str
    error_code: int | None = None
    error_message: str | None = None
    custom_fields: dict[str, str] = {}
    source_filename: str | None = None
    submitted_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None

    @classmethod
    def from_record(cls, record: JobRecord) -> JobStatus:
        return cls(
            job_id=record.job_id,
            state=record.state.value,
            error_code=record.error_code,
            error_message=record.error_message,
            custom_fields=dict(record.custom_fields),
            source_filename=record.source_filename,
            submitted_at=record.submitted_at,
            started_at=record.started_at,
            finished_at=record.finished_at,
        )


class JobList(BaseModel):
    jobs: list[JobStatus]


class ValidationFailure(BaseModel):
    code: str = "INVALID_SETTINGS"
    violations: list[str]
