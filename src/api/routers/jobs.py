from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse

from core.doc_converter.config import AppConfig
from core.doc_converter.orchestrator import ConversionOrchestrator
from core.doc_converter.store import JobRecord
from core.doc_converter.utils import slugify, workspace_paths
from core.doc_converter.validation import SettingsValidationError
from models.schemas import JobList, JobStatus, SubmittedJob, ValidationFailure

from ..dependencies import get_config, get_orchestrator
from ..utils.executors import read_upload, run_sync

router = APIRouter(tags=["jobs"])


@router.post(
    "/jobs",
    summary="Submit a conversion job",
    status_code=202,
    response_model=SubmittedJob,
    responses={400: {"description": "Settings failed validation"}},
)
async def submit_job(
    file: UploadFile = File(...),
    settings: str | None = Form(None),
    orchestrator: ConversionOrchestrator = Depends(get_orchestrator),
) -> SubmittedJob:
    payload = await read_upload(file)
    if not payload:
        raise HTTPException(status_code=400, detail="EMPTY_FILE")
    parsed = _parse_settings(settings)
    try:
        record = await run_sync(orchestrator.submit, file.filename or "upload", payload, parsed)
    except SettingsValidationError as exc:
        failure = ValidationFailure(violations=exc.violations)
        raise HTTPException(status_code=400, detail=failure.model_dump()) from exc
    return SubmittedJob(job_id=record.job_id, state=record.state.value, submitted_at=record.submitted_at)


@router.get(
    "/jobs/{job_id}",
    summary="Retrieve job status",
    response_model=JobStatus,
    response_model_exclude_none=True,
)
def get_job(job_id: str, orchestrator: ConversionOrchestrator = Depends(get_orchestrator)) -> JobStatus:
    record = orchestrator.get_status(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="JOB_NOT_FOUND")
    return JobStatus.from_record(record)


@router.get("/jobs", summary="List recent jobs", response_model=JobList, response_model_exclude_none=True)
def list_jobs(
    limit: int = Query(50, ge=1, le=200),
    orchestrator: ConversionOrchestrator = Depends(get_orchestrator),
) -> JobList:
    latest = orchestrator.list_jobs(limit)
    return JobList(jobs=[JobStatus.from_record(JobRecord.from_payload(item)) for item in reversed(latest)])


@router.get("/output/{job_id}/{name}", summary="Download a job archive")
def download_output(job_id: str, name: str, config: AppConfig = Depends(get_config)) -> FileResponse:
    if not name.endswith(".zip") or slugify(name) != name or slugify(job_id) != job_id:
        raise HTTPException(status_code=404, detail="ARCHIVE_NOT_FOUND")
    archive = workspace_paths(config, job_id).output_dir / name
    if not archive.is_file():
        raise HTTPException(status_code=404, detail="ARCHIVE_NOT_FOUND")
    return FileResponse(archive, media_type="application/zip", filename=name)


def _parse_settings(raw: str | None) -> dict[str, str]:
    if not raw:
        return {}
    try:
        payload: Any = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="INVALID_SETTINGS_JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="INVALID_SETTINGS_JSON")
    return {str(key): _as_setting(value) for key, value in payload.items()}


def _as_setting(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        raise HTTPException(status_code=400, detail="INVALID_SETTINGS_JSON")
    if isinstance(value, (int, float)):
        return str(value)
    raise HTTPException(status_code=400, detail="INVALID_SETTINGS_JSON")


__all__ = ["router"]
