from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Mapping

from .config import AppConfig
from .dispatch import DispatchError, build_conversion
from .errors import ErrorCode, InvalidDocumentError, JobFailure, PasswordRequiredError
from .logging import RunLogEntry, RunLogger, StageTimings
from .office import OfficeConverter, SofficeConverter, pdf_sibling
from .packaging import OutputPackager, build_remote_storage
from .probe import DocumentProber, Prober
from .runner import BoundedProcessRunner, InProcessRunner, OutcomeStatus, SubprocessRunner
from .store import JobNotFoundError, JobRecord, JobStateError, JobStore
from .utils import WorkspacePaths, ensure_workspace, generate_job_id, slugify, split_name, workspace_paths
from .validation import ConversionParameters, SettingsValidationError, validate_settings

logger = logging.getLogger(__name__)

_RUNNER_ERROR_CODES = {
    int(ErrorCode.INVALID_DOCUMENT),
    int(ErrorCode.PASSWORD_REQUIRED),
    int(ErrorCode.CONVERSION_FAILED),
}


def build_runner(config: AppConfig) -> BoundedProcessRunner:
    if config.runtime.execution == "in_process":
        return InProcessRunner()
    return SubprocessRunner(memory_limit_mb=config.runtime.worker_memory_mb)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class ConversionOrchestrator:
    """Runs each submitted job on a bounded worker pool, one thread per job.

    A job moves ``queued -> processing -> processed | error``. All failures
    after submission are classified into :class:`ErrorCode` and recorded once;
    nothing is re-raised past :meth:`process`.
    """

    def __init__(
        self,
        config: AppConfig,
        store: JobStore | None = None,
        *,
        runner: BoundedProcessRunner | None = None,
        prober: Prober | None = None,
        office_converter: OfficeConverter | None = None,
        packager: OutputPackager | None = None,
    ) -> None:
        self._config = config
        self._store = store or JobStore(config)
        self._runner = runner or build_runner(config)
        self._prober = prober or DocumentProber()
        self._office = office_converter or SofficeConverter(config.office)
        self._packager = packager or OutputPackager(config, build_remote_storage(config))
        pool_size = config.runtime.jobs.worker_pool_size
        if pool_size <= 0:
            pool_size = min(4, max(1, os.cpu_count() or 1))
        self._executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="job-worker")
        self._futures: dict[str, Future[JobRecord | None]] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def store(self) -> JobStore:
        return self._store

    def submit(
        self,
        filename: str,
        payload: bytes,
        settings: Mapping[str, str],
        *,
        job_id: str | None = None,
    ) -> JobRecord:
        """Validate *settings*, save the upload and queue the job.

        Raises :class:`SettingsValidationError` before anything is created when
        the settings are invalid, and :class:`JobStateError` without touching
        any file when *job_id* is already taken.
        """

        settings = {str(k): str(v) for k, v in settings.items()}
        validate_settings(settings, self._config.encoder_formats)
        job_id = job_id or generate_job_id()
        if slugify(job_id) != job_id:
            raise ValueError(f"Job id {job_id!r} contains unsupported characters")
        with self._lock:
            if self._closed:
                raise RuntimeError("Orchestrator is shut down; no new jobs are accepted")
        if self._store.get(job_id) is not None:
            raise JobStateError(f"Job {job_id} already exists")
        sanitized = slugify(filename or "upload")
        input_dir = workspace_paths(self._config, job_id).input_dir
        try:
            input_dir.mkdir(parents=True, exist_ok=False)
        except FileExistsError as exc:
            raise JobStateError(f"Job {job_id} already exists") from exc
        (input_dir / sanitized).write_bytes(payload)

        record = self._store.create(
            JobRecord(job_id=job_id, settings=settings, source_filename=sanitized)
        )
        logger.info("Queued job %s for %s", job_id, sanitized)
        try:
            future = self._executor.submit(self.process, job_id)
        except RuntimeError:
            self._reject(job_id, "Job could not be scheduled: orchestrator is shut down")
            raise
        with self._lock:
            self._futures[job_id] = future
        future.add_done_callback(lambda _: self._forget(job_id))
        return record

    def _reject(self, job_id: str, message: str) -> None:
        try:
            self._store.start(job_id)
        except (JobStateError, JobNotFoundError, OSError):
            logger.exception("Unable to start rejected job %s", job_id)
            return
        self._fail(job_id, ErrorCode.INTERNAL, message)

    def _forget(self, job_id: str) -> None:
        with self._lock:
            self._futures.pop(job_id, None)

    def wait(self, job_id: str, timeout: float | None = None) -> JobRecord | None:
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self._store.get(job_id)

    def process(self, job_id: str) -> JobRecord | None:
        record = self._store.get(job_id)
        if record is None:
            logger.error("Job %s vanished before processing", job_id)
            return None
        timings = StageTimings()
        paths: WorkspacePaths | None
        try:
            paths = ensure_workspace(self._config, job_id)
        except OSError:
            logger.exception("Unable to create workspace for job %s", job_id)
            paths = None
        try:
            self._store.start(job_id)
        except (JobStateError, JobNotFoundError, OSError):
            logger.exception("Job %s could not be started", job_id)
            return self._store.get(job_id)

        try:
            if paths is None:
                raise JobFailure(ErrorCode.INTERNAL, "Unable to create job workspace")
            final = self._execute(record, paths, timings)
        except JobFailure as exc:
            final = self._fail(job_id, exc.code, str(exc))
        except (OSError, JobStateError) as exc:
            logger.exception("Infrastructure failure in job %s", job_id)
            final = self._fail(job_id, ErrorCode.INTERNAL, f"Internal error: {exc}")
        except Exception as exc:
            logger.exception("Unexpected failure in job %s", job_id)
            final = self._fail(job_id, ErrorCode.CONVERSION_FAILED, f"Conversion failed: {exc}")

        if paths is not None and final is not None:
            self._append_run_log(paths, final, timings)
        return final

    def _fail(self, job_id: str, code: ErrorCode, message: str) -> JobRecord | None:
        logger.warning("Job %s failed with %s: %s", job_id, int(code), message)
        try:
            return self._store.fail(job_id, int(code), message)
        except (JobStateError, JobNotFoundError, OSError):
            logger.exception("Unable to record failure of job %s", job_id)
            return self._store.get(job_id)

    def _execute(self, record: JobRecord, paths: WorkspacePaths, timings: StageTimings) -> JobRecord:
        job_id = record.job_id
        try:
            params = validate_settings(record.settings, self._config.encoder_formats)
        except SettingsValidationError as exc:
            raise JobFailure(ErrorCode.CONVERSION_FAILED, f"Invalid settings: {exc}") from exc

        source = paths.input_dir / (record.source_filename or "upload")
        stem, extension = split_name(source.name)
        start = time.perf_counter()
        pdf_path = source if extension == "pdf" else self._preconvert(source)
        timings.preconvert_ms = _elapsed_ms(start)

        start = time.perf_counter()
        page_count = self._probe(pdf_path, params)
        timings.probe_ms = _elapsed_ms(start)
        self._store.set_custom_values(job_id, {"pageCount": str(page_count), "pagesConverted": "0"})

        name = slugify(stem)
        start = time.perf_counter()
        self._convert(job_id, params, pdf_path, paths.output_dir / name)
        timings.convert_ms = _elapsed_ms(start)

        start = time.perf_counter()
        result = self._packager.package(job_id, name)
        timings.package_ms = _elapsed_ms(start)
        logger.info("Job %s processed: %s", job_id, result.download_url)
        return self._store.complete(job_id, result.custom_fields())

    def _preconvert(self, source: Path) -> Path:
        outcome = self._office.convert_to_pdf(source)
        if outcome.status is OutcomeStatus.TIMEOUT:
            raise JobFailure(
                ErrorCode.OFFICE_TIMEOUT,
                f"Office conversion timed out after {self._config.office.timeout_s:g} seconds",
            )
        if outcome.status is OutcomeStatus.ERROR:
            raise JobFailure(ErrorCode.OFFICE_FAILED, f"Office conversion failed: {outcome.detail}")
        pdf_path = pdf_sibling(source)
        if not pdf_path.exists():
            raise JobFailure(ErrorCode.OFFICE_NO_OUTPUT, f"Office conversion produced no PDF for {source.name}")
        return pdf_path

    def _probe(self, pdf_path: Path, params: ConversionParameters) -> int:
        try:
            result = self._prober.probe(pdf_path, params.password)
        except PasswordRequiredError as exc:
            raise JobFailure(ErrorCode.PASSWORD_REQUIRED, str(exc)) from exc
        except InvalidDocumentError as exc:
            raise JobFailure(ErrorCode.INVALID_DOCUMENT, str(exc)) from exc
        return result.page_count

    def _convert(self, job_id: str, params: ConversionParameters, source: Path, destination: Path) -> None:
        try:
            conversion = build_conversion(params, source, destination)
        except DispatchError as exc:
            raise JobFailure(ErrorCode.CONVERSION_FAILED, str(exc)) from exc

        def _progress(units_done: int) -> None:
            self._store.set_custom_values(job_id, {"pagesConverted": str(units_done)})

        budget = self._config.runtime.max_conversion_duration_s
        outcome = self._runner.run(conversion, budget, _progress)
        if outcome.status is OutcomeStatus.TIMEOUT:
            raise JobFailure(
                ErrorCode.CONVERSION_TIMEOUT,
                f"Conversion exceeded the maximum duration of {budget:g} seconds",
            )
        if outcome.status is OutcomeStatus.ERROR:
            code = outcome.code if outcome.code in _RUNNER_ERROR_CODES else int(ErrorCode.CONVERSION_FAILED)
            raise JobFailure(ErrorCode(code), outcome.detail or "Conversion failed")

    def _append_run_log(self, paths: WorkspacePaths, record: JobRecord, timings: StageTimings) -> None:
        entry = RunLogEntry(
            job_id=record.job_id,
            source=record.source_filename or "",
            state=record.state.value,
            settings=record.settings,
            error_code=record.error_code,
            error_message=record.error_message,
            timings=timings,
            custom_fields=record.custom_fields,
        )
        try:
            RunLogger(paths.log_file).append(entry)
        except OSError:
            logger.warning("Unable to write run log for job %s", record.job_id, exc_info=True)

    def get_status(self, job_id: str) -> JobRecord | None:
        return self._store.get(job_id)

    def list_jobs(self, limit: int = 50) -> list[dict[str, object]]:
        return self._store.list_latest(limit)

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)


__all__ = ["ConversionOrchestrator", "build_runner"]
