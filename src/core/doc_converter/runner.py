"""Execution of conversion work under a wall-clock budget.

Two strategies share one interface and one tri-state outcome:

* :class:`InProcessRunner` calls the operation in the current thread and
  relies on :class:`DurationTracker` checkpoints (one per page or image) to
  stop it once the budget is spent.
* :class:`SubprocessRunner` runs the operation in a separate interpreter
  (``python -m core.doc_converter.worker``) which is killed on expiry. This
  also bounds memory and survives a crash of the conversion library.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence

from .dispatch import Conversion, Operation, OPERATIONS, operation_for, to_payload
from .errors import ConversionTimeout, ErrorCode, error_code_for

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

KILL_GRACE_S = 5.0
POLL_INTERVAL_S = 0.25
WORKER_MODULE = "core.doc_converter.worker"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    status: OutcomeStatus
    code: int = 0
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @classmethod
    def success(cls, detail: str = "") -> ProcessOutcome:
        return cls(OutcomeStatus.SUCCESS, 0, detail)

    @classmethod
    def timeout(cls, budget_s: float) -> ProcessOutcome:
        return cls(OutcomeStatus.TIMEOUT, -1, f"Exceeded maximum duration of {budget_s:g} seconds")

    @classmethod
    def error(cls, code: int, detail: str) -> ProcessOutcome:
        return cls(OutcomeStatus.ERROR, code, detail)


class DurationTracker:
    def __init__(
        self,
        budget_s: float,
        progress: ProgressCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._budget_s = budget_s
        self._deadline = clock() + max(budget_s, 0.0)
        self._progress = progress

    @property
    def expired(self) -> bool:
        return self._clock() > self._deadline

    @property
    def remaining(self) -> float:
        return max(self._deadline - self._clock(), 0.0)

    def checkpoint(self, units_done: int) -> None:
        if self._progress is not None:
            self._progress(units_done)
        if self.expired:
            raise ConversionTimeout(f"Conversion exceeded {self._budget_s:g} seconds after {units_done} units")


class BoundedProcessRunner(Protocol):
    def run(
        self, conversion: Conversion, budget_s: float, progress: ProgressCallback | None = None
    ) -> ProcessOutcome:  # pragma: no cover - interface
        ...


class InProcessRunner:
    def __init__(self, operations: Mapping[type, Operation] | None = None) -> None:
        self._operations = dict(operations) if operations is not None else OPERATIONS

    def run(
        self, conversion: Conversion, budget_s: float, progress: ProgressCallback | None = None
    ) -> ProcessOutcome:
        tracker = DurationTracker(budget_s, progress)
        operation = self._operations.get(type(conversion)) or operation_for(conversion)
        try:
            operation(conversion, tracker)
        except ConversionTimeout:
            return ProcessOutcome.timeout(budget_s)
        except Exception as exc:
            logger.exception("In-process conversion failed for %s", conversion.source)
            return ProcessOutcome.error(int(error_code_for(exc)), str(exc) or type(exc).__name__)
        if tracker.expired:
            return ProcessOutcome.timeout(budget_s)
        return ProcessOutcome.success()


def _memory_limiter(limit_mb: int) -> Callable[[], None] | None:
    if limit_mb <= 0 or os.name != "posix":
        return None

    def _apply() -> None:
        import resource

        limit = limit_mb * 1024 * 1024
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))

    return _apply


def _kill(process: subprocess.Popen[str]) -> None:
    if os.name == "posix":
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:
        process.kill()


def _stop(process: subprocess.Popen[str], readers: Sequence[threading.Thread]) -> None:
    _kill(process)
    try:
        process.wait(timeout=KILL_GRACE_S)
    except subprocess.TimeoutExpired:
        logger.error("Process %s did not exit after being killed", process.pid)
    for reader in readers:
        reader.join(timeout=KILL_GRACE_S)


def _pump(stream, sink: list[str], on_line: Callable[[str], None] | None) -> None:  # type: ignore[no-untyped-def]
    for line in stream:
        sink.append(line)
        if on_line is not None:
            on_line(line.rstrip("\n"))
    stream.close()


def _wait(
    process: subprocess.Popen[str],
    timeout_s: float,
    on_tick: Callable[[], None] | None,
) -> int:
    deadline = time.monotonic() + max(timeout_s, 0.0)
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise subprocess.TimeoutExpired(process.args, timeout_s)
        try:
            return process.wait(timeout=min(POLL_INTERVAL_S, remaining))
        except subprocess.TimeoutExpired:
            if on_tick is not None:
                on_tick()


def run_bounded_process(
    command: Sequence[str],
    timeout_s: float,
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    on_line: Callable[[str], None] | None = None,
    on_tick: Callable[[], None] | None = None,
    memory_limit_mb: int = 0,
) -> ProcessOutcome:
    """Run *command* and wait at most *timeout_s* seconds for it to exit.

    On expiry the whole process group is killed and a TIMEOUT outcome is
    returned. A non-zero exit yields ERROR with the exit status as code and the
    tail of stderr as detail. *on_line* runs on the stdout reader thread;
    *on_tick* runs on the calling thread between polls; if it raises, the
    process group is killed and reaped before the exception propagates.
    """

    try:
        process = subprocess.Popen(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=os.name == "posix",
            preexec_fn=_memory_limiter(memory_limit_mb),
        )
    except OSError as exc:
        logger.error("Unable to start %s: %s", command[0], exc)
        return ProcessOutcome.error(-1, f"Unable to start {command[0]}: {exc}")

    stdout: list[str] = []
    stderr: list[str] = []
    readers = [
        threading.Thread(target=_pump, args=(process.stdout, stdout, on_line), daemon=True),
        threading.Thread(target=_pump, args=(process.stderr, stderr, None), daemon=True),
    ]
    for reader in readers:
        reader.start()

    try:
        returncode = _wait(process, timeout_s, on_tick)
    except subprocess.TimeoutExpired:
        logger.warning("Killing %s after %.1fs (pid %s)", command[0], timeout_s, process.pid)
        _stop(process, readers)
        return ProcessOutcome.timeout(timeout_s)
    except BaseException:
        logger.warning("Killing %s (pid %s) after its caller failed", command[0], process.pid)
        _stop(process, readers)
        raise

    for reader in readers:
        reader.join(timeout=KILL_GRACE_S)
    if on_tick is not None:
        on_tick()
    if returncode != 0:
        tail = "".join(stderr[-20:]).strip()
        return ProcessOutcome.error(returncode, tail or f"{command[0]} exited with status {returncode}")
    return ProcessOutcome.success()


def _source_root() -> Path:
    return Path(__file__).resolve().parents[2]


class _LatestUnits:
    """Hands the newest progress value from the reader thread to the waiting thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: int | None = None

    def offer(self, value: int) -> None:
        with self._lock:
            self._value = value

    def take(self) -> int | None:
        with self._lock:
            value, self._value = self._value, None
        return value


class SubprocessRunner:
    def __init__(self, *, memory_limit_mb: int = 0, python: str | None = None) -> None:
        self._memory_limit_mb = memory_limit_mb
        self._python = python or sys.executable

    def command(self, conversion: Conversion) -> list[str]:
        return [self._python, "-m", WORKER_MODULE, to_payload(conversion)]

    def _environment(self) -> dict[str, str]:
        env = dict(os.environ)
        existing = env.get("PYTHONPATH")
        root = str(_source_root())
        env["PYTHONPATH"] = root if not existing else os.pathsep.join([root, existing])
        return env

    def run(
        self, conversion: Conversion, budget_s: float, progress: ProgressCallback | None = None
    ) -> ProcessOutcome:
        reported: list[tuple[int, str]] = []
        units = _LatestUnits()

        def _on_line(line: str) -> None:
            keyword, _, rest = line.partition(" ")
            if keyword == "progress":
                try:
                    units.offer(int(rest))
                except ValueError:
                    logger.debug("Ignoring malformed progress line: %r", line)
            elif keyword == "error":
                code, _, message = rest.partition(" ")
                try:
                    reported.append((int(code), message))
                except ValueError:
                    reported.append((int(ErrorCode.CONVERSION_FAILED), rest))

        def _on_tick() -> None:
            value = units.take()
            if value is not None and progress is not None:
                progress(value)

        outcome = run_bounded_process(
            self.command(conversion),
            budget_s,
            env=self._environment(),
            on_line=_on_line,
            on_tick=_on_tick,
            memory_limit_mb=self._memory_limit_mb,
        )
        if outcome.status is OutcomeStatus.ERROR and reported:
            code, message = reported[-1]
            return ProcessOutcome.error(code, message)
        if outcome.status is OutcomeStatus.ERROR:
            return ProcessOutcome.error(int(ErrorCode.CONVERSION_FAILED), outcome.detail)
        return outcome


__all__ = [
    "BoundedProcessRunner",
    "DurationTracker",
    "InProcessRunner",
    "OutcomeStatus",
    "ProcessOutcome",
    "SubprocessRunner",
    "run_bounded_process",
]
