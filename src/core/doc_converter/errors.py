"""Error taxonomy surfaced to clients polling job status."""

from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    INTERNAL = 500
    OFFICE_TIMEOUT = 1050
    INVALID_DOCUMENT = 1060
    PASSWORD_REQUIRED = 1070
    OFFICE_NO_OUTPUT = 1080
    OFFICE_FAILED = 1100
    CONVERSION_FAILED = 1220
    CONVERSION_TIMEOUT = 1230


class JobFailure(RuntimeError):
    """A classified failure that ends a job in the ``error`` state."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code


class InvalidDocumentError(RuntimeError):
    pass


class PasswordRequiredError(RuntimeError):
    pass


class NoStructuredContentError(RuntimeError):
    pass


class ConversionTimeout(RuntimeError):
    """Raised at a duration checkpoint once the conversion budget has elapsed."""


def error_code_for(exc: BaseException) -> ErrorCode:
    if isinstance(exc, JobFailure):
        return exc.code
    if isinstance(exc, InvalidDocumentError):
        return ErrorCode.INVALID_DOCUMENT
    if isinstance(exc, PasswordRequiredError):
        return ErrorCode.PASSWORD_REQUIRED
    if isinstance(exc, ConversionTimeout):
        return ErrorCode.CONVERSION_TIMEOUT
    return ErrorCode.CONVERSION_FAILED


__all__ = [
    "ConversionTimeout",
    "ErrorCode",
    "error_code_for",
    "InvalidDocumentError",
    "JobFailure",
    "NoStructuredContentError",
    "PasswordRequiredError",
]
