"""Asynchronous document conversion jobs: pages to images, image and text extraction."""

from .config import AppConfig, load_config
from .errors import ErrorCode, JobFailure
from .orchestrator import ConversionOrchestrator
from .store import JobRecord, JobState, JobStore
from .validation import SettingsValidationError, validate_settings

__all__ = [
    "AppConfig",
    "load_config",
    "ConversionOrchestrator",
    "ErrorCode",
    "JobFailure",
    "JobRecord",
    "JobState",
    "JobStore",
    "SettingsValidationError",
    "validate_settings",
]
