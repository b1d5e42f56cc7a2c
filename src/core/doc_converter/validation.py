"""Validation of the flat settings map submitted with each job."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Sequence


class Mode(str, Enum):
    CONVERT_TO_IMAGES = "convertToImages"
    EXTRACT_IMAGES = "extractImages"
    EXTRACT_TEXT = "extractText"


IMAGE_TYPES: tuple[str, ...] = ("rawImages", "clippedImages")
TEXT_TYPES: tuple[str, ...] = ("plainText", "wordlist", "structuredText")
SCALING_RANGE: tuple[float, float] = (0.1, 10.0)
_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


class SettingsValidationError(ValueError):
    def __init__(self, violations: Sequence[str]) -> None:
        super().__init__("\n".join(violations))
        self.violations = list(violations)


@dataclass(frozen=True, slots=True)
class ConversionParameters:
    mode: Mode
    sub_type: str | None = None
    format: str | None = None
    scaling: float = 1.0
    password: str | None = None


def _format_values(values: Iterable[str]) -> str:
    return "[" + ", ".join(values) + "]"


def _format_number(value: float) -> str:
    return f"{value:g}"


class SettingsValidator:
    """Consumes recognised settings rule by rule and aggregates every violation.

    Keys left over once all rules for the active mode have run are reported by
    :meth:`validates` as unrecognised.
    """

    def __init__(self, params: Mapping[str, str]) -> None:
        self._params = dict(params)
        self.violations: list[str] = []

    def require_string(self, setting: str, values: Sequence[str]) -> str | None:
        return self._validate_string(setting, values, None, required=True)

    def optional_string(
        self,
        setting: str,
        values: Sequence[str] | None = None,
        pattern: str | None = None,
    ) -> str | None:
        return self._validate_string(setting, values, pattern, required=False)

    def require_float(self, setting: str, bounds: tuple[float, float]) -> float | None:
        return self._validate_float(setting, bounds, required=True)

    def optional_float(self, setting: str, bounds: tuple[float, float]) -> float | None:
        return self._validate_float(setting, bounds, required=False)

    def _validate_string(
        self,
        setting: str,
        values: Sequence[str] | None,
        pattern: str | None,
        *,
        required: bool,
    ) -> str | None:
        label = "Required" if required else "Optional"
        if setting not in self._params:
            if required:
                self.violations.append(
                    f'Required setting "{setting}" missing. Valid values are {_format_values(values or [])}.'
                )
            return None
        value = self._params.pop(setting)
        if values is not None and value not in values:
            self.violations.append(
                f'{label} setting "{setting}" has incorrect value. Valid values are {_format_values(values)}.'
            )
            return None
        if pattern is not None and re.fullmatch(pattern, value) is None:
            self.violations.append(
                f'{label} setting "{setting}" has incorrect value. Value must match the pattern {pattern}.'
            )
            return None
        return value

    def _validate_float(
        self, setting: str, bounds: tuple[float, float], *, required: bool
    ) -> float | None:
        low, high = bounds
        range_text = f"between {_format_number(low)} and {_format_number(high)}"
        label = "Required" if required else "Optional"
        if setting not in self._params:
            if required:
                self.violations.append(
                    f'Required setting "{setting}" missing. Valid values are {range_text}.'
                )
            return None
        raw = self._params.pop(setting)
        number = float(raw) if _NUMBER_RE.fullmatch(raw) else math.nan
        if not math.isfinite(number) or number < low or number > high:
            self.violations.append(
                f'{label} setting "{setting}" has incorrect value. Valid values are {range_text}.'
            )
            return None
        return number

    def validates(self) -> bool:
        if self._params:
            unknown = "\n".join(f"    {key}" for key in sorted(self._params))
            self.violations.append(f"The following settings were not recognised.\n{unknown}")
            self._params.clear()
        return not self.violations

    @property
    def message(self) -> str:
        return "\n".join(self.violations)


def _parse_mode(value: str | None) -> Mode | None:
    try:
        return Mode(value)
    except ValueError:
        return None


def validate_settings(settings: Mapping[str, str], formats: Sequence[str]) -> ConversionParameters:
    """Validate *settings* as a unit and return the typed parameter set.

    Raises :class:`SettingsValidationError` carrying every violation found.
    An invalid mode is reported on its own since the remaining rules depend on it.
    """

    params = dict(settings)
    mode = _parse_mode(params.pop("mode", None))
    if mode is None:
        valid = _format_values(m.value for m in Mode)
        raise SettingsValidationError(
            [f'Required setting "mode" is missing or has incorrect value. Valid values are {valid}.']
        )

    validator = SettingsValidator(params)
    sub_type: str | None = None
    image_format: str | None = None
    scaling: float | None = None
    if mode is Mode.CONVERT_TO_IMAGES:
        image_format = validator.require_string("format", formats)
        scaling = validator.optional_float("scaling", SCALING_RANGE)
    elif mode is Mode.EXTRACT_IMAGES:
        sub_type = validator.require_string("type", IMAGE_TYPES)
        image_format = validator.require_string("format", formats)
    elif mode is Mode.EXTRACT_TEXT:
        sub_type = validator.require_string("type", TEXT_TYPES)
    password = validator.optional_string("password")

    if not validator.validates():
        raise SettingsValidationError(validator.violations)
    return ConversionParameters(
        mode=mode,
        sub_type=sub_type,
        format=image_format,
        scaling=scaling if scaling is not None else 1.0,
        password=password,
    )


__all__ = [
    "ConversionParameters",
    "IMAGE_TYPES",
    "Mode",
    "SCALING_RANGE",
    "SettingsValidationError",
    "SettingsValidator",
    "TEXT_TYPES",
    "validate_settings",
]
