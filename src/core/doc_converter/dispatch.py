"""Mapping of validated parameters onto a single conversion operation.

Each (mode, sub-type) pair has its own variant carrying the arguments its
operation needs. ``OPERATIONS`` is the dispatch table consulted by both the
in-process runner and the worker process.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Callable, Union

from . import operations
from .validation import ConversionParameters, Mode


class DispatchError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class RenderPages:
    source: Path
    destination: Path
    format: str
    scaling: float = 1.0
    password: str | None = None


@dataclass(frozen=True, slots=True)
class ExtractRawImages:
    source: Path
    destination: Path
    format: str
    password: str | None = None


@dataclass(frozen=True, slots=True)
class ExtractClippedImages:
    source: Path
    destination: Path
    format: str
    password: str | None = None


@dataclass(frozen=True, slots=True)
class ExtractPlainText:
    source: Path
    destination: Path
    password: str | None = None


@dataclass(frozen=True, slots=True)
class ExtractWordlist:
    source: Path
    destination: Path
    password: str | None = None


@dataclass(frozen=True, slots=True)
class ExtractStructuredText:
    source: Path
    destination: Path
    password: str | None = None


Conversion = Union[
    RenderPages,
    ExtractRawImages,
    ExtractClippedImages,
    ExtractPlainText,
    ExtractWordlist,
    ExtractStructuredText,
]

Operation = Callable[..., int]

OPERATIONS: dict[type, Operation] = {
    RenderPages: operations.render_pages,
    ExtractRawImages: operations.extract_raw_images,
    ExtractClippedImages: operations.extract_clipped_images,
    ExtractPlainText: operations.extract_plain_text,
    ExtractWordlist: operations.extract_wordlist,
    ExtractStructuredText: operations.extract_structured_text,
}

_VARIANTS: dict[tuple[Mode, str | None], type] = {
    (Mode.CONVERT_TO_IMAGES, None): RenderPages,
    (Mode.EXTRACT_IMAGES, "rawImages"): ExtractRawImages,
    (Mode.EXTRACT_IMAGES, "clippedImages"): ExtractClippedImages,
    (Mode.EXTRACT_TEXT, "plainText"): ExtractPlainText,
    (Mode.EXTRACT_TEXT, "wordlist"): ExtractWordlist,
    (Mode.EXTRACT_TEXT, "structuredText"): ExtractStructuredText,
}

_BY_NAME: dict[str, type] = {variant.__name__: variant for variant in OPERATIONS}


def build_conversion(params: ConversionParameters, source: Path, destination: Path) -> Conversion:
    variant = _VARIANTS.get((params.mode, params.sub_type))
    if variant is None:
        raise DispatchError(
            f"Unrecognised mode specified: {getattr(params.mode, 'value', params.mode)}"
            + (f" with type {params.sub_type}" if params.sub_type else "")
        )
    if variant is RenderPages:
        if not params.format:
            raise DispatchError("Image rendering requires an output format")
        return RenderPages(source, destination, params.format, params.scaling, params.password)
    if variant in {ExtractRawImages, ExtractClippedImages}:
        if not params.format:
            raise DispatchError("Image extraction requires an output format")
        return variant(source, destination, params.format, params.password)
    return variant(source, destination, params.password)


def operation_for(conversion: Conversion) -> Operation:
    try:
        return OPERATIONS[type(conversion)]
    except KeyError as exc:
        raise DispatchError(f"No operation registered for {type(conversion).__name__}") from exc


def to_payload(conversion: Conversion) -> str:
    data = asdict(conversion)
    data["source"] = str(conversion.source)
    data["destination"] = str(conversion.destination)
    return json.dumps({"kind": type(conversion).__name__, "arguments": data}, sort_keys=True)


def conversion_from_payload(payload: str) -> Conversion:
    data = json.loads(payload)
    variant = _BY_NAME.get(str(data.get("kind")))
    if variant is None:
        raise DispatchError(f"Unknown conversion kind: {data.get('kind')!r}")
    arguments = dict(data.get("arguments", {}))
    known = {item.name for item in fields(variant)}
    unexpected = set(arguments) - known
    if unexpected:
        raise DispatchError(f"Unexpected arguments for {variant.__name__}: {sorted(unexpected)}")
    arguments["source"] = Path(arguments["source"])
    arguments["destination"] = Path(arguments["destination"])
    return variant(**arguments)


__all__ = [
    "Conversion",
    "DispatchError",
    "ExtractClippedImages",
    "ExtractPlainText",
    "ExtractRawImages",
    "ExtractStructuredText",
    "ExtractWordlist",
    "OPERATIONS",
    "RenderPages",
    "build_conversion",
    "conversion_from_payload",
    "operation_for",
    "to_payload",
]
