"""Helpers that keep blocking job work off the event loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

from fastapi import UploadFile

T = TypeVar("T")

UPLOAD_CHUNK_BYTES = 1024 * 1024


async def run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Execute *func* in a worker thread and return the result."""

    return await asyncio.to_thread(func, *args, **kwargs)


async def read_upload(upload: UploadFile, chunk_size: int = UPLOAD_CHUNK_BYTES) -> bytes:
    chunks: list[bytes] = []
    while chunk := await upload.read(chunk_size):
        chunks.append(chunk)
    return b"".join(chunks)


__all__ = ["read_upload", "run_sync"]
