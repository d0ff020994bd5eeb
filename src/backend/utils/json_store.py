"""
JSON file persistence for the local stores (memory, offline queue, prompt cache).

Writes go to a sibling temp file that is then renamed over the target, so a
crash mid-write never leaves a truncated document behind.
"""

from __future__ import annotations

import asyncio
import json
import os

from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import Any

import aiofiles

# Compact JSON with str fallback; store files are machine-read.
json_compact: Callable[..., str] = partial(json.dumps, separators=(",", ":"), default=str, ensure_ascii=False)


class JSONStoreError(Exception):
    """A store file exists but could not be read or decoded."""

    pass


async def read_json(path: Path) -> Any | None:
    """Read and decode a JSON document.

    Returns:
        The decoded document, or None when the file does not exist or is empty.

    Raises:
        JSONStoreError: If the file cannot be read or is not valid JSON.
    """
    if not path.exists():
        return None
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            raw = await f.read()
    except OSError as e:
        raise JSONStoreError(f"Failed to read {path}: {e}") from e

    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise JSONStoreError(f"Corrupt JSON in {path}: {e}") from e


async def write_json(path: Path, data: Any) -> None:
    """Atomically replace ``path`` with the JSON encoding of ``data``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
        await f.write(json_compact(data))
    await asyncio.to_thread(os.replace, tmp_path, path)


async def remove_json(path: Path) -> None:
    """Delete a store file if present."""
    await asyncio.to_thread(path.unlink, True)
