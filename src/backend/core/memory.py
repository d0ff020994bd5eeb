"""
Long-term memory store persisted as a JSON array.

Entries are loaded lazily on first use. Expired entries (``now - created_at >
ttl``) are purged before every read.
"""

from __future__ import annotations

import asyncio
import secrets
import time

from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from core.constants import MEMORY_DEFAULT_LIMIT, get_settings
from models.memory_models import MemoryEntry, MemoryType
from utils.json_store import JSONStoreError, read_json, write_json
from utils.logger import logger


def _now_ms() -> int:
    return int(time.time() * 1000)


def _generate_memory_id() -> str:
    return f"mem_{_now_ms()}_{secrets.token_hex(6)}"


class MemoryStore:
    """JSON-file backed memory for the agent."""

    def __init__(self, path: Path | None = None):
        self.path = path or get_settings().memory_store_path
        self._entries: list[MemoryEntry] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _load_if_needed(self) -> None:
        if self._loaded:
            return
        try:
            raw = await read_json(self.path)
            if isinstance(raw, list):
                self._entries = [MemoryEntry.model_validate(item) for item in raw]
        except (JSONStoreError, ValidationError) as e:
            logger.warning(f"Failed to load memory store: {e}")
            self._entries = []
        self._loaded = True
        await self._purge_expired()

    async def _persist(self) -> None:
        try:
            await write_json(self.path, [entry.model_dump(mode="json") for entry in self._entries])
        except OSError as e:
            logger.warning(f"Failed to persist memory store: {e}")

    async def _purge_expired(self) -> int:
        now = _now_ms()
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if not entry.is_expired(now)]
        removed = before - len(self._entries)
        if removed:
            logger.debug(f"Purged {removed} expired memories")
            await self._persist()
        return removed

    async def add_memory(
        self,
        type: MemoryType,
        content: str,
        importance: float,
        ttl: int | None = None,
        id: str | None = None,
    ) -> MemoryEntry:
        """Store a new memory and persist the file."""
        async with self._lock:
            await self._load_if_needed()
            now = _now_ms()
            entry = MemoryEntry(
                id=id or _generate_memory_id(),
                type=type,
                content=content,
                importance=importance,
                created_at=now,
                last_accessed_at=now,
                ttl=ttl,
            )
            self._entries.append(entry)
            await self._persist()
            return entry

    async def get_relevant_memories(
        self,
        limit: int = MEMORY_DEFAULT_LIMIT,
        min_importance: float = 0.0,
        types: Sequence[MemoryType] | None = None,
    ) -> list[MemoryEntry]:
        """Most important memories first, most recently used breaking ties.

        Returned entries have ``last_accessed_at`` bumped to now.
        """
        async with self._lock:
            await self._load_if_needed()
            await self._purge_expired()

            candidates = [
                entry
                for entry in self._entries
                if entry.importance >= min_importance and (types is None or entry.type in types)
            ]
            candidates.sort(key=lambda entry: (entry.importance, entry.last_accessed_at), reverse=True)
            selected = candidates[: max(limit, 0)]

            if selected:
                now = _now_ms()
                for entry in selected:
                    entry.last_accessed_at = now
                await self._persist()

            return [entry.model_copy() for entry in selected]

    async def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        async with self._lock:
            await self._load_if_needed()
            return await self._purge_expired()

    async def get_all(self) -> list[MemoryEntry]:
        async with self._lock:
            await self._load_if_needed()
            return [entry.model_copy() for entry in self._entries]

    async def clear(self) -> None:
        async with self._lock:
            self._entries = []
            self._loaded = True
            await self._persist()
