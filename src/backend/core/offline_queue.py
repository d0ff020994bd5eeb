"""
Offline queue for chat turns that failed on a transport error.

Queued payloads are replayed later through ``flush``; failed replays stay in
the queue with their attempt count and last error.
"""

from __future__ import annotations

import asyncio
import secrets
import time

from collections.abc import Awaitable, Callable
from pathlib import Path

from pydantic import ValidationError

from core.constants import get_settings
from models.memory_models import FlushResult, QueuedChatPayload, QueuedChatRequest
from utils.json_store import JSONStoreError, read_json, write_json
from utils.logger import logger

DEFAULT_FLUSH_ERROR = "Failed to process request"

QueueHandler = Callable[[QueuedChatPayload], Awaitable[object]]
QueueFilter = Callable[[QueuedChatRequest], bool]


def _generate_queue_id() -> str:
    return f"queue_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


class OfflineQueue:
    """JSON-file backed FIFO of queued chat requests."""

    def __init__(self, path: Path | None = None):
        self.path = path or get_settings().offline_queue_path
        self._lock = asyncio.Lock()

    async def _load(self) -> list[QueuedChatRequest]:
        try:
            raw = await read_json(self.path)
        except JSONStoreError as e:
            logger.warning(f"Offline queue unreadable, starting empty: {e}")
            return []
        if not isinstance(raw, list):
            return []

        queue: list[QueuedChatRequest] = []
        for item in raw:
            try:
                queue.append(QueuedChatRequest.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Dropping malformed queued request: {e}")
        return queue

    async def _persist(self, queue: list[QueuedChatRequest]) -> None:
        await write_json(self.path, [item.model_dump(mode="json") for item in queue])

    async def enqueue(self, payload: QueuedChatPayload) -> QueuedChatRequest:
        async with self._lock:
            queue = await self._load()
            entry = QueuedChatRequest(
                id=_generate_queue_id(),
                created_at=int(time.time() * 1000),
                attempts=0,
                payload=payload,
            )
            queue.append(entry)
            await self._persist(queue)
        logger.info(f"Queued chat request {entry.id}", queue_size=len(queue))
        return entry

    async def get_queued(self) -> list[QueuedChatRequest]:
        async with self._lock:
            return await self._load()

    async def flush(
        self,
        handler: QueueHandler,
        item_filter: QueueFilter | None = None,
        max_items: int | None = None,
    ) -> FlushResult:
        """Replay queued requests in order.

        Handlers run outside the lock and may enqueue new items, which are kept.

        Args:
            handler: Async callable replaying one payload; raising marks it failed
            item_filter: Only items it accepts are attempted; the rest stay queued
            max_items: Stop attempting after this many successful replays

        Returns:
            FlushResult with processed, failed and remaining counts
        """
        async with self._lock:
            snapshot = await self._load()

        succeeded: set[str] = set()
        failures: dict[str, str] = {}

        for item in snapshot:
            if item_filter is not None and not item_filter(item):
                continue
            if max_items is not None and len(succeeded) >= max_items:
                continue
            try:
                await handler(item.payload)
                succeeded.add(item.id)
            except Exception as e:
                logger.warning(f"Queued request {item.id} failed: {e}")
                failures[item.id] = str(e) or DEFAULT_FLUSH_ERROR

        async with self._lock:
            remaining: list[QueuedChatRequest] = []
            for item in await self._load():
                if item.id in succeeded:
                    continue
                if item.id in failures:
                    item = item.model_copy(update={"attempts": item.attempts + 1, "last_error": failures[item.id]})
                remaining.append(item)
            await self._persist(remaining)

        processed = len(succeeded)
        failed = len(failures)
        logger.info(f"Flushed offline queue: {processed} processed, {failed} failed, {len(remaining)} remaining")
        return FlushResult(processed=processed, failed=failed, remaining=len(remaining))

    async def clear(self) -> None:
        async with self._lock:
            await self._persist([])
