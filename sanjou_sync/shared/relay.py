"""
Completion Relay: at-least-once delivery of block completions to the
external task app.

Completions are queued in memory and merged into
``<shared_dir>/completions.json`` by a background run. The file is a
pretty-printed JSON array of ``{taskId, completedAt, duration, blockId?}``
and is read-modify-written atomically. Entries are deduplicated on
``(taskId, completedAt)``, so delivering an item twice is harmless.

Only one run is active at a time; triggers while a run is in flight
coalesce into it. Failed items are retried with exponential backoff
until their retry count reaches the ceiling, then dropped (logged only).
The queue is not persisted across restarts.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..config import COMPLETIONS_FILE_NAME, default_relay_retry
from ..exceptions import FormatError, PermanentIOError, SanjouSyncError
from ..identity import now_ms
from ..local.file_ops import read_json, write_json_atomic
from ..resilience import RetryConfig, compute_backoff

logger = logging.getLogger(__name__)


def iso_now() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def dedup_key(entry: dict[str, Any]) -> tuple[Any, Any]:
    return (entry.get("taskId"), entry.get("completedAt"))


@dataclass
class PendingCompletion:
    task_id: str
    duration_minutes: float
    completed_at: str = field(default_factory=iso_now)
    block_id: str | None = None
    retry_count: int = 0
    queued_at: int = field(default_factory=now_ms)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.task_id, self.completed_at)

    def to_file_entry(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "taskId": self.task_id,
            "completedAt": self.completed_at,
            "duration": self.duration_minutes,
        }
        if self.block_id is not None:
            entry["blockId"] = self.block_id
        return entry


class CompletionRelay:
    """Queues completions and writes them to the shared completions file."""

    def __init__(
        self,
        shared_dir: Path,
        retry_config: RetryConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.path = Path(shared_dir) / COMPLETIONS_FILE_NAME
        self.retry_config = retry_config or default_relay_retry()
        self._rng = rng
        self._queue: list[PendingCompletion] = []
        self._processing = False
        self._current: asyncio.Task | None = None
        self._retry_handle: asyncio.TimerHandle | None = None

        self.last_retry_delay: float | None = None
        self.written_count = 0
        self.dropped_count = 0

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def pending(self) -> list[PendingCompletion]:
        return list(self._queue)

    @property
    def retry_scheduled(self) -> bool:
        return self._retry_handle is not None

    def record(
        self,
        task_id: str,
        duration_minutes: float,
        block_id: str | None = None,
        *,
        completed_at: str | None = None,
    ) -> asyncio.Task | None:
        """Queue a completion and start processing; never blocks.

        Returns:
            The processing task that was started, or None when the
            completion joined a run already in flight (or no event loop is
            running yet, in which case flush() writes it)
        """
        item = PendingCompletion(
            task_id=task_id,
            duration_minutes=duration_minutes,
            completed_at=completed_at or iso_now(),
            block_id=block_id,
        )
        self._queue.append(item)
        logger.info("Queued completion for task %s", task_id)
        return self._trigger()

    def _trigger(self) -> asyncio.Task | None:
        if self._processing or not self._queue:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the queue is written by the next flush()
            return None
        self._processing = True
        self._current = loop.create_task(self._process())
        return self._current

    async def _read_existing(self) -> list[Any]:
        existing = await read_json(self.path)
        if existing is None:
            return []
        if not isinstance(existing, list):
            raise FormatError(str(self.path), "expected a JSON array")
        return existing

    async def _process(self) -> None:
        batch = list(self._queue)
        succeeded = False
        try:
            existing = await self._read_existing()
            seen = {dedup_key(entry) for entry in existing if isinstance(entry, dict)}

            staged: list[dict[str, Any]] = []
            for item in batch:
                if item.dedup_key not in seen:
                    seen.add(item.dedup_key)
                    staged.append(item.to_file_entry())

            if staged:
                await write_json_atomic(self.path, [*existing, *staged])
                self.written_count += len(staged)
                logger.info("Wrote %d completion(s) to %s", len(staged), self.path)

            batch_ids = {id(item) for item in batch}
            self._queue = [item for item in self._queue if id(item) not in batch_ids]
            succeeded = True
        except SanjouSyncError as e:
            logger.warning("Failed to write completions: %s", e.message)
            self._handle_failure(batch)
        finally:
            self._processing = False

        # Items queued while this run was writing
        if succeeded and self._queue:
            self._trigger()

    def _handle_failure(self, batch: list[PendingCompletion]) -> None:
        batch_ids = {id(item) for item in batch}
        kept: list[PendingCompletion] = []
        for item in self._queue:
            if id(item) not in batch_ids:
                kept.append(item)
            elif item.retry_count < self.retry_config.max_retries:
                item.retry_count += 1
                kept.append(item)
            else:
                self.dropped_count += 1
                error = PermanentIOError(f"completion for task {item.task_id}", item.retry_count + 1)
                logger.error("Dropping completion: %s", error.message)
        self._queue = kept

        if self._queue:
            self._schedule_retry()

    def _schedule_retry(self) -> None:
        self._cancel_retry()
        attempt = min(item.retry_count for item in self._queue)
        delay = compute_backoff(attempt, self.retry_config, self._rng)
        self.last_retry_delay = delay
        self._retry_handle = asyncio.get_running_loop().call_later(delay, self._on_retry_timer)
        logger.info("Scheduling completion retry in %.1fs", delay)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self._trigger()

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    async def wait_idle(self) -> None:
        """Wait until no run is in flight (a scheduled retry may remain)."""
        while self._current is not None and not self._current.done():
            await asyncio.gather(self._current, return_exceptions=True)

    async def flush(self) -> None:
        """Retry now: cancel any scheduled retry and process the queue."""
        self._cancel_retry()
        self._trigger()
        await self.wait_idle()

    def clear(self) -> None:
        """Drop every pending completion and any scheduled retry."""
        self._queue = []
        self._cancel_retry()

    async def close(self) -> None:
        self._cancel_retry()
        await self.wait_idle()
