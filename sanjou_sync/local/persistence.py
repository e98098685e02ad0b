"""
Local Persistence Adapter.

Mirrors every document delta into an append-only JSONL log and replays
that log on startup. The log lives at ``<data_dir>/<document name>.jsonl``
with one record per delta:

    {"update": "<base64 delta>", "ts": "2024-01-01T09:00:00+00:00"}

Writes never block the caller: captured deltas are queued and written by
a background task in production order. Write failures are logged and
counted but not retried; the remote reconciler is an independent
durability path.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..config import DOCUMENT_NAME
from ..document import Origin, ReplicatedDocument, from_base64, to_base64
from ..exceptions import FormatError, StorageIOError
from .file_ops import append_jsonl, read_jsonl, write_jsonl_atomic

logger = logging.getLogger(__name__)


class LocalPersistence:
    """Durable append-only mirror of a ReplicatedDocument."""

    def __init__(
        self,
        document: ReplicatedDocument,
        data_dir: Path,
        document_name: str = DOCUMENT_NAME,
    ):
        self.document = document
        self.path = Path(data_dir) / f"{document_name}.jsonl"
        self._unsubscribe = None
        self._backlog: deque[dict[str, Any]] = deque()
        self._lock = asyncio.Lock()
        self._drain_task: asyncio.Task | None = None

        # Counters for observability
        self.loaded_records = 0
        self.skipped_records = 0
        self.write_failures = 0

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    @property
    def pending_writes(self) -> int:
        return len(self._backlog)

    async def load(self) -> None:
        """Replay the log into the document, then start capturing deltas.

        Resolves with whatever could be replayed: an unreadable log yields
        an empty document, an unreadable record is skipped.
        """
        try:
            records = await read_jsonl(self.path)
        except StorageIOError as e:
            logger.warning("Local log unavailable, starting from empty state: %s", e.message)
            records = []

        for position, record in enumerate(records):
            try:
                if not isinstance(record, dict) or not isinstance(record.get("update"), str):
                    raise FormatError(str(self.path), f"record {position} has no update")
                self.document.apply_delta(from_base64(record["update"]), Origin.STORAGE)
                self.loaded_records += 1
            except FormatError as e:
                self.skipped_records += 1
                logger.warning("Skipping unreadable log record: %s", e.message)

        logger.info(
            "Replayed %d records from %s (%d skipped)",
            self.loaded_records,
            self.path,
            self.skipped_records,
        )
        self.attach()

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.document.on_update(self._on_update)

    def detach(self) -> None:
        """Stop capturing deltas; the log on disk is left intact."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @staticmethod
    def _record(delta: bytes) -> dict[str, Any]:
        return {"update": to_base64(delta), "ts": datetime.now(UTC).isoformat()}

    def _on_update(self, delta: bytes, origin: Origin) -> None:
        if origin is Origin.STORAGE:
            return
        self._backlog.append(self._record(delta))
        self._schedule_drain()

    def _schedule_drain(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the backlog is written by the next flush()
            return
        self._drain_task = loop.create_task(self._drain())

    async def _drain(self) -> None:
        async with self._lock:
            while self._backlog:
                record = self._backlog.popleft()
                try:
                    await append_jsonl(self.path, record)
                except StorageIOError as e:
                    self.write_failures += 1
                    logger.error("Failed to persist delta: %s", e.message)

    async def flush(self) -> None:
        """Wait until every captured delta has been written (or failed)."""
        if self._drain_task is not None:
            await self._drain_task
        if self._backlog:
            await self._drain()

    async def compact(self) -> bool:
        """Rewrite the log as a single snapshot record.

        Returns:
            True if the log was rewritten, False if the write failed
        """
        await self.flush()
        async with self._lock:
            snapshot = self.document.snapshot()
            try:
                await write_jsonl_atomic(self.path, [self._record(snapshot)])
            except StorageIOError as e:
                logger.error("Failed to compact local log: %s", e.message)
                return False
        logger.info("Compacted %s to %d operations", self.path, self.document.operation_count)
        return True

    async def close(self) -> None:
        self.detach()
        await self.flush()
