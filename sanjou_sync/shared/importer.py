"""
External Task Importer: read-only polling of the external app's task file.

``<shared_dir>/tasks.json`` is owned by another process. A missing file
is normal (that app may not have run yet) and maps to ``offline``. Lock
and busy errors are retried with backoff before a poll is counted as
failed. On failure the last good list is kept so the UI never blanks,
and notifications are de-duplicated and muted after a few repeats.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import TASKS_FILE_NAME, ImporterConfig
from ..exceptions import FormatError, SanjouSyncError, StorageIOError, TransientIOError
from ..local.file_ops import read_json, read_text, write_json_atomic
from ..notifications import Notifier
from ..resilience import retry_with_backoff
from ..status import StateBroadcaster, StateListener, SyncState

logger = logging.getLogger(__name__)

LOCKED_MESSAGE = "Task file is locked, will retry..."
FORMAT_MESSAGE = "Invalid task file format"
UNAVAILABLE_MESSAGE = "Sync temporarily unavailable"
RESTORED_MESSAGE = "Sync restored"


@dataclass
class SharedTask:
    """A task as published by the external app."""

    id: str
    content: str
    status: str
    value: float = 0
    time: float = 0
    tags: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "status": self.status,
            "value": self.value,
            "time": self.time,
        }
        if self.tags is not None:
            data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> SharedTask:
        """Parse one entry; missing or non-numeric value/time become 0.

        Raises:
            FormatError: If the entry is not an object with an id
        """
        if not isinstance(data, dict) or data.get("id") is None:
            raise FormatError(TASKS_FILE_NAME, "task entries must be objects with an id")
        tags = data.get("tags")
        return cls(
            id=str(data["id"]),
            content=str(data.get("content", "")),
            status=str(data.get("status", "")),
            value=_as_number(data.get("value")),
            time=_as_number(data.get("time")),
            tags=list(tags) if isinstance(tags, list) else None,
        )


def _as_number(raw: Any) -> float:
    if isinstance(raw, bool):
        return 0
    if isinstance(raw, (int, float)):
        return raw
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0


def parse_tasks(entries: list[Any]) -> list[SharedTask]:
    """Parse task entries, skipping the ones without an id."""
    tasks = []
    for entry in entries:
        try:
            tasks.append(SharedTask.from_dict(entry))
        except FormatError:
            logger.warning("Skipping malformed task entry: %r", entry)
    return tasks


def filter_tasks_by_status(tasks: Iterable[SharedTask], statuses: Iterable[str]) -> list[SharedTask]:
    wanted = set(statuses)
    return [task for task in tasks if task.status in wanted]


def task_priority(task: SharedTask) -> float:
    """value/time; zero time ranks first with positive value and last without."""
    if task.time > 0:
        return task.value / task.time
    return math.inf if task.value > 0 else 0.0


def sort_tasks_by_priority(tasks: Iterable[SharedTask]) -> list[SharedTask]:
    return sorted(tasks, key=task_priority, reverse=True)


class TaskImporter:
    """Polls the shared task file and keeps the last good task list."""

    def __init__(
        self,
        shared_dir: Path,
        cache_path: Path,
        config: ImporterConfig | None = None,
        notifier: Notifier | None = None,
        sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
    ):
        self.path = Path(shared_dir) / TASKS_FILE_NAME
        self.cache_path = Path(cache_path)
        self.config = config or ImporterConfig()
        self.notifier = notifier or Notifier()
        self._sleep = sleep

        self.tasks: list[SharedTask] = []
        self.last_error: str | None = None
        self._status = StateBroadcaster(SyncState.SYNCING)
        self._has_loaded = False
        self._previous_count: int | None = None
        self._last_notified_error: str | None = None
        self._consecutive_errors = 0
        self._poll_task: asyncio.Task | None = None

    @property
    def state(self) -> SyncState:
        return self._status.state

    def subscribe_state(self, listener: StateListener) -> Callable[[], None]:
        return self._status.subscribe(listener)

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    # -- cache --

    async def load_cache(self) -> None:
        """Show the last known tasks before the first poll completes."""
        try:
            cached = await read_json(self.cache_path)
        except StorageIOError as e:
            logger.warning("Failed to load cached tasks: %s", e.message)
            return
        if not isinstance(cached, list):
            return
        self.tasks = parse_tasks(cached)

    async def _save_cache(self) -> None:
        try:
            await write_json_atomic(self.cache_path, [task.to_dict() for task in self.tasks])
        except StorageIOError as e:
            logger.warning("Failed to cache tasks: %s", e.message)

    # -- polling --

    async def _read_tasks(self) -> list[SharedTask] | None:
        content = await read_text(self.path)
        if content is None:
            return None
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise FormatError(str(self.path), f"invalid JSON: {e}") from e
        if not isinstance(data, list):
            raise FormatError(str(self.path), "expected a JSON array")
        return parse_tasks(data)

    async def refresh(self) -> bool:
        """Poll the task file once.

        Returns:
            True if the poll succeeded (including a missing file)
        """
        self._status.set(SyncState.SYNCING)
        try:
            tasks = await retry_with_backoff(
                self._read_tasks,
                config=self.config.read_retry(),
                context_msg=str(self.path),
                sleep=self._sleep,
            )
        except SanjouSyncError as e:
            self._on_failure(e)
            return False

        self.last_error = None
        self._consecutive_errors = 0

        if tasks is None:
            logger.debug("No task file at %s", self.path)
            self._status.set(SyncState.OFFLINE)
            return True

        self.tasks = tasks
        if tasks:
            await self._save_cache()
        self._status.set(SyncState.SYNCED)
        self._notify_count_change(len(tasks))

        if self._last_notified_error is not None:
            self.notifier.success(RESTORED_MESSAGE, category="tasks")
            self._last_notified_error = None

        self._previous_count = len(tasks)
        self._has_loaded = True
        return True

    def _notify_count_change(self, count: int) -> None:
        if not self._has_loaded or self._previous_count is None:
            return
        diff = count - self._previous_count
        if diff > 0:
            self.notifier.success(
                f"{diff} task{'s' if diff > 1 else ''} synced from Subete", category="tasks"
            )
        elif diff < 0:
            self.notifier.info(f"Task list updated ({count} tasks)", category="tasks")

    def _on_failure(self, error: SanjouSyncError) -> None:
        self.last_error = error.message
        self._consecutive_errors += 1
        self._status.set(SyncState.ERROR)
        logger.warning(
            "Task import failed (%d consecutive): %s", self._consecutive_errors, error.message
        )

        if (
            error.message == self._last_notified_error
            or self._consecutive_errors > self.config.max_error_notifications
        ):
            return

        if isinstance(error, TransientIOError):
            self.notifier.warning(LOCKED_MESSAGE, category="tasks")
        elif isinstance(error, FormatError):
            self.notifier.error(FORMAT_MESSAGE, category="tasks")
        else:
            self.notifier.warning(UNAVAILABLE_MESSAGE, category="tasks")
        self._last_notified_error = error.message

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.poll_interval)
            try:
                await self.refresh()
            except Exception:
                logger.exception("Unexpected error while polling %s", self.path)

    async def start(self) -> None:
        """Load the cache, poll once, then keep polling in the background."""
        if self._poll_task is not None:
            return
        await self.load_cache()
        await self.refresh()
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._poll_task
        self._poll_task = None
