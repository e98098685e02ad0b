"""
Remote record store interface.

The remote side holds one record per partition key. The record envelope
is last-write-wins; the CRDT payload inside it merges correctly no
matter which write lands last.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..exceptions import FormatError

logger = logging.getLogger(__name__)


@dataclass
class RemoteRecord:
    """The per-partition sync record.

    Attributes:
        update: base64 delta that produced this write
        full_state: base64 snapshot of the writer's whole document
        origin: client id of the writer
        timestamp: write time, epoch ms
    """

    update: str
    full_state: str
    origin: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "update": self.update,
            "fullState": self.full_state,
            "origin": self.origin,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Any) -> RemoteRecord:
        if not isinstance(data, dict):
            raise FormatError("remote record", "expected an object")
        for key in ("update", "fullState", "origin"):
            if not isinstance(data.get(key), str):
                raise FormatError("remote record", f"missing or non-string {key!r}")
        timestamp = data.get("timestamp", 0)
        if not isinstance(timestamp, (int, float)):
            raise FormatError("remote record", "timestamp must be a number")
        return cls(
            update=data["update"],
            full_state=data["fullState"],
            origin=data["origin"],
            timestamp=int(timestamp),
        )


RecordListener = Callable[[RemoteRecord], None]
ErrorListener = Callable[[Exception], None]


class RemoteStore(ABC):
    """Abstract remote store holding one RemoteRecord per partition key."""

    @abstractmethod
    async def get(self, partition_key: str) -> RemoteRecord | None:
        """Fetch the record for a partition, or None if absent.

        Raises:
            StorageIOError: If the remote cannot be reached
        """

    @abstractmethod
    async def put(self, partition_key: str, record: RemoteRecord) -> None:
        """Replace the record for a partition.

        Raises:
            StorageIOError: If the write fails
        """

    @abstractmethod
    async def subscribe(
        self,
        partition_key: str,
        on_change: RecordListener,
        on_error: ErrorListener,
    ) -> Callable[[], None]:
        """Watch a partition's record.

        ``on_change`` receives the current record (when one exists) and
        then every new version. Returns a callable that stops the watch.
        """

    async def close(self) -> None:
        """Release connections held by the store."""


class InMemoryRemoteStore(RemoteStore):
    """Process-local remote store.

    Subscribers are notified on the next loop iteration after a put,
    the way a real remote delivers changes asynchronously.
    """

    def __init__(self) -> None:
        self.records: dict[str, RemoteRecord] = {}
        self.puts: list[tuple[str, RemoteRecord]] = []
        self._subscribers: dict[str, list[tuple[RecordListener, ErrorListener]]] = {}

    async def get(self, partition_key: str) -> RemoteRecord | None:
        return self.records.get(partition_key)

    async def put(self, partition_key: str, record: RemoteRecord) -> None:
        self.records[partition_key] = record
        self.puts.append((partition_key, record))
        for entry in list(self._subscribers.get(partition_key, [])):
            self._deliver(partition_key, entry, record)

    async def subscribe(
        self,
        partition_key: str,
        on_change: RecordListener,
        on_error: ErrorListener,
    ) -> Callable[[], None]:
        entry = (on_change, on_error)
        self._subscribers.setdefault(partition_key, []).append(entry)

        current = self.records.get(partition_key)
        if current is not None:
            self._deliver(partition_key, entry, current)

        def unsubscribe() -> None:
            subscribers = self._subscribers.get(partition_key, [])
            if entry in subscribers:
                subscribers.remove(entry)

        return unsubscribe

    def emit_error(self, partition_key: str, error: Exception) -> None:
        """Report a subscription failure to every watcher of a partition."""
        for _on_change, on_error in list(self._subscribers.get(partition_key, [])):
            on_error(error)

    def subscriber_count(self, partition_key: str) -> int:
        return len(self._subscribers.get(partition_key, []))

    def _deliver(
        self,
        partition_key: str,
        entry: tuple[RecordListener, ErrorListener],
        record: RemoteRecord,
    ) -> None:
        def deliver() -> None:
            if entry in self._subscribers.get(partition_key, []):
                entry[0](record)

        asyncio.get_running_loop().call_soon(deliver)
