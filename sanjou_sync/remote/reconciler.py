"""
Remote Reconciler: two-way sync between the document and one remote record.

On start the reconciler subscribes to the partition's record, starts
pushing local deltas and bootstraps:

- record absent: publish the full local snapshot as the initial record
- record present: merge its fullState into the document (origin remote)

Every document delta whose origin is not ``remote`` is pushed as
``{update, fullState, origin: client_id, timestamp}``. Incoming records
written by this client are echoes and are ignored; all others have their
update and then their fullState merged. Both merges are idempotent, and
the snapshot recovers operations from envelopes that another writer
overwrote before this replica saw them.

Failures never detach the reconciler: the state goes to ``error`` and
the next delta is attempted normally.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ..document import (
    Causality,
    Origin,
    ReplicatedDocument,
    VersionVector,
    compare_versions,
    decode_operations,
    from_base64,
    to_base64,
)
from ..exceptions import SanjouSyncError
from ..identity import now_ms
from ..logging_utils import SyncLoggerAdapter
from ..status import StateBroadcaster, StateListener, SyncState
from .base import RemoteRecord, RemoteStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_SUBSCRIPTION_FAILURES = 3


class RemoteReconciler:
    """Keeps a ReplicatedDocument in sync with one remote partition."""

    def __init__(
        self,
        document: ReplicatedDocument,
        remote: RemoteStore | None,
        client_id: str,
        partition_key: str,
        max_subscription_failures: int = DEFAULT_MAX_SUBSCRIPTION_FAILURES,
    ):
        self.document = document
        self.remote = remote
        self.client_id = client_id
        self.partition_key = partition_key
        self.max_subscription_failures = max_subscription_failures

        self._status = StateBroadcaster(SyncState.OFFLINE)
        self._push_lock = asyncio.Lock()
        self._push_tasks: set[asyncio.Task] = set()
        self._unsubscribe_remote: Callable[[], None] | None = None
        self._detach_push: Callable[[], None] | None = None
        self._subscription_failures = 0
        self._running = False

        self.push_count = 0
        self.applied_count = 0
        self.log = SyncLoggerAdapter(
            logger, {"partition_key": partition_key, "client_id": client_id}
        )

    # -- status --

    @property
    def state(self) -> SyncState:
        return self._status.state

    def subscribe_state(self, listener: StateListener) -> Callable[[], None]:
        return self._status.subscribe(listener)

    @property
    def running(self) -> bool:
        return self._running

    # -- lifecycle --

    async def start(self) -> None:
        """Attach to the document, subscribe to the partition and bootstrap.

        A failed setup leaves the state at ``error`` with local pushes
        still attached; calling start() again retries the remaining steps.
        """
        if self.remote is None:
            self.log.info("Remote sync not configured, staying offline")
            self._status.set(SyncState.OFFLINE)
            return
        if self._running:
            return

        self._status.set(SyncState.SYNCING)
        # Local deltas are pushed even while the subscription is down
        if self._detach_push is None:
            self._detach_push = self.document.on_update(self._on_local_update)
        try:
            if self._unsubscribe_remote is None:
                self._unsubscribe_remote = await self.remote.subscribe(
                    self.partition_key, self._on_remote_record, self._on_remote_error
                )
            await self._bootstrap()
        except Exception as e:
            self.log.error("Failed to set up remote sync: %s", e)
            self._status.set(SyncState.ERROR)
            return

        self._running = True
        self._status.set(SyncState.SYNCED)

    async def _bootstrap(self) -> None:
        record = await self.remote.get(self.partition_key)

        if record is None:
            snapshot = to_base64(self.document.snapshot())
            await self.remote.put(
                self.partition_key,
                RemoteRecord(
                    update=snapshot,
                    full_state=snapshot,
                    origin=self.client_id,
                    timestamp=now_ms(),
                ),
            )
            self.push_count += 1
            self.log.info("Published initial snapshot to empty partition")
            return

        remote_state = from_base64(record.full_state)
        remote_vector = VersionVector.from_ids(op.id for op in decode_operations(remote_state))
        relation = compare_versions(self.document.state_vector(), remote_vector)
        self.log.info("Existing record found, local replica is %s", relation.value)
        self.applied_count += self.document.apply_delta(remote_state, Origin.REMOTE)

        # Local operations made while offline would otherwise wait for the next edit
        if relation in (Causality.AHEAD, Causality.CONCURRENT):
            self._schedule_push(self.document.encode_state_as_update(remote_vector))

    def stop(self) -> None:
        """Detach from the remote and the document; in-flight pushes may still finish."""
        if self._unsubscribe_remote is not None:
            self._unsubscribe_remote()
            self._unsubscribe_remote = None
        if self._detach_push is not None:
            self._detach_push()
            self._detach_push = None
        self._running = False
        self._status.set(SyncState.OFFLINE)

    async def flush(self) -> None:
        """Wait for pushes already started."""
        while self._push_tasks:
            await asyncio.gather(*list(self._push_tasks), return_exceptions=True)

    # -- push --

    def _on_local_update(self, delta: bytes, origin: Origin) -> None:
        if origin is Origin.REMOTE:
            return
        self._schedule_push(delta)

    def _schedule_push(self, delta: bytes) -> None:
        # Snapshot now so every record reflects the state right after its delta
        record = RemoteRecord(
            update=to_base64(delta),
            full_state=to_base64(self.document.snapshot()),
            origin=self.client_id,
            timestamp=now_ms(),
        )
        task = asyncio.get_running_loop().create_task(self._push(record))
        self._push_tasks.add(task)
        task.add_done_callback(self._push_tasks.discard)

    async def _push(self, record: RemoteRecord) -> None:
        async with self._push_lock:
            self._status.set(SyncState.SYNCING)
            try:
                await self.remote.put(self.partition_key, record)
            except Exception as e:
                self.log.error("Failed to push update: %s", e)
                self._status.set(SyncState.ERROR)
                return
            self.push_count += 1
            self._status.set(SyncState.SYNCED)

    # -- pull --

    def _on_remote_record(self, record: RemoteRecord) -> None:
        self._subscription_failures = 0
        if record.origin == self.client_id:
            self.log.debug("Ignoring echo of own write")
            self._status.set(SyncState.SYNCED)
            return

        try:
            applied = self.document.apply_delta(from_base64(record.update), Origin.REMOTE)
            applied += self.document.apply_delta(from_base64(record.full_state), Origin.REMOTE)
        except SanjouSyncError as e:
            self.log.error("Failed to apply remote update: %s", e.message)
            self._status.set(SyncState.ERROR)
            return

        self.applied_count += applied
        self.log.debug("Applied %d remote operations from %s", applied, record.origin)
        self._status.set(SyncState.SYNCED)

    def _on_remote_error(self, error: Exception) -> None:
        self._subscription_failures += 1
        self.log.warning(
            "Remote subscription error (%d/%d): %s",
            self._subscription_failures,
            self.max_subscription_failures,
            error,
        )
        if self._subscription_failures >= self.max_subscription_failures:
            self._status.set(SyncState.OFFLINE)
        else:
            self._status.set(SyncState.ERROR)
