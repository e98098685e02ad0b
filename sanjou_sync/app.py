"""
Composition root.

SyncApp builds one set of components per process (or per test) and
wires them together: the document and its store, local persistence,
the remote reconciler for the current identity, the completion relay
and the task importer.

Example:

    app = await SyncApp.create()
    await app.start(identity=None)
    task = app.store.create_task("Write report")
    block = app.store.create_block(task.id)
    app.store.complete_block(block.id)
    app.record_completion(task.id, 25, block.id)
    await app.close()
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .config import TASKS_CACHE_FILE_NAME, SyncSettings
from .document import ReplicatedDocument
from .exceptions import SanjouSyncError
from .identity import ClientIdStore, partition_key_for
from .local import LocalPersistence
from .logging_utils import configure_structured_logging
from .notifications import Notifier
from .remote import CosmosRemoteStore, RemoteReconciler, RemoteStore
from .shared import CompletionRelay, TaskImporter
from .status import StateBroadcaster, StateListener, SyncState
from .store import DocumentStore

logger = logging.getLogger(__name__)


class SyncApp:
    """Owns every sync component for one replica."""

    def __init__(
        self,
        settings: SyncSettings,
        client_id: str,
        remote: RemoteStore | None = None,
        notifier: Notifier | None = None,
    ):
        self.settings = settings
        self.client_id = client_id
        self.remote = remote
        self.notifier = notifier or Notifier()

        self.document = ReplicatedDocument(client_id)
        self.store = DocumentStore(self.document)
        self.persistence = LocalPersistence(self.document, settings.data_dir)
        self.relay = CompletionRelay(settings.shared_dir, settings.relay_retry)
        self.importer = TaskImporter(
            settings.shared_dir,
            settings.data_dir / TASKS_CACHE_FILE_NAME,
            settings.importer,
            self.notifier,
        )

        self.identity: str | None = None
        self.reconciler: RemoteReconciler | None = None
        self._sync_status = StateBroadcaster(SyncState.OFFLINE)
        self._unsubscribe_reconciler: Callable[[], None] | None = None

    @classmethod
    async def create(
        cls,
        settings: SyncSettings | None = None,
        remote: RemoteStore | None = None,
        notifier: Notifier | None = None,
    ) -> SyncApp:
        """Resolve settings and the client id, and connect the remote store.

        A remote that fails to connect is logged and left out; the app
        then runs offline.
        """
        settings = settings or SyncSettings.from_environment()
        if settings.log_json:
            configure_structured_logging(settings.log_level)

        client_id = await ClientIdStore(settings.data_dir).get_client_id()

        if remote is None and settings.cosmos is not None:
            try:
                remote = await CosmosRemoteStore.create(settings.cosmos)
            except SanjouSyncError as e:
                logger.warning("Remote sync disabled: %s", e.message)
                remote = None

        return cls(settings, client_id, remote, notifier)

    @property
    def sync_state(self) -> SyncState:
        return self._sync_status.state

    def subscribe_sync_state(self, listener: StateListener) -> Callable[[], None]:
        """Follow the sync state across identity changes."""
        return self._sync_status.subscribe(listener)

    async def start(self, identity: str | None = None) -> None:
        await self.persistence.load()
        self.store.mark_loaded()
        await self.set_identity(identity)
        await self.importer.start()

    async def set_identity(self, identity: str | None) -> None:
        """Switch to the partition of ``identity``; partitions are never merged."""
        self._teardown_reconciler()
        self.identity = identity
        partition_key = partition_key_for(identity)
        logger.info("Syncing against partition %s", partition_key)

        self.reconciler = RemoteReconciler(
            self.document, self.remote, self.client_id, partition_key
        )
        self._unsubscribe_reconciler = self.reconciler.subscribe_state(self._sync_status.set)
        await self.reconciler.start()

    def _teardown_reconciler(self) -> None:
        if self._unsubscribe_reconciler is not None:
            self._unsubscribe_reconciler()
            self._unsubscribe_reconciler = None
        if self.reconciler is not None:
            self.reconciler.stop()
            self.reconciler = None

    def record_completion(
        self, task_id: str, duration_minutes: float, block_id: str | None = None
    ):
        return self.relay.record(task_id, duration_minutes, block_id)

    async def close(self) -> None:
        await self.importer.stop()
        if self.reconciler is not None:
            await self.reconciler.flush()
        self._teardown_reconciler()
        self._sync_status.set(SyncState.OFFLINE)
        await self.relay.close()
        await self.persistence.close()
        if self.remote is not None:
            await self.remote.close()
