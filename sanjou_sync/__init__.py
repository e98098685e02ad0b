"""
Sanjou Sync

Offline-first synchronization core for the Sanjou focus-block tracker.

Provides:
- A CRDT document of blocks, breaks, tasks, right-now lists and task notes
- Durable local mirroring with replay on startup
- Remote reconciliation against one record per identity (Cosmos DB)
- File exchange with the Subete task app (completion relay, task importer)

Usage:

    >>> from sanjou_sync import SyncApp
    >>> app = await SyncApp.create()
    >>> await app.start(identity="user-123")
    >>> task = app.store.create_task("Write report")
    >>> block = app.store.create_block(task.id)
    >>> app.store.complete_block(block.id, celebrated=True)
    >>> app.record_completion(task.id, 25, block.id)

Components can also be built individually, e.g. for tests:

    from sanjou_sync.document import ReplicatedDocument
    from sanjou_sync.store import DocumentStore
    from sanjou_sync.remote import InMemoryRemoteStore, RemoteReconciler
"""

from .app import SyncApp
from .config import CosmosRemoteConfig, ImporterConfig, SyncSettings
from .document import ChangeEvent, Origin, ReplicatedDocument, VersionVector
from .exceptions import (
    AuthenticationError,
    ConfigurationAbsentError,
    FormatError,
    PermanentIOError,
    SanjouSyncError,
    StorageConnectionError,
    StorageIOError,
    SyncError,
    TransientIOError,
    ValidationError,
)
from .local import LocalPersistence
from .models import Block, BlockMeta, Break, RightNowItem, RightNowList, Subtask, Task
from .notifications import Notification, NotificationLevel, Notifier
from .remote import (
    CosmosRemoteStore,
    InMemoryRemoteStore,
    RemoteReconciler,
    RemoteRecord,
    RemoteStore,
)
from .resilience import RetryConfig, compute_backoff, retry_with_backoff
from .shared import (
    CompletionRelay,
    SharedTask,
    TaskImporter,
    filter_tasks_by_status,
    sort_tasks_by_priority,
)
from .status import StateBroadcaster, SyncState
from .store import DocumentStore

__version__ = "0.1.0"

__all__ = [
    # Composition root
    "SyncApp",
    # Configuration
    "SyncSettings",
    "CosmosRemoteConfig",
    "ImporterConfig",
    "RetryConfig",
    # Document
    "ReplicatedDocument",
    "Origin",
    "ChangeEvent",
    "VersionVector",
    "DocumentStore",
    # Models
    "Block",
    "BlockMeta",
    "Break",
    "Task",
    "Subtask",
    "RightNowList",
    "RightNowItem",
    # Components
    "LocalPersistence",
    "RemoteStore",
    "RemoteRecord",
    "InMemoryRemoteStore",
    "CosmosRemoteStore",
    "RemoteReconciler",
    "CompletionRelay",
    "TaskImporter",
    "SharedTask",
    "filter_tasks_by_status",
    "sort_tasks_by_priority",
    # Status and notifications
    "SyncState",
    "StateBroadcaster",
    "Notifier",
    "Notification",
    "NotificationLevel",
    # Resilience
    "compute_backoff",
    "retry_with_backoff",
    # Exceptions
    "SanjouSyncError",
    "ConfigurationAbsentError",
    "TransientIOError",
    "PermanentIOError",
    "FormatError",
    "StorageIOError",
    "StorageConnectionError",
    "AuthenticationError",
    "ValidationError",
    "SyncError",
]
