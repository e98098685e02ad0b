"""
Remote synchronization.

Key classes:
- RemoteRecord: the per-partition envelope {update, fullState, origin, timestamp}
- RemoteStore: abstract record store
- InMemoryRemoteStore: process-local store for tests and single-machine use
- CosmosRemoteStore: Azure Cosmos DB store
- RemoteReconciler: pushes local deltas, pulls remote ones, suppresses echoes
"""

from .base import InMemoryRemoteStore, RemoteRecord, RemoteStore
from .cosmos import CosmosRemoteStore
from .reconciler import RemoteReconciler

__all__ = [
    "CosmosRemoteStore",
    "InMemoryRemoteStore",
    "RemoteReconciler",
    "RemoteRecord",
    "RemoteStore",
]
