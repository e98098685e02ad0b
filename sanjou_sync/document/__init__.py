"""
Replicated document: operations, version vectors, codec and the CRDT replica.

Other components only use the narrow interface of ReplicatedDocument
(apply_delta, on_update, snapshot, observe), so the merge mechanism can
be replaced without touching them.
"""

from .codec import decode_operations, encode_operations, from_base64, to_base64
from .operations import (
    BLOCKS,
    BREAKS,
    COLLECTIONS,
    MAP_COLLECTIONS,
    RIGHT_NOW_LISTS,
    SEQUENCE_COLLECTIONS,
    TASK_NOTES,
    TASKS,
    Operation,
)
from .replica import ChangeEvent, Origin, ReplicatedDocument, Transaction
from .version import Causality, VersionVector, compare_versions

__all__ = [
    "BLOCKS",
    "BREAKS",
    "COLLECTIONS",
    "MAP_COLLECTIONS",
    "RIGHT_NOW_LISTS",
    "SEQUENCE_COLLECTIONS",
    "TASK_NOTES",
    "TASKS",
    "Causality",
    "ChangeEvent",
    "Operation",
    "Origin",
    "ReplicatedDocument",
    "Transaction",
    "VersionVector",
    "compare_versions",
    "decode_operations",
    "encode_operations",
    "from_base64",
    "to_base64",
]
