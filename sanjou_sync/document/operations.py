"""
Operations: the unit of replication.

Every change to the document is an immutable operation identified by
``(clock, client_id)``. Ids are totally ordered by comparing the tuple,
which gives every replica the same tie-break for concurrent writes.

Map collections use ``set``/``del`` operations addressed by key.
Sequence collections use ``ins`` (after a reference element, or at the
head when ``ref`` is None) and ``rm`` (tombstone the element whose
insert id is ``ref``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..exceptions import FormatError

OpId = tuple[int, str]

# Collection names, as used on the wire
BLOCKS = "blocks"
BREAKS = "breaks"
TASKS = "tasks"
RIGHT_NOW_LISTS = "rightNowLists"
TASK_NOTES = "taskNotes"

SEQUENCE_COLLECTIONS = (BLOCKS, BREAKS)
MAP_COLLECTIONS = (TASKS, RIGHT_NOW_LISTS, TASK_NOTES)
COLLECTIONS = SEQUENCE_COLLECTIONS + MAP_COLLECTIONS

# Operation kinds
SET = "set"
DELETE = "del"
INSERT = "ins"
REMOVE = "rm"

_MAP_KINDS = (SET, DELETE)
_SEQUENCE_KINDS = (INSERT, REMOVE)


@dataclass(frozen=True)
class Operation:
    clock: int
    client: str
    collection: str
    kind: str
    key: str | None = None
    value: Any = None
    ref: OpId | None = None

    @property
    def id(self) -> OpId:
        return (self.clock, self.client)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": [self.clock, self.client],
            "c": self.collection,
            "k": self.kind,
        }
        if self.kind in _MAP_KINDS:
            data["key"] = self.key
        if self.kind == SET or self.kind == INSERT:
            data["value"] = self.value
        if self.kind in _SEQUENCE_KINDS:
            data["ref"] = list(self.ref) if self.ref is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Operation:
        """Parse and validate a wire operation.

        Raises:
            FormatError: If any field is missing or has the wrong shape
        """
        if not isinstance(data, dict):
            raise FormatError("operation", "expected an object")

        op_id = _parse_id(data.get("id"), "id")
        collection = data.get("c")
        kind = data.get("k")

        if collection in SEQUENCE_COLLECTIONS:
            allowed = _SEQUENCE_KINDS
        elif collection in MAP_COLLECTIONS:
            allowed = _MAP_KINDS
        else:
            raise FormatError("operation", f"unknown collection {collection!r}")
        if kind not in allowed:
            raise FormatError("operation", f"kind {kind!r} not valid for {collection}")

        key = None
        if kind in _MAP_KINDS:
            key = data.get("key")
            if not isinstance(key, str):
                raise FormatError("operation", "map operation without a string key")

        ref = None
        if kind in _SEQUENCE_KINDS:
            raw_ref = data.get("ref")
            if raw_ref is not None:
                ref = _parse_id(raw_ref, "ref")
            elif kind == REMOVE:
                raise FormatError("operation", "remove without a target")

        return cls(
            clock=op_id[0],
            client=op_id[1],
            collection=collection,
            kind=kind,
            key=key,
            value=data.get("value"),
            ref=ref,
        )


def _parse_id(raw: Any, field_name: str) -> OpId:
    if (
        not isinstance(raw, (list, tuple))
        or len(raw) != 2
        or not isinstance(raw[0], int)
        or isinstance(raw[0], bool)
        or raw[0] < 1
        or not isinstance(raw[1], str)
    ):
        raise FormatError("operation", f"malformed {field_name}: {raw!r}")
    return (raw[0], raw[1])
