"""
The in-process replica of the shared document.

State is the set of operations seen so far. Merging is set union, so
applying deltas is commutative, associative and idempotent: replicas
that received the same operations render identical collections no
matter the arrival order.

- Map collections keep a last-writer-wins register per key; the
  operation with the highest id wins.
- Sequence collections are an RGA list. Each element points to the
  element it was inserted after; siblings are ordered by descending id
  and removed elements stay as tombstones. Operations referring to
  elements not yet seen are retained and take effect once the element
  arrives.

Every mutation runs inside a transaction tagged with an Origin. When the
outermost transaction ends, update listeners receive one encoded delta
and collection observers receive one ChangeEvent per touched collection.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .codec import decode_operations, encode_operations
from .operations import (
    COLLECTIONS,
    DELETE,
    INSERT,
    MAP_COLLECTIONS,
    REMOVE,
    SEQUENCE_COLLECTIONS,
    SET,
    OpId,
    Operation,
)
from .version import VersionVector

logger = logging.getLogger(__name__)


class Origin(Enum):
    """Who caused a transaction."""

    LOCAL = "local"
    REMOTE = "remote"
    STORAGE = "storage"


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    origin: Origin


UpdateListener = Callable[[bytes, Origin], None]
ChangeObserver = Callable[[ChangeEvent], None]


@dataclass
class Transaction:
    origin: Origin
    ops: list[Operation] = field(default_factory=list)
    touched: list[str] = field(default_factory=list)

    def record(self, op: Operation) -> None:
        self.ops.append(op)
        if op.collection not in self.touched:
            self.touched.append(op.collection)


class _MapState:
    def __init__(self) -> None:
        self.winners: dict[str, Operation] = {}

    def integrate(self, op: Operation) -> None:
        current = self.winners.get(op.key)
        if current is None or op.id > current.id:
            self.winners[op.key] = op

    def get(self, key: str) -> Any:
        op = self.winners.get(key)
        if op is None or op.kind != SET:
            return None
        return op.value

    def items(self) -> dict[str, Any]:
        return {key: op.value for key, op in self.winners.items() if op.kind == SET}


class _SequenceState:
    def __init__(self) -> None:
        self.inserts: dict[OpId, Operation] = {}
        self.children: dict[OpId | None, list[OpId]] = {}
        self.tombstones: set[OpId] = set()
        self._visible: list[OpId] | None = None

    def integrate(self, op: Operation) -> None:
        if op.kind == INSERT:
            self.inserts[op.id] = op
            siblings = self.children.setdefault(op.ref, [])
            siblings.append(op.id)
            siblings.sort(reverse=True)
        else:
            self.tombstones.add(op.ref)
        self._visible = None

    def visible_ids(self) -> list[OpId]:
        if self._visible is None:
            order: list[OpId] = []
            stack = list(reversed(self.children.get(None, [])))
            while stack:
                op_id = stack.pop()
                if op_id not in self.tombstones:
                    order.append(op_id)
                stack.extend(reversed(self.children.get(op_id, [])))
            self._visible = order
        return self._visible

    def values(self) -> list[Any]:
        return [self.inserts[op_id].value for op_id in self.visible_ids()]


class ReplicatedDocument:
    """Operation-based CRDT document holding all collections."""

    def __init__(self, client_id: str):
        self.client_id = client_id
        self._clock = 0
        self._ops: dict[OpId, Operation] = {}
        self._maps = {name: _MapState() for name in MAP_COLLECTIONS}
        self._sequences = {name: _SequenceState() for name in SEQUENCE_COLLECTIONS}
        self._update_listeners: list[UpdateListener] = []
        self._observers: dict[str, list[ChangeObserver]] = {name: [] for name in COLLECTIONS}
        self._txn: Transaction | None = None

    # -- subscriptions --

    def on_update(self, listener: UpdateListener) -> Callable[[], None]:
        """Register for the encoded delta of every transaction."""
        self._update_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._update_listeners:
                self._update_listeners.remove(listener)

        return unsubscribe

    def observe(self, collection: str, observer: ChangeObserver) -> Callable[[], None]:
        self._check_collection(collection, COLLECTIONS)
        observers = self._observers[collection]
        observers.append(observer)

        def unsubscribe() -> None:
            if observer in observers:
                observers.remove(observer)

        return unsubscribe

    # -- transactions --

    @contextmanager
    def transact(self, origin: Origin = Origin.LOCAL) -> Iterator[Transaction]:
        """Group mutations so listeners see them as a single change.

        Nested calls join the outer transaction and keep its origin.
        """
        if self._txn is not None:
            yield self._txn
            return

        txn = Transaction(origin)
        self._txn = txn
        try:
            yield txn
        finally:
            self._txn = None
            self._emit(txn)

    def _emit(self, txn: Transaction) -> None:
        if not txn.ops:
            return
        delta = encode_operations(txn.ops)
        for listener in list(self._update_listeners):
            try:
                listener(delta, txn.origin)
            except Exception:
                logger.exception("Update listener failed")
        for collection in txn.touched:
            event = ChangeEvent(collection, txn.origin)
            for observer in list(self._observers[collection]):
                try:
                    observer(event)
                except Exception:
                    logger.exception("Change observer failed for %s", collection)

    # -- merge --

    def _integrate(self, op: Operation) -> bool:
        if op.id in self._ops:
            return False
        self._ops[op.id] = op
        self._clock = max(self._clock, op.clock)
        if op.collection in self._maps:
            self._maps[op.collection].integrate(op)
        else:
            self._sequences[op.collection].integrate(op)
        return True

    def apply_delta(self, delta: bytes, origin: Origin = Origin.REMOTE) -> int:
        """Merge an encoded delta or snapshot.

        Returns:
            Number of operations that were new to this replica

        Raises:
            FormatError: If the delta cannot be decoded
        """
        ops = decode_operations(delta)
        applied = 0
        with self.transact(origin) as txn:
            for op in ops:
                if self._integrate(op):
                    txn.record(op)
                    applied += 1
        return applied

    def snapshot(self) -> bytes:
        return encode_operations(self._ops[op_id] for op_id in sorted(self._ops))

    def state_vector(self) -> VersionVector:
        return VersionVector.from_ids(self._ops)

    def encode_state_as_update(self, since: VersionVector | None = None) -> bytes:
        """Operations a replica at ``since`` has not seen (all when None)."""
        if since is None:
            return self.snapshot()
        return encode_operations(
            self._ops[op_id]
            for op_id in sorted(self._ops)
            if op_id[0] > since.get_sequence(op_id[1])
        )

    # -- local mutation --

    def _local(self, collection: str, kind: str, **fields: Any) -> Operation:
        op = Operation(
            clock=self._clock + 1,
            client=self.client_id,
            collection=collection,
            kind=kind,
            **fields,
        )
        with self.transact(Origin.LOCAL) as txn:
            self._integrate(op)
            txn.record(op)
        return op

    def map_set(self, collection: str, key: str, value: Any) -> None:
        self._check_collection(collection, MAP_COLLECTIONS)
        self._local(collection, SET, key=key, value=copy.deepcopy(value))

    def map_delete(self, collection: str, key: str) -> bool:
        self._check_collection(collection, MAP_COLLECTIONS)
        if self._maps[collection].get(key) is None:
            return False
        self._local(collection, DELETE, key=key)
        return True

    def map_get(self, collection: str, key: str) -> Any:
        self._check_collection(collection, MAP_COLLECTIONS)
        return copy.deepcopy(self._maps[collection].get(key))

    def map_items(self, collection: str) -> dict[str, Any]:
        self._check_collection(collection, MAP_COLLECTIONS)
        return copy.deepcopy(self._maps[collection].items())

    def seq_insert(self, collection: str, index: int, value: Any) -> None:
        """Insert so that ``value`` ends up at visible position ``index``."""
        self._check_collection(collection, SEQUENCE_COLLECTIONS)
        visible = self._sequences[collection].visible_ids()
        if not 0 <= index <= len(visible):
            raise IndexError(f"insert index {index} out of range for {collection}")
        after = visible[index - 1] if index > 0 else None
        self._local(collection, INSERT, value=copy.deepcopy(value), ref=after)

    def seq_append(self, collection: str, value: Any) -> None:
        self.seq_insert(collection, self.seq_len(collection), value)

    def seq_delete(self, collection: str, index: int) -> None:
        self._check_collection(collection, SEQUENCE_COLLECTIONS)
        visible = self._sequences[collection].visible_ids()
        if not 0 <= index < len(visible):
            raise IndexError(f"delete index {index} out of range for {collection}")
        self._local(collection, REMOVE, ref=visible[index])

    def seq_items(self, collection: str) -> list[Any]:
        self._check_collection(collection, SEQUENCE_COLLECTIONS)
        return copy.deepcopy(self._sequences[collection].values())

    def seq_len(self, collection: str) -> int:
        self._check_collection(collection, SEQUENCE_COLLECTIONS)
        return len(self._sequences[collection].visible_ids())

    # -- inspection --

    @property
    def operation_count(self) -> int:
        return len(self._ops)

    def to_json(self) -> dict[str, Any]:
        """Plain rendering of every collection, for comparison and export."""
        rendered: dict[str, Any] = {}
        for name in SEQUENCE_COLLECTIONS:
            rendered[name] = self.seq_items(name)
        for name in MAP_COLLECTIONS:
            rendered[name] = self.map_items(name)
        return rendered

    @staticmethod
    def _check_collection(collection: str, allowed: tuple[str, ...]) -> None:
        if collection not in allowed:
            raise KeyError(f"{collection!r} is not one of {', '.join(allowed)}")
