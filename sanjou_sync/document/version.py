"""
Version vectors for the replicated document.

A version vector maps each replica (client id) to the highest Lamport
clock observed from it. Two replicas exchanging vectors can tell which
operations the other is missing and whether their states are causally
ordered or concurrent.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum


class Causality(Enum):
    """How one replica's state relates to another's."""

    EQUAL = "equal"
    BEHIND = "behind"  # the other side has everything we have, and more
    AHEAD = "ahead"  # we have everything the other side has, and more
    CONCURRENT = "concurrent"  # each side has operations the other lacks


@dataclass
class VersionVector:
    """Version vector for tracking replica state.

    Attributes:
        entries: Mapping of client_id to the highest clock seen from it
    """

    entries: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_ids(cls, op_ids: Iterable[tuple[int, str]]) -> "VersionVector":
        """Build the vector covering a collection of (clock, client_id) ids."""
        entries: dict[str, int] = {}
        for clock, client_id in op_ids:
            if clock > entries.get(client_id, 0):
                entries[client_id] = clock
        return cls(entries=entries)

    def get_sequence(self, client_id: str) -> int:
        """Highest clock seen from a client (0 if never seen)."""
        return self.entries.get(client_id, 0)

    def happens_before(self, other: "VersionVector") -> bool:
        """Check if this version happens-before another.

        A happens-before B if all entries in A are <= the corresponding
        entries in B, and at least one entry is strictly less.
        """
        all_clients = set(self.entries.keys()) | set(other.entries.keys())

        all_lte = True
        any_lt = False

        for client in all_clients:
            self_seq = self.entries.get(client, 0)
            other_seq = other.entries.get(client, 0)

            if self_seq > other_seq:
                all_lte = False
                break
            if self_seq < other_seq:
                any_lt = True

        return all_lte and any_lt

    def dominates(self, other: "VersionVector") -> bool:
        return other.happens_before(self)

    def equals(self, other: "VersionVector") -> bool:
        all_clients = set(self.entries.keys()) | set(other.entries.keys())
        return all(
            self.entries.get(client, 0) == other.entries.get(client, 0) for client in all_clients
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionVector):
            return False
        return self.equals(other)

    def __hash__(self) -> int:
        return hash(tuple(sorted((k, v) for k, v in self.entries.items() if v)))


def compare_versions(local: VersionVector, remote: VersionVector) -> Causality:
    """Relationship of ``local`` to ``remote``."""
    if local.equals(remote):
        return Causality.EQUAL
    if local.happens_before(remote):
        return Causality.BEHIND
    if remote.happens_before(local):
        return Causality.AHEAD
    return Causality.CONCURRENT
