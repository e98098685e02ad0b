"""
Entity types stored in the replicated document.

Dictionaries use the camelCase keys of the persisted/remote wire format.
Optional fields that are None are left out of the dictionary so that a
missing value and an unset value serialize identically.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

from .exceptions import ValidationError


def _put_optional(data: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        data[key] = value


def _require(data: dict[str, Any], key: str, entity: str) -> Any:
    if key not in data:
        raise ValidationError(f"{entity}.{key}", "missing required field")
    return data[key]


@dataclass
class BlockMeta:
    """The five self-report checkboxes of a focus block."""

    finish_line_pictured: bool = False
    not_interrupted: bool = False
    committed_to_focus: bool = False
    phone_separate: bool = False
    celebrated: bool = False

    _keys = {
        "finish_line_pictured": "finishLinePictured",
        "not_interrupted": "notInterrupted",
        "committed_to_focus": "committedToFocus",
        "phone_separate": "phoneSeparate",
        "celebrated": "celebrated",
    }

    @classmethod
    def all_true(cls) -> BlockMeta:
        return cls(True, True, True, True, True)

    def to_dict(self) -> dict[str, bool]:
        return {wire: getattr(self, attr) for attr, wire in self._keys.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BlockMeta:
        data = data or {}
        return cls(**{attr: bool(data.get(wire, False)) for attr, wire in cls._keys.items()})


@dataclass
class Block:
    """A single focus block.

    Once ``is_valid`` is False it stays False; the store refuses updates
    that would revive an invalidated block.
    """

    id: str
    date: str  # YYYY-MM-DD
    started_at: int  # epoch ms
    meta: BlockMeta = field(default_factory=BlockMeta)
    is_valid: bool = True
    completed_at: int | None = None
    task_id: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "date": self.date,
            "startedAt": self.started_at,
            "meta": self.meta.to_dict(),
            "isValid": self.is_valid,
        }
        _put_optional(data, "completedAt", self.completed_at)
        _put_optional(data, "taskId", self.task_id)
        _put_optional(data, "notes", self.notes)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Block:
        return cls(
            id=_require(data, "id", "Block"),
            date=_require(data, "date", "Block"),
            started_at=_require(data, "startedAt", "Block"),
            meta=BlockMeta.from_dict(data.get("meta")),
            is_valid=bool(data.get("isValid", True)),
            completed_at=data.get("completedAt"),
            task_id=data.get("taskId"),
            notes=data.get("notes"),
        )


@dataclass
class Subtask:
    id: str
    title: str
    completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "completed": self.completed}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Subtask:
        return cls(
            id=_require(data, "id", "Subtask"),
            title=data.get("title", ""),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class Task:
    id: str
    title: str
    created_at: int
    modified_at: int
    subtasks: list[Subtask] = field(default_factory=list)
    completed: bool = False
    blocks_spent: int = 0
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "subtasks": [s.to_dict() for s in self.subtasks],
            "completed": self.completed,
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
            "blocksSpent": self.blocks_spent,
        }
        _put_optional(data, "notes", self.notes)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=_require(data, "id", "Task"),
            title=data.get("title", ""),
            created_at=data.get("createdAt", 0),
            modified_at=data.get("modifiedAt", 0),
            subtasks=[Subtask.from_dict(s) for s in data.get("subtasks", [])],
            completed=bool(data.get("completed", False)),
            blocks_spent=int(data.get("blocksSpent", 0)),
            notes=data.get("notes"),
        )


@dataclass
class RightNowItem:
    id: str
    text: str
    completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "completed": self.completed}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RightNowItem:
        return cls(
            id=_require(data, "id", "RightNowItem"),
            text=data.get("text", ""),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class RightNowList:
    """Scratch list of next physical actions, optionally tied to a block."""

    id: str
    created_at: int
    items: list[RightNowItem] = field(default_factory=list)
    block_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "items": [i.to_dict() for i in self.items],
            "createdAt": self.created_at,
        }
        _put_optional(data, "blockId", self.block_id)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RightNowList:
        return cls(
            id=_require(data, "id", "RightNowList"),
            created_at=data.get("createdAt", 0),
            items=[RightNowItem.from_dict(i) for i in data.get("items", [])],
            block_id=data.get("blockId"),
        )


@dataclass
class Break:
    id: str
    started_at: int
    duration: int  # planned minutes
    ended_at: int | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "startedAt": self.started_at,
            "duration": self.duration,
        }
        _put_optional(data, "endedAt", self.ended_at)
        _put_optional(data, "notes", self.notes)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Break:
        return cls(
            id=_require(data, "id", "Break"),
            started_at=_require(data, "startedAt", "Break"),
            duration=data.get("duration", 0),
            ended_at=data.get("endedAt"),
            notes=data.get("notes"),
        )


def replace_fields(entity: Any, changes: dict[str, Any]) -> Any:
    """Return a copy of a dataclass entity with ``changes`` applied.

    Unknown field names raise ValidationError rather than being dropped.
    """
    names = {f.name for f in fields(entity)}
    unknown = set(changes) - names
    if unknown:
        raise ValidationError(
            type(entity).__name__, f"unknown fields: {', '.join(sorted(unknown))}"
        )
    return type(entity).from_dict({**entity.to_dict(), **_to_wire(changes)})


def _to_wire(changes: dict[str, Any]) -> dict[str, Any]:
    wire: dict[str, Any] = {}
    for name, value in changes.items():
        key = _WIRE_KEYS.get(name, name)
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        elif isinstance(value, list):
            value = [v.to_dict() if hasattr(v, "to_dict") else v for v in value]
        wire[key] = value
    return wire


_WIRE_KEYS = {
    "started_at": "startedAt",
    "completed_at": "completedAt",
    "task_id": "taskId",
    "is_valid": "isValid",
    "created_at": "createdAt",
    "modified_at": "modifiedAt",
    "blocks_spent": "blocksSpent",
    "block_id": "blockId",
    "ended_at": "endedAt",
}
