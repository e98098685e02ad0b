"""
Document Store: typed collection operations over the replicated document.

Every mutation goes through ReplicatedDocument, so each logical
operation produces exactly one delta and one change notification per
collection it touches. Sequence elements (blocks, breaks) are never
replaced in place: an update removes the element and reinserts the new
value at the same index inside one transaction.

All operations are in-memory and never fail for I/O reasons.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from .document import (
    BLOCKS,
    BREAKS,
    RIGHT_NOW_LISTS,
    TASK_NOTES,
    TASKS,
    ChangeEvent,
    Origin,
    ReplicatedDocument,
)
from .identity import generate_id, now_ms
from .models import (
    Block,
    BlockMeta,
    Break,
    RightNowItem,
    RightNowList,
    Subtask,
    Task,
    replace_fields,
)

logger = logging.getLogger(__name__)

_ENTITY_TYPES: dict[str, Any] = {
    BLOCKS: Block,
    BREAKS: Break,
    TASKS: Task,
    RIGHT_NOW_LISTS: RightNowList,
}

CollectionCallback = Callable[[Any, Origin], None]


def today() -> str:
    """Current UTC date as YYYY-MM-DD."""
    return datetime.now(UTC).strftime("%Y-%m-%d")


class DocumentStore:
    """Canonical collections of blocks, breaks, tasks, lists and task notes."""

    def __init__(self, document: ReplicatedDocument):
        self.document = document
        self._loaded = asyncio.Event()

    # -- readiness --

    @property
    def loaded(self) -> bool:
        return self._loaded.is_set()

    def mark_loaded(self) -> None:
        """Called once the durable log has been replayed."""
        self._loaded.set()

    async def wait_loaded(self) -> None:
        await self._loaded.wait()

    # -- subscriptions --

    def values(self, collection: str) -> Any:
        """Current typed values of a collection.

        Sequences and entity maps return lists; task notes return a dict
        of task text to notes.
        """
        if collection == TASK_NOTES:
            return self.document.map_items(TASK_NOTES)
        entity = _ENTITY_TYPES[collection]
        if collection in (BLOCKS, BREAKS):
            raw = self.document.seq_items(collection)
        else:
            raw = list(self.document.map_items(collection).values())
        return [entity.from_dict(item) for item in raw]

    def subscribe(self, collection: str, callback: CollectionCallback) -> Callable[[], None]:
        """Call ``callback(values, origin)`` after every change to ``collection``."""

        def handler(event: ChangeEvent) -> None:
            callback(self.values(collection), event.origin)

        return self.document.observe(collection, handler)

    # -- sequence helpers --

    def _index_of(self, collection: str, entity_id: str) -> int:
        for index, item in enumerate(self.document.seq_items(collection)):
            if item.get("id") == entity_id:
                return index
        return -1

    def _update_sequence(self, collection: str, entity_id: str, changes: dict[str, Any]) -> Any:
        index = self._index_of(collection, entity_id)
        if index == -1:
            logger.debug("No %s element with id %s", collection, entity_id)
            return None
        entity_type = _ENTITY_TYPES[collection]
        current = entity_type.from_dict(self.document.seq_items(collection)[index])
        updated = replace_fields(current, changes)
        if collection == BLOCKS and not current.is_valid and updated.is_valid:
            logger.warning("Ignoring attempt to revalidate invalidated block %s", entity_id)
            updated.is_valid = False
        with self.document.transact():
            self.document.seq_delete(collection, index)
            self.document.seq_insert(collection, index, updated.to_dict())
        return updated

    def _delete_from_sequence(self, collection: str, entity_id: str) -> bool:
        index = self._index_of(collection, entity_id)
        if index == -1:
            return False
        self.document.seq_delete(collection, index)
        return True

    # -- blocks --

    @property
    def blocks(self) -> list[Block]:
        return self.values(BLOCKS)

    def add_block(self, block: Block) -> Block:
        self.document.seq_append(BLOCKS, block.to_dict())
        return block

    def update_block(self, block_id: str, **changes: Any) -> Block | None:
        """Apply field changes to a block; ``is_valid`` can never go back to True."""
        return self._update_sequence(BLOCKS, block_id, changes)

    def delete_block(self, block_id: str) -> bool:
        return self._delete_from_sequence(BLOCKS, block_id)

    def get_block(self, block_id: str) -> Block | None:
        return next((b for b in self.blocks if b.id == block_id), None)

    def create_block(self, task_id: str | None = None, meta: BlockMeta | None = None) -> Block:
        block = Block(
            id=generate_id(),
            date=today(),
            started_at=now_ms(),
            meta=meta or BlockMeta(),
            task_id=task_id,
        )
        return self.add_block(block)

    def complete_block(self, block_id: str, celebrated: bool = False) -> Block | None:
        """Stamp completion time; validity and the task's blocksSpent are untouched."""
        block = self.get_block(block_id)
        if block is None:
            return None
        meta = BlockMeta.from_dict({**block.meta.to_dict(), "celebrated": celebrated})
        return self.update_block(block_id, completed_at=now_ms(), meta=meta)

    def invalidate_block(self, block_id: str) -> Block | None:
        return self.update_block(block_id, is_valid=False)

    def update_block_notes(self, block_id: str, notes: str) -> Block | None:
        return self.update_block(block_id, notes=notes)

    def blocks_for_date(self, date: str) -> list[Block]:
        return [b for b in self.blocks if b.date == date]

    def today_blocks(self) -> list[Block]:
        return self.blocks_for_date(today())

    def valid_block_count(self, date: str | None = None) -> int:
        """Blocks on ``date`` (default today) that are valid and completed."""
        return len(
            [b for b in self.blocks_for_date(date or today()) if b.is_valid and b.completed_at]
        )

    # -- breaks --

    @property
    def breaks(self) -> list[Break]:
        return self.values(BREAKS)

    def add_break(self, item: Break) -> Break:
        self.document.seq_append(BREAKS, item.to_dict())
        return item

    def update_break(self, break_id: str, **changes: Any) -> Break | None:
        return self._update_sequence(BREAKS, break_id, changes)

    def delete_break(self, break_id: str) -> bool:
        return self._delete_from_sequence(BREAKS, break_id)

    def get_break(self, break_id: str) -> Break | None:
        return next((b for b in self.breaks if b.id == break_id), None)

    def start_break(self, duration: int) -> Break:
        return self.add_break(Break(id=generate_id(), started_at=now_ms(), duration=duration))

    def end_break(self, break_id: str, notes: str | None = None) -> Break | None:
        return self.update_break(break_id, ended_at=now_ms(), notes=notes)

    # -- tasks --

    @property
    def tasks(self) -> list[Task]:
        return self.values(TASKS)

    def get_task(self, task_id: str) -> Task | None:
        raw = self.document.map_get(TASKS, task_id)
        return Task.from_dict(raw) if raw is not None else None

    def add_task(self, task: Task) -> Task:
        self.document.map_set(TASKS, task.id, task.to_dict())
        return task

    def update_task(self, task_id: str, **changes: Any) -> Task | None:
        """Apply field changes and bump ``modified_at``."""
        task = self.get_task(task_id)
        if task is None:
            return None
        updated = replace_fields(task, {**changes, "modified_at": now_ms()})
        self.document.map_set(TASKS, task_id, updated.to_dict())
        return updated

    def delete_task(self, task_id: str) -> bool:
        return self.document.map_delete(TASKS, task_id)

    def create_task(self, title: str) -> Task:
        now = now_ms()
        return self.add_task(Task(id=generate_id(), title=title, created_at=now, modified_at=now))

    def update_task_title(self, task_id: str, title: str) -> Task | None:
        return self.update_task(task_id, title=title)

    def update_task_notes(self, task_id: str, notes: str) -> Task | None:
        return self.update_task(task_id, notes=notes)

    def complete_task(self, task_id: str) -> Task | None:
        return self.update_task(task_id, completed=True)

    def uncomplete_task(self, task_id: str) -> Task | None:
        return self.update_task(task_id, completed=False)

    def incomplete_tasks(self) -> list[Task]:
        return [t for t in self.tasks if not t.completed]

    def increment_blocks_spent(self, task_id: str) -> Task | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        return self.update_task(task_id, blocks_spent=task.blocks_spent + 1)

    def add_subtask(self, task_id: str, title: str) -> Subtask | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        subtask = Subtask(id=generate_id(), title=title)
        self.update_task(task_id, subtasks=[*task.subtasks, subtask])
        return subtask

    def update_subtask(self, task_id: str, subtask_id: str, **changes: Any) -> Task | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        subtasks = [
            replace_fields(st, changes) if st.id == subtask_id else st for st in task.subtasks
        ]
        return self.update_task(task_id, subtasks=subtasks)

    def remove_subtask(self, task_id: str, subtask_id: str) -> Task | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        return self.update_task(
            task_id, subtasks=[st for st in task.subtasks if st.id != subtask_id]
        )

    def toggle_subtask(self, task_id: str, subtask_id: str) -> Task | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        subtask = next((st for st in task.subtasks if st.id == subtask_id), None)
        if subtask is None:
            return None
        return self.update_subtask(task_id, subtask_id, completed=not subtask.completed)

    # -- right-now lists --

    @property
    def right_now_lists(self) -> list[RightNowList]:
        return self.values(RIGHT_NOW_LISTS)

    def get_right_now_list(self, list_id: str) -> RightNowList | None:
        raw = self.document.map_get(RIGHT_NOW_LISTS, list_id)
        return RightNowList.from_dict(raw) if raw is not None else None

    def add_right_now_list(self, rn_list: RightNowList) -> RightNowList:
        self.document.map_set(RIGHT_NOW_LISTS, rn_list.id, rn_list.to_dict())
        return rn_list

    def update_right_now_list(self, list_id: str, **changes: Any) -> RightNowList | None:
        rn_list = self.get_right_now_list(list_id)
        if rn_list is None:
            return None
        updated = replace_fields(rn_list, changes)
        self.document.map_set(RIGHT_NOW_LISTS, list_id, updated.to_dict())
        return updated

    def delete_right_now_list(self, list_id: str) -> bool:
        return self.document.map_delete(RIGHT_NOW_LISTS, list_id)

    def create_right_now_list(self, block_id: str | None = None) -> RightNowList:
        return self.add_right_now_list(
            RightNowList(id=generate_id(), created_at=now_ms(), block_id=block_id)
        )

    def add_right_now_item(self, list_id: str, text: str) -> RightNowItem | None:
        rn_list = self.get_right_now_list(list_id)
        if rn_list is None:
            return None
        item = RightNowItem(id=generate_id(), text=text)
        self.update_right_now_list(list_id, items=[*rn_list.items, item])
        return item

    def update_right_now_item(self, list_id: str, item_id: str, **changes: Any) -> RightNowList | None:
        rn_list = self.get_right_now_list(list_id)
        if rn_list is None:
            return None
        items = [replace_fields(i, changes) if i.id == item_id else i for i in rn_list.items]
        return self.update_right_now_list(list_id, items=items)

    def toggle_right_now_item(self, list_id: str, item_id: str) -> RightNowList | None:
        rn_list = self.get_right_now_list(list_id)
        if rn_list is None:
            return None
        item = next((i for i in rn_list.items if i.id == item_id), None)
        if item is None:
            return None
        return self.update_right_now_item(list_id, item_id, completed=not item.completed)

    def remove_right_now_item(self, list_id: str, item_id: str) -> RightNowList | None:
        rn_list = self.get_right_now_list(list_id)
        if rn_list is None:
            return None
        return self.update_right_now_list(
            list_id, items=[i for i in rn_list.items if i.id != item_id]
        )

    def right_now_list_for_block(self, block_id: str) -> RightNowList | None:
        return next((rl for rl in self.right_now_lists if rl.block_id == block_id), None)

    # -- task notes (keyed by raw task text) --

    @property
    def task_notes(self) -> dict[str, str]:
        return self.values(TASK_NOTES)

    def get_task_notes(self, task_text: str) -> str | None:
        return self.document.map_get(TASK_NOTES, task_text)

    def set_task_notes(self, task_text: str, notes: str) -> None:
        """Store notes for a task text; blank notes delete the entry."""
        if notes.strip():
            self.document.map_set(TASK_NOTES, task_text, notes)
        else:
            self.document.map_delete(TASK_NOTES, task_text)

    def has_task_notes(self, task_text: str) -> bool:
        existing = self.get_task_notes(task_text)
        return bool(existing and existing.strip())
