"""
Export of focus history for spreadsheets and backups.

JSON exports carry blocks and breaks; CSV exports carry blocks only,
one row per block with ISO timestamps.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .exceptions import StorageIOError
from .local.file_ops import write_text_atomic
from .models import Block
from .store import DocumentStore, today

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"
EXPORT_FORMATS = ("json", "csv")

CSV_HEADERS = [
    "id",
    "date",
    "startedAt",
    "completedAt",
    "taskId",
    "isValid",
    "finishLinePictured",
    "notInterrupted",
    "committedToFocus",
    "phoneSeparate",
    "celebrated",
    "notes",
]


def format_timestamp(ts_ms: int) -> str:
    return (
        datetime.fromtimestamp(ts_ms / 1000, UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_export(store: DocumentStore) -> dict[str, Any]:
    return {
        "exportedAt": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "version": EXPORT_VERSION,
        "blocks": [block.to_dict() for block in store.blocks],
        "breaks": [item.to_dict() for item in store.breaks],
    }


def blocks_to_csv(blocks: list[Block]) -> str:
    """Render blocks as CSV; notes are quoted with embedded quotes doubled."""
    lines = [",".join(CSV_HEADERS)]
    for block in blocks:
        row = [
            block.id,
            block.date,
            format_timestamp(block.started_at),
            format_timestamp(block.completed_at) if block.completed_at else "",
            block.task_id or "",
            _flag(block.is_valid),
            _flag(block.meta.finish_line_pictured),
            _flag(block.meta.not_interrupted),
            _flag(block.meta.committed_to_focus),
            _flag(block.meta.phone_separate),
            _flag(block.meta.celebrated),
            '"{}"'.format(block.notes.replace('"', '""')) if block.notes else "",
        ]
        lines.append(",".join(row))
    return "\n".join(lines)


def default_export_filename(export_format: str, date: str | None = None) -> str:
    date = date or today()
    if export_format == "json":
        return f"sanjou-export-{date}.json"
    return f"sanjou-blocks-{date}.csv"


async def export_data(store: DocumentStore, path: Path, export_format: str = "json") -> bool:
    """Write an export file.

    Returns:
        True on success, False if the format is unknown or the write failed
    """
    if export_format not in EXPORT_FORMATS:
        logger.error("Unknown export format: %s", export_format)
        return False

    if export_format == "json":
        content = json.dumps(build_export(store), indent=2, ensure_ascii=False)
    else:
        content = blocks_to_csv(store.blocks)

    try:
        await write_text_atomic(Path(path), content, "export")
    except StorageIOError as e:
        logger.error("Export failed: %s", e.message)
        return False

    logger.info("Exported %s to %s", export_format, path)
    return True
