"""
File exchange with the external task app through the shared-config directory.

Key classes:
- CompletionRelay: writes completions.json (outbound, at-least-once)
- TaskImporter: polls tasks.json (inbound, read-only)
"""

from .importer import (
    SharedTask,
    TaskImporter,
    filter_tasks_by_status,
    sort_tasks_by_priority,
    task_priority,
)
from .relay import CompletionRelay, PendingCompletion, dedup_key

__all__ = [
    "CompletionRelay",
    "PendingCompletion",
    "SharedTask",
    "TaskImporter",
    "dedup_key",
    "filter_tasks_by_status",
    "sort_tasks_by_priority",
    "task_priority",
]
