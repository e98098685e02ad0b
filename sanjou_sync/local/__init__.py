"""
Local durable storage.

Key classes:
- LocalPersistence: append-only delta log with replay-on-load
"""

from .file_ops import (
    append_jsonl,
    read_json,
    read_jsonl,
    read_text,
    write_json_atomic,
    write_jsonl_atomic,
    write_text_atomic,
)
from .persistence import LocalPersistence

__all__ = [
    "LocalPersistence",
    # Low-level file operations
    "read_text",
    "write_text_atomic",
    "read_json",
    "write_json_atomic",
    "read_jsonl",
    "write_jsonl_atomic",
    "append_jsonl",
]
