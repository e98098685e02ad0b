"""
JSON and JSONL file operations.

Provides async file access for the durable log and the shared-config
files with:
- Atomic writes using temp file + rename
- Missing files reported as None / empty rather than as errors
- OS errors classified into TransientIOError (lock/busy) or StorageIOError
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError, TransientIOError
from ..resilience import is_transient_io_error


def _io_error(operation: str, path: Path, e: Exception) -> StorageIOError:
    if is_transient_io_error(e):
        return TransientIOError(operation, str(path), e)
    return StorageIOError(operation, str(path), e)


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary."""
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise _io_error("create_directory", path, e) from e


async def read_text(path: Path) -> str | None:
    """Read a UTF-8 text file.

    Returns:
        File content, or None if the file (or its directory) doesn't exist
    """
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            return await f.read()
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise _io_error("read", path, e) from e


async def read_json(path: Path) -> Any:
    """Read a JSON file.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON data or None if file doesn't exist or is blank
    """
    content = await read_text(path)
    if content is None or not content.strip():
        return None
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise StorageIOError("parse_json", str(path), e) from e


async def write_text_atomic(path: Path, content: str, operation: str = "write") -> None:
    """Write a UTF-8 text file atomically using temp file + rename.

    The containing directory is created when missing.
    """
    await ensure_directory(path.parent)

    temp_path: str | None = None
    try:
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".tmp_",
            suffix=path.suffix,
        )
        os.close(fd)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(content)
            await f.flush()
            os.fsync(f.fileno())

        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        if temp_path is not None:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
        raise _io_error(operation, path, e) from e


async def write_json_atomic(path: Path, data: Any) -> None:
    """Write pretty-printed JSON atomically.

    Args:
        path: Target path for JSON file
        data: Object or array to serialize
    """
    await write_text_atomic(path, json.dumps(data, indent=2, ensure_ascii=False), "write_json")


async def read_jsonl(path: Path) -> list[Any]:
    """Read all lines from a JSONL file.

    Lines that fail to parse are returned as None so callers can skip
    them and keep the rest of the log.

    Returns:
        List of parsed JSON values, empty if the file doesn't exist
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return []

        results: list[Any] = []
        async with aiofiles.open(path, encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    results.append(json.loads(line))
                except json.JSONDecodeError:
                    results.append(None)
        return results
    except (OSError, UnicodeDecodeError) as e:
        raise _io_error("read_jsonl", path, e) from e


async def append_jsonl(path: Path, data: dict[str, Any]) -> None:
    """Append a single JSON object to a JSONL file."""
    await ensure_directory(path.parent)

    try:
        async with aiofiles.open(path, "a", encoding="utf-8") as f:
            await f.write(json.dumps(data) + "\n")
            await f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        raise _io_error("append_jsonl", path, e) from e


async def write_jsonl_atomic(path: Path, data: list[dict[str, Any]]) -> None:
    """Write entire JSONL file atomically."""
    await ensure_directory(path.parent)

    temp_path: str | None = None
    try:
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".tmp_",
            suffix=".jsonl",
        )
        os.close(fd)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            for item in data:
                await f.write(json.dumps(item) + "\n")
            await f.flush()
            os.fsync(f.fileno())

        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        if temp_path is not None:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
        raise _io_error("write_jsonl", path, e) from e


async def file_exists(path: Path) -> bool:
    try:
        return await aiofiles.os.path.exists(path)
    except OSError:
        return False
