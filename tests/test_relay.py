"""Tests for the completion relay."""

from __future__ import annotations

import asyncio
import json
import random
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from sanjou_sync.exceptions import StorageIOError
from sanjou_sync.local.file_ops import write_json_atomic
from sanjou_sync.resilience import RetryConfig
from sanjou_sync.shared.relay import CompletionRelay, PendingCompletion, iso_now

COMPLETED_AT = "2024-03-01T09:25:00.000Z"


def read_completions(relay: CompletionRelay) -> list[dict[str, Any]]:
    return json.loads(relay.path.read_text(encoding="utf-8"))


class TestRecord:
    """Tests for queueing and writing completions."""

    @pytest.mark.asyncio
    async def test_first_completion_creates_file(self, shared_dir: Path) -> None:
        """The shared directory and file are created on first write."""
        relay = CompletionRelay(shared_dir)
        assert not shared_dir.exists()

        task = relay.record("42", 25)
        await task

        [entry] = read_completions(relay)
        assert entry["taskId"] == "42"
        assert entry["duration"] == 25
        assert entry["completedAt"].endswith("Z")
        assert "blockId" not in entry
        assert relay.pending_count == 0

    @pytest.mark.asyncio
    async def test_block_id_written_when_given(self, shared_dir: Path) -> None:
        relay = CompletionRelay(shared_dir)

        await relay.record("42", 25, "block-1", completed_at=COMPLETED_AT)

        assert read_completions(relay) == [
            {"taskId": "42", "completedAt": COMPLETED_AT, "duration": 25, "blockId": "block-1"}
        ]

    @pytest.mark.asyncio
    async def test_existing_entries_preserved(self, shared_dir: Path) -> None:
        """Entries written by the other app are kept, including unknown fields."""
        shared_dir.mkdir(parents=True)
        existing = [{"taskId": "1", "completedAt": "2024-01-01T00:00:00.000Z", "duration": 25, "x": 1}]
        (shared_dir / "completions.json").write_text(json.dumps(existing), encoding="utf-8")
        relay = CompletionRelay(shared_dir)

        await relay.record("2", 30, completed_at=COMPLETED_AT)

        entries = read_completions(relay)
        assert entries[0] == existing[0]
        assert entries[1]["taskId"] == "2"

    @pytest.mark.asyncio
    async def test_duplicate_completion_written_once(self, shared_dir: Path) -> None:
        """An entry with the same task and completion time is not appended again."""
        relay = CompletionRelay(shared_dir)
        await relay.record("42", 25, completed_at=COMPLETED_AT)

        await relay.record("42", 25, completed_at=COMPLETED_AT)

        assert len(read_completions(relay)) == 1

    @pytest.mark.asyncio
    async def test_duplicates_within_one_batch(self, shared_dir: Path) -> None:
        relay = CompletionRelay(shared_dir)

        relay.record("42", 25, completed_at=COMPLETED_AT)
        relay.record("42", 25, completed_at=COMPLETED_AT)
        await relay.wait_idle()

        assert len(read_completions(relay)) == 1
        assert relay.pending_count == 0

    @pytest.mark.asyncio
    async def test_pretty_printed(self, shared_dir: Path) -> None:
        relay = CompletionRelay(shared_dir)

        await relay.record("42", 25, completed_at=COMPLETED_AT)

        assert relay.path.read_text(encoding="utf-8").startswith("[\n  {")


class TestCoalescing:
    """Tests for single-run processing."""

    @pytest.mark.asyncio
    async def test_triggers_during_run_coalesce(self, shared_dir: Path) -> None:
        relay = CompletionRelay(shared_dir)

        first = relay.record("1", 25, completed_at=COMPLETED_AT)
        second = relay.record("2", 25, completed_at=COMPLETED_AT)
        await relay.wait_idle()

        assert first is not None
        assert second is None
        assert [e["taskId"] for e in read_completions(relay)] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_item_queued_mid_write_is_not_lost(self, shared_dir: Path) -> None:
        """A completion recorded while a write is in flight gets its own run."""
        relay = CompletionRelay(shared_dir)
        calls = 0

        async def write_and_record(path: Path, data: Any) -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                assert relay.record("late", 5, completed_at=COMPLETED_AT) is None
            await write_json_atomic(path, data)

        with patch("sanjou_sync.shared.relay.write_json_atomic", write_and_record):
            relay.record("early", 25, completed_at=COMPLETED_AT)
            await relay.wait_idle()

        assert calls == 2
        assert [e["taskId"] for e in read_completions(relay)] == ["early", "late"]
        assert relay.pending_count == 0

    def test_record_without_running_loop_waits_for_flush(self, shared_dir: Path) -> None:
        relay = CompletionRelay(shared_dir)

        assert relay.record("42", 25, completed_at=COMPLETED_AT) is None
        assert relay.pending_count == 1
        assert not relay.path.exists()

        asyncio.run(relay.flush())

        assert relay.pending_count == 0
        assert read_completions(relay)[0]["taskId"] == "42"


class TestRetry:
    """Tests for backoff and the retry ceiling."""

    @pytest.mark.asyncio
    async def test_failure_keeps_item_and_schedules_retry(self, shared_dir: Path) -> None:
        relay = CompletionRelay(shared_dir, rng=random.Random(7))
        failing = AsyncMock(side_effect=StorageIOError("write_json", "completions.json"))

        with patch("sanjou_sync.shared.relay.write_json_atomic", failing):
            await relay.record("42", 25)

        assert relay.pending_count == 1
        assert relay.pending[0].retry_count == 1
        assert relay.retry_scheduled
        # Second attempt waits base * 2 plus up to one second of jitter
        assert 2.0 <= relay.last_retry_delay <= 3.0
        relay.clear()
        assert not relay.retry_scheduled

    @pytest.mark.asyncio
    async def test_unwritable_directory_is_retried(
        self, shared_dir: Path, slow_retry: RetryConfig
    ) -> None:
        """An OS error while creating the temp file counts as a failed attempt."""
        relay = CompletionRelay(shared_dir, retry_config=slow_retry)
        denied = PermissionError(13, "Permission denied")

        with patch("sanjou_sync.local.file_ops.tempfile.mkstemp", side_effect=denied):
            task = relay.record("42", 25)
            await task

        assert task.exception() is None
        assert relay.pending_count == 1
        assert relay.pending[0].retry_count == 1
        assert relay.retry_scheduled
        relay.clear()

    @pytest.mark.asyncio
    async def test_dropped_after_ceiling(self, shared_dir: Path, slow_retry: RetryConfig) -> None:
        """An item is attempted once plus five retries, then dropped."""
        relay = CompletionRelay(shared_dir, retry_config=slow_retry)
        failing = AsyncMock(side_effect=StorageIOError("write_json", "completions.json"))

        with patch("sanjou_sync.shared.relay.write_json_atomic", failing):
            await relay.record("42", 25)
            for _ in range(4):
                await relay.flush()
            assert relay.pending_count == 1
            assert relay.pending[0].retry_count == 5

            await relay.flush()

        assert failing.await_count == 6
        assert relay.pending_count == 0
        assert relay.dropped_count == 1
        assert not relay.retry_scheduled

    @pytest.mark.asyncio
    async def test_flush_retries_immediately(
        self, shared_dir: Path, slow_retry: RetryConfig
    ) -> None:
        relay = CompletionRelay(shared_dir, retry_config=slow_retry)
        failures = [StorageIOError("write_json", "completions.json")]

        async def flaky_write(path: Path, data: Any) -> None:
            if failures:
                raise failures.pop()
            await write_json_atomic(path, data)

        with patch("sanjou_sync.shared.relay.write_json_atomic", flaky_write):
            await relay.record("42", 25, completed_at=COMPLETED_AT)
            assert relay.retry_scheduled

            await relay.flush()

        assert not relay.retry_scheduled
        assert relay.pending_count == 0
        assert read_completions(relay)[0]["taskId"] == "42"

    @pytest.mark.asyncio
    async def test_non_array_file_is_left_untouched(
        self, shared_dir: Path, slow_retry: RetryConfig
    ) -> None:
        """A completions file that is not an array fails the run without being overwritten."""
        shared_dir.mkdir(parents=True)
        path = shared_dir / "completions.json"
        path.write_text('{"unexpected": true}', encoding="utf-8")
        relay = CompletionRelay(shared_dir, retry_config=slow_retry)

        await relay.record("42", 25)

        assert path.read_text(encoding="utf-8") == '{"unexpected": true}'
        assert relay.pending_count == 1
        relay.clear()

    @pytest.mark.asyncio
    async def test_close_cancels_retry(self, shared_dir: Path, slow_retry: RetryConfig) -> None:
        relay = CompletionRelay(shared_dir, retry_config=slow_retry)
        failing = AsyncMock(side_effect=StorageIOError("write_json", "completions.json"))

        with patch("sanjou_sync.shared.relay.write_json_atomic", failing):
            await relay.record("42", 25)
        await relay.close()

        assert not relay.retry_scheduled


class TestPendingCompletion:
    """Tests for queue items."""

    def test_iso_timestamp_has_milliseconds(self) -> None:
        stamp = iso_now()
        assert stamp.endswith("Z")
        assert len(stamp.split(".")[1]) == 4  # three digits and Z

    def test_file_entry_omits_missing_block(self) -> None:
        item = PendingCompletion(task_id="1", duration_minutes=25, completed_at=COMPLETED_AT)
        assert item.to_file_entry() == {"taskId": "1", "completedAt": COMPLETED_AT, "duration": 25}
        assert item.dedup_key == ("1", COMPLETED_AT)
