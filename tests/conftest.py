"""
Shared test configuration and fixtures.

Provides temporary data/shared directories, fresh documents and stores,
and helpers for letting scheduled callbacks run.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest

from sanjou_sync.config import ImporterConfig, SyncSettings
from sanjou_sync.document import Origin, ReplicatedDocument
from sanjou_sync.resilience import RetryConfig
from sanjou_sync.store import DocumentStore

logger = logging.getLogger(__name__)


async def settle(rounds: int = 10) -> None:
    """Let call_soon callbacks and freshly created tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def capture_deltas(document: ReplicatedDocument) -> list[tuple[bytes, Origin]]:
    """Record every delta a document emits."""
    deltas: list[tuple[bytes, Origin]] = []
    document.on_update(lambda delta, origin: deltas.append((delta, origin)))
    return deltas


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def data_dir(temp_dir: Path) -> Path:
    return temp_dir / "data"


@pytest.fixture
def shared_dir(temp_dir: Path) -> Path:
    return temp_dir / "subete-sanjou-shared"


@pytest.fixture
def document() -> ReplicatedDocument:
    return ReplicatedDocument("client-a")


@pytest.fixture
def store(document: ReplicatedDocument) -> DocumentStore:
    return DocumentStore(document)


@pytest.fixture
def slow_retry() -> RetryConfig:
    """Retry policy whose timers never fire during a test."""
    return RetryConfig(max_retries=5, backoff_base=60.0, backoff_max=120.0, jitter=0.0)


@pytest.fixture
def settings(data_dir: Path, shared_dir: Path, slow_retry: RetryConfig) -> SyncSettings:
    return SyncSettings(
        data_dir=data_dir,
        shared_dir=shared_dir,
        relay_retry=slow_retry,
        importer=ImporterConfig(poll_interval=60.0, retry_delay=0.0),
    )
