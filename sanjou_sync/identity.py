"""
Replica identity and remote partition selection.

The client id is a stable opaque token generated once per installation
and persisted in the data directory. It only distinguishes this
replica's own writes (echoes) from genuine remote writes; it is never
used for access control.
"""

from __future__ import annotations

import logging
import random
import string
import time
from pathlib import Path

from .config import CLIENT_ID_FILE_NAME

logger = logging.getLogger(__name__)

ANONYMOUS_PARTITION_KEY = "sanjou-sync-anonymous"

_BASE36 = string.digits + string.ascii_lowercase


def now_ms() -> int:
    return int(time.time() * 1000)


def random_suffix(length: int = 9) -> str:
    return "".join(random.choices(_BASE36, k=length))


def generate_id() -> str:
    """Entity id: '<epoch-ms>-<9 base36 chars>'."""
    return f"{now_ms()}-{random_suffix()}"


def generate_client_id() -> str:
    return f"client-{now_ms()}-{random_suffix()}"


def partition_key_for(user_id: str | None) -> str:
    """Remote partition for an identity; anonymous users share a fixed key."""
    return user_id if user_id else ANONYMOUS_PARTITION_KEY


class ClientIdStore:
    """Get-or-create persistence for the replica's client id.

    The id is stored in <data_dir>/.client_id and persists across
    sessions. If the directory is not writable the generated id is kept
    in memory for this process only.
    """

    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / CLIENT_ID_FILE_NAME
        self._client_id: str | None = None

    async def get_client_id(self) -> str:
        if self._client_id is not None:
            return self._client_id

        if self.path.exists():
            stored = self.path.read_text(encoding="utf-8").strip()
            if stored:
                self._client_id = stored
                return self._client_id

        self._client_id = generate_client_id()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(self._client_id, encoding="utf-8")
        except OSError as e:
            logger.warning("Could not persist client id to %s: %s", self.path, e)

        return self._client_id
