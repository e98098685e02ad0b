"""
Azure Cosmos DB remote record store.

One container, partitioned by /partitionKey, holds one item per
identity partition:

    {
        "id": "{partition_key}",
        "partitionKey": "{partition_key}",
        "update": "{base64 delta}",
        "fullState": "{base64 snapshot}",
        "origin": "{client_id}",
        "timestamp": {epoch_ms}
    }

Change subscriptions poll the item and compare its ``_etag``.

Supports two authentication methods:
- Azure AD via DefaultAzureCredential (recommended)
- Key-based authentication
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from azure.core.exceptions import AzureError
from azure.cosmos import PartitionKey
from azure.cosmos.aio import ContainerProxy, CosmosClient, DatabaseProxy
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError
from azure.identity.aio import DefaultAzureCredential

from ..config import AUTH_KEY, CosmosRemoteConfig
from ..exceptions import (
    AuthenticationError,
    SanjouSyncError,
    StorageConnectionError,
    StorageIOError,
)
from .base import ErrorListener, RecordListener, RemoteRecord, RemoteStore

logger = logging.getLogger(__name__)

PARTITION_KEY_PATH = "/partitionKey"


class CosmosRemoteStore(RemoteStore):
    """Remote record store backed by a Cosmos DB container."""

    def __init__(self, config: CosmosRemoteConfig):
        self.config = config
        self._client: CosmosClient | None = None
        self._credential: Any = None
        self._database: DatabaseProxy | None = None
        self._container: ContainerProxy | None = None
        self._pollers: set[asyncio.Task] = set()
        self._initialized = False

    @classmethod
    async def create(cls, config: CosmosRemoteConfig | None = None) -> CosmosRemoteStore:
        """
        Create and initialize a Cosmos remote store.

        Args:
            config: Cosmos configuration (from env if None)

        Returns:
            Initialized CosmosRemoteStore instance
        """
        if config is None:
            config = CosmosRemoteConfig.from_environment()

        store = cls(config)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Connect and ensure the database and container exist."""
        if self._initialized:
            return

        try:
            if self.config.auth_method == AUTH_KEY:
                if not self.config.key:
                    raise AuthenticationError(self.config.endpoint, "Key required for key auth")
                self._client = CosmosClient(self.config.endpoint, credential=self.config.key)
            else:
                self._credential = DefaultAzureCredential()
                self._client = CosmosClient(self.config.endpoint, credential=self._credential)

            self._database = await self._client.create_database_if_not_exists(
                id=self.config.database_name
            )
            self._container = await self._database.create_container_if_not_exists(
                id=self.config.container_name,
                partition_key=PartitionKey(path=PARTITION_KEY_PATH),
            )

            self._initialized = True
            logger.info(
                "Cosmos remote store initialized: %s (database=%s, container=%s)",
                self.config.endpoint,
                self.config.database_name,
                self.config.container_name,
            )

        except AuthenticationError:
            raise
        except CosmosHttpResponseError as e:
            if e.status_code in (401, 403):
                raise AuthenticationError(self.config.endpoint, str(e)) from e
            raise StorageConnectionError(self.config.endpoint, e) from e
        except Exception as e:
            raise StorageConnectionError(self.config.endpoint, e) from e

    def _get_container(self) -> ContainerProxy:
        if not self._initialized or self._container is None:
            raise StorageIOError("get_container", cause=RuntimeError("Store not initialized"))
        return self._container

    async def _read_item(self, partition_key: str) -> dict[str, Any] | None:
        container = self._get_container()
        try:
            return await container.read_item(item=partition_key, partition_key=partition_key)
        except CosmosResourceNotFoundError:
            return None
        except AzureError as e:
            raise StorageIOError("read_item", partition_key, e) from e

    async def get(self, partition_key: str) -> RemoteRecord | None:
        item = await self._read_item(partition_key)
        return RemoteRecord.from_dict(item) if item is not None else None

    async def put(self, partition_key: str, record: RemoteRecord) -> None:
        container = self._get_container()
        item = {"id": partition_key, "partitionKey": partition_key, **record.to_dict()}
        try:
            await container.upsert_item(body=item)
        except AzureError as e:
            raise StorageIOError("upsert_item", partition_key, e) from e

    async def subscribe(
        self,
        partition_key: str,
        on_change: RecordListener,
        on_error: ErrorListener,
    ) -> Callable[[], None]:
        self._get_container()
        task = asyncio.create_task(self._poll(partition_key, on_change, on_error))
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _poll(
        self,
        partition_key: str,
        on_change: RecordListener,
        on_error: ErrorListener,
    ) -> None:
        last_etag: str | None = None
        while True:
            try:
                item = await self._read_item(partition_key)
                if item is not None and item.get("_etag") != last_etag:
                    last_etag = item.get("_etag")
                    on_change(RemoteRecord.from_dict(item))
            except SanjouSyncError as e:
                logger.warning("Subscription poll failed for %s: %s", partition_key, e.message)
                on_error(e)
            except Exception as e:
                # Keep polling; the next read may succeed
                logger.exception("Unexpected subscription poll error for %s", partition_key)
                on_error(StorageIOError("poll", partition_key, e))
            await asyncio.sleep(self.config.poll_interval)

    async def close(self) -> None:
        """Stop pollers and close Cosmos connections."""
        for task in list(self._pollers):
            task.cancel()
        self._pollers.clear()

        if self._client:
            await self._client.close()
            self._client = None

        if self._credential:
            await self._credential.close()
            self._credential = None

        self._database = None
        self._container = None
        self._initialized = False
