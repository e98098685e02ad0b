"""
Tests for CosmosRemoteStore.

Unit tests run against a mocked Cosmos client. The live tests at the
bottom require SANJOU_COSMOS_* environment variables to be set.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.core.exceptions import ServiceRequestError, ServiceResponseError
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError
from conftest import settle

from sanjou_sync.config import CosmosRemoteConfig
from sanjou_sync.exceptions import (
    AuthenticationError,
    FormatError,
    StorageConnectionError,
    StorageIOError,
)
from sanjou_sync.remote import CosmosRemoteStore, RemoteRecord

PARTITION = "user-123"


def make_item(etag: str, origin: str = "client-b") -> dict[str, Any]:
    return {
        "id": PARTITION,
        "partitionKey": PARTITION,
        "update": "e30=",
        "fullState": "e30=",
        "origin": origin,
        "timestamp": 1,
        "_etag": etag,
    }


@pytest.fixture
def container() -> MagicMock:
    container = MagicMock()
    container.read_item = AsyncMock(return_value=make_item("1"))
    container.upsert_item = AsyncMock()
    return container


@pytest.fixture
def cosmos_client(container: MagicMock) -> Iterator[MagicMock]:
    database = MagicMock()
    database.create_container_if_not_exists = AsyncMock(return_value=container)
    client = MagicMock()
    client.create_database_if_not_exists = AsyncMock(return_value=database)
    client.close = AsyncMock()
    with patch("sanjou_sync.remote.cosmos.CosmosClient", return_value=client) as factory:
        client.factory = factory
        yield client


@pytest.fixture
def key_config() -> CosmosRemoteConfig:
    return CosmosRemoteConfig(
        endpoint="https://example.documents.azure.com:443/",
        auth_method="key",
        key="secret",
        poll_interval=0.0,
    )


class TestInitialize:
    """Tests for connecting to Cosmos DB."""

    @pytest.mark.asyncio
    async def test_key_auth(self, cosmos_client: MagicMock, key_config: CosmosRemoteConfig) -> None:
        store = await CosmosRemoteStore.create(key_config)

        cosmos_client.factory.assert_called_once_with(key_config.endpoint, credential="secret")
        cosmos_client.create_database_if_not_exists.assert_awaited_once_with(id="sanjou")
        await store.close()
        cosmos_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_default_credential(self, cosmos_client: MagicMock) -> None:
        config = CosmosRemoteConfig(endpoint="https://example.documents.azure.com:443/")
        credential = MagicMock()
        credential.close = AsyncMock()

        with patch("sanjou_sync.remote.cosmos.DefaultAzureCredential", return_value=credential):
            store = await CosmosRemoteStore.create(config)
            await store.close()

        cosmos_client.factory.assert_called_once_with(config.endpoint, credential=credential)
        credential.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unauthorized(self, cosmos_client: MagicMock, key_config: CosmosRemoteConfig) -> None:
        cosmos_client.create_database_if_not_exists.side_effect = CosmosHttpResponseError(
            status_code=401, message="unauthorized"
        )

        with pytest.raises(AuthenticationError):
            await CosmosRemoteStore.create(key_config)

    @pytest.mark.asyncio
    async def test_unreachable(self, cosmos_client: MagicMock, key_config: CosmosRemoteConfig) -> None:
        cosmos_client.create_database_if_not_exists.side_effect = OSError("no route to host")

        with pytest.raises(StorageConnectionError):
            await CosmosRemoteStore.create(key_config)

    @pytest.mark.asyncio
    async def test_use_before_initialize(self, key_config: CosmosRemoteConfig) -> None:
        with pytest.raises(StorageIOError):
            await CosmosRemoteStore(key_config).get(PARTITION)


class TestRecords:
    """Tests for reading and writing the sync record."""

    @pytest.mark.asyncio
    async def test_get_record(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        store = await CosmosRemoteStore.create(key_config)

        record = await store.get(PARTITION)

        assert record == RemoteRecord(update="e30=", full_state="e30=", origin="client-b", timestamp=1)
        container.read_item.assert_awaited_once_with(item=PARTITION, partition_key=PARTITION)

    @pytest.mark.asyncio
    async def test_missing_record(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        container.read_item.side_effect = CosmosResourceNotFoundError(
            status_code=404, message="not found"
        )
        store = await CosmosRemoteStore.create(key_config)

        assert await store.get(PARTITION) is None

    @pytest.mark.asyncio
    async def test_malformed_record(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        container.read_item.return_value = {"id": PARTITION, "update": 5}
        store = await CosmosRemoteStore.create(key_config)

        with pytest.raises(FormatError):
            await store.get(PARTITION)

    @pytest.mark.asyncio
    async def test_put_upserts_item(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        store = await CosmosRemoteStore.create(key_config)
        record = RemoteRecord(update="a", full_state="b", origin="client-a", timestamp=42)

        await store.put(PARTITION, record)

        container.upsert_item.assert_awaited_once_with(
            body={
                "id": PARTITION,
                "partitionKey": PARTITION,
                "update": "a",
                "fullState": "b",
                "origin": "client-a",
                "timestamp": 42,
            }
        )

    @pytest.mark.asyncio
    async def test_put_failure(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        container.upsert_item.side_effect = CosmosHttpResponseError(
            status_code=503, message="unavailable"
        )
        store = await CosmosRemoteStore.create(key_config)

        with pytest.raises(StorageIOError):
            await store.put(PARTITION, RemoteRecord("a", "b", "client-a", 1))

    @pytest.mark.asyncio
    async def test_transport_errors_wrapped(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        container.read_item.side_effect = ServiceRequestError("connection refused")
        container.upsert_item.side_effect = ServiceResponseError("connection reset")
        store = await CosmosRemoteStore.create(key_config)

        with pytest.raises(StorageIOError):
            await store.get(PARTITION)
        with pytest.raises(StorageIOError):
            await store.put(PARTITION, RemoteRecord("a", "b", "client-a", 1))


class TestSubscribe:
    """Tests for etag polling."""

    @pytest.mark.asyncio
    async def test_changes_delivered_once_per_etag(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        items = [make_item("1"), make_item("1"), make_item("2", origin="client-c")]

        def read_item(**kwargs: Any) -> dict[str, Any]:
            return items.pop(0) if len(items) > 1 else items[0]

        container.read_item = AsyncMock(side_effect=read_item)
        store = await CosmosRemoteStore.create(key_config)
        received: list[RemoteRecord] = []
        errors: list[Exception] = []

        unsubscribe = await store.subscribe(PARTITION, received.append, errors.append)
        await settle(20)
        unsubscribe()
        await store.close()

        assert [r.origin for r in received] == ["client-b", "client-c"]
        assert errors == []

    @pytest.mark.asyncio
    async def test_poll_errors_reported(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        container.read_item.side_effect = CosmosHttpResponseError(
            status_code=500, message="boom"
        )
        store = await CosmosRemoteStore.create(key_config)
        errors: list[Exception] = []

        await store.subscribe(PARTITION, lambda record: None, errors.append)
        await settle(5)
        await store.close()

        assert errors
        assert all(isinstance(e, StorageIOError) for e in errors)

    @pytest.mark.asyncio
    async def test_polling_survives_network_outage(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        """Transport errors are reported and polling resumes once the network is back."""
        outcomes: list[Any] = [
            ServiceRequestError("connection refused"),
            ServiceResponseError("connection reset"),
        ]

        def read_item(**kwargs: Any) -> dict[str, Any]:
            if outcomes:
                raise outcomes.pop(0)
            return make_item("3")

        container.read_item = AsyncMock(side_effect=read_item)
        store = await CosmosRemoteStore.create(key_config)
        received: list[RemoteRecord] = []
        errors: list[Exception] = []

        unsubscribe = await store.subscribe(PARTITION, received.append, errors.append)
        await settle(20)
        unsubscribe()
        await store.close()

        assert len(errors) == 2
        assert all(isinstance(e, StorageIOError) for e in errors)
        assert [r.origin for r in received] == ["client-b"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_polling(
        self, cosmos_client: MagicMock, container: MagicMock, key_config: CosmosRemoteConfig
    ) -> None:
        items = [make_item("1"), make_item("2")]

        def read_item(**kwargs: Any) -> dict[str, Any]:
            return items.pop(0) if len(items) > 1 else items[0]

        def on_change(record: RemoteRecord) -> None:
            raise RuntimeError("listener failed")

        container.read_item = AsyncMock(side_effect=read_item)
        store = await CosmosRemoteStore.create(key_config)
        errors: list[Exception] = []

        unsubscribe = await store.subscribe(PARTITION, on_change, errors.append)
        await settle(20)
        unsubscribe()
        await store.close()

        assert len(errors) == 2
        assert container.read_item.await_count > 2


@pytest.mark.skipif(
    not os.environ.get("SANJOU_COSMOS_ENDPOINT"),
    reason="SANJOU_COSMOS_ENDPOINT not set",
)
class TestCosmosLive:
    """Round trip against a real Cosmos DB account."""

    @pytest.mark.asyncio
    async def test_put_then_get(self) -> None:
        store = await CosmosRemoteStore.create(CosmosRemoteConfig.from_environment())
        partition = f"test-partition-{uuid.uuid4().hex[:8]}"
        record = RemoteRecord(update="e30=", full_state="e30=", origin="live-test", timestamp=1)
        try:
            await store.put(partition, record)
            assert await store.get(partition) == record
        finally:
            await store.close()
