"""
Configuration for the sync core.

Settings can be provided directly, via environment variables, or via a
YAML settings file:

Environment Variables:
    SANJOU_DATA_DIR: Local data directory (default: ~/.sanjou)
    SANJOU_SHARED_DIR: Directory shared with the external task app
    SANJOU_COSMOS_ENDPOINT: Cosmos DB endpoint URL (remote sync disabled if unset)
    SANJOU_COSMOS_DATABASE: Database name (default: sanjou)
    SANJOU_COSMOS_CONTAINER: Container name (default: sync)
    SANJOU_COSMOS_AUTH_METHOD: 'key' or 'default_credential' (default)
    SANJOU_COSMOS_KEY: Account key (only if auth method is 'key')
    SANJOU_LOG_JSON: 'true' to emit structured JSON logs
    SANJOU_LOG_LEVEL: Log level name (default: INFO)

YAML file layout mirrors the dataclass fields:

    data_dir: ~/.sanjou
    shared_dir: ~/shared
    cosmos:
      endpoint: https://example.documents.azure.com:443/
      database_name: sanjou
    importer:
      poll_interval: 2.0
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationAbsentError
from .resilience import RetryConfig

logger = logging.getLogger(__name__)

# Fixed names shared with the external task app
SHARED_DIR_NAME = "subete-sanjou-shared"
COMPLETIONS_FILE_NAME = "completions.json"
TASKS_FILE_NAME = "tasks.json"

# Local durable state
DEFAULT_DATA_DIR_NAME = ".sanjou"
DOCUMENT_NAME = "sanjou-data"
CLIENT_ID_FILE_NAME = ".client_id"
TASKS_CACHE_FILE_NAME = "shared-tasks-cache.json"

# Auth methods
AUTH_KEY = "key"
AUTH_DEFAULT_CREDENTIAL = "default_credential"


def default_shared_dir() -> Path:
    """Platform location of the shared-config directory."""
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / SHARED_DIR_NAME
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return base / SHARED_DIR_NAME


def default_data_dir() -> Path:
    return Path.home() / DEFAULT_DATA_DIR_NAME


def default_relay_retry() -> RetryConfig:
    """Completion relay backoff: 1s base, 30s cap, up to 1s jitter, 5 retries."""
    return RetryConfig(max_retries=5, backoff_base=1.0, backoff_max=30.0, jitter=1.0)


@dataclass
class CosmosRemoteConfig:
    """Configuration for the Cosmos DB remote record store.

    Attributes:
        endpoint: Cosmos DB account endpoint URL
        database_name: Name of the database
        container_name: Container holding one sync record per partition
        auth_method: Authentication method ('key' or 'default_credential')
        key: Cosmos DB account key (only needed if auth_method='key')
        poll_interval: Seconds between subscription polls
    """

    endpoint: str
    database_name: str = "sanjou"
    container_name: str = "sync"
    auth_method: str = AUTH_DEFAULT_CREDENTIAL
    key: str | None = None
    poll_interval: float = 2.0

    @classmethod
    def from_environment(cls) -> CosmosRemoteConfig:
        """Create config from environment variables.

        Raises:
            ConfigurationAbsentError: If the endpoint (or a required key) is missing
        """
        endpoint = os.environ.get("SANJOU_COSMOS_ENDPOINT")
        auth_method = os.environ.get("SANJOU_COSMOS_AUTH_METHOD", AUTH_DEFAULT_CREDENTIAL)
        key = os.environ.get("SANJOU_COSMOS_KEY")

        if not endpoint:
            raise ConfigurationAbsentError("SANJOU_COSMOS_ENDPOINT")
        if auth_method == AUTH_KEY and not key:
            raise ConfigurationAbsentError(
                "SANJOU_COSMOS_KEY", "required when SANJOU_COSMOS_AUTH_METHOD='key'"
            )

        return cls(
            endpoint=endpoint,
            database_name=os.environ.get("SANJOU_COSMOS_DATABASE", "sanjou"),
            container_name=os.environ.get("SANJOU_COSMOS_CONTAINER", "sync"),
            auth_method=auth_method,
            key=key,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CosmosRemoteConfig:
        if not data.get("endpoint"):
            raise ConfigurationAbsentError("cosmos.endpoint")
        return cls(
            endpoint=data["endpoint"],
            database_name=data.get("database_name", "sanjou"),
            container_name=data.get("container_name", "sync"),
            auth_method=data.get("auth_method", AUTH_DEFAULT_CREDENTIAL),
            key=data.get("key"),
            poll_interval=float(data.get("poll_interval", 2.0)),
        )


@dataclass
class ImporterConfig:
    """Configuration for the external task importer."""

    poll_interval: float = 2.0
    max_read_attempts: int = 3
    retry_delay: float = 0.5
    max_error_notifications: int = 3

    def read_retry(self) -> RetryConfig:
        return RetryConfig(
            max_retries=max(self.max_read_attempts - 1, 0),
            backoff_base=self.retry_delay,
            backoff_max=self.retry_delay * 2 ** max(self.max_read_attempts, 1),
            jitter=0.0,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImporterConfig:
        return cls(
            poll_interval=float(data.get("poll_interval", 2.0)),
            max_read_attempts=int(data.get("max_read_attempts", 3)),
            retry_delay=float(data.get("retry_delay", 0.5)),
            max_error_notifications=int(data.get("max_error_notifications", 3)),
        )


@dataclass
class SyncSettings:
    """Top-level settings consumed by the composition root.

    Attributes:
        data_dir: Directory for the durable log, client id and caches
        shared_dir: Directory shared with the external task app
        cosmos: Remote store config, None when remote sync is not configured
        relay_retry: Backoff policy of the completion relay
        importer: Task importer polling/retry policy
        log_json: Emit structured JSON logs
        log_level: Log level name
    """

    data_dir: Path = field(default_factory=default_data_dir)
    shared_dir: Path = field(default_factory=default_shared_dir)
    cosmos: CosmosRemoteConfig | None = None
    relay_retry: RetryConfig = field(default_factory=default_relay_retry)
    importer: ImporterConfig = field(default_factory=ImporterConfig)
    log_json: bool = False
    log_level: str = "INFO"

    @property
    def remote_configured(self) -> bool:
        return self.cosmos is not None

    @classmethod
    def from_environment(cls) -> SyncSettings:
        """Create settings from environment variables."""
        try:
            cosmos: CosmosRemoteConfig | None = CosmosRemoteConfig.from_environment()
        except ConfigurationAbsentError as e:
            logger.info("Remote sync disabled: %s", e.message)
            cosmos = None

        data_dir = os.environ.get("SANJOU_DATA_DIR")
        shared_dir = os.environ.get("SANJOU_SHARED_DIR")

        return cls(
            data_dir=Path(data_dir).expanduser() if data_dir else default_data_dir(),
            shared_dir=Path(shared_dir).expanduser() if shared_dir else default_shared_dir(),
            cosmos=cosmos,
            log_json=os.environ.get("SANJOU_LOG_JSON", "").lower() == "true",
            log_level=os.environ.get("SANJOU_LOG_LEVEL", "INFO").upper(),
        )

    @classmethod
    def from_file(cls, path: Path) -> SyncSettings:
        """Load settings from a YAML file. Missing file yields defaults."""
        config = _load_yaml(path)

        cosmos = None
        if config.get("cosmos"):
            try:
                cosmos = CosmosRemoteConfig.from_dict(config["cosmos"])
            except ConfigurationAbsentError as e:
                logger.info("Remote sync disabled: %s", e.message)

        settings = cls(
            cosmos=cosmos,
            importer=ImporterConfig.from_dict(config.get("importer") or {}),
            log_json=bool(config.get("log_json", False)),
            log_level=str(config.get("log_level", "INFO")).upper(),
        )
        if config.get("data_dir"):
            settings.data_dir = Path(config["data_dir"]).expanduser()
        if config.get("shared_dir"):
            settings.shared_dir = Path(config["shared_dir"]).expanduser()
        relay = config.get("relay") or {}
        if relay:
            settings.relay_retry = RetryConfig(
                max_retries=int(relay.get("max_retries", 5)),
                backoff_base=float(relay.get("backoff_base", 1.0)),
                backoff_max=float(relay.get("backoff_max", 30.0)),
                jitter=float(relay.get("jitter", 1.0)),
            )
        return settings


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
        return {}
    return loaded if isinstance(loaded, dict) else {}
