"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from sanjou_sync.config import (
    SHARED_DIR_NAME,
    CosmosRemoteConfig,
    ImporterConfig,
    SyncSettings,
    default_shared_dir,
)
from sanjou_sync.exceptions import ConfigurationAbsentError


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (
        "SANJOU_DATA_DIR",
        "SANJOU_SHARED_DIR",
        "SANJOU_COSMOS_ENDPOINT",
        "SANJOU_COSMOS_DATABASE",
        "SANJOU_COSMOS_CONTAINER",
        "SANJOU_COSMOS_AUTH_METHOD",
        "SANJOU_COSMOS_KEY",
        "SANJOU_LOG_JSON",
        "SANJOU_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestCosmosRemoteConfig:
    """Tests for remote configuration."""

    def test_missing_endpoint(self, clean_env: pytest.MonkeyPatch) -> None:
        with pytest.raises(ConfigurationAbsentError) as exc_info:
            CosmosRemoteConfig.from_environment()
        assert exc_info.value.setting == "SANJOU_COSMOS_ENDPOINT"

    def test_key_auth_requires_key(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("SANJOU_COSMOS_ENDPOINT", "https://example.documents.azure.com:443/")
        clean_env.setenv("SANJOU_COSMOS_AUTH_METHOD", "key")

        with pytest.raises(ConfigurationAbsentError):
            CosmosRemoteConfig.from_environment()

    def test_from_environment(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("SANJOU_COSMOS_ENDPOINT", "https://example.documents.azure.com:443/")
        clean_env.setenv("SANJOU_COSMOS_CONTAINER", "sync-test")

        config = CosmosRemoteConfig.from_environment()

        assert config.database_name == "sanjou"
        assert config.container_name == "sync-test"
        assert config.auth_method == "default_credential"


class TestSyncSettings:
    """Tests for top-level settings."""

    def test_environment_without_remote(self, clean_env: pytest.MonkeyPatch, temp_dir: Path) -> None:
        clean_env.setenv("SANJOU_DATA_DIR", str(temp_dir / "data"))
        clean_env.setenv("SANJOU_LOG_LEVEL", "debug")

        settings = SyncSettings.from_environment()

        assert settings.data_dir == temp_dir / "data"
        assert settings.cosmos is None
        assert not settings.remote_configured
        assert settings.log_level == "DEBUG"

    def test_from_yaml_file(self, temp_dir: Path) -> None:
        path = temp_dir / "settings.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "data_dir": str(temp_dir / "data"),
                    "shared_dir": str(temp_dir / "shared"),
                    "cosmos": {"endpoint": "https://example.documents.azure.com:443/"},
                    "importer": {"poll_interval": 5, "max_error_notifications": 1},
                    "relay": {"max_retries": 2, "jitter": 0},
                    "log_json": True,
                }
            ),
            encoding="utf-8",
        )

        settings = SyncSettings.from_file(path)

        assert settings.shared_dir == temp_dir / "shared"
        assert settings.cosmos.endpoint == "https://example.documents.azure.com:443/"
        assert settings.importer.poll_interval == 5.0
        assert settings.importer.max_error_notifications == 1
        assert settings.relay_retry.max_retries == 2
        assert settings.relay_retry.jitter == 0.0
        assert settings.log_json is True

    def test_missing_or_broken_file_gives_defaults(self, temp_dir: Path) -> None:
        assert SyncSettings.from_file(temp_dir / "absent.yaml").cosmos is None

        broken = temp_dir / "broken.yaml"
        broken.write_text("cosmos: [unclosed", encoding="utf-8")
        assert SyncSettings.from_file(broken).importer == ImporterConfig()

    def test_cosmos_without_endpoint_disabled(self, temp_dir: Path) -> None:
        path = temp_dir / "settings.yaml"
        path.write_text("cosmos:\n  database_name: other\n", encoding="utf-8")

        assert SyncSettings.from_file(path).cosmos is None


class TestSharedDir:
    """Tests for the platform shared-config location."""

    def test_macos(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sys.platform", "darwin")
        assert default_shared_dir() == (
            Path.home() / "Library" / "Application Support" / SHARED_DIR_NAME
        )

    def test_linux_xdg(self, monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
        monkeypatch.setattr("sys.platform", "linux")
        monkeypatch.setenv("XDG_DATA_HOME", str(temp_dir))
        assert default_shared_dir() == temp_dir / SHARED_DIR_NAME

    def test_linux_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sys.platform", "linux")
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        assert default_shared_dir() == Path.home() / ".local" / "share" / SHARED_DIR_NAME


class TestImporterConfig:
    """Tests for the importer read retry policy."""

    def test_read_retry(self) -> None:
        retry = ImporterConfig().read_retry()

        assert retry.max_retries == 2
        assert retry.backoff_base == 0.5
        assert retry.jitter == 0.0
