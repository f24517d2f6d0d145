"""
Unit tests for configuration loading and validation.
"""

import pytest

from localfirst.woning_store.config import (
    KvsConfig,
    RemoteBackend,
    ReplicatorConfig,
    StoreBackend,
    StoreConfig,
)


class TestConfigFromEnv:
    """Tests for environment loading."""

    def test_defaults(self, monkeypatch):
        for name in ("WONING_STORE_BACKEND", "WONING_REMOTE_BACKEND", "WONING_CACHE_TTL_SECONDS"):
            monkeypatch.delenv(name, raising=False)

        config = StoreConfig.from_env()

        assert config.kvs.backend == StoreBackend.MEMORY
        assert config.kvs.max_item_bytes == 1024 * 1024
        assert config.kvs.archive_retention_years == 2
        assert config.cache.ttl_seconds == 30.0
        assert config.replicator.backend == RemoteBackend.NONE
        assert not config.replicator.enabled
        assert config.archiver.remittance_commission_rate == 0.10

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("WONING_STORE_BACKEND", "sqlite")
        monkeypatch.setenv("WONING_SQLITE_PATH", "/tmp/agency.db")
        monkeypatch.setenv("WONING_REMOTE_BACKEND", "http")
        monkeypatch.setenv("WONING_REMOTE_URL", "https://remote.test")
        monkeypatch.setenv("WONING_REMOTE_TOKEN", "t0k3n")
        monkeypatch.setenv("WONING_OUTBOX_CAPACITY", "50")
        monkeypatch.setenv("WONING_CACHE_TTL_SECONDS", "5")
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = StoreConfig.from_env()

        assert config.kvs.backend == StoreBackend.SQLITE
        assert config.kvs.sqlite_path == "/tmp/agency.db"
        assert config.replicator.backend == RemoteBackend.HTTP
        assert config.replicator.token == "t0k3n"
        assert config.replicator.outbox_capacity == 50
        assert config.cache.ttl_seconds == 5.0
        assert config.observability.log_format == "json"

    def test_invalid_store_backend(self, monkeypatch):
        monkeypatch.setenv("WONING_STORE_BACKEND", "redis")

        with pytest.raises(ValueError, match="WONING_STORE_BACKEND"):
            KvsConfig.from_env()

    def test_invalid_remote_backend(self, monkeypatch):
        monkeypatch.setenv("WONING_REMOTE_BACKEND", "ftp")

        with pytest.raises(ValueError, match="WONING_REMOTE_BACKEND"):
            ReplicatorConfig.from_env()


class TestConfigValidate:
    """Tests for StoreConfig.validate."""

    def test_default_config_is_valid(self):
        StoreConfig().validate()

    def test_item_ceiling_above_capacity(self):
        config = StoreConfig(kvs=KvsConfig(capacity_bytes=100, max_item_bytes=200))

        with pytest.raises(ValueError):
            config.validate()

    def test_outbox_capacity_must_be_positive(self):
        config = StoreConfig(replicator=ReplicatorConfig(outbox_capacity=0))

        with pytest.raises(ValueError):
            config.validate()

    def test_log_config_hides_token(self, caplog):
        config = StoreConfig(
            replicator=ReplicatorConfig(backend=RemoteBackend.HTTP, token="super-secret")
        )

        with caplog.at_level("INFO"):
            config.log_config()

        assert caplog.records
        for record in caplog.records:
            assert "super-secret" not in str(record.__dict__)
