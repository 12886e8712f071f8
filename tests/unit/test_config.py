"""
Unit tests for configuration loading.

Tests cover:
- Defaults
- Environment overrides
- Validation
- Store/client option splitting
"""

import logging

import pytest

from dbaas.milestone_db.config import (
    MilestoneConfig,
    MongoConfig,
    ObservabilityConfig,
    StoreConfig,
    split_store_options,
)
from dbaas.milestone_db.observability import setup_logging


class TestStoreConfig:
    """Tests for StoreConfig."""

    def test_defaults(self, monkeypatch):
        for name in ("MONGO_URL", "MILESTONE_INTERVAL", "MILESTONE_DISABLE_INDEX_CREATION", "LOG_FORMAT"):
            monkeypatch.delenv(name, raising=False)

        config = StoreConfig.from_env()

        assert config.mongo.url == "mongodb://localhost:27017/sharedb"
        assert config.milestone.interval == 1000
        assert config.milestone.disable_index_creation is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MONGO_URL", "mongodb://db:27017/milestones")
        monkeypatch.setenv("MONGO_APP_NAME", "sync-service")
        monkeypatch.setenv("MONGO_MAX_POOL_SIZE", "20")
        monkeypatch.setenv("MILESTONE_INTERVAL", "250")
        monkeypatch.setenv("MILESTONE_DISABLE_INDEX_CREATION", "true")
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = StoreConfig.from_env()

        assert config.mongo.url == "mongodb://db:27017/milestones"
        assert config.mongo.client_options() == {
            "serverSelectionTimeoutMS": 30000,
            "maxPoolSize": 20,
            "appname": "sync-service",
        }
        assert config.milestone == MilestoneConfig(interval=250, disable_index_creation=True)
        assert config.observability.log_format == "text"

    @pytest.mark.parametrize(
        "config",
        [
            StoreConfig(mongo=MongoConfig(url="")),
            StoreConfig(mongo=MongoConfig(url="http://localhost")),
            StoreConfig(milestone=MilestoneConfig(interval=0)),
            StoreConfig(observability=ObservabilityConfig(log_format="xml")),
        ],
    )
    def test_validate_rejects(self, config):
        with pytest.raises(ValueError):
            config.validate()

    def test_log_config_redacts_password(self, caplog):
        config = StoreConfig(mongo=MongoConfig(url="mongodb://app:hunter2@db:27017/sharedb"))

        with caplog.at_level(logging.INFO, logger="dbaas.milestone_db.config"):
            config.log_config()

        [record] = caplog.records
        assert record.mongo_url == "mongodb://app:***@db:27017/sharedb"


class TestSplitStoreOptions:
    """Tests for split_store_options()."""

    def test_splits(self):
        options = {
            "mongo": "mongodb://localhost/test",
            "interval": 10,
            "disableIndexCreation": True,
            "maxPoolSize": 5,
            "tls": True,
        }

        store_options, client_options = split_store_options(options)

        assert store_options == {
            "mongo": "mongodb://localhost/test",
            "interval": 10,
            "disableIndexCreation": True,
        }
        assert client_options == {"maxPoolSize": 5, "tls": True}
        assert "mongo" in options


class TestSetupLogging:
    """Tests for setup_logging()."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(ObservabilityConfig(log_level="DEBUG", log_format="json"))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert type(root.handlers[0].formatter).__name__ == "JSONFormatter"
        assert logging.getLogger("pymongo").level == logging.WARNING

    def test_text_format(self):
        setup_logging(ObservabilityConfig(log_level="warning", log_format="text"))

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert "%(levelname)s" in root.handlers[0].formatter._fmt
