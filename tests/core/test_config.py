"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from provstore.core import defaults
from provstore.core.config import ProvstoreConfig, clear_config_cache, get_config
from provstore.core.exceptions import ConfigError


class TestFromEnv:
    """PROVSTORE_* variables override defaults."""

    def test_defaults(self):
        config = ProvstoreConfig.from_env()
        assert config.chunk_size == defaults.DEFAULT_CHUNK_SIZE
        assert config.fanout == defaults.DEFAULT_FANOUT
        assert config.empty_input_policy == "reject"
        assert config.ledger_token is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("PROVSTORE_CHUNK_SIZE", "4096")
        monkeypatch.setenv("PROVSTORE_INCLUSION_TIMEOUT", "12.5")
        monkeypatch.setenv("PROVSTORE_LOG_JSON", "yes")
        monkeypatch.setenv("PROVSTORE_LEDGER_TOKEN", "secret")
        monkeypatch.setenv("PROVSTORE_EMPTY_INPUT_POLICY", "empty_cid")
        config = ProvstoreConfig.from_env()
        assert config.chunk_size == 4096
        assert config.inclusion_timeout == 12.5
        assert config.log_json is True
        assert config.ledger_token == "secret"
        assert config.empty_input_policy == "empty_cid"

    def test_empty_value_keeps_default(self, monkeypatch):
        monkeypatch.setenv("PROVSTORE_DB_PORT", "")
        assert ProvstoreConfig.from_env().db_port == 5432

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("PROVSTORE_DB_PORT", "five")
        with pytest.raises(ConfigError, match="PROVSTORE_DB_PORT"):
            ProvstoreConfig.from_env()

    def test_bad_policy(self, monkeypatch):
        monkeypatch.setenv("PROVSTORE_EMPTY_INPUT_POLICY", "ignore")
        with pytest.raises(ConfigError):
            ProvstoreConfig.from_env()


class TestValidation:
    """Invalid combinations are refused at construction."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"chunk_size": 0},
            {"chunk_size": defaults.MAX_BLOCK_SIZE + 1},
            {"fanout": 1},
            {"worker_pool_size": 0},
            {"worker_pool_kind": "fiber"},
        ],
    )
    def test_rejected(self, kwargs):
        with pytest.raises(ConfigError):
            ProvstoreConfig(**kwargs)


class TestCache:
    """get_config parses once until the cache is cleared."""

    def test_cached(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv("PROVSTORE_FANOUT", "8")
        assert get_config() is first
        clear_config_cache()
        assert get_config().fanout == 8


class TestToDict:
    """Secrets are masked for display."""

    def test_masks(self):
        data = ProvstoreConfig(db_password="pw", ledger_token="tok").to_dict()
        assert data["db_password"] == "***"
        assert data["ledger_token"] == "***"

    def test_dsn(self):
        config = ProvstoreConfig(db_user="u", db_password="p", db_host="h", db_port=1, db_name="n")
        assert config.db_dsn == "postgresql://u:p@h:1/n"
