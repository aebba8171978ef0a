"""Runtime configuration for provstore.

Values come from ``PROVSTORE_*`` environment variables with defaults from
:mod:`provstore.core.defaults`. ``get_config()`` caches the parsed result;
call ``clear_config_cache()`` after changing the environment (tests do).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from functools import lru_cache
from typing import Any

from . import defaults
from .exceptions import ConfigError

EMPTY_POLICIES = ("reject", "empty_cid")
POOL_KINDS = ("thread", "process")


def _env(name: str, default: Any, cast: type = str) -> Any:
    raw = os.environ.get(f"PROVSTORE_{name}")
    if raw is None or raw == "":
        return default
    try:
        if cast is bool:
            return raw.strip().lower() in ("1", "true", "yes", "on")
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid value for PROVSTORE_{name}: {raw!r}") from e


@dataclass
class ProvstoreConfig:
    """All tunables for the engine."""

    # Ledger
    ledger_rpc_url: str = "http://127.0.0.1:1234/rpc/v1"
    ledger_token: str | None = None
    network: str = "calibration"
    randomness_address: str = "f00"

    # Deal registry (Postgres)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "provstore"
    db_user: str = "provstore"
    db_password: str = ""
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    # Archive
    chunk_size: int = defaults.DEFAULT_CHUNK_SIZE
    fanout: int = defaults.DEFAULT_FANOUT
    empty_input_policy: str = "reject"

    # Deal lifecycle
    deal_duration_epochs: int = defaults.DEFAULT_DEAL_DURATION_EPOCHS
    min_deal_duration_epochs: int = defaults.MIN_DEAL_DURATION_EPOCHS
    max_deal_duration_epochs: int = defaults.MAX_DEAL_DURATION_EPOCHS
    inclusion_timeout: float = defaults.INCLUSION_TIMEOUT_SECONDS
    poll_base_delay: float = defaults.POLL_BASE_DELAY_SECONDS
    poll_max_delay: float = defaults.POLL_MAX_DELAY_SECONDS
    max_status_polls: int = defaults.MAX_STATUS_POLLS
    verify_interval: float = defaults.VERIFY_INTERVAL_SECONDS
    max_verify_failures: int = defaults.MAX_CONSECUTIVE_VERIFY_FAILURES
    expiry_window: float = defaults.EXPIRY_WINDOW_SECONDS
    challenge_count: int = defaults.CHALLENGE_COUNT

    # Network calls
    call_timeout: float = defaults.CALL_TIMEOUT_SECONDS
    retry_attempts: int = defaults.RETRY_ATTEMPTS
    retry_base_delay: float = defaults.RETRY_BASE_DELAY_SECONDS
    retry_max_delay: float = defaults.RETRY_MAX_DELAY_SECONDS
    retry_jitter: float = 0.5

    # CPU work
    worker_pool_size: int = max(1, os.cpu_count() or 1)
    worker_pool_kind: str = "thread"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        if self.empty_input_policy not in EMPTY_POLICIES:
            raise ConfigError(
                f"empty_input_policy must be one of {EMPTY_POLICIES}, got {self.empty_input_policy!r}"
            )
        if self.worker_pool_kind not in POOL_KINDS:
            raise ConfigError(f"worker_pool_kind must be one of {POOL_KINDS}, got {self.worker_pool_kind!r}")
        if self.chunk_size <= 0 or self.chunk_size > defaults.MAX_BLOCK_SIZE:
            raise ConfigError(f"chunk_size must be in (0, {defaults.MAX_BLOCK_SIZE}]")
        if self.fanout < 2:
            raise ConfigError("fanout must be at least 2")
        if self.worker_pool_size < 1:
            raise ConfigError("worker_pool_size must be at least 1")

    @property
    def db_dsn(self) -> str:
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @classmethod
    def from_env(cls) -> ProvstoreConfig:
        """Build a config from ``PROVSTORE_*`` environment variables."""
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            default = getattr(cls, f.name, None)
            if default is None:
                cast: type = str
            else:
                cast = type(default)
            value = _env(f.name.upper(), default, cast)
            if value is not None:
                kwargs[f.name] = value
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if data.get("db_password"):
            data["db_password"] = "***"
        if data.get("ledger_token"):
            data["ledger_token"] = "***"
        return data


@lru_cache(maxsize=1)
def get_config() -> ProvstoreConfig:
    """Return the process-wide config, parsed once from the environment."""
    return ProvstoreConfig.from_env()


def clear_config_cache() -> None:
    get_config.cache_clear()
