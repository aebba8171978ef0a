"""Core utilities: configuration, defaults, errors, logging and worker pool."""

from .config import ProvstoreConfig, clear_config_cache, get_config
from .exceptions import (
    BudgetInfeasible,
    ConfigError,
    CorruptArchive,
    EmptyInput,
    InvalidTransition,
    MalformedInput,
    NotFound,
    PayloadTooLarge,
    ProviderRejected,
    ProvstoreError,
    RetryBudgetExhausted,
    TransientNetworkError,
    VerificationFailed,
)

__all__ = [
    "ProvstoreConfig",
    "get_config",
    "clear_config_cache",
    "ProvstoreError",
    "MalformedInput",
    "EmptyInput",
    "PayloadTooLarge",
    "BudgetInfeasible",
    "ConfigError",
    "NotFound",
    "CorruptArchive",
    "TransientNetworkError",
    "RetryBudgetExhausted",
    "ProviderRejected",
    "VerificationFailed",
    "InvalidTransition",
]
