"""Application configuration helpers."""

from __future__ import annotations

from .env import optional_env_float, optional_env_int, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import ResilienceConfig, RetryPolicy
from .inference import InferenceConfig, get_inference_config
from .logging import configure_logging
from .reconciliation import ReconciliationConfig, get_reconciliation_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "InferenceConfig",
    "MissingConfigurationError",
    "ReconciliationConfig",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "get_database_config",
    "get_inference_config",
    "get_reconciliation_config",
    "get_storage_config",
    "optional_env_float",
    "optional_env_int",
    "require_env_vars",
]
