"""Reconciliation run defaults and their environment overrides."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .env import optional_env_int
from .errors import ConfigurationError

DEFAULT_QUALITY_THRESHOLD: Final[int] = 80
DEFAULT_MAX_WORKERS: Final[int] = 4
DEFAULT_MAX_ATOMS_PER_RUN: Final[int] = 200
DEFAULT_STALE_RUN_MINUTES: Final[int] = 30
DEFAULT_CONFLICT_SIMILARITY_THRESHOLD: Final[int] = 80


@dataclass(frozen=True, slots=True)
class ReconciliationConfig:
    quality_threshold: int = DEFAULT_QUALITY_THRESHOLD
    max_workers: int = DEFAULT_MAX_WORKERS
    max_atoms_per_run: int = DEFAULT_MAX_ATOMS_PER_RUN
    stale_run_minutes: int = DEFAULT_STALE_RUN_MINUTES
    conflict_similarity_threshold: int = DEFAULT_CONFLICT_SIMILARITY_THRESHOLD

    def __post_init__(self) -> None:
        if not 0 <= self.quality_threshold <= 100:
            raise ConfigurationError("Quality threshold must be between 0 and 100")
        if not 0 <= self.conflict_similarity_threshold <= 100:
            raise ConfigurationError("Conflict similarity threshold must be between 0 and 100")
        if self.max_workers < 1:
            raise ConfigurationError("At least one inference worker is required")
        if self.max_atoms_per_run < 1:
            raise ConfigurationError("Atom cap per run must be positive")


def get_reconciliation_config() -> ReconciliationConfig:
    return ReconciliationConfig(
        quality_threshold=optional_env_int(
            "INTENTLEDGER_QUALITY_THRESHOLD", DEFAULT_QUALITY_THRESHOLD
        ),
        max_workers=optional_env_int("INTENTLEDGER_MAX_WORKERS", DEFAULT_MAX_WORKERS),
        max_atoms_per_run=optional_env_int(
            "INTENTLEDGER_MAX_ATOMS_PER_RUN", DEFAULT_MAX_ATOMS_PER_RUN
        ),
        stale_run_minutes=optional_env_int(
            "INTENTLEDGER_STALE_RUN_MINUTES", DEFAULT_STALE_RUN_MINUTES
        ),
        conflict_similarity_threshold=optional_env_int(
            "INTENTLEDGER_CONFLICT_SIMILARITY", DEFAULT_CONFLICT_SIMILARITY_THRESHOLD
        ),
    )
