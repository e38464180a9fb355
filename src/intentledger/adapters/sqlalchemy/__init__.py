"""SQLAlchemy adapter package for the intent ledger."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyAtomRecommendationRepository,
    SqlAlchemyAtomRepository,
    SqlAlchemyConflictRepository,
    SqlAlchemyMoleculeRecommendationRepository,
    SqlAlchemyMoleculeRepository,
    SqlAlchemyReconciliationRunRepository,
    SqlAlchemyTestRecordRepository,
)
from .unit_of_work import (
    SqlAlchemyUnitOfWork,
    StartupError,
    build_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyAtomRecommendationRepository",
    "SqlAlchemyAtomRepository",
    "SqlAlchemyConflictRepository",
    "SqlAlchemyMoleculeRecommendationRepository",
    "SqlAlchemyMoleculeRepository",
    "SqlAlchemyReconciliationRunRepository",
    "SqlAlchemyTestRecordRepository",
    "SqlAlchemyUnitOfWork",
    "StartupError",
    "build_engine",
    "create_all_tables",
    "is_started",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
