"""Domain port definitions for adapters."""

from __future__ import annotations

from .evidence import EvidenceInventoryProvider
from .inference import (
    AtomCandidate,
    InferenceCapability,
    InferenceRequest,
    InferenceResult,
    MoleculeCandidate,
)
from .persistence import (
    AtomRecommendationRepository,
    AtomRepository,
    ConflictRepository,
    MoleculeRecommendationRepository,
    MoleculeRepository,
    ReconciliationRunRepository,
    Repository,
    TestRecordRepository,
)
from .unit_of_work import LedgerRepositories, LedgerUnitOfWork, RepositoryCollection, UnitOfWork

__all__ = [
    "AtomCandidate",
    "AtomRecommendationRepository",
    "AtomRepository",
    "ConflictRepository",
    "EvidenceInventoryProvider",
    "InferenceCapability",
    "InferenceRequest",
    "InferenceResult",
    "LedgerRepositories",
    "LedgerUnitOfWork",
    "MoleculeCandidate",
    "MoleculeRecommendationRepository",
    "MoleculeRepository",
    "ReconciliationRunRepository",
    "Repository",
    "RepositoryCollection",
    "TestRecordRepository",
    "UnitOfWork",
]
