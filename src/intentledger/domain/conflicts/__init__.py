"""Conflict detection and resolution over committed atoms."""

from __future__ import annotations

from .detection import (
    DEFAULT_SIMILARITY_THRESHOLD,
    ConflictCandidate,
    ConflictDetector,
    candidates_for,
    is_negated,
    similarity,
)
from .service import ConflictMetrics, ConflictService

__all__ = [
    "DEFAULT_SIMILARITY_THRESHOLD",
    "ConflictCandidate",
    "ConflictDetector",
    "ConflictMetrics",
    "ConflictService",
    "candidates_for",
    "is_negated",
    "similarity",
]
