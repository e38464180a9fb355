"""Candidate atoms and molecules produced by a reconciliation run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .base import Entity
from .enums import RecommendationStatus

if TYPE_CHECKING:
    from datetime import datetime


def clamp_score(value: float) -> int:
    """Clamp a score into ``[0, 100]``."""

    return max(0, min(100, round(value)))


def normalize_confidence(value: float | None) -> int:
    """Map raw inference confidence onto the 0-100 scale.

    Fractions in ``[0, 1]`` are scaled up; values outside ``[0, 100]`` (or
    missing) fall back to the neutral midpoint.
    """

    if value is None:
        return 50
    if 0 <= value <= 1:
        return round(value * 100)
    if 0 <= value <= 100:
        return round(value)
    return 50


@dataclass(frozen=True, slots=True)
class SourceTestRef:
    """The single test an atom recommendation is grounded on."""

    file_path: str
    test_name: str
    line_number: int | None = None

    def __post_init__(self) -> None:
        if not self.file_path.strip() or not self.test_name.strip():
            raise ValueError("Source test reference requires a file path and a test name")

    @property
    def key(self) -> tuple[str, str]:
        return (self.file_path, self.test_name)

    def __str__(self) -> str:
        return f"{self.file_path}::{self.test_name}"


@dataclass(eq=False, kw_only=True)
class AtomRecommendation(Entity):
    run_id: str
    temp_id: str
    description: str
    category: str
    confidence: int
    source_test: SourceTestRef
    reasoning: str = ""
    observable_outcomes: list[str] = field(default_factory=list[str])
    related_docs: list[str] = field(default_factory=list[str])
    ambiguity_reasons: list[str] = field(default_factory=list[str])
    quality_score: int | None = None
    quality_issues: list[str] = field(default_factory=list[str])
    status: RecommendationStatus = RecommendationStatus.PENDING
    rejection_reason: str | None = None
    atom_id: str | None = None
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"Confidence out of range: {self.confidence}")
        if self.quality_score is not None and not 0 <= self.quality_score <= 100:
            raise ValueError(f"Quality score out of range: {self.quality_score}")

    @property
    def is_pending(self) -> bool:
        return self.status is RecommendationStatus.PENDING

    def passes(self, threshold: int) -> bool:
        return self.quality_score is not None and self.quality_score >= threshold

    def apply_quality(self, score: int, issues: list[str]) -> None:
        self.quality_score = clamp_score(score)
        self.quality_issues = list(issues)

    def accept(self, *, atom_id: str, at: datetime) -> None:
        self.status = RecommendationStatus.ACCEPTED
        self.atom_id = atom_id
        self.accepted_at = at

    def reject(self, *, reason: str, at: datetime) -> None:
        self.status = RecommendationStatus.REJECTED
        self.rejection_reason = reason
        self.rejected_at = at


@dataclass(eq=False, kw_only=True)
class MoleculeRecommendation(Entity):
    run_id: str
    temp_id: str
    name: str
    description: str
    atom_temp_ids: list[str]
    confidence: int
    reasoning: str = ""
    status: RecommendationStatus = RecommendationStatus.PENDING
    rejection_reason: str | None = None
    molecule_id: str | None = None
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status is RecommendationStatus.PENDING

    def accept(self, *, molecule_id: str, at: datetime) -> None:
        self.status = RecommendationStatus.ACCEPTED
        self.molecule_id = molecule_id
        self.accepted_at = at

    def reject(self, *, reason: str, at: datetime) -> None:
        self.status = RecommendationStatus.REJECTED
        self.rejection_reason = reason
        self.rejected_at = at
