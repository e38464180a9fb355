"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class RunMode(StrEnum):
    FULL_SCAN = "full-scan"
    DELTA = "delta"


class RunStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING_FOR_REVIEW = "waiting_for_review"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {RunStatus.COMPLETED, RunStatus.FAILED}

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


class TestRecordStatus(StrEnum):
    __test__ = False

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SKIPPED = "skipped"

    @property
    def is_closed(self) -> bool:
        return self in {TestRecordStatus.ACCEPTED, TestRecordStatus.REJECTED}


class RecommendationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AtomStatus(StrEnum):
    DRAFT = "draft"
    COMMITTED = "committed"
    SUPERSEDED = "superseded"


class EvidenceType(StrEnum):
    TEST = "test"
    SOURCE_EXPORT = "source_export"
    API_ENDPOINT = "api_endpoint"
    DOCUMENTATION = "documentation"
    COVERAGE_GAP = "coverage_gap"
    UI_COMPONENT = "ui_component"
    CODE_COMMENT = "code_comment"


class ConflictType(StrEnum):
    SAME_TEST = "same_test"
    SEMANTIC_OVERLAP = "semantic_overlap"
    CONTRADICTION = "contradiction"
    CROSS_BOUNDARY = "cross_boundary"


class ConflictStatus(StrEnum):
    OPEN = "open"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class ResolutionAction(StrEnum):
    SUPERSEDE_A = "supersede_a"
    SUPERSEDE_B = "supersede_b"
    SPLIT_TEST = "split_test"
    REJECT_A = "reject_a"
    REJECT_B = "reject_b"
    CLARIFY = "clarify"
