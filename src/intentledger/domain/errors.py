"""Domain error taxonomy for reconciliation runs and conflicts."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID


class ReconciliationError(RuntimeError):
    """Base class for every error raised by the reconciliation core."""


class ValidationError(ReconciliationError):
    """Malformed input, rejected before any state mutation."""


class GroundingViolation(ReconciliationError):
    """An inference candidate cites evidence that is not in the inventory."""

    def __init__(self, message: str, *, file_path: str, test_name: str) -> None:
        super().__init__(message)
        self.file_path = file_path
        self.test_name = test_name


class BudgetExceeded(ReconciliationError):
    """Cumulative usage passed twice the tier budget."""

    def __init__(self, violations: Sequence[str]) -> None:
        super().__init__("Budget exceeded: " + "; ".join(violations))
        self.violations = tuple(violations)


class InvalidStateError(ReconciliationError):
    """Operation attempted while the run or conflict is in the wrong state."""


class NotFoundError(ReconciliationError):
    """Unknown run, recommendation, atom or conflict id."""


class UnknownRecommendationError(NotFoundError):
    """A review decision references a recommendation outside the run."""

    def __init__(self, run_id: str, temp_ids: Sequence[str]) -> None:
        joined = ", ".join(sorted(temp_ids))
        super().__init__(f"Run {run_id} has no recommendations with ids: {joined}")
        self.run_id = run_id
        self.temp_ids = tuple(temp_ids)


class ConflictDuplicateError(ReconciliationError):
    """An open conflict already exists for the same atom pair and type."""

    def __init__(self, message: str, *, existing_id: UUID) -> None:
        super().__init__(message)
        self.existing_id = existing_id


class RunCancelled(ReconciliationError):
    """The run was marked failed from outside while it was executing."""
