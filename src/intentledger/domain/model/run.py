"""Reconciliation run aggregate and its value objects."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from fnmatch import fnmatch
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any, Final, Self
from uuid import uuid4

from intentledger.domain.errors import InvalidStateError, ValidationError

from .base import Entity
from .enums import RunMode, RunStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import datetime

    from .patch import PatchOp

DEFAULT_QUALITY_THRESHOLD: Final[int] = 80

_ALLOWED_TRANSITIONS: Final[dict[RunStatus, frozenset[RunStatus]]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.FAILED}),
    RunStatus.RUNNING: frozenset(
        {RunStatus.COMPLETED, RunStatus.WAITING_FOR_REVIEW, RunStatus.FAILED}
    ),
    RunStatus.WAITING_FOR_REVIEW: frozenset({RunStatus.RUNNING, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


def _appended_unique(existing: list[str], values: Iterable[str]) -> list[str]:
    seen = set(existing)
    fresh: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            fresh.append(value)
    return [*existing, *fresh] if fresh else existing


def new_run_id() -> str:
    return f"REC-{uuid4().hex[:8]}"


class _JsonValue:
    """Round-trip helpers shared by the JSON-stored value objects below."""

    __slots__ = ()

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)  # type: ignore[call-overload]
        return {
            key: list(value) if isinstance(value, tuple) else value
            for key, value in payload.items()
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        known = {item.name for item in fields(cls)}  # type: ignore[arg-type]
        values = {
            key: tuple(value) if isinstance(value, list) else value
            for key, value in data.items()
            if key in known
        }
        return cls(**values)


@dataclass(frozen=True, slots=True, kw_only=True)
class RunOptions(_JsonValue):
    quality_threshold: int = DEFAULT_QUALITY_THRESHOLD
    include_paths: tuple[str, ...] = ()
    exclude_paths: tuple[str, ...] = ()
    include_file_patterns: tuple[str, ...] = ()
    exclude_file_patterns: tuple[str, ...] = ()
    require_review: bool = False
    force_interrupt_on_quality_fail: bool = False
    max_tests: int | None = None
    max_workers: int | None = None

    def validate(self) -> None:
        if not 0 <= self.quality_threshold <= 100:
            raise ValidationError(
                f"Quality threshold must be within [0, 100], got {self.quality_threshold}"
            )
        if self.max_tests is not None and self.max_tests < 1:
            raise ValidationError("max_tests must be positive")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValidationError("max_workers must be positive")

    def selects(self, file_path: str) -> bool:
        """Apply the path and file-name filters to ``file_path``."""

        file_name = PurePosixPath(file_path).name
        if self.include_paths and not any(
            _path_matches(file_path, pattern) for pattern in self.include_paths
        ):
            return False
        if any(_path_matches(file_path, pattern) for pattern in self.exclude_paths):
            return False
        if self.include_file_patterns and not any(
            fnmatch(file_name, pattern) for pattern in self.include_file_patterns
        ):
            return False
        return not any(fnmatch(file_name, pattern) for pattern in self.exclude_file_patterns)


def _path_matches(file_path: str, pattern: str) -> bool:
    prefix = pattern.rstrip("/")
    if fnmatch(file_path, pattern):
        return True
    return file_path == prefix or file_path.startswith(prefix + "/")


@dataclass(frozen=True, slots=True, kw_only=True)
class DeltaBaseline:
    """Prior run id and/or commit hash a delta run is measured against."""

    run_id: str | None = None
    commit_hash: str | None = None

    def __post_init__(self) -> None:
        if not self.run_id and not self.commit_hash:
            raise ValidationError("A delta baseline needs a run id or a commit hash")


@dataclass(frozen=True, slots=True, kw_only=True)
class RunSummary(_JsonValue):
    total_orphan_tests: int = 0
    inferred_atoms_count: int = 0
    inferred_molecules_count: int = 0
    quality_pass_count: int = 0
    quality_fail_count: int = 0
    accepted_atoms_count: int = 0
    rejected_atoms_count: int = 0
    changed_linked_tests_count: int = 0
    excluded_by_stopping_rule_count: int = 0
    reprocessed_tests_count: int = 0
    grounding_violations_count: int = 0
    deferred_tests_count: int = 0
    deferred_tests: tuple[str, ...] = ()

    def updated(self, **changes: Any) -> RunSummary:
        return replace(self, **changes)


@dataclass(frozen=True, slots=True, kw_only=True)
class BudgetUsage(_JsonValue):
    tokens: int = 0
    duration_ms: int = 0
    llm_calls: int = 0

    def __add__(self, other: BudgetUsage) -> BudgetUsage:
        return BudgetUsage(
            tokens=self.tokens + other.tokens,
            duration_ms=self.duration_ms + other.duration_ms,
            llm_calls=self.llm_calls + other.llm_calls,
        )


@dataclass(eq=False, kw_only=True)
class ReconciliationRun(Entity):
    """One execution of the pipeline.

    Lists stored on the run are replaced, never mutated in place, so that the
    persistence layer observes every change. Terminal runs reject every state
    change except audit fields.
    """

    root_directory: str
    mode: RunMode
    run_id: str = field(default_factory=new_run_id)
    status: RunStatus = RunStatus.PENDING
    delta_baseline_run_id: str | None = None
    delta_baseline_commit_hash: str | None = None
    current_commit_hash: str | None = None
    options: RunOptions = field(default_factory=RunOptions)
    summary: RunSummary = field(default_factory=RunSummary)
    usage: BudgetUsage = field(default_factory=BudgetUsage)
    patch_ops: list[PatchOp] = field(default_factory=list["PatchOp"])
    errors: list[str] = field(default_factory=list[str])
    warnings: list[str] = field(default_factory=list[str])
    phases_completed: list[str] = field(default_factory=list[str])
    applied_decision_keys: list[str] = field(default_factory=list[str])
    review_comments: list[str] = field(default_factory=list[str])
    error_message: str | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, target: RunStatus, *, at: datetime) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Run {self.run_id} cannot move from {self.status} to {target}"
            )
        self.status = target
        self.updated_at = at
        if target.is_terminal:
            self.completed_at = at

    def begin(self, *, at: datetime) -> None:
        self.transition(RunStatus.RUNNING, at=at)

    def wait_for_review(self, *, at: datetime) -> None:
        self.transition(RunStatus.WAITING_FOR_REVIEW, at=at)

    def complete(self, *, at: datetime) -> None:
        self.transition(RunStatus.COMPLETED, at=at)

    def fail(self, message: str, *, at: datetime) -> None:
        self.transition(RunStatus.FAILED, at=at)
        self.error_message = message
        self.record_errors([message])

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise InvalidStateError(f"Run {self.run_id} is {self.status} and immutable")

    def record_errors(self, errors: Iterable[str]) -> None:
        new_errors = list(errors)
        if new_errors:
            self.errors = [*self.errors, *new_errors]

    def record_warnings(self, warnings: Iterable[str]) -> None:
        self._ensure_mutable()
        self.warnings = _appended_unique(self.warnings, warnings)

    def append_patch_ops(self, ops: Iterable[PatchOp]) -> None:
        self._ensure_mutable()
        new_ops = list(ops)
        if new_ops:
            self.patch_ops = [*self.patch_ops, *new_ops]

    def mark_phase(self, name: str) -> None:
        self._ensure_mutable()
        if name not in self.phases_completed:
            self.phases_completed = [*self.phases_completed, name]

    def update_summary(self, **changes: Any) -> None:
        self._ensure_mutable()
        self.summary = self.summary.updated(**changes)

    def record_usage(self, usage: BudgetUsage) -> None:
        self._ensure_mutable()
        self.usage = usage

    def has_applied(self, ledger_key: str) -> bool:
        return ledger_key in self.applied_decision_keys

    def record_applied(self, ledger_keys: Iterable[str]) -> None:
        self._ensure_mutable()
        self.applied_decision_keys = _appended_unique(self.applied_decision_keys, ledger_keys)

    def add_review_comment(self, comment: str) -> None:
        self._ensure_mutable()
        self.review_comments = [*self.review_comments, comment]
