from __future__ import annotations

from datetime import UTC, datetime

import pytest

from intentledger.domain.errors import InvalidStateError, ValidationError
from intentledger.domain.model import (
    BudgetUsage,
    DeltaBaseline,
    ReconciliationRun,
    RunMode,
    RunOptions,
    RunStatus,
    RunSummary,
)

NOW = datetime(2025, 3, 1, 12, tzinfo=UTC)


def _run() -> ReconciliationRun:
    return ReconciliationRun(root_directory="/repo", mode=RunMode.FULL_SCAN)


def test_new_run_is_pending_with_generated_id() -> None:
    run = _run()

    assert run.status is RunStatus.PENDING
    assert run.run_id.startswith("REC-")
    assert len(run.run_id) == len("REC-") + 8


def test_run_moves_through_review_and_completes() -> None:
    run = _run()

    run.begin(at=NOW)
    run.wait_for_review(at=NOW)
    run.begin(at=NOW)
    run.complete(at=NOW)

    assert run.status is RunStatus.COMPLETED
    assert run.completed_at == NOW


@pytest.mark.parametrize(
    ("path", "target"),
    [
        ((), RunStatus.COMPLETED),
        ((), RunStatus.WAITING_FOR_REVIEW),
        ((RunStatus.RUNNING, RunStatus.COMPLETED), RunStatus.RUNNING),
        ((RunStatus.FAILED,), RunStatus.RUNNING),
        ((RunStatus.RUNNING, RunStatus.WAITING_FOR_REVIEW), RunStatus.COMPLETED),
    ],
)
def test_illegal_transitions_are_rejected(
    path: tuple[RunStatus, ...], target: RunStatus
) -> None:
    run = _run()
    for status in path:
        run.transition(status, at=NOW)

    with pytest.raises(InvalidStateError):
        run.transition(target, at=NOW)


def test_terminal_run_rejects_state_changes_but_keeps_errors() -> None:
    run = _run()
    run.begin(at=NOW)
    run.fail("boom", at=NOW)

    assert run.error_message == "boom"
    assert run.errors == ["boom"]
    with pytest.raises(InvalidStateError):
        run.update_summary(total_orphan_tests=1)
    with pytest.raises(InvalidStateError):
        run.mark_phase("discover")

    run.record_errors(["late"])
    assert run.errors == ["boom", "late"]


def test_run_lists_are_replaced_not_mutated() -> None:
    run = _run()
    warnings = run.warnings

    run.record_warnings(["careful", "careful"])
    run.record_warnings(["careful"])

    assert warnings == []
    assert run.warnings == ["careful"]


def test_applied_decision_keys_are_deduplicated() -> None:
    run = _run()

    run.record_applied(["atom:atom-001", "atom:atom-001"])
    run.record_applied(["atom:atom-001", "molecule:molecule-001"])

    assert run.applied_decision_keys == ["atom:atom-001", "molecule:molecule-001"]
    assert run.has_applied("molecule:molecule-001")


def test_options_validate_threshold_range() -> None:
    RunOptions(quality_threshold=0).validate()
    RunOptions(quality_threshold=100).validate()

    with pytest.raises(ValidationError):
        RunOptions(quality_threshold=101).validate()
    with pytest.raises(ValidationError):
        RunOptions(max_tests=0).validate()


def test_options_select_by_path_and_file_pattern() -> None:
    options = RunOptions(
        include_paths=("src/modules",),
        exclude_paths=("src/modules/legacy",),
        include_file_patterns=("*.spec.ts",),
        exclude_file_patterns=("*.e2e.spec.ts",),
    )

    assert options.selects("src/modules/billing/invoice.spec.ts")
    assert not options.selects("src/modules/legacy/old.spec.ts")
    assert not options.selects("src/other/invoice.spec.ts")
    assert not options.selects("src/modules/billing/invoice.test.ts")
    assert not options.selects("src/modules/billing/flow.e2e.spec.ts")


def test_options_without_filters_select_everything() -> None:
    assert RunOptions().selects("anything/at/all.py")


def test_json_values_round_trip_tuples() -> None:
    options = RunOptions(quality_threshold=70, include_paths=("src",), require_review=True)
    summary = RunSummary(deferred_tests=("a.ts::one",), deferred_tests_count=1)

    assert RunOptions.from_dict(options.to_dict()) == options
    assert RunSummary.from_dict(summary.to_dict()) == summary
    assert options.to_dict()["include_paths"] == ["src"]


def test_json_values_ignore_unknown_keys() -> None:
    usage = BudgetUsage.from_dict({"tokens": 5, "llm_calls": 1, "legacy": True})

    assert usage == BudgetUsage(tokens=5, llm_calls=1)


def test_budget_usage_adds_component_wise() -> None:
    total = BudgetUsage(tokens=1, duration_ms=2, llm_calls=3) + BudgetUsage(
        tokens=10, duration_ms=20, llm_calls=30
    )

    assert total == BudgetUsage(tokens=11, duration_ms=22, llm_calls=33)


def test_delta_baseline_needs_run_or_commit() -> None:
    with pytest.raises(ValidationError):
        DeltaBaseline()

    assert DeltaBaseline(commit_hash="abc").run_id is None
