from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from intentledger.domain.errors import NotFoundError, ValidationError
from intentledger.domain.model import (
    AtomStatus,
    DeltaBaseline,
    InvariantViolationFindingOp,
    MarkAtomSupersededOp,
    RunMode,
    RunOptions,
    RunStatus,
)
from tests.helpers.evidence import ROOT, make_test_item

if TYPE_CHECKING:
    from collections.abc import Callable

    from intentledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
    from intentledger.domain.reconciliation import RunOrchestrator, RunResult
    from tests.helpers.evidence import FakeEvidenceProvider
    from tests.helpers.inference import ScriptedInference


def _delta(orchestrator: RunOrchestrator, baseline: RunResult) -> RunResult:
    return orchestrator.start(
        ROOT, RunMode.DELTA, delta_baseline=DeltaBaseline(run_id=baseline.run_id)
    )


def test_unchanged_closed_tests_are_skipped(
    orchestrator: RunOrchestrator,
    inference: ScriptedInference,
) -> None:
    baseline = orchestrator.start(ROOT, RunMode.FULL_SCAN)
    inference.requests.clear()

    result = _delta(orchestrator, baseline)

    assert result.status is RunStatus.COMPLETED
    assert inference.requests == []
    assert result.summary.excluded_by_stopping_rule_count == 3
    assert result.summary.reprocessed_tests_count == 0
    assert result.summary.inferred_atoms_count == 0
    details = orchestrator.get_run_details(result.run_id)
    assert details.delta_baseline_run_id == baseline.run_id


def test_closure_carries_through_a_chain_of_delta_runs(
    orchestrator: RunOrchestrator,
    evidence: FakeEvidenceProvider,
    inference: ScriptedInference,
) -> None:
    baseline = orchestrator.start(ROOT, RunMode.FULL_SCAN)
    second = _delta(orchestrator, baseline)
    evidence.items.append(make_test_item("refunds invoice"))
    inference.requests.clear()

    third = _delta(orchestrator, second)

    assert inference.analyzed_names == ["refunds invoice"]
    assert third.summary.excluded_by_stopping_rule_count == 3
    assert third.summary.accepted_atoms_count == 1


def test_changed_test_is_reprocessed_and_supersedes_its_atom(
    orchestrator: RunOrchestrator,
    evidence: FakeEvidenceProvider,
    inference: ScriptedInference,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    baseline = orchestrator.start(ROOT, RunMode.FULL_SCAN)
    with sqlite_unit_of_work() as uow:
        records = uow.repositories.test_records.list_for_run(baseline.run_id)
        original = next(r for r in records if r.test_name == "shows total").linked_atom_id
    assert original is not None
    evidence.replace(
        make_test_item("shows total", code="it('shows total', () => expect(total()).toBe(42))")
    )
    inference.requests.clear()

    result = _delta(orchestrator, baseline)

    assert inference.analyzed_names == ["shows total"]
    assert result.summary.reprocessed_tests_count == 1
    assert result.summary.excluded_by_stopping_rule_count == 2
    supersedes = [
        op for op in orchestrator.get_patch(result.run_id).ops
        if isinstance(op, MarkAtomSupersededOp)
    ]
    assert [op.atom_id for op in supersedes] == [original]
    with sqlite_unit_of_work() as uow:
        old = uow.repositories.atoms.get(original)
        assert old is not None
        assert old.status is AtomStatus.SUPERSEDED
        assert old.superseded_by == "IA-004"
        replacement = uow.repositories.atoms.get("IA-004")
        assert replacement is not None
        assert replacement.is_active


def test_changed_annotated_test_raises_an_invariant_finding(
    orchestrator: RunOrchestrator,
    evidence: FakeEvidenceProvider,
    inference: ScriptedInference,
) -> None:
    evidence.items.append(make_test_item("legacy total", linked_atom_id="IA-900"))
    baseline = orchestrator.start(ROOT, RunMode.FULL_SCAN)
    evidence.replace(
        make_test_item("legacy total", code="it('legacy total', () => {})", linked_atom_id="IA-900")
    )
    inference.requests.clear()

    result = _delta(orchestrator, baseline)

    findings = [
        op for op in orchestrator.get_patch(result.run_id).ops
        if isinstance(op, InvariantViolationFindingOp)
    ]
    assert [(op.atom_id, op.test_name) for op in findings] == [("IA-900", "legacy total")]
    assert result.summary.changed_linked_tests_count == 1
    assert any("legacy total changed since the baseline" in w for w in result.warnings)
    assert inference.requests == []


def test_commit_baseline_resolves_the_run_at_that_commit(
    orchestrator: RunOrchestrator,
    inference: ScriptedInference,
) -> None:
    baseline = orchestrator.start(ROOT, RunMode.FULL_SCAN)
    inference.requests.clear()

    result = orchestrator.start(
        ROOT, RunMode.DELTA, delta_baseline=DeltaBaseline(commit_hash="abc123")
    )

    assert orchestrator.get_run_details(result.run_id).delta_baseline_run_id == baseline.run_id
    assert inference.requests == []


def test_unknown_commit_baseline_falls_back_to_a_full_analysis(
    orchestrator: RunOrchestrator,
    inference: ScriptedInference,
) -> None:
    orchestrator.start(ROOT, RunMode.FULL_SCAN)
    inference.requests.clear()

    result = orchestrator.start(
        ROOT, RunMode.DELTA, delta_baseline=DeltaBaseline(commit_hash="feedface")
    )

    assert result.status is RunStatus.COMPLETED
    assert result.warnings == (
        "No completed run found at commit feedface; every test will be analyzed",
    )
    assert len(inference.requests) == 3
    assert orchestrator.get_run_details(result.run_id).delta_baseline_commit_hash == "feedface"


def test_baseline_run_must_exist(orchestrator: RunOrchestrator) -> None:
    with pytest.raises(NotFoundError):
        orchestrator.start(ROOT, RunMode.DELTA, delta_baseline=DeltaBaseline(run_id="REC-missing"))


def test_baseline_run_must_be_completed(orchestrator: RunOrchestrator) -> None:
    waiting = orchestrator.start(ROOT, RunMode.FULL_SCAN, options=RunOptions(require_review=True))

    with pytest.raises(ValidationError, match="not completed"):
        _delta(orchestrator, waiting)


def test_baseline_run_must_cover_the_same_root(orchestrator: RunOrchestrator) -> None:
    baseline = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    with pytest.raises(ValidationError, match="covers"):
        orchestrator.start(
            "/elsewhere", RunMode.DELTA, delta_baseline=DeltaBaseline(run_id=baseline.run_id)
        )


def test_full_scan_ignores_prior_closure(
    orchestrator: RunOrchestrator,
    inference: ScriptedInference,
) -> None:
    orchestrator.start(ROOT, RunMode.FULL_SCAN)
    inference.requests.clear()

    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    assert len(inference.requests) == 3
    assert result.summary.excluded_by_stopping_rule_count == 0
