from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from intentledger.domain.errors import NotFoundError, ValidationError
from intentledger.domain.model import (
    Approve,
    AtomDecision,
    AtomRecommendation,
    DeltaBaseline,
    PatchOpType,
    ReconciliationRun,
    RecommendationStatus,
    RunMode,
    RunOptions,
    RunStatus,
    SourceTestRef,
    TestRecordStatus,
    utcnow,
)
from intentledger.domain.ports.inference import InferenceResult
from intentledger.domain.reconciliation import QualityAssessment, QualityGate
from tests.helpers.evidence import ROOT, make_test_item

if TYPE_CHECKING:
    from collections.abc import Callable

    from intentledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
    from intentledger.domain.reconciliation import RunOrchestrator
    from tests.helpers.evidence import FakeEvidenceProvider
    from tests.helpers.inference import ScriptedInference


@dataclass(frozen=True)
class _FixedScorer:
    score: int

    def __call__(self, atom: AtomRecommendation) -> QualityAssessment:
        return QualityAssessment(score=self.score)


def test_full_scan_of_orphan_tests_completes(
    orchestrator: RunOrchestrator, inference: ScriptedInference
) -> None:
    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    assert result.status is RunStatus.COMPLETED
    assert result.summary.total_orphan_tests == 3
    assert result.summary.inferred_atoms_count == 3
    assert result.summary.accepted_atoms_count == 3
    assert result.summary.inferred_molecules_count == 1
    assert result.pending_review is None
    assert len(inference.requests) == 3

    counts = orchestrator.get_patch(result.run_id).counts()
    assert counts[PatchOpType.CREATE_ATOM] == 3
    assert counts[PatchOpType.ATTACH_TEST_TO_ATOM] == 3
    assert counts[PatchOpType.CREATE_MOLECULE] == 1
    assert orchestrator.get_patch(result.run_id).validate() == []


def test_completed_run_commits_atoms_to_the_ledger(
    orchestrator: RunOrchestrator,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    with sqlite_unit_of_work() as uow:
        atoms = uow.repositories.atoms.list_active()
        records = uow.repositories.test_records.list_for_run(result.run_id)
        molecule = uow.repositories.molecules.get("MOL-001")

    assert [atom.atom_id for atom in atoms] == ["IA-001", "IA-002", "IA-003"]
    assert {atom.source_run_id for atom in atoms} == {result.run_id}
    assert all(record.status is TestRecordStatus.ACCEPTED for record in records)
    assert {record.linked_atom_id for record in records} == {"IA-001", "IA-002", "IA-003"}
    assert molecule is not None
    assert sorted(molecule.atom_ids) == ["IA-001", "IA-002", "IA-003"]


def test_run_details_expose_phases_and_usage(orchestrator: RunOrchestrator) -> None:
    result = orchestrator.start(ROOT, RunMode.FULL_SCAN, commit_hash="abc123")

    details = orchestrator.get_run_details(result.run_id)

    assert details.phases_completed == ("discover", "infer", "synthesize", "score")
    assert details.usage.llm_calls == 3
    assert details.usage.tokens == 300
    assert details.current_commit_hash == "abc123"
    assert details.completed_at is not None
    assert details.patch_op_counts[PatchOpType.CREATE_ATOM] == 3


def test_annotated_tests_are_not_inferred(
    orchestrator: RunOrchestrator,
    evidence: FakeEvidenceProvider,
    inference: ScriptedInference,
) -> None:
    evidence.items.append(make_test_item("already linked", linked_atom_id="IA-100"))

    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    assert result.summary.total_orphan_tests == 3
    assert "already linked" not in inference.analyzed_names


def test_filters_and_max_tests_defer_work(
    orchestrator: RunOrchestrator,
    evidence: FakeEvidenceProvider,
    inference: ScriptedInference,
) -> None:
    evidence.items.append(make_test_item("signs in", file_path="src/modules/auth/login.spec.ts"))

    result = orchestrator.start(
        ROOT,
        RunMode.FULL_SCAN,
        options=RunOptions(include_paths=("src/modules/billing",), max_tests=2),
    )

    assert result.summary.total_orphan_tests == 3
    assert result.summary.deferred_tests_count == 1
    assert result.summary.deferred_tests == (
        "src/modules/billing/invoice.spec.ts::rounds cents",
    )
    assert inference.analyzed_names == ["applies tax", "shows total"]


def test_test_without_candidates_is_rejected(
    orchestrator: RunOrchestrator,
    inference: ScriptedInference,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    inference.scripts["rounds cents"] = InferenceResult()

    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    with sqlite_unit_of_work() as uow:
        records = {
            record.test_name: record
            for record in uow.repositories.test_records.list_for_run(result.run_id)
        }
    assert result.status is RunStatus.COMPLETED
    assert records["rounds cents"].status is TestRecordStatus.REJECTED
    assert records["rounds cents"].rejection_reason == (
        "No grounded atom recommendations were inferred"
    )


def test_inference_failure_is_recorded_but_run_completes(
    orchestrator: RunOrchestrator, inference: ScriptedInference
) -> None:
    inference.scripts["applies tax"] = RuntimeError("service down")

    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    assert result.status is RunStatus.COMPLETED
    assert result.summary.accepted_atoms_count == 2
    assert any("service down" in error for error in result.errors)


def test_low_quality_atoms_are_rejected_automatically(
    make_orchestrator: Callable[..., RunOrchestrator],
) -> None:
    orchestrator = make_orchestrator(gate=QualityGate(scorer=_FixedScorer(60)))

    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    assert result.status is RunStatus.COMPLETED
    assert result.summary.accepted_atoms_count == 0
    assert result.summary.rejected_atoms_count == 3
    assert result.summary.quality_fail_count == 3
    assert orchestrator.get_patch(result.run_id).ops == ()


@pytest.mark.parametrize(
    ("mode", "baseline"),
    [
        (RunMode.DELTA, None),
        (RunMode.FULL_SCAN, DeltaBaseline(commit_hash="abc")),
        ("sideways", None),
    ],
)
def test_invalid_start_arguments_write_no_run(
    orchestrator: RunOrchestrator, mode: RunMode | str, baseline: DeltaBaseline | None
) -> None:
    with pytest.raises(ValidationError):
        orchestrator.start(ROOT, mode, delta_baseline=baseline)

    assert orchestrator.get_active_runs() == []


def test_invalid_threshold_is_rejected(orchestrator: RunOrchestrator) -> None:
    with pytest.raises(ValidationError):
        orchestrator.start(ROOT, RunMode.FULL_SCAN, options=RunOptions(quality_threshold=120))


def test_budget_violation_fails_run_but_keeps_completed_work(
    orchestrator: RunOrchestrator, inference: ScriptedInference
) -> None:
    inference.tokens_per_call = 150_000

    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    assert result.status is RunStatus.FAILED
    assert any("Budget exceeded" in error for error in result.errors)
    assert orchestrator.get_recommendations(result.run_id).atoms


def test_atom_cap_fails_run_as_drift(make_orchestrator: Callable[..., RunOrchestrator]) -> None:
    orchestrator = make_orchestrator(max_atoms=2)

    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    assert result.status is RunStatus.FAILED
    assert "inference drift" in (orchestrator.get_run_details(result.run_id).error_message or "")
    assert orchestrator.get_recommendations(result.run_id).atoms == ()


def test_unexpected_evidence_error_fails_run(
    make_orchestrator: Callable[..., RunOrchestrator],
) -> None:
    def broken_provider(root_directory: str, *, commit_hash: str | None = None) -> None:
        raise OSError("disk gone")

    orchestrator = make_orchestrator(evidence_provider=broken_provider)

    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    assert result.status is RunStatus.FAILED
    assert result.errors == ("Unexpected error: disk gone",)


def test_metrics_summarize_recommendations(orchestrator: RunOrchestrator) -> None:
    result = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    metrics = orchestrator.get_metrics(result.run_id)

    assert metrics.total_atoms == 3
    assert metrics.total_molecules == 1
    assert metrics.average_confidence == 90
    assert metrics.average_quality_score == 100
    assert metrics.pass_count == 3
    assert metrics.by_category == {"functional": 3}
    assert metrics.by_status == {"accepted": 3}
    assert orchestrator.get_metrics(result.run_id, quality_threshold=101).fail_count == 3


def test_unknown_run_lookups_raise(orchestrator: RunOrchestrator) -> None:
    with pytest.raises(NotFoundError):
        orchestrator.get_result("REC-missing")
    with pytest.raises(NotFoundError):
        orchestrator.get_patch("REC-missing")


def _stale_running_run(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork], *, with_atoms: bool = True
) -> str:
    long_ago = utcnow() - timedelta(hours=2)
    run = ReconciliationRun(
        root_directory=ROOT,
        mode=RunMode.FULL_SCAN,
        status=RunStatus.RUNNING,
        created_at=long_ago,
        updated_at=long_ago,
        phases_completed=["discover", "infer"],
    )
    with sqlite_unit_of_work() as uow:
        uow.repositories.runs.add(run)
        if with_atoms:
            uow.repositories.atom_recommendations.add(
                AtomRecommendation(
                    run_id=run.run_id,
                    temp_id="atom-001",
                    description="Customer sees the invoice total",
                    category="functional",
                    confidence=90,
                    reasoning="The test asserts the rendered total",
                    source_test=SourceTestRef("src/invoice.spec.ts", "shows total"),
                    observable_outcomes=["Invoice total is displayed"],
                )
            )
        uow.commit()
    return run.run_id


def test_stale_running_run_recovers_into_review(
    orchestrator: RunOrchestrator,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    run_id = _stale_running_run(sqlite_unit_of_work)
    _stale_running_run(sqlite_unit_of_work, with_atoms=False)

    recoverable = orchestrator.list_recoverable_runs()
    result = orchestrator.recover_run(run_id)

    assert [details.run_id for details in recoverable] == [run_id]
    assert result.status is RunStatus.WAITING_FOR_REVIEW
    assert result.pending_review is not None
    assert result.pending_review.reason == "Recovered after an interrupted run"
    assert result.pending_review.atoms[0].quality_score == 100
    assert any("Recovered after interruption" in warning for warning in result.warnings)
    assert orchestrator.list_recoverable_runs() == []


def test_recover_rejects_runs_without_recommendations(
    orchestrator: RunOrchestrator,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    run_id = _stale_running_run(sqlite_unit_of_work, with_atoms=False)

    with pytest.raises(ValidationError):
        orchestrator.recover_run(run_id)


def test_recovered_run_can_be_reviewed_to_completion(
    orchestrator: RunOrchestrator,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    run_id = _stale_running_run(sqlite_unit_of_work)
    orchestrator.recover_run(run_id)

    result = orchestrator.submit_review(run_id, [AtomDecision("atom-001", Approve())])

    assert result.status is RunStatus.COMPLETED
    assert result.summary.accepted_atoms_count == 1
    recommendations = orchestrator.get_recommendations(run_id)
    assert recommendations.atoms[0].status is RecommendationStatus.ACCEPTED
    assert recommendations.atoms[0].atom_id == "IA-001"
