from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest

from intentledger.domain.errors import (
    InvalidStateError,
    UnknownRecommendationError,
    ValidationError,
)
from intentledger.domain.model import (
    Approve,
    AtomDecision,
    AtomRecommendation,
    MoleculeDecision,
    RecommendationStatus,
    Reject,
    RunMode,
    RunOptions,
    RunStatus,
)
from intentledger.domain.ports.inference import InferenceResult
from intentledger.domain.reconciliation import QualityAssessment, QualityGate
from tests.helpers.evidence import ROOT, make_test_item
from tests.helpers.inference import make_candidate

if TYPE_CHECKING:
    from collections.abc import Callable

    from intentledger.domain.reconciliation import RunOrchestrator, RunResult
    from tests.helpers.evidence import FakeEvidenceProvider
    from tests.helpers.inference import ScriptedInference

REVIEW = RunOptions(require_review=True)


@dataclass(frozen=True)
class _FixedScorer:
    score: int

    def __call__(self, atom: AtomRecommendation) -> QualityAssessment:
        return QualityAssessment(score=self.score)


@pytest.fixture
def single_test(evidence: FakeEvidenceProvider) -> FakeEvidenceProvider:
    evidence.items = [make_test_item("shows total")]
    return evidence


def _waiting(orchestrator: RunOrchestrator, options: RunOptions = REVIEW) -> RunResult:
    result = orchestrator.start(ROOT, RunMode.FULL_SCAN, options=options)
    assert result.status is RunStatus.WAITING_FOR_REVIEW
    return result


@pytest.mark.usefixtures("single_test")
def test_require_review_pauses_then_approval_completes(
    make_orchestrator: Callable[..., RunOrchestrator],
) -> None:
    orchestrator = make_orchestrator(gate=QualityGate(scorer=_FixedScorer(60)))

    waiting = _waiting(orchestrator)

    assert waiting.pending_review is not None
    assert waiting.pending_review.reason == "Review required by run options"
    assert waiting.pending_review.summary.fail_count == 1
    assert [atom.temp_id for atom in waiting.pending_review.atoms] == ["atom-001"]
    assert [run.run_id for run in orchestrator.get_active_runs()] == [waiting.run_id]

    result = orchestrator.submit_review(
        waiting.run_id, [AtomDecision("atom-001", Approve())], comment="looks right"
    )

    assert result.status is RunStatus.COMPLETED
    assert result.summary.accepted_atoms_count == 1
    assert orchestrator.get_run_details(waiting.run_id).review_comments == ("looks right",)
    assert orchestrator.get_active_runs() == []


@pytest.mark.usefixtures("single_test")
def test_review_survives_a_new_orchestrator(
    make_orchestrator: Callable[..., RunOrchestrator],
) -> None:
    waiting = _waiting(make_orchestrator())

    restarted = make_orchestrator()
    pending = restarted.get_result(waiting.run_id).pending_review
    result = restarted.submit_review(waiting.run_id, [AtomDecision("atom-001", Approve())])

    assert pending is not None
    assert [atom.temp_id for atom in pending.atoms] == ["atom-001"]
    assert result.status is RunStatus.COMPLETED


def test_rejections_and_undecided_atoms_settle_on_resume(orchestrator: RunOrchestrator) -> None:
    waiting = _waiting(orchestrator)

    result = orchestrator.submit_review(
        waiting.run_id, [AtomDecision("atom-002", Reject(reason="duplicate of tax rules"))]
    )

    recommendations = {
        atom.temp_id: atom for atom in orchestrator.get_recommendations(waiting.run_id).atoms
    }
    assert result.status is RunStatus.COMPLETED
    assert recommendations["atom-002"].status is RecommendationStatus.REJECTED
    assert recommendations["atom-002"].rejection_reason == "duplicate of tax rules"
    assert recommendations["atom-001"].status is RecommendationStatus.ACCEPTED
    assert recommendations["atom-003"].status is RecommendationStatus.ACCEPTED


def test_resubmitting_the_same_review_is_a_no_op(orchestrator: RunOrchestrator) -> None:
    waiting = _waiting(orchestrator)
    decisions = [AtomDecision(f"atom-00{index}", Approve()) for index in (1, 2, 3)]

    first = orchestrator.submit_review(waiting.run_id, decisions)
    second = orchestrator.submit_review(waiting.run_id, decisions)

    assert first.status is RunStatus.COMPLETED
    assert second == first
    assert orchestrator.get_metrics(waiting.run_id).by_status == {"accepted": 3}


def test_unknown_temp_ids_are_rejected_before_mutation(orchestrator: RunOrchestrator) -> None:
    waiting = _waiting(orchestrator)

    with pytest.raises(UnknownRecommendationError) as exc:
        orchestrator.submit_review(
            waiting.run_id,
            [AtomDecision("atom-001", Approve()), AtomDecision("atom-404", Approve())],
            [MoleculeDecision("molecule-404", Approve())],
        )

    assert exc.value.temp_ids == ("atom-404", "molecule-404")
    assert orchestrator.get_result(waiting.run_id).status is RunStatus.WAITING_FOR_REVIEW
    assert all(
        atom.is_pending for atom in orchestrator.get_recommendations(waiting.run_id).atoms
    )


def test_review_requires_a_waiting_run(orchestrator: RunOrchestrator) -> None:
    completed = orchestrator.start(ROOT, RunMode.FULL_SCAN)

    with pytest.raises(InvalidStateError):
        orchestrator.submit_review(
            completed.run_id, [AtomDecision("atom-009", Reject(reason="changed my mind"))]
        )


def test_atoms_without_outcomes_cannot_be_approved(
    orchestrator: RunOrchestrator,
    single_test: FakeEvidenceProvider,
    inference: ScriptedInference,
) -> None:
    test = single_test.items[0]
    inference.scripts[test.name] = InferenceResult(
        atoms=(make_candidate(test, observable_outcomes=()),)
    )
    waiting = _waiting(orchestrator)

    with pytest.raises(ValidationError):
        orchestrator.submit_review(waiting.run_id, [AtomDecision("atom-001", Approve())])

    assert orchestrator.get_result(waiting.run_id).status is RunStatus.WAITING_FOR_REVIEW


def test_quality_failures_interrupt_again_for_undecided_atoms(
    make_orchestrator: Callable[..., RunOrchestrator],
) -> None:
    orchestrator = make_orchestrator(gate=QualityGate(scorer=_FixedScorer(40)))
    waiting = _waiting(orchestrator, RunOptions(force_interrupt_on_quality_fail=True))
    assert waiting.pending_review is not None
    assert waiting.pending_review.summary.fail_count == 3

    partial = orchestrator.submit_review(waiting.run_id, [AtomDecision("atom-001", Approve())])

    assert partial.status is RunStatus.WAITING_FOR_REVIEW
    assert partial.pending_review is not None
    assert [atom.temp_id for atom in partial.pending_review.atoms] == ["atom-002", "atom-003"]
    assert partial.summary.accepted_atoms_count == 1

    final = orchestrator.submit_review(
        waiting.run_id,
        [
            AtomDecision("atom-002", Reject(reason="too vague")),
            AtomDecision("atom-003", Approve()),
        ],
    )

    assert final.status is RunStatus.COMPLETED
    assert final.summary.accepted_atoms_count == 2
    assert final.summary.rejected_atoms_count == 1


def test_molecule_decisions_are_applied(orchestrator: RunOrchestrator) -> None:
    waiting = _waiting(orchestrator)
    assert waiting.pending_review is not None
    assert [molecule.temp_id for molecule in waiting.pending_review.molecules] == [
        "molecule-001"
    ]

    result = orchestrator.submit_review(
        waiting.run_id,
        [AtomDecision(f"atom-00{index}", Approve()) for index in (1, 2, 3)],
        [MoleculeDecision("molecule-001", Reject(reason="not a real feature"))],
    )

    molecule = orchestrator.get_recommendations(waiting.run_id).molecules[0]
    assert result.status is RunStatus.COMPLETED
    assert molecule.status is RecommendationStatus.REJECTED
    assert molecule.rejection_reason == "not a real feature"


def test_mark_failed_discards_a_waiting_run(orchestrator: RunOrchestrator) -> None:
    waiting = _waiting(orchestrator)

    failed = orchestrator.mark_failed(waiting.run_id, "abandoned by reviewer")

    assert failed.status is RunStatus.FAILED
    assert failed.errors == ("abandoned by reviewer",)
    with pytest.raises(InvalidStateError):
        orchestrator.mark_failed(waiting.run_id, "again")
    with pytest.raises(InvalidStateError):
        orchestrator.submit_review(waiting.run_id, [AtomDecision("atom-001", Approve())])
