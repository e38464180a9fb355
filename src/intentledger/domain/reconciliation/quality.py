"""Quality gate and review interrupt.

Scoring is a pluggable policy (``QualityScorer``). The default
``RuleBasedScorer`` awards points per satisfied rule:

====================  =========================================  ======
rule                  satisfied when                             points
====================  =========================================  ======
has_description       description longer than 5 characters       25
has_outcomes          at least one observable outcome            15
has_category          category present                           15
has_reasoning         reasoning longer than 10 characters        10
has_confidence        confidence of at least 50                  15
no_ambiguity          no ambiguity reasons recorded              10
has_source_test       grounded on a source test                  10
====================  =========================================  ======

Gate decisions are pure functions of persisted recommendations and options,
so a run paused for review can be resumed after a process restart.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Final, Literal, Protocol

from intentledger.domain.model import Approve, RecommendationStatus, Reject, clamp_score

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from intentledger.domain.model import (
        AtomRecommendation,
        Decision,
        MoleculeRecommendation,
        RunOptions,
    )

log = getLogger(__name__)

REVIEW_FAILURE_RATE_WARNING: Final[float] = 0.5

_IMPLEMENTATION_DETAIL = re.compile(
    r"\b(class|method|function)\b|\(\)|\w+(Service|Repository|Controller)\b"
)
_VAGUE_OUTCOME = re.compile(r"\b(works|handles|properly|correctly)\b", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class QualityAssessment:
    score: int
    issues: tuple[str, ...] = ()


class QualityScorer(Protocol):
    def __call__(self, atom: AtomRecommendation) -> QualityAssessment: ...


@dataclass(frozen=True, slots=True)
class QualityRule:
    name: str
    points: int
    check: Callable[[AtomRecommendation], bool]
    issue: str


DEFAULT_RULES: Final[tuple[QualityRule, ...]] = (
    QualityRule(
        "has_description",
        25,
        lambda atom: len(atom.description.strip()) > 5,
        "Description is missing or too short",
    ),
    QualityRule(
        "has_outcomes",
        15,
        lambda atom: bool(atom.observable_outcomes),
        "No observable outcomes defined",
    ),
    QualityRule(
        "has_category",
        15,
        lambda atom: bool(atom.category.strip()),
        "Category is missing",
    ),
    QualityRule(
        "has_reasoning",
        10,
        lambda atom: len(atom.reasoning.strip()) > 10,
        "Reasoning is missing or too short",
    ),
    QualityRule(
        "has_confidence",
        15,
        lambda atom: atom.confidence >= 50,
        "Inference confidence below 50",
    ),
    QualityRule(
        "no_ambiguity",
        10,
        lambda atom: not atom.ambiguity_reasons,
        "Inference flagged ambiguity",
    ),
    QualityRule(
        "has_source_test",
        10,
        lambda atom: bool(atom.source_test.file_path and atom.source_test.test_name),
        "Source test reference is incomplete",
    ),
)


def detect_issues(atom: AtomRecommendation) -> list[str]:
    """Wording problems that do not affect the score but help reviewers."""

    issues: list[str] = []
    if _IMPLEMENTATION_DETAIL.search(atom.description):
        issues.append("Description references implementation details")
    if len(atom.description.strip()) < 20:
        issues.append("Description is shorter than 20 characters")
    for outcome in atom.observable_outcomes:
        stripped = outcome.strip()
        if len(stripped) < 10:
            issues.append(f"Outcome too short: {stripped!r}")
        elif len(stripped) < 30 and _VAGUE_OUTCOME.search(stripped):
            issues.append(f"Outcome is vague: {stripped!r}")
    return issues


@dataclass(frozen=True, slots=True)
class RuleBasedScorer:
    rules: tuple[QualityRule, ...] = DEFAULT_RULES

    def __call__(self, atom: AtomRecommendation) -> QualityAssessment:
        score = 0
        issues: list[str] = []
        for rule in self.rules:
            if rule.check(atom):
                score += rule.points
            else:
                issues.append(rule.issue)
        issues.extend(issue for issue in detect_issues(atom) if issue not in issues)
        return QualityAssessment(score=clamp_score(score), issues=tuple(issues))


@dataclass(frozen=True, slots=True, kw_only=True)
class ReviewSummary:
    total_atoms: int
    pass_count: int
    fail_count: int
    quality_threshold: int


@dataclass(frozen=True, slots=True, kw_only=True)
class PendingAtom:
    temp_id: str
    description: str
    category: str
    quality_score: int | None
    passes: bool
    issues: tuple[str, ...]


@dataclass(frozen=True, slots=True, kw_only=True)
class PendingMolecule:
    temp_id: str
    name: str
    description: str
    atom_count: int
    confidence: int


@dataclass(frozen=True, slots=True, kw_only=True)
class PendingReview:
    summary: ReviewSummary
    atoms: tuple[PendingAtom, ...]
    molecules: tuple[PendingMolecule, ...]
    reason: str


class GateOutcome(StrEnum):
    FINALIZE = "finalize"
    INTERRUPT = "interrupt"


@dataclass(frozen=True, slots=True, kw_only=True)
class FinalizeDecision:
    """Every pending recommendation gets a decision and the run can complete."""

    atom_decisions: Mapping[str, Decision] = field(default_factory=dict)
    molecule_decisions: Mapping[str, Decision] = field(default_factory=dict)
    outcome: Literal[GateOutcome.FINALIZE] = GateOutcome.FINALIZE


@dataclass(frozen=True, slots=True, kw_only=True)
class InterruptDecision:
    """The run must wait for human decisions."""

    review: PendingReview
    outcome: Literal[GateOutcome.INTERRUPT] = GateOutcome.INTERRUPT


type GateDecision = FinalizeDecision | InterruptDecision


def quality_decision(atom: AtomRecommendation, threshold: int) -> Decision:
    """Automatic decision for one atom recommendation."""

    if not atom.observable_outcomes:
        return Reject(reason="No observable outcomes; an atom must be testable to be accepted")
    if atom.passes(threshold):
        return Approve(reason=f"Quality score {atom.quality_score} meets threshold {threshold}")
    return Reject(reason=f"Quality score {atom.quality_score} below threshold {threshold}")


def molecule_decision(
    molecule: MoleculeRecommendation,
    atom_decisions: Mapping[str, Decision],
    accepted_atoms: frozenset[str],
) -> Decision:
    """A molecule follows its members: it survives with at least two accepted atoms."""

    approved = [
        temp_id
        for temp_id in molecule.atom_temp_ids
        if temp_id in accepted_atoms or isinstance(atom_decisions.get(temp_id), Approve)
    ]
    if len(approved) >= 2:
        return Approve(reason=f"{len(approved)} member atoms accepted")
    return Reject(reason="Fewer than two member atoms were accepted")


@dataclass(slots=True)
class QualityGate:
    scorer: QualityScorer = field(default_factory=RuleBasedScorer)

    def score(self, atoms: Sequence[AtomRecommendation]) -> None:
        """Attach scores and issues to atoms that have none yet."""

        for atom in atoms:
            if atom.quality_score is not None:
                continue
            assessment = self.scorer(atom)
            atom.apply_quality(assessment.score, list(assessment.issues))

    def pending_review(
        self,
        atoms: Sequence[AtomRecommendation],
        molecules: Sequence[MoleculeRecommendation],
        *,
        threshold: int,
        reason: str,
    ) -> PendingReview:
        pending_atoms = [atom for atom in atoms if atom.is_pending]
        pass_count = sum(1 for atom in pending_atoms if atom.passes(threshold))
        return PendingReview(
            summary=ReviewSummary(
                total_atoms=len(pending_atoms),
                pass_count=pass_count,
                fail_count=len(pending_atoms) - pass_count,
                quality_threshold=threshold,
            ),
            atoms=tuple(
                PendingAtom(
                    temp_id=atom.temp_id,
                    description=atom.description,
                    category=atom.category,
                    quality_score=atom.quality_score,
                    passes=atom.passes(threshold),
                    issues=tuple(atom.quality_issues),
                )
                for atom in pending_atoms
            ),
            molecules=tuple(
                PendingMolecule(
                    temp_id=molecule.temp_id,
                    name=molecule.name,
                    description=molecule.description,
                    atom_count=len(molecule.atom_temp_ids),
                    confidence=molecule.confidence,
                )
                for molecule in molecules
                if molecule.is_pending
            ),
            reason=reason,
        )

    def evaluate(
        self,
        atoms: Sequence[AtomRecommendation],
        molecules: Sequence[MoleculeRecommendation],
        *,
        options: RunOptions,
        human_atom_decisions: Mapping[str, Decision] | None = None,
        human_molecule_decisions: Mapping[str, Decision] | None = None,
        resuming: bool = False,
    ) -> GateDecision:
        """Decide whether the pending recommendations can be finalized.

        On the first pass ``require_review`` always interrupts. When resuming
        after a review, a human has already looked at the run, so only the
        quality-failure rule can interrupt again, and only for recommendations
        the reviewer left undecided; those otherwise fall back to the
        automatic quality decision.
        """

        threshold = options.quality_threshold
        human_atoms = dict(human_atom_decisions or {})
        human_molecules = dict(human_molecule_decisions or {})
        undecided = [atom for atom in atoms if atom.is_pending and atom.temp_id not in human_atoms]
        pass_count = sum(1 for atom in undecided if atom.passes(threshold))
        fail_count = len(undecided) - pass_count

        reason: str | None = None
        if undecided and options.require_review and not resuming:
            reason = "Review required by run options"
        elif undecided and options.force_interrupt_on_quality_fail and fail_count > pass_count:
            reason = (
                f"{fail_count} of {len(undecided)} recommendations fall below the quality "
                f"threshold of {threshold}"
            )

        if reason is not None:
            if undecided and fail_count / len(undecided) > REVIEW_FAILURE_RATE_WARNING:
                log.warning(
                    "High quality failure rate: %s of %s recommendations below %s",
                    fail_count,
                    len(undecided),
                    threshold,
                )
            return InterruptDecision(
                review=self.pending_review(
                    undecided,
                    [
                        molecule
                        for molecule in molecules
                        if molecule.temp_id not in human_molecules
                    ],
                    threshold=threshold,
                    reason=reason,
                )
            )

        atom_decisions: dict[str, Decision] = {
            atom.temp_id: quality_decision(atom, threshold) for atom in undecided
        }
        atom_decisions.update(
            (temp_id, decision)
            for temp_id, decision in human_atoms.items()
            if any(atom.temp_id == temp_id and atom.is_pending for atom in atoms)
        )
        already_accepted = frozenset(
            atom.temp_id for atom in atoms if atom.status is RecommendationStatus.ACCEPTED
        )
        molecule_decisions: dict[str, Decision] = {}
        for molecule in molecules:
            if not molecule.is_pending:
                continue
            molecule_decisions[molecule.temp_id] = human_molecules.get(
                molecule.temp_id
            ) or molecule_decision(molecule, atom_decisions, already_accepted)
        return FinalizeDecision(
            atom_decisions=atom_decisions,
            molecule_decisions=molecule_decisions,
        )
