"""Phase-based pipeline executed for every reconciliation run.

Phases run in order against a shared ``RunState``. After each phase the
pipeline checkpoints (commits) so a crash leaves a partially populated,
reviewable run instead of silently losing work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Final, Protocol

from intentledger.domain.errors import RunCancelled, ValidationError
from intentledger.domain.model import (
    InvariantViolationFindingOp,
    RunMode,
    RunStatus,
    TestRecord,
    TestRecordStatus,
    utcnow,
)

from .budget import BUDGETS, BudgetEnforcer, tier_for
from .closure import ClosureDecision, ClosureIndex, changed_annotated_tests, plan_closure
from .inference import DEFAULT_MAX_WORKERS, InferenceStage
from .molecules import ClusterMethod, check_molecule_integrity, synthesize_molecules

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from datetime import datetime

    from intentledger.domain.model import (
        AtomRecommendation,
        EvidenceInventory,
        EvidenceItem,
        EvidenceKey,
        MoleculeRecommendation,
        ReconciliationRun,
    )
    from intentledger.domain.ports import (
        EvidenceInventoryProvider,
        InferenceCapability,
        LedgerRepositories,
    )

    from .quality import QualityGate

log = getLogger(__name__)

DISCOVER_PHASE: Final[str] = "discover"
INFER_PHASE: Final[str] = "infer"
SYNTHESIZE_PHASE: Final[str] = "synthesize"
SCORE_PHASE: Final[str] = "score"
DEFAULT_MAX_ATOMS_PER_RUN: Final[int] = 200


@dataclass(slots=True)
class RunContext:
    """Per-run collaborators; there is no process-wide current run."""

    repositories: LedgerRepositories
    clock: Callable[[], datetime] = utcnow
    checkpoint: Callable[[], None] = lambda: None


@dataclass(slots=True)
class RunState:
    """Working set of one run while its phases execute."""

    run: ReconciliationRun
    closure_index: ClosureIndex = field(default_factory=ClosureIndex.empty)
    inventory: EvidenceInventory | None = None
    to_analyze: list[EvidenceItem] = field(default_factory=list["EvidenceItem"])
    records: dict[EvidenceKey, TestRecord] = field(default_factory=dict)
    atoms: list[AtomRecommendation] = field(default_factory=list["AtomRecommendation"])
    molecules: list[MoleculeRecommendation] = field(
        default_factory=list["MoleculeRecommendation"]
    )
    enforcer: BudgetEnforcer | None = None


class ReconciliationPhase(Protocol):
    """Contract implemented by each reconciliation phase."""

    name: str

    def run(self, state: RunState, *, context: RunContext) -> None: ...


@dataclass(slots=True)
class ReconciliationPipeline:
    phases: Sequence[ReconciliationPhase] = field(default_factory=tuple)

    def with_phase(self, phase: ReconciliationPhase) -> ReconciliationPipeline:
        return ReconciliationPipeline(phases=(*self.phases, phase))

    def extend(self, phases: Iterable[ReconciliationPhase]) -> ReconciliationPipeline:
        return ReconciliationPipeline(phases=(*self.phases, *tuple(phases)))

    def run(self, state: RunState, *, context: RunContext) -> RunState:
        """Execute the phases in order, checkpointing after each one."""

        for phase in self.phases:
            log.info("Run %s: phase %s", state.run.run_id, phase.name)
            phase.run(state, context=context)
            state.run.mark_phase(phase.name)
            state.run.updated_at = context.clock()
            context.checkpoint()
        return state


def _record_for(
    item: EvidenceItem,
    run_id: str,
    *,
    status: TestRecordStatus = TestRecordStatus.PENDING,
    had_atom_annotation: bool = False,
    linked_atom_id: str | None = None,
    is_delta_change: bool = False,
) -> TestRecord:
    return TestRecord(
        run_id=run_id,
        file_path=item.file_path,
        test_name=item.name,
        content_hash=item.content_hash,
        line_number=item.line_number,
        status=status,
        had_atom_annotation=had_atom_annotation,
        linked_atom_id=linked_atom_id,
        is_delta_change=is_delta_change,
    )


class DiscoverPhase(ReconciliationPhase):
    """Load evidence, apply filters and closure, and create test records."""

    name: str = DISCOVER_PHASE

    def __init__(self, evidence_provider: EvidenceInventoryProvider) -> None:
        self.evidence_provider = evidence_provider

    def run(self, state: RunState, *, context: RunContext) -> None:
        run = state.run
        options = run.options
        inventory = self.evidence_provider(
            run.root_directory, commit_hash=run.current_commit_hash
        )
        state.inventory = inventory
        if run.current_commit_hash is None:
            run.current_commit_hash = inventory.commit_hash

        tests = [item for item in inventory.tests() if options.selects(item.file_path)]
        annotated = [item for item in tests if item.is_annotated]
        orphans = [item for item in tests if not item.is_annotated]
        index = state.closure_index if run.mode is RunMode.DELTA else ClosureIndex.empty()

        changed = changed_annotated_tests(annotated, index=index)
        changed_keys = {item.key for item, _ in changed}
        records: list[TestRecord] = [
            _record_for(
                item,
                run.run_id,
                status=TestRecordStatus.SKIPPED,
                had_atom_annotation=True,
                linked_atom_id=item.linked_atom_id,
                is_delta_change=item.key in changed_keys,
            )
            for item in annotated
        ]
        findings: list[InvariantViolationFindingOp] = []
        for item, prior in changed:
            atom_id = item.linked_atom_id or prior.linked_atom_id or ""
            message = (
                f"Test {item.file_path}::{item.name} changed since the baseline "
                f"while linked to {atom_id}"
            )
            findings.append(
                InvariantViolationFindingOp(
                    atom_id=atom_id,
                    file_path=item.file_path,
                    test_name=item.name,
                    message=message,
                )
            )
            log.warning("Run %s: %s", run.run_id, message)

        plan = plan_closure(orphans, mode=run.mode, index=index)
        to_analyze = plan.to_analyze()
        deferred: list[EvidenceItem] = []
        if options.max_tests is not None and len(to_analyze) > options.max_tests:
            deferred = to_analyze[options.max_tests :]
            to_analyze = to_analyze[: options.max_tests]

        for item in plan.skipped():
            prior = plan.prior[item.key]
            records.append(
                _record_for(
                    item,
                    run.run_id,
                    status=TestRecordStatus.SKIPPED,
                    linked_atom_id=prior.linked_atom_id,
                )
            )
        for item in to_analyze:
            prior = plan.prior.get(item.key)
            records.append(
                _record_for(
                    item,
                    run.run_id,
                    is_delta_change=plan.decision_for(item) is ClosureDecision.REPROCESS,
                    linked_atom_id=prior.linked_atom_id if prior else None,
                )
            )

        for record in records:
            context.repositories.test_records.add(record)
            state.records[record.key] = record
        state.to_analyze = to_analyze

        run.append_patch_ops(findings)
        run.record_warnings(finding.message for finding in findings)
        run.update_summary(
            total_orphan_tests=len(orphans),
            changed_linked_tests_count=len(changed),
            excluded_by_stopping_rule_count=len(plan.skipped()),
            reprocessed_tests_count=sum(
                1
                for item in to_analyze
                if plan.decision_for(item) is ClosureDecision.REPROCESS
            ),
            deferred_tests_count=len(deferred),
            deferred_tests=tuple(f"{item.file_path}::{item.name}" for item in deferred),
        )
        log.info(
            "Run %s: %s tests selected, %s to analyze, %s skipped as closed",
            run.run_id,
            len(tests),
            len(to_analyze),
            len(plan.skipped()),
        )


class InferPhase(ReconciliationPhase):
    """Run inference for the selected tests and persist grounded drafts."""

    name: str = INFER_PHASE

    def __init__(
        self,
        capability: InferenceCapability,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_atoms: int = DEFAULT_MAX_ATOMS_PER_RUN,
    ) -> None:
        self.capability = capability
        self.max_workers = max_workers
        self.max_atoms = max_atoms

    def run(self, state: RunState, *, context: RunContext) -> None:
        run = state.run
        if state.inventory is None:
            raise ValidationError(f"Run {run.run_id} has no evidence inventory loaded")
        enforcer = state.enforcer or BudgetEnforcer(BUDGETS[tier_for(len(state.to_analyze))])
        state.enforcer = enforcer
        stage = InferenceStage(
            self.capability, max_workers=run.options.max_workers or self.max_workers
        )
        runs = context.repositories.runs
        outcome = stage(
            state.to_analyze,
            run_id=run.run_id,
            inventory=state.inventory,
            enforcer=enforcer,
            is_cancelled=lambda: runs.current_status(run.run_id) is RunStatus.FAILED,
            first_atom_index=len(state.atoms) + 1,
            first_molecule_index=len(state.molecules) + 1,
        )
        if outcome.cancelled:
            raise RunCancelled(f"Run {run.run_id} was marked failed during inference")

        produced = len(state.atoms) + len(outcome.atoms)
        if produced > self.max_atoms:
            raise ValidationError(
                f"Run {run.run_id} produced {produced} atom recommendations, more than "
                f"the limit of {self.max_atoms}; treating this as inference drift"
            )

        for atom in outcome.atoms:
            context.repositories.atom_recommendations.add(atom)
        for molecule in outcome.molecules:
            context.repositories.molecule_recommendations.add(molecule)
        state.atoms.extend(outcome.atoms)
        state.molecules.extend(outcome.molecules)

        first_by_test: dict[EvidenceKey, AtomRecommendation] = {}
        for atom in outcome.atoms:
            first_by_test.setdefault(atom.source_test.key, atom)
        now = context.clock()
        for item in outcome.analyzed:
            record = state.records.get(item.key)
            if record is None:
                continue
            atom = first_by_test.get(item.key)
            if atom is None:
                record.close(
                    TestRecordStatus.REJECTED,
                    at=now,
                    reason="No grounded atom recommendations were inferred",
                )
            else:
                record.atom_recommendation_id = atom.id

        deferred = (
            *run.summary.deferred_tests,
            *(f"{item.file_path}::{item.name}" for item in outcome.deferred),
        )
        run.record_errors(outcome.errors)
        run.record_warnings(enforcer.warnings)
        run.record_usage(enforcer.usage())
        run.update_summary(
            inferred_atoms_count=len(state.atoms),
            inferred_molecules_count=len(state.molecules),
            grounding_violations_count=(
                run.summary.grounding_violations_count + outcome.grounding_violations
            ),
            deferred_tests_count=len(deferred),
            deferred_tests=deferred,
        )
        log.info(
            "Run %s: %s atom recommendations from %s tests (%s failed, %s deferred)",
            run.run_id,
            len(outcome.atoms),
            len(outcome.analyzed),
            len(outcome.failed),
            len(outcome.deferred),
        )
        if outcome.budget_exceeded is not None:
            raise outcome.budget_exceeded


class SynthesizePhase(ReconciliationPhase):
    """Group the run's atom recommendations into molecule recommendations."""

    name: str = SYNTHESIZE_PHASE

    def __init__(self, method: ClusterMethod = ClusterMethod.MODULE) -> None:
        self.method = method

    def run(self, state: RunState, *, context: RunContext) -> None:
        run = state.run
        created = synthesize_molecules(
            state.atoms,
            run_id=run.run_id,
            method=self.method,
            existing=state.molecules,
            first_index=len(state.molecules) + 1,
        )
        temp_ids = {atom.temp_id for atom in state.atoms}
        for molecule in (*state.molecules, *created):
            check_molecule_integrity(molecule, temp_ids)
        for molecule in created:
            context.repositories.molecule_recommendations.add(molecule)
        state.molecules.extend(created)
        run.update_summary(inferred_molecules_count=len(state.molecules))


class ScorePhase(ReconciliationPhase):
    """Attach quality scores and issues to every atom recommendation."""

    name: str = SCORE_PHASE

    def __init__(self, gate: QualityGate) -> None:
        self.gate = gate

    def run(self, state: RunState, *, context: RunContext) -> None:
        run = state.run
        self.gate.score(state.atoms)
        threshold = run.options.quality_threshold
        passed = sum(1 for atom in state.atoms if atom.passes(threshold))
        run.update_summary(
            quality_pass_count=passed,
            quality_fail_count=len(state.atoms) - passed,
        )
