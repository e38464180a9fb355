"""Run orchestrator: owns the reconciliation run state machine.

``pending -> running -> completed | waiting_for_review | failed`` and
``waiting_for_review -> running -> completed | waiting_for_review | failed``.

A run waiting for review is pure persisted state. ``submit_review`` rebuilds
everything it needs from the database, so the process may restart between
``start`` and the review.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from logging import getLogger
from statistics import mean
from typing import TYPE_CHECKING, Final

from intentledger.domain.errors import (
    BudgetExceeded,
    InvalidStateError,
    NotFoundError,
    ReconciliationError,
    RunCancelled,
    UnknownRecommendationError,
    ValidationError,
)
from intentledger.domain.model import (
    AtomDecision,
    MoleculeDecision,
    ReconciliationPatch,
    ReconciliationRun,
    RunMode,
    RunOptions,
    RunStatus,
    count_patch_ops,
    utcnow,
)

from .apply import apply_decisions, check_decisions
from .closure import ClosureIndex, build_closure_index
from .inference import DEFAULT_MAX_WORKERS
from .molecules import ClusterMethod
from .pipeline import (
    DEFAULT_MAX_ATOMS_PER_RUN,
    DiscoverPhase,
    InferPhase,
    ReconciliationPipeline,
    RunContext,
    RunState,
    ScorePhase,
    SynthesizePhase,
)
from .quality import InterruptDecision, QualityGate

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from datetime import datetime

    from intentledger.domain.model import (
        AtomRecommendation,
        BudgetUsage,
        Decision,
        DeltaBaseline,
        MoleculeRecommendation,
        PatchOpType,
        RunSummary,
        TestRecord,
    )
    from intentledger.domain.ports import (
        EvidenceInventoryProvider,
        InferenceCapability,
        LedgerRepositories,
        LedgerUnitOfWork,
    )

    from .quality import PendingReview

log = getLogger(__name__)

DEFAULT_STALE_AFTER: Final[timedelta] = timedelta(minutes=30)
ACTIVE_STATUSES: Final[tuple[RunStatus, ...]] = (
    RunStatus.PENDING,
    RunStatus.RUNNING,
    RunStatus.WAITING_FOR_REVIEW,
)

type UnitOfWorkFactory = Callable[[], LedgerUnitOfWork]


@dataclass(frozen=True, slots=True, kw_only=True)
class RunResult:
    run_id: str
    status: RunStatus
    summary: RunSummary
    pending_review: PendingReview | None = None
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True, kw_only=True)
class RunDetails:
    run_id: str
    root_directory: str
    mode: RunMode
    status: RunStatus
    delta_baseline_run_id: str | None
    delta_baseline_commit_hash: str | None
    current_commit_hash: str | None
    options: RunOptions
    summary: RunSummary
    usage: BudgetUsage
    phases_completed: tuple[str, ...]
    patch_op_counts: dict[PatchOpType, int]
    errors: tuple[str, ...]
    warnings: tuple[str, ...]
    review_comments: tuple[str, ...]
    error_message: str | None
    created_at: datetime
    updated_at: datetime | None
    completed_at: datetime | None

    @classmethod
    def of(cls, run: ReconciliationRun) -> RunDetails:
        return cls(
            run_id=run.run_id,
            root_directory=run.root_directory,
            mode=run.mode,
            status=run.status,
            delta_baseline_run_id=run.delta_baseline_run_id,
            delta_baseline_commit_hash=run.delta_baseline_commit_hash,
            current_commit_hash=run.current_commit_hash,
            options=run.options,
            summary=run.summary,
            usage=run.usage,
            phases_completed=tuple(run.phases_completed),
            patch_op_counts=count_patch_ops(run.patch_ops),
            errors=tuple(run.errors),
            warnings=tuple(run.warnings),
            review_comments=tuple(run.review_comments),
            error_message=run.error_message,
            created_at=run.created_at,
            updated_at=run.updated_at,
            completed_at=run.completed_at,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class RunRecommendations:
    run_id: str
    atoms: tuple[AtomRecommendation, ...]
    molecules: tuple[MoleculeRecommendation, ...]


@dataclass(frozen=True, slots=True, kw_only=True)
class RunMetrics:
    run_id: str
    total_atoms: int
    total_molecules: int
    average_confidence: float | None
    average_quality_score: float | None
    quality_threshold: int
    pass_count: int
    fail_count: int
    by_category: dict[str, int]
    by_status: dict[str, int]


@dataclass(slots=True)
class RunOrchestrator:
    """Start, resume and inspect reconciliation runs."""

    unit_of_work_factory: UnitOfWorkFactory
    evidence_provider: EvidenceInventoryProvider
    inference: InferenceCapability
    gate: QualityGate = field(default_factory=QualityGate)
    max_atoms: int = DEFAULT_MAX_ATOMS_PER_RUN
    max_workers: int = DEFAULT_MAX_WORKERS
    cluster_method: ClusterMethod = ClusterMethod.MODULE
    stale_after: timedelta = DEFAULT_STALE_AFTER
    clock: Callable[[], datetime] = utcnow

    def pipeline(self) -> ReconciliationPipeline:
        return ReconciliationPipeline(
            phases=(
                DiscoverPhase(self.evidence_provider),
                InferPhase(self.inference, max_workers=self.max_workers, max_atoms=self.max_atoms),
                SynthesizePhase(self.cluster_method),
                ScorePhase(self.gate),
            )
        )

    def start(
        self,
        root_directory: str,
        mode: RunMode | str,
        *,
        delta_baseline: DeltaBaseline | None = None,
        options: RunOptions | None = None,
        commit_hash: str | None = None,
    ) -> RunResult:
        """Create a run and execute it until it completes, fails or needs review.

        Every validation happens before the run row is written.
        """

        try:
            run_mode = RunMode(mode)
        except ValueError as exc:
            raise ValidationError(f"Unknown run mode: {mode!r}") from exc
        run_options = options or RunOptions()
        run_options.validate()
        if not root_directory.strip():
            raise ValidationError("A root directory is required")
        if run_mode is RunMode.FULL_SCAN and delta_baseline is not None:
            raise ValidationError("A delta baseline is only valid in delta mode")
        if run_mode is RunMode.DELTA and delta_baseline is None:
            raise ValidationError("Delta mode requires a baseline run id or commit hash")

        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            index = ClosureIndex.empty()
            baseline_run: ReconciliationRun | None = None
            warnings: list[str] = []
            if delta_baseline is not None:
                baseline_run, warnings = self._resolve_baseline(
                    repositories, root_directory, delta_baseline
                )
                if baseline_run is not None and baseline_run.completed_at is not None:
                    index = build_closure_index(
                        repositories.test_records.history(
                            root_directory, completed_before=baseline_run.completed_at
                        )
                    )

            now = self.clock()
            run = ReconciliationRun(
                root_directory=root_directory,
                mode=run_mode,
                options=run_options,
                delta_baseline_run_id=baseline_run.run_id if baseline_run else None,
                delta_baseline_commit_hash=(
                    delta_baseline.commit_hash if delta_baseline is not None else None
                ),
                current_commit_hash=commit_hash,
                created_at=now,
                updated_at=now,
            )
            run.record_warnings(warnings)
            repositories.runs.add(run)
            uow.commit()
            log.info("Run %s created (%s) for %s", run.run_id, run_mode, root_directory)

            run.begin(at=self.clock())
            uow.commit()
            state = RunState(run=run, closure_index=index)
            return self._execute(uow, state)

    def _resolve_baseline(
        self,
        repositories: LedgerRepositories,
        root_directory: str,
        baseline: DeltaBaseline,
    ) -> tuple[ReconciliationRun | None, list[str]]:
        if baseline.run_id is not None:
            run = repositories.runs.get(baseline.run_id)
            if run is None:
                raise NotFoundError(f"Baseline run {baseline.run_id} does not exist")
            if run.status is not RunStatus.COMPLETED:
                raise ValidationError(
                    f"Baseline run {baseline.run_id} is {run.status}, not completed"
                )
            if run.root_directory != root_directory:
                raise ValidationError(
                    f"Baseline run {baseline.run_id} covers {run.root_directory}, "
                    f"not {root_directory}"
                )
            return run, []

        commit_hash = baseline.commit_hash or ""
        run = repositories.runs.latest_completed_at_commit(root_directory, commit_hash)
        if run is None:
            message = (
                f"No completed run found at commit {commit_hash}; every test will be analyzed"
            )
            log.warning(message)
            return None, [message]
        return run, []

    def _execute(self, uow: LedgerUnitOfWork, state: RunState) -> RunResult:
        run = state.run
        repositories = uow.repositories
        context = RunContext(
            repositories=repositories,
            clock=self.clock,
            checkpoint=lambda: self._checkpoint(uow, run.run_id),
        )
        try:
            self.pipeline().run(state, context=context)
            return self._settle(
                uow,
                run,
                atoms=state.atoms,
                molecules=state.molecules,
                records=list(state.records.values()),
            )
        except RunCancelled as exc:
            uow.rollback()
            log.warning("%s; in-flight results were discarded", exc)
            return self._result(repositories, self._require_run(repositories, run.run_id))
        except BudgetExceeded as exc:
            # completed work stays persisted
            log.error("Run %s failed: %s", run.run_id, exc)
            return self._fail(uow, run, str(exc))
        except ReconciliationError as exc:
            uow.rollback()
            log.error("Run %s failed: %s", run.run_id, exc)
            return self._fail(uow, run, str(exc))
        except Exception as exc:
            uow.rollback()
            log.exception("Run %s failed unexpectedly", run.run_id)
            return self._fail(uow, run, f"Unexpected error: {exc}")

    def _fail(self, uow: LedgerUnitOfWork, run: ReconciliationRun, message: str) -> RunResult:
        if uow.repositories.runs.current_status(run.run_id) is RunStatus.FAILED:
            uow.rollback()
            log.warning("Run %s was already marked failed; not recording: %s", run.run_id, message)
            return self._result(uow.repositories, self._require_run(uow.repositories, run.run_id))
        run.fail(message, at=self.clock())
        uow.commit()
        return self._result(uow.repositories, run)

    @staticmethod
    def _ensure_not_cancelled(repositories: LedgerRepositories, run_id: str) -> None:
        if repositories.runs.current_status(run_id) is RunStatus.FAILED:
            raise RunCancelled(f"Run {run_id} was marked failed while it was executing")

    def _checkpoint(self, uow: LedgerUnitOfWork, run_id: str) -> None:
        self._ensure_not_cancelled(uow.repositories, run_id)
        uow.commit()

    def _settle(
        self,
        uow: LedgerUnitOfWork,
        run: ReconciliationRun,
        *,
        atoms: Sequence[AtomRecommendation],
        molecules: Sequence[MoleculeRecommendation],
        records: Sequence[TestRecord],
        human_atom_decisions: dict[str, Decision] | None = None,
        human_molecule_decisions: dict[str, Decision] | None = None,
        resuming: bool = False,
    ) -> RunResult:
        """Ask the quality gate, then either finalize or pause for review."""

        decision = self.gate.evaluate(
            atoms,
            molecules,
            options=run.options,
            human_atom_decisions=human_atom_decisions,
            human_molecule_decisions=human_molecule_decisions,
            resuming=resuming,
        )
        now = self.clock()
        if isinstance(decision, InterruptDecision):
            if human_atom_decisions or human_molecule_decisions:
                apply_decisions(
                    run,
                    atoms=atoms,
                    molecules=molecules,
                    test_records=records,
                    atom_decisions=human_atom_decisions or {},
                    molecule_decisions=human_molecule_decisions or {},
                    repositories=uow.repositories,
                    at=now,
                )
            review = self.gate.pending_review(
                atoms,
                molecules,
                threshold=run.options.quality_threshold,
                reason=decision.review.reason,
            )
            self._ensure_not_cancelled(uow.repositories, run.run_id)
            run.wait_for_review(at=now)
            uow.commit()
            log.info("Run %s waiting for review: %s", run.run_id, review.reason)
            return self._result(uow.repositories, run, review=review)

        apply_decisions(
            run,
            atoms=atoms,
            molecules=molecules,
            test_records=records,
            atom_decisions=decision.atom_decisions,
            molecule_decisions=decision.molecule_decisions,
            repositories=uow.repositories,
            at=now,
        )
        self._ensure_not_cancelled(uow.repositories, run.run_id)
        run.complete(at=now)
        uow.commit()
        log.info(
            "Run %s completed: %s accepted, %s rejected",
            run.run_id,
            run.summary.accepted_atoms_count,
            run.summary.rejected_atoms_count,
        )
        return self._result(uow.repositories, run)

    def submit_review(
        self,
        run_id: str,
        atom_decisions: Iterable[AtomDecision] = (),
        molecule_decisions: Iterable[MoleculeDecision] = (),
        *,
        comment: str | None = None,
    ) -> RunResult:
        """Apply human decisions to a run waiting for review and resume it.

        Submitting the same decisions twice is a no-op that returns the
        current state of the run.
        """

        atom_list = list(atom_decisions)
        molecule_list = list(molecule_decisions)
        keys = [decision.ledger_key for decision in (*atom_list, *molecule_list)]

        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            run = self._require_run(repositories, run_id)
            if keys and all(run.has_applied(key) for key in keys):
                log.info("Run %s: review already applied, ignoring resubmission", run_id)
                return self._result(repositories, run)
            if run.status is not RunStatus.WAITING_FOR_REVIEW:
                raise InvalidStateError(f"Run {run_id} is {run.status}, not waiting for review")

            atoms = repositories.atom_recommendations.list_for_run(run_id)
            molecules = repositories.molecule_recommendations.list_for_run(run_id)
            atom_ids = {atom.temp_id for atom in atoms}
            molecule_ids = {molecule.temp_id for molecule in molecules}
            unknown = [d.temp_id for d in atom_list if d.temp_id not in atom_ids]
            unknown += [d.temp_id for d in molecule_list if d.temp_id not in molecule_ids]
            if unknown:
                raise UnknownRecommendationError(run_id, unknown)

            human_atoms = {
                d.temp_id: d.decision for d in atom_list if not run.has_applied(d.ledger_key)
            }
            human_molecules = {
                d.temp_id: d.decision for d in molecule_list if not run.has_applied(d.ledger_key)
            }
            check_decisions(atoms, human_atoms)

            run.transition(RunStatus.RUNNING, at=self.clock())
            if comment:
                run.add_review_comment(comment)
            uow.commit()
            log.info(
                "Run %s resumed with %s atom and %s molecule decisions",
                run_id,
                len(human_atoms),
                len(human_molecules),
            )
            records = repositories.test_records.list_for_run(run_id)
            try:
                return self._settle(
                    uow,
                    run,
                    atoms=atoms,
                    molecules=molecules,
                    records=records,
                    human_atom_decisions=human_atoms,
                    human_molecule_decisions=human_molecules,
                    resuming=True,
                )
            except RunCancelled as exc:
                uow.rollback()
                log.warning("%s; review decisions were discarded", exc)
                return self._result(repositories, self._require_run(repositories, run_id))
            except ReconciliationError as exc:
                uow.rollback()
                log.error("Run %s failed while resuming: %s", run_id, exc)
                return self._fail(uow, run, str(exc))
            except Exception as exc:
                uow.rollback()
                log.exception("Run %s failed unexpectedly while resuming", run_id)
                return self._fail(uow, run, f"Unexpected error: {exc}")

    def get_active_runs(self) -> list[RunDetails]:
        with self.unit_of_work_factory() as uow:
            runs = uow.repositories.runs.list_by_status(ACTIVE_STATUSES)
            return [RunDetails.of(run) for run in runs]

    def get_run_details(self, run_id: str) -> RunDetails:
        with self.unit_of_work_factory() as uow:
            return RunDetails.of(self._require_run(uow.repositories, run_id))

    def get_result(self, run_id: str) -> RunResult:
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            return self._result(repositories, self._require_run(repositories, run_id))

    def get_recommendations(self, run_id: str) -> RunRecommendations:
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            self._require_run(repositories, run_id)
            return RunRecommendations(
                run_id=run_id,
                atoms=tuple(repositories.atom_recommendations.list_for_run(run_id)),
                molecules=tuple(repositories.molecule_recommendations.list_for_run(run_id)),
            )

    def get_patch(self, run_id: str) -> ReconciliationPatch:
        with self.unit_of_work_factory() as uow:
            run = self._require_run(uow.repositories, run_id)
            return ReconciliationPatch(run_id=run_id, ops=tuple(run.patch_ops))

    def get_metrics(self, run_id: str, *, quality_threshold: int | None = None) -> RunMetrics:
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            run = self._require_run(repositories, run_id)
            atoms = repositories.atom_recommendations.list_for_run(run_id)
            molecules = repositories.molecule_recommendations.list_for_run(run_id)
        threshold = (
            quality_threshold if quality_threshold is not None else run.options.quality_threshold
        )
        scores = [atom.quality_score for atom in atoms if atom.quality_score is not None]
        passed = sum(1 for atom in atoms if atom.passes(threshold))
        return RunMetrics(
            run_id=run_id,
            total_atoms=len(atoms),
            total_molecules=len(molecules),
            average_confidence=mean(atom.confidence for atom in atoms) if atoms else None,
            average_quality_score=mean(scores) if scores else None,
            quality_threshold=threshold,
            pass_count=passed,
            fail_count=len(atoms) - passed,
            by_category=dict(Counter(atom.category for atom in atoms)),
            by_status=dict(Counter(str(atom.status) for atom in atoms)),
        )

    def list_recoverable_runs(self) -> list[RunDetails]:
        """Running runs that stopped making progress but left recommendations."""

        cutoff = self.clock() - self.stale_after
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            return [
                RunDetails.of(run)
                for run in repositories.runs.list_by_status([RunStatus.RUNNING])
                if (run.updated_at or run.created_at) <= cutoff
                and repositories.atom_recommendations.list_for_run(run.run_id)
            ]

    def recover_run(self, run_id: str) -> RunResult:
        """Move a stale running run to review so its partial work is not lost."""

        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            run = self._require_run(repositories, run_id)
            if run.status is not RunStatus.RUNNING:
                raise InvalidStateError(f"Run {run_id} is {run.status}, only running runs recover")
            if (run.updated_at or run.created_at) > self.clock() - self.stale_after:
                raise InvalidStateError(f"Run {run_id} is still making progress")
            atoms = repositories.atom_recommendations.list_for_run(run_id)
            if not atoms:
                raise ValidationError(f"Run {run_id} has no recommendations to review")
            molecules = repositories.molecule_recommendations.list_for_run(run_id)
            self.gate.score(atoms)
            run.record_warnings(
                [f"Recovered after interruption; completed phases: {run.phases_completed}"]
            )
            run.wait_for_review(at=self.clock())
            uow.commit()
            log.warning("Run %s recovered into review", run_id)
            review = self.gate.pending_review(
                atoms,
                molecules,
                threshold=run.options.quality_threshold,
                reason="Recovered after an interrupted run",
            )
            return self._result(repositories, run, review=review)

    def mark_failed(self, run_id: str, reason: str) -> RunResult:
        """Fail a run from outside; in-flight inference results are discarded."""

        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            run = self._require_run(repositories, run_id)
            if run.is_terminal:
                raise InvalidStateError(f"Run {run_id} is already {run.status}")
            log.warning("Run %s marked failed: %s", run_id, reason)
            return self._fail(uow, run, reason)

    @staticmethod
    def _require_run(repositories: LedgerRepositories, run_id: str) -> ReconciliationRun:
        run = repositories.runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Run {run_id} does not exist")
        return run

    def _result(
        self,
        repositories: LedgerRepositories,
        run: ReconciliationRun,
        *,
        review: PendingReview | None = None,
    ) -> RunResult:
        if review is None and run.status is RunStatus.WAITING_FOR_REVIEW:
            review = self._rebuild_review(repositories, run)
        return RunResult(
            run_id=run.run_id,
            status=run.status,
            summary=run.summary,
            pending_review=review,
            errors=tuple(run.errors),
            warnings=tuple(run.warnings),
        )

    def _rebuild_review(
        self, repositories: LedgerRepositories, run: ReconciliationRun
    ) -> PendingReview:
        atoms = repositories.atom_recommendations.list_for_run(run.run_id)
        molecules = repositories.molecule_recommendations.list_for_run(run.run_id)
        decision = self.gate.evaluate(
            atoms,
            molecules,
            options=run.options,
            resuming=bool(run.applied_decision_keys or run.review_comments),
        )
        reason = (
            decision.review.reason
            if isinstance(decision, InterruptDecision)
            else "Awaiting review"
        )
        return self.gate.pending_review(
            atoms, molecules, threshold=run.options.quality_threshold, reason=reason
        )
