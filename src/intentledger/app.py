"""Application orchestration entry points."""

from __future__ import annotations

from datetime import timedelta
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING

from intentledger.adapters.evidence import DEFAULT_MANIFEST_NAME, JsonManifestEvidenceProvider
from intentledger.adapters.inference import HttpInferenceCapability
from intentledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork, is_started, startup
from intentledger.config import (
    ConfigurationError,
    get_inference_config,
    get_reconciliation_config,
)
from intentledger.domain.conflicts import ConflictDetector, ConflictService
from intentledger.domain.model import RunMode, RunOptions
from intentledger.domain.reconciliation import QualityGate, RunOrchestrator

if TYPE_CHECKING:
    from intentledger.config import ReconciliationConfig
    from intentledger.domain.model import DeltaBaseline
    from intentledger.domain.ports import (
        EvidenceInventoryProvider,
        InferenceCapability,
        InferenceRequest,
        InferenceResult,
    )
    from intentledger.domain.reconciliation import RunResult, UnitOfWorkFactory

log = getLogger(__name__)


def _ensure_started() -> None:
    if not is_started():
        startup()


def _inference_unavailable(request: InferenceRequest) -> InferenceResult:
    raise ConfigurationError(
        f"No inference capability configured (run {request.run_id} needs one to infer atoms)"
    )


def build_orchestrator(
    *,
    evidence_provider: EvidenceInventoryProvider | None = None,
    inference: InferenceCapability | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: ReconciliationConfig | None = None,
    manifest_path: Path | None = None,
    read_only: bool = False,
) -> RunOrchestrator:
    """Wire the orchestrator to the configured adapters.

    ``read_only`` skips loading the inference configuration; such an
    orchestrator can inspect, review and recover runs but not infer.
    """

    if unit_of_work_factory is None:
        _ensure_started()
    settings = config or get_reconciliation_config()
    if inference is None:
        inference = (
            _inference_unavailable
            if read_only
            else HttpInferenceCapability(config=get_inference_config())
        )
    return RunOrchestrator(
        unit_of_work_factory=unit_of_work_factory or SqlAlchemyUnitOfWork,
        evidence_provider=evidence_provider
        or JsonManifestEvidenceProvider(manifest_path or Path(DEFAULT_MANIFEST_NAME)),
        inference=inference,
        gate=QualityGate(),
        max_atoms=settings.max_atoms_per_run,
        max_workers=settings.max_workers,
        stale_after=timedelta(minutes=settings.stale_run_minutes),
    )


def build_conflict_service(
    *, unit_of_work_factory: UnitOfWorkFactory | None = None
) -> ConflictService:
    if unit_of_work_factory is None:
        _ensure_started()
    return ConflictService(unit_of_work_factory=unit_of_work_factory or SqlAlchemyUnitOfWork)


def build_conflict_detector(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    threshold: int | None = None,
) -> ConflictDetector:
    service = build_conflict_service(unit_of_work_factory=unit_of_work_factory)
    return ConflictDetector(
        unit_of_work_factory=service.unit_of_work_factory,
        service=service,
        threshold=(
            threshold
            if threshold is not None
            else get_reconciliation_config().conflict_similarity_threshold
        ),
    )


def start_reconciliation(
    root_directory: str,
    mode: RunMode | str = RunMode.FULL_SCAN,
    *,
    delta_baseline: DeltaBaseline | None = None,
    options: RunOptions | None = None,
    commit_hash: str | None = None,
    orchestrator: RunOrchestrator | None = None,
    manifest_path: Path | None = None,
) -> RunResult:
    """Start a reconciliation run using the configured adapters."""

    effective = orchestrator or build_orchestrator(manifest_path=manifest_path)
    effective_options = options or RunOptions(
        quality_threshold=get_reconciliation_config().quality_threshold
    )
    log.info(
        "Starting reconciliation: root=%s, mode=%s, baseline=%s, commit=%s",
        root_directory,
        mode,
        delta_baseline,
        commit_hash,
    )

    result = effective.start(
        root_directory,
        mode,
        delta_baseline=delta_baseline,
        options=effective_options,
        commit_hash=commit_hash,
    )

    log.info(
        "Finished reconciliation %s: status=%s, inferred=%s, accepted=%s, errors=%s",
        result.run_id,
        result.status,
        result.summary.inferred_atoms_count,
        result.summary.accepted_atoms_count,
        len(result.errors),
    )
    return result
