"""Reconciliation engine: evidence in, reviewed ledger atoms out."""

from __future__ import annotations

from .apply import ApplyResult, apply_decisions, check_decisions
from .budget import (
    BUDGETS,
    Budget,
    BudgetCheck,
    BudgetEnforcer,
    BudgetTier,
    check_budget,
    tier_for,
)
from .closure import (
    ClosureDecision,
    ClosureIndex,
    ClosurePlan,
    PriorRecord,
    build_closure_index,
    changed_annotated_tests,
    plan_closure,
)
from .inference import InferenceOutcome, InferenceStage, atom_temp_id, molecule_temp_id
from .molecules import ClusterMethod, check_molecule_integrity, synthesize_molecules
from .orchestrator import (
    RunDetails,
    RunMetrics,
    RunOrchestrator,
    RunRecommendations,
    RunResult,
    UnitOfWorkFactory,
)
from .pipeline import (
    DiscoverPhase,
    InferPhase,
    ReconciliationPhase,
    ReconciliationPipeline,
    RunContext,
    RunState,
    ScorePhase,
    SynthesizePhase,
)
from .quality import (
    DEFAULT_RULES,
    FinalizeDecision,
    GateOutcome,
    InterruptDecision,
    PendingAtom,
    PendingMolecule,
    PendingReview,
    QualityAssessment,
    QualityGate,
    QualityRule,
    QualityScorer,
    ReviewSummary,
    RuleBasedScorer,
    detect_issues,
    quality_decision,
)

__all__ = [
    "BUDGETS",
    "DEFAULT_RULES",
    "ApplyResult",
    "Budget",
    "BudgetCheck",
    "BudgetEnforcer",
    "BudgetTier",
    "ClosureDecision",
    "ClosureIndex",
    "ClosurePlan",
    "ClusterMethod",
    "DiscoverPhase",
    "FinalizeDecision",
    "GateOutcome",
    "InferPhase",
    "InferenceOutcome",
    "InferenceStage",
    "InterruptDecision",
    "PendingAtom",
    "PendingMolecule",
    "PendingReview",
    "PriorRecord",
    "QualityAssessment",
    "QualityGate",
    "QualityRule",
    "QualityScorer",
    "ReconciliationPhase",
    "ReconciliationPipeline",
    "ReviewSummary",
    "RuleBasedScorer",
    "RunContext",
    "RunDetails",
    "RunMetrics",
    "RunOrchestrator",
    "RunRecommendations",
    "RunResult",
    "RunState",
    "ScorePhase",
    "SynthesizePhase",
    "UnitOfWorkFactory",
    "apply_decisions",
    "atom_temp_id",
    "build_closure_index",
    "changed_annotated_tests",
    "check_budget",
    "check_decisions",
    "check_molecule_integrity",
    "detect_issues",
    "molecule_temp_id",
    "plan_closure",
    "quality_decision",
    "synthesize_molecules",
    "tier_for",
]
