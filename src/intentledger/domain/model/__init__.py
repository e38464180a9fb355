"""Domain model for the intent ledger and its reconciliation runs."""

from __future__ import annotations

from .atoms import (
    ATOM_ID_PREFIX,
    MOLECULE_ID_PREFIX,
    Atom,
    Molecule,
    format_atom_id,
    format_molecule_id,
    parse_sequence,
)
from .base import Entity, new_id, utcnow
from .conflicts import ConflictRecord, ConflictResolution, pair_key
from .decisions import Approve, AtomDecision, Decision, DecisionKind, MoleculeDecision, Reject
from .enums import (
    AtomStatus,
    ConflictStatus,
    ConflictType,
    EvidenceType,
    RecommendationStatus,
    ResolutionAction,
    RunMode,
    RunStatus,
    TestRecordStatus,
)
from .evidence import EvidenceInventory, EvidenceItem, EvidenceKey
from .patch import (
    AttachTestToAtomOp,
    CreateAtomOp,
    CreateMoleculeOp,
    InvariantViolationFindingOp,
    MarkAtomSupersededOp,
    PatchOp,
    PatchOpType,
    ReconciliationPatch,
    count_patch_ops,
    patch_op_from_dict,
    patch_op_to_dict,
    validate_patch,
)
from .recommendations import (
    AtomRecommendation,
    MoleculeRecommendation,
    SourceTestRef,
    clamp_score,
    normalize_confidence,
)
from .run import (
    DEFAULT_QUALITY_THRESHOLD,
    BudgetUsage,
    DeltaBaseline,
    ReconciliationRun,
    RunOptions,
    RunSummary,
    new_run_id,
)
from .test_record import TestRecord

__all__ = [
    "ATOM_ID_PREFIX",
    "DEFAULT_QUALITY_THRESHOLD",
    "MOLECULE_ID_PREFIX",
    "Approve",
    "Atom",
    "AtomDecision",
    "AtomRecommendation",
    "AtomStatus",
    "AttachTestToAtomOp",
    "BudgetUsage",
    "ConflictRecord",
    "ConflictResolution",
    "ConflictStatus",
    "ConflictType",
    "CreateAtomOp",
    "CreateMoleculeOp",
    "Decision",
    "DecisionKind",
    "DeltaBaseline",
    "Entity",
    "EvidenceInventory",
    "EvidenceItem",
    "EvidenceKey",
    "EvidenceType",
    "InvariantViolationFindingOp",
    "MarkAtomSupersededOp",
    "Molecule",
    "MoleculeDecision",
    "MoleculeRecommendation",
    "PatchOp",
    "PatchOpType",
    "ReconciliationPatch",
    "ReconciliationRun",
    "RecommendationStatus",
    "Reject",
    "ResolutionAction",
    "RunMode",
    "RunOptions",
    "RunStatus",
    "RunSummary",
    "SourceTestRef",
    "TestRecord",
    "TestRecordStatus",
    "clamp_score",
    "count_patch_ops",
    "format_atom_id",
    "format_molecule_id",
    "new_id",
    "new_run_id",
    "normalize_confidence",
    "pair_key",
    "parse_sequence",
    "patch_op_from_dict",
    "patch_op_to_dict",
    "utcnow",
    "validate_patch",
]
