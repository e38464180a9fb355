"""Patch operations recorded as recommendations are finalized.

A run's patch is the ordered list of operations it applied to the atom
store. Operations reference each other through run-scoped temp ids, so a
patch can be validated on its own without touching persistence.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class PatchOpType(StrEnum):
    CREATE_ATOM = "create_atom"
    CREATE_MOLECULE = "create_molecule"
    ATTACH_TEST_TO_ATOM = "attach_test_to_atom"
    MARK_ATOM_SUPERSEDED = "mark_atom_superseded"
    INVARIANT_VIOLATION_FINDING = "invariant_violation_finding"


@dataclass(frozen=True, slots=True, kw_only=True)
class CreateAtomOp:
    temp_id: str
    description: str
    category: str
    confidence: int
    file_path: str
    test_name: str
    line_number: int | None = None
    observable_outcomes: tuple[str, ...] = ()
    atom_id: str | None = None
    op: Literal[PatchOpType.CREATE_ATOM] = PatchOpType.CREATE_ATOM


@dataclass(frozen=True, slots=True, kw_only=True)
class CreateMoleculeOp:
    temp_id: str
    name: str
    description: str
    atom_temp_ids: tuple[str, ...]
    molecule_id: str | None = None
    op: Literal[PatchOpType.CREATE_MOLECULE] = PatchOpType.CREATE_MOLECULE


@dataclass(frozen=True, slots=True, kw_only=True)
class AttachTestToAtomOp:
    atom_temp_id: str
    file_path: str
    test_name: str
    line_number: int | None = None
    op: Literal[PatchOpType.ATTACH_TEST_TO_ATOM] = PatchOpType.ATTACH_TEST_TO_ATOM


@dataclass(frozen=True, slots=True, kw_only=True)
class MarkAtomSupersededOp:
    atom_id: str
    superseded_by_temp_id: str
    reason: str | None = None
    op: Literal[PatchOpType.MARK_ATOM_SUPERSEDED] = PatchOpType.MARK_ATOM_SUPERSEDED


@dataclass(frozen=True, slots=True, kw_only=True)
class InvariantViolationFindingOp:
    atom_id: str
    file_path: str
    test_name: str
    message: str
    op: Literal[PatchOpType.INVARIANT_VIOLATION_FINDING] = (
        PatchOpType.INVARIANT_VIOLATION_FINDING
    )


type PatchOp = (
    CreateAtomOp
    | CreateMoleculeOp
    | AttachTestToAtomOp
    | MarkAtomSupersededOp
    | InvariantViolationFindingOp
)

_OP_CLASSES: dict[PatchOpType, type[Any]] = {
    PatchOpType.CREATE_ATOM: CreateAtomOp,
    PatchOpType.CREATE_MOLECULE: CreateMoleculeOp,
    PatchOpType.ATTACH_TEST_TO_ATOM: AttachTestToAtomOp,
    PatchOpType.MARK_ATOM_SUPERSEDED: MarkAtomSupersededOp,
    PatchOpType.INVARIANT_VIOLATION_FINDING: InvariantViolationFindingOp,
}


def patch_op_to_dict(op: PatchOp) -> dict[str, Any]:
    payload = asdict(op)
    payload["op"] = op.op.value
    return payload


def patch_op_from_dict(data: Mapping[str, Any]) -> PatchOp:
    op_type = PatchOpType(data["op"])
    values = {
        key: tuple(value) if isinstance(value, list) else value
        for key, value in data.items()
        if key != "op"
    }
    return _OP_CLASSES[op_type](**values)


@dataclass(frozen=True, slots=True)
class ReconciliationPatch:
    run_id: str
    ops: tuple[PatchOp, ...] = field(default_factory=tuple)

    def counts(self) -> dict[PatchOpType, int]:
        return count_patch_ops(self.ops)

    def validate(self) -> list[str]:
        return validate_patch(self.ops)


def count_patch_ops(ops: Iterable[PatchOp]) -> dict[PatchOpType, int]:
    tally = Counter(op.op for op in ops)
    return {op_type: tally.get(op_type, 0) for op_type in PatchOpType}


def validate_patch(ops: Iterable[PatchOp]) -> list[str]:
    """Return referential-integrity problems found in ``ops`` (empty when valid)."""

    materialized = tuple(ops)
    atom_temp_ids = {op.temp_id for op in materialized if isinstance(op, CreateAtomOp)}
    problems: list[str] = []
    for op in materialized:
        match op:
            case CreateMoleculeOp():
                if len(op.atom_temp_ids) < 2:
                    problems.append(f"Molecule {op.temp_id} has fewer than two atoms")
                missing = [ref for ref in op.atom_temp_ids if ref not in atom_temp_ids]
                if missing:
                    problems.append(
                        f"Molecule {op.temp_id} references unknown atoms: {', '.join(missing)}"
                    )
            case AttachTestToAtomOp():
                if op.atom_temp_id not in atom_temp_ids:
                    problems.append(
                        f"Test {op.file_path}::{op.test_name} attached to unknown atom "
                        f"{op.atom_temp_id}"
                    )
            case MarkAtomSupersededOp():
                if op.superseded_by_temp_id not in atom_temp_ids:
                    problems.append(
                        f"Atom {op.atom_id} superseded by unknown atom {op.superseded_by_temp_id}"
                    )
            case _:
                pass
    return problems
