"""Finalization: turn review decisions into ledger atoms and patch operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from intentledger.domain.errors import ValidationError
from intentledger.domain.model import (
    Approve,
    Atom,
    AtomDecision,
    AttachTestToAtomOp,
    CreateAtomOp,
    CreateMoleculeOp,
    MarkAtomSupersededOp,
    Molecule,
    MoleculeDecision,
    RecommendationStatus,
    TestRecordStatus,
    format_atom_id,
    format_molecule_id,
    validate_patch,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from intentledger.domain.model import (
        AtomRecommendation,
        Decision,
        EvidenceKey,
        MoleculeRecommendation,
        PatchOp,
        ReconciliationRun,
        TestRecord,
    )
    from intentledger.domain.ports import LedgerRepositories

log = getLogger(__name__)


@dataclass(slots=True)
class ApplyResult:
    ops: list[PatchOp] = field(default_factory=list["PatchOp"])
    accepted_atoms: list[str] = field(default_factory=list[str])
    rejected_atoms: list[str] = field(default_factory=list[str])
    created_molecules: list[str] = field(default_factory=list[str])
    superseded_atoms: list[str] = field(default_factory=list[str])


def check_decisions(
    atoms: Sequence[AtomRecommendation],
    atom_decisions: Mapping[str, Decision],
) -> None:
    """Reject decisions that cannot be applied, before anything is mutated."""

    by_temp_id = {atom.temp_id: atom for atom in atoms}
    for temp_id, decision in atom_decisions.items():
        atom = by_temp_id.get(temp_id)
        if atom is None:
            continue
        if isinstance(decision, Approve) and not atom.observable_outcomes:
            raise ValidationError(
                f"Atom recommendation {temp_id} has no observable outcomes and cannot be accepted"
            )


def apply_decisions(
    run: ReconciliationRun,
    *,
    atoms: Sequence[AtomRecommendation],
    molecules: Sequence[MoleculeRecommendation],
    test_records: Sequence[TestRecord],
    atom_decisions: Mapping[str, Decision],
    molecule_decisions: Mapping[str, Decision],
    repositories: LedgerRepositories,
    at: datetime,
) -> ApplyResult:
    """Apply decisions for pending recommendations of ``run``.

    Accepted atoms are committed to the ledger with the next ``IA-`` id. A
    reprocessed test that was linked to an atom before supersedes that atom
    with the new one. Molecules only keep members that were accepted and are
    rejected when fewer than two remain.
    """

    check_decisions(atoms, atom_decisions)
    result = ApplyResult()
    records: dict[EvidenceKey, TestRecord] = {record.key: record for record in test_records}
    relinked: set[EvidenceKey] = set()
    applied_keys: list[str] = []

    for recommendation in atoms:
        decision = atom_decisions.get(recommendation.temp_id)
        if decision is None or not recommendation.is_pending:
            continue
        applied_keys.append(AtomDecision(recommendation.temp_id, decision).ledger_key)
        if not isinstance(decision, Approve):
            recommendation.reject(reason=decision.reason, at=at)
            result.rejected_atoms.append(recommendation.temp_id)
            continue

        atom_id = format_atom_id(repositories.atoms.next_sequence())
        source = recommendation.source_test
        repositories.atoms.add(
            Atom(
                atom_id=atom_id,
                description=recommendation.description,
                category=recommendation.category,
                source_test=source,
                observable_outcomes=list(recommendation.observable_outcomes),
                source_run_id=run.run_id,
            )
        )
        recommendation.accept(atom_id=atom_id, at=at)
        result.accepted_atoms.append(atom_id)
        result.ops.append(
            CreateAtomOp(
                temp_id=recommendation.temp_id,
                description=recommendation.description,
                category=recommendation.category,
                confidence=recommendation.confidence,
                file_path=source.file_path,
                test_name=source.test_name,
                line_number=source.line_number,
                observable_outcomes=tuple(recommendation.observable_outcomes),
                atom_id=atom_id,
            )
        )
        result.ops.append(
            AttachTestToAtomOp(
                atom_temp_id=recommendation.temp_id,
                file_path=source.file_path,
                test_name=source.test_name,
                line_number=source.line_number,
            )
        )

        record = records.get(source.key)
        if record is None or source.key in relinked:
            continue
        relinked.add(source.key)
        previous = record.linked_atom_id
        if record.is_delta_change and previous and not record.had_atom_annotation:
            superseded = repositories.atoms.get(previous)
            if superseded is not None and superseded.is_active:
                superseded.supersede(by=atom_id, at=at)
                result.superseded_atoms.append(previous)
                result.ops.append(
                    MarkAtomSupersededOp(
                        atom_id=previous,
                        superseded_by_temp_id=recommendation.temp_id,
                        reason=f"Test {source} changed since {previous} was accepted",
                    )
                )
                log.info("Run %s: %s supersedes %s", run.run_id, atom_id, previous)
        record.linked_atom_id = atom_id
        record.atom_recommendation_id = recommendation.id

    _close_test_records(atoms, records, at=at)

    accepted_ids = {
        atom.temp_id: atom.atom_id
        for atom in atoms
        if atom.status is RecommendationStatus.ACCEPTED and atom.atom_id
    }
    for molecule in molecules:
        decision = molecule_decisions.get(molecule.temp_id)
        if decision is None or not molecule.is_pending:
            continue
        applied_keys.append(MoleculeDecision(molecule.temp_id, decision).ledger_key)
        members = [temp_id for temp_id in molecule.atom_temp_ids if temp_id in accepted_ids]
        if not isinstance(decision, Approve):
            molecule.reject(reason=decision.reason, at=at)
            continue
        if len(members) < 2:
            molecule.reject(reason="Fewer than two member atoms were accepted", at=at)
            continue
        molecule_id = format_molecule_id(repositories.molecules.next_sequence())
        repositories.molecules.add(
            Molecule(
                molecule_id=molecule_id,
                name=molecule.name,
                description=molecule.description,
                atom_ids=[accepted_ids[temp_id] for temp_id in members],
                source_run_id=run.run_id,
            )
        )
        molecule.accept(molecule_id=molecule_id, at=at)
        result.created_molecules.append(molecule_id)
        result.ops.append(
            CreateMoleculeOp(
                temp_id=molecule.temp_id,
                name=molecule.name,
                description=molecule.description,
                atom_temp_ids=tuple(members),
                molecule_id=molecule_id,
            )
        )

    problems = validate_patch([*run.patch_ops, *result.ops])
    if problems:
        raise ValidationError("Patch integrity check failed: " + "; ".join(problems))

    run.append_patch_ops(result.ops)
    run.record_applied(applied_keys)
    run.update_summary(
        accepted_atoms_count=sum(
            1 for atom in atoms if atom.status is RecommendationStatus.ACCEPTED
        ),
        rejected_atoms_count=sum(
            1 for atom in atoms if atom.status is RecommendationStatus.REJECTED
        ),
    )
    return result


def _close_test_records(
    atoms: Sequence[AtomRecommendation],
    records: Mapping[EvidenceKey, TestRecord],
    *,
    at: datetime,
) -> None:
    by_test: dict[EvidenceKey, list[AtomRecommendation]] = {}
    for atom in atoms:
        by_test.setdefault(atom.source_test.key, []).append(atom)

    for key, recommendations in by_test.items():
        record = records.get(key)
        if record is None or record.is_closed:
            continue
        statuses = {recommendation.status for recommendation in recommendations}
        if RecommendationStatus.ACCEPTED in statuses:
            record.close(TestRecordStatus.ACCEPTED, at=at)
        elif statuses == {RecommendationStatus.REJECTED}:
            reason = next(
                (r.rejection_reason for r in recommendations if r.rejection_reason), None
            )
            record.close(TestRecordStatus.REJECTED, at=at, reason=reason)
