"""Translate between domain inference requests and the service wire schema."""

from __future__ import annotations

from typing import TYPE_CHECKING

from intentledger.domain.ports.inference import AtomCandidate, InferenceResult, MoleculeCandidate

from .schema import EvidencePayload, InferencePayload

if TYPE_CHECKING:
    from intentledger.domain.model import EvidenceItem
    from intentledger.domain.ports.inference import InferenceRequest

    from .schema import InferenceResponse, InferredAtom, InferredMolecule


def _evidence_payload(item: EvidenceItem) -> EvidencePayload:
    return EvidencePayload(
        evidence_type=item.evidence_type.value,
        file_path=item.file_path,
        name=item.name,
        line_number=item.line_number,
        code=item.code,
    )


def build_payload(request: InferenceRequest) -> InferencePayload:
    return InferencePayload(
        run_id=request.run_id,
        commit_hash=request.commit_hash,
        test=_evidence_payload(request.test),
        related=[_evidence_payload(item) for item in request.related],
    )


def _atom_candidate(atom: InferredAtom) -> AtomCandidate:
    return AtomCandidate(
        description=atom.description,
        category=atom.category,
        source_file=atom.source_file,
        source_test=atom.source_test,
        line_number=atom.line_number,
        confidence=atom.confidence,
        reasoning=atom.reasoning,
        observable_outcomes=tuple(atom.observable_outcomes),
        related_docs=tuple(atom.related_docs),
        ambiguity_reasons=tuple(atom.ambiguity_reasons),
        ref=atom.ref,
    )


def _molecule_candidate(molecule: InferredMolecule) -> MoleculeCandidate:
    return MoleculeCandidate(
        name=molecule.name,
        description=molecule.description,
        atom_refs=tuple(molecule.atom_refs),
        confidence=molecule.confidence,
        reasoning=molecule.reasoning,
    )


def translate_response(response: InferenceResponse) -> InferenceResult:
    return InferenceResult(
        atoms=tuple(_atom_candidate(atom) for atom in response.atoms),
        molecules=tuple(_molecule_candidate(molecule) for molecule in response.molecules),
        tokens_used=response.tokens_used,
        reasoning=response.reasoning,
    )
