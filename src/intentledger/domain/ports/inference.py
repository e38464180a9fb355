"""Port for the external inference capability.

Given one test and its surrounding evidence, the capability proposes zero or
more candidate atoms (and optionally molecules grouping them). Candidates are
untrusted until the inference stage has checked them against the inventory.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from intentledger.domain.model import EvidenceItem


@dataclass(frozen=True, slots=True, kw_only=True)
class AtomCandidate:
    description: str
    category: str
    source_file: str
    source_test: str
    line_number: int | None = None
    confidence: float | None = None
    reasoning: str = ""
    observable_outcomes: tuple[str, ...] = ()
    related_docs: tuple[str, ...] = ()
    ambiguity_reasons: tuple[str, ...] = ()
    # local handle used by molecule candidates of the same result
    ref: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class MoleculeCandidate:
    name: str
    description: str
    atom_refs: tuple[str, ...]
    confidence: float | None = None
    reasoning: str = ""


@dataclass(frozen=True, slots=True, kw_only=True)
class InferenceRequest:
    run_id: str
    test: EvidenceItem
    related: tuple[EvidenceItem, ...] = ()
    commit_hash: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class InferenceResult:
    atoms: tuple[AtomCandidate, ...] = ()
    molecules: tuple[MoleculeCandidate, ...] = ()
    tokens_used: int = 0
    reasoning: str | None = None


@runtime_checkable
class InferenceCapability(Protocol):
    def __call__(self, request: InferenceRequest) -> InferenceResult: ...
