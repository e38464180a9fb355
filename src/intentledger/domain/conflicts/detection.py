"""Scan committed atoms for the four conflict types.

``same_test``
    two atoms cite the same source test
``semantic_overlap``
    descriptions share most of their vocabulary (token Jaccard similarity,
    0-100, at or above the threshold)
``contradiction``
    same category, related descriptions, opposite negation polarity
``cross_boundary``
    overlapping atoms whose source tests live in different modules

Every conflict goes through ``ConflictService.create``, so a repeated scan
opens nothing new.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from itertools import combinations
from logging import getLogger
from typing import TYPE_CHECKING, Final

from intentledger.domain.model import ConflictType
from intentledger.domain.reconciliation.molecules import module_key

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from intentledger.domain.model import Atom, ConflictRecord
    from intentledger.domain.ports import LedgerUnitOfWork, TestRecordRepository

    from .service import ConflictService

log = getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD: Final[int] = 80
_TOKEN = re.compile(r"[a-z0-9]+")
_NEGATION = re.compile(r"\b(not|never|cannot|no|without)\b|n't\b", re.IGNORECASE)
_NEGATION_WORDS: Final[frozenset[str]] = frozenset(
    {"not", "never", "cannot", "no", "without", "t"}
)
_STOPWORDS: Final[frozenset[str]] = frozenset(
    {"a", "an", "the", "and", "or", "of", "to", "is", "be", "are", "in", "on", "for", "with"}
)


def tokens(text: str) -> frozenset[str]:
    return frozenset(
        token
        for token in _TOKEN.findall(text.lower())
        if token not in _STOPWORDS and token not in _NEGATION_WORDS
    )


def similarity(first: str, second: str) -> int:
    """Token Jaccard similarity of two descriptions as a 0-100 score."""

    left, right = tokens(first), tokens(second)
    if not left and not right:
        return 0
    return round(100 * len(left & right) / len(left | right))


def is_negated(text: str) -> bool:
    return _NEGATION.search(text) is not None


@dataclass(frozen=True, slots=True, kw_only=True)
class ConflictCandidate:
    conflict_type: ConflictType
    atom_id_a: str
    atom_id_b: str
    description: str
    similarity_score: int | None = None
    test_record_id: UUID | None = None


def candidates_for(
    first: Atom, second: Atom, *, threshold: int = DEFAULT_SIMILARITY_THRESHOLD
) -> list[ConflictCandidate]:
    """Every conflict type that applies to one pair of atoms."""

    found: list[ConflictCandidate] = []

    def add(kind: ConflictType, description: str, score: int | None = None) -> None:
        found.append(
            ConflictCandidate(
                conflict_type=kind,
                atom_id_a=first.atom_id,
                atom_id_b=second.atom_id,
                description=description,
                similarity_score=score,
            )
        )

    if first.source_test.key == second.source_test.key:
        add(
            ConflictType.SAME_TEST,
            f"{first.atom_id} and {second.atom_id} both cite {first.source_test}",
        )

    score = similarity(first.description, second.description)
    if (
        first.category == second.category
        and score >= threshold // 2
        and is_negated(first.description) != is_negated(second.description)
    ):
        add(
            ConflictType.CONTRADICTION,
            f"{first.atom_id} and {second.atom_id} describe related {first.category} "
            "behavior with opposite polarity",
            score,
        )
    if score >= threshold:
        first_module = module_key(first.source_test.file_path)
        second_module = module_key(second.source_test.file_path)
        if first_module != second_module:
            add(
                ConflictType.CROSS_BOUNDARY,
                f"{first.atom_id} ({first_module}) overlaps {second.atom_id} "
                f"({second_module}) across module boundaries",
                score,
            )
        else:
            add(
                ConflictType.SEMANTIC_OVERLAP,
                f"{first.atom_id} and {second.atom_id} are {score}% similar",
                score,
            )
    return found


def _with_test_record(
    candidate: ConflictCandidate, atom: Atom, test_records: TestRecordRepository
) -> ConflictCandidate:
    """Attach the closing record of the shared test to a same-test conflict."""

    if candidate.conflict_type is not ConflictType.SAME_TEST:
        return candidate
    record = test_records.latest_closed_for_test(*atom.source_test.key)
    if record is None:
        return candidate
    return replace(candidate, test_record_id=record.id)


@dataclass(slots=True)
class ConflictDetector:
    unit_of_work_factory: Callable[[], LedgerUnitOfWork]
    service: ConflictService
    threshold: int = DEFAULT_SIMILARITY_THRESHOLD

    def scan(self) -> list[ConflictRecord]:
        """Compare every pair of active atoms and open conflicts for each finding."""

        found: list[ConflictCandidate] = []
        with self.unit_of_work_factory() as uow:
            test_records = uow.repositories.test_records
            atoms = sorted(uow.repositories.atoms.list_active(), key=lambda atom: atom.atom_id)
            for first, second in combinations(atoms, 2):
                found.extend(
                    _with_test_record(candidate, first, test_records)
                    for candidate in candidates_for(first, second, threshold=self.threshold)
                )

        records = [
            self.service.create(
                candidate.conflict_type,
                candidate.atom_id_a,
                candidate.atom_id_b,
                candidate.description,
                test_record_id=candidate.test_record_id,
                similarity_score=candidate.similarity_score,
            )
            for candidate in found
        ]
        log.info("Conflict scan over %s atoms found %s conflicts", len(atoms), len(records))
        return records
