"""Closure/delta decisions: which tests must be (re-)analyzed.

A test record is closed once accepted or rejected; closure is permanent for
the content hash it was evaluated at. In delta mode closed, unchanged tests
are skipped entirely, so repeated runs scale with the diff rather than with
the repository.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from intentledger.domain.model import RunMode

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from intentledger.domain.model import EvidenceItem, EvidenceKey, TestRecord


class ClosureDecision(StrEnum):
    SKIP = "skip"
    REPROCESS = "reprocess"
    ANALYZE = "analyze"


@dataclass(frozen=True, slots=True, kw_only=True)
class PriorRecord:
    """Latest settled state of one test across the baseline chain."""

    file_path: str
    test_name: str
    content_hash: str
    linked_atom_id: str | None = None

    @property
    def key(self) -> EvidenceKey:
        return (self.file_path, self.test_name)


@dataclass(frozen=True, slots=True)
class ClosureIndex:
    closed: Mapping[EvidenceKey, PriorRecord] = field(default_factory=dict)
    annotated: Mapping[EvidenceKey, PriorRecord] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> ClosureIndex:
        return cls()


def build_closure_index(history: Iterable[TestRecord]) -> ClosureIndex:
    """Fold test-record history (oldest first) into the latest state per test.

    Records of a delta run that skipped a closed test do not reset closure:
    the latest *closed* record wins for the closure map, so closure carries
    through arbitrarily long chains of delta runs.
    """

    closed: dict[EvidenceKey, PriorRecord] = {}
    annotated: dict[EvidenceKey, PriorRecord] = {}
    for record in history:
        prior = PriorRecord(
            file_path=record.file_path,
            test_name=record.test_name,
            content_hash=record.content_hash,
            linked_atom_id=record.linked_atom_id,
        )
        if record.is_closed:
            closed[record.key] = prior
        if record.had_atom_annotation:
            annotated[record.key] = prior
    return ClosureIndex(closed=closed, annotated=annotated)


@dataclass(slots=True)
class ClosurePlan:
    decisions: dict[EvidenceKey, ClosureDecision] = field(default_factory=dict)
    tests: dict[EvidenceKey, EvidenceItem] = field(default_factory=dict)
    prior: dict[EvidenceKey, PriorRecord] = field(default_factory=dict)

    def _with(self, decision: ClosureDecision) -> list[EvidenceItem]:
        return [self.tests[key] for key, value in self.decisions.items() if value is decision]

    def to_analyze(self) -> list[EvidenceItem]:
        """Tests that go to inference, new ones and changed closed ones alike."""

        return [
            self.tests[key]
            for key, value in self.decisions.items()
            if value is not ClosureDecision.SKIP
        ]

    def skipped(self) -> list[EvidenceItem]:
        return self._with(ClosureDecision.SKIP)

    def reprocessed(self) -> list[EvidenceItem]:
        return self._with(ClosureDecision.REPROCESS)

    def decision_for(self, item: EvidenceItem) -> ClosureDecision:
        return self.decisions[item.key]


def plan_closure(
    tests: Iterable[EvidenceItem],
    *,
    mode: RunMode,
    index: ClosureIndex,
) -> ClosurePlan:
    """Decide skip/reprocess/analyze for every test.

    Full-scan mode ignores ``index`` and analyzes everything.
    """

    plan = ClosurePlan()
    for item in tests:
        plan.tests[item.key] = item
        prior = index.closed.get(item.key) if mode is RunMode.DELTA else None
        if prior is None:
            plan.decisions[item.key] = ClosureDecision.ANALYZE
            continue
        plan.prior[item.key] = prior
        if prior.content_hash == item.content_hash:
            plan.decisions[item.key] = ClosureDecision.SKIP
        else:
            plan.decisions[item.key] = ClosureDecision.REPROCESS
    return plan


def changed_annotated_tests(
    tests: Iterable[EvidenceItem],
    *,
    index: ClosureIndex,
) -> list[tuple[EvidenceItem, PriorRecord]]:
    """Annotated tests whose body changed since the baseline recorded them."""

    changed: list[tuple[EvidenceItem, PriorRecord]] = []
    for item in tests:
        prior = index.annotated.get(item.key)
        if prior is not None and prior.content_hash != item.content_hash:
            changed.append((item, prior))
    return changed
