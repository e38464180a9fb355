from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from intentledger.domain.conflicts import ConflictDetector, ConflictService
from intentledger.domain.errors import InvalidStateError, NotFoundError, ValidationError
from intentledger.domain.model import (
    AtomStatus,
    ConflictStatus,
    ConflictType,
    ResolutionAction,
    ReconciliationRun,
    RunMode,
    TestRecord,
    TestRecordStatus,
    utcnow,
)
from tests.helpers.ledger import make_atom, seed_atoms

if TYPE_CHECKING:
    from collections.abc import Callable

    from intentledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork


@pytest.fixture
def service(sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork]) -> ConflictService:
    seed_atoms(
        sqlite_unit_of_work,
        make_atom("IA-001", "Invoice total is shown", test_name="shows total"),
        make_atom("IA-002", "Invoice total is displayed", test_name="shows total"),
        make_atom("IA-003", "Guests cannot view invoices"),
    )
    return ConflictService(sqlite_unit_of_work)


def test_create_opens_a_conflict(service: ConflictService) -> None:
    record = service.create(
        ConflictType.SAME_TEST, "IA-001", "IA-002", "Both cite shows total", similarity_score=71.6
    )

    stored = service.get(record.id)
    assert stored.status is ConflictStatus.OPEN
    assert stored.similarity_score == 72
    assert stored.description == "Both cite shows total"


def test_create_is_idempotent_for_either_order(service: ConflictService) -> None:
    first = service.create("same_test", "IA-001", "IA-002", "first")
    second = service.create("same_test", "IA-002", "IA-001", "second")

    assert second.id == first.id
    assert len(service.find_all()) == 1


def test_a_different_type_is_a_different_conflict(service: ConflictService) -> None:
    service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "same test")
    service.create(ConflictType.SEMANTIC_OVERLAP, "IA-001", "IA-002", "overlap")

    assert len(service.find_all()) == 2
    assert len(service.find_all(conflict_type="semantic_overlap")) == 1


def test_create_validates_atoms(service: ConflictService) -> None:
    with pytest.raises(ValidationError):
        service.create(ConflictType.SAME_TEST, "IA-001", "IA-001", "self")
    with pytest.raises(NotFoundError):
        service.create(ConflictType.SAME_TEST, "IA-001", "IA-404", "missing")
    with pytest.raises(ValidationError):
        service.create("duplicate", "IA-001", "IA-002", "unknown type")


def test_supersede_resolution_retires_the_losing_atom(
    service: ConflictService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    record = service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "Both cite shows total")

    resolved = service.resolve(
        record.id, ResolutionAction.SUPERSEDE_A, "alice", reason="IA-002 is clearer"
    )

    assert resolved.status is ConflictStatus.RESOLVED
    assert resolved.resolution is not None
    assert resolved.resolution.action is ResolutionAction.SUPERSEDE_A
    assert resolved.resolution.resolved_by == "alice"
    assert resolved.resolved_at == resolved.resolution.resolved_at
    with sqlite_unit_of_work() as uow:
        loser = uow.repositories.atoms.get("IA-001")
        winner = uow.repositories.atoms.get("IA-002")
    assert loser is not None
    assert winner is not None
    assert loser.status is AtomStatus.SUPERSEDED
    assert loser.superseded_by == "IA-002"
    assert winner.is_active


def test_reject_resolution_leaves_atoms_untouched(
    service: ConflictService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    record = service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "Both cite shows total")

    service.resolve(record.id, "reject_b", "bob", clarification_artifact_id="CLAR-7")

    stored = service.get(record.id)
    assert stored.resolution is not None
    assert stored.resolution.clarification_artifact_id == "CLAR-7"
    with sqlite_unit_of_work() as uow:
        assert len(uow.repositories.atoms.list_active()) == 3


def test_only_open_conflicts_can_be_resolved_or_escalated(service: ConflictService) -> None:
    record = service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "Both cite shows total")
    service.escalate(record.id)

    with pytest.raises(InvalidStateError):
        service.resolve(record.id, ResolutionAction.SPLIT_TEST, "carol")
    with pytest.raises(InvalidStateError):
        service.escalate(record.id)


def test_resolve_needs_a_resolver(service: ConflictService) -> None:
    record = service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "Both cite shows total")

    with pytest.raises(ValidationError):
        service.resolve(record.id, ResolutionAction.SPLIT_TEST, "  ")


def test_resolving_frees_the_pair_for_a_new_conflict(service: ConflictService) -> None:
    first = service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "first")
    service.resolve(first.id, ResolutionAction.REJECT_A, "dave")

    second = service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "again")

    assert second.id != first.id


def test_unknown_conflicts_are_not_found(service: ConflictService) -> None:
    with pytest.raises(NotFoundError):
        service.get(uuid4())


def test_find_all_filters(service: ConflictService) -> None:
    same = service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "same")
    other = service.create(ConflictType.CONTRADICTION, "IA-001", "IA-003", "contradiction")
    service.escalate(other.id)

    assert [r.id for r in service.find_all(status=ConflictStatus.OPEN)] == [same.id]
    assert [r.id for r in service.find_all(atom_id="IA-003")] == [other.id]
    assert [r.id for r in service.find_all(atom_id="IA-001")] == [same.id, other.id]


def test_metrics_aggregate_the_store(service: ConflictService) -> None:
    first = service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "same")
    second = service.create(ConflictType.CONTRADICTION, "IA-001", "IA-003", "contradiction")
    service.create(ConflictType.SEMANTIC_OVERLAP, "IA-002", "IA-003", "overlap")
    service.resolve(first.id, ResolutionAction.CLARIFY, "erin")
    service.escalate(second.id)

    metrics = service.get_metrics()

    assert (metrics.total, metrics.open, metrics.resolved, metrics.escalated) == (3, 1, 1, 1)
    assert metrics.by_type[ConflictType.SAME_TEST] == 1
    assert metrics.by_type[ConflictType.CROSS_BOUNDARY] == 0


def test_detector_scan_is_idempotent(
    service: ConflictService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    detector = ConflictDetector(sqlite_unit_of_work, service)

    first = detector.scan()
    second = detector.scan()

    assert [(r.conflict_type, r.atom_id_a, r.atom_id_b) for r in first] == [
        (ConflictType.SAME_TEST, "IA-001", "IA-002")
    ]
    assert [r.id for r in second] == [r.id for r in first]
    assert len(service.find_all()) == 1
    assert first[0].test_record_id is None


def test_detector_links_same_test_conflicts_to_the_closing_record(
    service: ConflictService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    run = ReconciliationRun(root_directory="/repo", mode=RunMode.FULL_SCAN)
    record = TestRecord(
        run_id=run.run_id,
        file_path="src/modules/billing/invoice.spec.ts",
        test_name="shows total",
        content_hash="hash-shows-total",
    )
    record.close(TestRecordStatus.ACCEPTED, at=utcnow())
    with sqlite_unit_of_work() as uow:
        uow.repositories.runs.add(run)
        uow.repositories.test_records.add(record)
        uow.commit()

    found = ConflictDetector(sqlite_unit_of_work, service).scan()

    assert [r.conflict_type for r in found] == [ConflictType.SAME_TEST]
    assert found[0].test_record_id == record.id
    assert service.get(found[0].id).test_record_id == record.id


def test_detector_skips_superseded_atoms(
    service: ConflictService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    record = service.create(ConflictType.SAME_TEST, "IA-001", "IA-002", "Both cite shows total")
    service.resolve(record.id, ResolutionAction.SUPERSEDE_B, "frank")

    found = ConflictDetector(sqlite_unit_of_work, service).scan()

    assert found == []
