"""Repository implementations backed by SQLAlchemy sessions.

Mappers carry no ``relationship()`` configuration, so ``add`` flushes straight
away to keep inserts in foreign-key order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import and_, or_, select

from intentledger.adapters.sqlalchemy.mappings import (
    atom_recommendation_table,
    atom_table,
    conflict_record_table,
    molecule_recommendation_table,
    molecule_table,
    reconciliation_run_table,
    test_record_table,
)
from intentledger.domain.model import (
    ATOM_ID_PREFIX,
    MOLECULE_ID_PREFIX,
    Atom,
    AtomRecommendation,
    AtomStatus,
    ConflictRecord,
    ConflictStatus,
    ConflictType,
    Molecule,
    MoleculeRecommendation,
    ReconciliationRun,
    RunStatus,
    TestRecord,
    TestRecordStatus,
    parse_sequence,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy import Table
    from sqlalchemy.orm import Session


class SqlAlchemyRepository[TEntity]:
    """Shared ``add`` for the ledger repositories."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: TEntity) -> None:
        self.session.add(entity)
        self.session.flush()


class SqlAlchemyReconciliationRunRepository(SqlAlchemyRepository[ReconciliationRun]):
    def get(self, run_id: str) -> ReconciliationRun | None:
        stmt = select(ReconciliationRun).where(reconciliation_run_table.c.run_id == run_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def current_status(self, run_id: str) -> RunStatus | None:
        stmt = select(reconciliation_run_table.c.status).where(
            reconciliation_run_table.c.run_id == run_id
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_by_status(self, statuses: Iterable[RunStatus]) -> list[ReconciliationRun]:
        stmt = (
            select(ReconciliationRun)
            .where(reconciliation_run_table.c.status.in_(list(statuses)))
            .order_by(reconciliation_run_table.c.created_at)
        )
        return list(self.session.execute(stmt).scalars())

    def latest_completed_at_commit(
        self, root_directory: str, commit_hash: str
    ) -> ReconciliationRun | None:
        stmt = (
            select(ReconciliationRun)
            .where(reconciliation_run_table.c.root_directory == root_directory)
            .where(reconciliation_run_table.c.current_commit_hash == commit_hash)
            .where(reconciliation_run_table.c.status == RunStatus.COMPLETED)
            .order_by(reconciliation_run_table.c.completed_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()


class SqlAlchemyTestRecordRepository(SqlAlchemyRepository[TestRecord]):
    __test__ = False

    def list_for_run(self, run_id: str) -> list[TestRecord]:
        stmt = (
            select(TestRecord)
            .where(test_record_table.c.run_id == run_id)
            .order_by(test_record_table.c.file_path, test_record_table.c.test_name)
        )
        return list(self.session.execute(stmt).scalars())

    def history(self, root_directory: str, *, completed_before: datetime) -> list[TestRecord]:
        stmt = (
            select(TestRecord)
            .join(
                reconciliation_run_table,
                reconciliation_run_table.c.run_id == test_record_table.c.run_id,
            )
            .where(reconciliation_run_table.c.root_directory == root_directory)
            .where(reconciliation_run_table.c.status == RunStatus.COMPLETED)
            .where(reconciliation_run_table.c.completed_at <= completed_before)
            .order_by(
                reconciliation_run_table.c.completed_at,
                test_record_table.c.created_at,
            )
        )
        return list(self.session.execute(stmt).scalars())

    def latest_closed_for_test(self, file_path: str, test_name: str) -> TestRecord | None:
        stmt = (
            select(TestRecord)
            .where(test_record_table.c.file_path == file_path)
            .where(test_record_table.c.test_name == test_name)
            .where(
                test_record_table.c.status.in_(
                    [TestRecordStatus.ACCEPTED, TestRecordStatus.REJECTED]
                )
            )
            .order_by(
                test_record_table.c.resolved_at.desc(),
                test_record_table.c.created_at.desc(),
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()


class SqlAlchemyAtomRecommendationRepository(SqlAlchemyRepository[AtomRecommendation]):
    def list_for_run(self, run_id: str) -> list[AtomRecommendation]:
        stmt = (
            select(AtomRecommendation)
            .where(atom_recommendation_table.c.run_id == run_id)
            .order_by(atom_recommendation_table.c.temp_id)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyMoleculeRecommendationRepository(SqlAlchemyRepository[MoleculeRecommendation]):
    def list_for_run(self, run_id: str) -> list[MoleculeRecommendation]:
        stmt = (
            select(MoleculeRecommendation)
            .where(molecule_recommendation_table.c.run_id == run_id)
            .order_by(molecule_recommendation_table.c.temp_id)
        )
        return list(self.session.execute(stmt).scalars())


def _next_sequence(session: Session, table: Table, column: str, prefix: str) -> int:
    identifiers = session.execute(select(table.c[column])).scalars()
    sequences = [parse_sequence(identifier, prefix) for identifier in identifiers]
    return max((sequence for sequence in sequences if sequence is not None), default=0) + 1


class SqlAlchemyAtomRepository(SqlAlchemyRepository[Atom]):
    def get(self, atom_id: str) -> Atom | None:
        stmt = select(Atom).where(atom_table.c.atom_id == atom_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def list_active(self) -> list[Atom]:
        stmt = (
            select(Atom)
            .where(atom_table.c.status != AtomStatus.SUPERSEDED)
            .order_by(atom_table.c.atom_id)
        )
        return list(self.session.execute(stmt).scalars())

    def next_sequence(self) -> int:
        return _next_sequence(self.session, atom_table, "atom_id", ATOM_ID_PREFIX)


class SqlAlchemyMoleculeRepository(SqlAlchemyRepository[Molecule]):
    def get(self, molecule_id: str) -> Molecule | None:
        stmt = select(Molecule).where(molecule_table.c.molecule_id == molecule_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def next_sequence(self) -> int:
        return _next_sequence(self.session, molecule_table, "molecule_id", MOLECULE_ID_PREFIX)


class SqlAlchemyConflictRepository(SqlAlchemyRepository[ConflictRecord]):
    def get(self, conflict_id: UUID) -> ConflictRecord | None:
        return self.session.get(ConflictRecord, conflict_id)

    def find_all(
        self,
        *,
        status: ConflictStatus | None = None,
        conflict_type: ConflictType | None = None,
        atom_id: str | None = None,
    ) -> list[ConflictRecord]:
        table = conflict_record_table
        stmt = select(ConflictRecord).order_by(table.c.created_at)
        if status is not None:
            stmt = stmt.where(table.c.status == status)
        if conflict_type is not None:
            stmt = stmt.where(table.c.conflict_type == conflict_type)
        if atom_id is not None:
            stmt = stmt.where(or_(table.c.atom_id_a == atom_id, table.c.atom_id_b == atom_id))
        return list(self.session.execute(stmt).scalars())

    def find_open_between(
        self, atom_id_a: str, atom_id_b: str, conflict_type: ConflictType
    ) -> ConflictRecord | None:
        table = conflict_record_table
        stmt = (
            select(ConflictRecord)
            .where(table.c.status == ConflictStatus.OPEN)
            .where(table.c.conflict_type == conflict_type)
            .where(
                or_(
                    and_(table.c.atom_id_a == atom_id_a, table.c.atom_id_b == atom_id_b),
                    and_(table.c.atom_id_a == atom_id_b, table.c.atom_id_b == atom_id_a),
                )
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()
