"""Ports for persisting runs, recommendations, the atom ledger and conflicts."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from intentledger.domain.model import (
    Atom,
    AtomRecommendation,
    ConflictRecord,
    Molecule,
    MoleculeRecommendation,
    ReconciliationRun,
    TestRecord,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from intentledger.domain.model import ConflictStatus, ConflictType, RunStatus


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class ReconciliationRunRepository(Repository[ReconciliationRun], Protocol):
    def get(self, run_id: str) -> ReconciliationRun | None: ...

    def current_status(self, run_id: str) -> RunStatus | None:
        """Read the committed status, bypassing any cached instance."""
        ...

    def list_by_status(self, statuses: Iterable[RunStatus]) -> list[ReconciliationRun]: ...

    def latest_completed_at_commit(
        self, root_directory: str, commit_hash: str
    ) -> ReconciliationRun | None: ...


@runtime_checkable
class TestRecordRepository(Repository[TestRecord], Protocol):
    def list_for_run(self, run_id: str) -> list[TestRecord]: ...

    def history(self, root_directory: str, *, completed_before: datetime) -> list[TestRecord]:
        """Records of completed runs over ``root_directory``, oldest first."""
        ...

    def latest_closed_for_test(self, file_path: str, test_name: str) -> TestRecord | None:
        """The most recently accepted or rejected record of one test, in any run."""
        ...


@runtime_checkable
class AtomRecommendationRepository(Repository[AtomRecommendation], Protocol):
    def list_for_run(self, run_id: str) -> list[AtomRecommendation]: ...


@runtime_checkable
class MoleculeRecommendationRepository(Repository[MoleculeRecommendation], Protocol):
    def list_for_run(self, run_id: str) -> list[MoleculeRecommendation]: ...


@runtime_checkable
class AtomRepository(Repository[Atom], Protocol):
    def get(self, atom_id: str) -> Atom | None: ...

    def list_active(self) -> list[Atom]: ...

    def next_sequence(self) -> int: ...


@runtime_checkable
class MoleculeRepository(Repository[Molecule], Protocol):
    def get(self, molecule_id: str) -> Molecule | None: ...

    def next_sequence(self) -> int: ...


@runtime_checkable
class ConflictRepository(Repository[ConflictRecord], Protocol):
    def get(self, conflict_id: UUID) -> ConflictRecord | None: ...

    def find_all(
        self,
        *,
        status: ConflictStatus | None = None,
        conflict_type: ConflictType | None = None,
        atom_id: str | None = None,
    ) -> list[ConflictRecord]: ...

    def find_open_between(
        self, atom_id_a: str, atom_id_b: str, conflict_type: ConflictType
    ) -> ConflictRecord | None:
        """Return the open conflict for the pair in either order, if any."""
        ...
