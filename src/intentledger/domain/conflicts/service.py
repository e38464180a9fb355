"""Conflict lifecycle: create, resolve, escalate and aggregate."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from intentledger.domain.errors import (
    ConflictDuplicateError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from intentledger.domain.model import (
    ConflictRecord,
    ConflictResolution,
    ConflictStatus,
    ConflictType,
    ResolutionAction,
    clamp_score,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from uuid import UUID

    from intentledger.domain.ports import LedgerRepositories, LedgerUnitOfWork

log = getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class ConflictMetrics:
    total: int
    open: int
    resolved: int
    escalated: int
    by_type: dict[ConflictType, int]


def _coerce[TEnum: (ConflictStatus, ConflictType, ResolutionAction)](
    enum_type: type[TEnum], value: TEnum | str
) -> TEnum:
    try:
        return enum_type(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown {enum_type.__name__}: {value!r}") from exc


@dataclass(slots=True)
class ConflictService:
    unit_of_work_factory: Callable[[], LedgerUnitOfWork]
    clock: Callable[[], datetime] = utcnow

    def create(
        self,
        conflict_type: ConflictType | str,
        atom_id_a: str,
        atom_id_b: str,
        description: str,
        *,
        test_record_id: UUID | None = None,
        similarity_score: float | None = None,
    ) -> ConflictRecord:
        """Open a conflict, or return the open one already covering the pair.

        Uniqueness is over the unordered atom pair and the conflict type, so
        repeated detection is idempotent.
        """

        kind = _coerce(ConflictType, conflict_type)
        if atom_id_a == atom_id_b:
            raise ValidationError(f"An atom cannot conflict with itself: {atom_id_a}")
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            for atom_id in (atom_id_a, atom_id_b):
                if repositories.atoms.get(atom_id) is None:
                    raise NotFoundError(f"Atom {atom_id} does not exist")
            try:
                record = self._insert(
                    repositories,
                    ConflictRecord(
                        conflict_type=kind,
                        atom_id_a=atom_id_a,
                        atom_id_b=atom_id_b,
                        description=description,
                        test_record_id=test_record_id,
                        similarity_score=(
                            clamp_score(similarity_score)
                            if similarity_score is not None
                            else None
                        ),
                        created_at=self.clock(),
                    ),
                )
            except ConflictDuplicateError as exc:
                log.debug("%s", exc)
                existing = repositories.conflicts.get(exc.existing_id)
                if existing is None:
                    raise
                return existing
            uow.commit()
            log.info(
                "Opened %s conflict %s between %s and %s",
                kind,
                record.id,
                atom_id_a,
                atom_id_b,
            )
            return record

    @staticmethod
    def _insert(repositories: LedgerRepositories, record: ConflictRecord) -> ConflictRecord:
        existing = repositories.conflicts.find_open_between(
            record.atom_id_a, record.atom_id_b, record.conflict_type
        )
        if existing is not None:
            raise ConflictDuplicateError(
                f"Open {record.conflict_type} conflict already exists for "
                f"{record.atom_id_a} and {record.atom_id_b}",
                existing_id=existing.id,
            )
        repositories.conflicts.add(record)
        return record

    def resolve(
        self,
        conflict_id: UUID,
        action: ResolutionAction | str,
        resolved_by: str,
        *,
        reason: str | None = None,
        clarification_artifact_id: str | None = None,
    ) -> ConflictRecord:
        """Resolve an open conflict; supersede actions retire the losing atom."""

        resolution_action = _coerce(ResolutionAction, action)
        if not resolved_by.strip():
            raise ValidationError("A resolution needs the identity of the resolver")
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            record = self._require(repositories, conflict_id)
            if not record.is_open:
                raise InvalidStateError(f"Conflict {conflict_id} is {record.status}, not open")

            now = self.clock()
            match resolution_action:
                case ResolutionAction.SUPERSEDE_A:
                    self._supersede(repositories, record.atom_id_a, record.atom_id_b, at=now)
                case ResolutionAction.SUPERSEDE_B:
                    self._supersede(repositories, record.atom_id_b, record.atom_id_a, at=now)
                case _:
                    pass

            record.resolve(
                ConflictResolution(
                    action=resolution_action,
                    resolved_by=resolved_by,
                    resolved_at=now,
                    reason=reason,
                    clarification_artifact_id=clarification_artifact_id,
                )
            )
            uow.commit()
            log.info("Resolved conflict %s with %s", conflict_id, resolution_action)
            return record

    @staticmethod
    def _supersede(
        repositories: LedgerRepositories, loser: str, winner: str, *, at: datetime
    ) -> None:
        atom = repositories.atoms.get(loser)
        if atom is None:
            raise NotFoundError(f"Atom {loser} does not exist")
        if atom.is_active:
            atom.supersede(by=winner, at=at)

    def escalate(self, conflict_id: UUID) -> ConflictRecord:
        with self.unit_of_work_factory() as uow:
            record = self._require(uow.repositories, conflict_id)
            if not record.is_open:
                raise InvalidStateError(f"Conflict {conflict_id} is {record.status}, not open")
            record.escalate()
            uow.commit()
            log.info("Escalated conflict %s", conflict_id)
            return record

    def get(self, conflict_id: UUID) -> ConflictRecord:
        with self.unit_of_work_factory() as uow:
            return self._require(uow.repositories, conflict_id)

    def find_all(
        self,
        *,
        status: ConflictStatus | str | None = None,
        conflict_type: ConflictType | str | None = None,
        atom_id: str | None = None,
    ) -> list[ConflictRecord]:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.conflicts.find_all(
                status=_coerce(ConflictStatus, status) if status is not None else None,
                conflict_type=_coerce(ConflictType, conflict_type) if conflict_type else None,
                atom_id=atom_id,
            )

    def get_metrics(self) -> ConflictMetrics:
        """Aggregate over the conflict store; nothing is cached."""

        records = self.find_all()
        by_status = {status: 0 for status in ConflictStatus}
        by_type = {kind: 0 for kind in ConflictType}
        for record in records:
            by_status[record.status] += 1
            by_type[record.conflict_type] += 1
        return ConflictMetrics(
            total=len(records),
            open=by_status[ConflictStatus.OPEN],
            resolved=by_status[ConflictStatus.RESOLVED],
            escalated=by_status[ConflictStatus.ESCALATED],
            by_type=by_type,
        )

    @staticmethod
    def _require(repositories: LedgerRepositories, conflict_id: UUID) -> ConflictRecord:
        record = repositories.conflicts.get(conflict_id)
        if record is None:
            raise NotFoundError(f"Conflict {conflict_id} does not exist")
        return record
