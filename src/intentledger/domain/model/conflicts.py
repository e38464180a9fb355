"""Conflicts detected between committed atoms."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .base import Entity
from .enums import ConflictStatus, ConflictType, ResolutionAction

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID


@dataclass(frozen=True, slots=True, kw_only=True)
class ConflictResolution:
    action: ResolutionAction
    resolved_by: str
    resolved_at: datetime
    reason: str | None = None
    clarification_artifact_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat(),
            "reason": self.reason,
            "clarification_artifact_id": self.clarification_artifact_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConflictResolution:
        return cls(
            action=ResolutionAction(data["action"]),
            resolved_by=data["resolved_by"],
            resolved_at=datetime.fromisoformat(data["resolved_at"]),
            reason=data.get("reason"),
            clarification_artifact_id=data.get("clarification_artifact_id"),
        )


def pair_key(atom_id_a: str, atom_id_b: str, conflict_type: ConflictType) -> tuple[str, str, str]:
    """Order-independent identity of a conflict."""

    first, second = sorted((atom_id_a, atom_id_b))
    return (first, second, conflict_type.value)


@dataclass(eq=False, kw_only=True)
class ConflictRecord(Entity):
    conflict_type: ConflictType
    atom_id_a: str
    atom_id_b: str
    description: str
    test_record_id: UUID | None = None
    similarity_score: int | None = None
    status: ConflictStatus = ConflictStatus.OPEN
    resolution: ConflictResolution | None = None
    resolved_at: datetime | None = None

    @property
    def pair_key(self) -> tuple[str, str, str]:
        return pair_key(self.atom_id_a, self.atom_id_b, self.conflict_type)

    @property
    def is_open(self) -> bool:
        return self.status is ConflictStatus.OPEN

    def involves(self, atom_id: str) -> bool:
        return atom_id in (self.atom_id_a, self.atom_id_b)

    def resolve(self, resolution: ConflictResolution) -> None:
        self.status = ConflictStatus.RESOLVED
        self.resolution = resolution
        self.resolved_at = resolution.resolved_at

    def escalate(self) -> None:
        self.status = ConflictStatus.ESCALATED
