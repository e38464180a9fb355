"""Committed atoms and molecules (the ledger itself)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .base import Entity
from .enums import AtomStatus

if TYPE_CHECKING:
    from datetime import datetime

    from .recommendations import SourceTestRef

ATOM_ID_PREFIX = "IA-"
MOLECULE_ID_PREFIX = "MOL-"


def format_atom_id(sequence: int) -> str:
    return f"{ATOM_ID_PREFIX}{sequence:03d}"


def format_molecule_id(sequence: int) -> str:
    return f"{MOLECULE_ID_PREFIX}{sequence:03d}"


def parse_sequence(identifier: str, prefix: str) -> int | None:
    if not identifier.startswith(prefix):
        return None
    suffix = identifier[len(prefix) :]
    return int(suffix) if suffix.isdigit() else None


@dataclass(eq=False, kw_only=True)
class Atom(Entity):
    atom_id: str
    description: str
    category: str
    source_test: SourceTestRef
    status: AtomStatus = AtomStatus.COMMITTED
    observable_outcomes: list[str] = field(default_factory=list[str])
    source_run_id: str | None = None
    superseded_by: str | None = None
    superseded_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is not AtomStatus.SUPERSEDED

    def supersede(self, *, by: str | None, at: datetime) -> None:
        self.status = AtomStatus.SUPERSEDED
        self.superseded_by = by
        self.superseded_at = at


@dataclass(eq=False, kw_only=True)
class Molecule(Entity):
    molecule_id: str
    name: str
    description: str
    atom_ids: list[str] = field(default_factory=list[str])
    source_run_id: str | None = None
