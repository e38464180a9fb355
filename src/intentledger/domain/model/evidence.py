"""Evidence inventory consumed by a reconciliation run.

The inventory is produced outside this package (static analysis of the
repository at one commit). Items are identified by ``(file_path, name)``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from .enums import EvidenceType

if TYPE_CHECKING:
    from collections.abc import Iterator

type EvidenceKey = tuple[str, str]


@dataclass(frozen=True, slots=True, kw_only=True)
class EvidenceItem:
    evidence_type: EvidenceType
    file_path: str
    name: str
    line_number: int | None = None
    code: str = ""
    base_confidence: float | None = None
    # set when the test already carries an ``@atom`` annotation
    linked_atom_id: str | None = None

    @property
    def key(self) -> EvidenceKey:
        return (self.file_path, self.name)

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.code.encode("utf-8")).hexdigest()

    @property
    def is_annotated(self) -> bool:
        return self.linked_atom_id is not None

    @property
    def directory(self) -> str:
        return str(PurePosixPath(self.file_path).parent)


@dataclass(frozen=True, slots=True, kw_only=True)
class EvidenceInventory:
    commit_hash: str | None
    items: tuple[EvidenceItem, ...] = ()
    _test_keys: frozenset[EvidenceKey] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        keys = frozenset(item.key for item in self.items if item.evidence_type is EvidenceType.TEST)
        object.__setattr__(self, "_test_keys", keys)

    def __iter__(self) -> Iterator[EvidenceItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def tests(self) -> tuple[EvidenceItem, ...]:
        return tuple(item for item in self.items if item.evidence_type is EvidenceType.TEST)

    def contains_test(self, file_path: str, test_name: str) -> bool:
        return (file_path, test_name) in self._test_keys

    def docs_for(self, item: EvidenceItem) -> tuple[EvidenceItem, ...]:
        """Documentation items that live next to ``item`` or one of its parents."""

        parents = {str(parent) for parent in PurePosixPath(item.file_path).parents}
        return tuple(
            doc
            for doc in self.items
            if doc.evidence_type is EvidenceType.DOCUMENTATION and doc.directory in parents
        )
