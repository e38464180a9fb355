"""Evidence builders and an in-memory evidence provider for tests."""

from __future__ import annotations

from dataclasses import dataclass, field

from intentledger.domain.model import EvidenceInventory, EvidenceItem, EvidenceType

ROOT = "/repo"


def make_test_item(
    name: str,
    *,
    file_path: str = "src/modules/billing/invoice.spec.ts",
    code: str | None = None,
    line_number: int | None = 1,
    linked_atom_id: str | None = None,
) -> EvidenceItem:
    return EvidenceItem(
        evidence_type=EvidenceType.TEST,
        file_path=file_path,
        name=name,
        line_number=line_number,
        code=code if code is not None else f"it('{name}', () => {{ expect(run()).toBe(1) }})",
        linked_atom_id=linked_atom_id,
    )


def make_doc_item(file_path: str, name: str = "README") -> EvidenceItem:
    return EvidenceItem(
        evidence_type=EvidenceType.DOCUMENTATION,
        file_path=file_path,
        name=name,
        code="# Notes",
    )


def make_inventory(*items: EvidenceItem, commit_hash: str | None = "abc123") -> EvidenceInventory:
    return EvidenceInventory(commit_hash=commit_hash, items=tuple(items))


@dataclass
class FakeEvidenceProvider:
    """Serves a mutable list of items; each call snapshots it into an inventory."""

    items: list[EvidenceItem] = field(default_factory=list[EvidenceItem])
    commit_hash: str | None = "abc123"
    calls: list[tuple[str, str | None]] = field(default_factory=list[tuple[str, str | None]])

    def __call__(
        self,
        root_directory: str,
        *,
        commit_hash: str | None = None,
    ) -> EvidenceInventory:
        self.calls.append((root_directory, commit_hash))
        return EvidenceInventory(
            commit_hash=commit_hash or self.commit_hash,
            items=tuple(self.items),
        )

    def replace(self, item: EvidenceItem) -> None:
        self.items = [existing for existing in self.items if existing.key != item.key]
        self.items.append(item)
