"""Port for the external evidence producer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from intentledger.domain.model import EvidenceInventory


@runtime_checkable
class EvidenceInventoryProvider(Protocol):
    """Return the evidence inventory of ``root_directory`` at ``commit_hash``."""

    def __call__(
        self,
        root_directory: str,
        *,
        commit_hash: str | None = None,
    ) -> EvidenceInventory: ...
