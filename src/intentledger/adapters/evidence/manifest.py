"""Evidence provider reading a JSON manifest from disk."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from pathlib import Path
from typing import Final

from pydantic import ValidationError

from intentledger.domain.model import EvidenceInventory, EvidenceItem

from .schema import EvidenceManifest, ManifestItem

log = getLogger(__name__)

DEFAULT_MANIFEST_NAME: Final[str] = ".intentledger/evidence.json"


class EvidenceManifestError(RuntimeError):
    """Raised when the evidence manifest is missing, malformed, or for another commit."""


def _item(entry: ManifestItem) -> EvidenceItem:
    return EvidenceItem(
        evidence_type=entry.evidence_type,
        file_path=entry.file_path,
        name=entry.name,
        line_number=entry.line_number,
        code=entry.code,
        base_confidence=entry.base_confidence,
        linked_atom_id=entry.linked_atom_id,
    )


def load_manifest(path: Path) -> EvidenceManifest:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise EvidenceManifestError(f"Cannot read evidence manifest {path}: {exc}") from exc
    try:
        return EvidenceManifest.model_validate_json(raw)
    except ValidationError as exc:
        raise EvidenceManifestError(f"Malformed evidence manifest {path}: {exc}") from exc


@dataclass(slots=True)
class JsonManifestEvidenceProvider:
    """Serve the inventory from a manifest; relative paths resolve against the root."""

    manifest_path: Path = Path(DEFAULT_MANIFEST_NAME)

    def resolve(self, root_directory: str) -> Path:
        if self.manifest_path.is_absolute():
            return self.manifest_path
        return Path(root_directory) / self.manifest_path

    def __call__(
        self,
        root_directory: str,
        *,
        commit_hash: str | None = None,
    ) -> EvidenceInventory:
        path = self.resolve(root_directory)
        manifest = load_manifest(path)
        if (
            commit_hash is not None
            and manifest.commit_hash is not None
            and manifest.commit_hash != commit_hash
        ):
            raise EvidenceManifestError(
                f"Manifest {path} describes commit {manifest.commit_hash}, not {commit_hash}"
            )

        seen: set[tuple[str, str]] = set()
        items: list[EvidenceItem] = []
        for entry in manifest.items:
            item = _item(entry)
            if item.key in seen:
                log.warning("Duplicate evidence %s::%s in %s ignored", *item.key, path)
                continue
            seen.add(item.key)
            items.append(item)

        log.info("Loaded %s evidence items from %s", len(items), path)
        return EvidenceInventory(
            commit_hash=manifest.commit_hash or commit_hash,
            items=tuple(items),
        )
