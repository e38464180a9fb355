"""Schema of the JSON evidence manifest written by the repository analyser."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from intentledger.domain.model import EvidenceType


class ManifestModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class ManifestItem(ManifestModel):
    evidence_type: EvidenceType = Field(alias="type")
    file_path: str = Field(alias="filePath", min_length=1)
    name: str = Field(min_length=1)
    line_number: int | None = Field(default=None, alias="lineNumber")
    code: str = ""
    base_confidence: float | None = Field(default=None, alias="baseConfidence")
    linked_atom_id: str | None = Field(default=None, alias="linkedAtomId")


class EvidenceManifest(ManifestModel):
    commit_hash: str | None = Field(default=None, alias="commitHash")
    items: list[ManifestItem] = Field(default_factory=list[ManifestItem])
