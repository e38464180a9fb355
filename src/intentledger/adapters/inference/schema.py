"""Wire schema of the HTTP inference service."""

from __future__ import annotations

import logging
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

log = logging.getLogger(__name__)


class InferenceBaseModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)
    _logged_extra_keys: ClassVar[set[str]] = set()

    def model_post_init(self, _context: object, /) -> None:
        extras = self.__pydantic_extra__
        if not extras:
            return
        new_keys = set(extras).difference(self._logged_extra_keys)
        if not new_keys:
            return
        self._logged_extra_keys.update(new_keys)
        log.warning(
            "Inference %s: unmodeled keys: %s",
            type(self).__name__,
            ", ".join(sorted(new_keys)),
        )


class EvidencePayload(InferenceBaseModel):
    evidence_type: str = Field(alias="type")
    file_path: str = Field(alias="filePath")
    name: str
    line_number: int | None = Field(default=None, alias="lineNumber")
    code: str = ""


class InferencePayload(InferenceBaseModel):
    run_id: str = Field(alias="runId")
    commit_hash: str | None = Field(default=None, alias="commitHash")
    test: EvidencePayload
    related: list[EvidencePayload] = Field(default_factory=list[EvidencePayload])


class InferredAtom(InferenceBaseModel):
    description: str
    category: str
    source_file: str = Field(alias="sourceFile")
    source_test: str = Field(alias="sourceTest")
    line_number: int | None = Field(default=None, alias="lineNumber")
    confidence: float | None = None
    reasoning: str = ""
    observable_outcomes: list[str] = Field(default_factory=list[str], alias="observableOutcomes")
    related_docs: list[str] = Field(default_factory=list[str], alias="relatedDocs")
    ambiguity_reasons: list[str] = Field(default_factory=list[str], alias="ambiguityReasons")
    ref: str | None = None


class InferredMolecule(InferenceBaseModel):
    name: str
    description: str
    atom_refs: list[str] = Field(alias="atomRefs")
    confidence: float | None = None
    reasoning: str = ""


class InferenceResponse(InferenceBaseModel):
    atoms: list[InferredAtom] = Field(default_factory=list[InferredAtom])
    molecules: list[InferredMolecule] = Field(default_factory=list[InferredMolecule])
    tokens_used: int = Field(default=0, alias="tokensUsed")
    reasoning: str | None = None
