"""Review decisions as a tagged union."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal


class DecisionKind(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True, slots=True, kw_only=True)
class Approve:
    reason: str | None = None
    kind: Literal[DecisionKind.APPROVE] = DecisionKind.APPROVE


@dataclass(frozen=True, slots=True, kw_only=True)
class Reject:
    reason: str
    kind: Literal[DecisionKind.REJECT] = DecisionKind.REJECT

    def __post_init__(self) -> None:
        if not self.reason.strip():
            raise ValueError("A rejection needs a reason")


type Decision = Approve | Reject


@dataclass(frozen=True, slots=True)
class AtomDecision:
    temp_id: str
    decision: Decision

    @property
    def ledger_key(self) -> str:
        return f"atom:{self.temp_id}"


@dataclass(frozen=True, slots=True)
class MoleculeDecision:
    temp_id: str
    decision: Decision

    @property
    def ledger_key(self) -> str:
        return f"molecule:{self.temp_id}"
