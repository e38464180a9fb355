"""Inference stage: evidence in, grounded recommendation drafts out.

Tests are dispatched to the inference capability on a bounded worker pool.
Workers only talk to the capability; collecting results, budget checks and
grounding validation all happen on the calling thread. Candidates whose
source test is not in the evidence inventory are dropped and logged, never
repaired.
"""

from __future__ import annotations

import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Final

from intentledger.domain.errors import BudgetExceeded, GroundingViolation
from intentledger.domain.model import (
    AtomRecommendation,
    MoleculeRecommendation,
    SourceTestRef,
    normalize_confidence,
)
from intentledger.domain.ports.inference import InferenceRequest

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from intentledger.domain.model import EvidenceInventory, EvidenceItem, EvidenceKey
    from intentledger.domain.ports.inference import (
        AtomCandidate,
        InferenceCapability,
        InferenceResult,
    )

    from .budget import BudgetEnforcer

log = getLogger(__name__)

INFERENCE_STAGE: Final[str] = "inference"
DEFAULT_MAX_WORKERS: Final[int] = 4


def atom_temp_id(index: int) -> str:
    return f"atom-{index:03d}"


def molecule_temp_id(index: int) -> str:
    return f"molecule-{index:03d}"


@dataclass(slots=True)
class InferenceOutcome:
    atoms: list[AtomRecommendation] = field(default_factory=list[AtomRecommendation])
    molecules: list[MoleculeRecommendation] = field(default_factory=list[MoleculeRecommendation])
    analyzed: list[EvidenceItem] = field(default_factory=list["EvidenceItem"])
    failed: list[EvidenceItem] = field(default_factory=list["EvidenceItem"])
    deferred: list[EvidenceItem] = field(default_factory=list["EvidenceItem"])
    errors: list[str] = field(default_factory=list[str])
    grounding_violations: int = 0
    budget_exceeded: BudgetExceeded | None = None
    cancelled: bool = False


@dataclass(slots=True)
class _CallResult:
    result: InferenceResult
    duration_ms: int


@dataclass(slots=True)
class InferenceStage:
    """Run inference for the selected tests of one run."""

    capability: InferenceCapability
    max_workers: int = DEFAULT_MAX_WORKERS

    def __call__(
        self,
        tests: Sequence[EvidenceItem],
        *,
        run_id: str,
        inventory: EvidenceInventory,
        enforcer: BudgetEnforcer,
        is_cancelled: Callable[[], bool] = lambda: False,
        first_atom_index: int = 1,
        first_molecule_index: int = 1,
    ) -> InferenceOutcome:
        outcome = InferenceOutcome()
        results: dict[EvidenceKey, InferenceResult] = {}
        pending = deque(tests)
        in_flight: dict[Future[_CallResult], EvidenceItem] = {}
        stop = False

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix=f"infer-{run_id}"
        ) as pool:
            while pending or in_flight:
                while not stop and pending and len(in_flight) < self.max_workers:
                    if not enforcer.reserve_call():
                        log.info(
                            "Run %s: budget spent, deferring %s remaining tests",
                            run_id,
                            len(pending),
                        )
                        stop = True
                        break
                    test = pending.popleft()
                    request = InferenceRequest(
                        run_id=run_id,
                        test=test,
                        related=inventory.docs_for(test),
                        commit_hash=inventory.commit_hash,
                    )
                    in_flight[pool.submit(self._infer, request)] = test

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    test = in_flight.pop(future)
                    try:
                        call = future.result()
                    except Exception as exc:  # noqa: BLE001
                        enforcer.release_call()
                        log.warning(
                            "Run %s: inference failed for %s::%s",
                            run_id,
                            test.file_path,
                            test.name,
                            exc_info=True,
                        )
                        outcome.failed.append(test)
                        outcome.errors.append(
                            f"Inference failed for {test.file_path}::{test.name}: {exc}"
                        )
                        continue
                    check = enforcer.record(
                        INFERENCE_STAGE,
                        tokens=call.result.tokens_used,
                        duration_ms=call.duration_ms,
                    )
                    results[test.key] = call.result
                    if not check.within_2x and outcome.budget_exceeded is None:
                        outcome.budget_exceeded = BudgetExceeded(check.violations)
                        stop = True

                if is_cancelled():
                    log.warning("Run %s was marked failed; discarding inference results", run_id)
                    for future in in_flight:
                        future.cancel()
                    return InferenceOutcome(cancelled=True)

        outcome.deferred = list(pending)
        self._collect(
            tests,
            results,
            outcome=outcome,
            run_id=run_id,
            inventory=inventory,
            first_atom_index=first_atom_index,
            first_molecule_index=first_molecule_index,
        )
        return outcome

    def _infer(self, request: InferenceRequest) -> _CallResult:
        started = time.monotonic()
        result = self.capability(request)
        return _CallResult(result=result, duration_ms=int((time.monotonic() - started) * 1000))

    def _collect(
        self,
        tests: Sequence[EvidenceItem],
        results: dict[EvidenceKey, InferenceResult],
        *,
        outcome: InferenceOutcome,
        run_id: str,
        inventory: EvidenceInventory,
        first_atom_index: int,
        first_molecule_index: int,
    ) -> None:
        atom_index = first_atom_index
        molecule_index = first_molecule_index
        # test order, not completion order, so temp ids are stable
        for test in tests:
            result = results.get(test.key)
            if result is None:
                continue
            outcome.analyzed.append(test)
            temp_ids_by_ref: dict[str, str] = {}
            for candidate in result.atoms:
                try:
                    recommendation = _ground_candidate(
                        candidate,
                        run_id=run_id,
                        temp_id=atom_temp_id(atom_index),
                        inventory=inventory,
                        fallback_reasoning=result.reasoning,
                    )
                except GroundingViolation as exc:
                    log.warning("Run %s: %s", run_id, exc)
                    outcome.grounding_violations += 1
                    outcome.errors.append(str(exc))
                    continue
                except ValueError as exc:
                    outcome.errors.append(
                        f"Dropped candidate from {test.file_path}::{test.name}: {exc}"
                    )
                    continue
                atom_index += 1
                outcome.atoms.append(recommendation)
                if candidate.ref:
                    temp_ids_by_ref[candidate.ref] = recommendation.temp_id

            for molecule in result.molecules:
                members = [temp_ids_by_ref.get(ref) for ref in molecule.atom_refs]
                if len(members) < 2 or any(member is None for member in members):
                    outcome.errors.append(
                        f"Dropped molecule {molecule.name!r}: members missing from the run"
                    )
                    continue
                outcome.molecules.append(
                    MoleculeRecommendation(
                        run_id=run_id,
                        temp_id=molecule_temp_id(molecule_index),
                        name=molecule.name,
                        description=molecule.description,
                        atom_temp_ids=[member for member in members if member is not None],
                        confidence=normalize_confidence(molecule.confidence),
                        reasoning=molecule.reasoning,
                    )
                )
                molecule_index += 1


def _ground_candidate(
    candidate: AtomCandidate,
    *,
    run_id: str,
    temp_id: str,
    inventory: EvidenceInventory,
    fallback_reasoning: str | None,
) -> AtomRecommendation:
    if not inventory.contains_test(candidate.source_file, candidate.source_test):
        raise GroundingViolation(
            f"Candidate {candidate.description!r} cites "
            f"{candidate.source_file}::{candidate.source_test}, which is not in the inventory",
            file_path=candidate.source_file,
            test_name=candidate.source_test,
        )
    if not candidate.description.strip():
        raise ValueError("missing description")
    if not candidate.category.strip():
        raise ValueError("missing category")
    return AtomRecommendation(
        run_id=run_id,
        temp_id=temp_id,
        description=candidate.description.strip(),
        category=candidate.category.strip().lower(),
        confidence=normalize_confidence(candidate.confidence),
        reasoning=candidate.reasoning or fallback_reasoning or "",
        source_test=SourceTestRef(
            candidate.source_file, candidate.source_test, candidate.line_number
        ),
        observable_outcomes=[item for item in candidate.observable_outcomes if item.strip()],
        related_docs=list(candidate.related_docs),
        ambiguity_reasons=list(candidate.ambiguity_reasons),
    )
