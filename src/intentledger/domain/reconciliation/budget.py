"""Size-tiered budgets and the per-run budget enforcer.

Usage is classified against the tier budget after every inference call:

- within budget: nothing to do
- over budget but within twice the budget: soft violation, recorded as a warning
- over twice the budget: hard violation, the run fails with ``BudgetExceeded``

Violation strings always carry the observed/budget ratio, e.g.
``"Tokens: 110000 > 50000 (2.2x)"``.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Final

from intentledger.domain.errors import BudgetExceeded
from intentledger.domain.model import BudgetUsage

if TYPE_CHECKING:
    from collections.abc import Callable

log = getLogger(__name__)

SMALL_TIER_MAX_TESTS: Final[int] = 10


class BudgetTier(StrEnum):
    SMALL = "small"
    MEDIUM = "medium"


@dataclass(frozen=True, slots=True)
class Budget:
    max_tokens: int
    max_duration_ms: int
    max_llm_calls: int


BUDGETS: Final[dict[BudgetTier, Budget]] = {
    BudgetTier.SMALL: Budget(max_tokens=50_000, max_duration_ms=120_000, max_llm_calls=25),
    BudgetTier.MEDIUM: Budget(max_tokens=200_000, max_duration_ms=600_000, max_llm_calls=100),
}


def tier_for(test_count: int) -> BudgetTier:
    return BudgetTier.SMALL if test_count <= SMALL_TIER_MAX_TESTS else BudgetTier.MEDIUM


@dataclass(frozen=True, slots=True)
class BudgetCheck:
    within_budget: bool
    within_2x: bool
    violations: tuple[str, ...] = ()


def _ratio(observed: int, limit: int) -> str:
    return f"{observed / limit:.1f}x"


def check_budget(usage: BudgetUsage, budget: Budget) -> BudgetCheck:
    """Classify ``usage`` against ``budget``."""

    dimensions = (
        ("Tokens", usage.tokens, budget.max_tokens, ""),
        ("Duration", usage.duration_ms, budget.max_duration_ms, "ms"),
        ("LLM calls", usage.llm_calls, budget.max_llm_calls, ""),
    )
    violations: list[str] = []
    within_2x = True
    for label, observed, limit, unit in dimensions:
        if observed <= limit:
            continue
        violations.append(
            f"{label}: {observed}{unit} > {limit}{unit} ({_ratio(observed, limit)})"
        )
        if observed > 2 * limit:
            within_2x = False
    return BudgetCheck(
        within_budget=not violations,
        within_2x=within_2x,
        violations=tuple(violations),
    )


class BudgetEnforcer:
    """Lock-protected usage counters for one run.

    Inference workers share one enforcer; every counter update happens under
    the lock. Duration is wall-clock time since the enforcer was created.
    """

    def __init__(
        self,
        budget: Budget,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.budget = budget
        self._clock = clock
        self._started = clock()
        self._lock = threading.Lock()
        self._tokens = 0
        self._llm_calls = 0
        self._reserved = 0
        self._stages: dict[str, BudgetUsage] = {}
        self._warnings: list[str] = []

    def _elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def _usage_locked(self) -> BudgetUsage:
        return BudgetUsage(
            tokens=self._tokens,
            duration_ms=self._elapsed_ms(),
            llm_calls=self._llm_calls,
        )

    def usage(self) -> BudgetUsage:
        with self._lock:
            return self._usage_locked()

    def stage_usage(self, stage: str) -> BudgetUsage:
        with self._lock:
            return self._stages.get(stage, BudgetUsage())

    def reserve_call(self) -> bool:
        """Claim a slot for one more call; ``False`` once the budget is spent."""

        with self._lock:
            usage = self._usage_locked()
            projected_calls = usage.llm_calls + self._reserved + 1
            if (
                projected_calls > self.budget.max_llm_calls
                or usage.tokens >= self.budget.max_tokens
                or usage.duration_ms >= self.budget.max_duration_ms
            ):
                return False
            self._reserved += 1
            return True

    def release_call(self) -> None:
        """Give back a reserved slot whose call never produced usage."""

        with self._lock:
            self._reserved = max(0, self._reserved - 1)

    def record(self, stage: str, *, tokens: int, duration_ms: int) -> BudgetCheck:
        """Record one finished call and classify cumulative usage."""

        with self._lock:
            self._reserved = max(0, self._reserved - 1)
            self._tokens += max(0, tokens)
            self._llm_calls += 1
            previous = self._stages.get(stage, BudgetUsage())
            self._stages[stage] = previous + BudgetUsage(
                tokens=max(0, tokens), duration_ms=max(0, duration_ms), llm_calls=1
            )
            check = check_budget(self._usage_locked(), self.budget)
            seen = {warning.split(":", 1)[0] for warning in self._warnings}
            for violation in check.violations:
                if violation.split(":", 1)[0] not in seen:
                    log.warning("Budget violation: %s", violation)
                    self._warnings.append(violation)
            return check

    def classify(self) -> BudgetCheck:
        with self._lock:
            return check_budget(self._usage_locked(), self.budget)

    def enforce(self) -> BudgetCheck:
        """Raise ``BudgetExceeded`` on a hard violation, else return the check."""

        check = self.classify()
        if not check.within_2x:
            raise BudgetExceeded(check.violations)
        return check

    @property
    def warnings(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._warnings)
