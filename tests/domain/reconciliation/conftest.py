"""Shared fixtures for orchestrator-level reconciliation tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from intentledger.domain.reconciliation import RunOrchestrator
from tests.helpers.evidence import FakeEvidenceProvider, make_test_item
from tests.helpers.inference import ScriptedInference

if TYPE_CHECKING:
    from collections.abc import Callable

    from intentledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork


@pytest.fixture
def evidence() -> FakeEvidenceProvider:
    return FakeEvidenceProvider(
        items=[make_test_item(name) for name in ("shows total", "applies tax", "rounds cents")]
    )


@pytest.fixture
def inference() -> ScriptedInference:
    return ScriptedInference()


@pytest.fixture
def make_orchestrator(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    evidence: FakeEvidenceProvider,
    inference: ScriptedInference,
) -> Callable[..., RunOrchestrator]:
    def factory(**overrides: Any) -> RunOrchestrator:
        settings: dict[str, Any] = {
            "unit_of_work_factory": sqlite_unit_of_work,
            "evidence_provider": evidence,
            "inference": inference,
            "max_workers": 2,
        }
        settings.update(overrides)
        return RunOrchestrator(**settings)

    return factory


@pytest.fixture
def orchestrator(make_orchestrator: Callable[..., RunOrchestrator]) -> RunOrchestrator:
    return make_orchestrator()
