from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import pytest

from intentledger.domain.errors import InvalidStateError
from intentledger.domain.model import (
    Approve,
    AtomDecision,
    DeltaBaseline,
    MoleculeDecision,
    Reject,
    RunMode,
    RunStatus,
    RunSummary,
)
from intentledger.domain.reconciliation import RunResult
from intentledger.ui import cli as cli_module

RESULT = RunResult(run_id="REC-1", status=RunStatus.COMPLETED, summary=RunSummary())


@dataclass
class FakeOrchestrator:
    calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = field(
        default_factory=list[tuple[str, tuple[Any, ...], dict[str, Any]]]
    )
    error: Exception | None = None

    def _record(self, name: str, *args: Any, **kwargs: Any) -> RunResult:
        self.calls.append((name, args, kwargs))
        if self.error is not None:
            raise self.error
        return RESULT

    def submit_review(self, *args: Any, **kwargs: Any) -> RunResult:
        return self._record("submit_review", *args, **kwargs)

    def get_result(self, *args: Any) -> RunResult:
        return self._record("get_result", *args)

    def mark_failed(self, *args: Any) -> RunResult:
        return self._record("mark_failed", *args)


@pytest.fixture
def orchestrator(monkeypatch: pytest.MonkeyPatch) -> FakeOrchestrator:
    fake = FakeOrchestrator()

    def build(**kwargs: object) -> FakeOrchestrator:
        assert kwargs == {"read_only": True}
        return fake

    monkeypatch.setattr(cli_module, "build_orchestrator", build)
    return fake


def test_start_defaults(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    captured: dict[str, Any] = {}

    def fake_start(root: str, mode: str, **kwargs: Any) -> RunResult:
        captured.update(kwargs, root=root, mode=mode)
        return RESULT

    monkeypatch.setattr(cli_module, "start_reconciliation", fake_start)
    monkeypatch.delenv("INTENTLEDGER_QUALITY_THRESHOLD", raising=False)

    cli_module.main(["start", "/repo"])

    assert captured["root"] == "/repo"
    assert captured["mode"] == RunMode.FULL_SCAN.value
    assert captured["delta_baseline"] is None
    assert captured["commit_hash"] is None
    assert captured["options"].quality_threshold == 80
    assert captured["options"].require_review is False
    output = json.loads(capsys.readouterr().out)
    assert output["run_id"] == "REC-1"
    assert output["status"] == "completed"


def test_start_with_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def fake_start(root: str, mode: str, **kwargs: Any) -> RunResult:
        captured.update(kwargs, mode=mode)
        return RESULT

    monkeypatch.setattr(cli_module, "start_reconciliation", fake_start)

    cli_module.main(
        [
            "start",
            "/repo",
            "--mode",
            "delta",
            "--baseline-run",
            "REC-0",
            "--commit",
            "abc123",
            "--threshold",
            "70",
            "--require-review",
            "--max-tests",
            "5",
            "--include-path",
            "src/modules",
            "--exclude-pattern",
            "*.e2e.ts",
        ]
    )

    options = captured["options"]
    assert captured["mode"] == "delta"
    assert captured["delta_baseline"] == DeltaBaseline(run_id="REC-0")
    assert captured["commit_hash"] == "abc123"
    assert options.quality_threshold == 70
    assert options.require_review is True
    assert options.max_tests == 5
    assert options.include_paths == ("src/modules",)
    assert options.exclude_file_patterns == ("*.e2e.ts",)


def test_review_builds_decisions(orchestrator: FakeOrchestrator) -> None:
    cli_module.main(
        [
            "review",
            "REC-1",
            "--approve",
            "atom-001",
            "--reject",
            "atom-002",
            "too vague",
            "--approve-molecule",
            "molecule-001",
            "--comment",
            "checked",
        ]
    )

    ((name, args, kwargs),) = orchestrator.calls
    assert name == "submit_review"
    assert args == (
        "REC-1",
        [AtomDecision("atom-001", Approve()), AtomDecision("atom-002", Reject(reason="too vague"))],
        [MoleculeDecision("molecule-001", Approve())],
    )
    assert kwargs == {"comment": "checked"}


def test_review_without_decisions_exits_with_usage_error(orchestrator: FakeOrchestrator) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["review", "REC-1"])

    assert excinfo.value.code == 2
    assert orchestrator.calls == []


def test_domain_errors_exit_with_code_2(orchestrator: FakeOrchestrator) -> None:
    orchestrator.error = InvalidStateError("Run REC-1 is completed")

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["show", "REC-1"])

    assert excinfo.value.code == 2


def test_unexpected_errors_exit_with_code_1(orchestrator: FakeOrchestrator) -> None:
    orchestrator.error = RuntimeError("database is gone")

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["fail", "REC-1", "--reason", "stuck"])

    assert excinfo.value.code == 1
    assert orchestrator.calls == [("mark_failed", ("REC-1", "stuck"), {})]


def test_conflict_resolve_rejects_invalid_ids(monkeypatch: pytest.MonkeyPatch) -> None:
    resolved: list[object] = []

    class Service:
        def resolve(self, *args: object, **kwargs: object) -> None:
            resolved.append(args)

    monkeypatch.setattr(cli_module, "build_conflict_service", Service)

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["conflicts", "resolve", "not-a-uuid", "supersede_a", "--by", "alice"])

    assert excinfo.value.code == 2
    assert resolved == []


def test_conflict_metrics_are_printed(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    @dataclass
    class Metrics:
        total: int = 2
        by_type: dict[str, int] = field(default_factory=lambda: {"same_test": 2})

    class Service:
        def get_metrics(self) -> Metrics:
            return Metrics()

    monkeypatch.setattr(cli_module, "build_conflict_service", Service)

    cli_module.main(["conflicts", "metrics"])

    assert json.loads(capsys.readouterr().out) == {"total": 2, "by_type": {"same_test": 2}}
