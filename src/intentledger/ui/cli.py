from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from dotenv import load_dotenv

from intentledger.app import (
    build_conflict_detector,
    build_conflict_service,
    build_orchestrator,
    start_reconciliation,
)
from intentledger.config import ConfigurationError, configure_logging, get_reconciliation_config
from intentledger.domain.errors import ReconciliationError
from intentledger.domain.model import (
    Approve,
    AtomDecision,
    ConflictStatus,
    ConflictType,
    DeltaBaseline,
    MoleculeDecision,
    Reject,
    ResolutionAction,
    RunMode,
    RunOptions,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile intent atoms with a codebase")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start", help="Start a reconciliation run")
    start.add_argument("root_directory", help="Root directory of the analysed repository")
    start.add_argument(
        "--mode",
        choices=[mode.value for mode in RunMode],
        default=RunMode.FULL_SCAN.value,
        help="Run mode (default: %(default)s)",
    )
    start.add_argument("--baseline-run", help="Delta baseline: id of a completed run")
    start.add_argument("--baseline-commit", help="Delta baseline: commit hash")
    start.add_argument("--commit", help="Commit hash the evidence inventory describes")
    start.add_argument(
        "--manifest",
        type=Path,
        help="Evidence manifest path, relative paths resolve against the root directory",
    )
    start.add_argument(
        "--threshold",
        type=int,
        default=None,
        help="Quality threshold 0-100 (defaults to config)",
    )
    start.add_argument(
        "--require-review",
        action="store_true",
        help="Always stop for human review before applying recommendations",
    )
    start.add_argument(
        "--force-interrupt",
        action="store_true",
        help="Stop for review when more recommendations fail than pass",
    )
    start.add_argument("--max-tests", type=int, help="Analyse at most this many tests")
    start.add_argument("--include-path", action="append", default=[], help="Path filter")
    start.add_argument("--exclude-path", action="append", default=[], help="Path filter")
    start.add_argument(
        "--include-pattern", action="append", default=[], help="File name glob filter"
    )
    start.add_argument(
        "--exclude-pattern", action="append", default=[], help="File name glob filter"
    )

    review = subparsers.add_parser("review", help="Submit review decisions for a waiting run")
    review.add_argument("run_id")
    review.add_argument("--approve", action="append", default=[], metavar="TEMP_ID")
    review.add_argument(
        "--reject", action="append", default=[], nargs=2, metavar=("TEMP_ID", "REASON")
    )
    review.add_argument("--approve-molecule", action="append", default=[], metavar="TEMP_ID")
    review.add_argument(
        "--reject-molecule",
        action="append",
        default=[],
        nargs=2,
        metavar=("TEMP_ID", "REASON"),
    )
    review.add_argument("--comment", help="Free-text review comment stored on the run")

    runs = subparsers.add_parser("runs", help="List active runs")
    runs.add_argument(
        "--recoverable",
        action="store_true",
        help="List stale running runs that can be recovered instead",
    )

    show = subparsers.add_parser("show", help="Show a run")
    show.add_argument("run_id")
    view = show.add_mutually_exclusive_group()
    view.add_argument("--patch", action="store_true", help="Show the applied patch")
    view.add_argument("--metrics", action="store_true", help="Show recommendation metrics")
    view.add_argument(
        "--recommendations", action="store_true", help="Show atom and molecule recommendations"
    )

    recover = subparsers.add_parser("recover", help="Recover a stale running run for review")
    recover.add_argument("run_id")

    fail = subparsers.add_parser("fail", help="Mark a run as failed")
    fail.add_argument("run_id")
    fail.add_argument("--reason", required=True)

    conflicts = subparsers.add_parser("conflicts", help="Conflict management commands")
    conflicts_sub = conflicts.add_subparsers(dest="conflicts_command", required=True)
    conflicts_list = conflicts_sub.add_parser("list", help="List conflicts")
    conflicts_list.add_argument("--status", choices=[status.value for status in ConflictStatus])
    conflicts_list.add_argument("--type", choices=[kind.value for kind in ConflictType])
    conflicts_list.add_argument("--atom", help="Only conflicts involving this atom id")
    conflicts_scan = conflicts_sub.add_parser("scan", help="Detect conflicts between atoms")
    conflicts_scan.add_argument("--threshold", type=int, help="Similarity threshold 0-100")
    conflicts_resolve = conflicts_sub.add_parser("resolve", help="Resolve a conflict")
    conflicts_resolve.add_argument("conflict_id")
    conflicts_resolve.add_argument(
        "action", choices=[action.value for action in ResolutionAction]
    )
    conflicts_resolve.add_argument("--by", required=True, help="Who resolved the conflict")
    conflicts_resolve.add_argument("--reason")
    conflicts_resolve.add_argument("--artifact", help="Clarification artifact id")
    conflicts_escalate = conflicts_sub.add_parser("escalate", help="Escalate a conflict")
    conflicts_escalate.add_argument("conflict_id")
    conflicts_sub.add_parser("metrics", help="Aggregate conflict counts")

    return parser.parse_args(list(argv))


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValueError(f"Invalid UUID: {value}") from exc


def _run_options(args: argparse.Namespace) -> RunOptions:
    threshold = (
        args.threshold
        if args.threshold is not None
        else get_reconciliation_config().quality_threshold
    )
    return RunOptions(
        quality_threshold=threshold,
        include_paths=tuple(args.include_path),
        exclude_paths=tuple(args.exclude_path),
        include_file_patterns=tuple(args.include_pattern),
        exclude_file_patterns=tuple(args.exclude_pattern),
        require_review=args.require_review,
        force_interrupt_on_quality_fail=args.force_interrupt,
        max_tests=args.max_tests,
    )


def _delta_baseline(args: argparse.Namespace) -> DeltaBaseline | None:
    if args.baseline_run is None and args.baseline_commit is None:
        return None
    return DeltaBaseline(run_id=args.baseline_run, commit_hash=args.baseline_commit)


def _review_decisions(
    args: argparse.Namespace,
) -> tuple[list[AtomDecision], list[MoleculeDecision]]:
    atoms = [AtomDecision(temp_id, Approve()) for temp_id in args.approve]
    atoms += [AtomDecision(temp_id, Reject(reason=reason)) for temp_id, reason in args.reject]
    molecules = [MoleculeDecision(temp_id, Approve()) for temp_id in args.approve_molecule]
    molecules += [
        MoleculeDecision(temp_id, Reject(reason=reason))
        for temp_id, reason in args.reject_molecule
    ]
    if not atoms and not molecules:
        raise ValueError("Provide at least one --approve/--reject decision")
    return atoms, molecules


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            item.name: _to_jsonable(getattr(value, item.name))
            for item in dataclasses.fields(value)
        }
    if isinstance(value, dict):
        return {str(key): _to_jsonable(item) for key, item in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [_to_jsonable(item) for item in value]
    if value is None or isinstance(value, bool | int | float | str):
        return value
    return str(value)


def _emit(value: Any) -> None:
    sys.stdout.write(json.dumps(_to_jsonable(value), indent=2) + "\n")


def _dispatch(args: argparse.Namespace) -> None:
    match args.command:
        case "start":
            result = start_reconciliation(
                args.root_directory,
                args.mode,
                delta_baseline=_delta_baseline(args),
                options=_run_options(args),
                commit_hash=args.commit,
                manifest_path=args.manifest,
            )
            _emit(result)
        case "review":
            atoms, molecules = _review_decisions(args)
            orchestrator = build_orchestrator(read_only=True)
            _emit(orchestrator.submit_review(args.run_id, atoms, molecules, comment=args.comment))
        case "runs":
            orchestrator = build_orchestrator(read_only=True)
            _emit(
                orchestrator.list_recoverable_runs()
                if args.recoverable
                else orchestrator.get_active_runs()
            )
        case "show":
            orchestrator = build_orchestrator(read_only=True)
            if args.patch:
                _emit(orchestrator.get_patch(args.run_id))
            elif args.metrics:
                _emit(orchestrator.get_metrics(args.run_id))
            elif args.recommendations:
                _emit(orchestrator.get_recommendations(args.run_id))
            else:
                _emit(orchestrator.get_result(args.run_id))
        case "recover":
            _emit(build_orchestrator(read_only=True).recover_run(args.run_id))
        case "fail":
            _emit(build_orchestrator(read_only=True).mark_failed(args.run_id, args.reason))
        case "conflicts":
            _dispatch_conflicts(args)
        case _:
            raise ValueError(f"Unsupported command: {args.command}")


def _dispatch_conflicts(args: argparse.Namespace) -> None:
    match args.conflicts_command:
        case "list":
            _emit(
                build_conflict_service().find_all(
                    status=args.status, conflict_type=args.type, atom_id=args.atom
                )
            )
        case "scan":
            _emit(build_conflict_detector(threshold=args.threshold).scan())
        case "resolve":
            _emit(
                build_conflict_service().resolve(
                    _parse_uuid(args.conflict_id),
                    ResolutionAction(args.action),
                    args.by,
                    reason=args.reason,
                    clarification_artifact_id=args.artifact,
                )
            )
        case "escalate":
            _emit(build_conflict_service().escalate(_parse_uuid(args.conflict_id)))
        case "metrics":
            _emit(build_conflict_service().get_metrics())
        case _:
            raise ValueError(f"Unsupported conflicts command: {args.conflicts_command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        _dispatch(parsed_args)
    except (ValueError, ConfigurationError, ReconciliationError) as exc:
        log.error("%s", exc)  # noqa: TRY400
        sys.exit(2)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
