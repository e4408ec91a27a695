"""رابط خط فرمان headless برای موتور تخصیص صندلی.

این ماژول کلیهٔ مسئولیت‌های I/O را بر عهده دارد: خواندن ورودی، ساخت Store،
تزریق progress و sink رویداد به Core و نوشتن خروجی Excel.

کدهای خروج:

* ``0`` موفق؛
* ``2`` ورودی یا پیکربندی نامعتبر؛
* ``3`` تخطی از اینورینت‌ها (اجرا متوقف شد)؛
* ``4`` Store در دسترس نیست.

مثال::

    >>> from seatalloc.infra import cli
    >>> cli.main(["allocate", "--candidates", "students.csv", "--seats", "seats.csv",
    ...           "--output", "out.xlsx", "--db", "seats.db"])  # doctest: +SKIP
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Mapping, Sequence

from seatalloc.core.allocation.orchestrator import RoundOrchestrator, RunOutcome, StopReason
from seatalloc.core.allocation.store import InMemorySeatStore, SeatStore
from seatalloc.core.common.errors import StoreUnavailableError
from seatalloc.core.common.events import EventLog, ProgressFn
from seatalloc.core.policy.config import CategoryPolicy
from seatalloc.core.policy_loader import DEFAULT_POLICY_PATH, load_policy
from seatalloc.core.qa.convergence import ConvergenceMonitor
from seatalloc.infra.errors import InfraError, InputDataError
from seatalloc.infra.excel_writer import build_report_sheets, write_xlsx_atomic
from seatalloc.infra.loaders import load_candidates, load_seat_cells
from seatalloc.infra.logging import EventLogBridge, log_step
from seatalloc.infra.seat_store import SqliteSeatStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INPUT_ERROR = 2
EXIT_INVARIANT_VIOLATION = 3
EXIT_STORE_UNAVAILABLE = 4

Runner = Callable[[argparse.Namespace, CategoryPolicy, ProgressFn], int]


def _default_progress(pct: int, message: str) -> None:
    """چاپ سادهٔ وضعیت پیشرفت در حالت headless."""
    print(f"{pct:3d}% | {message}")


def _load_program_map(path: str | None) -> Mapping[str, str] | None:
    if not path:
        return None
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"program map must be a JSON object: {path}")
    return {str(key): str(value) for key, value in data.items()}


def _print_summary(outcome: RunOutcome) -> None:
    for summary in outcome.rounds:
        print(
            f"round {summary.round_no}: granted={summary.granted_count} "
            f"failed={summary.failed_count} frozen={summary.frozen_count} "
            f"floating={summary.floating_count} vacated={summary.vacated_count} "
            f"unseated={summary.unseated_count}"
        )
    reason = outcome.stop_reason.value if outcome.stop_reason else "-"
    print(f"stopped: {reason}; unfilled cells: {len(outcome.unfilled)}")


def _open_store(args: argparse.Namespace, seats_path: Path | None) -> SeatStore:
    """ساخت Store؛ بدون ``--db`` درون‌حافظه‌ای، با آن SQLite (از سرگیری در صورت وجود داده)."""

    if not args.db:
        if seats_path is None:
            raise ValueError("--seats is required without --db")
        return InMemorySeatStore(load_seat_cells(seats_path))
    store = SqliteSeatStore(Path(args.db))
    store.initialize()
    if store.is_seeded():
        logger.info("Resuming from existing seat store %s (last round %d)", args.db, store.last_round())
    else:
        try:
            if seats_path is None:
                raise ValueError(f"seat store {args.db} is empty; --seats is required")
            store.seed(load_seat_cells(seats_path))
        except Exception:
            store.close()
            raise
    return store


def _close_store(store: SeatStore) -> None:
    if isinstance(store, SqliteSeatStore):
        store.close()


def _run_allocate(args: argparse.Namespace, policy: CategoryPolicy, progress: ProgressFn) -> int:
    """اجرای فرمان تخصیص و نوشتن گزارش Excel."""

    candidates_path = Path(args.candidates)
    seats_path = Path(args.seats) if args.seats else None
    output = Path(args.output)

    progress(0, "loading inputs")
    with log_step(logger, "load_inputs"):
        candidates = load_candidates(
            candidates_path, policy=policy, program_map=_load_program_map(args.program_map)
        )
        store = _open_store(args, seats_path)

    events = EventLog(forward=EventLogBridge(logging.getLogger("seatalloc.engine")))
    try:
        orchestrator = RoundOrchestrator(
            store,
            policy,
            candidates,
            event_sink=events,
            progress=progress,
            max_rounds=args.max_rounds,
        )
    except Exception:
        _close_store(store)
        raise

    try:
        with log_step(logger, "allocation_rounds"):
            outcome = orchestrator.run()
    except StoreUnavailableError as exc:
        print(f"❌ store unavailable: {exc}", file=sys.stderr)
        _close_store(store)
        return EXIT_STORE_UNAVAILABLE

    try:
        if isinstance(store, SqliteSeatStore):
            store.record_events(events)
        with log_step(logger, "write_report"):
            write_xlsx_atomic(
                build_report_sheets(store, outcome=outcome, events=events),
                output,
                rtl=args.rtl,
            )
    finally:
        _close_store(store)

    _print_summary(outcome)
    if outcome.stop_reason is StopReason.INVARIANT_VIOLATION:
        print("❌ invariant violation detected; see the qa sheet", file=sys.stderr)
        return EXIT_INVARIANT_VIOLATION
    return EXIT_OK


def _run_report(args: argparse.Namespace, policy: CategoryPolicy, progress: ProgressFn) -> int:
    """ساخت گزارش Excel از یک Store پایدار بدون اجرای دور جدید."""

    db_path = Path(args.db)
    if not db_path.exists():
        raise FileNotFoundError(f"seat store not found: {db_path}")
    progress(0, "reading store")
    store = SqliteSeatStore(db_path)
    try:
        store.initialize()
        unfilled = None
        qa_reports = None
        if args.candidates:
            candidates = load_candidates(
                Path(args.candidates), policy=policy, program_map=_load_program_map(args.program_map)
            )
            monitor = ConvergenceMonitor(policy)
            unfilled = monitor.diagnose_unfilled(store, candidates)
            qa_reports = [monitor.check_round(store, round_no=store.last_round())]
        sheets = build_report_sheets(store, unfilled=unfilled, qa_reports=qa_reports)
        sheets["events"] = store.events_frame()
        with log_step(logger, "write_report"):
            write_xlsx_atomic(sheets, Path(args.output), rtl=args.rtl)
    finally:
        store.close()
    progress(100, "done")
    if qa_reports is not None and not all(report.passed for report in qa_reports):
        return EXIT_INVARIANT_VIOLATION
    return EXIT_OK


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--policy", default=str(DEFAULT_POLICY_PATH), help="مسیر policy.json")
    parser.add_argument("--output", required=True, help="مسیر Excel خروجی")
    parser.add_argument("--program-map", default=None, help="فایل JSON نگاشت نام کامل برنامه به شناسه")
    parser.add_argument("--rtl", action="store_true", help="شیت‌های راست‌به‌چپ")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="seatalloc", description="موتور تخصیص صندلی دوره‌ای")
    sub = parser.add_subparsers(dest="command", required=True)

    alloc_cmd = sub.add_parser("allocate", help="اجرای دورهای تخصیص")
    alloc_cmd.add_argument("--candidates", required=True, help="CSV/Excel داوطلبان")
    alloc_cmd.add_argument("--seats", default=None, help="CSV/Excel ماتریس صندلی")
    alloc_cmd.add_argument("--db", default=None, help="مسیر Store پایدار SQLite")
    alloc_cmd.add_argument("--max-rounds", type=int, default=None, help="سقف دورها (پیش‌فرض از Policy)")
    _add_common_args(alloc_cmd)

    report_cmd = sub.add_parser("report", help="ساخت گزارش از Store پایدار")
    report_cmd.add_argument("--db", required=True, help="مسیر Store پایدار SQLite")
    report_cmd.add_argument("--candidates", default=None, help="برای تشخیص سلول‌های خالی")
    _add_common_args(report_cmd)
    return parser


def main(
    argv: Sequence[str] | None = None,
    *,
    progress_factory: Callable[[], ProgressFn] | None = None,
    allocate_runner: Runner | None = None,
    report_runner: Runner | None = None,
) -> int:
    """نقطهٔ ورود CLI؛ خروجی ۰ به معنای موفقیت است."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    progress = progress_factory() if progress_factory is not None else _default_progress

    try:
        policy = load_policy(Path(args.policy))
        if args.command == "allocate":
            return (allocate_runner or _run_allocate)(args, policy, progress)
        if args.command == "report":
            return (report_runner or _run_report)(args, policy, progress)
        raise RuntimeError(f"Unsupported command: {args.command}")
    except (InputDataError, FileNotFoundError, ValueError, TypeError) as exc:
        logger.error("command %s failed: %s", args.command, exc)
        print(f"❌ {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except StoreUnavailableError as exc:
        logger.error("seat store unavailable: %s", exc)
        print(f"❌ store unavailable: {exc}", file=sys.stderr)
        return EXIT_STORE_UNAVAILABLE
    except InfraError as exc:
        logger.error("infrastructure error: %s", exc)
        print(f"❌ {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
