"""ارکستراتور دورها: ترتیب ثابت فازها و حلقهٔ دورها تا همگرایی.

هر دور شامل فازهای زیر است (فاز اولیه فقط یک‌بار):

a. تخصیص اولیه بر اساس رتبهٔ شایستگی در سلول پیش‌فرض عمومی؛
b. زیردسته‌های افقی دستهٔ عمومی، هر کدام با ارتقای سراسری پس از آن؛
c. سلول پیش‌فرض دسته‌های رزرو با رتبهٔ دسته‌ای؛
d. زیردسته‌های افقی دسته‌های رزرو؛
e. ارتقای سراسری برای داوطلبان شناور و بدون صندلی، فقط روی سلول‌های عمودی.

ارکستراتور هیچ I/O یا لاگ مستقیمی ندارد؛ رویدادها به ``EventSink`` تزریق‌شده
فرستاده می‌شوند.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Dict, List, Sequence

import pandas as pd

from seatalloc.core.common.errors import StoreError, StoreUnavailableError
from seatalloc.core.common.events import (
    EventLevel,
    EventSink,
    ProgressFn,
    RunEvent,
    noop_progress,
    noop_sink,
)
from seatalloc.core.common.ranking import TieBreakRule
from seatalloc.core.common.types import (
    Allocation,
    Candidate,
    Category,
    EligibilityFilter,
    MatchMode,
    RoundSummaryRow,
    Subcategory,
)
from seatalloc.core.policy.config import CategoryPolicy
from seatalloc.core.qa.convergence import (
    ConvergenceMonitor,
    StopReason,
    UnfilledCellDiagnostic,
)
from seatalloc.core.qa.invariants import QaReport

from .matcher import Eligibility, Matcher, MatchResult
from .store import SeatStore

__all__ = [
    "Phase",
    "StopReason",
    "PhaseResult",
    "RoundSummary",
    "RunOutcome",
    "RoundOrchestrator",
    "FAILURE_COLUMNS",
]

FAILURE_COLUMNS: tuple[str, ...] = (
    "round_no",
    "phase",
    "target",
    "candidate_id",
    "reason",
    "message",
    "current_choice_rank",
)


class Phase(StrEnum):
    INITIAL = "initial"
    GENERAL_SUBCATEGORY = "general-subcategory"
    RESERVED_CATEGORY = "reserved-category"
    RESERVED_SUBCATEGORY = "reserved-subcategory"
    UPGRADE = "upgrade"


@dataclass(frozen=True)
class PhaseResult:
    """خروجی یک فراخوانی Matcher در یک فاز مشخص."""

    round_no: int
    phase: Phase
    target: str
    result: MatchResult


@dataclass(frozen=True)
class RoundSummary:
    """خلاصهٔ یک دور کامل."""

    round_no: int
    granted_count: int
    failed_count: int
    frozen_count: int
    floating_count: int
    vacated_count: int
    unseated_count: int

    def as_row(self) -> RoundSummaryRow:
        return RoundSummaryRow(
            round_no=self.round_no,
            granted_count=self.granted_count,
            failed_count=self.failed_count,
            frozen_count=self.frozen_count,
            floating_count=self.floating_count,
            vacated_count=self.vacated_count,
            unseated_count=self.unseated_count,
        )


@dataclass
class RunOutcome:
    """نتیجهٔ کامل یک اجرا برای گزارش‌گیری."""

    stop_reason: StopReason | None = None
    rounds: List[RoundSummary] = field(default_factory=list)
    phases: List[PhaseResult] = field(default_factory=list)
    qa_reports: List[QaReport] = field(default_factory=list)
    unfilled: List[UnfilledCellDiagnostic] = field(default_factory=list)

    @property
    def qa_passed(self) -> bool:
        return all(report.passed for report in self.qa_reports)

    @property
    def last_round(self) -> int:
        return self.rounds[-1].round_no if self.rounds else 0

    def summary_frame(self) -> pd.DataFrame:
        columns = list(RoundSummaryRow.__annotations__)
        return pd.DataFrame([summary.as_row() for summary in self.rounds], columns=columns)

    def failures_frame(self) -> pd.DataFrame:
        """همهٔ شکست‌های Matcher به تفکیک دور و فاز."""

        rows = [
            {
                "round_no": item.round_no,
                "phase": item.phase.value,
                "target": item.target,
                "candidate_id": failure.candidate_id,
                "reason": failure.reason.value,
                "message": failure.message,
                "current_choice_rank": failure.current_choice_rank,
            }
            for item in self.phases
            for failure in item.result.failed
        ]
        return pd.DataFrame(rows, columns=list(FAILURE_COLUMNS))


def _is_frozen(allocation: Allocation | None) -> bool:
    return allocation is not None and allocation.is_frozen


class RoundOrchestrator:
    """اجرای فازهای a تا e در دورهای متوالی روی یک Store تزریق‌شده.

    Parameters
    ----------
    store:
        Store موجودی و دفتر کل (درون‌حافظه‌ای یا SQLite).
    policy:
        پیکربندی دسته‌ها و معیارهای تساوی‌شکن.
    candidates:
        فهرست داوطلبان؛ ترتیب ورودی فقط برای رکوردهای کاملاً برابر اهمیت دارد.
    monitor:
        پایشگر همگرایی؛ در صورت نبود از همین Policy ساخته می‌شود.
    event_sink:
        مقصد رویدادهای ساخت‌یافته.
    progress:
        تابع ``(pct, message)`` برای گزارش پیشرفت.
    max_rounds:
        سقف دورها؛ پیش‌فرض ``policy.max_rounds``.
    """

    def __init__(
        self,
        store: SeatStore,
        policy: CategoryPolicy,
        candidates: Sequence[Candidate],
        *,
        monitor: ConvergenceMonitor | None = None,
        event_sink: EventSink = noop_sink,
        progress: ProgressFn = noop_progress,
        max_rounds: int | None = None,
    ) -> None:
        policy.validate_candidates(candidates)
        self._store = store
        self._policy = policy
        self._candidates = list(candidates)
        self._monitor = monitor or ConvergenceMonitor(policy)
        self._emit = event_sink
        self._progress = progress
        self._max_rounds = policy.max_rounds if max_rounds is None else int(max_rounds)
        if self._max_rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        self._matcher = Matcher(store)

    # ------------------------------------------------------------------ run
    def run(self) -> RunOutcome:
        """اجرای کامل تا برقرار شدن یکی از شرایط توقف.

        Raises:
            StoreUnavailableError: پس از یک نهایی‌سازی تلاش‌محور دوباره پرتاب می‌شود.
        """

        outcome = RunOutcome()
        last_round = self._store.last_round()
        round_no = last_round + 1
        run_initial = last_round == 0 and not self._store.history()
        self._event("run_started", payload={"start_round": round_no, "max_rounds": self._max_rounds,
                                           "candidates": len(self._candidates)})
        self._progress(0, "start")

        # اجرای قبلی پس از گذر از سقف متوقف شده است
        if last_round > self._max_rounds:
            outcome.stop_reason = StopReason.MAX_ROUNDS
            self._finish(outcome)
            return outcome

        while True:
            phases: List[PhaseResult] = []
            try:
                self._run_round(round_no, run_initial=run_initial, sink=phases)
                summary = self._summarize(round_no, phases)
                self._store.record_round_summary(summary.as_row())
            except StoreUnavailableError as exc:
                outcome.phases.extend(phases)
                outcome.stop_reason = StopReason.STORE_UNAVAILABLE
                self._event("store_unavailable", round_no=round_no, level=EventLevel.ERROR,
                            payload={"error": str(exc)})
                self._finalize_partial(outcome, round_no, phases)
                raise
            run_initial = False
            outcome.phases.extend(phases)
            outcome.rounds.append(summary)
            self._event("round_completed", round_no=round_no, payload=dict(summary.as_row()))

            report = self._monitor.check_round(self._store, round_no=round_no)
            outcome.qa_reports.append(report)
            if not report.passed:
                for violation in report.violations:
                    self._event(
                        "invariant_violation",
                        round_no=round_no,
                        level=EventLevel.ERROR,
                        payload={"rule_id": violation.rule_id, "message": violation.message,
                                 **dict(violation.details or {})},
                    )
                outcome.stop_reason = StopReason.INVARIANT_VIOLATION
                break

            stop = self._monitor.evaluate_stop(
                self._store,
                self._candidates,
                round_no=round_no,
                granted_count=summary.granted_count,
                max_rounds=self._max_rounds,
            )
            self._progress(min(99, int(round_no * 100 / self._max_rounds)), f"round {round_no} done")
            if stop is not None:
                outcome.stop_reason = stop
                break
            round_no += 1

        self._finish(outcome)
        return outcome

    def _finish(self, outcome: RunOutcome) -> None:
        outcome.unfilled = self._monitor.diagnose_unfilled(self._store, self._candidates)
        for item in outcome.unfilled:
            self._event("unfilled_cell", level=EventLevel.DEBUG, payload=item.as_row())
        self._event(
            "run_stopped",
            round_no=outcome.last_round or None,
            payload={"stop_reason": outcome.stop_reason.value if outcome.stop_reason else None,
                     "unfilled_cells": len(outcome.unfilled)},
        )
        self._progress(100, "done")

    def _finalize_partial(self, outcome: RunOutcome, round_no: int, phases: List[PhaseResult]) -> None:
        """نهایی‌سازی تلاش‌محور پس از قطع Store؛ خطاهای این مرحله فقط رویداد می‌شوند."""

        try:
            summary = self._summarize(round_no, phases)
            self._store.record_round_summary(summary.as_row())
        except StoreError as exc:
            summary = self._summarize(round_no, phases, statuses={"frozen": 0, "floating": 0, "unseated": 0})
            self._event("finalization_failed", round_no=round_no, level=EventLevel.WARNING,
                        payload={"error": str(exc)})
        outcome.rounds.append(summary)
        self._event("run_aborted", round_no=round_no, level=EventLevel.ERROR,
                    payload=dict(summary.as_row()))

    # --------------------------------------------------------------- phases
    def _run_round(self, round_no: int, *, run_initial: bool, sink: List[PhaseResult]) -> None:
        self._event("round_started", round_no=round_no)
        general = self._policy.general_category
        if run_initial:
            self._initial_allocation(round_no, sink)

        for sub in self._policy.subcategories_of(general):
            self._targeted_phase(round_no, Phase.GENERAL_SUBCATEGORY, general, sub, sink)
            self._upgrade_allocation(round_no, sink)

        for rule in self._policy.reserved_categories():
            if not rule.home_is_default:
                continue
            self._targeted_phase(round_no, Phase.RESERVED_CATEGORY, rule.category, Subcategory.DEFAULT, sink)
            self._upgrade_allocation(round_no, sink)

        for rule in self._policy.reserved_categories():
            for sub_rule in rule.subcategories:
                self._targeted_phase(
                    round_no, Phase.RESERVED_SUBCATEGORY, rule.category, sub_rule.subcategory, sink
                )
                self._upgrade_allocation(round_no, sink)

        self._upgrade_allocation(round_no, sink)

    def _initial_allocation(self, round_no: int, sink: List[PhaseResult]) -> None:
        ordered = self._policy.sort_candidates(self._candidates, self._policy.merit_criterion)
        target = EligibilityFilter(self._policy.general_category, Subcategory.DEFAULT)
        self._match(round_no, Phase.INITIAL, ordered, target, MatchMode.INITIAL,
                    f"{target.category.value}/{target.subcategory.value}", sink)

    def _targeted_phase(
        self,
        round_no: int,
        phase: Phase,
        category: Category,
        subcategory: Subcategory,
        sink: List[PhaseResult],
    ) -> None:
        members = [
            candidate
            for candidate in self._candidates
            if candidate.category is category
            and (not subcategory.is_horizontal or candidate.subcategory is subcategory)
            and not _is_frozen(self._store.active_allocation(candidate.candidate_id))
        ]
        rule: TieBreakRule = self._policy.tie_break_for(category, subcategory)
        ordered = self._policy.sort_candidates(members, rule)
        target = EligibilityFilter(category, subcategory)
        self._match(round_no, phase, ordered, target, MatchMode.UPGRADE, f"{category.value}/{subcategory.value}", sink)

    def _upgrade_allocation(self, round_no: int, sink: List[PhaseResult]) -> None:
        floating = [
            candidate
            for candidate in self._candidates
            if not _is_frozen(self._store.active_allocation(candidate.candidate_id))
        ]
        ordered = self._policy.sort_candidates(floating, self._policy.merit_criterion)
        self._match(round_no, Phase.UPGRADE, ordered, self._policy.vertical_filters, MatchMode.UPGRADE,
                    "vertical-pool", sink)

    def _match(
        self,
        round_no: int,
        phase: Phase,
        candidates: Sequence[Candidate],
        eligibility: Eligibility,
        mode: MatchMode,
        target: str,
        sink: List[PhaseResult],
    ) -> None:
        if not candidates:
            return
        result = self._matcher.allocate(candidates, eligibility, mode=mode, round_no=round_no)
        sink.append(PhaseResult(round_no=round_no, phase=phase, target=target, result=result))
        self._event("phase_completed", round_no=round_no, phase=phase.value,
                    payload={"target": target, "candidates": len(candidates), **result.counts})

    # -------------------------------------------------------------- summary
    def _status_counts(self) -> Dict[str, int]:
        counts = {"frozen": 0, "floating": 0, "unseated": 0}
        for candidate in self._candidates:
            allocation = self._store.active_allocation(candidate.candidate_id)
            if allocation is None:
                counts["unseated"] += 1
            elif allocation.is_frozen:
                counts["frozen"] += 1
            else:
                counts["floating"] += 1
        return counts

    def _summarize(
        self,
        round_no: int,
        phases: Sequence[PhaseResult],
        *,
        statuses: Dict[str, int] | None = None,
    ) -> RoundSummary:
        """شمارش‌های دور؛ ``failed_count`` تعداد داوطلبان متمایز با دست‌کم یک شکست است."""

        if statuses is None:
            statuses = self._status_counts()
        final_failures = {
            failure.candidate_id
            for item in phases
            for failure in item.result.failed
        }
        return RoundSummary(
            round_no=round_no,
            granted_count=sum(len(item.result.granted) for item in phases),
            failed_count=len(final_failures),
            frozen_count=statuses["frozen"],
            floating_count=statuses["floating"],
            vacated_count=sum(len(item.result.vacated) for item in phases),
            unseated_count=statuses["unseated"],
        )

    def _event(
        self,
        kind: str,
        *,
        round_no: int | None = None,
        phase: str | None = None,
        level: EventLevel = EventLevel.INFO,
        payload: dict | None = None,
    ) -> None:
        self._emit(RunEvent(kind=kind, round_no=round_no, phase=phase, level=level, payload=payload or {}))
