"""پایشگر همگرایی: بررسی اینورینت‌ها پس از هر دور، شرط توقف و تشخیص سلول‌های خالی.

پایشگر هیچ‌گاه وضعیت Store را اصلاح نمی‌کند؛ تخطی‌ها فقط گزارش می‌شوند و
تصمیم توقف با ارکستراتور است.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable, List, Mapping, Sequence

import pandas as pd

from seatalloc.core.allocation.store import SeatStore
from seatalloc.core.common.reasons import ReasonCode, build_reason
from seatalloc.core.common.types import Allocation, Candidate
from seatalloc.core.policy.config import CategoryPolicy

from .invariants import QaReport, run_all_invariants

__all__ = [
    "StopReason",
    "UnfilledCellDiagnostic",
    "ConvergenceMonitor",
    "diagnostics_to_frame",
    "UNFILLED_COLUMNS",
]

UNFILLED_COLUMNS: tuple[str, ...] = (
    "program",
    "category",
    "subcategory",
    "remaining_capacity",
    "initial_capacity",
    "eligible_count",
    "seated_elsewhere",
    "reason",
    "message",
)


class StopReason(StrEnum):
    """دلیل پایان حلقهٔ دورها."""

    NO_CHANGES = "no-changes"
    MAX_ROUNDS = "max-rounds"
    NO_CAPACITY = "no-capacity"
    ALL_SEATED = "all-seated"
    INVARIANT_VIOLATION = "invariant-violation"
    STORE_UNAVAILABLE = "store-unavailable"


@dataclass(frozen=True)
class UnfilledCellDiagnostic:
    """تشخیص یک سلول باز در پایان اجرا."""

    program: str
    category: str
    subcategory: str
    remaining_capacity: int
    initial_capacity: int
    eligible_count: int
    seated_elsewhere: int
    reason: ReasonCode
    message: str

    def as_row(self) -> dict[str, object]:
        return {
            "program": self.program,
            "category": self.category,
            "subcategory": self.subcategory,
            "remaining_capacity": self.remaining_capacity,
            "initial_capacity": self.initial_capacity,
            "eligible_count": self.eligible_count,
            "seated_elsewhere": self.seated_elsewhere,
            "reason": self.reason.value,
            "message": self.message,
        }


def _unfilled_reason(eligible: int, seated_elsewhere: int, remaining: int) -> ReasonCode:
    if eligible == 0:
        return ReasonCode.NO_ELIGIBLE_CANDIDATES
    if seated_elsewhere == eligible:
        return ReasonCode.ELIGIBLE_SEATED_BETTER
    if eligible < remaining:
        return ReasonCode.INSUFFICIENT_ELIGIBLE
    return ReasonCode.ELIGIBLE_PREFERRED_OTHER


def _active_by_candidate(active: Iterable[Allocation]) -> Mapping[str, Allocation]:
    latest: dict[str, Allocation] = {}
    for allocation in sorted(active, key=lambda item: item.sequence):
        latest[allocation.candidate_id] = allocation
    return latest


class ConvergenceMonitor:
    """بررسی پس از هر دور و ارزیابی شرط توقف."""

    def __init__(self, policy: CategoryPolicy) -> None:
        self._policy = policy

    def check_round(self, store: SeatStore, *, round_no: int) -> QaReport:
        """اجرای QA روی وضعیت فعلی Store؛ تخطی‌ها اصلاح نمی‌شوند."""

        return run_all_invariants(
            cells=store.cells(),
            active=store.active_records(),
            history=store.history(),
            round_no=round_no,
        )

    def evaluate_stop(
        self,
        store: SeatStore,
        candidates: Sequence[Candidate],
        *,
        round_no: int,
        granted_count: int,
        max_rounds: int,
    ) -> StopReason | None:
        """شرط توقف پس از یک دور کامل؛ None یعنی دور بعدی اجرا شود."""

        if granted_count == 0:
            return StopReason.NO_CHANGES
        if round_no > max_rounds:
            return StopReason.MAX_ROUNDS
        if all(cell.capacity <= 0 for cell in store.cells()):
            return StopReason.NO_CAPACITY
        seated = _active_by_candidate(store.active_records())
        if all(candidate.candidate_id in seated for candidate in candidates):
            return StopReason.ALL_SEATED
        return None

    def diagnose_unfilled(
        self,
        store: SeatStore,
        candidates: Sequence[Candidate],
    ) -> List[UnfilledCellDiagnostic]:
        """تشخیص «چرا خالی ماند» برای هر سلول که هنوز ظرفیت دارد."""

        seated = _active_by_candidate(store.active_records())
        filters = {
            candidate.candidate_id: set(self._policy.eligible_filters(candidate))
            for candidate in candidates
        }
        diagnostics: List[UnfilledCellDiagnostic] = []
        for cell in store.cells():
            if cell.capacity <= 0:
                continue
            key = cell.key
            eligible = [
                candidate
                for candidate in candidates
                if key.program in candidate.preferences
                and any(item.cell_for(key.program) == key for item in filters[candidate.candidate_id])
            ]
            elsewhere = sum(
                1
                for candidate in eligible
                if candidate.candidate_id in seated and seated[candidate.candidate_id].cell != key
            )
            reason = build_reason(_unfilled_reason(len(eligible), elsewhere, cell.capacity))
            diagnostics.append(
                UnfilledCellDiagnostic(
                    program=key.program,
                    category=key.category.value,
                    subcategory=key.subcategory.value,
                    remaining_capacity=cell.capacity,
                    initial_capacity=cell.initial_capacity,
                    eligible_count=len(eligible),
                    seated_elsewhere=elsewhere,
                    reason=reason.code,
                    message=reason.message_fa,
                )
            )
        return diagnostics


def diagnostics_to_frame(diagnostics: Iterable[UnfilledCellDiagnostic]) -> pd.DataFrame:
    return pd.DataFrame([item.as_row() for item in diagnostics], columns=list(UNFILLED_COLUMNS))
