"""قرارداد Store (موجودی + دفتر کل) و پیاده‌سازی درون‌حافظه‌ای آن.

تنها نقطهٔ تغییر وضعیت موتور :meth:`SeatStore.apply_grant` است: رزرو سلول
جدید، آزادسازی سلول قبلی، حذف تخصیص قبلی و درج تخصیص جدید به‌صورت یک واحد
تجزیه‌ناپذیر. شکست در میانهٔ کار هیچ اثری باقی نمی‌گذارد؛ نه کاهش ظرفیت بدون
تخصیص و نه برعکس.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Protocol, Sequence, runtime_checkable

from seatalloc.core.common.errors import SeatUnavailableError, StoreStepError
from seatalloc.core.common.types import (
    Allocation,
    AllocationRecord,
    CellKey,
    RoundSummaryRow,
    SeatCell,
)

from .inventory import SeatInventory
from .ledger import AllocationLedger

__all__ = ["GrantOutcome", "SeatStore", "InMemorySeatStore"]


@dataclass(frozen=True)
class GrantOutcome:
    """نتیجهٔ یک گام اتمیک: تخصیص جدید و در صورت وجود تخصیص تخلیه‌شده."""

    allocation: Allocation
    vacated: Allocation | None = None


@runtime_checkable
class SeatStore(Protocol):
    """رابط تابعی Store که موتور از آن استفاده می‌کند."""

    def cells(self) -> List[SeatCell]: ...

    def capacity_of(self, key: CellKey) -> int: ...

    def initial_capacity_of(self, key: CellKey) -> int: ...

    def active_allocation(self, candidate_id: str) -> Allocation | None: ...

    def active_records(self) -> List[Allocation]: ...

    def history(self) -> List[AllocationRecord]: ...

    def last_round(self) -> int: ...

    def apply_grant(
        self,
        candidate_id: str,
        cell: CellKey,
        *,
        round_no: int,
        choice_rank: int,
    ) -> GrantOutcome: ...

    def record_round_summary(self, row: RoundSummaryRow) -> None: ...

    def round_summaries(self) -> List[RoundSummaryRow]: ...


class InMemorySeatStore:
    """Store درون‌حافظه‌ای با بخش بحرانی روی سلول‌های درگیر."""

    def __init__(self, cells: Iterable[SeatCell], records: Sequence[AllocationRecord] = ()) -> None:
        self.inventory = SeatInventory(cells)
        self.ledger = AllocationLedger(records)
        self._summaries: List[RoundSummaryRow] = []

    def cells(self) -> List[SeatCell]:
        return self.inventory.cells()

    def capacity_of(self, key: CellKey) -> int:
        return self.inventory.capacity_of(key)

    def initial_capacity_of(self, key: CellKey) -> int:
        return self.inventory.initial_capacity_of(key)

    def active_allocation(self, candidate_id: str) -> Allocation | None:
        return self.ledger.active_for(candidate_id)

    def active_records(self) -> List[Allocation]:
        return self.ledger.active_records()

    def history(self) -> List[AllocationRecord]:
        return self.ledger.records()

    def last_round(self) -> int:
        """آخرین دور ثبت‌شده؛ دوری که هیچ واگذاری نداشته از خلاصه‌اش شناخته می‌شود."""

        summarized = max((int(row["round_no"]) for row in self._summaries), default=0)
        return max(self.ledger.last_round(), summarized)

    def apply_grant(
        self,
        candidate_id: str,
        cell: CellKey,
        *,
        round_no: int,
        choice_rank: int,
    ) -> GrantOutcome:
        """رزرو/تخلیه/درج به‌صورت یک واحد.

        Raises:
            SeatUnavailableError: سلول ظرفیتی ندارد (هیچ تغییری اعمال نشده).
            StoreStepError: شکست در میانهٔ گام؛ همهٔ تغییرات برگردانده شده‌اند.
        """

        if cell not in self.inventory:
            raise SeatUnavailableError(cell)
        current = self.ledger.active_for(candidate_id)
        previous_cell = current.cell if current is not None else None
        with self.inventory.locked(cell, previous_cell):
            if not self.inventory.reserve(cell):
                raise SeatUnavailableError(cell)
            released = False
            deleted = False
            try:
                if current is not None:
                    self.inventory.release(current.cell)
                    released = True
                    self.ledger.delete(current.sequence, round_no=round_no)
                    deleted = True
                allocation = self.ledger.create(
                    candidate_id, cell, round_no=round_no, choice_rank=choice_rank
                )
            except (KeyError, ValueError) as exc:
                if deleted and current is not None:
                    self.ledger.undelete(current.sequence)
                if released and current is not None:
                    self.inventory.reserve(current.cell)
                self.inventory.release(cell)
                raise StoreStepError(candidate_id, str(exc)) from exc
        return GrantOutcome(allocation=allocation, vacated=current)

    def record_round_summary(self, row: RoundSummaryRow) -> None:
        self._summaries.append(row)

    def round_summaries(self) -> List[RoundSummaryRow]:
        return list(self._summaries)
