"""دفتر کل تخصیص: تاریخچهٔ append-only با پرچم حذف.

تخصیص فعال هر داوطلب آخرین رکورد حذف‌نشدهٔ اوست. حذف یک رکورد آن را از
تاریخچه پاک نمی‌کند؛ فقط ``deleted`` و دور حذف را ثبت می‌کند تا تاریخچهٔ کامل
پس از پایان اجرا به‌عنوان خروجی نهایی باقی بماند.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Mapping

import pandas as pd

from seatalloc.core.common.types import Allocation, AllocationRecord, CellKey

__all__ = ["AllocationLedger", "LEDGER_COLUMNS", "records_to_frame"]

LEDGER_COLUMNS: tuple[str, ...] = (
    "sequence",
    "candidate_id",
    "program",
    "category",
    "subcategory",
    "round_no",
    "choice_rank",
    "active",
    "deleted_round",
)


class AllocationLedger:
    """تاریخچهٔ تخصیص‌ها با دسترسی سریع به تخصیص فعال."""

    def __init__(self, records: Iterable[AllocationRecord] = ()) -> None:
        self._records: List[AllocationRecord] = []
        self._index: Dict[int, int] = {}
        self._by_candidate: Dict[str, List[int]] = defaultdict(list)
        self._next_sequence = 1
        for record in records:
            self._append(record)

    def _append(self, record: AllocationRecord) -> None:
        sequence = record.allocation.sequence
        if sequence in self._index:
            raise ValueError(f"duplicate ledger sequence {sequence}")
        self._index[sequence] = len(self._records)
        self._records.append(record)
        self._by_candidate[record.allocation.candidate_id].append(sequence)
        self._next_sequence = max(self._next_sequence, sequence + 1)

    def create(self, candidate_id: str, cell: CellKey, *, round_no: int, choice_rank: int) -> Allocation:
        """درج تخصیص جدید با شمارهٔ ترتیبی بعدی."""

        allocation = Allocation(
            candidate_id=candidate_id,
            cell=cell,
            round_no=round_no,
            choice_rank=choice_rank,
            sequence=self._next_sequence,
        )
        self._append(AllocationRecord(allocation))
        return allocation

    def delete(self, sequence: int, *, round_no: int) -> AllocationRecord:
        """علامت‌گذاری یک تخصیص فعال به‌عنوان حذف‌شده."""

        position = self._index[sequence]
        record = self._records[position]
        if record.deleted:
            raise ValueError(f"allocation {sequence} already deleted")
        updated = AllocationRecord(record.allocation, deleted=True, deleted_round=round_no)
        self._records[position] = updated
        return updated

    def undelete(self, sequence: int) -> None:
        """بازگردانی حذف در rollback گام اتمیک."""

        position = self._index[sequence]
        self._records[position] = AllocationRecord(self._records[position].allocation)

    def discard_last(self, sequence: int) -> None:
        """حذف فیزیکی آخرین درج؛ فقط برای rollback گام اتمیک."""

        if not self._records or self._records[-1].allocation.sequence != sequence:
            raise ValueError("only the most recent allocation can be discarded")
        record = self._records.pop()
        del self._index[sequence]
        self._by_candidate[record.allocation.candidate_id].remove(sequence)
        self._next_sequence = sequence

    # ------------------------------------------------------------------ reads
    def active_for(self, candidate_id: str) -> Allocation | None:
        for sequence in reversed(self._by_candidate.get(candidate_id, [])):
            record = self._records[self._index[sequence]]
            if not record.deleted:
                return record.allocation
        return None

    def history_for(self, candidate_id: str) -> List[AllocationRecord]:
        return [self._records[self._index[seq]] for seq in self._by_candidate.get(candidate_id, [])]

    def active_records(self) -> List[Allocation]:
        """همهٔ رکوردهای حذف‌نشده (بدون ادغام بر اساس داوطلب)."""

        return [record.allocation for record in self._records if not record.deleted]

    def active_by_candidate(self) -> Mapping[str, Allocation]:
        active: Dict[str, Allocation] = {}
        for allocation in self.active_records():
            active[allocation.candidate_id] = allocation
        return active

    def active_count(self, cell: CellKey) -> int:
        return sum(1 for allocation in self.active_records() if allocation.cell == cell)

    def active_counts(self) -> Counter[CellKey]:
        return Counter(allocation.cell for allocation in self.active_records())

    def records(self) -> List[AllocationRecord]:
        return list(self._records)

    def last_round(self) -> int:
        """بزرگ‌ترین شمارهٔ دور ثبت‌شده؛ صفر برای دفتر خالی."""

        return max((record.allocation.round_no for record in self._records), default=0)

    def __len__(self) -> int:
        return len(self._records)

    def to_frame(self) -> pd.DataFrame:
        return records_to_frame(self._records)


def records_to_frame(records: Iterable[AllocationRecord]) -> pd.DataFrame:
    """تبدیل رکوردهای دفتر کل به DataFrame با ستون‌های پایدار."""

    rows = [
        {
            "sequence": record.allocation.sequence,
            "candidate_id": record.allocation.candidate_id,
            "program": record.allocation.cell.program,
            "category": record.allocation.cell.category.value,
            "subcategory": record.allocation.cell.subcategory.value,
            "round_no": record.allocation.round_no,
            "choice_rank": record.allocation.choice_rank,
            "active": record.active,
            "deleted_round": record.deleted_round,
        }
        for record in records
    ]
    return pd.DataFrame(rows, columns=list(LEDGER_COLUMNS))
