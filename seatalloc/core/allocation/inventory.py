"""موجودی صندلی‌ها: ظرفیت باقی‌مانده به‌ازای هر سلول اهلیت.

هر سلول یک قفل اختصاصی دارد تا رزرو/آزادسازی روی یک سلول هرگز با هم تداخل
نکنند. ظرفیت هیچ‌گاه منفی نمی‌شود و از ظرفیت اولیه نیز بیشتر نمی‌شود.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterable, Iterator, List

import pandas as pd

from seatalloc.core.common.types import CellKey, SeatCell

__all__ = ["SeatInventory"]


class SeatInventory:
    """نگهداری ظرفیت هر سلول با عملیات اتمیک reserve/release."""

    def __init__(self, cells: Iterable[SeatCell] = ()) -> None:
        self._initial: Dict[CellKey, int] = {}
        self._remaining: Dict[CellKey, int] = {}
        self._locks: Dict[CellKey, threading.Lock] = {}
        for cell in cells:
            self.add_cell(cell)

    def add_cell(self, cell: SeatCell) -> None:
        """ثبت سلول تازه؛ سلول‌ها فقط یک‌بار ساخته می‌شوند."""

        if cell.key in self._initial:
            raise ValueError(f"seat cell {cell.key} already registered")
        self._initial[cell.key] = int(cell.initial_capacity)
        self._remaining[cell.key] = int(cell.capacity)
        self._locks[cell.key] = threading.Lock()

    def __contains__(self, key: object) -> bool:
        return key in self._initial

    def __len__(self) -> int:
        return len(self._initial)

    @contextmanager
    def locked(self, *keys: CellKey | None) -> Iterator[None]:
        """بخش بحرانی روی چند سلول با ترتیب ثابت برای جلوگیری از بن‌بست."""

        ordered = sorted({key for key in keys if key is not None and key in self._locks})
        with ExitStack() as stack:
            for key in ordered:
                stack.enter_context(self._locks[key])
            yield

    # عملیات زیر فرض می‌کنند فراخوان در صورت نیاز قفل را گرفته است.
    def reserve(self, key: CellKey) -> bool:
        """کاهش ظرفیت در صورت مثبت بودن؛ در غیر این صورت False."""

        remaining = self._remaining.get(key, 0)
        if remaining <= 0:
            return False
        self._remaining[key] = remaining - 1
        return True

    def release(self, key: CellKey) -> None:
        """افزایش ظرفیت؛ عبور از ظرفیت اولیه خطای منطقی است."""

        if key not in self._remaining:
            raise KeyError(f"seat cell {key} is not registered")
        if self._remaining[key] >= self._initial[key]:
            raise ValueError(f"CAPACITY_OVERFLOW: release would exceed initial capacity of {key}")
        self._remaining[key] += 1

    def capacity_of(self, key: CellKey) -> int:
        return self._remaining.get(key, 0)

    def initial_capacity_of(self, key: CellKey) -> int:
        return self._initial.get(key, 0)

    def cells(self) -> List[SeatCell]:
        return [
            SeatCell(key=key, capacity=self._remaining[key], initial_capacity=self._initial[key])
            for key in sorted(self._initial)
        ]

    def open_cells(self) -> List[SeatCell]:
        """سلول‌هایی که هنوز ظرفیت دارند."""

        return [cell for cell in self.cells() if cell.capacity > 0]

    def total_capacity(self) -> int:
        return sum(self._remaining.values())

    def to_frame(self) -> pd.DataFrame:
        """نمای جدولی موجودی برای گزارش و QA."""

        rows = [
            {
                "program": cell.key.program,
                "category": cell.key.category.value,
                "subcategory": cell.key.subcategory.value,
                "initial_capacity": cell.initial_capacity,
                "capacity": cell.capacity,
            }
            for cell in self.cells()
        ]
        return pd.DataFrame(
            rows,
            columns=["program", "category", "subcategory", "initial_capacity", "capacity"],
        )
