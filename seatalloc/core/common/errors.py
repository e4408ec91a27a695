"""تعریف خطاهای دامنه برای هستهٔ تخصیص صندلی."""
from __future__ import annotations


class DomainError(Exception):
    """پایهٔ تمام خطاهای دامنه‌ای."""


class StoreError(DomainError):
    """پایهٔ خطاهای Store (موجودی + دفتر کل)."""


class SeatUnavailableError(StoreError):
    """ظرفیت سلول بین بررسی و رزرو تمام شد؛ Matcher انتخاب بعدی را امتحان می‌کند."""

    def __init__(self, cell: object) -> None:
        super().__init__(f"no capacity left in {cell}")
        self.cell = cell


class StoreStepError(StoreError):
    """شکست گام اتمیک برای یک داوطلب؛ فقط همان داوطلب کنار گذاشته می‌شود."""

    def __init__(self, candidate_id: str, message: str) -> None:
        super().__init__(f"{candidate_id}: {message}")
        self.candidate_id = candidate_id


class StoreUnavailableError(StoreError):
    """Store در دسترس نیست؛ برای دور جاری مهلک است."""


__all__ = [
    "DomainError",
    "StoreError",
    "SeatUnavailableError",
    "StoreStepError",
    "StoreUnavailableError",
]
