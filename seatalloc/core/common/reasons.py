"""سیستم مرکزی مدیریت کد/متن دلایل (Core-only).

این ماژول یک SSoT برای ReasonCode فراهم می‌کند تا Matcher، پایشگر همگرایی و
گزارش‌ها پیام یکسانی تولید کنند. مقدار رشته‌ای هر کد همان کدی است که در
دفتر کل و خروجی Excel ثبت می‌شود.

مثال::

    >>> build_reason(ReasonCode.NO_SEAT_IN_ANY_CHOICE).code.value
    'no-seat-in-any-choice'
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Mapping

__all__ = ["ReasonCode", "LocalizedReason", "build_reason", "reason_message"]


class ReasonCode(StrEnum):
    """کدهای یکتای دلایل قابل گزارش."""

    NO_SEAT_IN_ANY_CHOICE = "no-seat-in-any-choice"
    NOT_BETTER_THAN_CURRENT = "not-better-than-current"
    STORE_STEP_FAILED = "store-step-failed"
    NO_ELIGIBLE_CANDIDATES = "no-eligible-candidates"
    ELIGIBLE_SEATED_BETTER = "eligible-seated-better"
    INSUFFICIENT_ELIGIBLE = "insufficient-eligible"
    ELIGIBLE_PREFERRED_OTHER = "eligible-preferred-other"


@dataclass(frozen=True, slots=True)
class LocalizedReason:
    """متن بومی‌شدهٔ دلایل برای گزارش‌گیری انسانی."""

    code: ReasonCode
    message_fa: str


_REASON_MESSAGES_FA: Mapping[ReasonCode, str] = {
    ReasonCode.NO_SEAT_IN_ANY_CHOICE: "در هیچ‌یک از انتخاب‌های داوطلب صندلی خالی واجد شرایط وجود نداشت.",
    ReasonCode.NOT_BETTER_THAN_CURRENT: "صندلی بهتری از تخصیص فعلی داوطلب پیدا نشد.",
    ReasonCode.STORE_STEP_FAILED: "گام اتمیک رزرو/آزادسازی در Store ناکام ماند؛ داوطلب در این مرحله رد شد.",
    ReasonCode.NO_ELIGIBLE_CANDIDATES: "هیچ داوطلب واجد شرایطی این برنامه را انتخاب نکرده است.",
    ReasonCode.ELIGIBLE_SEATED_BETTER: "همهٔ داوطلبان واجد شرایط انتخاب بهتری گرفتند.",
    ReasonCode.INSUFFICIENT_ELIGIBLE: "تعداد داوطلبان واجد شرایط از ظرفیت باقی‌مانده کمتر است.",
    ReasonCode.ELIGIBLE_PREFERRED_OTHER: "داوطلبان واجد شرایط در انتخاب‌های دیگر خود پذیرفته شدند.",
}


def reason_message(code: ReasonCode) -> str:
    """برگرداندن متن فارسی ذخیره‌شده برای یک کد دلیل."""

    try:
        return _REASON_MESSAGES_FA[code]
    except KeyError as exc:  # pragma: no cover - نگهبان نسخه‌های آینده
        raise ValueError(f"Reason code '{code}' تعریف نشده است") from exc


def build_reason(code: ReasonCode) -> LocalizedReason:
    """ساخت شیء :class:`LocalizedReason` با پیام فارسی پایدار."""

    return LocalizedReason(code=code, message_fa=reason_message(code))
