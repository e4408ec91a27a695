"""منطق مرتب‌سازی داوطلبان برای رقابت بر سر ظرفیت.

زنجیرهٔ تساوی‌شکن ثابت است: ابتدا معیار اصلی (با جهت «بهتر» خودش) و سپس
رتبهٔ شایستگی سراسری. مقادیر گمشدهٔ معیار اصلی همیشه در انتها قرار می‌گیرند.
مرتب‌سازی پایدار است؛ بنابراین ترتیب ورودی برای رکوردهای کاملاً برابر حفظ
می‌شود و خروجی برای ورودی برابر دترمینیستیک است.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .types import METRIC_NAMES, Candidate, MetricName

__all__ = ["TieBreakRule", "sort_candidates", "ranking_key"]


@dataclass(frozen=True)
class TieBreakRule:
    """تعریف یک معیار تساوی‌شکن.

    Attributes:
        name: نام معیار در Policy (مثلاً ``"activity_score"``).
        metric: نام فیلد داوطلب که مقدار از آن خوانده می‌شود.
        ascending: اگر True باشد مقدار کمتر بهتر است.
    """

    name: str
    metric: MetricName
    ascending: bool = True

    def __post_init__(self) -> None:
        if self.metric not in METRIC_NAMES:
            raise ValueError(f"Unknown ranking metric '{self.metric}'")


def _metric_component(value: object, ascending: bool) -> Tuple[int, float]:
    if value is None:
        return (1, 0.0)
    number = float(value)  # type: ignore[arg-type]
    if math.isnan(number):
        return (1, 0.0)
    return (0, number if ascending else -number)


def ranking_key(candidate: Candidate, rule: TieBreakRule) -> Tuple[int, float, int]:
    """کلید مرتب‌سازی یک داوطلب: (گمشده؟، معیار اصلی، رتبهٔ شایستگی)."""

    missing, primary = _metric_component(candidate.metric(rule.metric), rule.ascending)
    return (missing, primary, int(candidate.merit_rank))


def sort_candidates(candidates: Iterable[Candidate], rule: TieBreakRule) -> List[Candidate]:
    """مرتب‌سازی پایدار داوطلبان طبق معیار و سپس رتبهٔ شایستگی.

    مثال::

        >>> from seatalloc.core.common.types import Category
        >>> a = Candidate("a", merit_rank=9, category=Category.GEN, activity_score=80)
        >>> b = Candidate("b", merit_rank=4, category=Category.GEN, activity_score=80)
        >>> rule = TieBreakRule("activity_score", "activity_score", ascending=False)
        >>> [c.candidate_id for c in sort_candidates([a, b], rule)]
        ['b', 'a']
    """

    return sorted(candidates, key=lambda candidate: ranking_key(candidate, rule))
