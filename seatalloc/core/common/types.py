"""قراردادهای دادهٔ حوزهٔ تخصیص صندلی (Core-only, بدون I/O).

این ماژول فقط تایپ‌ها را نگه می‌دارد: شمارش‌های بستهٔ دسته/زیردسته، داوطلب،
سلول صندلی و رکورد تخصیص. مقادیر ناشناخته هنگام ساخت رد می‌شوند تا هیچ
fallthrough خاموشی در موتور رخ ندهد.

مثال:
    >>> from seatalloc.core.common.types import Candidate, Category
    >>> c = Candidate("A1", merit_rank=12, category=Category.GEN, preferences=("cs", "ee"))
    >>> c.choice_rank_of("ee")
    2
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal, Tuple, TypedDict

MAX_PREFERENCES = 7

MetricName = Literal[
    "merit_rank",
    "category_rank",
    "disability_rank",
    "activity_score",
    "dependent_priority",
]

METRIC_NAMES: Tuple[MetricName, ...] = (
    "merit_rank",
    "category_rank",
    "disability_rank",
    "activity_score",
    "dependent_priority",
)


class Category(StrEnum):
    """دستهٔ عمودی رزرو؛ ``GEN`` دستهٔ عمومی/آزاد است."""

    GEN = "GEN"
    EWS = "EWS"
    OBC = "OBC"
    SC = "SC"
    ST = "ST"
    RBA = "RBA"


class Subcategory(StrEnum):
    """زیردستهٔ افقی؛ ``DEFAULT`` یعنی سلول پیش‌فرض عمودی همان دسته."""

    DEFAULT = "DEFAULT"
    PWD = "PWD"
    SPORTS = "SPORTS"
    CDP = "CDP"
    CPF = "CPF"

    @property
    def is_horizontal(self) -> bool:
        return self is not Subcategory.DEFAULT


class MatchMode(StrEnum):
    """حالت اجرای Matcher."""

    INITIAL = "initial"
    UPGRADE = "upgrade"


@dataclass(frozen=True, order=True)
class CellKey:
    """کلید سلول صندلی: (برنامه، دسته، زیردسته)."""

    program: str
    category: Category
    subcategory: Subcategory = Subcategory.DEFAULT

    def __str__(self) -> str:
        return f"{self.program}/{self.category.value}/{self.subcategory.value}"


@dataclass(frozen=True)
class EligibilityFilter:
    """فیلتر اهلیت Matcher؛ با برنامه ترکیب می‌شود تا کلید سلول بسازد."""

    category: Category
    subcategory: Subcategory = Subcategory.DEFAULT

    def cell_for(self, program: str) -> CellKey:
        return CellKey(program, self.category, self.subcategory)


@dataclass(frozen=True)
class SeatCell:
    """یک سلول موجودی با ظرفیت اولیه و ظرفیت باقی‌مانده."""

    key: CellKey
    capacity: int
    initial_capacity: int

    def __post_init__(self) -> None:
        if self.initial_capacity < 0:
            raise ValueError(f"initial capacity of {self.key} must be >= 0")
        if not 0 <= self.capacity <= self.initial_capacity:
            raise ValueError(
                f"capacity of {self.key} must be within [0, {self.initial_capacity}]"
            )

    @classmethod
    def fresh(cls, key: CellKey, capacity: int) -> "SeatCell":
        """سلول تازه با ظرفیت کامل."""

        return cls(key=key, capacity=int(capacity), initial_capacity=int(capacity))


@dataclass(frozen=True)
class Candidate:
    """داوطلب تغییرناپذیر؛ تخصیص جاری او در دفتر کل نگهداری می‌شود.

    ``preferences`` تاپلی بدون تکرار با حداکثر هفت برنامه است؛ رتبهٔ انتخاب
    از ۱ شروع می‌شود.
    """

    candidate_id: str
    merit_rank: int
    category: Category
    subcategory: Subcategory = Subcategory.DEFAULT
    preferences: Tuple[str, ...] = field(default_factory=tuple)
    category_rank: int | None = None
    disability_rank: int | None = None
    activity_score: float | None = None
    dependent_priority: int | None = None

    def __post_init__(self) -> None:
        if not str(self.candidate_id).strip():
            raise ValueError("candidate_id must not be empty")
        if not isinstance(self.category, Category):
            raise TypeError(f"category must be Category, got {self.category!r}")
        if not isinstance(self.subcategory, Subcategory):
            raise TypeError(f"subcategory must be Subcategory, got {self.subcategory!r}")
        prefs = tuple(self.preferences)
        if len(prefs) > MAX_PREFERENCES:
            raise ValueError(
                f"candidate {self.candidate_id} has {len(prefs)} preferences (max {MAX_PREFERENCES})"
            )
        if any(not program for program in prefs):
            raise ValueError(f"candidate {self.candidate_id} has an empty preference slot")
        if len(set(prefs)) != len(prefs):
            raise ValueError(f"candidate {self.candidate_id} has duplicate preferences")
        object.__setattr__(self, "preferences", prefs)

    def metric(self, name: MetricName) -> float | int | None:
        """مقدار یک معیار رتبه‌بندی با نام پایدار."""

        return getattr(self, name)

    def choice_rank_of(self, program: str) -> int | None:
        """رتبهٔ انتخاب (۱-پایه) یک برنامه یا None."""

        try:
            return self.preferences.index(program) + 1
        except ValueError:
            return None


@dataclass(frozen=True)
class Allocation:
    """رکورد تخصیص در دفتر کل؛ ``sequence`` ترتیب سراسری درج است."""

    candidate_id: str
    cell: CellKey
    round_no: int
    choice_rank: int
    sequence: int

    @property
    def is_frozen(self) -> bool:
        return self.choice_rank == 1


@dataclass(frozen=True)
class AllocationRecord:
    """ردیف تاریخچهٔ دفتر کل: تخصیص به‌همراه وضعیت حذف."""

    allocation: Allocation
    deleted: bool = False
    deleted_round: int | None = None

    @property
    def active(self) -> bool:
        return not self.deleted


class RoundSummaryRow(TypedDict):
    """ردیف خلاصهٔ هر دور برای گزارش‌گیری."""

    round_no: int
    granted_count: int
    failed_count: int
    frozen_count: int
    floating_count: int
    vacated_count: int
    unseated_count: int


__all__ = [
    "MAX_PREFERENCES",
    "METRIC_NAMES",
    "MetricName",
    "Category",
    "Subcategory",
    "MatchMode",
    "CellKey",
    "EligibilityFilter",
    "SeatCell",
    "Candidate",
    "Allocation",
    "AllocationRecord",
    "RoundSummaryRow",
]
