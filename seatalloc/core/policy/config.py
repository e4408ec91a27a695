"""تعریف پیکربندی سیاست دسته‌ها و زیردسته‌ها (Core only).

ساختارها تغییرناپذیرند و فقط از طریق :mod:`seatalloc.core.policy_loader`
از ``policy.json`` ساخته می‌شوند. هیچ مقدار هاردکدی در Matcher یا ارکستراتور
وجود ندارد؛ ترتیب زیردسته‌ها، معیار تساوی‌شکن هر زیردسته و پرچم «سلول خانه
پیش‌فرض عمودی است» همگی از این ماژول خوانده می‌شوند.

مثال:
    >>> from seatalloc.core.common.types import Category, Subcategory
    >>> rule = CategoryRule(
    ...     category=Category.EWS,
    ...     home_is_default=True,
    ...     subcategories=(SubcategoryRule(Subcategory.PWD, "disability_rank"),),
    ... )
    >>> rule.allows(Subcategory.PWD)
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Sequence, Tuple

from seatalloc.core.common.ranking import TieBreakRule, sort_candidates
from seatalloc.core.common.types import (
    Candidate,
    Category,
    EligibilityFilter,
    Subcategory,
)


@dataclass(frozen=True)
class SubcategoryRule:
    """یک زیردستهٔ افقی زیر یک دستهٔ عمودی با نام معیار تساوی‌شکن."""

    subcategory: Subcategory
    criterion: str


@dataclass(frozen=True)
class CategoryRule:
    """قواعد یک دستهٔ عمودی."""

    category: Category
    home_is_default: bool
    subcategories: Tuple[SubcategoryRule, ...] = tuple()

    def allows(self, subcategory: Subcategory) -> bool:
        return any(rule.subcategory is subcategory for rule in self.subcategories)

    def subcategory_rule(self, subcategory: Subcategory) -> SubcategoryRule:
        for rule in self.subcategories:
            if rule.subcategory is subcategory:
                return rule
        raise KeyError(f"{subcategory.value} is not configured under {self.category.value}")


@dataclass(frozen=True)
class CategoryPolicy:
    """پیکربندی ایستا و اعتبارسنجی‌شدهٔ رزرو.

    Attributes
    ----------
    version:
        نسخهٔ semver فایل Policy.
    general_category:
        دستهٔ عمومی/آزاد که سلول پیش‌فرض آن برای همه باز است.
    categories:
        قواعد هر دسته به ترتیب پردازش در فازهای رزرو.
    criteria:
        جدول معیارهای تساوی‌شکن بر اساس نام.
    merit_criterion / category_criterion:
        نام معیار فاز اولیه/ارتقا و فاز دستهٔ رزرو.
    max_rounds:
        سقف تعداد دورها.
    max_preferences:
        حداکثر تعداد انتخاب هر داوطلب.
    """

    version: str
    general_category: Category
    categories: Tuple[CategoryRule, ...]
    criteria: Mapping[str, TieBreakRule]
    merit_criterion: str = "merit_rank"
    category_criterion: str = "category_rank"
    max_rounds: int = 10
    max_preferences: int = 7

    def __post_init__(self) -> None:
        seen: set[Category] = set()
        for rule in self.categories:
            if rule.category in seen:
                raise ValueError(f"category '{rule.category.value}' defined twice")
            seen.add(rule.category)
            for sub_rule in rule.subcategories:
                if not sub_rule.subcategory.is_horizontal:
                    raise ValueError(
                        f"{rule.category.value}: DEFAULT cannot be listed as a horizontal subcategory"
                    )
                if sub_rule.criterion not in self.criteria:
                    raise ValueError(
                        f"{rule.category.value}/{sub_rule.subcategory.value}: "
                        f"unknown tie-break '{sub_rule.criterion}'"
                    )
        if self.general_category not in seen:
            raise ValueError("general category must be configured")
        for name in (self.merit_criterion, self.category_criterion):
            if name not in self.criteria:
                raise ValueError(f"unknown tie-break '{name}'")
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        if not 1 <= self.max_preferences <= 7:
            raise ValueError("max_preferences must be within [1, 7]")

    # ------------------------------------------------------------------ lookup
    def category_rule(self, category: Category) -> CategoryRule:
        for rule in self.categories:
            if rule.category is category:
                return rule
        raise KeyError(f"category '{category.value}' is not configured")

    def reserved_categories(self) -> Tuple[CategoryRule, ...]:
        """دسته‌های رزرو (غیرعمومی) به ترتیب Policy."""

        return tuple(rule for rule in self.categories if rule.category is not self.general_category)

    def subcategories_of(self, category: Category) -> Tuple[Subcategory, ...]:
        return tuple(rule.subcategory for rule in self.category_rule(category).subcategories)

    def is_horizontal(self, subcategory: Subcategory) -> bool:
        """زیردستهٔ افقی بودن؛ هر چیزی جز DEFAULT افقی است."""

        return subcategory.is_horizontal

    def criterion(self, name: str) -> TieBreakRule:
        try:
            return self.criteria[name]
        except KeyError as exc:
            raise KeyError(f"tie-break '{name}' is not configured") from exc

    def tie_break_for(self, category: Category, subcategory: Subcategory) -> TieBreakRule:
        """معیار مرتب‌سازی یک سلول؛ سلول پیش‌فرض دسته‌های رزرو با رتبهٔ دسته‌ای."""

        if not subcategory.is_horizontal:
            if category is self.general_category:
                return self.criterion(self.merit_criterion)
            return self.criterion(self.category_criterion)
        sub_rule = self.category_rule(category).subcategory_rule(subcategory)
        return self.criterion(sub_rule.criterion)

    # ------------------------------------------------------------- eligibility
    def eligible_filters(self, candidate: Candidate) -> Tuple[EligibilityFilter, ...]:
        """استخر کامل سلول‌های مجاز یک داوطلب به ترتیب امتحان.

        ترتیب: سلول پیش‌فرض عمومی، زیردستهٔ عمومی (فقط برای اعضای دستهٔ
        عمومی)، سلول خانهٔ دستهٔ رزرو (اگر پیش‌فرض عمودی باشد) و در آخر
        زیردستهٔ همان دستهٔ رزرو.
        """

        general = self.general_category
        filters: List[EligibilityFilter] = [EligibilityFilter(general, Subcategory.DEFAULT)]
        own = self.category_rule(candidate.category)
        sub = candidate.subcategory
        if candidate.category is general:
            if sub.is_horizontal and own.allows(sub):
                filters.append(EligibilityFilter(general, sub))
            return tuple(filters)
        if own.home_is_default:
            filters.append(EligibilityFilter(candidate.category, Subcategory.DEFAULT))
        if sub.is_horizontal and own.allows(sub):
            filters.append(EligibilityFilter(candidate.category, sub))
        return tuple(filters)

    def vertical_filters(self, candidate: Candidate) -> Tuple[EligibilityFilter, ...]:
        """استخر عمودی فاز ارتقای سراسری.

        سلول‌های افقی فقط در فاز هدفمند همان زیردسته و با معیار خودش واگذار
        می‌شوند؛ ارتقای سراسری به سلول پیش‌فرض عمومی و سلول خانهٔ رزرو محدود است.
        """

        return tuple(item for item in self.eligible_filters(candidate) if not item.subcategory.is_horizontal)

    def is_eligible_for(self, candidate: Candidate, category: Category, subcategory: Subcategory) -> bool:
        return EligibilityFilter(category, subcategory) in self.eligible_filters(candidate)

    # ------------------------------------------------------------------ sorting
    def sort_candidates(self, candidates: Iterable[Candidate], criterion: str | TieBreakRule) -> List[Candidate]:
        """مرتب‌سازی پایدار با معیار اصلی و سپس رتبهٔ شایستگی."""

        rule = criterion if isinstance(criterion, TieBreakRule) else self.criterion(criterion)
        return sort_candidates(candidates, rule)

    def validate_candidates(self, candidates: Sequence[Candidate]) -> None:
        """اعتبارسنجی داوطلبان در برابر Policy (دستهٔ تعریف‌شده و سقف انتخاب‌ها)."""

        configured = {rule.category for rule in self.categories}
        seen_ids: set[str] = set()
        for candidate in candidates:
            if candidate.candidate_id in seen_ids:
                raise ValueError(f"duplicate candidate id '{candidate.candidate_id}'")
            seen_ids.add(candidate.candidate_id)
            if candidate.category not in configured:
                raise ValueError(
                    f"candidate {candidate.candidate_id}: category '{candidate.category.value}' not in policy"
                )
            if len(candidate.preferences) > self.max_preferences:
                raise ValueError(
                    f"candidate {candidate.candidate_id}: more than {self.max_preferences} preferences"
                )


__all__ = ["SubcategoryRule", "CategoryRule", "CategoryPolicy"]
