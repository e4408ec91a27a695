from __future__ import annotations

"""لایهٔ مرکزی QA برای اینورینت‌های موجودی صندلی و دفتر کل."""

from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

import pandas as pd

from seatalloc.core.common.types import Allocation, AllocationRecord, SeatCell

RuleId = str

__all__ = [
    "QaViolation",
    "QaRuleResult",
    "QaReport",
    "RULE_DESCRIPTIONS",
    "run_all_invariants",
    "check_SEAT_01",
    "check_SEAT_02",
    "check_ALLOC_01",
    "check_ALLOC_02",
    "check_ALLOC_03",
]

RULE_DESCRIPTIONS: Mapping[RuleId, str] = {
    "QA_RULE_SEAT_01": "ظرفیت + تخصیص‌های فعال هر سلول برابر ظرفیت اولیه است",
    "QA_RULE_SEAT_02": "ظرفیت هر سلول در بازهٔ [0, ظرفیت اولیه] است",
    "QA_RULE_ALLOC_01": "هر داوطلب حداکثر یک تخصیص فعال دارد",
    "QA_RULE_ALLOC_02": "رتبهٔ انتخاب در تاریخچهٔ هر داوطلب هرگز بدتر نمی‌شود",
    "QA_RULE_ALLOC_03": "تخصیص منجمد (انتخاب اول) پس از ثبت تغییر نمی‌کند",
}


@dataclass(frozen=True)
class QaViolation:
    """نمایش یک تخطی از قانون QA.

    Attributes
    ----------
    rule_id:
        شناسهٔ پایدار قانون (مثلاً ``"QA_RULE_SEAT_01"``).
    level:
        سطح تخطی؛ در این نسخه فقط ``"error"`` پشتیبانی می‌شود.
    message:
        توضیح خوانا از علت تخطی.
    details:
        دادهٔ ساخت‌یافتهٔ اختیاری برای گزارش‌های اکسل/لاگ.
    """

    rule_id: RuleId
    level: str
    message: str
    details: Mapping[str, object] | None = None


@dataclass(frozen=True)
class QaRuleResult:
    """نتیجهٔ اجرای یک قانون واحد QA."""

    rule_id: RuleId
    passed: bool
    violations: list[QaViolation]


@dataclass(frozen=True)
class QaReport:
    """گزارش QA یک دور تخصیص."""

    results: list[QaRuleResult]
    round_no: int | None = None

    @property
    def violations(self) -> list[QaViolation]:
        merged: list[QaViolation] = []
        for result in self.results:
            merged.extend(result.violations)
        return merged

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    def violations_by_rule(self, rule_id: RuleId) -> list[QaViolation]:
        return [
            violation
            for result in self.results
            if result.rule_id == rule_id
            for violation in result.violations
        ]

    def to_summary_frame(self, *, descriptions: Mapping[str, str] | None = None) -> pd.DataFrame:
        """خلاصهٔ قوانین به‌صورت DataFrame."""

        descriptions = RULE_DESCRIPTIONS if descriptions is None else descriptions
        rows = []
        for result in sorted(self.results, key=lambda item: item.rule_id):
            rows.append(
                {
                    "round_no": self.round_no,
                    "rule_id": result.rule_id,
                    "description": descriptions.get(result.rule_id, ""),
                    "status": "PASS" if result.passed else "FAIL",
                    "violations_count": len(result.violations),
                }
            )
        return pd.DataFrame(
            rows,
            columns=["round_no", "rule_id", "description", "status", "violations_count"],
        )

    def to_details_frame(self, rule_id: RuleId | None = None) -> pd.DataFrame:
        """تبدیل تخطی‌های یک قانون (یا همهٔ قوانین) به DataFrame ساخت‌یافته."""

        violations = self.violations if rule_id is None else self.violations_by_rule(rule_id)
        base_columns = ["rule_id", "level", "message"]
        rows: list[dict[str, object]] = []
        detail_keys: set[str] = set()
        for violation in violations:
            detail_map = violation.details or {}
            detail_keys.update(detail_map.keys())
            row = {
                "rule_id": violation.rule_id,
                "level": violation.level,
                "message": violation.message,
            }
            row.update(detail_map)
            rows.append(row)

        ordered_columns = base_columns + sorted(detail_keys)
        frame = pd.DataFrame(rows, columns=ordered_columns)
        if not frame.empty:
            frame = frame.sort_values(by=["rule_id"], kind="stable").reset_index(drop=True)
        return frame


def run_all_invariants(
    *,
    cells: Sequence[SeatCell],
    active: Sequence[Allocation],
    history: Sequence[AllocationRecord],
    round_no: int | None = None,
) -> QaReport:
    """اجرای همهٔ قوانین QA روی یک عکس از وضعیت Store."""

    results = [
        check_SEAT_01(cells=cells, active=active),
        check_SEAT_02(cells=cells),
        check_ALLOC_01(active=active),
        check_ALLOC_02(history=history),
        check_ALLOC_03(history=history),
    ]
    return QaReport(results=results, round_no=round_no)


def _result(rule_id: RuleId, violations: list[QaViolation]) -> QaRuleResult:
    return QaRuleResult(rule_id=rule_id, passed=not violations, violations=violations)


def check_SEAT_01(*, cells: Sequence[SeatCell], active: Sequence[Allocation]) -> QaRuleResult:
    """توازن ظرفیت: ``capacity + active == initial`` برای هر سلول."""

    rule_id = "QA_RULE_SEAT_01"
    counts = Counter(allocation.cell for allocation in active)
    known = {cell.key for cell in cells}
    violations: list[QaViolation] = []
    for cell in cells:
        occupied = counts.get(cell.key, 0)
        if cell.capacity + occupied != cell.initial_capacity:
            violations.append(
                QaViolation(
                    rule_id=rule_id,
                    level="error",
                    message="ظرفیت باقی‌مانده با تخصیص‌های فعال سلول هم‌خوان نیست",
                    details={
                        "cell": str(cell.key),
                        "capacity": cell.capacity,
                        "active": occupied,
                        "initial_capacity": cell.initial_capacity,
                    },
                )
            )
    for key in sorted(set(counts) - known):
        violations.append(
            QaViolation(
                rule_id=rule_id,
                level="error",
                message="تخصیص فعال به سلولی ناشناخته اشاره می‌کند",
                details={"cell": str(key), "active": counts[key]},
            )
        )
    return _result(rule_id, violations)


def check_SEAT_02(*, cells: Sequence[SeatCell]) -> QaRuleResult:
    rule_id = "QA_RULE_SEAT_02"
    violations = [
        QaViolation(
            rule_id=rule_id,
            level="error",
            message="ظرفیت سلول خارج از بازهٔ مجاز است",
            details={
                "cell": str(cell.key),
                "capacity": cell.capacity,
                "initial_capacity": cell.initial_capacity,
            },
        )
        for cell in cells
        if not 0 <= cell.capacity <= cell.initial_capacity
    ]
    return _result(rule_id, violations)


def check_ALLOC_01(*, active: Sequence[Allocation]) -> QaRuleResult:
    """هیچ داوطلبی بیش از یک تخصیص فعال ندارد."""

    rule_id = "QA_RULE_ALLOC_01"
    counts = Counter(allocation.candidate_id for allocation in active)
    violations = [
        QaViolation(
            rule_id=rule_id,
            level="error",
            message="داوطلب بیش از یک تخصیص فعال دارد",
            details={"candidate_id": candidate_id, "active": count},
        )
        for candidate_id, count in sorted(counts.items())
        if count > 1
    ]
    return _result(rule_id, violations)


def _history_by_candidate(history: Iterable[AllocationRecord]) -> Mapping[str, list[AllocationRecord]]:
    grouped: dict[str, list[AllocationRecord]] = defaultdict(list)
    for record in sorted(history, key=lambda item: item.allocation.sequence):
        grouped[record.allocation.candidate_id].append(record)
    return grouped


def check_ALLOC_02(*, history: Sequence[AllocationRecord]) -> QaRuleResult:
    """یکنوایی: رتبهٔ انتخاب در واگذاری‌های متوالی افزایش نمی‌یابد."""

    rule_id = "QA_RULE_ALLOC_02"
    violations: list[QaViolation] = []
    for candidate_id, records in _history_by_candidate(history).items():
        for previous, current in zip(records, records[1:]):
            if current.allocation.choice_rank > previous.allocation.choice_rank:
                violations.append(
                    QaViolation(
                        rule_id=rule_id,
                        level="error",
                        message="رتبهٔ انتخاب داوطلب بدتر شده است",
                        details={
                            "candidate_id": candidate_id,
                            "previous_choice_rank": previous.allocation.choice_rank,
                            "choice_rank": current.allocation.choice_rank,
                            "sequence": current.allocation.sequence,
                        },
                    )
                )
    return _result(rule_id, violations)


def check_ALLOC_03(*, history: Sequence[AllocationRecord]) -> QaRuleResult:
    """انجماد: پس از ثبت انتخاب اول، هیچ رکورد دیگری و هیچ حذفی رخ نمی‌دهد."""

    rule_id = "QA_RULE_ALLOC_03"
    violations: list[QaViolation] = []
    for candidate_id, records in _history_by_candidate(history).items():
        frozen_at = next(
            (idx for idx, record in enumerate(records) if record.allocation.is_frozen),
            None,
        )
        if frozen_at is None:
            continue
        frozen = records[frozen_at]
        if frozen.deleted or frozen_at != len(records) - 1:
            violations.append(
                QaViolation(
                    rule_id=rule_id,
                    level="error",
                    message="تخصیص منجمد داوطلب تغییر کرده است",
                    details={
                        "candidate_id": candidate_id,
                        "frozen_sequence": frozen.allocation.sequence,
                        "deleted_round": frozen.deleted_round,
                        "later_records": len(records) - frozen_at - 1,
                    },
                )
            )
    return _result(rule_id, violations)
