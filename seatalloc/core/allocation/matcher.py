"""Matcher: هستهٔ تخصیص تک‌به‌تک داوطلبان به سلول‌های صندلی.

داوطلبان دقیقاً به ترتیب ورودی پردازش می‌شوند؛ نتیجهٔ رقابت بر سر یک سلول
فقط به همین ترتیب وابسته است. برای هر داوطلب، فهرست انتخاب‌ها به ترتیب پیمایش
می‌شود و اولین برنامه‌ای که یکی از فیلترهای اهلیت آن ظرفیت دارد با یک گام
اتمیک Store واگذار می‌شود. در حالت ارتقا فقط انتخاب‌های اکیداً بهتر از
تخصیص فعلی امتحان می‌شوند.

مثال::

    >>> from seatalloc.core.allocation.store import InMemorySeatStore
    >>> from seatalloc.core.common.types import (
    ...     Candidate, Category, CellKey, EligibilityFilter, MatchMode, SeatCell,
    ... )
    >>> store = InMemorySeatStore([SeatCell.fresh(CellKey("cs", Category.GEN), 1)])
    >>> result = Matcher(store).allocate(
    ...     [Candidate("1", merit_rank=1, category=Category.GEN, preferences=("cs",))],
    ...     EligibilityFilter(Category.GEN),
    ...     mode=MatchMode.INITIAL,
    ...     round_no=1,
    ... )
    >>> result.granted[0].choice_rank
    1
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple, Union

from seatalloc.core.common.errors import SeatUnavailableError, StoreStepError
from seatalloc.core.common.events import ProgressFn, noop_progress
from seatalloc.core.common.reasons import ReasonCode, build_reason
from seatalloc.core.common.types import (
    Allocation,
    Candidate,
    CellKey,
    EligibilityFilter,
    MatchMode,
)

from .store import SeatStore

EligibilityResolver = Callable[[Candidate], Sequence[EligibilityFilter]]
Eligibility = Union[EligibilityFilter, Sequence[EligibilityFilter], EligibilityResolver]

__all__ = [
    "Eligibility",
    "EligibilityResolver",
    "MatchGrant",
    "MatchFailure",
    "VacateRecord",
    "MatchResult",
    "Matcher",
]


@dataclass(frozen=True)
class MatchGrant:
    """یک واگذاری موفق."""

    candidate_id: str
    cell: CellKey
    choice_rank: int
    round_no: int
    sequence: int
    previous_choice_rank: int | None = None


@dataclass(frozen=True)
class MatchFailure:
    """عدم تخصیص به‌عنوان دادهٔ خروجی (نه خطا)."""

    candidate_id: str
    reason: ReasonCode
    message: str
    round_no: int
    current_choice_rank: int | None = None


@dataclass(frozen=True)
class VacateRecord:
    """صندلی شناوری که با ارتقای دارنده‌اش آزاد شد."""

    candidate_id: str
    cell: CellKey
    choice_rank: int
    round_no: int
    sequence: int


@dataclass
class MatchResult:
    """خروجی سه‌تایی Matcher."""

    granted: List[MatchGrant] = field(default_factory=list)
    failed: List[MatchFailure] = field(default_factory=list)
    vacated: List[VacateRecord] = field(default_factory=list)

    def extend(self, other: "MatchResult") -> "MatchResult":
        self.granted.extend(other.granted)
        self.failed.extend(other.failed)
        self.vacated.extend(other.vacated)
        return self

    @property
    def counts(self) -> dict[str, int]:
        return {
            "granted": len(self.granted),
            "failed": len(self.failed),
            "vacated": len(self.vacated),
        }


def _resolver(eligibility: Eligibility) -> EligibilityResolver:
    if isinstance(eligibility, EligibilityFilter):
        fixed: Tuple[EligibilityFilter, ...] = (eligibility,)
        return lambda _candidate: fixed
    if callable(eligibility):
        return eligibility
    filters = tuple(eligibility)
    return lambda _candidate: filters


class Matcher:
    """واگذاری صندلی به فهرست مرتب داوطلبان روی یک Store تزریق‌شده."""

    def __init__(self, store: SeatStore) -> None:
        self._store = store

    def allocate(
        self,
        candidates: Sequence[Candidate],
        eligibility: Eligibility,
        *,
        mode: MatchMode,
        round_no: int,
        progress: ProgressFn = noop_progress,
    ) -> MatchResult:
        """اجرای Matcher روی داوطلبان به همان ترتیب ورودی.

        Raises:
            StoreUnavailableError: Store در دسترس نیست؛ به فراخوان منتقل می‌شود.
        """

        resolve = _resolver(eligibility)
        result = MatchResult()
        total = max(len(candidates), 1)
        for idx, candidate in enumerate(candidates, start=1):
            progress(int(idx * 100 / total), f"matching {idx}/{total}")
            self._allocate_one(candidate, resolve(candidate), mode=mode, round_no=round_no, result=result)
        return result

    def _allocate_one(
        self,
        candidate: Candidate,
        filters: Sequence[EligibilityFilter],
        *,
        mode: MatchMode,
        round_no: int,
        result: MatchResult,
    ) -> None:
        current = self._store.active_allocation(candidate.candidate_id)
        preferences = candidate.preferences
        if mode is MatchMode.UPGRADE and current is not None:
            preferences = preferences[: max(current.choice_rank - 1, 0)]

        for choice_rank, program in enumerate(preferences, start=1):
            for eligibility_filter in filters:
                cell = eligibility_filter.cell_for(program)
                if current is not None and cell == current.cell:
                    continue
                if self._store.capacity_of(cell) <= 0:
                    continue
                try:
                    outcome = self._store.apply_grant(
                        candidate.candidate_id,
                        cell,
                        round_no=round_no,
                        choice_rank=choice_rank,
                    )
                except SeatUnavailableError:
                    continue
                except StoreStepError as exc:
                    result.failed.append(
                        MatchFailure(
                            candidate_id=candidate.candidate_id,
                            reason=ReasonCode.STORE_STEP_FAILED,
                            message=str(exc),
                            round_no=round_no,
                            current_choice_rank=current.choice_rank if current else None,
                        )
                    )
                    return
                self._record_success(candidate, outcome.allocation, outcome.vacated, result)
                return

        if mode is MatchMode.UPGRADE and current is not None:
            reason = build_reason(ReasonCode.NOT_BETTER_THAN_CURRENT)
        else:
            reason = build_reason(ReasonCode.NO_SEAT_IN_ANY_CHOICE)
        result.failed.append(
            MatchFailure(
                candidate_id=candidate.candidate_id,
                reason=reason.code,
                message=reason.message_fa,
                round_no=round_no,
                current_choice_rank=current.choice_rank if current else None,
            )
        )

    @staticmethod
    def _record_success(
        candidate: Candidate,
        allocation: Allocation,
        vacated: Allocation | None,
        result: MatchResult,
    ) -> None:
        result.granted.append(
            MatchGrant(
                candidate_id=candidate.candidate_id,
                cell=allocation.cell,
                choice_rank=allocation.choice_rank,
                round_no=allocation.round_no,
                sequence=allocation.sequence,
                previous_choice_rank=vacated.choice_rank if vacated else None,
            )
        )
        if vacated is not None:
            result.vacated.append(
                VacateRecord(
                    candidate_id=candidate.candidate_id,
                    cell=vacated.cell,
                    choice_rank=vacated.choice_rank,
                    round_no=allocation.round_no,
                    sequence=vacated.sequence,
                )
            )
