from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

import pytest

from seatalloc.core.common.types import (
    Allocation,
    AllocationRecord,
    Candidate,
    Category,
    CellKey,
    SeatCell,
    Subcategory,
)
from seatalloc.core.policy.config import CategoryPolicy
from seatalloc.core.policy_loader import default_policy, parse_policy_dict

REPO_ROOT = Path(__file__).resolve().parents[1]
POLICY_PATH = REPO_ROOT / "config" / "policy.json"
LOGGING_CONFIG_PATH = REPO_ROOT / "config" / "logging.yaml"


def make_candidate(
    candidate_id: str,
    merit_rank: int,
    preferences: Sequence[str] = (),
    *,
    category: Category = Category.GEN,
    subcategory: Subcategory = Subcategory.DEFAULT,
    **metrics: object,
) -> Candidate:
    """ساخت داوطلب آزمایشی با مقادیر پیش‌فرض دستهٔ عمومی.

    مثال:
        >>> make_candidate("1", 5, ["progA"]).preferences
        ('progA',)
    """

    return Candidate(
        candidate_id=candidate_id,
        merit_rank=merit_rank,
        category=category,
        subcategory=subcategory,
        preferences=tuple(preferences),
        **metrics,  # type: ignore[arg-type]
    )


def make_cell(
    program: str,
    capacity: int,
    category: Category = Category.GEN,
    subcategory: Subcategory = Subcategory.DEFAULT,
) -> SeatCell:
    return SeatCell.fresh(CellKey(program, category, subcategory), capacity)


def make_record(
    candidate_id: str,
    cell: CellKey,
    *,
    round_no: int,
    choice_rank: int,
    sequence: int,
    deleted_round: int | None = None,
) -> AllocationRecord:
    """رکورد دفتر کل برای بازسازی وضعیت یک اجرای قبلی."""

    return AllocationRecord(
        allocation=Allocation(
            candidate_id=candidate_id,
            cell=cell,
            round_no=round_no,
            choice_rank=choice_rank,
            sequence=sequence,
        ),
        deleted=deleted_round is not None,
        deleted_round=deleted_round,
    )


def build_policy(categories: Iterable[dict], **overrides: object) -> CategoryPolicy:
    payload: dict[str, object] = {
        "version": "1.0.0",
        "general_category": "GEN",
        "categories": list(categories),
    }
    payload.update(overrides)
    return parse_policy_dict(payload)


@pytest.fixture
def policy() -> CategoryPolicy:
    """Policy پیش‌فرض با همهٔ دسته‌ها و زیردسته‌ها."""

    return default_policy()


@pytest.fixture
def gen_only_policy() -> CategoryPolicy:
    """Policy حداقلی: فقط دستهٔ عمومی بدون زیردسته؛ هر دور یک فاز ارتقا دارد."""

    return build_policy([{"category": "GEN"}])


@pytest.fixture
def gen_ews_policy() -> CategoryPolicy:
    return build_policy([{"category": "GEN"}, {"category": "EWS", "home_is_default": True}])
