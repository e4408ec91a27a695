from __future__ import annotations

from seatalloc.core.common.types import Category, CellKey, SeatCell
from seatalloc.core.qa.invariants import (
    check_ALLOC_01,
    check_ALLOC_02,
    check_ALLOC_03,
    check_SEAT_01,
    run_all_invariants,
)
from tests.conftest import make_record

CS = CellKey("cs", Category.GEN)
EE = CellKey("ee", Category.GEN)


def test_consistent_state_passes() -> None:
    history = [
        make_record("1", EE, round_no=1, choice_rank=2, sequence=1, deleted_round=2),
        make_record("1", CS, round_no=2, choice_rank=1, sequence=2),
    ]
    cells = [SeatCell(CS, capacity=0, initial_capacity=1), SeatCell(EE, capacity=1, initial_capacity=1)]
    active = [record.allocation for record in history if record.active]

    report = run_all_invariants(cells=cells, active=active, history=history, round_no=2)

    assert report.passed
    summary = report.to_summary_frame()
    assert summary["status"].tolist() == ["PASS"] * 5
    assert set(summary["round_no"]) == {2}


def test_capacity_balance_violation() -> None:
    record = make_record("1", CS, round_no=1, choice_rank=1, sequence=1)
    cells = [SeatCell(CS, capacity=1, initial_capacity=1)]

    result = check_SEAT_01(cells=cells, active=[record.allocation])

    assert not result.passed
    assert result.violations[0].details["active"] == 1


def test_active_in_unknown_cell_is_reported() -> None:
    record = make_record("1", EE, round_no=1, choice_rank=1, sequence=1)
    result = check_SEAT_01(cells=[SeatCell(CS, capacity=1, initial_capacity=1)], active=[record.allocation])
    assert [v.details["cell"] for v in result.violations] == ["ee/GEN/DEFAULT"]


def test_multiple_active_allocations() -> None:
    active = [
        make_record("1", CS, round_no=1, choice_rank=1, sequence=1).allocation,
        make_record("1", EE, round_no=1, choice_rank=2, sequence=2).allocation,
    ]
    result = check_ALLOC_01(active=active)
    assert result.violations[0].details == {"candidate_id": "1", "active": 2}


def test_regressing_choice_rank() -> None:
    history = [
        make_record("1", CS, round_no=1, choice_rank=2, sequence=1, deleted_round=2),
        make_record("1", EE, round_no=2, choice_rank=3, sequence=2),
    ]
    result = check_ALLOC_02(history=history)
    assert not result.passed
    assert result.violations[0].details["choice_rank"] == 3


def test_frozen_allocation_changed() -> None:
    history = [
        make_record("1", CS, round_no=1, choice_rank=1, sequence=1, deleted_round=2),
        make_record("1", CS, round_no=2, choice_rank=1, sequence=2),
    ]
    result = check_ALLOC_03(history=history)
    assert not result.passed
    assert result.violations[0].details["later_records"] == 1


def test_details_frame_lists_violation_fields() -> None:
    record = make_record("1", CS, round_no=1, choice_rank=1, sequence=1)
    report = run_all_invariants(
        cells=[SeatCell(CS, capacity=1, initial_capacity=1)],
        active=[record.allocation],
        history=[record],
    )
    details = report.to_details_frame("QA_RULE_SEAT_01")
    assert list(details.columns[:3]) == ["rule_id", "level", "message"]
    assert details.loc[0, "cell"] == "cs/GEN/DEFAULT"
    assert len(report.violations_by_rule("QA_RULE_ALLOC_01")) == 0
