from __future__ import annotations

import pytest

from seatalloc.core.allocation.ledger import LEDGER_COLUMNS, AllocationLedger
from seatalloc.core.common.types import Category, CellKey

CS = CellKey("cs", Category.GEN)
EE = CellKey("ee", Category.GEN)


def test_active_is_latest_non_deleted() -> None:
    ledger = AllocationLedger()
    first = ledger.create("1", EE, round_no=1, choice_rank=2)
    ledger.delete(first.sequence, round_no=2)
    second = ledger.create("1", CS, round_no=2, choice_rank=1)

    assert ledger.active_for("1") == second
    assert [record.deleted for record in ledger.history_for("1")] == [True, False]
    assert ledger.history_for("1")[0].deleted_round == 2
    assert ledger.last_round() == 2
    assert ledger.active_counts() == {CS: 1}


def test_sequences_are_monotonic() -> None:
    ledger = AllocationLedger()
    seqs = [ledger.create(str(idx), CS, round_no=1, choice_rank=1).sequence for idx in range(3)]
    assert seqs == [1, 2, 3]


def test_double_delete_rejected() -> None:
    ledger = AllocationLedger()
    allocation = ledger.create("1", CS, round_no=1, choice_rank=1)
    ledger.delete(allocation.sequence, round_no=1)
    with pytest.raises(ValueError):
        ledger.delete(allocation.sequence, round_no=2)


def test_rollback_helpers() -> None:
    ledger = AllocationLedger()
    old = ledger.create("1", EE, round_no=1, choice_rank=2)
    ledger.delete(old.sequence, round_no=1)
    new = ledger.create("1", CS, round_no=1, choice_rank=1)

    ledger.discard_last(new.sequence)
    ledger.undelete(old.sequence)

    assert ledger.active_for("1") == old
    assert len(ledger) == 1
    assert ledger.create("2", CS, round_no=1, choice_rank=1).sequence == new.sequence


def test_to_frame_columns() -> None:
    ledger = AllocationLedger()
    ledger.create("1", CS, round_no=1, choice_rank=1)
    frame = ledger.to_frame()
    assert tuple(frame.columns) == LEDGER_COLUMNS
    assert frame.loc[0, "active"]
    assert frame.loc[0, "program"] == "cs"


def test_active_views_per_candidate_and_cell() -> None:
    ledger = AllocationLedger()
    moved = ledger.create("1", EE, round_no=1, choice_rank=2)
    ledger.create("2", EE, round_no=1, choice_rank=1)
    ledger.delete(moved.sequence, round_no=2)
    upgraded = ledger.create("1", CS, round_no=2, choice_rank=1)

    assert ledger.active_by_candidate()["1"] == upgraded
    assert set(ledger.active_by_candidate()) == {"1", "2"}
    assert ledger.active_count(EE) == 1
    assert ledger.active_count(CS) == 1
    assert ledger.active_counts() == {EE: 1, CS: 1}
