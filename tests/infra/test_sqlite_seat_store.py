from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from seatalloc.core.allocation.store import SeatStore
from seatalloc.core.common.errors import SeatUnavailableError, StoreStepError, StoreUnavailableError
from seatalloc.core.common.events import EventLevel, RunEvent
from seatalloc.core.common.types import Category, CellKey, RoundSummaryRow, Subcategory
from seatalloc.infra.errors import DatabaseOperationError, SchemaVersionMismatchError
from seatalloc.infra.seat_store import SqliteSeatStore
from tests.conftest import make_cell

CS = CellKey("cs", Category.GEN)
EE = CellKey("ee", Category.GEN)
CS_PWD = CellKey("cs", Category.SC, Subcategory.PWD)


@pytest.fixture
def store(tmp_path: Path):
    with SqliteSeatStore(tmp_path / "seats.db") as seat_store:
        seat_store.seed([make_cell("cs", 1), make_cell("ee", 1), make_cell("cs", 2, Category.SC, Subcategory.PWD)])
        yield seat_store


def test_protocol_and_seed(store: SqliteSeatStore) -> None:
    assert isinstance(store, SeatStore)
    assert store.is_seeded()
    assert [cell.key for cell in store.cells()] == sorted([CS, EE, CS_PWD])
    assert store.capacity_of(CS_PWD) == 2
    assert store.capacity_of(CellKey("zz", Category.GEN)) == 0
    with pytest.raises(DatabaseOperationError):
        store.seed([make_cell("cs", 5)])


def test_grant_and_vacate_in_one_transaction(store: SqliteSeatStore) -> None:
    first = store.apply_grant("1", EE, round_no=1, choice_rank=2)
    second = store.apply_grant("1", CS, round_no=2, choice_rank=1)

    assert second.vacated == first.allocation
    assert store.capacity_of(EE) == 1
    assert store.capacity_of(CS) == 0
    assert store.active_allocation("1") == second.allocation
    assert store.cells_frame()["capacity"].tolist() == [0, 2, 1]
    assert store.ledger_frame()["active"].tolist() == [False, True]
    assert [(r.deleted, r.deleted_round) for r in store.history()] == [(True, 2), (False, None)]
    assert store.last_round() == 2
    assert len(store.active_records()) == 1


def test_full_cell_raises_without_side_effects(store: SqliteSeatStore) -> None:
    store.apply_grant("1", CS, round_no=1, choice_rank=1)
    with pytest.raises(SeatUnavailableError):
        store.apply_grant("2", CS, round_no=1, choice_rank=1)
    assert store.capacity_of(CS) == 0
    assert len(store.history()) == 1
    assert not store.connect().in_transaction


def test_constraint_failure_rolls_back(store: SqliteSeatStore) -> None:
    with pytest.raises(StoreStepError):
        store.apply_grant("1", CS, round_no=1, choice_rank=8)
    assert store.capacity_of(CS) == 1
    assert store.history() == []
    assert not store.connect().in_transaction


def test_database_enforces_seat_invariants(store: SqliteSeatStore) -> None:
    conn = store.connect()
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("UPDATE seat_cells SET capacity = initial_capacity + 1")
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("UPDATE seat_cells SET capacity = -1")
    store.apply_grant("1", CS, round_no=1, choice_rank=1)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO allocations (candidate_id, program, category, subcategory, round_no, choice_rank) "
            "VALUES ('1', 'ee', 'GEN', 'DEFAULT', 1, 2)"
        )
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO allocations (candidate_id, program, category, subcategory, round_no, choice_rank) "
            "VALUES ('2', 'nowhere', 'GEN', 'DEFAULT', 1, 2)"
        )


def test_round_summaries_are_replaced_per_round(store: SqliteSeatStore) -> None:
    row = RoundSummaryRow(
        round_no=1, granted_count=2, failed_count=1, frozen_count=1,
        floating_count=1, vacated_count=0, unseated_count=1,
    )
    store.record_round_summary(row)
    store.record_round_summary(RoundSummaryRow(**{**row, "granted_count": 3}))
    assert store.round_summaries() == [RoundSummaryRow(**{**row, "granted_count": 3})]
    assert store.summaries_frame()["granted_count"].tolist() == [3]
    assert store.last_round() == 1
    store.record_round_summary(RoundSummaryRow(**{**row, "round_no": 4, "granted_count": 0}))
    assert store.last_round() == 4


def test_events_are_persisted(store: SqliteSeatStore) -> None:
    events = [
        RunEvent(kind="round_started", round_no=1),
        RunEvent(kind="store_unavailable", round_no=1, level=EventLevel.ERROR, payload={"error": "x"}),
    ]
    assert store.record_events(events) == 2
    frame = store.events_frame()
    assert frame["kind"].tolist() == ["round_started", "store_unavailable"]
    assert frame.loc[1, "payload_json"] == '{"error": "x"}'


def test_schema_version_gate(tmp_path: Path) -> None:
    path = tmp_path / "seats.db"
    with SqliteSeatStore(path) as store:
        store.connect().execute("UPDATE schema_meta SET schema_version = 99 WHERE id = 1")
    with pytest.raises(SchemaVersionMismatchError) as excinfo:
        SqliteSeatStore(path).initialize()
    assert excinfo.value.actual_version == 99


def test_closed_connection_maps_to_unavailable(store: SqliteSeatStore) -> None:
    store.connect().close()
    with pytest.raises(StoreUnavailableError):
        store.cells()
    with pytest.raises(StoreUnavailableError):
        store.apply_grant("1", CS, round_no=1, choice_rank=1)
