# file: seatalloc/infra/seat_store.py
"""Store پایدار SQLite برای موجودی صندلی و دفتر کل تخصیص.

هر گام واگذاری/تخلیه در یک تراکنش ``BEGIN IMMEDIATE … COMMIT`` اجرا می‌شود؛
شکست در میانهٔ گام با ``ROLLBACK`` هیچ اثری باقی نمی‌گذارد. قیدهای ``CHECK``
جدول ``seat_cells`` بازهٔ ``0 ≤ capacity ≤ initial_capacity`` را در سطح
پایگاه داده نیز تضمین می‌کنند و ایندکس یکتای جزئی روی ``allocations``
حداکثر یک تخصیص فعال برای هر داوطلب را.

نگاشت خطاها:

* ``sqlite3.IntegrityError`` در گام اتمیک → :class:`StoreStepError`؛
* سایر ``sqlite3.Error`` ها (قفل، دیسک، اتصال بسته) → :class:`StoreUnavailableError`.

نمونهٔ استفادهٔ سریع:

>>> store = SqliteSeatStore(Path("seats.db"))  # doctest: +SKIP
>>> store.initialize()  # doctest: +SKIP
>>> store.seed(cells)  # doctest: +SKIP
"""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import Iterable, List

import pandas as pd

from seatalloc.core.allocation.ledger import records_to_frame
from seatalloc.core.allocation.store import GrantOutcome
from seatalloc.core.common.errors import (
    SeatUnavailableError,
    StoreStepError,
    StoreUnavailableError,
)
from seatalloc.core.common.events import RunEvent
from seatalloc.core.common.types import (
    Allocation,
    AllocationRecord,
    Category,
    CellKey,
    RoundSummaryRow,
    SeatCell,
    Subcategory,
)
from seatalloc.infra.errors import DatabaseOperationError, SchemaVersionMismatchError
from seatalloc.infra.sqlite_config import connect

_SCHEMA_VERSION = 1
_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

logger = logging.getLogger(__name__)

_SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS seat_cells (
        program TEXT NOT NULL,
        category TEXT NOT NULL,
        subcategory TEXT NOT NULL,
        initial_capacity INTEGER NOT NULL CHECK (initial_capacity >= 0),
        capacity INTEGER NOT NULL CHECK (capacity >= 0 AND capacity <= initial_capacity),
        PRIMARY KEY (program, category, subcategory)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS allocations (
        sequence INTEGER PRIMARY KEY AUTOINCREMENT,
        candidate_id TEXT NOT NULL,
        program TEXT NOT NULL,
        category TEXT NOT NULL,
        subcategory TEXT NOT NULL,
        round_no INTEGER NOT NULL CHECK (round_no >= 1),
        choice_rank INTEGER NOT NULL CHECK (choice_rank BETWEEN 1 AND 7),
        deleted INTEGER NOT NULL DEFAULT 0 CHECK (deleted IN (0, 1)),
        deleted_round INTEGER,
        FOREIGN KEY (program, category, subcategory)
            REFERENCES seat_cells (program, category, subcategory)
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_allocations_active_candidate
        ON allocations (candidate_id) WHERE deleted = 0;
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_allocations_cell
        ON allocations (program, category, subcategory, deleted);
    """,
    """
    CREATE TABLE IF NOT EXISTS round_summaries (
        round_no INTEGER PRIMARY KEY,
        granted_count INTEGER NOT NULL,
        failed_count INTEGER NOT NULL,
        frozen_count INTEGER NOT NULL,
        floating_count INTEGER NOT NULL,
        vacated_count INTEGER NOT NULL,
        unseated_count INTEGER NOT NULL,
        recorded_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS run_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        kind TEXT NOT NULL,
        round_no INTEGER,
        phase TEXT,
        level TEXT NOT NULL,
        payload_json TEXT NOT NULL,
        recorded_at TEXT NOT NULL
    );
    """,
)

_SUMMARY_FIELDS: tuple[str, ...] = tuple(RoundSummaryRow.__annotations__)


def _to_iso(dt: datetime) -> str:
    return dt.strftime(_ISO_FORMAT)


def _now() -> str:
    return _to_iso(datetime.now(timezone.utc))


def _row_to_key(row: sqlite3.Row) -> CellKey:
    return CellKey(
        program=str(row["program"]),
        category=Category(row["category"]),
        subcategory=Subcategory(row["subcategory"]),
    )


def _row_to_allocation(row: sqlite3.Row) -> Allocation:
    return Allocation(
        candidate_id=str(row["candidate_id"]),
        cell=_row_to_key(row),
        round_no=int(row["round_no"]),
        choice_rank=int(row["choice_rank"]),
        sequence=int(row["sequence"]),
    )


class SqliteSeatStore:
    """پیاده‌سازی :class:`~seatalloc.core.allocation.store.SeatStore` روی SQLite.

    یک اتصال autocommit برای کل اجرا نگه داشته می‌شود (فرایند دسته‌ای
    تک‌نویسنده). متد :meth:`close` یا استفاده به‌عنوان context manager
    اتصال را آزاد می‌کند.
    """

    def __init__(self, path: Path | str, *, busy_timeout_ms: int = 5000) -> None:
        self.path = Path(path)
        self._busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None

    # ------------------------------------------------------------ lifecycle
    def connect(self) -> sqlite3.Connection:
        """اتصال فعال را برمی‌گرداند و در صورت نیاز آن را باز می‌کند."""

        if self._conn is None:
            if str(self.path) != ":memory:":
                self.path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._conn = connect(str(self.path), busy_timeout_ms=self._busy_timeout_ms)
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"cannot open seat store at {self.path}: {exc}") from exc
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "SqliteSeatStore":
        self.initialize()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def initialize(self) -> None:
        """ایجاد Schema و اعتبارسنجی نسخه به‌صورت idempotent."""

        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_meta (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    schema_version INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )
            row = conn.execute("SELECT schema_version FROM schema_meta WHERE id = 1").fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_meta (id, schema_version, created_at) VALUES (1, ?, ?)",
                    (_SCHEMA_VERSION, _now()),
                )
            elif int(row[0]) != _SCHEMA_VERSION:
                conn.execute("ROLLBACK")
                raise SchemaVersionMismatchError(
                    expected_version=_SCHEMA_VERSION,
                    actual_version=int(row[0]),
                    message="نسخهٔ Schema پایگاه داده با نسخهٔ برنامه هم‌خوان نیست.",
                )
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)
            conn.execute("COMMIT")
        except SchemaVersionMismatchError:
            raise
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise DatabaseOperationError("خطا در آماده‌سازی پایگاه دادهٔ صندلی‌ها.") from exc
        logger.debug("Seat store schema ensured at %s", self.path)

    def seed(self, cells: Iterable[SeatCell]) -> int:
        """درج سلول‌های اولیه؛ سلول تکراری خطا است."""

        conn = self.connect()
        rows = [
            (
                cell.key.program,
                cell.key.category.value,
                cell.key.subcategory.value,
                cell.initial_capacity,
                cell.capacity,
            )
            for cell in cells
        ]
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.executemany(
                """
                INSERT INTO seat_cells (program, category, subcategory, initial_capacity, capacity)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as exc:
            self._rollback(conn)
            raise DatabaseOperationError(f"درج سلول‌های صندلی ناموفق بود: {exc}") from exc
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise StoreUnavailableError(f"seat store unavailable during seed: {exc}") from exc
        logger.info("Seeded %d seat cells into %s", len(rows), self.path)
        return len(rows)

    def is_seeded(self) -> bool:
        row = self._query_one("SELECT COUNT(*) AS n FROM seat_cells")
        return bool(row is not None and int(row["n"]) > 0)

    # ---------------------------------------------------------------- reads
    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return list(self.connect().execute(sql, params).fetchall())
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"seat store read failed: {exc}") from exc

    def _query_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        rows = self._query(sql, params)
        return rows[0] if rows else None

    def cells(self) -> List[SeatCell]:
        rows = self._query(
            "SELECT * FROM seat_cells ORDER BY program, category, subcategory"
        )
        cells = [
            SeatCell(
                key=_row_to_key(row),
                capacity=int(row["capacity"]),
                initial_capacity=int(row["initial_capacity"]),
            )
            for row in rows
        ]
        return sorted(cells, key=lambda cell: cell.key)

    def _cell_value(self, key: CellKey, column: str) -> int:
        row = self._query_one(
            f"SELECT {column} AS value FROM seat_cells WHERE program = ? AND category = ? AND subcategory = ?",
            (key.program, key.category.value, key.subcategory.value),
        )
        return int(row["value"]) if row is not None else 0

    def capacity_of(self, key: CellKey) -> int:
        return self._cell_value(key, "capacity")

    def initial_capacity_of(self, key: CellKey) -> int:
        return self._cell_value(key, "initial_capacity")

    def active_allocation(self, candidate_id: str) -> Allocation | None:
        row = self._query_one(
            "SELECT * FROM allocations WHERE candidate_id = ? AND deleted = 0 ORDER BY sequence DESC",
            (candidate_id,),
        )
        return _row_to_allocation(row) if row is not None else None

    def active_records(self) -> List[Allocation]:
        rows = self._query("SELECT * FROM allocations WHERE deleted = 0 ORDER BY sequence")
        return [_row_to_allocation(row) for row in rows]

    def history(self) -> List[AllocationRecord]:
        rows = self._query("SELECT * FROM allocations ORDER BY sequence")
        return [
            AllocationRecord(
                allocation=_row_to_allocation(row),
                deleted=bool(row["deleted"]),
                deleted_round=int(row["deleted_round"]) if row["deleted_round"] is not None else None,
            )
            for row in rows
        ]

    def last_round(self) -> int:
        row = self._query_one(
            "SELECT MAX(COALESCE((SELECT MAX(round_no) FROM allocations), 0), "
            "COALESCE((SELECT MAX(round_no) FROM round_summaries), 0)) AS last"
        )
        return int(row["last"]) if row is not None else 0

    # --------------------------------------------------------------- writes
    def apply_grant(
        self,
        candidate_id: str,
        cell: CellKey,
        *,
        round_no: int,
        choice_rank: int,
    ) -> GrantOutcome:
        """رزرو/تخلیه/درج در یک تراکنش ``BEGIN IMMEDIATE``.

        Raises:
            SeatUnavailableError: سلول ظرفیت ندارد؛ تراکنش برگردانده شده است.
            StoreStepError: نقض قید در میانهٔ گام؛ تراکنش برگردانده شده است.
            StoreUnavailableError: پایگاه داده در دسترس نیست.
        """

        conn = self.connect()
        params = (cell.program, cell.category.value, cell.subcategory.value)
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"cannot start grant transaction: {exc}") from exc
        try:
            updated = conn.execute(
                """
                UPDATE seat_cells SET capacity = capacity - 1
                WHERE program = ? AND category = ? AND subcategory = ? AND capacity > 0
                """,
                params,
            ).rowcount
            if updated == 0:
                conn.execute("ROLLBACK")
                raise SeatUnavailableError(cell)
            current_row = conn.execute(
                "SELECT * FROM allocations WHERE candidate_id = ? AND deleted = 0",
                (candidate_id,),
            ).fetchone()
            current = _row_to_allocation(current_row) if current_row is not None else None
            if current is not None:
                conn.execute(
                    """
                    UPDATE seat_cells SET capacity = capacity + 1
                    WHERE program = ? AND category = ? AND subcategory = ?
                    """,
                    (current.cell.program, current.cell.category.value, current.cell.subcategory.value),
                )
                conn.execute(
                    "UPDATE allocations SET deleted = 1, deleted_round = ? WHERE sequence = ?",
                    (round_no, current.sequence),
                )
            cursor = conn.execute(
                """
                INSERT INTO allocations (candidate_id, program, category, subcategory, round_no, choice_rank)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (candidate_id, *params, round_no, choice_rank),
            )
            sequence = int(cursor.lastrowid)
            conn.execute("COMMIT")
        except SeatUnavailableError:
            raise
        except sqlite3.IntegrityError as exc:
            self._rollback(conn)
            raise StoreStepError(candidate_id, f"constraint violated: {exc}") from exc
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise StoreUnavailableError(f"grant step aborted for {candidate_id}: {exc}") from exc

        allocation = Allocation(
            candidate_id=candidate_id,
            cell=cell,
            round_no=round_no,
            choice_rank=choice_rank,
            sequence=sequence,
        )
        return GrantOutcome(allocation=allocation, vacated=current)

    def record_round_summary(self, row: RoundSummaryRow) -> None:
        values = tuple(int(row[name]) for name in _SUMMARY_FIELDS)  # type: ignore[literal-required]
        columns = ", ".join(_SUMMARY_FIELDS)
        placeholders = ", ".join("?" for _ in _SUMMARY_FIELDS)
        try:
            self.connect().execute(
                f"INSERT OR REPLACE INTO round_summaries ({columns}, recorded_at) VALUES ({placeholders}, ?)",
                (*values, _now()),
            )
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"cannot record round summary: {exc}") from exc

    def round_summaries(self) -> List[RoundSummaryRow]:
        rows = self._query(f"SELECT {', '.join(_SUMMARY_FIELDS)} FROM round_summaries ORDER BY round_no")
        return [RoundSummaryRow(**{name: int(row[name]) for name in _SUMMARY_FIELDS}) for row in rows]  # type: ignore[typeddict-item]

    def record_events(self, events: Iterable[RunEvent]) -> int:
        """ذخیرهٔ رویدادهای اجرا در جدول ``run_events``."""

        rows = [
            (
                event.kind,
                event.round_no,
                event.phase,
                event.level.value,
                json.dumps(dict(event.payload), ensure_ascii=False, default=str),
                _now(),
            )
            for event in events
        ]
        try:
            self.connect().executemany(
                """
                INSERT INTO run_events (kind, round_no, phase, level, payload_json, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        except sqlite3.Error as exc:
            raise DatabaseOperationError(f"ذخیرهٔ رویدادهای اجرا ناموفق بود: {exc}") from exc
        return len(rows)

    # --------------------------------------------------------------- frames
    def cells_frame(self) -> pd.DataFrame:
        rows = [
            {
                "program": cell.key.program,
                "category": cell.key.category.value,
                "subcategory": cell.key.subcategory.value,
                "initial_capacity": cell.initial_capacity,
                "capacity": cell.capacity,
            }
            for cell in self.cells()
        ]
        return pd.DataFrame(
            rows,
            columns=["program", "category", "subcategory", "initial_capacity", "capacity"],
        )

    def ledger_frame(self) -> pd.DataFrame:
        return records_to_frame(self.history())

    def summaries_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.round_summaries(), columns=list(_SUMMARY_FIELDS))

    def events_frame(self) -> pd.DataFrame:
        rows = self._query("SELECT kind, round_no, phase, level, payload_json FROM run_events ORDER BY id")
        return pd.DataFrame(
            [dict(row) for row in rows],
            columns=["kind", "round_no", "phase", "level", "payload_json"],
        )

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.warning("ROLLBACK failed: %s", exc)


__all__ = ["SqliteSeatStore"]
