"""صحت‌سنجی خروجی Excel گزارش تخصیص."""

from __future__ import annotations

from pathlib import Path

import pandas as pd
from openpyxl import load_workbook

from seatalloc.core.allocation.orchestrator import RoundOrchestrator
from seatalloc.core.allocation.store import InMemorySeatStore
from seatalloc.core.common.events import EventLog
from seatalloc.infra.excel_writer import SHEET_ORDER, build_report_sheets, write_xlsx_atomic
from tests.conftest import make_candidate, make_cell


def test_write_xlsx_atomic_formats_sheets(tmp_path: Path) -> None:
    data = pd.DataFrame({"candidate_id": ["A1", "A2"], "program": ["cs", "ee"]})
    out = tmp_path / "nested" / "report.xlsx"

    result = write_xlsx_atomic({"round/1": data, "round:1": data, "empty": data.iloc[0:0]}, out, rtl=True)

    assert result == out
    assert sorted(path.name for path in out.parent.iterdir()) == ["report.xlsx"]
    wb = load_workbook(out)
    assert wb.sheetnames == ["round 1", "round 1 (2)", "empty"]
    names = set()
    for sheet_name in ("round 1", "round 1 (2)"):
        ws = wb[sheet_name]
        assert ws.freeze_panes == "A2"
        assert ws.sheet_view.rightToLeft
        assert ws["A1"].font.bold
        (table,) = ws.tables.values()
        assert table.displayName.startswith("tbl_")
        assert table.ref == "A1:B3"
        names.add(table.displayName)
    assert len(names) == 2
    assert not wb["empty"].tables


def test_write_xlsx_atomic_replaces_existing_file(tmp_path: Path) -> None:
    out = tmp_path / "report.xlsx"
    write_xlsx_atomic({"a": pd.DataFrame({"x": [1]})}, out)
    write_xlsx_atomic({"b": pd.DataFrame({"y": [2, 3]})}, out)

    wb = load_workbook(out)
    assert wb.sheetnames == ["b"]
    assert not wb["b"].sheet_view.rightToLeft
    assert sorted(path.name for path in tmp_path.iterdir()) == ["report.xlsx"]


def test_build_report_sheets_order(gen_only_policy, tmp_path: Path) -> None:
    store = InMemorySeatStore([make_cell("cs", 1), make_cell("ee", 1)])
    candidates = [
        make_candidate("1", 1, ["cs", "ee"]),
        make_candidate("2", 2, ["cs"]),
    ]
    events = EventLog()
    outcome = RoundOrchestrator(store, gen_only_policy, candidates, event_sink=events).run()

    sheets = build_report_sheets(store, outcome=outcome, events=events)

    assert tuple(sheets) == SHEET_ORDER
    assert sheets["allocations"]["candidate_id"].tolist() == ["1"]
    assert set(sheets["failures"]["candidate_id"]) == {"2"}
    assert sheets["round_summary"]["round_no"].tolist() == [summary.round_no for summary in outcome.rounds]
    assert sheets["unfilled_cells"]["program"].tolist() == ["ee"]
    assert set(sheets["qa"]["status"]) == {"PASS"}

    out = write_xlsx_atomic(sheets, tmp_path / "report.xlsx")
    assert load_workbook(out).sheetnames == list(SHEET_ORDER)


def test_build_report_sheets_without_outcome() -> None:
    store = InMemorySeatStore([make_cell("cs", 1)])

    sheets = build_report_sheets(store)

    assert tuple(sheets) == ("allocations", "ledger_history", "round_summary")
    assert all(frame.empty for frame in sheets.values())
