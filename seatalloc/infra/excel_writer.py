"""خروجی Excel نتایج تخصیص (pandas + openpyxl).

نوشتن به‌صورت اتمیک انجام می‌شود: ابتدا در فایل موقت همان پوشه و سپس
``os.replace``. هر شیت به یک جدول Excel با هدر ثابت تبدیل می‌شود.
"""

from __future__ import annotations

import contextlib
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Iterator, Mapping, Sequence

import pandas as pd
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from seatalloc.core.allocation.ledger import LEDGER_COLUMNS, records_to_frame
from seatalloc.core.allocation.orchestrator import RunOutcome
from seatalloc.core.allocation.store import SeatStore
from seatalloc.core.common.events import EventLog
from seatalloc.core.common.types import RoundSummaryRow
from seatalloc.core.qa.convergence import UnfilledCellDiagnostic, diagnostics_to_frame
from seatalloc.core.qa.invariants import QaReport

__all__ = [
    "SHEET_ORDER",
    "build_report_sheets",
    "write_xlsx_atomic",
]

SHEET_ORDER: tuple[str, ...] = (
    "allocations",
    "ledger_history",
    "round_summary",
    "failures",
    "unfilled_cells",
    "qa",
    "events",
)

_INVALID_SHEET_CHARS = re.compile(r"[\\/*?:\[\]]")
_QA_COLUMNS: Sequence[str] = ("round_no", "rule_id", "description", "status", "violations_count")


def _safe_sheet_name(name: str, taken: set[str]) -> str:
    """اصلاح و یکتا‌سازی نام شیت مطابق محدودیت‌های Excel."""

    base = _INVALID_SHEET_CHARS.sub(" ", (name or "Sheet").strip()) or "Sheet"
    base = base[:31]
    candidate = base
    index = 2
    while candidate in taken:
        suffix = f" ({index})"
        candidate = (base[: max(0, 31 - len(suffix))] + suffix).rstrip()
        index += 1
    taken.add(candidate)
    return candidate


def _table_name(sheet_name: str, taken: set[str]) -> str:
    slug = re.sub(r"[^0-9A-Za-z_]", "_", sheet_name) or "Sheet"
    if slug[0].isdigit():
        slug = f"T_{slug}"
    candidate = f"tbl_{slug}"
    index = 2
    while candidate in taken:
        candidate = f"tbl_{slug}_{index}"
        index += 1
    taken.add(candidate)
    return candidate


@contextlib.contextmanager
def _temporary_file_path(*, suffix: str = "", directory: Path | str | None = None) -> Iterator[Path]:
    """مدیریت مسیر فایل موقتی با پاک‌سازی خودکار پس از اتمام کار."""

    fd, name = tempfile.mkstemp(suffix=suffix, dir=directory)
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)


def _format_sheets(writer: pd.ExcelWriter, sheet_frames: Mapping[str, pd.DataFrame], *, rtl: bool) -> None:
    workbook = writer.book  # type: ignore[attr-defined]
    tables: set[str] = set()
    for sheet_name, df in sheet_frames.items():
        worksheet = workbook[sheet_name]
        worksheet.sheet_view.rightToLeft = rtl
        worksheet.freeze_panes = "A2"
        for cell in worksheet[1]:
            cell.font = Font(bold=True)
            cell.alignment = Alignment(horizontal="center")
        for idx, column in enumerate(df.columns, start=1):
            width = max([len(str(column))] + [len(str(value)) for value in df[column].head(200)])
            worksheet.column_dimensions[get_column_letter(idx)].width = min(60, width + 2)
        if df.empty or df.shape[1] == 0:
            continue
        ref = f"A1:{get_column_letter(df.shape[1])}{len(df) + 1}"
        table = Table(displayName=_table_name(sheet_name, tables), ref=ref)
        table.tableStyleInfo = TableStyleInfo(
            name="TableStyleLight1",
            showFirstColumn=False,
            showLastColumn=False,
            showRowStripes=True,
            showColumnStripes=False,
        )
        worksheet.add_table(table)


def write_xlsx_atomic(
    data_dict: Mapping[str, pd.DataFrame],
    filepath: Path | str,
    *,
    rtl: bool = False,
) -> Path:
    """نوشتن امن و اتمیک Excel با موتور openpyxl."""

    target_path = Path(filepath)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    taken: set[str] = set()
    written: Dict[str, pd.DataFrame] = {}

    with _temporary_file_path(suffix=".xlsx", directory=target_path.parent) as tmp_path:
        with pd.ExcelWriter(tmp_path, engine="openpyxl") as writer:
            for sheet_name, df in data_dict.items():
                safe_name = _safe_sheet_name(str(sheet_name), taken)
                frame = df.copy()
                frame.columns = [str(column) for column in frame.columns]
                frame.to_excel(writer, sheet_name=safe_name, index=False)
                written[safe_name] = frame
            _format_sheets(writer, written, rtl=rtl)
        os.replace(tmp_path, target_path)
    return target_path


def _active_frame(ledger: pd.DataFrame) -> pd.DataFrame:
    active = ledger.loc[ledger["active"].astype(bool)] if not ledger.empty else ledger
    columns = [column for column in LEDGER_COLUMNS if column not in {"active", "deleted_round"}]
    return active.loc[:, columns].sort_values(by=["candidate_id"], kind="stable").reset_index(drop=True)


def _qa_frame(reports: Sequence[QaReport]) -> pd.DataFrame:
    frames = [report.to_summary_frame() for report in reports]
    if not frames:
        return pd.DataFrame(columns=list(_QA_COLUMNS))
    return pd.concat(frames, ignore_index=True)


def build_report_sheets(
    store: SeatStore,
    *,
    outcome: RunOutcome | None = None,
    unfilled: Sequence[UnfilledCellDiagnostic] | None = None,
    qa_reports: Sequence[QaReport] | None = None,
    events: EventLog | None = None,
) -> Dict[str, pd.DataFrame]:
    """ساخت شیت‌های گزارش از وضعیت Store و نتیجهٔ اجرا.

    شیت‌هایی که داده‌ای برایشان فراهم نشده است (مثلاً ``failures`` بدون
    ``outcome``) حذف می‌شوند.
    """

    ledger = records_to_frame(store.history())
    sheets: Dict[str, pd.DataFrame] = {
        "allocations": _active_frame(ledger),
        "ledger_history": ledger,
        "round_summary": pd.DataFrame(
            store.round_summaries(), columns=list(RoundSummaryRow.__annotations__)
        ),
    }
    if outcome is not None:
        sheets["failures"] = outcome.failures_frame()
        unfilled = outcome.unfilled if unfilled is None else unfilled
        qa_reports = outcome.qa_reports if qa_reports is None else qa_reports
    if unfilled is not None:
        sheets["unfilled_cells"] = diagnostics_to_frame(unfilled)
    if qa_reports is not None:
        sheets["qa"] = _qa_frame(qa_reports)
    if events is not None:
        sheets["events"] = events.to_frame()
    return {name: sheets[name] for name in SHEET_ORDER if name in sheets}
