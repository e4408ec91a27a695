"""Loader ورودی: خواندن داوطلبان و سلول‌های صندلی از CSV/Excel.

سرستون‌ها با نام متعارف یا نام‌های مستعار سامانهٔ ثبت‌نام (``jeeCRL``،
``courseChoice1`` …) پذیرفته می‌شوند. هر مقدار ناشناخته با
:class:`~seatalloc.infra.errors.InputDataError` و شمارهٔ ردیف رد می‌شود؛
هیچ مقدار پیش‌فرض خاموشی جای دادهٔ نامعتبر را نمی‌گیرد.
"""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

import pandas as pd

from seatalloc.core.common.types import (
    MAX_PREFERENCES,
    Candidate,
    Category,
    CellKey,
    SeatCell,
    Subcategory,
)
from seatalloc.core.policy.config import CategoryPolicy
from seatalloc.infra.errors import InputDataError

logger = logging.getLogger(__name__)

__all__ = [
    "CANDIDATE_ALIASES",
    "SEAT_ALIASES",
    "read_table",
    "normalize_headers",
    "parse_category",
    "parse_subcategory",
    "candidates_from_frame",
    "seat_cells_from_frame",
    "load_candidates",
    "load_seat_cells",
]

PREFERENCE_COLUMNS: tuple[str, ...] = tuple(f"choice{idx}" for idx in range(1, MAX_PREFERENCES + 1))

CANDIDATE_ALIASES: Mapping[str, Sequence[str]] = {
    "candidate_id": ("id", "applicationnumber", "application_number", "candidateid"),
    "merit_rank": ("meritrank", "jeecrl", "crl", "rank"),
    "category": ("category", "cat"),
    "subcategory": ("subcategory", "sub_category", "subcat"),
    "category_rank": ("categoryrank",),
    "disability_rank": ("disabilityrank", "pwdrank"),
    "activity_score": ("activityscore", "sptmarks", "sportsmarks"),
    "dependent_priority": ("dependentpriority", "cdppriority", "cpfpriority"),
    **{
        f"choice{idx}": (f"choice{idx}", f"coursechoice{idx}", f"preference{idx}")
        for idx in range(1, MAX_PREFERENCES + 1)
    },
}

SEAT_ALIASES: Mapping[str, Sequence[str]] = {
    "program": ("program", "departmentid", "department_id", "course"),
    "category": ("category", "cat"),
    "subcategory": ("subcategory", "sub_category", "subcat"),
    "capacity": ("capacity", "totalseats", "total_seats", "seats"),
}

_CATEGORY_ALIASES: Mapping[str, Category] = {
    "GEN": Category.GEN,
    "GN": Category.GEN,
    "GENERAL": Category.GEN,
    "OPEN": Category.GEN,
    "EWS": Category.EWS,
    "ECONOMICALLY WEAKER SECTIONS (EWS)": Category.EWS,
    "OBC": Category.OBC,
    "OTHER BACKWARD CLASSES (OBC)": Category.OBC,
    "SC": Category.SC,
    "SCHEDULED CASTE (SC)": Category.SC,
    "ST": Category.ST,
    "ST1": Category.ST,
    "ST2": Category.ST,
    "SCHEDULED TRIBE (ST)": Category.ST,
    "RBA": Category.RBA,
}

# پیشوندهای کد ترکیبی زیردسته (مثلاً GNPWD، EWSCDP، ST1SPT) از طولانی به کوتاه
_SUBCATEGORY_PREFIXES: tuple[str, ...] = ("GEN", "EWS", "OBC", "RBA", "ST1", "ST2", "GN", "SC", "ST")

_SUBCATEGORY_SUFFIXES: Mapping[str, Subcategory] = {
    "": Subcategory.DEFAULT,
    "GN": Subcategory.DEFAULT,
    "DEFAULT": Subcategory.DEFAULT,
    "NONE": Subcategory.DEFAULT,
    "PWD": Subcategory.PWD,
    "SPT": Subcategory.SPORTS,
    "SPORTS": Subcategory.SPORTS,
    "CDP": Subcategory.CDP,
    "CPF": Subcategory.CPF,
}

_HEADER_CLEAN = re.compile(r"[\s\-_.]+")


def _header_key(value: object) -> str:
    return _HEADER_CLEAN.sub("", str(value).strip().lower())


def normalize_headers(frame: pd.DataFrame, aliases: Mapping[str, Sequence[str]]) -> pd.DataFrame:
    """تغییر نام ستون‌ها به نام متعارف بر اساس جدول مستعار."""

    lookup: Dict[str, str] = {}
    for canonical, names in aliases.items():
        lookup[_header_key(canonical)] = canonical
        for name in names:
            lookup.setdefault(_header_key(name), canonical)
    renamed: Dict[str, str] = {}
    for column in frame.columns:
        canonical = lookup.get(_header_key(column))
        if canonical is not None and canonical not in renamed.values():
            renamed[column] = canonical
    return frame.rename(columns=renamed)


def read_table(path: Path | str) -> pd.DataFrame:
    """خواندن CSV یا Excel (شیت اول) با نوع رشته‌ای برای همهٔ ستون‌ها."""

    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"فایل یافت نشد: {source}")
    suffix = source.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(source, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    if suffix in {".xlsx", ".xlsm", ".xls"}:
        return pd.read_excel(source, sheet_name=0, dtype=str, keep_default_na=False)
    raise ValueError(f"unsupported input format: {source.suffix}")


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return str(value).strip() == ""


def _parse_number(value: object, *, integer: bool, source: str, row: int, column: str) -> float | int | None:
    if _is_blank(value):
        return None
    text = str(value).strip().replace(",", "")
    try:
        number = float(text)
    except ValueError as exc:
        raise InputDataError(source, row, column, f"not a number: {value!r}") from exc
    if not integer:
        return number
    if not number.is_integer():
        raise InputDataError(source, row, column, f"not an integer: {value!r}")
    return int(number)


def parse_category(value: object) -> Category:
    """نگاشت نام/کد دسته به :class:`Category`؛ مقدار ناشناخته ValueError است."""

    key = str(value).strip().upper()
    try:
        return _CATEGORY_ALIASES[key]
    except KeyError as exc:
        raise ValueError(f"unknown category {value!r}") from exc


def parse_subcategory(value: object) -> Subcategory:
    """نگاشت کد زیردسته (ساده یا ترکیبی مانند ``GNPWD``) به :class:`Subcategory`."""

    if _is_blank(value):
        return Subcategory.DEFAULT
    code = str(value).strip().upper()
    if code in _SUBCATEGORY_SUFFIXES:
        return _SUBCATEGORY_SUFFIXES[code]
    if code in _CATEGORY_ALIASES:
        return Subcategory.DEFAULT
    for prefix in _SUBCATEGORY_PREFIXES:
        if code.startswith(prefix) and code[len(prefix):] in _SUBCATEGORY_SUFFIXES:
            return _SUBCATEGORY_SUFFIXES[code[len(prefix):]]
    raise ValueError(f"unknown subcategory {value!r}")


def _require_columns(frame: pd.DataFrame, columns: Sequence[str], source: str) -> None:
    missing = [column for column in columns if column not in frame.columns]
    if missing:
        raise InputDataError(source, None, ", ".join(missing), "required columns missing")


def _preferences(record: Mapping[str, object], *, source: str, row: int, program_map: Mapping[str, str]) -> tuple[str, ...]:
    slots = [record.get(column) for column in PREFERENCE_COLUMNS]
    programs: List[str] = []
    seen_blank = False
    for idx, slot in enumerate(slots, start=1):
        if _is_blank(slot):
            seen_blank = True
            continue
        if seen_blank:
            raise InputDataError(source, row, f"choice{idx}", "preference after an empty slot")
        raw = str(slot).strip()
        program = program_map.get(raw.upper(), raw)
        if program in programs:
            raise InputDataError(source, row, f"choice{idx}", f"duplicate preference {program!r}")
        programs.append(program)
    return tuple(programs)


def candidates_from_frame(
    frame: pd.DataFrame,
    *,
    source: str = "<frame>",
    policy: CategoryPolicy | None = None,
    program_map: Mapping[str, str] | None = None,
) -> List[Candidate]:
    """تبدیل DataFrame داوطلبان به فهرست :class:`Candidate`.

    ``program_map`` نام کامل برنامه را (حساس به حروف نیست) به شناسهٔ کوتاه
    نگاشت می‌کند؛ برای مثال ``"B. TECH. (CIVIL ENGINEERING)" → "ce"``.
    """

    normalized = normalize_headers(frame, CANDIDATE_ALIASES)
    _require_columns(normalized, ("candidate_id", "merit_rank", "category"), source)
    mapping = {key.strip().upper(): value for key, value in (program_map or {}).items()}
    candidates: List[Candidate] = []
    for row_number, record in enumerate(normalized.to_dict(orient="records"), start=1):
        candidate_id = str(record.get("candidate_id", "")).strip()
        if not candidate_id:
            raise InputDataError(source, row_number, "candidate_id", "empty candidate id")
        merit_rank = _parse_number(record.get("merit_rank"), integer=True, source=source, row=row_number,
                                   column="merit_rank")
        if merit_rank is None:
            raise InputDataError(source, row_number, "merit_rank", "merit rank is required")
        try:
            category = parse_category(record.get("category"))
        except ValueError as exc:
            raise InputDataError(source, row_number, "category", str(exc)) from exc
        try:
            subcategory = parse_subcategory(record.get("subcategory"))
        except ValueError as exc:
            raise InputDataError(source, row_number, "subcategory", str(exc)) from exc
        if policy is not None and subcategory.is_horizontal and subcategory not in policy.subcategories_of(category):
            raise InputDataError(
                source, row_number, "subcategory",
                f"{subcategory.value} is not configured under {category.value}",
            )
        metrics = {
            name: _parse_number(record.get(name), integer=name != "activity_score", source=source,
                                row=row_number, column=name)
            for name in ("category_rank", "disability_rank", "activity_score", "dependent_priority")
        }
        try:
            candidates.append(
                Candidate(
                    candidate_id=candidate_id,
                    merit_rank=int(merit_rank),
                    category=category,
                    subcategory=subcategory,
                    preferences=_preferences(record, source=source, row=row_number, program_map=mapping),
                    **metrics,  # type: ignore[arg-type]
                )
            )
        except (TypeError, ValueError) as exc:
            raise InputDataError(source, row_number, None, str(exc)) from exc
    logger.info("Loaded %d candidates from %s", len(candidates), source)
    return candidates


def seat_cells_from_frame(frame: pd.DataFrame, *, source: str = "<frame>") -> List[SeatCell]:
    """تبدیل DataFrame ماتریس صندلی به سلول‌های :class:`SeatCell`."""

    normalized = normalize_headers(frame, SEAT_ALIASES)
    _require_columns(normalized, ("program", "category", "capacity"), source)
    cells: Dict[CellKey, SeatCell] = {}
    for row_number, record in enumerate(normalized.to_dict(orient="records"), start=1):
        program = str(record.get("program", "")).strip()
        if not program:
            raise InputDataError(source, row_number, "program", "empty program id")
        try:
            category = parse_category(record.get("category"))
        except ValueError as exc:
            raise InputDataError(source, row_number, "category", str(exc)) from exc
        try:
            subcategory = parse_subcategory(record.get("subcategory"))
        except ValueError as exc:
            raise InputDataError(source, row_number, "subcategory", str(exc)) from exc
        capacity = _parse_number(record.get("capacity"), integer=True, source=source, row=row_number,
                                 column="capacity")
        if capacity is None or capacity < 0:
            raise InputDataError(source, row_number, "capacity", "capacity must be a non-negative integer")
        key = CellKey(program, category, subcategory)
        if key in cells:
            raise InputDataError(source, row_number, None, f"duplicate seat cell {key}")
        cells[key] = SeatCell.fresh(key, int(capacity))
    logger.info("Loaded %d seat cells from %s", len(cells), source)
    return sorted(cells.values(), key=lambda cell: cell.key)


def load_candidates(
    path: Path | str,
    *,
    policy: CategoryPolicy | None = None,
    program_map: Mapping[str, str] | None = None,
) -> List[Candidate]:
    return candidates_from_frame(read_table(path), source=str(path), policy=policy, program_map=program_map)


def load_seat_cells(path: Path | str) -> List[SeatCell]:
    return seat_cells_from_frame(read_table(path), source=str(path))
