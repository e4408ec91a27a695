"""Policy Loader (Core): سبک، کش‌شونده و اعتبارسنجی‌شده در زمان بارگذاری.

نکتهٔ معماری: اگر قرار باشد I/O از Core خارج شود، کافی است دادهٔ JSON
خوانده‌شده در Infra به تابع :func:`parse_policy_dict` پاس داده شود. این ماژول
هر دو مسیر را فراهم می‌کند. هر نام ناشناخته (دسته، زیردسته، معیار) با
``ValueError`` رد می‌شود.
"""

from __future__ import annotations

import json
import warnings
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Literal, Mapping, Optional, Sequence

from seatalloc.core.common.ranking import TieBreakRule
from seatalloc.core.common.types import METRIC_NAMES, Category, Subcategory
from seatalloc.core.policy.config import CategoryPolicy, CategoryRule, SubcategoryRule

VersionMismatchMode = Literal["raise", "warn"]

DEFAULT_POLICY_VERSION = "1.0.0"
DEFAULT_POLICY_PATH = Path("config/policy.json")

_REQUIRED_KEYS: tuple[str, ...] = ("version", "general_category", "categories")

_DEFAULT_CRITERIA: Mapping[str, Mapping[str, object]] = {
    "merit_rank": {"metric": "merit_rank", "ascending": True},
    "category_rank": {"metric": "category_rank", "ascending": True},
    "disability_rank": {"metric": "disability_rank", "ascending": True},
    "activity_score": {"metric": "activity_score", "ascending": False},
    "dependent_priority": {"metric": "dependent_priority", "ascending": True},
}

DEFAULT_POLICY_PAYLOAD: Mapping[str, object] = {
    "version": DEFAULT_POLICY_VERSION,
    "general_category": "GEN",
    "max_rounds": 10,
    "max_preferences": 7,
    "criteria": _DEFAULT_CRITERIA,
    "categories": [
        {
            "category": category,
            "home_is_default": True,
            "subcategories": [
                {"subcategory": "SPORTS", "criterion": "activity_score"},
                {"subcategory": "PWD", "criterion": "disability_rank"},
                {"subcategory": "CDP", "criterion": "dependent_priority"},
                {"subcategory": "CPF", "criterion": "dependent_priority"},
            ],
        }
        for category in ("GEN", "EWS", "SC", "ST", "RBA", "OBC")
    ],
}


def _parse_semver(value: str) -> tuple[int, int, int]:
    try:
        major, minor, patch = value.split(".")
        return int(major), int(minor), int(patch)
    except (ValueError, TypeError, AttributeError) as exc:
        raise ValueError(f"Invalid semantic version: '{value}'") from exc


def _version_gate(
    loaded_version: str,
    expected_version: Optional[str],
    on_version_mismatch: VersionMismatchMode,
) -> None:
    loaded_semver = _parse_semver(loaded_version)
    if expected_version is None or loaded_version == expected_version:
        return
    expected_semver = _parse_semver(expected_version)
    message = (
        f"Policy version mismatch: loaded='{loaded_version}' "
        f"expected='{expected_version}'"
    )
    if loaded_semver[0] != expected_semver[0]:
        raise ValueError(message + " (major incompatible)")
    if on_version_mismatch == "raise":
        raise ValueError(message)
    warnings.warn(message, RuntimeWarning, stacklevel=3)


def _ensure_bool(name: str, value: object) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"'{name}' must be boolean")
    return value


def _ensure_positive_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"'{name}' must be an integer")
    if value < 1:
        raise ValueError(f"'{name}' must be >= 1")
    return value


def _parse_category(value: object, *, where: str) -> Category:
    try:
        return Category(str(value).strip().upper())
    except ValueError as exc:
        raise ValueError(f"{where}: unknown category '{value}'") from exc


def _parse_subcategory(value: object, *, where: str) -> Subcategory:
    try:
        return Subcategory(str(value).strip().upper())
    except ValueError as exc:
        raise ValueError(f"{where}: unknown subcategory '{value}'") from exc


def _normalize_criteria(raw: object | None) -> Dict[str, TieBreakRule]:
    source = _DEFAULT_CRITERIA if raw is None else raw
    if not isinstance(source, Mapping):
        raise TypeError("criteria must be a mapping of name -> {metric, ascending}")
    criteria: Dict[str, TieBreakRule] = {}
    for name, item in source.items():
        if not isinstance(item, Mapping):
            raise TypeError(f"criterion '{name}' must be a mapping")
        metric = str(item.get("metric", name))
        if metric not in METRIC_NAMES:
            raise ValueError(f"criterion '{name}': unknown metric '{metric}'")
        ascending = _ensure_bool(f"criteria.{name}.ascending", item.get("ascending", True))
        criteria[str(name)] = TieBreakRule(name=str(name), metric=metric, ascending=ascending)  # type: ignore[arg-type]
    return criteria


def _normalize_subcategories(raw: object, *, category: Category) -> tuple[SubcategoryRule, ...]:
    if raw is None:
        return tuple()
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise TypeError(f"{category.value}.subcategories must be a sequence")
    rules: List[SubcategoryRule] = []
    seen: set[Subcategory] = set()
    for item in raw:
        if not isinstance(item, Mapping) or "subcategory" not in item or "criterion" not in item:
            raise ValueError(
                f"{category.value}: subcategory rule must define 'subcategory' and 'criterion'"
            )
        sub = _parse_subcategory(item["subcategory"], where=category.value)
        if sub in seen:
            raise ValueError(f"{category.value}: subcategory '{sub.value}' listed twice")
        seen.add(sub)
        rules.append(SubcategoryRule(subcategory=sub, criterion=str(item["criterion"])))
    return tuple(rules)


def _normalize_categories(raw: object) -> tuple[CategoryRule, ...]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise TypeError("categories must be a sequence of rules")
    if not raw:
        raise ValueError("categories must contain at least one rule")
    rules: List[CategoryRule] = []
    for item in raw:
        if not isinstance(item, Mapping) or "category" not in item:
            raise ValueError("category rule must define 'category'")
        category = _parse_category(item["category"], where="categories")
        home_is_default = _ensure_bool(
            f"{category.value}.home_is_default", item.get("home_is_default", True)
        )
        rules.append(
            CategoryRule(
                category=category,
                home_is_default=home_is_default,
                subcategories=_normalize_subcategories(item.get("subcategories"), category=category),
            )
        )
    return tuple(rules)


def parse_policy_dict(
    data: Mapping[str, object],
    *,
    expected_version: Optional[str] = DEFAULT_POLICY_VERSION,
    on_version_mismatch: VersionMismatchMode = "raise",
) -> CategoryPolicy:
    """ساخت :class:`CategoryPolicy` از دادهٔ خام JSON.

    Raises:
        ValueError: کلید ضروری غایب، نام ناشناخته یا نسخهٔ ناسازگار.
        TypeError: نوع نادرست مقادیر.
    """

    missing = [key for key in _REQUIRED_KEYS if key not in data]
    if missing:
        raise ValueError(f"Policy payload missing keys: {missing}")
    version = str(data["version"])
    _version_gate(version, expected_version, on_version_mismatch)

    criteria = _normalize_criteria(data.get("criteria"))
    return CategoryPolicy(
        version=version,
        general_category=_parse_category(data["general_category"], where="general_category"),
        categories=_normalize_categories(data["categories"]),
        criteria=criteria,
        merit_criterion=str(data.get("merit_criterion", "merit_rank")),
        category_criterion=str(data.get("category_criterion", "category_rank")),
        max_rounds=_ensure_positive_int("max_rounds", data.get("max_rounds", 10)),
        max_preferences=_ensure_positive_int("max_preferences", data.get("max_preferences", 7)),
    )


def default_policy() -> CategoryPolicy:
    """Policy پیش‌فرض منطبق بر taxonomy سامانهٔ اصلی."""

    return parse_policy_dict(DEFAULT_POLICY_PAYLOAD)


@lru_cache(maxsize=8)
def _load_policy_cached(
    resolved_path: str,
    raw: str,
    mtime_ns: int,
    expected_version: Optional[str],
    on_version_mismatch: VersionMismatchMode,
) -> CategoryPolicy:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in policy file: {resolved_path}") from exc
    if not isinstance(data, Mapping):
        raise ValueError(f"Policy file must contain a JSON object: {resolved_path}")
    return parse_policy_dict(
        data,
        expected_version=expected_version,
        on_version_mismatch=on_version_mismatch,
    )


def load_policy(
    path: str | Path = DEFAULT_POLICY_PATH,
    *,
    expected_version: Optional[str] = DEFAULT_POLICY_VERSION,
    on_version_mismatch: VersionMismatchMode = "raise",
) -> CategoryPolicy:
    """بارگذاری سیاست از فایل JSON و بازگشت ساختار کش‌شونده."""

    policy_path = Path(path)
    try:
        raw = policy_path.read_text(encoding="utf-8")
        mtime_ns = policy_path.stat().st_mtime_ns
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Policy file not found: {policy_path}") from exc

    return _load_policy_cached(
        str(policy_path.resolve()),
        raw,
        mtime_ns,
        expected_version,
        on_version_mismatch,
    )


load_policy.cache_clear = _load_policy_cached.cache_clear  # type: ignore[attr-defined]
load_policy.cache_info = _load_policy_cached.cache_info  # type: ignore[attr-defined]


__all__ = [
    "DEFAULT_POLICY_VERSION",
    "DEFAULT_POLICY_PATH",
    "DEFAULT_POLICY_PAYLOAD",
    "VersionMismatchMode",
    "default_policy",
    "load_policy",
    "parse_policy_dict",
]
