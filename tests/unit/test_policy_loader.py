from __future__ import annotations

import json
from pathlib import Path

import pytest

from seatalloc.core.common.types import Category, Subcategory
from seatalloc.core.policy_loader import (
    DEFAULT_POLICY_PAYLOAD,
    default_policy,
    load_policy,
    parse_policy_dict,
)
from tests.conftest import POLICY_PATH


def _write_policy(tmp_path: Path, payload: dict) -> Path:
    policy_path = tmp_path / "policy.json"
    policy_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return policy_path


def test_shipped_policy_matches_default() -> None:
    load_policy.cache_clear()
    assert load_policy(POLICY_PATH) == default_policy()


def test_default_policy_structure() -> None:
    policy = default_policy()
    assert policy.general_category is Category.GEN
    assert policy.max_rounds == 10
    assert policy.max_preferences == 7
    assert [rule.category for rule in policy.reserved_categories()] == [
        Category.EWS,
        Category.SC,
        Category.ST,
        Category.RBA,
        Category.OBC,
    ]
    assert policy.subcategories_of(Category.GEN) == (
        Subcategory.SPORTS,
        Subcategory.PWD,
        Subcategory.CDP,
        Subcategory.CPF,
    )
    sports = policy.tie_break_for(Category.GEN, Subcategory.SPORTS)
    assert sports.metric == "activity_score" and sports.ascending is False
    assert policy.tie_break_for(Category.SC, Subcategory.DEFAULT).metric == "category_rank"
    assert policy.tie_break_for(Category.GEN, Subcategory.DEFAULT).metric == "merit_rank"


def test_load_policy_is_cached(tmp_path: Path) -> None:
    load_policy.cache_clear()
    path = _write_policy(tmp_path, dict(DEFAULT_POLICY_PAYLOAD))
    first = load_policy(path)
    second = load_policy(path)
    assert first is second
    assert load_policy.cache_info().hits >= 1


def test_load_policy_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_policy(tmp_path / "absent.json")


def test_load_policy_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "policy.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid JSON"):
        load_policy(path)


def test_minor_version_mismatch_can_warn() -> None:
    payload = dict(DEFAULT_POLICY_PAYLOAD, version="1.1.0")
    with pytest.raises(ValueError, match="version mismatch"):
        parse_policy_dict(payload)
    with pytest.warns(RuntimeWarning):
        policy = parse_policy_dict(payload, on_version_mismatch="warn")
    assert policy.version == "1.1.0"


def test_major_version_mismatch_always_raises() -> None:
    payload = dict(DEFAULT_POLICY_PAYLOAD, version="2.0.0")
    with pytest.raises(ValueError, match="major incompatible"):
        parse_policy_dict(payload, on_version_mismatch="warn")


def test_max_rounds_override() -> None:
    policy = parse_policy_dict(dict(DEFAULT_POLICY_PAYLOAD, max_rounds=3))
    assert policy.max_rounds == 3
