from __future__ import annotations

import json
from pathlib import Path

import pytest

from seatalloc.core.policy_loader import load_policy, parse_policy_dict


def _write_policy(tmp_path: Path, payload: dict) -> Path:
    policy_path = tmp_path / "policy.json"
    policy_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return policy_path


def _payload(**overrides: object) -> dict:
    payload: dict = {
        "version": "1.0.0",
        "general_category": "GEN",
        "categories": [
            {"category": "GEN", "subcategories": [{"subcategory": "PWD", "criterion": "disability_rank"}]},
            {"category": "EWS"},
        ],
    }
    payload.update(overrides)
    return payload


def test_policy_missing_required_keys_raises(tmp_path: Path) -> None:
    policy_path = _write_policy(tmp_path, {"version": "1.0.0"})
    with pytest.raises(ValueError):
        load_policy(policy_path)


def test_unknown_category_rejected() -> None:
    with pytest.raises(ValueError, match="unknown category"):
        parse_policy_dict(_payload(categories=[{"category": "GEN"}, {"category": "XYZ"}]))


def test_unknown_subcategory_rejected() -> None:
    categories = [{"category": "GEN", "subcategories": [{"subcategory": "VETERAN", "criterion": "merit_rank"}]}]
    with pytest.raises(ValueError, match="unknown subcategory"):
        parse_policy_dict(_payload(categories=categories))


def test_unknown_criterion_rejected() -> None:
    categories = [{"category": "GEN", "subcategories": [{"subcategory": "PWD", "criterion": "height"}]}]
    with pytest.raises(ValueError, match="unknown tie-break"):
        parse_policy_dict(_payload(categories=categories))


def test_unknown_metric_rejected() -> None:
    with pytest.raises(ValueError, match="unknown metric"):
        parse_policy_dict(_payload(criteria={"merit_rank": {"metric": "age"}}))


def test_default_listed_as_horizontal_rejected() -> None:
    categories = [{"category": "GEN", "subcategories": [{"subcategory": "DEFAULT", "criterion": "merit_rank"}]}]
    with pytest.raises(ValueError, match="horizontal"):
        parse_policy_dict(_payload(categories=categories))


def test_duplicate_category_rejected() -> None:
    with pytest.raises(ValueError, match="defined twice"):
        parse_policy_dict(_payload(categories=[{"category": "GEN"}, {"category": "GEN"}]))


def test_general_category_must_be_configured() -> None:
    with pytest.raises(ValueError, match="general category"):
        parse_policy_dict(_payload(categories=[{"category": "EWS"}]))


def test_boolean_flags_are_strict() -> None:
    with pytest.raises(TypeError):
        parse_policy_dict(_payload(categories=[{"category": "GEN", "home_is_default": "yes"}]))


@pytest.mark.parametrize("value", [0, 8])
def test_max_preferences_bounds(value: int) -> None:
    with pytest.raises(ValueError):
        parse_policy_dict(_payload(max_preferences=value))


def test_max_rounds_must_be_positive_integer() -> None:
    with pytest.raises(ValueError):
        parse_policy_dict(_payload(max_rounds=0))
    with pytest.raises(TypeError):
        parse_policy_dict(_payload(max_rounds="3"))
