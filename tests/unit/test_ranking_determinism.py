from __future__ import annotations

from seatalloc.core.common.ranking import TieBreakRule, ranking_key, sort_candidates
from seatalloc.core.common.types import Category, Subcategory
from tests.conftest import make_candidate


def test_equal_metric_falls_back_to_merit_rank() -> None:
    rule = TieBreakRule("activity_score", "activity_score", ascending=False)
    a = make_candidate("a", 9, subcategory=Subcategory.SPORTS, activity_score=80.0)
    b = make_candidate("b", 4, subcategory=Subcategory.SPORTS, activity_score=80.0)

    ranked_once = sort_candidates([a, b], rule)
    ranked_twice = sort_candidates([b, a], rule)

    assert [c.candidate_id for c in ranked_once] == ["b", "a"]
    assert [c.candidate_id for c in ranked_twice] == ["b", "a"]


def test_direction_and_missing_values_last() -> None:
    rule = TieBreakRule("disability_rank", "disability_rank", ascending=True)
    missing = make_candidate("m", 1, subcategory=Subcategory.PWD)
    worse = make_candidate("w", 2, subcategory=Subcategory.PWD, disability_rank=7)
    better = make_candidate("b", 3, subcategory=Subcategory.PWD, disability_rank=2)

    ordered = sort_candidates([missing, worse, better], rule)

    assert [c.candidate_id for c in ordered] == ["b", "w", "m"]
    assert ranking_key(missing, rule)[0] == 1


def test_descending_metric_prefers_higher_score() -> None:
    rule = TieBreakRule("activity_score", "activity_score", ascending=False)
    low = make_candidate("low", 1, activity_score=40.5)
    high = make_candidate("high", 2, activity_score=90.0)
    assert [c.candidate_id for c in sort_candidates([low, high], rule)] == ["high", "low"]


def test_policy_sort_uses_category_rank(policy) -> None:
    first = make_candidate("x", 50, category=Category.SC, category_rank=1)
    second = make_candidate("y", 10, category=Category.SC, category_rank=3)
    rule = policy.tie_break_for(Category.SC, Subcategory.DEFAULT)
    assert [c.candidate_id for c in policy.sort_candidates([second, first], rule)] == ["x", "y"]
    by_name = policy.sort_candidates([second, first], "merit_rank")
    assert [c.candidate_id for c in by_name] == ["y", "x"]
