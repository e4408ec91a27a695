from __future__ import annotations

from collections import Counter

import pytest

hypothesis = pytest.importorskip("hypothesis")
from hypothesis import HealthCheck, given, settings  # type: ignore  # noqa: E402
from hypothesis import strategies as st  # type: ignore  # noqa: E402

from seatalloc.core.allocation.orchestrator import Phase, RoundOrchestrator, StopReason  # noqa: E402
from seatalloc.core.allocation.store import InMemorySeatStore  # noqa: E402
from seatalloc.core.common.types import Category, Subcategory  # noqa: E402
from tests.conftest import build_policy, make_candidate, make_cell  # noqa: E402

PROGRAMS = ("p0", "p1", "p2", "p3")
POLICY = build_policy(
    [
        {"category": "GEN", "subcategories": [{"subcategory": "PWD", "criterion": "disability_rank"}]},
        {
            "category": "EWS",
            "home_is_default": True,
            "subcategories": [
                {"subcategory": "SPORTS", "criterion": "activity_score"},
                {"subcategory": "PWD", "criterion": "disability_rank"},
            ],
        },
    ]
)
CELL_KINDS = (
    (Category.GEN, Subcategory.DEFAULT),
    (Category.GEN, Subcategory.PWD),
    (Category.EWS, Subcategory.DEFAULT),
    (Category.EWS, Subcategory.SPORTS),
    (Category.EWS, Subcategory.PWD),
)


@st.composite
def instances(draw):
    capacities = {
        (program, category, subcategory): draw(st.integers(min_value=0, max_value=2))
        for program in PROGRAMS
        for category, subcategory in CELL_KINDS
    }
    count = draw(st.integers(min_value=1, max_value=12))
    merit = draw(st.permutations(range(1, count + 1)))
    candidates = []
    ews_rank = 0
    for idx in range(count):
        category = draw(st.sampled_from((Category.GEN, Category.EWS)))
        subcategory = draw(st.sampled_from((Subcategory.DEFAULT, Subcategory.PWD, Subcategory.SPORTS)))
        prefs = draw(st.lists(st.sampled_from(PROGRAMS), unique=True, max_size=len(PROGRAMS)))
        extra: dict[str, object] = {
            "disability_rank": draw(st.one_of(st.none(), st.integers(min_value=1, max_value=5))),
            "activity_score": draw(st.one_of(st.none(), st.integers(min_value=0, max_value=100).map(float))),
        }
        if category is Category.EWS:
            ews_rank += 1
            extra["category_rank"] = ews_rank
        candidates.append(
            make_candidate(f"C{idx}", merit[idx], prefs, category=category, subcategory=subcategory, **extra)
        )
    return capacities, candidates


def _run(capacities, candidates):
    store = InMemorySeatStore(
        [
            make_cell(program, capacity, category, subcategory)
            for (program, category, subcategory), capacity in capacities.items()
        ]
    )
    outcome = RoundOrchestrator(store, POLICY, candidates).run()
    return store, outcome


@settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(instances())
def test_random_runs_keep_seat_invariants(instance) -> None:
    capacities, candidates = instance
    store, outcome = _run(capacities, candidates)

    assert outcome.stop_reason is not StopReason.INVARIANT_VIOLATION
    assert outcome.qa_passed

    active = store.active_records()
    assert len({allocation.candidate_id for allocation in active}) == len(active)
    used = Counter(allocation.cell for allocation in active)
    for cell in store.cells():
        assert cell.initial_capacity - cell.capacity == used[cell.key]
        assert used[cell.key] <= cell.initial_capacity

    by_id = {candidate.candidate_id: candidate for candidate in candidates}
    for allocation in active:
        candidate = by_id[allocation.candidate_id]
        assert candidate.choice_rank_of(allocation.cell.program) == allocation.choice_rank
        assert POLICY.is_eligible_for(candidate, allocation.cell.category, allocation.cell.subcategory)
        if allocation.cell.subcategory.is_horizontal:
            assert candidate.subcategory is allocation.cell.subcategory


@settings(max_examples=40, deadline=None)
@given(instances())
def test_frozen_and_upgrades_are_monotonic(instance) -> None:
    capacities, candidates = instance
    store, _ = _run(capacities, candidates)

    history: dict[str, list] = {}
    for record in store.history():
        history.setdefault(record.allocation.candidate_id, []).append(record)
    for records in history.values():
        ranks = [record.allocation.choice_rank for record in records]
        assert ranks == sorted(ranks, reverse=True)
        assert len(set(ranks)) == len(ranks)
        frozen = [record for record in records if record.allocation.choice_rank == 1]
        assert all(record.active for record in frozen)


@settings(max_examples=25, deadline=None)
@given(instances())
def test_runs_are_deterministic(instance) -> None:
    capacities, candidates = instance
    first, first_outcome = _run(capacities, candidates)
    second, second_outcome = _run(capacities, list(candidates))

    assert first.history() == second.history()
    assert first_outcome.stop_reason == second_outcome.stop_reason


@settings(max_examples=40, deadline=None)
@given(instances())
def test_horizontal_seats_come_only_from_their_own_phase(instance) -> None:
    capacities, candidates = instance
    _, outcome = _run(capacities, candidates)

    for item in outcome.phases:
        for grant in item.result.granted:
            if grant.cell.subcategory.is_horizontal:
                assert item.phase in (Phase.GENERAL_SUBCATEGORY, Phase.RESERVED_SUBCATEGORY)
                assert item.target == f"{grant.cell.category.value}/{grant.cell.subcategory.value}"
            else:
                assert item.phase is not Phase.RESERVED_SUBCATEGORY
