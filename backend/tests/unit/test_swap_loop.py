"""
Tests for the swap loop
Tests: SwapLoop.run(), swap_worst(), weakest_slot(), find_replacement()
"""

from unittest.mock import patch

import pytest

from macroplanner.models.domain import (
    DeviationReport, Macros, MacroTarget, PlanAttempt, slots_for_meal_count,
)
from macroplanner.services.lp_scaler import MacroScalingOptimizer
from macroplanner.services.quantity_rounder import QuantityRounder
from macroplanner.services.swap_loop import SwapConfig, SwapLoop

TWO_SLOTS = slots_for_meal_count(2)


def fake_attempt(max_pct, number=1, protein=100.0, target_protein=120.0):
    deviation = DeviationReport(
        protein_pct=abs(protein - target_protein) / target_protein * 100,
        carbs_pct=0.0,
        fat_pct=0.0,
        calories_pct=0.0,
        max_pct=max_pct,
    )
    return PlanAttempt(meals=(), totals=Macros(protein=protein), deviation=deviation, attempt_number=number)


@pytest.fixture
def swap_loop():
    return SwapLoop(MacroScalingOptimizer(), QuantityRounder(), SwapConfig(max_attempts=3))


@pytest.fixture
def lunch_dinner(make_recipe):
    lean = make_recipe(1, protein=10, meal_types=("lunch",))
    rich = make_recipe(2, protein=30, meal_types=("dinner",))
    big_lunch = make_recipe(3, protein=50, meal_types=("lunch",))
    small_lunch = make_recipe(4, protein=5, meal_types=("lunch",))
    big_dinner = make_recipe(5, protein=40, meal_types=("dinner",))
    small_dinner = make_recipe(6, protein=8, meal_types=("dinner",))
    return [lean, rich], [lean, rich, big_lunch, small_lunch, big_dinner, small_dinner]


class TestSwapWorst:
    """Direction-aware replacement of the weakest slot"""

    def test_deficit_replaces_lowest_contributor(self, swap_loop, lunch_dinner, target):
        current, candidates = lunch_dinner
        swapped = swap_loop.swap_worst(fake_attempt(20, protein=90), current, TWO_SLOTS, candidates, target)
        assert [r.id for r in swapped] == [3, 2]

    def test_surplus_replaces_highest_contributor(self, swap_loop, lunch_dinner, target):
        current, candidates = lunch_dinner
        swapped = swap_loop.swap_worst(fake_attempt(20, protein=150), current, TWO_SLOTS, candidates, target)
        assert [r.id for r in swapped] == [1, 6]

    def test_same_lunch_dinner_swaps_both(self, swap_loop, make_recipe, lunch_dinner, target):
        _, candidates = lunch_dinner
        lean = candidates[0]
        swapped = swap_loop.swap_worst(
            fake_attempt(20, protein=90), [lean, lean], TWO_SLOTS, candidates, target, same_lunch_dinner=True,
        )
        assert [r.id for r in swapped] == [3, 3]

    def test_replacement_falls_back_to_any_category(self, swap_loop, make_recipe):
        current = [make_recipe(1, protein=10, meal_types=("lunch",))]
        candidates = current + [make_recipe(7, protein=40, meal_types=("snack",))]
        replacement = swap_loop.find_replacement(current, TWO_SLOTS[0], candidates, "protein")
        assert replacement.id == 7

    def test_no_replacement_left(self, swap_loop, lunch_dinner, target):
        current, _ = lunch_dinner
        assert swap_loop.swap_worst(fake_attempt(20), current, TWO_SLOTS, current, target) is None


class TestRun:

    def test_stops_on_acceptance(self, swap_loop, lunch_dinner, target):
        current, candidates = lunch_dinner
        with patch.object(SwapLoop, "solve", return_value=fake_attempt(4.0)) as solve:
            outcome = swap_loop.run(current, TWO_SLOTS, candidates, target)
        assert outcome.accepted
        assert outcome.attempts_used == 1
        assert solve.call_count == 1

    def test_keeps_best_attempt(self, swap_loop, lunch_dinner, target):
        current, candidates = lunch_dinner
        attempts = [fake_attempt(30, 1), fake_attempt(20, 2), fake_attempt(25, 3)]
        with patch.object(SwapLoop, "solve", side_effect=attempts):
            outcome = swap_loop.run(current, TWO_SLOTS, candidates, target)
        assert outcome.best is attempts[1]
        assert outcome.attempts_used == 3
        assert outcome.max_pct_history == (30, 20, 25)
        assert not outcome.accepted

    def test_stops_on_stagnation(self, lunch_dinner, target):
        current, candidates = lunch_dinner
        loop = SwapLoop(MacroScalingOptimizer(), QuantityRounder(), SwapConfig(max_attempts=5, stagnation_limit=1))
        attempts = [fake_attempt(30, 1), fake_attempt(35, 2), fake_attempt(10, 3)]
        with patch.object(SwapLoop, "solve", side_effect=attempts):
            outcome = loop.run(current, TWO_SLOTS, candidates, target)
        assert outcome.attempts_used == 2
        assert outcome.best is attempts[0]

    def test_stops_without_replacement(self, swap_loop, lunch_dinner, target):
        current, _ = lunch_dinner
        with patch.object(SwapLoop, "solve", return_value=fake_attempt(30)):
            outcome = swap_loop.run(current, TWO_SLOTS, current, target)
        assert outcome.attempts_used == 1

    def test_real_solve_on_feasible_recipes(self, swap_loop, recipes_by_id, target):
        recipes = [recipes_by_id[101], recipes_by_id[201], recipes_by_id[302]]
        outcome = swap_loop.run(recipes, slots_for_meal_count(3), recipes, target)
        assert outcome.accepted
        assert outcome.best.recipe_ids == (101, 201, 302)
        assert outcome.best.max_pct <= 10
