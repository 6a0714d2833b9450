"""
Tests for the meal plan service
Tests: MealPlanGenerator.generate_plan(), generate_multi_day_plan(), generate_plan(), PlannerConfig
"""

import logging
from datetime import date
from unittest.mock import Mock

import pytest

from macroplanner.core.config import Settings
from macroplanner.models.domain import DeviationReport, Macros, MacroTarget, PlanAttempt, PlanStatus
from macroplanner.schemas.recipes import UsageRecord
from macroplanner.services.meal_plan_service import (
    ALGORITHM_VERSION, MealPlanGenerator, PlannerConfig, PlanOptions, generate_plan, rejection_reason,
)
from macroplanner.services.quantity_rounder import pivot_index


@pytest.fixture
def options(as_of):
    return PlanOptions(seed=7, as_of=as_of)


class TestAcceptedPlan:
    """Balanced catalogue against a reachable target"""

    def test_three_meal_plan_accepted(self, planner, target, options):
        result = planner.generate_plan(target, 3, options)

        assert result.status == PlanStatus.ACCEPTED
        assert result.success
        assert result.rejection_reason is None
        assert result.best_attempt is None
        assert len(result.meals) == 3
        assert result.deviation_report.max_pct <= 10

    def test_meals_follow_slot_categories(self, planner, target, options):
        result = planner.generate_plan(target, 3, options)
        assert [meal.slot.name for meal in result.meals] == ["breakfast", "lunch", "dinner"]
        for meal in result.meals:
            assert meal.recipe.matches(meal.slot.category)
        assert len({meal.recipe.id for meal in result.meals}) == 3

    def test_prefiltered_recipe_never_selected(self, planner, target, options):
        for seed in range(5):
            result = planner.generate_plan(target, 3, PlanOptions(seed=seed, as_of=options.as_of))
            assert 303 not in result.metadata.selected_recipes

    def test_metadata(self, planner, target, options):
        result = planner.generate_plan(target, 3, options)
        meta = result.metadata
        assert meta.algorithm_version == ALGORITHM_VERSION
        assert meta.total_recipes_available == 7
        assert meta.prefiltered_recipes == 6
        assert meta.prefilter_rejections == {"fails_ratio": 1}
        assert meta.selected_recipes == tuple(meal.recipe.id for meal in result.meals)
        assert meta.optimization_method == "lp"
        assert meta.swap_attempts_made == result.attempts_used
        assert meta.generation_time_ms >= 0

    def test_totals_match_meal_sum(self, planner, target, options):
        result = planner.generate_plan(target, 3, options)
        totals = Macros.total([meal.macros for meal in result.meals])
        assert result.total_macros.protein == pytest.approx(totals.protein)
        assert result.deviation_report == DeviationReport.from_totals(result.total_macros, target)


class TestPlanInvariants:
    """Ingredient rules hold in every returned plan"""

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_ingredient_rules(self, planner, target, as_of, seed):
        result = planner.generate_plan(target, 3, PlanOptions(seed=seed, as_of=as_of))
        for meal in result.meals:
            for item in meal.ingredients:
                ingredient = item.ingredient
                if ingredient.frozen:
                    assert item.quantity == ingredient.quantity
                elif ingredient.quantity > 0:
                    assert item.quantity > 0
                    cap = 3.0 if ingredient.aromatic else None
                    if cap is not None:
                        assert item.quantity <= ingredient.quantity * cap + 1e-9

            for indices in meal.recipe.binding_groups().values():
                pivot = pivot_index(meal.recipe, indices)
                ratio = meal.ingredients[pivot].ratio
                for index in indices:
                    authored = meal.recipe.ingredients[index].quantity
                    # members sit within one rounding step of the pivot ratio
                    assert abs(meal.ingredients[index].quantity - authored * ratio) <= 5.0

    def test_swap_history_logged(self, planner, target, options, caplog):
        caplog.set_level(logging.INFO, logger="macroplanner.services.meal_plan_service")
        planner.generate_plan(target, 3, options)
        assert "Swap loop used" in caplog.text
        assert "tolerance before refinement" in caplog.text

    def test_same_seed_same_plan(self, planner, target, options):
        first = planner.generate_plan(target, 3, options)
        second = planner.generate_plan(target, 3, options)
        assert first == second

    def test_single_meal_carries_whole_target(self, planner, target, options):
        result = planner.generate_plan(target, 1, options)
        assert len(result.meals) == 1
        assert result.slots[0].name == "lunch"
        assert result.slots[0].target_percent == 100
        assert result.meals[0].recipe.matches("lunch")

    def test_same_lunch_dinner(self, planner, target, as_of):
        result = planner.generate_plan(target, 3, PlanOptions(seed=4, as_of=as_of, same_lunch_dinner=True))
        lunch, dinner = result.meals[1], result.meals[2]
        assert lunch.recipe.id == dinner.recipe.id


class TestRejectedPlan:

    def test_unreachable_target_rejected(self, carb_only_planner, as_of):
        target = MacroTarget(protein=200, carbs=100, fat=40)
        result = carb_only_planner.generate_plan(target, 3, PlanOptions(seed=1, as_of=as_of))

        assert result.status == PlanStatus.REJECTED
        assert not result.success
        assert "protein" in result.rejection_reason
        assert result.best_attempt is result.attempt
        assert len(result.meals) == 3
        assert result.metadata.optimization_method == "lp_relaxed"

    def test_prefilter_fallback_when_too_few_pass(self, carb_only_planner, as_of):
        target = MacroTarget(protein=200, carbs=100, fat=40)
        result = carb_only_planner.generate_plan(target, 3, PlanOptions(seed=1, as_of=as_of))
        assert result.metadata.prefiltered_recipes == 0
        assert result.metadata.prefilter_rejections == {"missing_axis": 3}
        assert result.attempts_used == 1

    def test_no_recipes(self, empty_planner, target):
        result = empty_planner.generate_plan(target, 3)
        assert result.status == PlanStatus.NO_RECIPES
        assert result.meals == ()
        assert result.total_macros is None
        assert result.rejection_reason

    def test_rejection_reason_lists_offenders(self):
        deviation = DeviationReport(protein_pct=25.0, carbs_pct=4.0, fat_pct=12.5, calories_pct=8.0, max_pct=25.0)
        attempt = PlanAttempt(meals=(), totals=Macros(), deviation=deviation)
        assert rejection_reason(attempt, 10) == "Deviation above 10% tolerance: protein (25.0%), fat (12.5%)"


class TestInputValidation:

    @pytest.mark.parametrize("meal_count", [0, 6, -1])
    def test_invalid_meal_count(self, planner, target, meal_count):
        with pytest.raises(ValueError):
            planner.generate_plan(target, meal_count)

    def test_non_positive_target(self):
        with pytest.raises(ValueError):
            MacroTarget(protein=0, carbs=100, fat=50)

    def test_multi_day_requires_a_day(self, planner, target):
        with pytest.raises(ValueError):
            planner.generate_multi_day_plan(target, 3, 0)


class TestMultiDay:

    def test_one_result_per_day(self, planner, target, options):
        result = planner.generate_multi_day_plan(target, 3, 3, options)
        assert len(result.days) == 3
        assert result.accepted_days == 3
        assert result.distinct_recipes >= 3

    def test_reproducible(self, planner, target, options):
        first = planner.generate_multi_day_plan(target, 3, 2, options)
        second = planner.generate_multi_day_plan(target, 3, 2, options)
        assert first == second


class TestHistory:

    def test_history_source_queried_for_user(self, planner, target, as_of):
        history = Mock()
        history.fetch_history.return_value = [UsageRecord(recipe_id=201, date_used=date(2024, 3, 14))]
        history.fetch_favorites.return_value = {302}
        history_planner = MealPlanGenerator(
            planner.recipe_source, planner.nutrition_source, history,
        )
        result = history_planner.generate_plan(target, 3, PlanOptions(seed=0, as_of=as_of, user_id=42))

        history.fetch_history.assert_called_once_with(42)
        history.fetch_favorites.assert_called_once_with(42)
        assert result.status == PlanStatus.ACCEPTED

    def test_history_skipped_without_user(self, planner, target):
        history = Mock()
        history_planner = MealPlanGenerator(
            planner.recipe_source, planner.nutrition_source, history,
        )
        history_planner.generate_plan(target, 2)
        history.fetch_history.assert_not_called()


class TestModuleEntryPoint:

    def test_generate_plan_function(self, planner, target, options):
        result = generate_plan(
            target, 3, options,
            recipe_source=planner.recipe_source,
            nutrition_source=planner.nutrition_source,
        )
        assert result.status == PlanStatus.ACCEPTED

    def test_sources_required(self, target):
        with pytest.raises(ValueError):
            generate_plan(target, 3)


class TestPlannerConfig:

    def test_from_settings(self):
        settings = Settings(density_threshold=0.5, slack_cap_fraction=0.4, refiner_max_iterations=10, reference_fat_density=12)
        config = PlannerConfig.from_settings(settings)
        assert config.prefilter.density_threshold == 0.5
        assert config.scaling.slack_cap_fraction == 0.4
        assert config.refiner.max_iterations == 10
        assert config.references.fat == 12
        assert config.scaling.references.fat == 12
