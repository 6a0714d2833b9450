# backend/macroplanner/services/meal_plan_service.py

import logging
import time
import numpy as np
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import List, Optional, Sequence, Set

from macroplanner.models.domain import (
    GenerationMetadata, MacroTarget, MealSlot, MultiDayPlanResult, PlanAttempt, PlanResult,
    PlanStatus, Recipe, RunContext, slots_for_meal_count,
)
from macroplanner.schemas.recipes import UsageRecord
from macroplanner.services.greedy_refiner import GreedyRefiner, RefinerConfig
from macroplanner.services.lp_scaler import MacroScalingOptimizer, ScalingConfig
from macroplanner.services.nutrition_index import NutritionIndex
from macroplanner.services.quantity_rounder import QuantityRounder
from macroplanner.services.recipe_builder import RecipeBuilder, ReferenceDensities
from macroplanner.services.recipe_prefilter import PreFilterConfig, RecipePrefilter
from macroplanner.services.recipe_scorer import RecipeScorer, ScoringWeights
from macroplanner.services.recipe_source import HistorySource, NutritionSource, RecipeSource
from macroplanner.services.slot_selector import MealSlotSelector, SelectorConfig
from macroplanner.services.swap_loop import SwapConfig, SwapLoop
from macroplanner.services.variety_ranker import RankingCriteria, VarietyRanker

logger = logging.getLogger(__name__)

ALGORITHM_VERSION = "macro-lp-swap-refine-1.0"


@dataclass
class PlanOptions:
    same_lunch_dinner: bool = False
    max_swap_attempts: int = 3
    acceptance_threshold_pct: float = 10.0
    seed: int = 0
    user_id: Optional[int] = None
    as_of: Optional[date] = None


@dataclass
class PlannerConfig:
    """Tunables for every stage of the pipeline"""
    references: ReferenceDensities = field(default_factory=ReferenceDensities)
    prefilter: PreFilterConfig = field(default_factory=PreFilterConfig)
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    ranking: RankingCriteria = field(default_factory=RankingCriteria)
    selector: SelectorConfig = field(default_factory=SelectorConfig)
    scaling: ScalingConfig = field(default_factory=ScalingConfig)
    refiner: RefinerConfig = field(default_factory=RefinerConfig)
    stagnation_limit: int = 3
    recency_memory_size: int = 30

    @classmethod
    def from_settings(cls, settings) -> "PlannerConfig":
        references = ReferenceDensities(
            protein=settings.reference_protein_density,
            carbs=settings.reference_carbs_density,
            fat=settings.reference_fat_density,
        )
        return cls(
            references=references,
            prefilter=PreFilterConfig(
                density_threshold=settings.density_threshold,
                ratio_tolerance_factor=settings.ratio_tolerance_factor,
                enforce_axes=settings.enforce_axes,
            ),
            scaling=ScalingConfig(
                daily_band_low=settings.daily_band_low,
                daily_band_high=settings.daily_band_high,
                slack_cap_fraction=settings.slack_cap_fraction,
                relaxed_slack_cap_fraction=settings.relaxed_slack_cap_fraction,
                under_slack_weight=settings.under_slack_weight,
                over_slack_weight=settings.over_slack_weight,
                scaling_penalty=settings.scaling_penalty,
                time_limit_seconds=settings.lp_time_limit_seconds,
                references=references,
            ),
            refiner=RefinerConfig(
                max_iterations=settings.refiner_max_iterations,
                band_low=settings.daily_band_low,
                band_high=settings.daily_band_high,
                dinner_boost_max_tries=settings.dinner_boost_max_tries,
            ),
            stagnation_limit=settings.stagnation_limit,
            recency_memory_size=settings.recency_memory_size,
        )


def rejection_reason(attempt: PlanAttempt, threshold_pct: float) -> str:
    offenders = attempt.deviation.offenders(threshold_pct)
    details = ", ".join(f"{axis} ({pct:.1f}%)" for axis, pct in offenders)
    return f"Deviation above {threshold_pct:g}% tolerance: {details}"


class MealPlanGenerator:
    """Service layer turning a daily macro target and a recipe catalogue into a scaled plan"""

    def __init__(
        self,
        recipe_source: RecipeSource,
        nutrition_source: NutritionSource,
        history_source: HistorySource = None,
        config: PlannerConfig = None,
    ):
        self.recipe_source = recipe_source
        self.nutrition_source = nutrition_source
        self.history_source = history_source
        self.config = config or PlannerConfig()

    def new_context(self) -> RunContext:
        index = NutritionIndex.from_records(self.nutrition_source.fetch())
        return RunContext(nutrition_index=index, recency_memory=deque(maxlen=self.config.recency_memory_size))

    def load_recipes(self, context: RunContext) -> List[Recipe]:
        builder = RecipeBuilder(context.nutrition_index, self.config.references)
        return builder.build_all(self.recipe_source.fetch())

    def _usage(self, options: PlanOptions):
        if self.history_source is None or options.user_id is None:
            return [], set()
        return (
            self.history_source.fetch_history(options.user_id),
            self.history_source.fetch_favorites(options.user_id),
        )

    def generate_plan(self, target: MacroTarget, meal_count: int, options: PlanOptions = None, context: RunContext = None) -> PlanResult:
        options = options or PlanOptions()
        slots = slots_for_meal_count(meal_count)
        context = context or self.new_context()
        recipes = self.load_recipes(context)
        history, favorites = self._usage(options)
        return self._plan(target, slots, recipes, options, context, history, favorites)

    def generate_multi_day_plan(self, target: MacroTarget, meal_count: int, days: int, options: PlanOptions = None) -> MultiDayPlanResult:
        """Consecutive daily plans sharing recency memory; earlier days count as usage history"""
        if days < 1:
            raise ValueError(f"days must be at least 1, got {days}")
        options = options or PlanOptions()
        slots = slots_for_meal_count(meal_count)
        context = self.new_context()
        recipes = self.load_recipes(context)
        history, favorites = self._usage(options)

        start = options.as_of or date.today()
        seeds = np.random.SeedSequence(options.seed).spawn(days)
        planned: List[UsageRecord] = []
        results = []
        for day in range(days):
            day_options = replace(
                options,
                seed=int(seeds[day].generate_state(1)[0]),
                as_of=start + timedelta(days=day),
            )
            result = self._plan(target, slots, recipes, day_options, context, list(history) + planned, favorites)
            results.append(result)
            for meal in result.meals:
                planned.append(UsageRecord(recipe_id=meal.recipe.id, date_used=day_options.as_of, meal_type=meal.slot.name))
            logger.info(f"Day {day + 1}/{days}: {result.status.value}")

        return MultiDayPlanResult(days=tuple(results))

    def _plan(
        self,
        target: MacroTarget,
        slots: Sequence[MealSlot],
        recipes: List[Recipe],
        options: PlanOptions,
        context: RunContext,
        history: Sequence[UsageRecord],
        favorites: Set[int],
    ) -> PlanResult:
        started = time.perf_counter()
        plannable = [recipe for recipe in recipes if recipe.is_plannable]

        prefilter = RecipePrefilter(self.config.prefilter).filter(plannable, target)
        candidates = prefilter.accepted
        needed = len(slots) - (1 if options.same_lunch_dinner and len(slots) >= 2 else 0)
        if len(candidates) < needed:
            logger.warning(
                f"Prefilter left {len(candidates)} recipes for {needed} slots, "
                f"planning with all {len(plannable)} plannable recipes"
            )
            candidates = plannable

        def metadata(**kwargs) -> GenerationMetadata:
            return GenerationMetadata(
                algorithm_version=ALGORITHM_VERSION,
                total_recipes_available=len(recipes),
                prefiltered_recipes=len(prefilter.accepted),
                prefilter_rejections=prefilter.reason_counts(),
                generation_time_ms=round((time.perf_counter() - started) * 1000, 1),
                **kwargs,
            )

        if not candidates:
            logger.warning("No recipes available for planning")
            return PlanResult(
                status=PlanStatus.NO_RECIPES,
                target=target,
                slots=tuple(slots),
                metadata=metadata(),
                rejection_reason="No candidate recipes available",
            )

        rng = np.random.default_rng(options.seed)
        ranker = VarietyRanker(self.config.ranking, history, favorites, options.as_of)
        selector = MealSlotSelector(RecipeScorer(self.config.scoring), ranker, self.config.selector)
        selections = selector.select(candidates, target, slots, rng, context, options.same_lunch_dinner)

        swap_loop = SwapLoop(
            MacroScalingOptimizer(self.config.scaling),
            QuantityRounder(),
            SwapConfig(
                max_attempts=options.max_swap_attempts,
                acceptance_threshold_pct=options.acceptance_threshold_pct,
                stagnation_limit=self.config.stagnation_limit,
            ),
        )
        outcome = swap_loop.run(
            [selection.recipe for selection in selections],
            slots,
            candidates,
            target,
            options.same_lunch_dinner,
        )
        logger.info(
            f"Swap loop used {outcome.attempts_used} attempts, max deviation history "
            f"{[round(pct, 1) for pct in outcome.max_pct_history]}, "
            f"{'within' if outcome.accepted else 'outside'} tolerance before refinement"
        )

        refined = GreedyRefiner(self.config.refiner).refine(outcome.best, target)
        attempt = refined.attempt

        meta = metadata(
            selected_recipes=attempt.recipe_ids,
            swap_attempts_made=outcome.attempts_used,
            optimization_method=attempt.method,
            refiner_iterations=refined.iterations,
        )

        if attempt.max_pct <= options.acceptance_threshold_pct:
            logger.info(f"Plan accepted: max deviation {attempt.max_pct:.1f}%")
            return PlanResult(
                status=PlanStatus.ACCEPTED,
                target=target,
                slots=tuple(slots),
                metadata=meta,
                attempt=attempt,
                attempts_used=outcome.attempts_used,
            )

        reason = rejection_reason(attempt, options.acceptance_threshold_pct)
        logger.warning(f"Plan rejected: {reason}")
        return PlanResult(
            status=PlanStatus.REJECTED,
            target=target,
            slots=tuple(slots),
            metadata=meta,
            attempt=attempt,
            attempts_used=outcome.attempts_used,
            rejection_reason=reason,
        )


def generate_plan(
    target: MacroTarget,
    meal_count: int,
    options: PlanOptions = None,
    recipe_source: RecipeSource = None,
    nutrition_source: NutritionSource = None,
    history_source: HistorySource = None,
    config: PlannerConfig = None,
) -> PlanResult:
    """Convenience wrapper for a one-off plan"""
    if recipe_source is None or nutrition_source is None:
        raise ValueError("recipe_source and nutrition_source are required")
    generator = MealPlanGenerator(recipe_source, nutrition_source, history_source, config)
    return generator.generate_plan(target, meal_count, options)
