# backend/macroplanner/services/slot_selector.py

import logging
import math
import numpy as np
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from macroplanner.models.domain import MacroTarget, MealSlot, Recipe, RunContext
from macroplanner.services.recipe_scorer import RecipeScorer
from macroplanner.services.variety_ranker import RankedRecipe, VarietyRanker

logger = logging.getLogger(__name__)


@dataclass
class SelectorConfig:
    min_top_k: int = 15
    top_k_fraction: float = 0.25
    softmax_temperature: float = 0.35
    tail_probability: float = 0.25
    jitter: float = 0.5
    min_score: float = 10.0
    recency_min_pool: int = 3


@dataclass(frozen=True)
class SlotSelection:
    slot: MealSlot
    recipe: Recipe
    score: float
    category_fallback: bool = False
    mirrored: bool = False


def weighted_random_index(weights: Sequence[float], rng: np.random.Generator) -> int:
    w = np.asarray(weights, dtype=float)
    total = w.sum()
    if not np.isfinite(total) or total <= 0:
        return 0
    return int(rng.choice(len(w), p=w / total))


class MealSlotSelector:
    """Weighted-random recipe assignment for each meal slot"""

    def __init__(self, scorer: RecipeScorer, ranker: VarietyRanker, config: SelectorConfig = None):
        self.scorer = scorer
        self.ranker = ranker
        self.config = config or SelectorConfig()

    def rank_for_slot(self, recipes: Sequence[Recipe], target: MacroTarget, slot: MealSlot) -> List[RankedRecipe]:
        scored = [(recipe, self.scorer.score_for_slot(recipe, target, slot).total) for recipe in recipes]
        return self.ranker.rank(scored)

    def candidate_pool(self, ranked: List[RankedRecipe], slot: MealSlot, used: Set[int]):
        """Eligible candidates for a slot and whether the category fallback was needed"""
        in_category = [r for r in ranked if r.recipe.matches(slot.category) and r.recipe.id not in used]
        strong = [r for r in in_category if r.final_score > self.config.min_score]
        if strong:
            return strong, False
        if in_category:
            return in_category, False

        unused = [r for r in ranked if r.recipe.id not in used]
        if unused:
            logger.warning(f"No {slot.category} recipes left for {slot.name}, using best of any category")
            return unused, True

        logger.warning(f"Every recipe already used, allowing a repeat for {slot.name}")
        return list(ranked), True

    def pick(self, pool: List[RankedRecipe], rng: np.random.Generator, recent: Set[int]) -> RankedRecipe:
        fresh = [r for r in pool if r.recipe.id not in recent]
        if len(fresh) >= self.config.recency_min_pool:
            pool = fresh

        jittered = [(r, r.final_score + rng.random() * self.config.jitter) for r in pool]
        jittered.sort(key=lambda item: item[1], reverse=True)

        n = len(jittered)
        k = max(self.config.min_top_k, math.ceil(self.config.top_k_fraction * n))

        if k < n and rng.random() < self.config.tail_probability:
            tail = jittered[k:]
            best_tail = max(r.final_score for r, _ in tail)
            weights = [1.0 / (1.0 + max(0.0, best_tail - r.final_score)) for r, _ in tail]
            return tail[weighted_random_index(weights, rng)][0]

        top = jittered[:k]
        lead = top[0][1]
        weights = [math.exp((value - lead) / self.config.softmax_temperature) for _, value in top]
        return top[weighted_random_index(weights, rng)][0]

    def select(
        self,
        recipes: Sequence[Recipe],
        target: MacroTarget,
        slots: Sequence[MealSlot],
        rng: np.random.Generator,
        context: RunContext,
        same_lunch_dinner: bool = False,
    ) -> List[SlotSelection]:
        selections: List[SlotSelection] = []
        by_slot: Dict[str, SlotSelection] = {}
        used: Set[int] = set()

        for slot in slots:
            if same_lunch_dinner and slot.name == "dinner" and "lunch" in by_slot:
                lunch = by_slot["lunch"]
                selection = SlotSelection(slot=slot, recipe=lunch.recipe, score=lunch.score, mirrored=True)
            else:
                ranked = self.rank_for_slot(recipes, target, slot)
                pool, fallback = self.candidate_pool(ranked, slot, used)
                chosen = self.pick(pool, rng, context.recent_ids())
                selection = SlotSelection(
                    slot=slot,
                    recipe=chosen.recipe,
                    score=chosen.final_score,
                    category_fallback=fallback,
                )
                used.add(chosen.recipe.id)
                context.remember(chosen.recipe.id)

            logger.debug(f"{slot.name}: {selection.recipe.name} (score {selection.score:.1f})")
            selections.append(selection)
            by_slot[slot.name] = selection

        return selections
