# backend/macroplanner/services/recipe_scorer.py

import numpy as np
from dataclasses import dataclass
from typing import Dict

from macroplanner.models.domain import MACRO_AXES, Macros, MacroTarget, MealSlot, Recipe


@dataclass
class ScoringWeights:
    """Weights for the recipe fitness sub-scores"""
    cosine: float = 0.4
    scalability: float = 0.4
    size: float = 0.2


@dataclass
class RecipeScore:
    """Scoring metrics for a recipe against one meal slot"""
    recipe_id: int
    cosine_similarity: float = 0.0
    weighted_scalability: float = 0.0
    size_factor: float = 0.0
    total: float = 0.0

    def calculate_total(self, weights: ScoringWeights) -> float:
        """Calculate weighted total, clipped to 0-100"""
        total = (
            weights.cosine * self.cosine_similarity +
            weights.scalability * self.weighted_scalability +
            weights.size * self.size_factor
        )
        self.total = float(np.clip(total, 0, 100))
        return self.total


def cosine_similarity(a: Macros, b: Macros) -> float:
    va = np.array([a.get(axis) for axis in MACRO_AXES], dtype=float)
    vb = np.array([b.get(axis) for axis in MACRO_AXES], dtype=float)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class RecipeScorer:
    """Pure 0-100 fitness score of a recipe for a slot's share of the daily target"""

    def __init__(self, weights: ScoringWeights = None):
        self.weights = weights or ScoringWeights()

    def score(self, recipe: Recipe, meal_target: Macros, proportions: Dict[str, float]) -> RecipeScore:
        result = RecipeScore(recipe_id=recipe.id)

        result.cosine_similarity = cosine_similarity(recipe.base_macros, meal_target) * 100

        weighted = sum(recipe.scalability.get(axis) * proportions[axis] for axis in MACRO_AXES)
        result.weighted_scalability = float(np.clip(weighted, 0, 1)) * 100

        if meal_target.calories > 0:
            result.size_factor = min(1.0, recipe.base_macros.calories / meal_target.calories) * 100

        result.calculate_total(self.weights)
        return result

    def score_for_slot(self, recipe: Recipe, target: MacroTarget, slot: MealSlot) -> RecipeScore:
        return self.score(recipe, target.share(slot.target_percent), target.proportions())
