# backend/macroplanner/services/recipe_prefilter.py

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from macroplanner.models.domain import MACRO_AXES, MacroTarget, Recipe

logger = logging.getLogger(__name__)

EPS = 1e-9

FAILS_DENSITY = "fails_density"
MISSING_AXIS = "missing_axis"
FAILS_RATIO = "fails_ratio"


@dataclass
class PreFilterConfig:
    density_threshold: float = 0.6
    ratio_tolerance_factor: float = 0.95
    enforce_axes: bool = True
    enforce_ratio: bool = True


@dataclass
class PrefilterRejection:
    recipe_id: int
    recipe_name: str
    reason: str
    density: float
    has_axes: Dict[str, bool] = field(default_factory=dict)
    axis_max: Dict[str, float] = field(default_factory=dict)
    targets: Dict[str, float] = field(default_factory=dict)


@dataclass
class PrefilterResult:
    accepted: List[Recipe]
    rejected: List[PrefilterRejection]

    def reason_counts(self) -> Dict[str, int]:
        return dict(Counter(rejection.reason for rejection in self.rejected))


def target_axis_ratios(target: MacroTarget) -> Dict[str, float]:
    """Dominance each axis carrier must reach, derived from the daily target"""
    return {
        "protein": target.protein / max(target.fat, 1.0),
        "carbs": target.carbs / max(target.protein, 1.0),
        "fat": target.fat / max(target.protein, 1.0),
    }


class RecipePrefilter:
    """Rejects recipes that cannot plausibly be scaled toward the target macro ratio"""

    def __init__(self, config: PreFilterConfig = None):
        self.config = config or PreFilterConfig()

    def compute_density(self, recipe: Recipe) -> float:
        counted = [ing for ing in recipe.ingredients if ing.counts_for_dominance]
        total = sum(ing.contribution.calories for ing in counted)
        if total <= 0:
            return 0.0
        independent = sum(ing.contribution.calories for ing in counted if ing.binding_group_id is None)
        bound = total - independent
        density = 0.7 * (independent / total) + 0.3 * (1 - bound / total)
        return max(0.0, min(1.0, density))

    def axis_dominance(self, recipe: Recipe) -> Dict[str, float]:
        """
        Best dominant/second-largest ratio per axis; 0 when no ingredient leads that axis.
        Pure carriers (second macro ~0) give no usable ratio and are skipped.
        """
        best = {axis: 0.0 for axis in MACRO_AXES}
        for ing in recipe.ingredients:
            if not ing.counts_for_dominance:
                continue
            values = [ing.per_100g.get(axis) for axis in MACRO_AXES]
            top = max(values)
            if top <= EPS:
                continue
            # ties go to the first axis in protein, carbs, fat order
            lead = values.index(top)
            second = max(v for i, v in enumerate(values) if i != lead)
            if second <= EPS:
                continue
            axis = MACRO_AXES[lead]
            best[axis] = max(best[axis], top / second)
        return best

    def evaluate(self, recipe: Recipe, target: MacroTarget) -> Optional[PrefilterRejection]:
        density = self.compute_density(recipe)
        axis_max = self.axis_dominance(recipe)
        has_axes = {axis: axis_max[axis] > 0 for axis in MACRO_AXES}
        targets = target_axis_ratios(target)

        def reject(reason: str) -> PrefilterRejection:
            return PrefilterRejection(
                recipe_id=recipe.id,
                recipe_name=recipe.name,
                reason=reason,
                density=round(density, 4),
                has_axes=has_axes,
                axis_max=axis_max,
                targets=targets,
            )

        if density < self.config.density_threshold:
            return reject(FAILS_DENSITY)

        if self.config.enforce_axes and not all(has_axes.values()):
            return reject(MISSING_AXIS)

        if self.config.enforce_ratio:
            tolerance = self.config.ratio_tolerance_factor
            for axis in MACRO_AXES:
                if axis_max[axis] < targets[axis] * tolerance:
                    return reject(FAILS_RATIO)

        return None

    def filter(self, recipes: Sequence[Recipe], target: MacroTarget) -> PrefilterResult:
        accepted = []
        rejected = []
        for recipe in recipes:
            rejection = self.evaluate(recipe, target)
            if rejection is None:
                accepted.append(recipe)
            else:
                logger.debug(f"Prefilter rejected {recipe.id} ({recipe.name}): {rejection.reason}")
                rejected.append(rejection)

        result = PrefilterResult(accepted=accepted, rejected=rejected)
        logger.info(
            f"Prefilter kept {len(accepted)}/{len(recipes)} recipes, "
            f"rejections: {result.reason_counts()}"
        )
        return result
