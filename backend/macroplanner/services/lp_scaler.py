# backend/macroplanner/services/lp_scaler.py

import logging
import numpy as np
import pulp
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from macroplanner.models.domain import (
    MACRO_AXES, Ingredient, IngredientType, Macros, MacroTarget, MealSlot, Recipe, ScalingSolution,
)
from macroplanner.services.recipe_builder import ReferenceDensities

logger = logging.getLogger(__name__)


class VariableKind(str, Enum):
    INDEPENDENT = "independent"
    GROUP = "group"
    RECIPE_LEVEL = "recipe_level"


class ConstraintKind(str, Enum):
    DAILY_MACRO = "daily_macro"
    SLOT_MACRO = "slot_macro"
    SLACK_BOUND = "slack_bound"


@dataclass(frozen=True)
class LPVariable:
    """One continuous scale factor and the ingredients it drives"""
    id: str
    kind: VariableKind
    meal_index: int
    lower: float
    upper: Optional[float]
    contribution: Macros
    members: Tuple[int, ...] = ()

    @property
    def fixed(self) -> bool:
        return self.upper is not None and self.lower == self.upper


@dataclass(frozen=True)
class LPConstraint:
    """
    Macro band on a daily or per-slot sum, or a cap on one slack variable.
    SLACK_BOUND constraints name the slack they cap in `slack_of`.
    """
    id: str
    kind: ConstraintKind
    axis: str
    lower: float
    upper: float
    meal_index: Optional[int] = None
    slack_of: Optional[str] = None


@dataclass(frozen=True)
class ScalingModel:
    variables: Tuple[LPVariable, ...]
    constraints: Tuple[LPConstraint, ...]

    def variables_for_meal(self, meal_index: int) -> List[LPVariable]:
        return [v for v in self.variables if v.meal_index == meal_index]


@dataclass
class ScalingConfig:
    daily_band_low: float = 0.95
    daily_band_high: float = 1.05
    slack_cap_fraction: float = 0.5
    relaxed_slack_cap_fraction: float = 1.0
    under_slack_weight: float = 1.0
    over_slack_weight: float = 0.1
    daily_slack_multiplier: float = 3.0
    scaling_penalty: float = 0.001
    main_macro_min: float = 0.5
    default_min: float = 0.1
    group_min: float = 0.5
    recipe_min: float = 0.1
    aromatic_max: float = 3.0
    heuristic_max: float = 3.0
    heuristic_fat_max: float = 2.0
    time_limit_seconds: int = 30
    references: ReferenceDensities = field(default_factory=ReferenceDensities)


class ScalingModelBuilder:
    """Collects tagged variable and constraint records for the selected meals"""

    def __init__(self, target: MacroTarget, slots: Sequence[MealSlot], config: ScalingConfig):
        self.target = target
        self.slots = list(slots)
        self.config = config
        self._variables: List[LPVariable] = []

    def add_meal(self, meal_index: int, recipe: Recipe) -> List[LPVariable]:
        if not recipe.has_ingredient_detail:
            members = tuple(i for i, ing in enumerate(recipe.ingredients) if not ing.frozen)
            variables = [LPVariable(
                id=f"m{meal_index}_r",
                kind=VariableKind.RECIPE_LEVEL,
                meal_index=meal_index,
                lower=self.config.recipe_min,
                upper=None,
                contribution=recipe.base_macros,
                members=members,
            )]
            self._variables.extend(variables)
            return variables

        variables = []
        for index, ingredient in enumerate(recipe.ingredients):
            if ingredient.binding_group_id is not None:
                continue
            lower, upper = self.ingredient_bounds(ingredient)
            variables.append(LPVariable(
                id=f"m{meal_index}_i{index}",
                kind=VariableKind.INDEPENDENT,
                meal_index=meal_index,
                lower=lower,
                upper=upper,
                contribution=ingredient.contribution,
                members=(index,),
            ))

        for number, (group_id, indices) in enumerate(recipe.binding_groups().items()):
            members = [recipe.ingredients[i] for i in indices]
            upper = self.config.aromatic_max if any(m.aromatic for m in members) else None
            variables.append(LPVariable(
                id=f"m{meal_index}_g{number}",
                kind=VariableKind.GROUP,
                meal_index=meal_index,
                lower=self.config.group_min,
                upper=upper,
                contribution=Macros.total([m.contribution for m in members]),
                members=tuple(indices),
            ))

        self._variables.extend(variables)
        return variables

    def ingredient_bounds(self, ingredient: Ingredient) -> Tuple[float, Optional[float]]:
        if ingredient.frozen:
            return 1.0, 1.0
        lower = self.config.main_macro_min if ingredient.type_tag == IngredientType.MAIN_MACRO else self.config.default_min
        if ingredient.aromatic:
            return lower, self.config.aromatic_max
        return lower, None

    def build(self, slack_cap_fraction: float) -> ScalingModel:
        constraints: List[LPConstraint] = []

        def add_band(cid: str, kind: ConstraintKind, axis: str, lower: float, upper: float, meal_index=None):
            constraints.append(LPConstraint(cid, kind, axis, lower, upper, meal_index))
            cap = slack_cap_fraction * self.target.get(axis)
            for side in ("under", "over"):
                slack_id = f"{cid}_{side}"
                constraints.append(LPConstraint(
                    f"{slack_id}_cap", ConstraintKind.SLACK_BOUND, axis, 0.0, cap, meal_index, slack_of=slack_id,
                ))

        for axis in MACRO_AXES:
            goal = self.target.get(axis)
            add_band(
                f"daily_{axis}", ConstraintKind.DAILY_MACRO, axis,
                goal * self.config.daily_band_low, goal * self.config.daily_band_high,
            )

        for meal_index, slot in enumerate(self.slots):
            for axis in MACRO_AXES:
                lower, upper = slot.band(self.target, axis)
                add_band(f"slot{meal_index}_{axis}", ConstraintKind.SLOT_MACRO, axis, lower, upper, meal_index)

        return ScalingModel(variables=tuple(self._variables), constraints=tuple(constraints))


class MacroScalingOptimizer:
    """LP scaling of the selected recipes: strict slack caps, relaxed caps, then heuristic"""

    def __init__(self, config: ScalingConfig = None):
        self.config = config or ScalingConfig()

    def optimize(self, recipes: Sequence[Recipe], slots: Sequence[MealSlot], target: MacroTarget) -> List[ScalingSolution]:
        builder = ScalingModelBuilder(target, slots, self.config)
        for meal_index, recipe in enumerate(recipes):
            builder.add_meal(meal_index, recipe)

        model = builder.build(self.config.slack_cap_fraction)
        values = self._solve(model, target)
        if values is not None:
            logger.info("LP scaling solved with strict slack caps")
            return self._to_solutions(model, recipes, values, "lp")

        logger.warning("LP infeasible, retrying with relaxed slack caps")
        relaxed = builder.build(self.config.relaxed_slack_cap_fraction)
        values = self._solve(relaxed, target)
        if values is not None:
            logger.info("LP scaling solved with relaxed slack caps")
            return self._to_solutions(relaxed, recipes, values, "lp_relaxed")

        logger.warning("Relaxed LP infeasible, falling back to heuristic scaling")
        return self.heuristic_solutions(model, recipes, slots, target)

    def _solve(self, model: ScalingModel, target: MacroTarget) -> Optional[Dict[str, float]]:
        problem = pulp.LpProblem("macro_scaling", pulp.LpMinimize)

        x = {
            v.id: pulp.LpVariable(v.id, lowBound=v.lower, upBound=v.upper)
            for v in model.variables
        }

        slacks: Dict[str, pulp.LpVariable] = {}
        objective = []
        for c in model.constraints:
            if c.kind == ConstraintKind.SLACK_BOUND:
                continue
            scope = [v for v in model.variables if c.meal_index is None or v.meal_index == c.meal_index]
            expr = pulp.lpSum(x[v.id] * v.contribution.get(c.axis) for v in scope)

            under = pulp.LpVariable(f"{c.id}_under", lowBound=0)
            over = pulp.LpVariable(f"{c.id}_over", lowBound=0)
            slacks[under.name] = under
            slacks[over.name] = over

            problem += expr + under >= c.lower, f"{c.id}_low"
            problem += expr - over <= c.upper, f"{c.id}_high"

            # slack measured relative to the daily axis target
            scale = 1.0 / max(target.get(c.axis), 1.0)
            if c.kind == ConstraintKind.DAILY_MACRO:
                scale *= self.config.daily_slack_multiplier
            objective.append(self.config.under_slack_weight * scale * under)
            objective.append(self.config.over_slack_weight * scale * over)

        for c in model.constraints:
            if c.kind == ConstraintKind.SLACK_BOUND:
                problem += slacks[c.slack_of] <= c.upper, c.id

        # keep factors near the authored recipe when the slack cost ties
        for v in model.variables:
            if v.fixed:
                continue
            dev = pulp.LpVariable(f"{v.id}_dev", lowBound=0)
            problem += dev >= x[v.id] - 1, f"{v.id}_dev_up"
            problem += dev >= 1 - x[v.id], f"{v.id}_dev_down"
            objective.append(self.config.scaling_penalty * dev)

        problem += pulp.lpSum(objective)

        try:
            status = problem.solve(pulp.PULP_CBC_CMD(msg=0, timeLimit=self.config.time_limit_seconds))
        except pulp.PulpSolverError as e:
            logger.warning(f"LP solver error: {e}")
            return None

        if status != pulp.LpStatusOptimal:
            logger.warning(f"LP status: {pulp.LpStatus[status]}")
            return None

        values = {}
        for v in model.variables:
            value = x[v.id].varValue
            values[v.id] = float(value) if value is not None else v.lower
        return values

    def _to_solutions(self, model: ScalingModel, recipes: Sequence[Recipe], values: Dict[str, float], method: str) -> List[ScalingSolution]:
        solutions = []
        for meal_index, recipe in enumerate(recipes):
            factors = [1.0] * len(recipe.ingredients)
            recipe_factor = 1.0
            for v in model.variables_for_meal(meal_index):
                value = values[v.id]
                if v.kind == VariableKind.RECIPE_LEVEL:
                    recipe_factor = value
                for member in v.members:
                    factors[member] = value
            solutions.append(ScalingSolution(factors=tuple(factors), recipe_factor=recipe_factor, method=method))
        return solutions

    def density_cap(self, ingredient: Ingredient) -> float:
        """Heuristic upper factor from the ingredient's leading macro density"""
        densities = [ingredient.per_100g.get(axis) for axis in MACRO_AXES]
        lead = int(np.argmax(densities))
        if densities[lead] <= 0:
            return self.config.heuristic_max
        axis = MACRO_AXES[lead]
        limit = self.config.heuristic_fat_max if axis == "fat" else self.config.heuristic_max
        ratio = self.config.references.get(axis) / densities[lead]
        return min(limit, max(1.0, ratio))

    def heuristic_solutions(self, model: ScalingModel, recipes: Sequence[Recipe], slots: Sequence[MealSlot], target: MacroTarget) -> List[ScalingSolution]:
        solutions = []
        for meal_index, (recipe, slot) in enumerate(zip(recipes, slots)):
            goal = target.share(slot.target_percent)
            ratios = [
                goal.get(axis) / recipe.base_macros.get(axis)
                for axis in MACRO_AXES
                if recipe.base_macros.get(axis) > 0
            ]
            ratio = float(np.mean(ratios)) if ratios else 1.0

            factors = [1.0] * len(recipe.ingredients)
            recipe_factor = 1.0
            for v in model.variables_for_meal(meal_index):
                if v.fixed:
                    continue
                if v.kind == VariableKind.RECIPE_LEVEL:
                    cap = self.config.heuristic_max
                else:
                    lead = max(v.members, key=lambda i: recipe.ingredients[i].contribution.calories)
                    cap = self.density_cap(recipe.ingredients[lead])
                if v.upper is not None:
                    cap = min(cap, v.upper)
                value = float(np.clip(ratio, v.lower, max(cap, v.lower)))
                if v.kind == VariableKind.RECIPE_LEVEL:
                    recipe_factor = value
                for member in v.members:
                    factors[member] = value

            solutions.append(ScalingSolution(factors=tuple(factors), recipe_factor=recipe_factor, method="heuristic"))
        return solutions
