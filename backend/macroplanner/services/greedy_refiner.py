# backend/macroplanner/services/greedy_refiner.py

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from macroplanner.models.domain import (
    MACRO_AXES, Macros, MacroTarget, PlanAttempt, PlannedMeal, ScaledIngredient,
)
from macroplanner.services.quantity_rounder import (
    capped_quantity, pivot_index, round_quantity, scaled_ingredient, unit_step,
)

logger = logging.getLogger(__name__)


@dataclass
class RefinerConfig:
    max_iterations: int = 35
    band_low: float = 0.95
    band_high: float = 1.05
    calorie_cap: float = 1.05
    default_cap: float = 3.0
    aromatic_cap: float = 3.0
    min_improvement: float = 1e-6
    dinner_boost: bool = True
    dinner_boost_max_tries: int = 50


@dataclass(frozen=True)
class Move:
    """A single step increase of one ingredient, or of a whole binding group"""
    meal_index: int
    quantities: Tuple[Tuple[int, float], ...]
    delta: Macros


@dataclass(frozen=True)
class RefinementResult:
    attempt: PlanAttempt
    iterations: int
    moves_applied: int
    boost_moves: int


def coverage(totals: Macros, target: MacroTarget) -> Dict[str, float]:
    return {axis: totals.get(axis) / target.get(axis) for axis in MACRO_AXES}


def linf_deviation(totals: Macros, target: MacroTarget) -> float:
    """Largest absolute percentage deviation across protein, carbs and fat"""
    return max(abs(totals.get(axis) - target.get(axis)) / target.get(axis) * 100 for axis in MACRO_AXES)


class GreedyRefiner:
    """Local search nudging ingredient quantities by unit steps to shrink the L-inf deviation"""

    def __init__(self, config: RefinerConfig = None):
        self.config = config or RefinerConfig()

    def refine(self, attempt: PlanAttempt, target: MacroTarget) -> RefinementResult:
        current = attempt
        boost_moves = 0
        if self.config.dinner_boost:
            current, boost_moves = self._boost_dinner(current, target)

        moves_applied = 0
        iterations = 0
        for iterations in range(1, self.config.max_iterations + 1):
            cov = coverage(current.totals, target)
            if all(self.config.band_low <= value <= self.config.band_high for value in cov.values()):
                break

            axis = min(MACRO_AXES, key=cov.get)
            if cov[axis] >= self.config.band_low:
                # only surpluses remain and moves only ever add
                break

            move = self._best_move(current, target, axis)
            if move is None:
                break
            current = self.apply(current, move, target)
            moves_applied += 1

        logger.info(
            f"Refiner: {moves_applied} moves (+{boost_moves} dinner) in {iterations} iterations, "
            f"max deviation {attempt.max_pct:.1f}% -> {current.max_pct:.1f}%"
        )
        return RefinementResult(
            attempt=current,
            iterations=iterations,
            moves_applied=moves_applied,
            boost_moves=boost_moves,
        )

    def _within_calorie_cap(self, totals: Macros, target: MacroTarget) -> bool:
        return totals.calories <= target.calories * self.config.calorie_cap

    def _best_move(self, attempt: PlanAttempt, target: MacroTarget, axis: str) -> Optional[Move]:
        best = None
        best_score = linf_deviation(attempt.totals, target) - self.config.min_improvement
        for move in self.candidate_moves(attempt):
            if move.delta.get(axis) <= 0:
                continue
            totals = attempt.totals + move.delta
            if not self._within_calorie_cap(totals, target):
                continue
            score = linf_deviation(totals, target)
            if score < best_score:
                best = move
                best_score = score
        return best

    def _boost_dinner(self, attempt: PlanAttempt, target: MacroTarget) -> Tuple[PlanAttempt, int]:
        dinner = next((i for i, meal in enumerate(attempt.meals) if meal.slot.name == "dinner"), None)
        if dinner is None:
            return attempt, 0

        current = attempt
        applied = 0
        for _ in range(self.config.dinner_boost_max_tries):
            cov = coverage(current.totals, target)
            deficits = [axis for axis in MACRO_AXES if cov[axis] < self.config.band_low]
            if not deficits:
                break
            axis = min(deficits, key=cov.get)

            now = linf_deviation(current.totals, target)
            options = []
            for move in self.candidate_moves(current):
                if move.meal_index != dinner or move.delta.get(axis) <= 0:
                    continue
                totals = current.totals + move.delta
                if not self._within_calorie_cap(totals, target):
                    continue
                if linf_deviation(totals, target) < now - self.config.min_improvement:
                    options.append(move)
            if not options:
                break

            move = max(options, key=lambda m: m.delta.get(axis))
            current = self.apply(current, move, target)
            applied += 1
        return current, applied

    def candidate_moves(self, attempt: PlanAttempt) -> List[Move]:
        moves = []
        for meal_index, meal in enumerate(attempt.meals):
            if meal.recipe_level:
                continue
            recipe = meal.recipe
            for index, item in enumerate(meal.ingredients):
                ing = item.ingredient
                if ing.frozen or ing.binding_group_id is not None or not ing.resolved:
                    continue
                new_qty = round(item.quantity + unit_step(ing.unit, item.quantity), 4)
                if new_qty > ing.quantity * self._cap(ing.aromatic) + 1e-9:
                    continue
                moves.append(Move(
                    meal_index=meal_index,
                    quantities=((index, new_qty),),
                    delta=ing.macros_at(new_qty) - item.macros,
                ))

            for indices in recipe.binding_groups().values():
                move = self._group_move(meal_index, meal, indices)
                if move is not None:
                    moves.append(move)
        return moves

    def _group_move(self, meal_index: int, meal: PlannedMeal, indices: List[int]) -> Optional[Move]:
        recipe = meal.recipe
        pivot = pivot_index(recipe, indices)
        pivot_ing = recipe.ingredients[pivot]
        if pivot_ing.quantity <= 0:
            return None

        current_qty = meal.ingredients[pivot].quantity
        new_pivot = round(current_qty + unit_step(pivot_ing.unit, current_qty), 4)
        effective = new_pivot / pivot_ing.quantity
        aromatic = any(recipe.ingredients[i].aromatic for i in indices)
        if effective > self._cap(aromatic) + 1e-9:
            return None

        quantities = []
        delta = Macros()
        for index in indices:
            member = recipe.ingredients[index]
            if index == pivot:
                qty = new_pivot
            elif aromatic:
                qty = capped_quantity(member, member.quantity * effective, self.config.aromatic_cap)
            else:
                qty = round_quantity(member.quantity * effective, member.unit)
            quantities.append((index, qty))
            delta = delta + (member.macros_at(qty) - meal.ingredients[index].macros)
        return Move(meal_index=meal_index, quantities=tuple(quantities), delta=delta)

    def _cap(self, aromatic: bool) -> float:
        return self.config.aromatic_cap if aromatic else self.config.default_cap

    def apply(self, attempt: PlanAttempt, move: Move, target: MacroTarget) -> PlanAttempt:
        """New attempt with the move applied; the input attempt is left untouched"""
        meal = attempt.meals[move.meal_index]
        ingredients: List[ScaledIngredient] = list(meal.ingredients)
        for index, quantity in move.quantities:
            ing = ingredients[index].ingredient
            ratio = quantity / ing.quantity if ing.quantity > 0 else 1.0
            ingredients[index] = scaled_ingredient(ing, quantity, ratio)

        new_meal = replace(
            meal,
            ingredients=tuple(ingredients),
            macros=Macros.total([item.macros for item in ingredients]),
        )
        meals = list(attempt.meals)
        meals[move.meal_index] = new_meal
        return PlanAttempt.evaluate(tuple(meals), target, attempt.attempt_number)
