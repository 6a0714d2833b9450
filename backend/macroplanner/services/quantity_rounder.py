# backend/macroplanner/services/quantity_rounder.py

import math
from typing import Dict, List, Sequence

from macroplanner.models.domain import (
    Ingredient, Macros, MealSlot, PlannedMeal, Recipe, ScaledIngredient, ScalingSolution,
)

MASS_UNITS = ("g", "ml")
SPOON_UNITS = ("tsp", "tbsp")
COUNT_UNITS = ("pcs", "slice", "sheet", "pinch", "handful", "pack")
AROMATIC_CAP = 3.0


def unit_step(unit: str, quantity: float) -> float:
    """Realistic increment for a quantity in its unit"""
    if unit in SPOON_UNITS:
        return 0.5
    if unit in COUNT_UNITS:
        return 1.0
    if unit in ("kg", "l"):
        return 0.05
    if unit == "cup":
        return 0.25
    return 1.0 if quantity < 50 else 5.0


def min_display_step(unit: str) -> float:
    if unit in SPOON_UNITS:
        return 0.5
    if unit in COUNT_UNITS:
        return 1.0
    if unit in ("kg", "l"):
        return 0.05
    if unit == "cup":
        return 0.25
    return 5.0


def round_quantity(quantity: float, unit: str) -> float:
    if quantity <= 0:
        return 0.0
    step = unit_step(unit, quantity)
    rounded = math.floor(quantity / step + 0.5) * step
    if rounded <= 0:
        rounded = min_display_step(unit)
    return round(rounded, 4)


def capped_quantity(ingredient: Ingredient, quantity: float, max_factor: float = AROMATIC_CAP) -> float:
    """
    Rounded quantity that never exceeds max_factor times the authored amount.
    Falls back to the largest step below the limit, or the authored amount when no step fits.
    """
    rounded = round_quantity(quantity, ingredient.unit)
    limit = ingredient.quantity * max_factor
    if rounded <= limit + 1e-9:
        return rounded
    step = unit_step(ingredient.unit, min(quantity, limit))
    floored = round(math.floor(limit / step + 1e-9) * step, 4)
    return floored if floored > 0 else ingredient.quantity


def pivot_index(recipe: Recipe, indices: Sequence[int]) -> int:
    """Group member with the highest calorie contribution; first wins ties"""
    return max(indices, key=lambda i: recipe.ingredients[i].contribution.calories)


def scaled_ingredient(ingredient: Ingredient, quantity: float, factor: float) -> ScaledIngredient:
    return ScaledIngredient(
        ingredient=ingredient,
        scale_factor=factor,
        quantity=quantity,
        macros=ingredient.macros_at(quantity),
    )


class QuantityRounder:
    """Turns continuous scale factors into servable quantities"""

    def round_independent(self, ingredient: Ingredient, factor: float) -> ScaledIngredient:
        if ingredient.frozen:
            return scaled_ingredient(ingredient, ingredient.quantity, 1.0)
        if ingredient.aromatic:
            quantity = capped_quantity(ingredient, ingredient.quantity * factor)
        else:
            quantity = round_quantity(ingredient.quantity * factor, ingredient.unit)
        return scaled_ingredient(ingredient, quantity, factor)

    def round_group(self, recipe: Recipe, indices: Sequence[int], factor: float) -> Dict[int, ScaledIngredient]:
        """Round the pivot first, then carry its effective ratio to the other members"""
        pivot = pivot_index(recipe, indices)
        pivot_ing = recipe.ingredients[pivot]
        aromatic = any(recipe.ingredients[i].aromatic for i in indices)
        if aromatic:
            pivot_qty = capped_quantity(pivot_ing, pivot_ing.quantity * factor)
        else:
            pivot_qty = round_quantity(pivot_ing.quantity * factor, pivot_ing.unit)
        effective = pivot_qty / pivot_ing.quantity if pivot_ing.quantity > 0 else factor

        scaled = {pivot: scaled_ingredient(pivot_ing, pivot_qty, factor)}
        for index in indices:
            if index == pivot:
                continue
            member = recipe.ingredients[index]
            if aromatic:
                quantity = capped_quantity(member, member.quantity * effective)
            else:
                quantity = round_quantity(member.quantity * effective, member.unit)
            scaled[index] = scaled_ingredient(member, quantity, factor)
        return scaled

    def round_meal(self, slot: MealSlot, recipe: Recipe, scaling: ScalingSolution) -> PlannedMeal:
        if not recipe.has_ingredient_detail:
            return self._round_recipe_level(slot, recipe, scaling)

        scaled: Dict[int, ScaledIngredient] = {}
        for indices in recipe.binding_groups().values():
            scaled.update(self.round_group(recipe, indices, scaling.factors[indices[0]]))
        for index, ingredient in enumerate(recipe.ingredients):
            if index not in scaled:
                scaled[index] = self.round_independent(ingredient, scaling.factors[index])

        ingredients = tuple(scaled[i] for i in range(len(recipe.ingredients)))
        return PlannedMeal(
            slot=slot,
            recipe=recipe,
            scaling=scaling,
            ingredients=ingredients,
            macros=Macros.total([item.macros for item in ingredients]),
        )

    def _round_recipe_level(self, slot: MealSlot, recipe: Recipe, scaling: ScalingSolution) -> PlannedMeal:
        factor = round(scaling.recipe_factor, 2)
        ingredients: List[ScaledIngredient] = []
        for ingredient in recipe.ingredients:
            if ingredient.frozen:
                quantity = ingredient.quantity
            elif ingredient.aromatic:
                quantity = capped_quantity(ingredient, ingredient.quantity * factor)
            else:
                quantity = round_quantity(ingredient.quantity * factor, ingredient.unit)
            # nutrition for these ingredients is unknown; the meal carries recipe-level macros
            ingredients.append(ScaledIngredient(ingredient, factor, quantity, Macros()))

        return PlannedMeal(
            slot=slot,
            recipe=recipe,
            scaling=scaling,
            ingredients=tuple(ingredients),
            macros=recipe.base_macros.scaled(factor),
        )
