# backend/macroplanner/services/recipe_builder.py

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from macroplanner.models.domain import (
    MACRO_AXES, Ingredient, IngredientType, Macros, Recipe, Scalability,
)
from macroplanner.schemas.recipes import IngredientRecord, RecipeRecord
from macroplanner.services.nutrition_index import (
    NutritionIndex, is_aromatic, is_flavoring, normalize_unit, to_grams,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferenceDensities:
    """Macro grams per 100g treated as a 'fully scalable' carrier"""
    protein: float = 20.0
    carbs: float = 50.0
    fat: float = 15.0

    def get(self, axis: str) -> float:
        return getattr(self, axis)


def compute_scalability(ingredients: Sequence[Ingredient], references: ReferenceDensities) -> Scalability:
    """
    Per-axis scalability from the independent/bound split of each macro
    and the densest carrier of that macro relative to the reference density.
    """
    all_independent = any(ing.type_tag == IngredientType.MAIN_MACRO for ing in ingredients)
    values = {}
    for axis in MACRO_AXES:
        total = sum(ing.contribution.get(axis) for ing in ingredients)
        if total <= 0:
            values[axis] = 0.0
            continue

        independent = 0.0
        bound = 0.0
        max_density = 0.0
        for ing in ingredients:
            if not ing.counts_for_dominance:
                continue
            amount = ing.contribution.get(axis)
            if ing.binding_group_id is None or all_independent:
                independent += amount
            else:
                bound += amount
            max_density = max(max_density, ing.per_100g.get(axis))

        base = (independent / total) * 0.7 + (1 - bound / total) * 0.3
        adjusted = min(1.0, base * (max_density / references.get(axis)))
        # oil-like fat carriers count half
        if axis == "fat" and max_density > 80:
            adjusted *= 0.5
        values[axis] = round(max(0.0, adjusted), 4)

    return Scalability(**values)


class RecipeBuilder:
    """Resolves raw recipe records against the nutrition index into immutable recipes"""

    def __init__(self, nutrition_index: NutritionIndex, references: ReferenceDensities = None):
        self.nutrition_index = nutrition_index
        self.references = references or ReferenceDensities()

    def build_all(self, records: Iterable[RecipeRecord]) -> List[Recipe]:
        return [self.build(record) for record in records]

    def build(self, record: RecipeRecord) -> Recipe:
        ingredients = tuple(self._build_ingredient(record, item) for item in record.ingredients)

        resolved = [ing for ing in ingredients if ing.resolved]
        if resolved:
            base_macros = Macros.total([ing.contribution for ing in resolved])
        elif record.macros is not None:
            m = record.macros
            calories = m.calories if m.calories is not None else 4 * m.protein + 4 * m.carbs + 9 * m.fat
            base_macros = Macros(protein=m.protein, carbs=m.carbs, fat=m.fat, calories=calories)
        else:
            logger.warning(f"Recipe {record.id} ({record.name}) has no resolvable nutrition")
            base_macros = Macros()

        if record.scalability is not None:
            scalability = Scalability(
                protein=record.scalability.protein,
                carbs=record.scalability.carbs,
                fat=record.scalability.fat,
            )
        else:
            scalability = compute_scalability(resolved, self.references)

        return Recipe(
            id=record.id,
            name=record.name,
            meal_types=tuple(record.meal_types),
            ingredients=ingredients,
            base_macros=base_macros,
            scalability=scalability,
        )

    def _build_ingredient(self, record: RecipeRecord, item: IngredientRecord) -> Ingredient:
        per_100g = self.nutrition_index.lookup(item.ingredient_id, item.name)
        if per_100g is None:
            logger.warning(
                f"No nutrition for '{item.name}' (id={item.ingredient_id}) in recipe {record.id}, "
                f"counting it as zero"
            )

        frozen = is_flavoring(item.name, item.type_tag)
        group_id = item.binding_group_id
        if frozen and group_id is not None:
            logger.warning(
                f"Frozen ingredient '{item.name}' detached from binding group '{group_id}' "
                f"in recipe {record.id}"
            )
            group_id = None

        return Ingredient(
            name=item.name,
            quantity=item.quantity,
            unit=normalize_unit(item.unit),
            grams=to_grams(item.quantity, item.unit, item.name, item.grams_per_unit),
            per_100g=per_100g or Macros(),
            type_tag=item.type_tag,
            binding_group_id=group_id,
            ingredient_id=item.ingredient_id,
            resolved=per_100g is not None,
            frozen=frozen,
            aromatic=not frozen and is_aromatic(item.name, item.type_tag),
        )
