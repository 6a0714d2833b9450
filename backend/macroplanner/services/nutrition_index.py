# backend/macroplanner/services/nutrition_index.py

import logging
import re
from typing import Dict, Iterable, Optional, Union

from pydantic import ValidationError

from macroplanner.models.domain import IngredientType, Macros, FROZEN_TYPES
from macroplanner.schemas.recipes import NutritionRow

logger = logging.getLogger(__name__)

UNIT_ALIASES = {
    "gram": "g", "grams": "g", "gr": "g",
    "kilogram": "kg", "kilograms": "kg",
    "milliliter": "ml", "millilitre": "ml", "milliliters": "ml",
    "liter": "l", "litre": "l", "liters": "l",
    "teaspoon": "tsp", "teaspoons": "tsp",
    "tablespoon": "tbsp", "tablespoons": "tbsp",
    "piece": "pcs", "pieces": "pcs", "pc": "pcs", "whole": "pcs",
    "slices": "slice", "sheets": "sheet", "cups": "cup",
    "pinches": "pinch", "handfuls": "handful", "package": "pack", "packs": "pack",
}

# grams per one unit
UNIT_GRAMS = {
    "g": 1.0,
    "kg": 1000.0,
    "ml": 1.0,
    "l": 1000.0,
    "tsp": 5.0,
    "tbsp": 15.0,
    "cup": 240.0,
    "pinch": 0.5,
    "handful": 30.0,
    "pack": 100.0,
    "slice": 30.0,
    "sheet": 3.0,
}

PIECE_GRAMS = {
    "egg": 55.0,
    "avocado": 200.0,
    "tomato": 120.0,
    "bell pepper": 100.0,
    "banana": 120.0,
    "apple": 180.0,
    "onion": 110.0,
    "garlic": 5.0,
    "tortilla": 60.0,
    "nori": 3.0,
}
DEFAULT_PIECE_GRAMS = 55.0

FLAVORING_PATTERN = re.compile(
    r"\b(salt|black pepper|white pepper|ground pepper|peppercorns?|paprika|cumin|oregano|basil|"
    r"thyme|rosemary|parsley|dill|cinnamon|nutmeg|curry powder|turmeric|bay leaf|herbs?|spices?|"
    r"seasoning|stock cube|bouillon|vinegar|(?:garlic|onion|chili|ginger|curry|baking) powder|chili flakes)\b",
    re.IGNORECASE,
)
AROMATIC_PATTERN = re.compile(r"\b(onions?|garlic|chil(?:l)?i(?:es)?|ginger|shallots?)\b", re.IGNORECASE)


def normalize_unit(unit: Optional[str]) -> str:
    if not unit:
        return "g"
    key = unit.strip().lower().rstrip(".")
    return UNIT_ALIASES.get(key, key)


def to_grams(quantity: float, unit: str, name: str = "", grams_per_unit: Optional[float] = None) -> float:
    """Convert a quantity in its recipe unit to grams"""
    unit = normalize_unit(unit)
    if unit == "pcs":
        if grams_per_unit:
            return quantity * grams_per_unit
        lowered = name.lower()
        for key, grams in PIECE_GRAMS.items():
            if key in lowered:
                return quantity * grams
        return quantity * DEFAULT_PIECE_GRAMS
    if grams_per_unit and unit not in ("g", "kg", "ml", "l"):
        return quantity * grams_per_unit
    if unit not in UNIT_GRAMS:
        logger.warning(f"Unknown unit '{unit}' for {name or 'ingredient'}, treating as grams")
        return quantity
    return quantity * UNIT_GRAMS[unit]


def is_flavoring(name: str, type_tag: IngredientType) -> bool:
    return type_tag in FROZEN_TYPES or bool(FLAVORING_PATTERN.search(name or ""))


def is_aromatic(name: str, type_tag: IngredientType) -> bool:
    return type_tag == IngredientType.AROMATIC or bool(AROMATIC_PATTERN.search(name or ""))


class NutritionIndex:
    """Read-only per-100g nutrition lookup keyed by ingredient id or name"""

    def __init__(self, rows: Iterable[NutritionRow] = ()):
        self._by_id: Dict[int, Macros] = {}
        self._by_name: Dict[str, Macros] = {}
        for row in rows:
            self.add(row)

    @classmethod
    def from_records(cls, records: Iterable[Union[dict, NutritionRow]]) -> "NutritionIndex":
        index = cls()
        skipped = 0
        for record in records:
            if isinstance(record, NutritionRow):
                index.add(record)
                continue
            try:
                index.add(NutritionRow(**record))
            except (ValidationError, TypeError) as e:
                skipped += 1
                label = record.get("name") if isinstance(record, dict) else record
                logger.warning(f"Skipping malformed nutrition row for {label}: {e}")
        if skipped:
            logger.warning(f"{skipped} nutrition rows skipped, affected ingredients contribute zero")
        return index

    @staticmethod
    def normalize_name(name: str) -> str:
        return " ".join((name or "").lower().split())

    def add(self, row: NutritionRow):
        macros = Macros(
            protein=row.protein_per_100g,
            carbs=row.carbs_per_100g,
            fat=row.fat_per_100g,
            calories=row.calories,
        )
        if row.ingredient_id is not None:
            self._by_id[row.ingredient_id] = macros
        self._by_name[self.normalize_name(row.name)] = macros

    def lookup(self, ingredient_id: Optional[int] = None, name: Optional[str] = None) -> Optional[Macros]:
        if ingredient_id is not None and ingredient_id in self._by_id:
            return self._by_id[ingredient_id]
        if name:
            return self._by_name.get(self.normalize_name(name))
        return None

    def __len__(self) -> int:
        return len(self._by_name)
