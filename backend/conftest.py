# backend/conftest.py
"""
Pytest configuration and fixtures for MacroPlanner tests
Provides a synthetic nutrition table, recipe catalogue, built recipes and planners
"""

import pytest
from datetime import date
from fastapi.testclient import TestClient

from macroplanner.main import app
from macroplanner.api.meal_plan import get_planner
from macroplanner.models.domain import (
    IngredientType, Ingredient, Macros, MacroTarget, Recipe, RunContext, Scalability,
)
from macroplanner.schemas.recipes import RecipeRecord
from macroplanner.services.meal_plan_service import MealPlanGenerator
from macroplanner.services.nutrition_index import NutritionIndex
from macroplanner.services.recipe_builder import RecipeBuilder
from macroplanner.services.recipe_source import (
    InMemoryNutritionSource, InMemoryRecipeSource,
)


def _row(ingredient_id, name, protein, carbs, fat):
    return {
        "ingredient_id": ingredient_id,
        "name": name,
        "protein_per_100g": protein,
        "carbs_per_100g": carbs,
        "fat_per_100g": fat,
        "calories_per_100g": round(4 * protein + 4 * carbs + 9 * fat, 2),
    }


def _ing(ingredient_id, name, quantity, unit="g", type_tag="SUPPLEMENT", group=None):
    item = {
        "ingredient_id": ingredient_id,
        "name": name,
        "quantity": quantity,
        "unit": unit,
        "type_tag": type_tag,
    }
    if group:
        item["binding_group_id"] = group
    return item


# ===== NUTRITION FIXTURES =====

NUTRITION_ROWS = [
    _row(1, "chicken breast", 31, 0, 3.6),
    _row(2, "brown rice", 7.5, 76, 2.7),
    _row(3, "olive oil", 0, 0, 100),
    _row(4, "salt", 0, 0, 0),
    _row(5, "rolled oats", 13, 60, 7),
    _row(6, "egg white", 11, 0.7, 0.2),
    _row(7, "greek yogurt", 10, 3.6, 0.4),
    _row(8, "salmon", 20, 0, 13),
    _row(9, "potato", 2, 17, 0.1),
    _row(10, "broccoli", 2.8, 7, 0.4),
    _row(11, "garlic", 6.4, 33, 0.5),
    _row(12, "soy sauce", 8, 4.9, 0.6),
    _row(13, "honey", 0.3, 82, 0),
    _row(14, "pasta", 13, 75, 1.5),
    _row(15, "lean beef", 26, 0, 6),
    _row(16, "tomato", 0.9, 3.9, 0.2),
    _row(18, "banana", 1.1, 23, 0.3),
    _row(19, "water", 0, 0, 0),
    _row(20, "onion", 1.1, 9.3, 0.1),
    _row(21, "almonds", 21, 22, 49),
    _row(22, "turkey breast", 29, 0, 1),
    _row(23, "quinoa", 14, 64, 6),
    _row(24, "avocado", 2, 9, 15),
    _row(27, "sweet potato", 1.6, 20, 0.1),
    _row(30, "butter", 0.9, 0.1, 81),
]


@pytest.fixture
def nutrition_rows():
    """Per-100g rows whose calories follow the 4/4/9 rule"""
    return [dict(row) for row in NUTRITION_ROWS]


@pytest.fixture
def nutrition_index(nutrition_rows):
    return NutritionIndex.from_records(nutrition_rows)


# ===== RECIPE FIXTURES =====

RECIPE_RECORDS = [
    {
        "id": 101, "name": "Protein oats", "meal_types": ["breakfast"],
        "ingredients": [
            _ing(5, "rolled oats", 60, type_tag="MAIN_MACRO"),
            _ing(6, "egg white", 150, type_tag="MAIN_MACRO"),
            _ing(30, "butter", 5),
            _ing(4, "salt", 1, type_tag="SEASONING"),
        ],
    },
    {
        "id": 102, "name": "Greek yogurt bowl", "meal_types": ["breakfast"],
        "ingredients": [
            _ing(7, "greek yogurt", 200, type_tag="MAIN_MACRO"),
            _ing(18, "banana", 1, unit="pcs"),
            _ing(21, "almonds", 15),
        ],
    },
    {
        "id": 201, "name": "Chicken rice bowl", "meal_types": ["lunch", "dinner"],
        "ingredients": [
            _ing(1, "chicken breast", 150, type_tag="MAIN_MACRO"),
            _ing(2, "brown rice", 80, type_tag="MAIN_MACRO"),
            _ing(10, "broccoli", 100),
            _ing(30, "butter", 10),
            _ing(11, "garlic", 1, unit="pcs", type_tag="AROMATIC"),
            _ing(4, "salt", 2, type_tag="SEASONING"),
            _ing(12, "soy sauce", 15, group="sauce"),
            _ing(13, "honey", 10, group="sauce"),
        ],
    },
    {
        "id": 202, "name": "Beef tomato pasta", "meal_types": ["lunch", "dinner"],
        "ingredients": [
            _ing(15, "lean beef", 120, type_tag="MAIN_MACRO"),
            _ing(14, "pasta", 90, type_tag="MAIN_MACRO"),
            _ing(16, "tomato", 1, unit="pcs"),
            _ing(30, "butter", 10),
            _ing(20, "onion", 50, type_tag="AROMATIC"),
            _ing(4, "salt", 2, type_tag="SEASONING"),
        ],
    },
    {
        "id": 301, "name": "Turkey with sweet potato", "meal_types": ["dinner", "lunch"],
        "ingredients": [
            _ing(22, "turkey breast", 150, type_tag="MAIN_MACRO"),
            _ing(27, "sweet potato", 200, type_tag="MAIN_MACRO"),
            _ing(30, "butter", 10),
            _ing(4, "salt", 2, type_tag="SEASONING"),
            _ing(19, "water", 100, unit="ml", type_tag="WATER"),
        ],
    },
    {
        "id": 302, "name": "Chicken quinoa avocado", "meal_types": ["dinner"],
        "ingredients": [
            _ing(1, "chicken breast", 150, type_tag="MAIN_MACRO"),
            _ing(23, "quinoa", 70, type_tag="MAIN_MACRO"),
            _ing(24, "avocado", 100),
            _ing(20, "onion", 40, type_tag="AROMATIC"),
        ],
    },
    {
        "id": 303, "name": "Salmon with potatoes", "meal_types": ["dinner"],
        "ingredients": [
            _ing(8, "salmon", 150, type_tag="MAIN_MACRO"),
            _ing(9, "potato", 250, type_tag="MAIN_MACRO"),
            _ing(30, "butter", 5),
            _ing(4, "salt", 2, type_tag="SEASONING"),
        ],
    },
]

CARB_ONLY_RECORDS = [
    {
        "id": 901, "name": "Plain rice", "meal_types": ["breakfast", "lunch", "dinner"],
        "ingredients": [
            _ing(2, "brown rice", 100, type_tag="MAIN_MACRO"),
            _ing(4, "salt", 1, type_tag="SEASONING"),
        ],
    },
    {
        "id": 902, "name": "Honey sweet potato", "meal_types": ["breakfast", "lunch", "dinner"],
        "ingredients": [
            _ing(27, "sweet potato", 250, type_tag="MAIN_MACRO"),
            _ing(13, "honey", 15),
        ],
    },
    {
        "id": 903, "name": "Banana plate", "meal_types": ["breakfast", "lunch", "dinner"],
        "ingredients": [
            _ing(18, "banana", 2, unit="pcs", type_tag="MAIN_MACRO"),
        ],
    },
]


@pytest.fixture
def recipe_records():
    """Synthetic catalogue: every recipe but the salmon one carries a P, C and F carrier"""
    return [RecipeRecord(**record) for record in RECIPE_RECORDS]


@pytest.fixture
def recipe_builder(nutrition_index):
    return RecipeBuilder(nutrition_index)


@pytest.fixture
def recipes(recipe_builder, recipe_records):
    return recipe_builder.build_all(recipe_records)


@pytest.fixture
def recipes_by_id(recipes):
    return {recipe.id: recipe for recipe in recipes}


@pytest.fixture
def carb_only_recipes(recipe_builder):
    return recipe_builder.build_all(RecipeRecord(**record) for record in CARB_ONLY_RECORDS)


@pytest.fixture
def make_recipe():
    """Factory for hand-built recipes with explicit base macros"""
    def _make(recipe_id=1, protein=30.0, carbs=40.0, fat=10.0, calories=None,
              meal_types=("lunch",), scalability=None, ingredients=()):
        if calories is None:
            calories = 4 * protein + 4 * carbs + 9 * fat
        return Recipe(
            id=recipe_id,
            name=f"Recipe {recipe_id}",
            meal_types=tuple(meal_types),
            ingredients=tuple(ingredients),
            base_macros=Macros(protein=protein, carbs=carbs, fat=fat, calories=calories),
            scalability=scalability or Scalability(0.5, 0.5, 0.5),
        )
    return _make


@pytest.fixture
def make_ingredient():
    """Factory for resolved ingredients measured in grams"""
    def _make(name="ingredient", quantity=100.0, protein=0.0, carbs=0.0, fat=0.0, unit="g",
              type_tag=IngredientType.SUPPLEMENT, group=None, frozen=False, aromatic=False, grams=None):
        per_100g = Macros(protein=protein, carbs=carbs, fat=fat, calories=4 * protein + 4 * carbs + 9 * fat)
        return Ingredient(
            name=name,
            quantity=quantity,
            unit=unit,
            grams=quantity if grams is None else grams,
            per_100g=per_100g,
            type_tag=type_tag,
            binding_group_id=group,
            frozen=frozen or type_tag in (IngredientType.SEASONING, IngredientType.WATER, IngredientType.BASE_LIQUID),
            aromatic=aromatic or type_tag == IngredientType.AROMATIC,
        )
    return _make


# ===== PLANNING FIXTURES =====

@pytest.fixture
def target():
    return MacroTarget(protein=120, carbs=150, fat=50)


@pytest.fixture
def as_of():
    return date(2024, 3, 15)


@pytest.fixture
def run_context(nutrition_index):
    return RunContext(nutrition_index=nutrition_index)


@pytest.fixture
def planner(nutrition_rows):
    return MealPlanGenerator(
        recipe_source=InMemoryRecipeSource(RECIPE_RECORDS),
        nutrition_source=InMemoryNutritionSource(nutrition_rows),
    )


@pytest.fixture
def carb_only_planner(nutrition_rows):
    return MealPlanGenerator(
        recipe_source=InMemoryRecipeSource(CARB_ONLY_RECORDS),
        nutrition_source=InMemoryNutritionSource(nutrition_rows),
    )


@pytest.fixture
def empty_planner(nutrition_rows):
    return MealPlanGenerator(
        recipe_source=InMemoryRecipeSource([]),
        nutrition_source=InMemoryNutritionSource(nutrition_rows),
    )


# ===== API FIXTURES =====

@pytest.fixture
def client(planner):
    """Test client wired to the synthetic catalogue"""
    app.dependency_overrides[get_planner] = lambda: planner
    yield TestClient(app)
    app.dependency_overrides.clear()
