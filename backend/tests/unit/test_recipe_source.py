"""
Tests for recipe, nutrition and history sources
Tests: JsonRecipeSource, JsonNutritionSource, FallbackRecipeSource, InMemory*Source
"""

import json
from datetime import date
from pathlib import Path
from unittest.mock import Mock

import pytest

from macroplanner.schemas.recipes import RecipeRecord, UsageRecord
from macroplanner.services.nutrition_index import NutritionIndex
from macroplanner.services.recipe_source import (
    FallbackRecipeSource, InMemoryHistorySource, InMemoryRecipeSource, JsonNutritionSource, JsonRecipeSource,
)

SAMPLE_DATA = Path(__file__).resolve().parents[2] / "data" / "recipes.json"


@pytest.fixture
def document_path(tmp_path):
    path = tmp_path / "catalogue.json"
    path.write_text(json.dumps({
        "nutrition": [
            {"ingredient_id": 1, "name": "chicken breast", "protein_per_100g": 31, "carbs_per_100g": 0, "fat_per_100g": 3.6},
        ],
        "recipes": [
            {"id": 1, "name": "Grilled chicken", "meal_types": ["Lunch"],
             "ingredients": [{"ingredient_id": 1, "name": "chicken breast", "quantity": "150"}]},
        ],
    }))
    return path


class TestJsonSources:

    def test_reads_recipes(self, document_path):
        records = JsonRecipeSource(document_path).fetch()
        assert len(records) == 1
        assert records[0].meal_types == ["lunch"]
        assert records[0].ingredients[0].quantity == 150

    def test_reads_nutrition(self, document_path):
        rows = JsonNutritionSource(document_path).fetch()
        assert NutritionIndex.from_records(rows).lookup(1).protein == 31

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            JsonRecipeSource(tmp_path / "missing.json").fetch()

    def test_bundled_catalogue_loads(self):
        records = JsonRecipeSource(SAMPLE_DATA).fetch()
        index = NutritionIndex.from_records(JsonNutritionSource(SAMPLE_DATA).fetch())
        assert len(records) >= 9
        assert len(index) >= 25
        for record in records:
            for item in record.ingredients:
                assert index.lookup(item.ingredient_id, item.name) is not None


class TestFallbackRecipeSource:

    def test_primary_used_when_available(self):
        primary = InMemoryRecipeSource([{"id": 1, "name": "A"}])
        fallback = Mock()
        assert [r.id for r in FallbackRecipeSource(primary, fallback).fetch()] == [1]
        fallback.fetch.assert_not_called()

    def test_fallback_on_error(self, tmp_path, caplog):
        primary = JsonRecipeSource(tmp_path / "missing.json")
        fallback = InMemoryRecipeSource([{"id": 2, "name": "B"}])
        assert [r.id for r in FallbackRecipeSource(primary, fallback).fetch()] == [2]
        assert "using fallback" in caplog.text

    def test_fallback_on_empty(self):
        fallback = InMemoryRecipeSource([RecipeRecord(id=3, name="C")])
        assert [r.id for r in FallbackRecipeSource(InMemoryRecipeSource([]), fallback).fetch()] == [3]


class TestInMemoryHistorySource:

    def test_per_user_history_and_favorites(self):
        source = InMemoryHistorySource(
            history={7: [UsageRecord(recipe_id=201, date_used=date(2024, 3, 1))]},
            favorites={7: [201, 302]},
        )
        assert [r.recipe_id for r in source.fetch_history(7)] == [201]
        assert source.fetch_favorites(7) == {201, 302}
        assert source.fetch_history(8) == []
        assert source.fetch_favorites(8) == set()
