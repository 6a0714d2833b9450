# backend/macroplanner/schemas/recipes.py

from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import date

from macroplanner.models.domain import IngredientType


def _parse_decimal(v):
    """Accept numeric strings written with a decimal comma ("22,5")"""
    if isinstance(v, str):
        v = v.strip().replace(",", ".")
        if not v:
            return None
    return v


class NutritionRow(BaseModel):
    """Per-100g nutrition values for one ingredient"""
    ingredient_id: Optional[int] = None
    name: str
    protein_per_100g: float = Field(ge=0)
    carbs_per_100g: float = Field(ge=0)
    fat_per_100g: float = Field(ge=0)
    calories_per_100g: Optional[float] = Field(default=None, ge=0)

    @validator("protein_per_100g", "carbs_per_100g", "fat_per_100g", "calories_per_100g", pre=True)
    def parse_numbers(cls, v):
        return _parse_decimal(v)

    @property
    def calories(self) -> float:
        if self.calories_per_100g is not None:
            return self.calories_per_100g
        return 4 * self.protein_per_100g + 4 * self.carbs_per_100g + 9 * self.fat_per_100g


class MacroValues(BaseModel):
    protein: float = Field(default=0, ge=0)
    carbs: float = Field(default=0, ge=0)
    fat: float = Field(default=0, ge=0)
    calories: Optional[float] = Field(default=None, ge=0)

    @validator("protein", "carbs", "fat", "calories", pre=True)
    def parse_numbers(cls, v):
        return _parse_decimal(v)


class ScalabilityValues(BaseModel):
    protein: float = Field(ge=0, le=1)
    carbs: float = Field(ge=0, le=1)
    fat: float = Field(ge=0, le=1)


class IngredientRecord(BaseModel):
    name: str
    ingredient_id: Optional[int] = None
    quantity: float = Field(ge=0)
    unit: str = "g"
    type_tag: IngredientType = IngredientType.SUPPLEMENT
    binding_group_id: Optional[str] = None
    grams_per_unit: Optional[float] = Field(default=None, gt=0)

    @validator("quantity", pre=True)
    def parse_quantity(cls, v):
        return _parse_decimal(v)

    @validator("binding_group_id", pre=True)
    def blank_group_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class RecipeRecord(BaseModel):
    """A recipe as delivered by a recipe source, before nutrition is resolved"""
    id: int
    name: str
    meal_types: List[str] = Field(default_factory=list)
    ingredients: List[IngredientRecord] = Field(default_factory=list)
    macros: Optional[MacroValues] = None
    scalability: Optional[ScalabilityValues] = None

    @validator("meal_types", pre=True)
    def normalize_meal_types(cls, v):
        if isinstance(v, str):
            v = [v]
        return [str(item).strip().lower() for item in v]


class UsageRecord(BaseModel):
    recipe_id: int
    date_used: date
    meal_type: Optional[str] = None
