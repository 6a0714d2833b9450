# backend/macroplanner/schemas/meal_plan.py

from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import date

from macroplanner.models.domain import Macros, MealSlot, MultiDayPlanResult, PlannedMeal, PlanResult


class PlanOptionsSchema(BaseModel):
    """Unset attempt and threshold values fall back to the service settings"""
    same_lunch_dinner: bool = False
    max_swap_attempts: Optional[int] = Field(default=None, ge=1, le=10)
    acceptance_threshold_pct: Optional[float] = Field(default=None, gt=0, le=100)
    seed: int = Field(default=0, ge=0)


class GeneratePlanRequest(BaseModel):
    """Daily macro target in grams plus planning options"""
    protein: float = Field(gt=0, le=1000)
    carbs: float = Field(gt=0, le=2000)
    fat: float = Field(gt=0, le=500)
    meal_count: int = Field(default=3, ge=1, le=5)
    options: PlanOptionsSchema = Field(default_factory=PlanOptionsSchema)
    user_id: Optional[int] = None
    as_of: Optional[date] = None


class MultiDayPlanRequest(GeneratePlanRequest):
    days: int = Field(default=3, ge=1, le=14)


class MacroSchema(BaseModel):
    protein: float
    carbs: float
    fat: float
    calories: float

    @classmethod
    def from_macros(cls, macros: Macros) -> "MacroSchema":
        return cls(**macros.to_dict())


class DeviationSchema(BaseModel):
    protein_pct: float
    carbs_pct: float
    fat_pct: float
    calories_pct: float
    max_pct: float


class SlotSchema(BaseModel):
    name: str
    category: str
    target_percent: float
    tolerance_percent: float

    @classmethod
    def from_slot(cls, slot: MealSlot) -> "SlotSchema":
        return cls(
            name=slot.name,
            category=slot.category,
            target_percent=slot.target_percent,
            tolerance_percent=slot.tolerance_percent,
        )


class IngredientInPlan(BaseModel):
    name: str
    unit: str
    original_quantity: float
    quantity: float
    scale_factor: float
    type_tag: str
    binding_group_id: Optional[str] = None
    macros: MacroSchema


class MealInPlan(BaseModel):
    slot: SlotSchema
    recipe_id: int
    recipe_name: str
    scale_method: str
    recipe_factor: Optional[float] = None
    ingredients: List[IngredientInPlan]
    macros: MacroSchema
    target_macros: MacroSchema

    @classmethod
    def from_meal(cls, meal: PlannedMeal, result: PlanResult) -> "MealInPlan":
        return cls(
            slot=SlotSchema.from_slot(meal.slot),
            recipe_id=meal.recipe.id,
            recipe_name=meal.recipe.name,
            scale_method=meal.scaling.method,
            recipe_factor=round(meal.scaling.recipe_factor, 2) if meal.recipe_level else None,
            ingredients=[
                IngredientInPlan(
                    name=item.ingredient.name,
                    unit=item.ingredient.unit,
                    original_quantity=item.original_quantity,
                    quantity=item.quantity,
                    scale_factor=round(item.ratio, 3),
                    type_tag=item.ingredient.type_tag.value,
                    binding_group_id=item.ingredient.binding_group_id,
                    macros=MacroSchema.from_macros(item.macros),
                )
                for item in meal.ingredients
            ],
            macros=MacroSchema.from_macros(meal.macros),
            target_macros=MacroSchema.from_macros(result.target.share(meal.slot.target_percent)),
        )


class MetadataSchema(BaseModel):
    algorithm_version: str
    generation_time_ms: float
    total_recipes_available: int
    prefiltered_recipes: int
    selected_recipes: List[int]
    swap_attempts_made: int
    optimization_method: str
    refiner_iterations: int
    prefilter_rejections: Dict[str, int]


class PlanResponse(BaseModel):
    """Response schema for a generated plan; `meals` holds the best attempt when rejected"""
    success: bool
    status: str
    meals: List[MealInPlan]
    total_macros: Optional[MacroSchema] = None
    target_macros: MacroSchema
    deviation_report: Optional[DeviationSchema] = None
    attempts_used: int
    rejection_reason: Optional[str] = None
    metadata: MetadataSchema

    @classmethod
    def from_result(cls, result: PlanResult) -> "PlanResponse":
        meta = result.metadata
        return cls(
            success=result.success,
            status=result.status.value,
            meals=[MealInPlan.from_meal(meal, result) for meal in result.meals],
            total_macros=MacroSchema.from_macros(result.total_macros) if result.total_macros else None,
            target_macros=MacroSchema.from_macros(result.target.as_macros()),
            deviation_report=DeviationSchema(**result.deviation_report.to_dict()) if result.deviation_report else None,
            attempts_used=result.attempts_used,
            rejection_reason=result.rejection_reason,
            metadata=MetadataSchema(
                algorithm_version=meta.algorithm_version,
                generation_time_ms=meta.generation_time_ms,
                total_recipes_available=meta.total_recipes_available,
                prefiltered_recipes=meta.prefiltered_recipes,
                selected_recipes=list(meta.selected_recipes),
                swap_attempts_made=meta.swap_attempts_made,
                optimization_method=meta.optimization_method,
                refiner_iterations=meta.refiner_iterations,
                prefilter_rejections=dict(meta.prefilter_rejections),
            ),
        )


class MultiDayPlanResponse(BaseModel):
    days: List[PlanResponse]
    accepted_days: int
    distinct_recipes: int

    @classmethod
    def from_result(cls, result: MultiDayPlanResult) -> "MultiDayPlanResponse":
        return cls(
            days=[PlanResponse.from_result(day) for day in result.days],
            accepted_days=result.accepted_days,
            distinct_recipes=result.distinct_recipes,
        )
