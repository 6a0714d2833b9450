# backend/macroplanner/api/meal_plan.py

import logging
from functools import lru_cache
from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from macroplanner.core.config import settings
from macroplanner.models.domain import MacroTarget, PlanStatus, slots_for_meal_count
from macroplanner.schemas.meal_plan import (
    GeneratePlanRequest,
    MultiDayPlanRequest,
    MultiDayPlanResponse,
    PlanResponse,
    SlotSchema,
)
from macroplanner.services.meal_plan_service import MealPlanGenerator, PlannerConfig, PlanOptions
from macroplanner.services.recipe_source import JsonNutritionSource, JsonRecipeSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/meal-plans", tags=["meal-plans"])

BACKEND_DIR = Path(__file__).resolve().parents[2]


def _data_path() -> Path:
    path = Path(settings.recipe_data_path)
    if not path.is_absolute():
        path = BACKEND_DIR / path
    return path


@lru_cache()
def get_planner() -> MealPlanGenerator:
    path = _data_path()
    return MealPlanGenerator(
        recipe_source=JsonRecipeSource(path),
        nutrition_source=JsonNutritionSource(path),
        config=PlannerConfig.from_settings(settings),
    )


def _or_default(value, default):
    return default if value is None else value


def _target_and_options(request: GeneratePlanRequest):
    try:
        target = MacroTarget(protein=request.protein, carbs=request.carbs, fat=request.fat)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    options = PlanOptions(
        same_lunch_dinner=request.options.same_lunch_dinner,
        max_swap_attempts=_or_default(request.options.max_swap_attempts, settings.max_swap_attempts),
        acceptance_threshold_pct=_or_default(
            request.options.acceptance_threshold_pct, settings.acceptance_threshold_pct,
        ),
        seed=request.options.seed,
        user_id=request.user_id,
        as_of=request.as_of,
    )
    return target, options


@router.post("/generate", response_model=PlanResponse)
def generate_meal_plan(
    request: GeneratePlanRequest,
    planner: MealPlanGenerator = Depends(get_planner),
):
    """Generate a single-day plan scaled to the requested macros"""
    target, options = _target_and_options(request)

    try:
        result = planner.generate_plan(target, request.meal_count, options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if result.status == PlanStatus.NO_RECIPES:
        raise HTTPException(status_code=404, detail=result.rejection_reason)

    return PlanResponse.from_result(result)


@router.post("/generate-multi-day", response_model=MultiDayPlanResponse)
def generate_multi_day_meal_plan(
    request: MultiDayPlanRequest,
    planner: MealPlanGenerator = Depends(get_planner),
):
    """Generate consecutive daily plans that avoid repeating recent recipes"""
    target, options = _target_and_options(request)

    try:
        result = planner.generate_multi_day_plan(target, request.meal_count, request.days, options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if all(day.status == PlanStatus.NO_RECIPES for day in result.days):
        raise HTTPException(status_code=404, detail="No candidate recipes available")

    return MultiDayPlanResponse.from_result(result)


@router.get("/slots/{meal_count}", response_model=List[SlotSchema])
def get_slot_presets(meal_count: int):
    """Per-meal share of the daily target for a meal count"""
    try:
        slots = slots_for_meal_count(meal_count)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [SlotSchema.from_slot(slot) for slot in slots]
