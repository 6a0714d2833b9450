# backend/macroplanner/models/domain.py

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Deque, Dict, List, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from macroplanner.services.nutrition_index import NutritionIndex


MACRO_AXES = ("protein", "carbs", "fat")
KCAL_PER_GRAM = {"protein": 4.0, "carbs": 4.0, "fat": 9.0}


class IngredientType(str, Enum):
    MAIN_MACRO = "MAIN_MACRO"
    SUPPLEMENT = "SUPPLEMENT"
    SEASONING = "SEASONING"
    WATER = "WATER"
    BASE_LIQUID = "BASE_LIQUID"
    AROMATIC = "AROMATIC"


FROZEN_TYPES = frozenset({IngredientType.SEASONING, IngredientType.WATER, IngredientType.BASE_LIQUID})
NON_DOMINANT_TYPES = FROZEN_TYPES | {IngredientType.AROMATIC}


@dataclass(frozen=True)
class Macros:
    """Protein/carbs/fat grams plus calories"""
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    calories: float = 0.0

    def __add__(self, other: "Macros") -> "Macros":
        return Macros(
            protein=self.protein + other.protein,
            carbs=self.carbs + other.carbs,
            fat=self.fat + other.fat,
            calories=self.calories + other.calories,
        )

    def __sub__(self, other: "Macros") -> "Macros":
        return self + other.scaled(-1.0)

    def scaled(self, factor: float) -> "Macros":
        return Macros(
            protein=self.protein * factor,
            carbs=self.carbs * factor,
            fat=self.fat * factor,
            calories=self.calories * factor,
        )

    def get(self, axis: str) -> float:
        return getattr(self, axis)

    def to_dict(self, digits: int = 1) -> Dict[str, float]:
        return {
            "protein": round(self.protein, digits),
            "carbs": round(self.carbs, digits),
            "fat": round(self.fat, digits),
            "calories": round(self.calories, digits),
        }

    @staticmethod
    def total(items: List["Macros"]) -> "Macros":
        result = Macros()
        for item in items:
            result = result + item
        return result


@dataclass(frozen=True)
class Scalability:
    """Per-axis estimate (0-1) of how far scaling can move a recipe's macros"""
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0

    def get(self, axis: str) -> float:
        return getattr(self, axis)


@dataclass(frozen=True)
class Ingredient:
    name: str
    quantity: float
    unit: str
    grams: float
    per_100g: Macros
    type_tag: IngredientType = IngredientType.SUPPLEMENT
    binding_group_id: Optional[str] = None
    ingredient_id: Optional[int] = None
    resolved: bool = True
    frozen: bool = False
    aromatic: bool = False

    @property
    def contribution(self) -> Macros:
        return self.per_100g.scaled(self.grams / 100.0)

    @property
    def counts_for_dominance(self) -> bool:
        return self.resolved and not self.frozen and self.type_tag not in NON_DOMINANT_TYPES

    def macros_at(self, quantity: float) -> Macros:
        """Macro contribution when served at `quantity` of its own unit"""
        if self.quantity <= 0:
            return Macros()
        return self.contribution.scaled(quantity / self.quantity)


@dataclass(frozen=True)
class Recipe:
    id: int
    name: str
    meal_types: Tuple[str, ...]
    ingredients: Tuple[Ingredient, ...]
    base_macros: Macros
    scalability: Scalability = field(default_factory=Scalability)

    @property
    def category(self) -> str:
        return self.meal_types[0] if self.meal_types else "other"

    @property
    def has_ingredient_detail(self) -> bool:
        return any(ing.resolved for ing in self.ingredients)

    @property
    def is_plannable(self) -> bool:
        return self.base_macros.calories > 0 or any(
            self.base_macros.get(axis) > 0 for axis in MACRO_AXES
        )

    def matches(self, category: str) -> bool:
        return category in self.meal_types

    def binding_groups(self) -> Dict[str, List[int]]:
        """Group id -> ingredient indices, in first-seen order"""
        groups: Dict[str, List[int]] = {}
        for index, ingredient in enumerate(self.ingredients):
            if ingredient.binding_group_id is not None:
                groups.setdefault(ingredient.binding_group_id, []).append(index)
        return groups


@dataclass(frozen=True)
class MacroTarget:
    """Daily macro goal in grams; calories are derived"""
    protein: float
    carbs: float
    fat: float

    def __post_init__(self):
        for axis in MACRO_AXES:
            value = getattr(self, axis)
            if value is None or value <= 0:
                raise ValueError(f"{axis} target must be positive, got {value}")

    @property
    def calories(self) -> float:
        return sum(self.get(axis) * KCAL_PER_GRAM[axis] for axis in MACRO_AXES)

    def get(self, axis: str) -> float:
        if axis == "calories":
            return self.calories
        return getattr(self, axis)

    def share(self, percent: float) -> Macros:
        """Slice of the daily target for a slot carrying `percent` of it"""
        fraction = percent / 100.0
        return Macros(
            protein=self.protein * fraction,
            carbs=self.carbs * fraction,
            fat=self.fat * fraction,
            calories=self.calories * fraction,
        )

    def proportions(self) -> Dict[str, float]:
        total = self.protein + self.carbs + self.fat
        return {axis: self.get(axis) / total for axis in MACRO_AXES}

    def as_macros(self) -> Macros:
        return Macros(protein=self.protein, carbs=self.carbs, fat=self.fat, calories=self.calories)


@dataclass(frozen=True)
class MealSlot:
    name: str
    category: str
    target_percent: float
    tolerance_percent: float

    def band(self, target: MacroTarget, axis: str) -> Tuple[float, float]:
        share = target.get(axis) * self.target_percent / 100.0
        tolerance = self.tolerance_percent / 100.0
        return share * (1 - tolerance), share * (1 + tolerance)


SLOT_PRESETS: Dict[int, Tuple[MealSlot, ...]] = {
    1: (
        MealSlot("lunch", "lunch", 100.0, 0.0),
    ),
    2: (
        MealSlot("lunch", "lunch", 60.0, 10.0),
        MealSlot("dinner", "dinner", 40.0, 10.0),
    ),
    3: (
        MealSlot("breakfast", "breakfast", 25.0, 7.0),
        MealSlot("lunch", "lunch", 45.0, 10.0),
        MealSlot("dinner", "dinner", 30.0, 10.0),
    ),
    4: (
        MealSlot("breakfast", "breakfast", 25.0, 7.0),
        MealSlot("morning_snack", "snack", 10.0, 7.0),
        MealSlot("lunch", "lunch", 40.0, 10.0),
        MealSlot("dinner", "dinner", 25.0, 10.0),
    ),
    5: (
        MealSlot("breakfast", "breakfast", 20.0, 7.0),
        MealSlot("morning_snack", "snack", 10.0, 7.0),
        MealSlot("lunch", "lunch", 35.0, 10.0),
        MealSlot("afternoon_snack", "snack", 10.0, 7.0),
        MealSlot("dinner", "dinner", 25.0, 10.0),
    ),
}


def slots_for_meal_count(meal_count: int) -> Tuple[MealSlot, ...]:
    if meal_count not in SLOT_PRESETS:
        raise ValueError(f"meal_count must be between 1 and 5, got {meal_count}")
    return SLOT_PRESETS[meal_count]


@dataclass(frozen=True)
class DeviationReport:
    """Absolute percentage deviation of actual vs. target"""
    protein_pct: float
    carbs_pct: float
    fat_pct: float
    calories_pct: float
    max_pct: float

    @classmethod
    def from_totals(cls, totals: Macros, target: MacroTarget) -> "DeviationReport":
        pcts = {}
        for axis in MACRO_AXES + ("calories",):
            goal = target.get(axis)
            pcts[axis] = abs(totals.get(axis) - goal) / goal * 100.0
        return cls(
            protein_pct=pcts["protein"],
            carbs_pct=pcts["carbs"],
            fat_pct=pcts["fat"],
            calories_pct=pcts["calories"],
            max_pct=max(pcts[axis] for axis in MACRO_AXES),
        )

    def get(self, axis: str) -> float:
        return getattr(self, f"{axis}_pct")

    @property
    def worst_macro(self) -> str:
        return max(MACRO_AXES, key=self.get)

    def offenders(self, threshold_pct: float) -> List[Tuple[str, float]]:
        over = [(axis, self.get(axis)) for axis in MACRO_AXES if self.get(axis) > threshold_pct]
        return sorted(over, key=lambda item: item[1], reverse=True)

    def to_dict(self) -> Dict[str, float]:
        return {
            "protein_pct": round(self.protein_pct, 2),
            "carbs_pct": round(self.carbs_pct, 2),
            "fat_pct": round(self.fat_pct, 2),
            "calories_pct": round(self.calories_pct, 2),
            "max_pct": round(self.max_pct, 2),
        }


@dataclass(frozen=True)
class ScalingSolution:
    """Continuous scale factors for one meal, one per ingredient (group members share)"""
    factors: Tuple[float, ...]
    recipe_factor: float = 1.0
    method: str = "lp"


@dataclass(frozen=True)
class ScaledIngredient:
    ingredient: Ingredient
    scale_factor: float
    quantity: float
    macros: Macros

    @property
    def original_quantity(self) -> float:
        return self.ingredient.quantity

    @property
    def ratio(self) -> float:
        if self.ingredient.quantity <= 0:
            return 1.0
        return self.quantity / self.ingredient.quantity


@dataclass(frozen=True)
class PlannedMeal:
    slot: MealSlot
    recipe: Recipe
    scaling: ScalingSolution
    ingredients: Tuple[ScaledIngredient, ...]
    macros: Macros

    @property
    def recipe_level(self) -> bool:
        return not self.recipe.has_ingredient_detail


@dataclass(frozen=True)
class PlanAttempt:
    """One candidate plan: selection, scaling and its deviation"""
    meals: Tuple[PlannedMeal, ...]
    totals: Macros
    deviation: DeviationReport
    attempt_number: int = 1

    @classmethod
    def evaluate(cls, meals: Tuple[PlannedMeal, ...], target: MacroTarget, attempt_number: int = 1) -> "PlanAttempt":
        totals = Macros.total([meal.macros for meal in meals])
        return cls(
            meals=tuple(meals),
            totals=totals,
            deviation=DeviationReport.from_totals(totals, target),
            attempt_number=attempt_number,
        )

    @property
    def recipe_ids(self) -> Tuple[int, ...]:
        return tuple(meal.recipe.id for meal in self.meals)

    @property
    def max_pct(self) -> float:
        return self.deviation.max_pct

    @property
    def method(self) -> str:
        methods = {meal.scaling.method for meal in self.meals}
        for method in ("heuristic", "lp_relaxed", "lp"):
            if method in methods:
                return method
        return "none"


class PlanStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    NO_RECIPES = "no_recipes"


@dataclass(frozen=True)
class GenerationMetadata:
    algorithm_version: str
    total_recipes_available: int
    prefiltered_recipes: int = 0
    selected_recipes: Tuple[int, ...] = ()
    swap_attempts_made: int = 0
    optimization_method: str = "none"
    refiner_iterations: int = 0
    prefilter_rejections: Mapping[str, int] = field(default_factory=dict)
    generation_time_ms: float = field(default=0.0, compare=False)


@dataclass(frozen=True)
class PlanResult:
    """Discriminated outcome of one planning run"""
    status: PlanStatus
    target: MacroTarget
    slots: Tuple[MealSlot, ...]
    metadata: GenerationMetadata
    attempt: Optional[PlanAttempt] = None
    attempts_used: int = 0
    rejection_reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == PlanStatus.ACCEPTED

    @property
    def meals(self) -> Tuple[PlannedMeal, ...]:
        return self.attempt.meals if self.attempt else ()

    @property
    def total_macros(self) -> Optional[Macros]:
        return self.attempt.totals if self.attempt else None

    @property
    def deviation_report(self) -> Optional[DeviationReport]:
        return self.attempt.deviation if self.attempt else None

    @property
    def best_attempt(self) -> Optional[PlanAttempt]:
        return self.attempt if self.status == PlanStatus.REJECTED else None


@dataclass(frozen=True)
class MultiDayPlanResult:
    days: Tuple[PlanResult, ...]

    @property
    def accepted_days(self) -> int:
        return sum(1 for day in self.days if day.success)

    @property
    def distinct_recipes(self) -> int:
        return len({meal.recipe.id for day in self.days for meal in day.meals})


@dataclass
class RunContext:
    """Per-run state handed to the engine instead of module-level caches"""
    nutrition_index: "NutritionIndex"
    recency_memory: Deque[int] = field(default_factory=lambda: deque(maxlen=30))

    def remember(self, recipe_id: int):
        self.recency_memory.append(recipe_id)

    def recent_ids(self) -> set:
        return set(self.recency_memory)
