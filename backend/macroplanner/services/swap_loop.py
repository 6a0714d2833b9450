# backend/macroplanner/services/swap_loop.py

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from macroplanner.models.domain import MacroTarget, MealSlot, PlanAttempt, Recipe
from macroplanner.services.lp_scaler import MacroScalingOptimizer
from macroplanner.services.quantity_rounder import QuantityRounder

logger = logging.getLogger(__name__)

MIRRORED_SLOTS = ("lunch", "dinner")


@dataclass
class SwapConfig:
    max_attempts: int = 3
    acceptance_threshold_pct: float = 10.0
    stagnation_limit: int = 3


@dataclass(frozen=True)
class SwapOutcome:
    best: PlanAttempt
    attempts_used: int
    accepted: bool
    max_pct_history: Tuple[float, ...] = ()


class SwapLoop:
    """
    Solve -> evaluate -> swap the weakest slot for the worst macro -> solve again.
    Keeps the attempt with the lowest max deviation seen.
    """

    def __init__(self, optimizer: MacroScalingOptimizer, rounder: QuantityRounder, config: SwapConfig = None):
        self.optimizer = optimizer
        self.rounder = rounder
        self.config = config or SwapConfig()

    def solve(self, recipes: Sequence[Recipe], slots: Sequence[MealSlot], target: MacroTarget, attempt_number: int = 1) -> PlanAttempt:
        solutions = self.optimizer.optimize(recipes, slots, target)
        meals = tuple(
            self.rounder.round_meal(slot, recipe, solution)
            for slot, recipe, solution in zip(slots, recipes, solutions)
        )
        return PlanAttempt.evaluate(meals, target, attempt_number)

    def run(
        self,
        recipes: Sequence[Recipe],
        slots: Sequence[MealSlot],
        candidates: Sequence[Recipe],
        target: MacroTarget,
        same_lunch_dinner: bool = False,
    ) -> SwapOutcome:
        current = list(recipes)
        best: Optional[PlanAttempt] = None
        stagnant = 0
        history = []
        attempt_number = 0

        for attempt_number in range(1, self.config.max_attempts + 1):
            attempt = self.solve(current, slots, target, attempt_number)
            history.append(attempt.max_pct)

            if best is None or attempt.max_pct < best.max_pct:
                best = attempt
                stagnant = 0
            else:
                stagnant += 1

            logger.info(
                f"Attempt {attempt_number}: max deviation {attempt.max_pct:.1f}% "
                f"(worst: {attempt.deviation.worst_macro}), best so far {best.max_pct:.1f}%"
            )

            if attempt.max_pct <= self.config.acceptance_threshold_pct:
                break
            if stagnant >= self.config.stagnation_limit:
                logger.info(f"No improvement in {stagnant} attempts, stopping swaps")
                break
            if attempt_number == self.config.max_attempts:
                break

            swapped = self.swap_worst(attempt, current, slots, candidates, target, same_lunch_dinner)
            if swapped is None:
                logger.info("No replacement recipe available, stopping swaps")
                break
            current = swapped

        return SwapOutcome(
            best=best,
            attempts_used=attempt_number,
            accepted=best.max_pct <= self.config.acceptance_threshold_pct,
            max_pct_history=tuple(history),
        )

    def swap_worst(
        self,
        attempt: PlanAttempt,
        recipes: Sequence[Recipe],
        slots: Sequence[MealSlot],
        candidates: Sequence[Recipe],
        target: MacroTarget,
        same_lunch_dinner: bool = False,
    ) -> Optional[List[Recipe]]:
        axis = attempt.deviation.worst_macro
        deficit = attempt.totals.get(axis) < target.get(axis)

        index = self.weakest_slot(recipes, slots, axis, deficit, same_lunch_dinner)
        replacement = self.find_replacement(recipes, slots[index], candidates, axis, deficit)
        if replacement is None:
            return None

        logger.info(
            f"Swapping {slots[index].name}: {recipes[index].name} -> {replacement.name} "
            f"({'deficit' if deficit else 'surplus'} in {axis})"
        )
        swapped = list(recipes)
        swapped[index] = replacement
        if same_lunch_dinner and slots[index].name in MIRRORED_SLOTS:
            for other, slot in enumerate(slots):
                if slot.name in MIRRORED_SLOTS:
                    swapped[other] = replacement
        return swapped

    def weakest_slot(self, recipes: Sequence[Recipe], slots: Sequence[MealSlot], axis: str, deficit: bool = True, same_lunch_dinner: bool = False) -> int:
        """Slot contributing least to a deficit axis (or most to a surplus axis)"""
        indices = list(range(len(recipes)))
        if same_lunch_dinner:
            # the mirrored dinner is swapped together with lunch
            names = [slot.name for slot in slots]
            if "lunch" in names and "dinner" in names:
                indices.remove(names.index("dinner"))

        contribution = lambda i: recipes[i].base_macros.get(axis)
        if deficit:
            return min(indices, key=contribution)
        return max(indices, key=contribution)

    def find_replacement(self, recipes: Sequence[Recipe], slot: MealSlot, candidates: Sequence[Recipe], axis: str, deficit: bool = True) -> Optional[Recipe]:
        used = {recipe.id for recipe in recipes}
        unused = [r for r in candidates if r.id not in used]
        pool = [r for r in unused if r.matches(slot.category)] or unused
        if not pool:
            return None
        contribution = lambda r: r.base_macros.get(axis)
        if deficit:
            return max(pool, key=contribution)
        return min(pool, key=contribution)
