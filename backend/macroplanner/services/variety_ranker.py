# backend/macroplanner/services/variety_ranker.py

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from macroplanner.models.domain import Recipe
from macroplanner.schemas.recipes import UsageRecord

logger = logging.getLogger(__name__)


@dataclass
class ShortTermPenalty:
    enabled: bool = True
    day_threshold: int = 3
    penalty_points: float = -10.0
    scaling_factor: float = 1.0


@dataclass
class LongTermReward:
    enabled: bool = True
    day_threshold: int = 7
    reward_points: float = 10.0
    favorite_multiplier: float = 1.5


@dataclass
class DiversityBonus:
    enabled: bool = True
    bonus_points: float = 5.0
    rarity_threshold: int = 2


@dataclass
class RankingCriteria:
    short_term: ShortTermPenalty = field(default_factory=ShortTermPenalty)
    long_term: LongTermReward = field(default_factory=LongTermReward)
    diversity: DiversityBonus = field(default_factory=DiversityBonus)


@dataclass
class UsageStats:
    recipe_id: int
    last_used: Optional[date] = None
    days_since_last_use: Optional[int] = None
    uses_last_7_days: int = 0
    uses_last_30_days: int = 0
    total_uses: int = 0


@dataclass
class RankedRecipe:
    recipe: Recipe
    base_score: float
    stats: UsageStats
    penalty: float = 0.0
    reward: float = 0.0
    diversity_bonus: float = 0.0
    final_score: float = 0.0

    @property
    def adjustment(self) -> float:
        return self.penalty + self.reward + self.diversity_bonus


class VarietyRanker:
    """Adjusts base scores with repeat penalties, favorite rewards and novelty bonuses"""

    def __init__(
        self,
        criteria: RankingCriteria = None,
        history: Sequence[UsageRecord] = (),
        favorites: Iterable[int] = (),
        as_of: date = None,
    ):
        self.criteria = criteria or RankingCriteria()
        self.favorites = set(favorites)
        self.as_of = as_of or date.today()
        self._dates: Dict[int, List[date]] = {}
        for record in history:
            self._dates.setdefault(record.recipe_id, []).append(record.date_used)

    def usage_stats(self, recipe_id: int) -> UsageStats:
        dates = self._dates.get(recipe_id, [])
        stats = UsageStats(recipe_id=recipe_id, total_uses=len(dates))
        if not dates:
            return stats

        gaps = [abs((self.as_of - used).days) for used in dates]
        stats.last_used = max(dates)
        stats.days_since_last_use = abs((self.as_of - stats.last_used).days)
        stats.uses_last_7_days = sum(1 for gap in gaps if gap <= 7)
        stats.uses_last_30_days = sum(1 for gap in gaps if gap <= 30)
        return stats

    def short_term_penalty(self, stats: UsageStats) -> float:
        rule = self.criteria.short_term
        if not rule.enabled or stats.days_since_last_use is None:
            return 0.0
        if stats.days_since_last_use > rule.day_threshold:
            return 0.0

        decay = 1 - stats.days_since_last_use / rule.day_threshold
        penalty = rule.penalty_points * decay * rule.scaling_factor
        # every extra use this week deepens the penalty
        extra_uses = max(0, stats.uses_last_7_days - 1)
        penalty += extra_uses * rule.penalty_points * 0.5
        return penalty

    def long_term_reward(self, stats: UsageStats, is_favorite: bool) -> float:
        rule = self.criteria.long_term
        if not rule.enabled or not is_favorite:
            return 0.0
        if stats.days_since_last_use is None:
            return rule.reward_points
        if stats.days_since_last_use < rule.day_threshold:
            return 0.0

        factor = min(2.0, stats.days_since_last_use / rule.day_threshold)
        return rule.reward_points * factor * rule.favorite_multiplier

    def diversity_bonus(self, stats: UsageStats) -> float:
        rule = self.criteria.diversity
        if not rule.enabled or stats.total_uses > rule.rarity_threshold:
            return 0.0
        if stats.total_uses == 0:
            return rule.bonus_points * 2
        return rule.bonus_points

    def adjust(self, recipe: Recipe, base_score: float) -> RankedRecipe:
        stats = self.usage_stats(recipe.id)
        ranked = RankedRecipe(recipe=recipe, base_score=base_score, stats=stats)
        ranked.penalty = self.short_term_penalty(stats)
        ranked.reward = self.long_term_reward(stats, recipe.id in self.favorites)
        ranked.diversity_bonus = self.diversity_bonus(stats)
        ranked.final_score = round(max(0.0, base_score + ranked.adjustment), 2)
        return ranked

    def rank(self, scored: Sequence[Tuple[Recipe, float]]) -> List[RankedRecipe]:
        """Stable sort by final score, highest first"""
        ranked = [self.adjust(recipe, score) for recipe, score in scored]
        return sorted(ranked, key=lambda item: item.final_score, reverse=True)


def create_variety_report(ranked: Sequence[RankedRecipe]) -> Dict:
    penalized = [item for item in ranked if item.penalty < 0]
    rewarded = [item for item in ranked if item.reward > 0]
    neutral = [item for item in ranked if item.penalty == 0 and item.reward == 0]

    def brief(item: RankedRecipe) -> Dict:
        return {
            "recipe_id": item.recipe.id,
            "name": item.recipe.name,
            "base_score": round(item.base_score, 2),
            "final_score": item.final_score,
            "adjustment": round(item.adjustment, 2),
        }

    return {
        "total_recipes": len(ranked),
        "penalized": len(penalized),
        "rewarded": len(rewarded),
        "neutral": len(neutral),
        "top_penalized": [brief(item) for item in sorted(penalized, key=lambda i: i.penalty)[:5]],
        "top_rewarded": [brief(item) for item in sorted(rewarded, key=lambda i: i.reward, reverse=True)[:5]],
    }


def select_balanced(ranked: Sequence[RankedRecipe], count: int, max_penalized_ratio: float = 0.3) -> List[RankedRecipe]:
    """Top recipes by final score, with penalized ones limited to a share of the selection"""
    penalized_left = int(count * max_penalized_ratio)
    selected = []
    for item in ranked:
        if len(selected) >= count:
            break
        if item.penalty < 0:
            if penalized_left <= 0:
                continue
            penalized_left -= 1
        selected.append(item)
    return selected
