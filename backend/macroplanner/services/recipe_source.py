# backend/macroplanner/services/recipe_source.py

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Protocol, Sequence, Set, Union

from macroplanner.schemas.recipes import NutritionRow, RecipeRecord, UsageRecord

logger = logging.getLogger(__name__)


class RecipeSource(Protocol):
    def fetch(self) -> List[RecipeRecord]:
        ...


class NutritionSource(Protocol):
    def fetch(self) -> List[Union[dict, NutritionRow]]:
        ...


class HistorySource(Protocol):
    def fetch_history(self, user_id: int) -> List[UsageRecord]:
        ...

    def fetch_favorites(self, user_id: int) -> Set[int]:
        ...


class InMemoryRecipeSource:
    def __init__(self, records: Iterable[Union[dict, RecipeRecord]]):
        self.records = [r if isinstance(r, RecipeRecord) else RecipeRecord(**r) for r in records]

    def fetch(self) -> List[RecipeRecord]:
        return list(self.records)


class InMemoryNutritionSource:
    def __init__(self, rows: Iterable[Union[dict, NutritionRow]]):
        self.rows = list(rows)

    def fetch(self) -> List[Union[dict, NutritionRow]]:
        return list(self.rows)


class InMemoryHistorySource:
    def __init__(self, history: Dict[int, Sequence[UsageRecord]] = None, favorites: Dict[int, Iterable[int]] = None):
        self.history = {user_id: list(records) for user_id, records in (history or {}).items()}
        self.favorites = {user_id: set(ids) for user_id, ids in (favorites or {}).items()}

    def fetch_history(self, user_id: int) -> List[UsageRecord]:
        return list(self.history.get(user_id, []))

    def fetch_favorites(self, user_id: int) -> Set[int]:
        return set(self.favorites.get(user_id, set()))


def _load_document(path: Union[str, Path]) -> Dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class JsonRecipeSource:
    """Reads the "recipes" list of a {"nutrition": [...], "recipes": [...]} document"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def fetch(self) -> List[RecipeRecord]:
        document = _load_document(self.path)
        records = [RecipeRecord(**item) for item in document.get("recipes", [])]
        logger.info(f"Loaded {len(records)} recipes from {self.path}")
        return records


class JsonNutritionSource:
    """Reads the "nutrition" list; rows are validated later by the nutrition index"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def fetch(self) -> List[dict]:
        return list(_load_document(self.path).get("nutrition", []))


class FallbackRecipeSource:
    """Uses the fallback source when the primary fails or comes back empty"""

    def __init__(self, primary: RecipeSource, fallback: RecipeSource):
        self.primary = primary
        self.fallback = fallback

    def fetch(self) -> List[RecipeRecord]:
        try:
            records = self.primary.fetch()
        except (OSError, ValueError) as e:
            logger.warning(f"Primary recipe source failed ({e}), using fallback")
            return self.fallback.fetch()
        if not records:
            logger.warning("Primary recipe source returned no recipes, using fallback")
            return self.fallback.fetch()
        return records
