from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from family_meals.app.schemas.meal_plan import RecipeInfo


class RecipeCatalog:
    """Lookup over the recipe pool a plan was generated from."""

    def __init__(self, recipes: Iterable[RecipeInfo]):
        self.recipes: List[RecipeInfo] = list(recipes)
        self.by_id: Dict[str, RecipeInfo] = {r.id: r for r in self.recipes}
        self._by_name: Dict[str, List[RecipeInfo]] = defaultdict(list)
        for recipe in self.recipes:
            self._by_name[recipe.name.strip().lower()].append(recipe)

    def __contains__(self, recipe_id: object) -> bool:
        return recipe_id in self.by_id

    def __len__(self) -> int:
        return len(self.recipes)

    def get(self, recipe_id: Optional[str]) -> Optional[RecipeInfo]:
        if not recipe_id:
            return None
        return self.by_id.get(recipe_id)

    def resolve(self, recipe_id: Optional[str], recipe_name: Optional[str] = None) -> Optional[RecipeInfo]:
        """Find a recipe by id, falling back to an unambiguous case-insensitive name match."""
        recipe = self.get(recipe_id)
        if recipe is not None:
            return recipe
        if recipe_id or not recipe_name:
            return None
        matches = self._by_name.get(recipe_name.strip().lower(), [])
        if len(matches) == 1:
            return matches[0]
        return None

    def name_for(self, recipe_id: Optional[str], fallback: Optional[str] = None) -> str:
        recipe = self.get(recipe_id)
        if recipe is not None:
            return recipe.name
        return fallback or recipe_id or "Unknown recipe"

    def cuisines(self) -> Dict[str, str]:
        """Distinct cuisine tags keyed by their normalised form."""
        found: Dict[str, str] = {}
        for recipe in self.recipes:
            if recipe.cuisine and recipe.cuisine.strip():
                found.setdefault(recipe.cuisine.strip().lower(), recipe.cuisine.strip())
        return found
