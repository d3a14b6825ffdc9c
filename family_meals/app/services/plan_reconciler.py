"""
Turn an accepted candidate plan into the meals that get persisted.

The reconciler trusts nothing the generator said about recipes, servings or
nutrition: ids are checked against the catalog, servings come from who is
actually eating each slot, leftovers are linked to a real cooked meal, and any
nutrition figures in the summary are replaced with computed ones.
"""
import logging
import re
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from family_meals.app.schemas.meal_plan import (
    LOCKED_KEY_PREFIX,
    CandidateMeal,
    LockedMeal,
    NutritionRollup,
    PersonSchedule,
    ReconciledMeal,
    RecipeInfo,
)
from family_meals.app.services.recipe_catalog import RecipeCatalog
from family_meals.app.services.week_calendar import canonical_day, day_index, meal_category, normalize_meal_type

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_COVERAGE = 90
LOW_CONFIDENCE_COVERAGE = 50

_NUMBER = r"(\d{1,3}(?:,\d{3})+|\d+(?:\.\d+)?)"
SUMMARY_PATTERNS: List[Tuple[str, "re.Pattern[str]"]] = [
    ("calories", re.compile(_NUMBER + r"(\s*(?:k?cals?|kcal|calories)\b)", re.IGNORECASE)),
    ("protein", re.compile(_NUMBER + r"(\s*g(?:rams)?\s+(?:of\s+)?protein\b)", re.IGNORECASE)),
    ("carbs", re.compile(_NUMBER + r"(\s*g(?:rams)?\s+(?:of\s+)?(?:carbs|carbohydrates)\b)", re.IGNORECASE)),
    ("fat", re.compile(_NUMBER + r"(\s*g(?:rams)?\s+(?:of\s+)?fats?\b)", re.IGNORECASE)),
]
TARGET_LOOKBEHIND = 24


class ReconciliationResult(BaseModel):
    meals: List[ReconciledMeal] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    dropped: List[CandidateMeal] = Field(default_factory=list)


def meal_key(day: str, meal_type: str) -> str:
    return f"{day}:{normalize_meal_type(meal_type)}"


def _eats(schedule_types: Iterable[str], meal_type: str) -> bool:
    wanted = normalize_meal_type(meal_type)
    category = meal_category(meal_type)
    for scheduled in schedule_types:
        if normalize_meal_type(scheduled) == wanted:
            return True
        if category and meal_category(scheduled) == category:
            return True
    return False


def servings_for_slot(day: str, meal_type: str, schedules: Sequence[PersonSchedule]) -> int:
    """Number of included people eating ``meal_type`` on ``day``."""
    return sum(
        1
        for person in schedules
        if person.included and _eats(person.schedule.get(day.lower(), []), meal_type)
    )


def _scaling_factor(servings: int, recipe: Optional[RecipeInfo]) -> Optional[float]:
    if recipe is None or not recipe.servings:
        return None
    return servings / recipe.servings


def locked_as_reconciled(locked_meals: Sequence[LockedMeal]) -> List[ReconciledMeal]:
    """Locked meals in reconciled form, keyed by their persisted id."""
    return [
        ReconciledMeal(
            key=f"{LOCKED_KEY_PREFIX}{m.id}",
            day_of_week=canonical_day(m.day_of_week) or m.day_of_week,
            meal_type=m.meal_type,
            recipe_id=m.recipe_id,
            recipe_name=m.recipe_name,
            servings=m.servings or 0,
        )
        for m in locked_meals
    ]


def _link_leftovers(
    meals: List[ReconciledMeal],
    week_start: date,
    locked_meals: Sequence[LockedMeal] = (),
) -> List[str]:
    warnings: List[str] = []
    cooked = meals + locked_as_reconciled([m for m in locked_meals if m.id is not None])
    for meal in meals:
        if not meal.is_leftover:
            continue
        meal_idx = day_index(meal.day_of_week, week_start)
        category = meal_category(meal.meal_type)
        sources = [
            m
            for m in cooked
            if not m.is_leftover
            and m.recipe_id == meal.recipe_id
            and meal_category(m.meal_type) == category
            and day_index(m.day_of_week, week_start) < meal_idx
        ]
        named_day = canonical_day(meal.batch_cook_source_day)
        named = [m for m in sources if m.day_of_week == named_day]
        candidates = named or sources
        if candidates:
            source = max(candidates, key=lambda m: day_index(m.day_of_week, week_start))
            meal.leftover_from_key = source.key
            meal.batch_cook_source_day = None
            continue
        meal.is_leftover = False
        meal.batch_cook_source_day = None
        meal.leftover_from_key = None
        warnings.append(
            f'"{meal.recipe_name}" on {meal.day_of_week} was planned as leftovers, but the meal it came from '
            f"is no longer in the plan, so it will be cooked fresh."
        )
        logger.warning("Orphaned leftover %s converted to a cooked meal", meal.key)
    return warnings


def reconcile(
    accepted_meals: List[CandidateMeal],
    catalog: Iterable[RecipeInfo],
    schedules: Sequence[PersonSchedule],
    *,
    week_start: date,
    locked_meals: Sequence[LockedMeal] = (),
    default_servings: int = 2,
) -> ReconciliationResult:
    recipe_catalog = catalog if isinstance(catalog, RecipeCatalog) else RecipeCatalog(catalog)
    has_schedule = any(p.included and p.schedule for p in schedules)
    locked_keys = {
        meal_key(canonical_day(m.day_of_week) or m.day_of_week, m.meal_type) for m in locked_meals
    }

    result = ReconciliationResult()
    seen: Dict[str, ReconciledMeal] = {}
    for meal in accepted_meals:
        day = canonical_day(meal.day_of_week)
        recipe = recipe_catalog.resolve(meal.recipe_id, meal.recipe_name)
        label = meal.recipe_name or meal.recipe_id or "A meal"
        if day is None:
            result.dropped.append(meal)
            result.warnings.append(f'"{label}" was removed because "{meal.day_of_week}" is not a day of the week.')
            continue
        if recipe is None:
            result.dropped.append(meal)
            result.warnings.append(f'"{label}" on {day} was removed because it is not in your recipe library.')
            continue

        key = meal_key(day, meal.meal_type)
        if key in locked_keys:
            result.dropped.append(meal)
            logger.info("Discarded generated meal in locked slot %s", key)
            continue
        if key in seen:
            result.dropped.append(meal)
            result.warnings.append(
                f'"{recipe.name}" on {day} was removed because {meal.meal_type} on {day} already has a meal.'
            )
            continue

        if has_schedule:
            servings = servings_for_slot(day, meal.meal_type, schedules)
            if servings == 0:
                result.dropped.append(meal)
                result.warnings.append(
                    f'"{recipe.name}" on {day} was removed because nobody is eating {meal.meal_type} that day.'
                )
                continue
        else:
            servings = meal.servings or default_servings

        reconciled = ReconciledMeal(
            key=key,
            day_of_week=day,
            meal_type=meal.meal_type,
            recipe_id=recipe.id,
            recipe_name=recipe.name,
            servings=servings,
            scaling_factor=_scaling_factor(servings, recipe),
            notes=meal.notes,
            is_leftover=meal.is_leftover,
            batch_cook_source_day=meal.batch_cook_source_day,
        )
        seen[key] = reconciled
        result.meals.append(reconciled)

    result.meals.sort(key=lambda m: day_index(m.day_of_week, week_start))
    result.warnings.extend(_link_leftovers(result.meals, week_start, locked_meals))
    logger.info(
        "Reconciled %d meal(s), dropped %d", len(result.meals), len(result.dropped)
    )
    return result


def rollup_nutrition(meals: Iterable[ReconciledMeal], catalog: Iterable[RecipeInfo]) -> NutritionRollup:
    """Weekly totals and daily averages over freshly cooked meals; leftovers are not extra intake."""
    recipe_catalog = catalog if isinstance(catalog, RecipeCatalog) else RecipeCatalog(catalog)
    totals = {"calories": 0.0, "protein": 0.0, "carbs": 0.0, "fat": 0.0}
    with_nutrition = 0
    total_meals = 0
    for meal in meals:
        if meal.is_leftover:
            continue
        total_meals += 1
        recipe = recipe_catalog.get(meal.recipe_id)
        if recipe is None or not recipe.calories_per_serving:
            continue
        with_nutrition += 1
        totals["calories"] += recipe.calories_per_serving
        totals["protein"] += recipe.protein_per_serving or 0
        totals["carbs"] += recipe.carbs_per_serving or 0
        totals["fat"] += recipe.fat_per_serving or 0

    return NutritionRollup(
        total_calories=round(totals["calories"], 2),
        total_protein=round(totals["protein"], 2),
        total_carbs=round(totals["carbs"], 2),
        total_fat=round(totals["fat"], 2),
        daily_avg_calories=round(totals["calories"] / 7),
        daily_avg_protein=round(totals["protein"] / 7),
        daily_avg_carbs=round(totals["carbs"] / 7),
        daily_avg_fat=round(totals["fat"] / 7),
        meals_with_nutrition=with_nutrition,
        total_meals=total_meals,
        nutrition_coverage=round(with_nutrition / total_meals * 100) if total_meals else 0,
    )


def _confidence_note(rollup: NutritionRollup) -> str:
    if rollup.meals_with_nutrition == 0:
        return "No nutrition data is available for these recipes, so no calorie or macro figures are given."
    averages = (
        f"{rollup.daily_avg_calories} cal, {rollup.daily_avg_protein}g protein, "
        f"{rollup.daily_avg_carbs}g carbs and {rollup.daily_avg_fat}g fat per day"
    )
    if rollup.nutrition_coverage >= HIGH_CONFIDENCE_COVERAGE:
        return f"Nutrition: about {averages}."
    if rollup.nutrition_coverage >= LOW_CONFIDENCE_COVERAGE:
        return (
            f"Nutrition (estimate, {rollup.nutrition_coverage}% of meals have nutrition data): "
            f"about {averages}."
        )
    return (
        f"Nutrition (low confidence, only {rollup.nutrition_coverage}% of meals have nutrition data): "
        f"at least {averages}."
    )


def correct_summary(summary: Optional[str], rollup: NutritionRollup) -> str:
    """Replace nutrition figures in generator prose with computed averages and append a confidence note."""
    text = (summary or "").strip()
    if text and rollup.meals_with_nutrition:
        values = {
            "calories": rollup.daily_avg_calories,
            "protein": rollup.daily_avg_protein,
            "carbs": rollup.daily_avg_carbs,
            "fat": rollup.daily_avg_fat,
        }
        for macro, pattern in SUMMARY_PATTERNS:

            def _replace(match: "re.Match[str]", value: int = values[macro], source: str = text) -> str:
                preceding = source[max(0, match.start() - TARGET_LOOKBEHIND) : match.start()].lower()
                if "target" in preceding or "goal" in preceding:
                    return match.group(0)
                return f"{value}{match.group(2)}"

            text = pattern.sub(_replace, text)
    note = _confidence_note(rollup)
    return f"{text}\n\n{note}" if text else note
