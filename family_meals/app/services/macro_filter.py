"""
Pre-filter the recipe pool by macro feasibility before generation.

Recipes whose per-serving macros cannot fit the per-meal share of the
household's daily targets are removed so the generator starts from a pool that
can actually hit the targets. Filtering never empties a meal category: if a
category would be left with nothing, its recipes are restored and the
degradation is recorded in the rationale instead.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from family_meals.app.schemas.meal_plan import HouseholdProfile, RecipeInfo
from family_meals.app.services.week_calendar import MAIN_MEAL_TYPES, meal_categories

logger = logging.getLogger(__name__)

MEAL_SHARES: Dict[str, float] = {
    "breakfast": 0.25,
    "lunch": 0.35,
    "dinner": 0.40,
    "snack": 0.20,
}
MAIN_MEAL_SCALE_WITH_SNACKS = 0.80

FILTER_TOLERANCE: Dict[str, float] = {
    "strict": 0.15,
    "balanced": 0.20,
    "weekday_discipline": 0.20,
    "calorie_banking": 0.30,
}
DEFAULT_FILTER_TOLERANCE = 0.20

PROTEIN_MAX_LENIENCY = 1.5
PROTEIN_MIN_LENIENCY = 0.5
MAX_LISTED_REMOVALS = 10


class DailyMacroTargets(BaseModel):
    calories: int = 0
    protein: int = 0
    carbs: int = 0
    fat: int = 0


class MacroRange(BaseModel):
    min: int
    max: int
    target: int


class MealTypeMacroRange(BaseModel):
    meal_type: str
    calories: MacroRange
    protein: MacroRange
    carbs: MacroRange
    fat: MacroRange


class MacroFilterResult(BaseModel):
    kept: List[RecipeInfo]
    removed: List[RecipeInfo] = Field(default_factory=list)
    rationale: List[str] = Field(default_factory=list)
    meal_type_ranges: Dict[str, MealTypeMacroRange] = Field(default_factory=dict)
    tolerance: float = DEFAULT_FILTER_TOLERANCE


def average_daily_targets(profiles: List[HouseholdProfile]) -> DailyMacroTargets:
    tracking = [p for p in profiles if p.macro_tracking_enabled and p.daily_calorie_target]
    if not tracking:
        return DailyMacroTargets()
    count = len(tracking)
    return DailyMacroTargets(
        calories=round(sum(p.daily_calorie_target or 0 for p in tracking) / count),
        protein=round(sum(p.daily_protein_target or 0 for p in tracking) / count),
        carbs=round(sum(p.daily_carbs_target or 0 for p in tracking) / count),
        fat=round(sum(p.daily_fat_target or 0 for p in tracking) / count),
    )


def _range(target: float, tolerance: float) -> MacroRange:
    rounded = round(target)
    return MacroRange(
        min=round(rounded * (1 - tolerance)),
        max=round(rounded * (1 + tolerance)),
        target=rounded,
    )


def meal_type_ranges(
    targets: DailyMacroTargets,
    tolerance: float,
    snack_present: bool,
) -> Dict[str, MealTypeMacroRange]:
    ranges: Dict[str, MealTypeMacroRange] = {}
    for meal_type, share in MEAL_SHARES.items():
        if snack_present and meal_type in MAIN_MEAL_TYPES:
            share = share * MAIN_MEAL_SCALE_WITH_SNACKS
        ranges[meal_type] = MealTypeMacroRange(
            meal_type=meal_type,
            calories=_range(targets.calories * share, tolerance),
            protein=_range(targets.protein * share, tolerance),
            carbs=_range(targets.carbs * share, tolerance),
            fat=_range(targets.fat * share, tolerance),
        )
    return ranges


def _misfit_reasons(recipe: RecipeInfo, rng: MealTypeMacroRange) -> List[str]:
    reasons: List[str] = []
    if not recipe.has_nutrition():
        return reasons

    calories = recipe.calories_per_serving
    if calories and rng.calories.target:
        if calories > rng.calories.max:
            reasons.append(f"{calories:g} cal > {rng.calories.max} cal max")
        elif calories < rng.calories.min:
            reasons.append(f"{calories:g} cal < {rng.calories.min} cal min")

    # high protein is rarely a problem, so only extreme values are rejected
    protein = recipe.protein_per_serving
    if protein and rng.protein.target:
        protein_max = round(rng.protein.max * PROTEIN_MAX_LENIENCY)
        protein_min = round(rng.protein.min * PROTEIN_MIN_LENIENCY)
        if protein > protein_max:
            reasons.append(f"{protein:g}g protein > {protein_max}g max")
        elif protein < protein_min:
            reasons.append(f"{protein:g}g protein < {protein_min}g min")

    for label, value, macro_range in (
        ("carbs", recipe.carbs_per_serving, rng.carbs),
        ("fat", recipe.fat_per_serving, rng.fat),
    ):
        if not value or not macro_range.target:
            continue
        if value > macro_range.max:
            reasons.append(f"{value:g}g {label} > {macro_range.max}g max")
        elif value < macro_range.min:
            reasons.append(f"{value:g}g {label} < {macro_range.min}g min")
    return reasons


def _category_counts(recipes: List[RecipeInfo]) -> Dict[str, int]:
    counts = {category: 0 for category in MEAL_SHARES}
    for recipe in recipes:
        for category in meal_categories(recipe.meal_types):
            counts[category] += 1
    return counts


def filter_recipes(
    recipes: List[RecipeInfo],
    targets: DailyMacroTargets,
    mode: str,
    priority_order: List[str],
    snack_present: bool,
) -> MacroFilterResult:
    """Split ``recipes`` into those that can contribute to a feasible day and those that cannot."""
    tolerance = FILTER_TOLERANCE.get(mode, DEFAULT_FILTER_TOLERANCE)

    if "macros" not in priority_order[:3]:
        logger.info("Macro filtering skipped: macros not in top 3 priorities")
        return MacroFilterResult(
            kept=list(recipes),
            rationale=["Macro filtering skipped because macros are not a top-3 priority."],
            tolerance=tolerance,
        )
    if not targets.calories or targets.calories <= 0:
        logger.info("Macro filtering skipped: no daily calorie target")
        return MacroFilterResult(
            kept=list(recipes),
            rationale=["Macro filtering skipped because no daily calorie target is set."],
            tolerance=tolerance,
        )

    ranges = meal_type_ranges(targets, tolerance, snack_present)
    logger.info(
        "Macro filtering active (mode=%s, +/-%d%%, snacks=%s): %d cal/day target",
        mode,
        round(tolerance * 100),
        snack_present,
        targets.calories,
    )

    kept: List[RecipeInfo] = []
    removed: List[RecipeInfo] = []
    rationale: List[str] = []
    for recipe in recipes:
        categories = meal_categories(recipe.meal_types)
        if not snack_present:
            categories.discard("snack")
        if not categories:
            kept.append(recipe)
            continue
        failures: List[str] = []
        fits = False
        for category in sorted(categories):
            reasons = _misfit_reasons(recipe, ranges[category])
            if not reasons:
                fits = True
                break
            failures.append(f"{category}: {', '.join(reasons)}")
        if fits:
            kept.append(recipe)
        else:
            removed.append(recipe)
            logger.debug("Filtered %s: %s", recipe.name, "; ".join(failures))

    before = _category_counts(recipes)
    after = _category_counts(kept)
    for category in MEAL_SHARES:
        if category == "snack" and not snack_present:
            continue
        if before[category] > 0 and after[category] == 0:
            restored = [r for r in removed if category in meal_categories(r.meal_types)]
            removed = [r for r in removed if r not in restored]
            kept.extend(restored)
            rationale.append(
                f"Macro filtering disabled for {category}: no {category} recipe fits the "
                f"{ranges[category].calories.min}-{ranges[category].calories.max} cal range, "
                f"so all {len(restored)} removed {category} recipe(s) were kept."
            )
            logger.warning("Macro filter degraded to no-op for %s", category)

    if removed:
        rationale.insert(
            0,
            f"{len(removed)} of {len(recipes)} recipe(s) removed because their macros fall outside "
            f"the +/-{round(tolerance * 100)}% band for every meal type they suit.",
        )
    logger.info("Macro filtering kept %d/%d recipes", len(kept), len(recipes))

    return MacroFilterResult(
        kept=kept,
        removed=removed,
        rationale=rationale,
        meal_type_ranges=ranges,
        tolerance=tolerance,
    )


def _macro_bits(recipe: RecipeInfo) -> str:
    bits = []
    if recipe.calories_per_serving:
        bits.append(f"{recipe.calories_per_serving:g} cal")
    if recipe.protein_per_serving:
        bits.append(f"{recipe.protein_per_serving:g}g P")
    if recipe.carbs_per_serving:
        bits.append(f"{recipe.carbs_per_serving:g}g C")
    if recipe.fat_per_serving:
        bits.append(f"{recipe.fat_per_serving:g}g F")
    return ", ".join(bits) or "no data"


def build_filtering_note(result: MacroFilterResult) -> Optional[str]:
    """Human-readable note appended to the generator instructions, or None when nothing was filtered."""
    if not result.removed and not result.rationale:
        return None
    lines: List[str] = ["## Pre-Filtered Recipes"]
    lines.extend(result.rationale)
    for recipe in result.removed[:MAX_LISTED_REMOVALS]:
        lines.append(f'- "{recipe.name}" ({_macro_bits(recipe)})')
    if len(result.removed) > MAX_LISTED_REMOVALS:
        lines.append(f"... and {len(result.removed) - MAX_LISTED_REMOVALS} more")
    if result.meal_type_ranges:
        lines.append("Per-meal targets:")
        for meal_type, rng in result.meal_type_ranges.items():
            lines.append(
                f"- {meal_type}: {rng.calories.min}-{rng.calories.max} cal, "
                f"{rng.protein.min}-{rng.protein.max}g P, {rng.carbs.min}-{rng.carbs.max}g C, "
                f"{rng.fat.min}-{rng.fat.max}g F"
            )
    return "\n".join(lines)
