"""
Deterministic validation of candidate meal plans.

``validate_plan`` never raises and never does I/O: every check runs and adds
plain sentences to the error or warning lists so the messages can be handed
back to the generator verbatim as feedback for the next attempt.
"""
import logging
from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple, Union

from family_meals.app.schemas.meal_plan import (
    CandidateMeal,
    PersonSchedule,
    PlanningRules,
    RecipeInfo,
    UsageHistoryEntry,
    ValidationContext,
    ValidationResult,
)
from family_meals.app.services.macro_filter import average_daily_targets
from family_meals.app.services.recipe_catalog import RecipeCatalog
from family_meals.app.services.week_calendar import (
    canonical_day,
    day_index,
    is_weekend,
    meal_categories,
    meal_category,
    meal_type_label,
    normalize_meal_type,
    ordered_days,
)

logger = logging.getLogger(__name__)

WEEKLY_MACRO_TOLERANCE: Dict[str, float] = {
    "strict": 0.05,
    "balanced": 0.10,
    "weekday_discipline": 0.05,
    "calorie_banking": 0.15,
}
DAILY_MACRO_TOLERANCE: Dict[str, float] = {
    "strict": 0.05,
    "balanced": 0.10,
    "weekday_discipline": 0.05,
}
WEEKEND_TOLERANCE_WEEKDAY_DISCIPLINE = 0.25
MIN_NUTRITION_COVERAGE = 50
PLAN_COVERAGE_SHARES = {"breakfast": 25, "lunch": 35, "dinner": 40}
SNACK_COVERAGE = 20
MAIN_SCALE_WITH_SNACKS = 0.80
BATCH_NOTE_WORDS = ("batch", "leftover")
SNACK_VARIANTS = ("afternoon-snack", "morning-snack", "evening-snack")

CatalogLike = Union[RecipeCatalog, Iterable[RecipeInfo]]


class PlannedMeal(NamedTuple):
    meal: CandidateMeal
    recipe: RecipeInfo
    day: str
    index: int
    category: Optional[str]

    @property
    def name(self) -> str:
        return self.recipe.name


def _as_catalog(catalog: CatalogLike) -> RecipeCatalog:
    if isinstance(catalog, RecipeCatalog):
        return catalog
    return RecipeCatalog(catalog)


def _exempt_categories(context: ValidationContext) -> Set[str]:
    return meal_categories(context.exempt_meal_types)


def _slot_key(day: Optional[str], meal_type: str) -> Tuple[Optional[str], str]:
    return canonical_day(day), normalize_meal_type(meal_type)


def check_slot_uniqueness(meals: List[CandidateMeal], context: ValidationContext) -> ValidationResult:
    locked = {_slot_key(m.day_of_week, m.meal_type) for m in context.locked_slots}
    counts = Counter(_slot_key(m.day_of_week, m.meal_type) for m in meals)
    errors = []
    for (day, meal_type), count in counts.items():
        if count < 2 or (day, meal_type) in locked or day is None:
            continue
        errors.append(
            f"{day} {meal_type_label(meal_type).lower()} has {count} meals assigned. "
            f"Each day and meal type can hold only one recipe."
        )
    return ValidationResult.from_messages(errors, [])


def resolve_meals(
    meals: List[CandidateMeal],
    catalog: RecipeCatalog,
    week_start: date,
) -> Tuple[List[PlannedMeal], List[str]]:
    """Pair each candidate with its catalog recipe; unknown recipes and days become warnings."""
    planned: List[PlannedMeal] = []
    warnings: List[str] = []
    for meal in meals:
        day = canonical_day(meal.day_of_week)
        if day is None:
            warnings.append(
                f'"{meal.recipe_name or meal.recipe_id}" is assigned to an unknown day '
                f'"{meal.day_of_week}" and was ignored.'
            )
            continue
        recipe = catalog.resolve(meal.recipe_id, meal.recipe_name)
        if recipe is None:
            warnings.append(
                f'"{meal.recipe_name or meal.recipe_id}" on {day} is not in the recipe library and was ignored.'
            )
            continue
        planned.append(
            PlannedMeal(
                meal=meal,
                recipe=recipe,
                day=day,
                index=day_index(day, week_start),
                category=meal_category(meal.meal_type),
            )
        )
    return planned, warnings


def _collapse_snack(meal_type: str) -> str:
    for variant in SNACK_VARIANTS:
        meal_type = meal_type.replace(variant, "snack")
    return meal_type


def _meal_type_fits(allowed: List[str], plan_type: str, allow_dinner_for_lunch: bool) -> bool:
    normalized_plan = _collapse_snack(plan_type)
    for tag in allowed:
        if tag == plan_type or _collapse_snack(tag) == normalized_plan:
            return True
        if tag in ("main-course", "supper") and normalized_plan in ("lunch", "dinner"):
            return True
        if allow_dinner_for_lunch and normalized_plan == "lunch" and tag == "dinner":
            return True
    return False


def check_meal_types(planned: List[PlannedMeal], context: ValidationContext) -> ValidationResult:
    errors = []
    for item in planned:
        allowed = [normalize_meal_type(t) for t in item.recipe.meal_types if t]
        if not allowed:
            continue
        plan_type = normalize_meal_type(item.meal.meal_type)
        if _meal_type_fits(allowed, plan_type, context.allow_dinner_for_lunch):
            continue
        errors.append(
            f'Meal type mismatch: "{item.name}" is assigned to {item.meal.meal_type} on {item.day}, '
            f"but this recipe is only designated for: {', '.join(allowed)}. "
            f"Please assign a recipe that supports {item.meal.meal_type}."
        )
    return ValidationResult.from_messages(errors, [])


def check_cooldowns(
    planned: List[PlannedMeal],
    rules: PlanningRules,
    history: List[UsageHistoryEntry],
    context: ValidationContext,
) -> ValidationResult:
    exempt = _exempt_categories(context)
    groups: Dict[Tuple[str, str], List[PlannedMeal]] = defaultdict(list)
    for item in planned:
        if item.meal.is_leftover or item.category is None:
            continue
        if item.category in exempt or item.recipe.is_product:
            continue
        groups[(item.category, item.recipe.id)].append(item)

    errors: List[str] = []
    for (category, recipe_id), usages in groups.items():
        usages = sorted(usages, key=lambda u: u.index)
        cooldown = rules.cooldown_for(category)
        label = meal_type_label(category)
        for first, second in zip(usages, usages[1:]):
            gap = second.index - first.index
            if gap < cooldown:
                errors.append(
                    f'Cooldown violation: "{first.name}" used on {first.day} and {second.day} '
                    f"({gap} days apart, requires {cooldown} day cooldown for {label}s - "
                    f"set in Meal Plan Settings)"
                )

        earlier = [
            h
            for h in history
            if h.recipe_id == recipe_id
            and h.used_date < context.week_start_date
            and meal_category(h.meal_type) == category
        ]
        if not earlier:
            continue
        last_used = max(h.used_date for h in earlier)
        first_use = usages[0]
        first_date = context.week_start_date + timedelta(days=first_use.index)
        days_since = (first_date - last_used).days
        if days_since < cooldown:
            errors.append(
                f'Recent usage: "{first_use.name}" on {first_use.day} was last used {days_since} days earlier '
                f"on {last_used.isoformat()} (requires {cooldown} day cooldown for {label}s - "
                f"set in Meal Plan Settings)"
            )
    return ValidationResult.from_messages(errors, [])


def check_cuisine_diversity(
    planned: List[PlannedMeal],
    rules: PlanningRules,
    catalog: RecipeCatalog,
    context: ValidationContext,
) -> ValidationResult:
    if not rules.variety_enabled:
        return ValidationResult()
    exempt = _exempt_categories(context)
    counts: Counter = Counter()
    labels: Dict[str, str] = {}
    for item in planned:
        if item.meal.is_leftover or item.recipe.is_product:
            continue
        if item.category not in ("lunch", "dinner") or item.category in exempt:
            continue
        cuisine = (item.recipe.cuisine or "").strip()
        if not cuisine:
            continue
        counts[cuisine.lower()] += 1
        labels.setdefault(cuisine.lower(), cuisine)

    errors: List[str] = []
    warnings: List[str] = []
    if len(counts) < rules.min_cuisines:
        used = ", ".join(labels[c] for c in sorted(labels)) or "none"
        message = (
            f"Only {len(counts)} cuisine(s) used across lunches and dinners ({used}); "
            f"at least {rules.min_cuisines} different cuisines are required."
        )
        if len(catalog.cuisines()) < rules.min_cuisines:
            warnings.append(message + " The recipe library does not offer enough cuisines to meet this.")
        else:
            errors.append(message)
    for cuisine, count in sorted(counts.items()):
        if count > rules.max_same_cuisine:
            errors.append(
                f'Cuisine "{labels[cuisine]}" is used for {count} meals; '
                f"at most {rules.max_same_cuisine} meals may share a cuisine."
            )
    return ValidationResult.from_messages(errors, warnings)


def _has_batch_note(meal: CandidateMeal) -> bool:
    notes = (meal.notes or "").lower()
    return any(word in notes for word in BATCH_NOTE_WORDS)


def find_leftover_source(
    leftover: PlannedMeal,
    group: List[PlannedMeal],
    week_start: date,
) -> Tuple[Optional[PlannedMeal], Optional[str]]:
    """Return the cooked meal a leftover comes from, or an explanation of why none qualifies."""
    cooked_before = [g for g in group if not g.meal.is_leftover and g.index < leftover.index]
    named = canonical_day(leftover.meal.batch_cook_source_day)
    if leftover.meal.batch_cook_source_day and named is None:
        return None, (
            f'Leftover "{leftover.name}" on {leftover.day} names an unknown batch cook day '
            f'"{leftover.meal.batch_cook_source_day}".'
        )
    if named is not None:
        if day_index(named, week_start) >= leftover.index:
            return None, (
                f'Chronological error: "{leftover.name}" on {leftover.day} claims to be leftover from '
                f"{named}, but that day comes after or is the same day. Cannot use leftovers from the future!"
            )
        matches = [g for g in cooked_before if g.day == named]
        if not matches:
            return None, (
                f'Batch cooking error: "{leftover.name}" on {leftover.day} is a leftover from {named}, '
                f"but {named} has no freshly cooked {meal_type_label(leftover.category or '').lower()} "
                f"of that recipe."
            )
        return matches[-1], None
    if not cooked_before:
        return None, (
            f'Batch cooking error: "{leftover.name}" on {leftover.day} is marked as leftover but no '
            f"earlier {meal_type_label(leftover.category or '').lower()} cooks that recipe."
        )
    return max(cooked_before, key=lambda g: g.index), None


def check_batch_cooking(
    planned: List[PlannedMeal],
    rules: PlanningRules,
    context: ValidationContext,
) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []
    week_start = context.week_start_date

    if not rules.batch_cooking_enabled:
        for item in planned:
            if item.meal.is_leftover:
                errors.append(
                    f'"{item.name}" on {item.day} is marked as leftover, but batch cooking is disabled '
                    f"in Meal Plan Settings."
                )
        return ValidationResult.from_messages(errors, warnings)

    exempt = _exempt_categories(context)
    groups: Dict[Tuple[Optional[str], str], List[PlannedMeal]] = defaultdict(list)
    for item in planned:
        groups[(item.category, item.recipe.id)].append(item)

    for (category, _), group in groups.items():
        group = sorted(group, key=lambda g: g.index)
        leftovers_by_source: Dict[int, List[PlannedMeal]] = defaultdict(list)
        for item in group:
            if not item.meal.is_leftover:
                continue
            source, problem = find_leftover_source(item, group, week_start)
            if problem:
                errors.append(problem)
                continue
            gap = item.index - source.index
            if gap > rules.max_leftover_days:
                errors.append(
                    f'Leftover "{item.name}" on {item.day} is {gap} days after it was cooked on '
                    f"{source.day}; leftovers must be eaten within {rules.max_leftover_days} days."
                )
            leftovers_by_source[id(source)].append(item)

        for source in group:
            linked = leftovers_by_source.get(id(source))
            if not linked:
                continue
            # the cooked batch feeds the fresh meal (assumed as large as the biggest leftover) plus every leftover
            leftover_servings = [m.meal.servings or 0 for m in linked]
            needed = max(leftover_servings) + sum(leftover_servings)
            if (source.meal.servings or 0) < needed and any(leftover_servings):
                warnings.append(
                    f'Servings mismatch: "{source.name}" on {source.day} cooks {source.meal.servings or 0} servings, '
                    f"but total needed across all days is {needed} servings. "
                    f"The first meal should cook the total amount."
                )
            if "batch" not in (source.meal.notes or "").lower():
                warnings.append(
                    f'Batch cooking note missing: "{source.name}" on {source.day} should have a '
                    f"batch cooking note explaining total servings."
                )

        if len(group) < 2 or group[0].recipe.is_product or category in exempt:
            continue
        framed = any(g.meal.is_leftover or _has_batch_note(g.meal) for g in group)
        if not framed:
            errors.append(
                f'Recipe "{group[0].name}" used {len(group)} times '
                f"({', '.join(g.day for g in group)}) but not marked as batch cooking. "
                f"Either set up batch cooking or use different recipes."
            )
            continue
        first = group[0]
        for item in group[1:]:
            if not item.meal.is_leftover:
                errors.append(
                    f'Batch cooking error: "{item.name}" on {item.day} should be marked as leftover '
                    f"since it was cooked on {first.day}."
                )
    return ValidationResult.from_messages(errors, warnings)


def applicable_days(recipe: Optional[RecipeInfo], schedules: List[PersonSchedule], week_start: date) -> List[str]:
    """Days on which someone included in the plan eats a meal this recipe suits."""
    days = ordered_days(week_start)
    included = [s for s in schedules if s.included and s.schedule]
    if not included:
        return days
    wanted = meal_categories(recipe.meal_types) if recipe else set()
    found = []
    for day in days:
        for person in included:
            eaten = meal_categories(person.schedule.get(day.lower(), []))
            if eaten and (not wanted or eaten & wanted):
                found.append(day)
                break
    return found or days


def check_mandatory_recipes(
    planned: List[PlannedMeal],
    catalog: RecipeCatalog,
    context: ValidationContext,
) -> ValidationResult:
    errors: List[str] = []
    excluded = set(context.excluded_recipe_ids)
    used_days: Dict[str, Set[str]] = defaultdict(set)
    for item in planned:
        used_days[item.recipe.id].add(item.day)

    for recipe_id in context.mandatory_recipe_ids:
        if recipe_id in excluded:
            continue
        name = catalog.name_for(recipe_id)
        days = used_days.get(recipe_id, set())
        if not days:
            errors.append(
                f'Required recipe "{name}" was not included in the plan. It must appear at least once.'
            )
            continue
        if recipe_id not in context.daily_recipe_ids:
            continue
        required = applicable_days(catalog.get(recipe_id), context.schedules, context.week_start_date)
        if not set(required) <= days:
            errors.append(f'Recipe "{name}" was requested for every day but only used {len(days)} times')
    return ValidationResult.from_messages(errors, [])


def plan_coverage(planned: List[PlannedMeal]) -> int:
    """Percentage of a full day's intake the planned meal types account for."""
    categories = {p.category for p in planned}
    has_snacks = "snack" in categories
    scale = MAIN_SCALE_WITH_SNACKS if has_snacks else 1.0
    coverage = sum(share * scale for cat, share in PLAN_COVERAGE_SHARES.items() if cat in categories)
    if has_snacks:
        coverage += SNACK_COVERAGE
    return round(coverage)


def _deviation(actual: int, target: int) -> int:
    return round((actual - target) / target * 100)


def check_macros(
    planned: List[PlannedMeal],
    rules: PlanningRules,
    context: ValidationContext,
) -> ValidationResult:
    if not rules.macros_high_priority():
        return ValidationResult()
    raw = average_daily_targets(context.profiles)
    if not raw.calories and not raw.protein:
        return ValidationResult()

    errors: List[str] = []
    warnings: List[str] = []
    coverage = plan_coverage(planned)
    multiplier = coverage / 100
    calorie_target = round(raw.calories * multiplier)
    protein_target = round(raw.protein * multiplier)
    carbs_target = round(raw.carbs * multiplier)
    fat_target = round(raw.fat * multiplier)

    cooked = [p for p in planned if not p.meal.is_leftover]
    with_nutrition = [p for p in cooked if p.recipe.calories_per_serving]
    nutrition_coverage = (len(with_nutrition) / len(cooked) * 100) if cooked else 0
    if nutrition_coverage < MIN_NUTRITION_COVERAGE:
        warnings.append(
            f"Only {nutrition_coverage:.0f}% of recipes have nutrition data. Add calorie/macro "
            f"information to more recipes for accurate tracking."
        )
        return ValidationResult.from_messages(errors, warnings)

    avg_calories = round(sum(p.recipe.calories_per_serving or 0 for p in with_nutrition) / 7)
    avg_protein = round(sum(p.recipe.protein_per_serving or 0 for p in with_nutrition) / 7)
    avg_carbs = round(sum(p.recipe.carbs_per_serving or 0 for p in with_nutrition) / 7)
    avg_fat = round(sum(p.recipe.fat_per_serving or 0 for p in with_nutrition) / 7)

    mode = rules.macro_mode
    tolerance = WEEKLY_MACRO_TOLERANCE.get(mode, WEEKLY_MACRO_TOLERANCE["balanced"])
    logger.info(
        "Macro validation: mode=%s tolerance=%d%% coverage=%d%% avg=%d cal target=%d cal",
        mode,
        round(tolerance * 100),
        coverage,
        avg_calories,
        calorie_target,
    )

    if calorie_target > 0:
        low, high = calorie_target * (1 - tolerance), calorie_target * (1 + tolerance)
        coverage_note = f" (plan covers {coverage}% of daily calories)" if coverage < 100 else ""
        deviation = _deviation(avg_calories, calorie_target)
        allowed = f"Allowed range with {mode} mode: {round(low)}-{round(high)} cal/day."
        if avg_calories < low:
            errors.append(
                f"Calorie target not met: averaging {avg_calories} cal/day ({deviation}% below target of "
                f"{calorie_target}){coverage_note}. {allowed} Select higher-calorie recipes to meet target."
            )
        elif avg_calories > high:
            errors.append(
                f"Calorie target exceeded: averaging {avg_calories} cal/day (+{deviation}% above target of "
                f"{calorie_target}){coverage_note}. {allowed} Select lower-calorie recipes to meet target."
            )

    if protein_target > 0:
        deviation = _deviation(avg_protein, protein_target)
        if avg_protein < protein_target * (1 - tolerance):
            warnings.append(
                f"Protein below target: averaging {avg_protein}g/day ({deviation}% below target of "
                f"{protein_target}g). Consider selecting more protein-rich recipes."
            )
        elif avg_protein > protein_target * (1 + tolerance):
            warnings.append(
                f"Protein above target: averaging {avg_protein}g/day (+{deviation}% above target of "
                f"{protein_target}g). This is generally fine, but noted for awareness."
            )

    for label, actual, target in (("Carbs", avg_carbs, carbs_target), ("Fat", avg_fat, fat_target)):
        if target <= 0:
            continue
        low, high = target * (1 - tolerance), target * (1 + tolerance)
        if actual < low or actual > high:
            deviation = _deviation(actual, target)
            sign = "+" if deviation >= 0 else ""
            warnings.append(
                f"{label} outside target range: averaging {actual}g/day ({sign}{deviation}% vs target of "
                f"{target}g). Allowed range: {round(low)}-{round(high)}g/day."
            )

    warnings.extend(_daily_outliers(planned, mode, calorie_target, context.week_start_date))
    return ValidationResult.from_messages(errors, warnings)


def _daily_outliers(planned: List[PlannedMeal], mode: str, calorie_target: int, week_start: date) -> List[str]:
    if calorie_target <= 0 or mode not in DAILY_MACRO_TOLERANCE:
        return []
    per_day: Dict[str, float] = defaultdict(float)
    for item in planned:
        # reheated leftovers are still eaten that day
        per_day[item.day] += item.recipe.calories_per_serving or 0
    warnings = []
    for day in ordered_days(week_start):
        if day not in per_day:
            continue
        tolerance = DAILY_MACRO_TOLERANCE[mode]
        if mode == "weekday_discipline" and is_weekend(day):
            tolerance = WEEKEND_TOLERANCE_WEEKDAY_DISCIPLINE
        low, high = calorie_target * (1 - tolerance), calorie_target * (1 + tolerance)
        total = round(per_day[day])
        if total < low or total > high:
            warnings.append(
                f"{day} totals {total} cal, outside the {round(low)}-{round(high)} cal/day range "
                f"for {mode} mode."
            )
    return warnings


def validate_plan(
    meals: List[CandidateMeal],
    rules: PlanningRules,
    history: List[UsageHistoryEntry],
    catalog: CatalogLike,
    context: ValidationContext,
) -> ValidationResult:
    recipe_catalog = _as_catalog(catalog)
    # generated meals in locked slots are discarded later, so the locked meal is what counts
    locked_keys = {_slot_key(m.day_of_week, m.meal_type) for m in context.locked_slots}
    effective = [m for m in meals if _slot_key(m.day_of_week, m.meal_type) not in locked_keys]
    effective += [
        CandidateMeal(
            day_of_week=m.day_of_week,
            meal_type=m.meal_type,
            recipe_id=m.recipe_id,
            recipe_name=m.recipe_name,
            servings=m.servings,
        )
        for m in context.locked_slots
    ]
    planned, resolve_warnings = resolve_meals(effective, recipe_catalog, context.week_start_date)

    result = ValidationResult.merge(
        ValidationResult.from_messages([], resolve_warnings),
        check_slot_uniqueness(meals, context),
        check_meal_types(planned, context),
        check_cooldowns(planned, rules, history, context),
        check_cuisine_diversity(planned, rules, recipe_catalog, context),
        check_batch_cooking(planned, rules, context),
        check_mandatory_recipes(planned, recipe_catalog, context),
        check_macros(planned, rules, context),
    )
    logger.info(
        "Validated %d meal(s): %d error(s), %d warning(s)",
        len(meals),
        len(result.errors),
        len(result.warnings),
    )
    return result


