from family_meals.app.schemas.meal_plan import DEFAULT_PRIORITY_ORDER, HouseholdProfile, RecipeInfo
from family_meals.app.services.macro_filter import (
    DailyMacroTargets,
    average_daily_targets,
    build_filtering_note,
    filter_recipes,
    meal_type_ranges,
)

TARGETS = DailyMacroTargets(calories=2000, protein=150, carbs=200, fat=70)


def _recipe(recipe_id, meal_types, **macros):
    return RecipeInfo(id=recipe_id, name=recipe_id.replace("-", " ").title(), meal_types=meal_types, **macros)


def test_average_daily_targets_ignores_untracked_profiles():
    profiles = [
        HouseholdProfile(name="Sam", macro_tracking_enabled=True, daily_calorie_target=2000, daily_protein_target=150),
        HouseholdProfile(name="Jo", macro_tracking_enabled=True, daily_calorie_target=1601, daily_protein_target=100),
        HouseholdProfile(name="Kid", macro_tracking_enabled=False, daily_calorie_target=1200),
    ]
    targets = average_daily_targets(profiles)
    assert targets.calories == 1800
    assert targets.protein == 125
    assert average_daily_targets([]).calories == 0


def test_meal_type_ranges_use_shares_and_tolerance():
    ranges = meal_type_ranges(TARGETS, 0.20, snack_present=False)
    assert (ranges["dinner"].calories.min, ranges["dinner"].calories.max) == (640, 960)
    assert (ranges["breakfast"].calories.min, ranges["breakfast"].calories.max) == (400, 600)
    assert ranges["lunch"].carbs.target == 70

    with_snacks = meal_type_ranges(TARGETS, 0.20, snack_present=True)
    assert with_snacks["dinner"].calories.target == 640
    assert with_snacks["snack"].calories.target == 400


def test_filter_removes_recipes_that_fit_no_meal_type():
    recipes = [
        _recipe("steak-dinner", ["dinner"], calories_per_serving=1400),
        _recipe("grilled-salmon", ["dinner"], calories_per_serving=800, protein_per_serving=60),
        _recipe("mystery-stew", ["dinner"]),
        _recipe("oats", ["breakfast"], calories_per_serving=450),
    ]
    result = filter_recipes(recipes, TARGETS, "balanced", DEFAULT_PRIORITY_ORDER, snack_present=False)
    assert [r.id for r in result.removed] == ["steak-dinner"]
    assert {r.id for r in result.kept} == {"grilled-salmon", "mystery-stew", "oats"}
    assert result.rationale[0].startswith("1 of 4 recipe(s) removed")

    note = build_filtering_note(result)
    assert note.startswith("## Pre-Filtered Recipes")
    assert '"Steak Dinner" (1400 cal)' in note


def test_recipe_is_kept_when_any_meal_type_fits():
    recipes = [_recipe("egg-bake", ["breakfast", "dinner"], calories_per_serving=700)]
    result = filter_recipes(recipes, TARGETS, "balanced", DEFAULT_PRIORITY_ORDER, snack_present=False)
    assert [r.id for r in result.kept] == ["egg-bake"]


def test_protein_limits_are_lenient():
    # dinner protein band is 48-72g, widened to 24-108g
    recipes = [
        _recipe("chicken-breast", ["dinner"], calories_per_serving=800, protein_per_serving=100),
        _recipe("protein-bomb", ["dinner"], calories_per_serving=800, protein_per_serving=120),
    ]
    result = filter_recipes(recipes, TARGETS, "balanced", DEFAULT_PRIORITY_ORDER, snack_present=False)
    assert [r.id for r in result.removed] == ["protein-bomb"]


def test_filter_never_empties_a_category():
    recipes = [
        _recipe("feast-one", ["dinner"], calories_per_serving=1400),
        _recipe("feast-two", ["dinner"], calories_per_serving=1500),
        _recipe("oats", ["breakfast"], calories_per_serving=450),
    ]
    result = filter_recipes(recipes, TARGETS, "balanced", DEFAULT_PRIORITY_ORDER, snack_present=False)
    assert result.removed == []
    assert len(result.kept) == 3
    assert any(line.startswith("Macro filtering disabled for dinner") for line in result.rationale)


def test_filter_skipped_when_macros_not_a_top_priority():
    recipes = [_recipe("steak-dinner", ["dinner"], calories_per_serving=1400)]
    priorities = ["ratings", "variety", "shopping", "macros", "prep", "time"]
    result = filter_recipes(recipes, TARGETS, "balanced", priorities, snack_present=False)
    assert len(result.kept) == 1
    assert "not a top-3 priority" in result.rationale[0]


def test_filter_skipped_without_calorie_target():
    recipes = [_recipe("steak-dinner", ["dinner"], calories_per_serving=1400)]
    result = filter_recipes(recipes, DailyMacroTargets(), "strict", DEFAULT_PRIORITY_ORDER, snack_present=False)
    assert len(result.kept) == 1
    assert result.removed == []


def test_snack_recipes_untouched_when_nobody_snacks():
    recipes = [_recipe("cheesecake", ["dessert"], calories_per_serving=900)]
    result = filter_recipes(recipes, TARGETS, "balanced", DEFAULT_PRIORITY_ORDER, snack_present=False)
    assert [r.id for r in result.kept] == ["cheesecake"]

    recipes.append(_recipe("apple", ["snack"], calories_per_serving=380))
    result = filter_recipes(recipes, TARGETS, "balanced", DEFAULT_PRIORITY_ORDER, snack_present=True)
    assert [r.id for r in result.removed] == ["cheesecake"]


def test_note_is_none_when_nothing_filtered():
    recipes = [_recipe("grilled-salmon", ["dinner"], calories_per_serving=800)]
    result = filter_recipes(recipes, TARGETS, "balanced", DEFAULT_PRIORITY_ORDER, snack_present=False)
    assert build_filtering_note(result) is None
