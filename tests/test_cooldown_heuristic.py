from family_meals.app.schemas.meal_plan import DEFAULT_RULES, PlanningRules, RecipeInfo
from family_meals.app.services.cooldown_heuristic import adjust_rules, detect_intent, mentioned_recipes

OATS = RecipeInfo(id="r-oats", name="Overnight Oats", meal_types=["breakfast"])
SOUP = RecipeInfo(id="r-soup", name="Chicken Soup", meal_types=["lunch"])
TACOS = RecipeInfo(id="r-tacos", name="Fish Tacos", meal_types=["dinner"])
PANCAKES = RecipeInfo(id="r-pancakes", name="Pancakes", meal_types=["breakfast"])
POOL = [OATS, SOUP, TACOS, PANCAKES]


def test_detect_intent_tags():
    assert detect_intent("oats every day please")[:2] == ("every-day", "daily")
    assert detect_intent("Everyday breakfast")[:2] == ("every-day", "daily")
    assert detect_intent("same lunch all week")[:2] == ("all-week", "daily")
    assert detect_intent("tacos on Monday and Thursday")[:2] == ("day-pair", "day_pair")
    assert detect_intent("make it healthy") == (None, None, None)


def test_daily_breakfast_relaxes_only_breakfast():
    adjustment = adjust_rules(DEFAULT_RULES, "Oats for breakfast every day", POOL, [])
    assert adjustment.rules.breakfast_cooldown == 1
    assert adjustment.rules.lunch_cooldown == DEFAULT_RULES.lunch_cooldown
    assert adjustment.rules.dinner_cooldown == DEFAULT_RULES.dinner_cooldown
    assert adjustment.exempt_meal_types == {"breakfast"}
    assert adjustment.daily_repetition
    assert adjustment.matched_rule == "every-day"
    assert any("Breakfast cooldown relaxed from 3 to 1" in note for note in adjustment.notes)


def test_meal_type_from_mentioned_recipe_name():
    adjustment = adjust_rules(DEFAULT_RULES, "Chicken Soup every day this week", POOL, [SOUP])
    assert adjustment.exempt_meal_types == {"lunch"}
    assert adjustment.rules.lunch_cooldown == 1
    assert adjustment.daily_recipe_ids == {"r-soup"}


def test_day_pair_relaxes_to_smallest_gap():
    adjustment = adjust_rules(DEFAULT_RULES, "tacos on Monday and Thursday", POOL, [])
    assert adjustment.exempt_meal_types == {"dinner"}
    assert adjustment.rules.dinner_cooldown == 3
    assert not adjustment.daily_repetition
    assert adjustment.daily_recipe_ids == set()


def test_day_pair_gap_wraps_around_the_week():
    adjustment = adjust_rules(DEFAULT_RULES, "tacos Saturday and Monday", POOL, [])
    assert adjustment.rules.dinner_cooldown == 2


def test_rules_are_never_tightened():
    rules = PlanningRules(breakfast_cooldown=0)
    adjustment = adjust_rules(rules, "breakfast every day", POOL, [])
    assert adjustment.rules.breakfast_cooldown == 0
    assert not any("relaxed from" in note for note in adjustment.notes)


def test_no_intent_leaves_rules_alone():
    adjustment = adjust_rules(DEFAULT_RULES, "make it healthy", POOL, [])
    assert adjustment.rules is DEFAULT_RULES
    assert adjustment.exempt_meal_types == set()
    assert adjustment.notes == []
    assert adjust_rules(DEFAULT_RULES, None, POOL, []).matched_rule is None


def test_unknown_meal_type_relaxes_everything():
    adjustment = adjust_rules(DEFAULT_RULES, "same thing every day", [], [])
    assert adjustment.exempt_meal_types == {"breakfast", "lunch", "dinner", "snack"}
    assert adjustment.rules.dinner_cooldown == 1
    assert adjustment.rules.snack_cooldown == 1


def test_daily_ids_default_to_all_required_recipes():
    adjustment = adjust_rules(DEFAULT_RULES, "breakfast every day", POOL, [SOUP, PANCAKES])
    assert adjustment.daily_recipe_ids == {"r-soup", "r-pancakes"}


def test_mentioned_recipes_ignores_generic_words():
    assert mentioned_recipes("some soup with chicken", POOL) == []
    assert mentioned_recipes("more pancake mornings", POOL) == [PANCAKES]
