"""
Relax cooldown rules when free-text instructions ask for deliberate repetition.

"Oats every day" or "tacos Monday and Thursday" would otherwise be rejected by
the cooldown and batch-cooking checks. Intent detection and meal-type
inference are independent: intent comes from a list of tagged patterns, the
targeted meal types from keywords, mentioned recipe names and mandatory
recipes. This only ever relaxes rules.
"""
import logging
import re
from typing import Dict, List, Optional, Pattern, Set, Tuple

from pydantic import BaseModel, Field

from family_meals.app.schemas.meal_plan import PlanningRules, RecipeInfo
from family_meals.app.services.week_calendar import DAY_NAMES, MEAL_CATEGORIES, meal_categories

logger = logging.getLogger(__name__)

COOLDOWN_FIELDS: Dict[str, str] = {
    "breakfast": "breakfast_cooldown",
    "lunch": "lunch_cooldown",
    "dinner": "dinner_cooldown",
    "snack": "snack_cooldown",
}

DAILY = "daily"
DAY_PAIR = "day_pair"

_DAY_ALT = "|".join(DAY_NAMES)
_DAY_LIST_RE = re.compile(
    rf"\b({_DAY_ALT})s?\b(?:\s*(?:,|&|/|\band\b)\s*\b(?:{_DAY_ALT})s?\b)+",
    re.IGNORECASE,
)

# (tag, pattern, intent) in priority order; the first match wins.
INTENT_RULES: List[Tuple[str, Pattern[str], str]] = [
    ("every-day", re.compile(r"\bevery\s*day\b", re.IGNORECASE), DAILY),
    ("daily", re.compile(r"\bdaily\b", re.IGNORECASE), DAILY),
    ("each-day", re.compile(r"\beach\s+day\b", re.IGNORECASE), DAILY),
    ("every-mealtime", re.compile(r"\bevery\s+(morning|night|evening|lunchtime)\b", re.IGNORECASE), DAILY),
    ("all-week", re.compile(r"\b(all|whole|entire)\s+week\b", re.IGNORECASE), DAILY),
    ("seven-days", re.compile(r"\b(7|seven)\s+days\b", re.IGNORECASE), DAILY),
    ("day-pair", _DAY_LIST_RE, DAY_PAIR),
]

MEAL_KEYWORDS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"\bbreakfasts?\b|\bmornings?\b|\bbrunch\b", re.IGNORECASE), "breakfast"),
    (re.compile(r"\blunch(es)?\b|\blunchtime\b|\bmidday\b", re.IGNORECASE), "lunch"),
    (re.compile(r"\bdinners?\b|\bsuppers?\b|\bevenings?\b|\bnights?\b|\btea\s*time\b", re.IGNORECASE), "dinner"),
    (re.compile(r"\bsnacks?\b|\bdesserts?\b|\bpuddings?\b", re.IGNORECASE), "snack"),
]

NAME_STOPWORDS = {
    "with", "and", "the", "style", "easy", "quick", "homemade", "healthy", "classic", "simple",
    "chicken", "beef", "pork", "salad", "soup", "bowl", "sauce", "baked", "fried", "roast",
}
MIN_NAME_TOKEN = 4


class CooldownAdjustment(BaseModel):
    rules: PlanningRules
    notes: List[str] = Field(default_factory=list)
    exempt_meal_types: Set[str] = Field(default_factory=set)
    daily_repetition: bool = False
    daily_recipe_ids: Set[str] = Field(default_factory=set)
    matched_rule: Optional[str] = None


def _words(text: str) -> Set[str]:
    return {w.rstrip("s") for w in re.findall(r"[a-z]+", text.lower())}


def detect_intent(text: str) -> Tuple[Optional[str], Optional[str], Optional[re.Match]]:
    for tag, pattern, intent in INTENT_RULES:
        match = pattern.search(text)
        if match:
            return tag, intent, match
    return None, None, None


def mentioned_recipes(text: str, recipes: List[RecipeInfo]) -> List[RecipeInfo]:
    lowered = text.lower()
    by_full_name = [r for r in recipes if r.name and r.name.lower() in lowered]
    if by_full_name:
        return by_full_name
    words = _words(text)
    matches = []
    for recipe in recipes:
        tokens = {
            t.rstrip("s")
            for t in re.findall(r"[a-z]+", recipe.name.lower())
            if len(t) >= MIN_NAME_TOKEN and t not in NAME_STOPWORDS
        }
        if tokens & words:
            matches.append(recipe)
    return matches


def infer_meal_types(
    text: str,
    recipe_pool: List[RecipeInfo],
    mandatory_recipes: List[RecipeInfo],
) -> Tuple[Set[str], List[str]]:
    meal_types: Set[str] = set()
    sources: List[str] = []
    for pattern, meal_type in MEAL_KEYWORDS:
        if pattern.search(text):
            meal_types.add(meal_type)
    if meal_types:
        sources.append("meal-type keywords")
        return meal_types, sources

    for recipe in mentioned_recipes(text, recipe_pool):
        meal_types |= meal_categories(recipe.meal_types)
    if meal_types:
        sources.append("mentioned recipe names")
        return meal_types, sources

    for recipe in mandatory_recipes:
        meal_types |= meal_categories(recipe.meal_types)
    if meal_types:
        sources.append("required recipes")
    return meal_types, sources


def _smallest_day_gap(match_text: str) -> int:
    indices = sorted(
        {DAY_NAMES.index(d.capitalize()) for d in re.findall(_DAY_ALT, match_text, re.IGNORECASE)}
    )
    if len(indices) < 2:
        return 1
    gaps = [b - a for a, b in zip(indices, indices[1:])]
    # wrap-around gap, e.g. Saturday and Monday
    gaps.append(indices[0] + 7 - indices[-1])
    return max(1, min(gaps))


def adjust_rules(
    rules: PlanningRules,
    instructions: Optional[str],
    recipe_pool: List[RecipeInfo],
    mandatory_recipes: List[RecipeInfo],
) -> CooldownAdjustment:
    if not instructions:
        return CooldownAdjustment(rules=rules)

    tag, intent, match = detect_intent(instructions)
    if intent is None:
        return CooldownAdjustment(rules=rules)

    meal_types, sources = infer_meal_types(instructions, recipe_pool, mandatory_recipes)
    notes: List[str] = []
    if not meal_types:
        meal_types = set(MEAL_CATEGORIES)
        notes.append(
            "Repetition was requested but no meal type could be identified, "
            "so cooldowns were relaxed for every meal type."
        )
    else:
        notes.append(
            f"Repetition requested for {', '.join(sorted(meal_types))} "
            f"(identified from {', '.join(sources)})."
        )

    relaxed_to = 1 if intent == DAILY else _smallest_day_gap(match.group(0))
    updates = {}
    for meal_type in sorted(meal_types):
        field = COOLDOWN_FIELDS[meal_type]
        current = getattr(rules, field)
        if relaxed_to < current:
            updates[field] = relaxed_to
            notes.append(f"{meal_type.capitalize()} cooldown relaxed from {current} to {relaxed_to} day(s).")

    daily_recipe_ids: Set[str] = set()
    if intent == DAILY and mandatory_recipes:
        named = {r.id for r in mentioned_recipes(instructions, mandatory_recipes)}
        daily_recipe_ids = named or {r.id for r in mandatory_recipes}

    logger.info(
        "Cooldown heuristic matched %s (%s) for meal types %s", tag, intent, sorted(meal_types)
    )
    return CooldownAdjustment(
        rules=rules.model_copy(update=updates) if updates else rules,
        notes=notes,
        exempt_meal_types=meal_types,
        daily_repetition=intent == DAILY,
        daily_recipe_ids=daily_recipe_ids,
        matched_rule=tag,
    )
