"""Day and meal-type helpers shared by the planning services.

Candidate plans name days by weekday ("Monday") rather than by date, so every
ordering decision is made relative to the weekday the plan starts on.
"""
from datetime import date, timedelta
from typing import Iterable, List, Optional, Set

DAY_NAMES: List[str] = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
WEEKEND_DAYS = {"Saturday", "Sunday"}
MAIN_MEAL_TYPES = ("breakfast", "lunch", "dinner")
MEAL_CATEGORIES = ("breakfast", "lunch", "dinner", "snack")


def canonical_day(day_name: Optional[str]) -> Optional[str]:
    if not day_name:
        return None
    cleaned = day_name.strip().lower()
    for name in DAY_NAMES:
        if name.lower() == cleaned or name.lower()[:3] == cleaned:
            return name
    return None


def ordered_days(week_start: date) -> List[str]:
    start = week_start.weekday()
    return DAY_NAMES[start:] + DAY_NAMES[:start]


def day_index(day_name: Optional[str], week_start: date) -> int:
    """Position of ``day_name`` within the plan week, or -1 when unknown."""
    name = canonical_day(day_name)
    if name is None:
        return -1
    return ordered_days(week_start).index(name)


def date_for_day(day_name: str, week_start: date) -> Optional[date]:
    idx = day_index(day_name, week_start)
    if idx < 0:
        return None
    return week_start + timedelta(days=idx)


def normalize_meal_type(meal_type: Optional[str]) -> str:
    if not meal_type:
        return ""
    return "-".join(meal_type.strip().lower().split())


def meal_category(meal_type: Optional[str]) -> Optional[str]:
    """Collapse a meal type into breakfast, lunch, dinner or snack."""
    normalized = normalize_meal_type(meal_type)
    if not normalized:
        return None
    if normalized in ("main-course", "supper"):
        return "dinner"
    for category in MAIN_MEAL_TYPES:
        if category in normalized:
            return category
    if "snack" in normalized or normalized == "dessert":
        return "snack"
    return None


def meal_categories(meal_types: Iterable[str]) -> Set[str]:
    categories = set()
    for meal_type in meal_types:
        category = meal_category(meal_type)
        if category:
            categories.add(category)
    return categories


def meal_type_label(meal_type: str) -> str:
    normalized = normalize_meal_type(meal_type)
    return normalized.replace("-", " ").capitalize() if normalized else meal_type


def is_weekend(day_name: Optional[str]) -> bool:
    return canonical_day(day_name) in WEEKEND_DAYS
