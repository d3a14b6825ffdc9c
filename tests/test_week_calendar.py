from datetime import date

from family_meals.app.services.week_calendar import (
    canonical_day,
    date_for_day,
    day_index,
    is_weekend,
    meal_category,
    meal_type_label,
    normalize_meal_type,
    ordered_days,
)


def test_canonical_day_accepts_case_and_abbreviations():
    assert canonical_day("monday") == "Monday"
    assert canonical_day(" THU ") == "Thursday"
    assert canonical_day("Funday") is None
    assert canonical_day(None) is None


def test_week_order_follows_start_weekday():
    wednesday = date(2026, 10, 21)
    assert ordered_days(wednesday)[:2] == ["Wednesday", "Thursday"]
    assert ordered_days(wednesday)[-1] == "Tuesday"
    assert day_index("Monday", wednesday) == 5
    assert day_index("Someday", wednesday) == -1
    assert date_for_day("Monday", wednesday) == date(2026, 10, 26)


def test_meal_categories():
    assert normalize_meal_type("Afternoon Snack") == "afternoon-snack"
    assert meal_category("afternoon-snack") == "snack"
    assert meal_category("dessert") == "snack"
    assert meal_category("main-course") == "dinner"
    assert meal_category("Lunch") == "lunch"
    assert meal_category("side") is None
    assert meal_type_label("afternoon-snack") == "Afternoon snack"


def test_weekend_days():
    assert is_weekend("sat")
    assert not is_weekend("Friday")
