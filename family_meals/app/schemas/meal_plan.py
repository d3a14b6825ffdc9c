from datetime import date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from family_meals.app.services.week_calendar import canonical_day


MealType = Literal["breakfast", "lunch", "dinner", "snack", "dessert"]
MacroMode = Literal["balanced", "strict", "weekday_discipline", "calorie_banking"]
PriorityType = Literal["macros", "ratings", "variety", "shopping", "prep", "time"]
GenerationStatus = Literal["completed", "failed", "invalid_input"]

DEFAULT_PRIORITY_ORDER: List[str] = ["macros", "ratings", "variety", "shopping", "prep", "time"]


class PlanningRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    macro_mode: MacroMode = "balanced"
    variety_enabled: bool = True
    breakfast_cooldown: int = Field(3, ge=0)
    lunch_cooldown: int = Field(7, ge=0)
    dinner_cooldown: int = Field(14, ge=0)
    snack_cooldown: int = Field(2, ge=0)
    min_cuisines: int = Field(3, ge=0)
    max_same_cuisine: int = Field(2, ge=1)
    batch_cooking_enabled: bool = True
    max_leftover_days: int = Field(4, ge=0)
    priority_order: List[str] = Field(default_factory=lambda: list(DEFAULT_PRIORITY_ORDER))

    def cooldown_for(self, meal_type: str) -> int:
        normalized = meal_type.lower()
        if "dinner" in normalized:
            return self.dinner_cooldown
        if "lunch" in normalized:
            return self.lunch_cooldown
        if "breakfast" in normalized:
            return self.breakfast_cooldown
        if "snack" in normalized or "dessert" in normalized:
            return self.snack_cooldown
        return self.dinner_cooldown

    def macros_high_priority(self) -> bool:
        return "macros" in self.priority_order[:3]


DEFAULT_RULES = PlanningRules()


class RecipeInfo(BaseModel):
    id: str
    name: str
    servings: int = 4
    cuisine: Optional[str] = None
    meal_types: List[str] = Field(default_factory=list)
    calories_per_serving: Optional[float] = None
    protein_per_serving: Optional[float] = None
    carbs_per_serving: Optional[float] = None
    fat_per_serving: Optional[float] = None
    is_product: bool = False

    def has_nutrition(self) -> bool:
        return bool(
            self.calories_per_serving
            or self.protein_per_serving
            or self.carbs_per_serving
            or self.fat_per_serving
        )


class HouseholdProfile(BaseModel):
    id: Optional[int] = None
    name: str
    macro_tracking_enabled: bool = False
    daily_calorie_target: Optional[int] = None
    daily_protein_target: Optional[int] = None
    daily_carbs_target: Optional[int] = None
    daily_fat_target: Optional[int] = None
    food_likes: List[str] = Field(default_factory=list)
    food_dislikes: List[str] = Field(default_factory=list)


class PersonSchedule(BaseModel):
    profile_id: Optional[int] = None
    profile_name: str
    included: bool = True
    schedule: Dict[str, List[str]] = Field(default_factory=dict)

    @field_validator("schedule")
    @classmethod
    def normalize_days(cls, v):
        normalized: Dict[str, List[str]] = {}
        for day, meal_types in v.items():
            name = canonical_day(day)
            if name is None:
                raise ValueError(f"unknown day: {day}")
            normalized.setdefault(name.lower(), []).extend(meal_types)
        return normalized

    def eats_anything(self) -> bool:
        return self.included and any(self.schedule.values())


class UsageHistoryEntry(BaseModel):
    recipe_id: str
    used_date: date
    meal_type: str


class CandidateMeal(BaseModel):
    day_of_week: str
    meal_type: str
    recipe_id: Optional[str] = None
    recipe_name: Optional[str] = None
    servings: Optional[int] = None
    notes: Optional[str] = None
    is_leftover: bool = False
    batch_cook_source_day: Optional[str] = None


class GeneratedPlan(BaseModel):
    meals: List[CandidateMeal]
    summary: str = ""


class LockedMeal(BaseModel):
    id: Optional[int] = None
    day_of_week: str
    meal_type: str
    recipe_id: Optional[str] = None
    recipe_name: Optional[str] = None
    servings: Optional[int] = None


LOCKED_KEY_PREFIX = "locked:"


class ReconciledMeal(BaseModel):
    key: str
    day_of_week: str
    meal_type: str
    recipe_id: Optional[str] = None
    recipe_name: Optional[str] = None
    servings: int
    scaling_factor: Optional[float] = None
    notes: Optional[str] = None
    is_leftover: bool = False
    batch_cook_source_day: Optional[str] = None
    leftover_from_key: Optional[str] = None
    leftover_from_meal_id: Optional[int] = None


class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def from_messages(cls, errors: List[str], warnings: List[str]) -> "ValidationResult":
        return cls(is_valid=not errors, errors=list(errors), warnings=list(warnings))

    @classmethod
    def merge(cls, *results: "ValidationResult") -> "ValidationResult":
        errors: List[str] = []
        warnings: List[str] = []
        for result in results:
            errors.extend(result.errors)
            warnings.extend(result.warnings)
        return cls.from_messages(errors, warnings)


class NutritionRollup(BaseModel):
    total_calories: float = 0
    total_protein: float = 0
    total_carbs: float = 0
    total_fat: float = 0
    daily_avg_calories: int = 0
    daily_avg_protein: int = 0
    daily_avg_carbs: int = 0
    daily_avg_fat: int = 0
    meals_with_nutrition: int = 0
    total_meals: int = 0
    nutrition_coverage: int = 0


class MandatoryRecipe(BaseModel):
    recipe_id: str
    excluded: bool = False


class ValidationContext(BaseModel):
    week_start_date: date
    exempt_meal_types: List[str] = Field(default_factory=list)
    mandatory_recipe_ids: List[str] = Field(default_factory=list)
    excluded_recipe_ids: List[str] = Field(default_factory=list)
    daily_recipe_ids: List[str] = Field(default_factory=list)
    profiles: List[HouseholdProfile] = Field(default_factory=list)
    schedules: List[PersonSchedule] = Field(default_factory=list)
    locked_slots: List[LockedMeal] = Field(default_factory=list)
    allow_dinner_for_lunch: bool = True


class GeneratorRequest(BaseModel):
    profiles: List[HouseholdProfile]
    recipes: List[RecipeInfo]
    week_start_date: date
    schedules: List[PersonSchedule] = Field(default_factory=list)
    rules: PlanningRules = DEFAULT_RULES
    recent_history: List[UsageHistoryEntry] = Field(default_factory=list)
    instructions: Optional[str] = None
    mandatory_recipes: List[RecipeInfo] = Field(default_factory=list)
    locked_meals: List[LockedMeal] = Field(default_factory=list)
    validation_feedback: List[str] = Field(default_factory=list)


class MealPlanGenerateRequest(BaseModel):
    week_start_date: date
    week_profile_schedules: List[PersonSchedule] = Field(default_factory=list)
    instructions: Optional[str] = None
    mandatory_recipes: List[MandatoryRecipe] = Field(default_factory=list)

    @field_validator("instructions")
    @classmethod
    def strip_instructions(cls, v):
        if v is None:
            return v
        v = v.strip()
        return v or None


class MealPlanRegenerateRequest(BaseModel):
    instructions: Optional[str] = None
    mandatory_recipes: List[MandatoryRecipe] = Field(default_factory=list)


class MealPlanGenerationResult(BaseModel):
    status: GenerationStatus
    plan_id: Optional[int] = None
    meals: List[ReconciledMeal] = Field(default_factory=list)
    summary: Optional[str] = None
    nutrition: Optional[NutritionRollup] = None
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    attempts: int = 0
    suggestion: Optional[str] = None


class MealRead(BaseModel):
    id: int
    day_of_week: str
    meal_type: str
    recipe_id: Optional[str] = None
    recipe_name: Optional[str] = None
    servings: Optional[int] = None
    scaling_factor: Optional[float] = None
    notes: Optional[str] = None
    is_leftover: bool
    leftover_from_meal_id: Optional[int] = None
    is_locked: bool

    model_config = ConfigDict(from_attributes=True)


class MealPlanRead(BaseModel):
    id: int
    user_id: str
    week_start_date: date
    week_end_date: date
    status: str
    summary: Optional[str] = None
    nutrition_summary: Optional[dict] = None
    meals: List[MealRead]

    model_config = ConfigDict(from_attributes=True)
