import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from family_meals.app.db import models
from family_meals.app.schemas.meal_plan import (
    DEFAULT_PRIORITY_ORDER,
    DEFAULT_RULES,
    LOCKED_KEY_PREFIX,
    HouseholdProfile,
    LockedMeal,
    NutritionRollup,
    PersonSchedule,
    PlanningRules,
    ReconciledMeal,
    RecipeInfo,
    UsageHistoryEntry,
)
from family_meals.app.services.week_calendar import date_for_day

logger = logging.getLogger(__name__)


def recipe_info(recipe: models.Recipe) -> RecipeInfo:
    return RecipeInfo(
        id=recipe.id,
        name=recipe.recipe_name,
        servings=recipe.servings or 4,
        cuisine=recipe.cuisine_type,
        meal_types=list(recipe.meal_types or []),
        calories_per_serving=recipe.calories_per_serving,
        protein_per_serving=recipe.protein_per_serving,
        carbs_per_serving=recipe.carbs_per_serving,
        fat_per_serving=recipe.fat_per_serving,
        is_product=bool(recipe.is_product_recipe),
    )


def household_profile(profile: models.FamilyProfile) -> HouseholdProfile:
    return HouseholdProfile(
        id=profile.id,
        name=profile.profile_name,
        macro_tracking_enabled=bool(profile.macro_tracking_enabled),
        daily_calorie_target=profile.daily_calorie_target,
        daily_protein_target=profile.daily_protein_target,
        daily_carbs_target=profile.daily_carbs_target,
        daily_fat_target=profile.daily_fat_target,
        food_likes=list(profile.food_likes or []),
        food_dislikes=list(profile.food_dislikes or []),
    )


class PlanRepository:
    """Reads planning inputs and writes reconciled plans for one database session."""

    def __init__(self, db: Session):
        self.db = db

    def ensure_user(self, user_id: str) -> models.User:
        user = self.db.get(models.User, user_id)
        if user is None:
            user = models.User(user_id=user_id)
            self.db.add(user)
            self.db.flush()
        return user

    def get_recipes(self, user_id: str, limit: int = 50) -> List[RecipeInfo]:
        stmt = (
            select(models.Recipe)
            .where(models.Recipe.user_id == user_id, models.Recipe.is_archived.is_(False))
            .order_by(
                models.Recipe.family_rating.is_(None),
                models.Recipe.family_rating.desc(),
                models.Recipe.recipe_name,
            )
            .limit(limit)
        )
        return [recipe_info(r) for r in self.db.scalars(stmt)]

    def get_recipes_by_ids(self, user_id: str, recipe_ids: Iterable[str]) -> List[RecipeInfo]:
        ids = list(recipe_ids)
        if not ids:
            return []
        stmt = select(models.Recipe).where(models.Recipe.user_id == user_id, models.Recipe.id.in_(ids))
        return [recipe_info(r) for r in self.db.scalars(stmt)]

    def get_profiles(self, user_id: str) -> List[HouseholdProfile]:
        stmt = (
            select(models.FamilyProfile)
            .where(models.FamilyProfile.user_id == user_id)
            .order_by(models.FamilyProfile.id)
        )
        return [household_profile(p) for p in self.db.scalars(stmt)]

    def get_rules(self, user_id: str) -> PlanningRules:
        stmt = select(models.MealPlanSettings).where(models.MealPlanSettings.user_id == user_id)
        row = self.db.scalars(stmt).first()
        if row is None:
            return DEFAULT_RULES
        return PlanningRules(
            macro_mode=row.macro_mode,
            variety_enabled=row.variety_enabled,
            breakfast_cooldown=row.breakfast_cooldown,
            lunch_cooldown=row.lunch_cooldown,
            dinner_cooldown=row.dinner_cooldown,
            snack_cooldown=row.snack_cooldown,
            min_cuisines=row.min_cuisines,
            max_same_cuisine=row.max_same_cuisine,
            batch_cooking_enabled=row.batch_cooking_enabled,
            max_leftover_days=row.max_leftover_days,
            priority_order=list(row.priority_order or DEFAULT_PRIORITY_ORDER),
        )

    def get_usage_history(self, user_id: str, week_start: date, lookback_days: int = 28) -> List[UsageHistoryEntry]:
        stmt = (
            select(models.RecipeUsageHistory)
            .where(
                models.RecipeUsageHistory.user_id == user_id,
                models.RecipeUsageHistory.used_date >= week_start - timedelta(days=lookback_days),
                models.RecipeUsageHistory.used_date < week_start,
            )
            .order_by(models.RecipeUsageHistory.used_date)
        )
        return [
            UsageHistoryEntry(recipe_id=row.recipe_id, used_date=row.used_date, meal_type=row.meal_type)
            for row in self.db.scalars(stmt)
        ]

    def get_plan(self, user_id: str, plan_id: int) -> Optional[models.MealPlan]:
        plan = self.db.get(models.MealPlan, plan_id)
        if plan is None or plan.user_id != user_id:
            return None
        return plan

    def get_locked_meals(self, plan_id: int) -> List[LockedMeal]:
        stmt = (
            select(models.Meal)
            .where(models.Meal.meal_plan_id == plan_id, models.Meal.is_locked.is_(True))
            .order_by(models.Meal.id)
        )
        return [
            LockedMeal(
                id=row.id,
                day_of_week=row.day_of_week,
                meal_type=row.meal_type,
                recipe_id=row.recipe_id,
                recipe_name=row.recipe_name,
                servings=row.servings,
            )
            for row in self.db.scalars(stmt)
        ]

    def create_plan(
        self,
        user_id: str,
        week_start: date,
        schedules: List[PersonSchedule],
    ) -> models.MealPlan:
        self.ensure_user(user_id)
        plan = models.MealPlan(
            user_id=user_id,
            week_start_date=week_start,
            week_end_date=week_start + timedelta(days=6),
            status="Draft",
            custom_schedule=[s.model_dump(mode="json") for s in schedules] or None,
        )
        self.db.add(plan)
        self.db.flush()
        return plan

    def delete_unlocked_meals(self, plan_id: int) -> int:
        result = self.db.execute(
            delete(models.Meal).where(models.Meal.meal_plan_id == plan_id, models.Meal.is_locked.is_(False))
        )
        self.db.execute(
            delete(models.RecipeUsageHistory).where(
                models.RecipeUsageHistory.meal_plan_id == plan_id,
                models.RecipeUsageHistory.was_manual.is_(False),
            )
        )
        self.db.expire_all()
        return result.rowcount or 0

    def save_meals(self, plan: models.MealPlan, meals: List[ReconciledMeal]) -> Dict[str, models.Meal]:
        """Insert reconciled meals, then point leftovers at the persisted id of their source."""
        rows: Dict[str, models.Meal] = {}
        for meal in meals:
            row = models.Meal(
                meal_plan_id=plan.id,
                recipe_id=meal.recipe_id,
                day_of_week=meal.day_of_week,
                meal_type=meal.meal_type,
                recipe_name=meal.recipe_name,
                servings=meal.servings,
                scaling_factor=meal.scaling_factor,
                notes=meal.notes,
                is_leftover=meal.is_leftover,
                batch_cook_source_day=meal.batch_cook_source_day,
                is_locked=False,
            )
            self.db.add(row)
            rows[meal.key] = row
        self.db.flush()

        for meal in meals:
            if not meal.leftover_from_key:
                continue
            if meal.leftover_from_key.startswith(LOCKED_KEY_PREFIX):
                source_id = int(meal.leftover_from_key[len(LOCKED_KEY_PREFIX):])
            else:
                source = rows.get(meal.leftover_from_key)
                if source is None:
                    continue
                source_id = source.id
            rows[meal.key].leftover_from_meal_id = source_id
            meal.leftover_from_meal_id = source_id
        self.db.flush()
        return rows

    def record_usage(
        self,
        user_id: str,
        plan: models.MealPlan,
        meals: Iterable[ReconciledMeal],
        locked_meals: Iterable[LockedMeal] = (),
    ) -> int:
        """Append usage history for cooked meals; an existing (recipe, date, meal type) row is left alone."""
        entries = [
            (m.recipe_id, m.day_of_week, m.meal_type) for m in meals if m.recipe_id and not m.is_leftover
        ]
        entries += [(m.recipe_id, m.day_of_week, m.meal_type) for m in locked_meals if m.recipe_id]
        added = 0
        for recipe_id, day, meal_type in entries:
            used_date = date_for_day(day, plan.week_start_date)
            if used_date is None:
                continue
            exists = self.db.scalars(
                select(models.RecipeUsageHistory.id).where(
                    models.RecipeUsageHistory.user_id == user_id,
                    models.RecipeUsageHistory.recipe_id == recipe_id,
                    models.RecipeUsageHistory.used_date == used_date,
                    models.RecipeUsageHistory.meal_type == meal_type,
                )
            ).first()
            if exists is not None:
                continue
            self.db.add(
                models.RecipeUsageHistory(
                    user_id=user_id,
                    recipe_id=recipe_id,
                    meal_plan_id=plan.id,
                    used_date=used_date,
                    meal_type=meal_type,
                    was_manual=False,
                )
            )
            self.db.flush()
            added += 1
        logger.info("Recorded %d usage history row(s) for plan %s", added, plan.id)
        return added

    def save_summary(self, plan: models.MealPlan, summary: str, rollup: NutritionRollup) -> None:
        plan.summary = summary
        plan.nutrition_summary = rollup.model_dump()
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

