from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from family_meals.app.db.base import Base


class User(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True, index=True)

    profiles = relationship("FamilyProfile", back_populates="user", cascade="all, delete-orphan")
    recipes = relationship("Recipe", back_populates="user", cascade="all, delete-orphan")
    meal_plans = relationship("MealPlan", back_populates="user", cascade="all, delete-orphan")
    settings = relationship(
        "MealPlanSettings", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )


class FamilyProfile(Base):
    __tablename__ = "family_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    profile_name = Column(String, nullable=False)
    age = Column(Integer)
    food_likes = Column(JSON, nullable=False, default=list)
    food_dislikes = Column(JSON, nullable=False, default=list)
    macro_tracking_enabled = Column(Boolean, nullable=False, default=False)
    daily_calorie_target = Column(Integer)
    daily_protein_target = Column(Integer)
    daily_carbs_target = Column(Integer)
    daily_fat_target = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="profiles")


class Recipe(Base):
    __tablename__ = "recipes"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    recipe_name = Column(String, nullable=False)
    description = Column(Text)
    servings = Column(Integer, nullable=False, default=4)
    total_time_minutes = Column(Integer)
    cuisine_type = Column(String)
    meal_types = Column(JSON, nullable=False, default=list)
    calories_per_serving = Column(Float)
    protein_per_serving = Column(Float)
    carbs_per_serving = Column(Float)
    fat_per_serving = Column(Float)
    family_rating = Column(Float)
    is_product_recipe = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="recipes")
    meals = relationship("Meal", back_populates="recipe")


class MealPlanSettings(Base):
    __tablename__ = "meal_plan_settings"

    id = Column(Integer, primary_key=True)
    user_id = Column(
        String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    macro_mode = Column(String, nullable=False, default="balanced")
    variety_enabled = Column(Boolean, nullable=False, default=True)
    dinner_cooldown = Column(Integer, nullable=False, default=14)
    lunch_cooldown = Column(Integer, nullable=False, default=7)
    breakfast_cooldown = Column(Integer, nullable=False, default=3)
    snack_cooldown = Column(Integer, nullable=False, default=2)
    min_cuisines = Column(Integer, nullable=False, default=3)
    max_same_cuisine = Column(Integer, nullable=False, default=2)
    batch_cooking_enabled = Column(Boolean, nullable=False, default=True)
    max_leftover_days = Column(Integer, nullable=False, default=4)
    priority_order = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="settings")


class MealPlan(Base):
    __tablename__ = "meal_plans"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    week_start_date = Column(Date, nullable=False)
    week_end_date = Column(Date, nullable=False)
    status = Column(String, nullable=False, default="Draft")
    custom_schedule = Column(JSON)
    summary = Column(Text)
    nutrition_summary = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="meal_plans")
    meals = relationship(
        "Meal",
        back_populates="meal_plan",
        cascade="all, delete-orphan",
        foreign_keys="Meal.meal_plan_id",
        order_by="Meal.id",
    )


class Meal(Base):
    __tablename__ = "meals"

    id = Column(Integer, primary_key=True)
    meal_plan_id = Column(Integer, ForeignKey("meal_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    recipe_id = Column(String, ForeignKey("recipes.id", ondelete="SET NULL"), nullable=True, index=True)
    day_of_week = Column(String, nullable=False)
    meal_type = Column(String, nullable=False)
    recipe_name = Column(String)
    servings = Column(Integer)
    scaling_factor = Column(Float)
    notes = Column(Text)
    is_leftover = Column(Boolean, nullable=False, default=False)
    batch_cook_source_day = Column(String)
    leftover_from_meal_id = Column(Integer, ForeignKey("meals.id", ondelete="SET NULL"), nullable=True)
    is_locked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    meal_plan = relationship("MealPlan", back_populates="meals", foreign_keys=[meal_plan_id])
    recipe = relationship("Recipe", back_populates="meals")

    __table_args__ = (Index("ix_meals_plan_slot", "meal_plan_id", "day_of_week", "meal_type"),)


class RecipeUsageHistory(Base):
    __tablename__ = "recipe_usage_history"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    recipe_id = Column(String, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True)
    meal_plan_id = Column(Integer, ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True)
    used_date = Column(Date, nullable=False)
    meal_type = Column(String, nullable=False)
    was_manual = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "recipe_id", "used_date", "meal_type", name="uq_usage_history_slot"),
        Index("ix_usage_history_user_date", "user_id", "used_date"),
    )
