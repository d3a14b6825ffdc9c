"""Create meal planning tables

Revision ID: c4d5e6f7a8b9
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = 'c4d5e6f7a8b9'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(), primary_key=True),
    )
    op.create_index("ix_users_user_id", "users", ["user_id"])

    op.create_table(
        "family_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("profile_name", sa.String(), nullable=False),
        sa.Column("age", sa.Integer()),
        sa.Column("food_likes", sa.JSON(), nullable=False),
        sa.Column("food_dislikes", sa.JSON(), nullable=False),
        sa.Column("macro_tracking_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("daily_calorie_target", sa.Integer()),
        sa.Column("daily_protein_target", sa.Integer()),
        sa.Column("daily_carbs_target", sa.Integer()),
        sa.Column("daily_fat_target", sa.Integer()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_family_profiles_user_id", "family_profiles", ["user_id"])

    op.create_table(
        "recipes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipe_name", sa.String(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("servings", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("total_time_minutes", sa.Integer()),
        sa.Column("cuisine_type", sa.String()),
        sa.Column("meal_types", sa.JSON(), nullable=False),
        sa.Column("calories_per_serving", sa.Float()),
        sa.Column("protein_per_serving", sa.Float()),
        sa.Column("carbs_per_serving", sa.Float()),
        sa.Column("fat_per_serving", sa.Float()),
        sa.Column("family_rating", sa.Float()),
        sa.Column("is_product_recipe", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_recipes_id", "recipes", ["id"])
    op.create_index("ix_recipes_user_id", "recipes", ["user_id"])

    op.create_table(
        "meal_plan_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("macro_mode", sa.String(), nullable=False, server_default="balanced"),
        sa.Column("variety_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("dinner_cooldown", sa.Integer(), nullable=False, server_default="14"),
        sa.Column("lunch_cooldown", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("breakfast_cooldown", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("snack_cooldown", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("min_cuisines", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("max_same_cuisine", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("batch_cooking_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_leftover_days", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("priority_order", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_meal_plan_settings_user_id", "meal_plan_settings", ["user_id"], unique=True)

    op.create_table(
        "meal_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("week_start_date", sa.Date(), nullable=False),
        sa.Column("week_end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="Draft"),
        sa.Column("custom_schedule", sa.JSON()),
        sa.Column("summary", sa.Text()),
        sa.Column("nutrition_summary", sa.JSON()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_meal_plans_user_id", "meal_plans", ["user_id"])

    op.create_table(
        "meals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("meal_plan_id", sa.Integer(), sa.ForeignKey("meal_plans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipe_id", sa.String(), sa.ForeignKey("recipes.id", ondelete="SET NULL"), nullable=True),
        sa.Column("day_of_week", sa.String(), nullable=False),
        sa.Column("meal_type", sa.String(), nullable=False),
        sa.Column("recipe_name", sa.String()),
        sa.Column("servings", sa.Integer()),
        sa.Column("scaling_factor", sa.Float()),
        sa.Column("notes", sa.Text()),
        sa.Column("is_leftover", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("batch_cook_source_day", sa.String()),
        sa.Column("leftover_from_meal_id", sa.Integer(), sa.ForeignKey("meals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_meals_meal_plan_id", "meals", ["meal_plan_id"])
    op.create_index("ix_meals_recipe_id", "meals", ["recipe_id"])
    op.create_index("ix_meals_plan_slot", "meals", ["meal_plan_id", "day_of_week", "meal_type"])

    op.create_table(
        "recipe_usage_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipe_id", sa.String(), sa.ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("meal_plan_id", sa.Integer(), sa.ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True),
        sa.Column("used_date", sa.Date(), nullable=False),
        sa.Column("meal_type", sa.String(), nullable=False),
        sa.Column("was_manual", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "recipe_id", "used_date", "meal_type", name="uq_usage_history_slot"),
    )
    op.create_index("ix_recipe_usage_history_user_id", "recipe_usage_history", ["user_id"])
    op.create_index("ix_recipe_usage_history_recipe_id", "recipe_usage_history", ["recipe_id"])
    op.create_index("ix_usage_history_user_date", "recipe_usage_history", ["user_id", "used_date"])


def downgrade() -> None:
    op.drop_table("recipe_usage_history")
    op.drop_table("meals")
    op.drop_table("meal_plans")
    op.drop_table("meal_plan_settings")
    op.drop_table("recipes")
    op.drop_table("family_profiles")
    op.drop_table("users")
