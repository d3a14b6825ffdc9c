import logging
import time
from datetime import date
from typing import Callable, List, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from family_meals.app.core.config import Settings, get_settings
from family_meals.app.db import models
from family_meals.app.schemas.meal_plan import (
    GeneratorRequest,
    HouseholdProfile,
    LockedMeal,
    MandatoryRecipe,
    MealPlanGenerateRequest,
    MealPlanGenerationResult,
    MealPlanRegenerateRequest,
    PersonSchedule,
    RecipeInfo,
    ValidationContext,
)
from family_meals.app.services.cooldown_heuristic import adjust_rules
from family_meals.app.services.generation_orchestrator import GenerationOutcome, generate
from family_meals.app.services.llm_client import CandidateGenerator, LLMCandidateGenerator
from family_meals.app.services.macro_filter import average_daily_targets, build_filtering_note, filter_recipes
from family_meals.app.services.plan_reconciler import (
    correct_summary,
    locked_as_reconciled,
    reconcile,
    rollup_nutrition,
)
from family_meals.app.services.plan_repository import PlanRepository
from family_meals.app.services.week_calendar import meal_category

logger = logging.getLogger(__name__)


class InputInsufficiencyError(Exception):
    """The request cannot produce a plan no matter what the generator returns."""


class MealPlanNotFoundError(Exception):
    pass


class MealPlanNotDraftError(Exception):
    pass


class PlanningInputs(BaseModel):
    request: GeneratorRequest
    context: ValidationContext
    catalog: List[RecipeInfo]
    warnings: List[str] = Field(default_factory=list)


def _included_profiles(profiles: List[HouseholdProfile], schedules: Sequence[PersonSchedule]) -> List[HouseholdProfile]:
    included = [s for s in schedules if s.included]
    if not included:
        return profiles
    ids = {s.profile_id for s in included if s.profile_id is not None}
    names = {s.profile_name.lower() for s in included}
    matched = [p for p in profiles if p.id in ids or p.name.lower() in names]
    return matched or profiles


def _snack_present(schedules: Sequence[PersonSchedule]) -> bool:
    for person in schedules:
        if not person.included:
            continue
        for meal_types in person.schedule.values():
            if any(meal_category(t) == "snack" for t in meal_types):
                return True
    return False


def _prepare_inputs(
    repo: PlanRepository,
    settings: Settings,
    user_id: str,
    week_start: date,
    schedules: List[PersonSchedule],
    instructions: Optional[str],
    mandatory: Sequence[MandatoryRecipe],
    locked_meals: Sequence[LockedMeal] = (),
) -> PlanningInputs:
    if schedules and not any(s.eats_anything() for s in schedules):
        raise InputInsufficiencyError("No one is included in this week's schedule, so there are no meals to plan.")

    pool = repo.get_recipes(user_id, limit=settings.recipe_pool_limit)
    required_ids = [m.recipe_id for m in mandatory if not m.excluded]
    excluded_ids = [m.recipe_id for m in mandatory if m.excluded]
    mandatory_recipes = repo.get_recipes_by_ids(user_id, required_ids)
    locked_recipes = repo.get_recipes_by_ids(user_id, [m.recipe_id for m in locked_meals if m.recipe_id])

    pool_ids = {r.id for r in pool}
    for recipe in mandatory_recipes + locked_recipes:
        if recipe.id not in pool_ids:
            pool.append(recipe)
            pool_ids.add(recipe.id)
    if not pool:
        raise InputInsufficiencyError("Your recipe library is empty. Add some recipes before generating a meal plan.")

    warnings: List[str] = []
    found_ids = {r.id for r in mandatory_recipes}
    for recipe_id in required_ids:
        if recipe_id not in found_ids:
            warnings.append(f"Required recipe {recipe_id} is not in your recipe library and was skipped.")

    profiles = _included_profiles(repo.get_profiles(user_id), schedules)
    rules = repo.get_rules(user_id)
    adjustment = adjust_rules(rules, instructions, pool, mandatory_recipes)

    filter_result = filter_recipes(
        pool,
        average_daily_targets(profiles),
        rules.macro_mode,
        rules.priority_order,
        _snack_present(schedules),
    )
    kept_ids = {r.id for r in filter_result.kept}
    generator_recipes = list(filter_result.kept) + [r for r in mandatory_recipes if r.id not in kept_ids]

    instruction_parts = [instructions, "\n".join(adjustment.notes), build_filtering_note(filter_result)]
    history = repo.get_usage_history(user_id, week_start, lookback_days=settings.history_lookback_days)

    request = GeneratorRequest(
        profiles=profiles,
        recipes=generator_recipes,
        week_start_date=week_start,
        schedules=schedules,
        rules=adjustment.rules,
        recent_history=history,
        instructions="\n\n".join(p for p in instruction_parts if p) or None,
        mandatory_recipes=mandatory_recipes,
        locked_meals=list(locked_meals),
    )
    context = ValidationContext(
        week_start_date=week_start,
        exempt_meal_types=sorted(adjustment.exempt_meal_types),
        mandatory_recipe_ids=[r.id for r in mandatory_recipes],
        excluded_recipe_ids=excluded_ids,
        daily_recipe_ids=sorted(adjustment.daily_recipe_ids),
        profiles=profiles,
        schedules=schedules,
        locked_slots=list(locked_meals),
    )
    logger.info(
        "Prepared generation for user %s: %d recipe(s) offered, %d in catalog, %d required",
        user_id,
        len(generator_recipes),
        len(pool),
        len(mandatory_recipes),
    )
    return PlanningInputs(request=request, context=context, catalog=pool, warnings=warnings)


def _run(
    settings: Settings,
    inputs: PlanningInputs,
    generator: CandidateGenerator,
    sleep: Callable[[float], None],
) -> GenerationOutcome:
    return generate(
        inputs.request,
        inputs.request.rules,
        generator,
        context=inputs.context,
        catalog=inputs.catalog,
        max_attempts=settings.generation_max_attempts,
        backoff_seconds=settings.generation_retry_backoff_seconds,
        sleep=sleep,
    )


def _failed_result(inputs: PlanningInputs, outcome: GenerationOutcome, plan_id: Optional[int] = None):
    return MealPlanGenerationResult(
        status="failed",
        plan_id=plan_id,
        errors=list(outcome.validation.errors),
        warnings=inputs.warnings + list(outcome.validation.warnings),
        attempts=outcome.attempts,
        suggestion=outcome.suggestion,
    )


def _persist(
    repo: PlanRepository,
    settings: Settings,
    user_id: str,
    plan: models.MealPlan,
    inputs: PlanningInputs,
    outcome: GenerationOutcome,
) -> MealPlanGenerationResult:
    locked_meals = inputs.request.locked_meals
    reconciliation = reconcile(
        outcome.plan.meals,
        inputs.catalog,
        inputs.request.schedules,
        week_start=inputs.request.week_start_date,
        locked_meals=locked_meals,
        default_servings=settings.default_servings,
    )
    repo.save_meals(plan, reconciliation.meals)
    repo.record_usage(user_id, plan, reconciliation.meals, locked_meals)

    rollup = rollup_nutrition(reconciliation.meals + locked_as_reconciled(locked_meals), inputs.catalog)
    summary = correct_summary(outcome.plan.summary, rollup)
    repo.save_summary(plan, summary, rollup)
    repo.commit()
    logger.info("Saved meal plan %s with %d generated meal(s)", plan.id, len(reconciliation.meals))

    return MealPlanGenerationResult(
        status="completed",
        plan_id=plan.id,
        meals=reconciliation.meals,
        summary=summary,
        nutrition=rollup,
        warnings=inputs.warnings + list(outcome.validation.warnings) + reconciliation.warnings,
        attempts=outcome.attempts,
    )


def generate_meal_plan(
    db: Session,
    user_id: str,
    req: MealPlanGenerateRequest,
    generator: Optional[CandidateGenerator] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> MealPlanGenerationResult:
    """Generate, validate, reconcile and store a new draft plan for the week."""
    settings = get_settings()
    repo = PlanRepository(db)
    try:
        inputs = _prepare_inputs(
            repo,
            settings,
            user_id,
            req.week_start_date,
            req.week_profile_schedules,
            req.instructions,
            req.mandatory_recipes,
        )
    except InputInsufficiencyError as exc:
        logger.info("Meal plan request rejected for user %s: %s", user_id, exc)
        return MealPlanGenerationResult(status="invalid_input", errors=[str(exc)])

    outcome = _run(settings, inputs, generator or LLMCandidateGenerator(), sleep)
    if not outcome.success:
        return _failed_result(inputs, outcome)

    plan = repo.create_plan(user_id, req.week_start_date, req.week_profile_schedules)
    return _persist(repo, settings, user_id, plan, inputs, outcome)


def regenerate_meal_plan(
    db: Session,
    user_id: str,
    plan_id: int,
    req: MealPlanRegenerateRequest,
    generator: Optional[CandidateGenerator] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> MealPlanGenerationResult:
    """Replace the unlocked meals of a draft plan; locked meals are kept untouched."""
    settings = get_settings()
    repo = PlanRepository(db)
    plan = repo.get_plan(user_id, plan_id)
    if plan is None:
        raise MealPlanNotFoundError(f"Meal plan {plan_id} not found")
    if plan.status != "Draft":
        raise MealPlanNotDraftError("Only draft meal plans can be regenerated")

    schedules = [PersonSchedule.model_validate(s) for s in plan.custom_schedule or []]
    locked_meals = repo.get_locked_meals(plan.id)
    try:
        inputs = _prepare_inputs(
            repo,
            settings,
            user_id,
            plan.week_start_date,
            schedules,
            req.instructions,
            req.mandatory_recipes,
            locked_meals,
        )
    except InputInsufficiencyError as exc:
        logger.info("Meal plan %s regeneration rejected: %s", plan_id, exc)
        return MealPlanGenerationResult(status="invalid_input", plan_id=plan.id, errors=[str(exc)])

    outcome = _run(settings, inputs, generator or LLMCandidateGenerator(), sleep)
    if not outcome.success:
        return _failed_result(inputs, outcome, plan_id=plan.id)

    removed = repo.delete_unlocked_meals(plan.id)
    logger.info("Regenerating plan %s: removed %d unlocked meal(s), kept %d locked", plan.id, removed, len(locked_meals))
    return _persist(repo, settings, user_id, plan, inputs, outcome)
