"""
Generate-validate-retry loop around the candidate generator.

Each failed attempt's validator errors are fed back to the next attempt. A
transport failure consumes an attempt without changing that feedback.
"""
import logging
import time
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from family_meals.app.schemas.meal_plan import (
    GeneratedPlan,
    GeneratorRequest,
    PlanningRules,
    RecipeInfo,
    UsageHistoryEntry,
    ValidationContext,
    ValidationResult,
)
from family_meals.app.services.llm_client import CandidateGenerator, GeneratorError
from family_meals.app.services.plan_validator import validate_plan

logger = logging.getLogger(__name__)

REMEDIATION_SUGGESTION = "Try adjusting your meal plan settings or add more recipes to your library"

Validator = Callable[
    [list, PlanningRules, List[UsageHistoryEntry], List[RecipeInfo], ValidationContext],
    ValidationResult,
]


class GenerationOutcome(BaseModel):
    plan: Optional[GeneratedPlan] = None
    validation: ValidationResult = Field(default_factory=ValidationResult)
    attempts: int = 0
    success: bool = False
    suggestion: Optional[str] = None


def generate(
    request: GeneratorRequest,
    rules: PlanningRules,
    generator: CandidateGenerator,
    *,
    context: ValidationContext,
    catalog: Optional[List[RecipeInfo]] = None,
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
    validate: Validator = validate_plan,
    sleep: Callable[[float], None] = time.sleep,
) -> GenerationOutcome:
    """Run up to ``max_attempts`` generate/validate rounds and return the first valid plan."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    recipes = catalog if catalog is not None else list(request.recipes) + list(request.mandatory_recipes)
    feedback: List[str] = []
    last_plan: Optional[GeneratedPlan] = None
    last_validation: Optional[ValidationResult] = None
    last_transport_error: Optional[str] = None

    for attempt in range(1, max_attempts + 1):
        attempt_request = request.model_copy(update={"rules": rules, "validation_feedback": list(feedback)})
        logger.info("Meal plan generation attempt %d/%d (feedback=%d)", attempt, max_attempts, len(feedback))
        try:
            plan = generator.generate(attempt_request)
        except GeneratorError as exc:
            last_transport_error = str(exc)
            logger.warning("Generator failed on attempt %d/%d: %s", attempt, max_attempts, exc)
            if attempt < max_attempts:
                sleep(backoff_seconds)
            continue

        last_transport_error = None
        validation = validate(plan.meals, rules, request.recent_history, recipes, context)
        last_plan, last_validation = plan, validation
        if validation.is_valid:
            logger.info(
                "Attempt %d produced a valid plan (%d meals, %d warning(s))",
                attempt,
                len(plan.meals),
                len(validation.warnings),
            )
            return GenerationOutcome(plan=plan, validation=validation, attempts=attempt, success=True)

        logger.info("Attempt %d failed validation with %d error(s)", attempt, len(validation.errors))
        for error in validation.errors:
            logger.debug("  - %s", error)
        feedback = list(validation.errors)
        if attempt < max_attempts:
            sleep(backoff_seconds)

    if last_transport_error is not None and last_validation is None:
        last_validation = ValidationResult.from_messages(
            [f"Meal plan generator failed: {last_transport_error}"], []
        )
    logger.warning("Meal plan generation failed after %d attempts", max_attempts)
    return GenerationOutcome(
        plan=last_plan,
        validation=last_validation,
        attempts=max_attempts,
        success=False,
        suggestion=REMEDIATION_SUGGESTION,
    )
