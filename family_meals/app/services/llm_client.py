import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import ValidationError

from family_meals.app.core.config import get_settings
from family_meals.app.schemas.meal_plan import GeneratedPlan, GeneratorRequest, PlanningRules
from family_meals.app.services.week_calendar import ordered_days

logger = logging.getLogger(__name__)

PRIORITY_LABELS = {
    "macros": "Macro targets",
    "ratings": "Family ratings",
    "variety": "Variety and cuisine diversity",
    "shopping": "Shopping efficiency",
    "prep": "Meal prep and batch cooking",
    "time": "Cooking time",
}

_CAMEL_KEYS = {
    "dayOfWeek": "day_of_week",
    "mealType": "meal_type",
    "recipeId": "recipe_id",
    "recipeName": "recipe_name",
    "isLeftover": "is_leftover",
    "batchCookSourceDay": "batch_cook_source_day",
}


class GeneratorError(Exception):
    """The candidate generator could not produce a usable plan (transport or malformed output)."""


class CandidateGenerator(Protocol):
    def generate(self, request: GeneratorRequest) -> GeneratedPlan:
        ...


# Remove ASCII control chars that frequently break json.loads (except \n, \r, \t)
def _strip_invalid_control_chars(s: str) -> str:
    if not isinstance(s, str):
        return str(s)
    return re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F]", "", s)


def _strip_code_fence(text: str) -> str:
    txt = text.strip()
    if txt.startswith("```"):
        txt = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", txt, count=1)
        txt = re.sub(r"\s*```$", "", txt, count=1).strip()
    return txt


def _try_local_json_repair(raw: str) -> Optional[str]:
    cleaned = _strip_code_fence(_strip_invalid_control_chars(raw))
    if cleaned.startswith("{") and cleaned.endswith("}"):
        try:
            json.loads(cleaned)
            return cleaned
        except json.JSONDecodeError:
            pass
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end != -1 and end > start:
        snippet = cleaned[start : end + 1]
        try:
            json.loads(snippet)
            return snippet
        except json.JSONDecodeError:
            return None
    return None


def _headers() -> Dict[str, str]:
    settings = get_settings()
    if not settings.llm_app_id or not settings.llm_app_key:
        raise GeneratorError("LLM_APP_ID and LLM_APP_KEY must be set for LLM proxy authentication")
    return {
        "Content-Type": "application/json",
        "X-App-Id": settings.llm_app_id,
        "X-App-Key": settings.llm_app_key,
    }


def _normalize_meal(meal: Any) -> Any:
    if not isinstance(meal, dict):
        return meal
    return {_CAMEL_KEYS.get(key, key): value for key, value in meal.items()}


def parse_generated_plan(raw_content: str) -> GeneratedPlan:
    """Parse the model's reply into a GeneratedPlan, repairing common JSON damage first."""
    cleaned = _strip_code_fence(_strip_invalid_control_chars(raw_content))
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        repaired = _try_local_json_repair(raw_content)
        if repaired is None:
            raise GeneratorError("LLM returned invalid JSON for the meal plan")
        data = json.loads(repaired)

    if isinstance(data, dict) and "meal_plan" in data and isinstance(data["meal_plan"], dict):
        data = data["meal_plan"]
    if not isinstance(data, dict):
        raise GeneratorError("LLM response is not a JSON object")
    if data.get("error"):
        raise GeneratorError(f"LLM returned error: {data['error']}")

    meals = data.get("meals")
    if not isinstance(meals, list):
        raise GeneratorError("LLM response is missing the meals list")
    try:
        return GeneratedPlan.model_validate(
            {"meals": [_normalize_meal(m) for m in meals], "summary": data.get("summary") or ""}
        )
    except ValidationError as exc:
        raise GeneratorError(f"LLM meal plan has the wrong shape: {exc.error_count()} error(s)") from exc


def _rules_section(rules: PlanningRules) -> List[str]:
    lines = [
        "## Rules",
        f"- Macro mode: {rules.macro_mode}",
        "- Cooldown days before a recipe may repeat: "
        f"breakfast {rules.breakfast_cooldown}, lunch {rules.lunch_cooldown}, "
        f"dinner {rules.dinner_cooldown}, snacks/desserts {rules.snack_cooldown}",
    ]
    if rules.variety_enabled:
        lines.append(
            f"- Use at least {rules.min_cuisines} cuisines across lunches and dinners, "
            f"and no more than {rules.max_same_cuisine} meals from one cuisine"
        )
    if rules.batch_cooking_enabled:
        lines.append(
            f"- Batch cooking allowed: leftovers must follow the cooked meal within {rules.max_leftover_days} days, "
            "set is_leftover=true and batch_cook_source_day, and put a batch note on the cooked meal"
        )
    else:
        lines.append("- Batch cooking disabled: never mark a meal as leftover")
    lines.append("- When constraints conflict, resolve them in this priority order:")
    for idx, priority in enumerate(rules.priority_order, start=1):
        lines.append(f"  {idx}. {PRIORITY_LABELS.get(priority, priority)}")
    return lines


def build_prompt(request: GeneratorRequest) -> str:
    days = ordered_days(request.week_start_date)
    sections: List[str] = [
        f"Plan meals for the week starting {request.week_start_date.isoformat()} ({', '.join(days)}).",
        "",
        "## Household",
    ]
    for profile in request.profiles:
        line = f"- {profile.name}"
        if profile.macro_tracking_enabled and profile.daily_calorie_target:
            line += (
                f" (daily targets: {profile.daily_calorie_target} cal, {profile.daily_protein_target or 0}g protein, "
                f"{profile.daily_carbs_target or 0}g carbs, {profile.daily_fat_target or 0}g fat)"
            )
        if profile.food_dislikes:
            line += f"; dislikes {', '.join(profile.food_dislikes)}"
        sections.append(line)

    included = [s for s in request.schedules if s.included]
    if included:
        sections += ["", "## Who eats which meals"]
        for person in included:
            per_day = "; ".join(
                f"{day}: {', '.join(person.schedule.get(day.lower(), [])) or 'nothing'}" for day in days
            )
            sections.append(f"- {person.profile_name}: {per_day}")

    sections += ["", *_rules_section(request.rules)]

    sections += ["", "## Recipes (use only these ids)"]
    for recipe in request.recipes:
        sections.append(
            json.dumps(
                {
                    "id": recipe.id,
                    "name": recipe.name,
                    "meal_types": recipe.meal_types,
                    "cuisine": recipe.cuisine,
                    "servings": recipe.servings,
                    "calories": recipe.calories_per_serving,
                    "protein": recipe.protein_per_serving,
                    "carbs": recipe.carbs_per_serving,
                    "fat": recipe.fat_per_serving,
                    "product": recipe.is_product,
                }
            )
        )

    if request.recent_history:
        sections += ["", "## Recently used (respect cooldowns)"]
        for entry in request.recent_history:
            sections.append(f"- {entry.recipe_id} as {entry.meal_type} on {entry.used_date.isoformat()}")

    if request.mandatory_recipes:
        sections += ["", "## Required recipes (each must appear at least once)"]
        sections += [f'- "{r.name}" ({r.id})' for r in request.mandatory_recipes]

    if request.locked_meals:
        sections += ["", "## Locked meals (already fixed, do not plan these slots)"]
        sections += [
            f"- {m.day_of_week} {m.meal_type}: {m.recipe_name or m.recipe_id}" for m in request.locked_meals
        ]

    if request.instructions:
        sections += ["", "## Instructions from the family", request.instructions]

    if request.validation_feedback:
        sections += ["", "## The previous plan was rejected. Fix every one of these problems:"]
        sections += [f"- {error}" for error in request.validation_feedback]

    sections += [
        "",
        "Return ONLY JSON of the form "
        '{"meals": [{"day_of_week": "Monday", "meal_type": "dinner", "recipe_id": "...", '
        '"recipe_name": "...", "servings": 4, "notes": null, "is_leftover": false, '
        '"batch_cook_source_day": null}], "summary": "..."}',
    ]
    return "\n".join(sections)


SYSTEM_PROMPT = (
    "You are a meal planning assistant for busy families. Build practical weekly meal plans that "
    "respect dietary targets, cooldowns and variety rules. Never invent recipes: every recipe_id "
    "must come from the provided list. Return only valid JSON."
)


async def call_meal_plan_generate(request: GeneratorRequest) -> GeneratedPlan:
    settings = get_settings()
    if not settings.llm_base_url:
        raise GeneratorError("LLM_BASE_URL is not configured")
    payload = {
        "model": settings.llm_model_name or "full",
        "temperature": 0.4,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(request)},
        ],
        "max_tokens": settings.llm_max_tokens,
        "stream": False,
    }
    timeout = httpx.Timeout(settings.llm_timeout_seconds, read=settings.llm_timeout_seconds, connect=10.0)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(
                f"{settings.llm_base_url}/v1/chat/completions",
                json=payload,
                headers=_headers(),
            )
    except httpx.HTTPError as exc:
        raise GeneratorError(f"LLM request failed: {exc}") from exc

    if resp.status_code >= 400:
        logger.warning("Meal plan LLM generation failed with status %s", resp.status_code)
        raise GeneratorError(f"LLM request failed: {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as exc:
        raise GeneratorError("LLM proxy returned a non-JSON response") from exc

    if isinstance(data, dict) and "error" in data:
        error_info = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
        error_type = error_info.get("type", "unknown_error")
        error_message = error_info.get("message", "Unknown error")
        logger.warning(
            "LLM proxy returned error in meal plan generation: type=%s, message=%s",
            error_type,
            error_message[:500],
        )
        raise GeneratorError(f"LLM proxy error ({error_type}): {error_message}")

    choices = data.get("choices") if isinstance(data, dict) else None
    message = None
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
    if not isinstance(message, dict):
        logger.warning("Meal plan LLM returned a completion without a message: %s", str(data)[:200])
        raise GeneratorError("LLM proxy returned a malformed completion")
    content = message.get("content")
    if not content:
        logger.warning("Meal plan LLM returned empty content")
        raise GeneratorError("LLM returned an empty response")
    plan = parse_generated_plan(content if isinstance(content, str) else str(content))
    logger.info("LLM proposed %d meal(s)", len(plan.meals))
    return plan


class LLMCandidateGenerator:
    """Synchronous adapter so the retry loop can call the async proxy client."""

    def generate(self, request: GeneratorRequest) -> GeneratedPlan:
        return asyncio.run(call_meal_plan_generate(request))
