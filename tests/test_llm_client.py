import json
from datetime import date
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from family_meals.app.core.config import Settings
from family_meals.app.schemas.meal_plan import (
    GeneratedPlan,
    GeneratorRequest,
    LockedMeal,
    PersonSchedule,
    RecipeInfo,
)
from family_meals.app.services import llm_client
from family_meals.app.services.llm_client import (
    GeneratorError,
    LLMCandidateGenerator,
    build_prompt,
    call_meal_plan_generate,
    parse_generated_plan,
)

WEEK_START = date(2026, 10, 19)
PLAN_JSON = {
    "meals": [
        {"day_of_week": "Monday", "meal_type": "dinner", "recipe_id": "tacos", "recipe_name": "Tacos", "servings": 2}
    ],
    "summary": "Tex-Mex Monday.",
}


def _request(**fields):
    return GeneratorRequest(
        profiles=[],
        recipes=[RecipeInfo(id="tacos", name="Tacos", meal_types=["dinner"], cuisine="Mexican")],
        week_start_date=WEEK_START,
        **fields,
    )


def _settings(**overrides):
    values = {"LLM_BASE_URL": "http://llm-proxy", "LLM_APP_ID": "meals", "LLM_APP_KEY": "secret"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _response(status_code=200, payload=None, content=None):
    request = httpx.Request("POST", "http://llm-proxy/v1/chat/completions")
    if content is not None:
        return httpx.Response(status_code, content=content, request=request)
    return httpx.Response(status_code, json=payload, request=request)


def _completion(text):
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def test_parse_plain_json():
    plan = parse_generated_plan(json.dumps(PLAN_JSON))
    assert plan.meals[0].recipe_id == "tacos"
    assert plan.summary == "Tex-Mex Monday."


def test_parse_code_fence_wrapper_and_camel_case():
    raw = (
        "```json\n"
        '{"meal_plan": {"meals": [{"dayOfWeek": "Tuesday", "mealType": "lunch", "recipeId": "tacos", '
        '"isLeftover": true, "batchCookSourceDay": "Monday"}]}}\n'
        "```"
    )
    plan = parse_generated_plan(raw)
    meal = plan.meals[0]
    assert (meal.day_of_week, meal.meal_type, meal.recipe_id) == ("Tuesday", "lunch", "tacos")
    assert meal.is_leftover
    assert meal.batch_cook_source_day == "Monday"
    assert plan.summary == ""


def test_parse_repairs_surrounding_prose():
    raw = "Here is your plan:\n" + json.dumps(PLAN_JSON) + "\nEnjoy!"
    assert len(parse_generated_plan(raw).meals) == 1


@pytest.mark.parametrize(
    "raw, message",
    [
        ("not json at all", "invalid JSON"),
        ('{"error": "cannot plan"}', "cannot plan"),
        ('{"summary": "no meals"}', "missing the meals list"),
        ('{"meals": [{"meal_type": "dinner"}]}', "wrong shape"),
        ("[1, 2]", "not a JSON object"),
    ],
)
def test_parse_rejects_unusable_output(raw, message):
    with pytest.raises(GeneratorError) as excinfo:
        parse_generated_plan(raw)
    assert message in str(excinfo.value)


def test_prompt_carries_rules_locks_and_feedback():
    request = _request(
        schedules=[PersonSchedule(profile_name="Sam", schedule={"monday": ["dinner"]})],
        locked_meals=[LockedMeal(day_of_week="Monday", meal_type="breakfast", recipe_name="Oats")],
        instructions="Tacos on Monday and Thursday",
        validation_feedback=["Monday dinner has 2 meals assigned."],
    )
    prompt = build_prompt(request)
    assert "week starting 2026-10-19" in prompt
    assert "- Sam: Monday: dinner; Tuesday: nothing" in prompt
    assert "dinner 14" in prompt
    assert '"id": "tacos"' in prompt
    assert "- Monday breakfast: Oats" in prompt
    assert "Tacos on Monday and Thursday" in prompt
    assert "- Monday dinner has 2 meals assigned." in prompt
    assert prompt.index("## Rules") < prompt.index("## The previous plan was rejected")


@pytest.mark.asyncio
async def test_call_posts_to_proxy_with_app_headers():
    post = AsyncMock(return_value=_response(payload=_completion(json.dumps(PLAN_JSON))))
    with patch.object(llm_client, "get_settings", return_value=_settings()), patch.object(
        httpx.AsyncClient, "post", post
    ):
        plan = await call_meal_plan_generate(_request())
    assert isinstance(plan, GeneratedPlan)
    assert plan.meals[0].recipe_id == "tacos"
    url = post.call_args.args[0]
    assert url == "http://llm-proxy/v1/chat/completions"
    headers = post.call_args.kwargs["headers"]
    assert headers["X-App-Id"] == "meals"
    assert headers["X-App-Key"] == "secret"
    body = post.call_args.kwargs["json"]
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0]["role"] == "system"


@pytest.mark.asyncio
async def test_call_requires_base_url():
    with patch.object(llm_client, "get_settings", return_value=_settings(LLM_BASE_URL=None)):
        with pytest.raises(GeneratorError):
            await call_meal_plan_generate(_request())


@pytest.mark.asyncio
async def test_call_requires_app_credentials():
    settings = _settings(LLM_APP_KEY=None)
    with patch.object(llm_client, "get_settings", return_value=settings), patch.object(
        httpx.AsyncClient, "post", AsyncMock()
    ):
        with pytest.raises(GeneratorError) as excinfo:
            await call_meal_plan_generate(_request())
    assert "LLM_APP_KEY" in str(excinfo.value)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response, message",
    [
        (_response(503, payload={"detail": "busy"}), "503"),
        (_response(payload={"error": {"type": "rate_limit", "message": "slow down"}}), "rate_limit"),
        (_response(payload=_completion("")), "empty response"),
        (_response(content=b"<html>oops</html>"), "non-JSON"),
        (_response(payload=[]), "malformed completion"),
        (_response(payload={"choices": [{"message": None}]}), "malformed completion"),
        (_response(payload={"choices": ["x"]}), "malformed completion"),
        (_response(payload={"choices": "oops"}), "malformed completion"),
    ],
)
async def test_call_turns_proxy_failures_into_generator_errors(response, message):
    with patch.object(llm_client, "get_settings", return_value=_settings()), patch.object(
        httpx.AsyncClient, "post", AsyncMock(return_value=response)
    ):
        with pytest.raises(GeneratorError) as excinfo:
            await call_meal_plan_generate(_request())
    assert message in str(excinfo.value)


@pytest.mark.asyncio
async def test_call_wraps_transport_errors():
    post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
    with patch.object(llm_client, "get_settings", return_value=_settings()), patch.object(
        httpx.AsyncClient, "post", post
    ):
        with pytest.raises(GeneratorError) as excinfo:
            await call_meal_plan_generate(_request())
    assert "connection refused" in str(excinfo.value)


def test_sync_generator_runs_the_async_client():
    plan = GeneratedPlan.model_validate(PLAN_JSON)
    with patch(
        "family_meals.app.services.llm_client.call_meal_plan_generate", new=AsyncMock(return_value=plan)
    ) as call:
        result = LLMCandidateGenerator().generate(_request())
    assert result == plan
    call.assert_awaited_once()
