import json

import pytest
from fastapi.exceptions import RequestValidationError

from family_meals.app.main import validation_exception_handler


@pytest.mark.asyncio
async def test_validation_handler_formats_errors():
    exc = RequestValidationError(
        errors=[
            {"loc": ("body", "week_start_date"), "msg": "field required"},
            {"loc": ("path", "plan_id"), "msg": "value is not a valid integer"},
        ]
    )
    response = await validation_exception_handler(None, exc)
    assert response.status_code == 422
    body = json.loads(response.body)
    assert body["error_code"] == "validation_error"
    assert body["message"] == "Invalid request payload."
    assert "request_id" in body and body["request_id"]
    assert {"field": "body.week_start_date", "message": "field required"} in body["details"]
    assert {"field": "path.plan_id", "message": "value is not a valid integer"} in body["details"]


def test_bad_payload_uses_validation_format(client, user_headers):
    response = client.post("/meal-plans/generate", json={"instructions": "anything"}, headers=user_headers)
    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "validation_error"
    assert any(d["field"] == "body.week_start_date" for d in body["details"])


def test_unknown_schedule_day_is_rejected(client, user_headers):
    payload = {
        "week_start_date": "2026-10-19",
        "week_profile_schedules": [{"profile_name": "Sam", "schedule": {"Funday": ["dinner"]}}],
    }
    response = client.post("/meal-plans/generate", json=payload, headers=user_headers)
    assert response.status_code == 422
    assert response.json()["error_code"] == "validation_error"
