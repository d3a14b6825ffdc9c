from conftest import WEEK_START, make_plan
from family_meals.app.db import models

TACOS_MONDAY = {"day_of_week": "Monday", "meal_type": "dinner", "recipe_id": "tacos", "servings": 2}


def _payload(**extra):
    payload = {"week_start_date": WEEK_START.isoformat()}
    payload.update(extra)
    return payload


def _library(seed):
    seed.recipe("tacos", "Fish Tacos", ["dinner"], cuisine_type="Mexican", calories_per_serving=500)
    seed.recipe("oats", "Overnight Oats", ["breakfast"])
    seed.settings(variety_enabled=False)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_user_header_required(client):
    response = client.post("/meal-plans/generate", json=_payload())
    assert response.status_code == 401
    assert client.get("/meal-plans/1").status_code == 401


def test_generate_and_fetch_plan(client, seed, stub_generator, user_headers):
    _library(seed)
    stub_generator.queue(make_plan(TACOS_MONDAY, summary="Taco night."))

    response = client.post("/meal-plans/generate", json=_payload(instructions="keep it simple"), headers=user_headers)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "completed"
    assert body["attempts"] == 1
    assert body["meals"][0]["recipe_name"] == "Fish Tacos"
    assert body["summary"].startswith("Taco night.")
    assert body["nutrition"]["meals_with_nutrition"] == 1

    fetched = client.get(f"/meal-plans/{body['plan_id']}", headers=user_headers)
    assert fetched.status_code == 200
    plan = fetched.json()
    assert plan["status"] == "Draft"
    assert plan["week_end_date"] == "2026-10-25"
    assert [(m["day_of_week"], m["recipe_id"], m["servings"]) for m in plan["meals"]] == [("Monday", "tacos", 2)]


def test_generate_with_empty_library(client, seed, user_headers):
    seed.user()
    response = client.post("/meal-plans/generate", json=_payload(), headers=user_headers)
    assert response.status_code == 422
    body = response.json()
    assert body["status"] == "invalid_input"
    assert body["plan_id"] is None


def test_generate_failure_reports_errors(client, seed, stub_generator, user_headers):
    _library(seed)
    stub_generator.queue(make_plan({"day_of_week": "Monday", "meal_type": "dinner", "recipe_id": "oats"}))
    response = client.post("/meal-plans/generate", json=_payload(), headers=user_headers)
    assert response.status_code == 422
    body = response.json()
    assert body["status"] == "failed"
    assert body["attempts"] == 3
    assert body["errors"][0].startswith("Meal type mismatch")
    assert body["suggestion"]


def test_regenerate_endpoint(client, seed, stub_generator, user_headers):
    _library(seed)
    stub_generator.queue(make_plan(TACOS_MONDAY))
    plan_id = client.post("/meal-plans/generate", json=_payload(), headers=user_headers).json()["plan_id"]

    response = client.post(
        f"/meal-plans/{plan_id}/regenerate", json={"instructions": "something different"}, headers=user_headers
    )
    assert response.status_code == 201
    assert response.json()["plan_id"] == plan_id
    assert stub_generator.requests[-1].instructions.startswith("something different")


def test_regenerate_unknown_plan(client, user_headers):
    response = client.post("/meal-plans/999/regenerate", json={}, headers=user_headers)
    assert response.status_code == 404


def test_regenerate_non_draft_plan(client, db_session, seed, stub_generator, user_headers):
    _library(seed)
    stub_generator.queue(make_plan(TACOS_MONDAY))
    plan_id = client.post("/meal-plans/generate", json=_payload(), headers=user_headers).json()["plan_id"]
    db_session.get(models.MealPlan, plan_id).status = "Approved"
    db_session.flush()

    response = client.post(f"/meal-plans/{plan_id}/regenerate", json={}, headers=user_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Only draft meal plans can be regenerated"


def test_plans_are_private(client, seed, stub_generator, user_headers):
    _library(seed)
    stub_generator.queue(make_plan(TACOS_MONDAY))
    plan_id = client.post("/meal-plans/generate", json=_payload(), headers=user_headers).json()["plan_id"]
    response = client.get(f"/meal-plans/{plan_id}", headers={"X-User-Id": "user-2"})
    assert response.status_code == 404
