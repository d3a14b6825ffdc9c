import os
from datetime import date

# retries must not sleep and the app must never reach a real database or LLM proxy
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("GENERATION_RETRY_BACKOFF_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from family_meals.app.api.deps import get_candidate_generator, get_db_session
from family_meals.app.db import models
from family_meals.app.db.base import Base
from family_meals.app.main import create_app
from family_meals.app.schemas.meal_plan import CandidateMeal, GeneratedPlan
from family_meals.app.services.llm_client import GeneratorError

WEEK_START = date(2026, 10, 19)  # a Monday
USER_ID = "user-1"


class StubGenerator:
    """Returns queued plans in order, repeating the last one; queued exceptions are raised."""

    def __init__(self, *plans):
        self.plans = list(plans)
        self.requests = []

    def queue(self, *plans):
        self.plans.extend(plans)

    def generate(self, request):
        self.requests.append(request)
        if not self.plans:
            raise GeneratorError("no plan queued")
        item = self.plans.pop(0) if len(self.plans) > 1 else self.plans[0]
        if isinstance(item, Exception):
            raise item
        return item


def make_plan(*meals, summary=""):
    return GeneratedPlan(
        meals=[m if isinstance(m, CandidateMeal) else CandidateMeal(**m) for m in meals],
        summary=summary,
    )


class Seeder:
    def __init__(self, db):
        self.db = db

    def user(self, user_id=USER_ID):
        user = self.db.get(models.User, user_id)
        if user is None:
            user = models.User(user_id=user_id)
            self.db.add(user)
            self.db.flush()
        return user

    def recipe(self, recipe_id, name, meal_types, user_id=USER_ID, **fields):
        self.user(user_id)
        fields.setdefault("servings", 4)
        recipe = models.Recipe(
            id=recipe_id,
            user_id=user_id,
            recipe_name=name,
            meal_types=list(meal_types),
            **fields,
        )
        self.db.add(recipe)
        self.db.flush()
        return recipe

    def profile(self, name, user_id=USER_ID, **fields):
        self.user(user_id)
        profile = models.FamilyProfile(user_id=user_id, profile_name=name, **fields)
        self.db.add(profile)
        self.db.flush()
        return profile

    def settings(self, user_id=USER_ID, **fields):
        self.user(user_id)
        row = models.MealPlanSettings(user_id=user_id, **fields)
        self.db.add(row)
        self.db.flush()
        return row


@pytest.fixture(scope="session")
def engine():
    engine = create_engine("sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, future=True)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autocommit=False, autoflush=False, future=True)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def seed(db_session):
    return Seeder(db_session)


@pytest.fixture
def stub_generator():
    return StubGenerator()


@pytest.fixture
def app(db_session, stub_generator):
    app = create_app()

    def override_db():
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_candidate_generator] = lambda: stub_generator
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def user_headers():
    return {"X-User-Id": USER_ID}
