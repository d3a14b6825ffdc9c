from fastapi import APIRouter

from family_meals.app.api.routes import meal_plans

api_router = APIRouter()
api_router.include_router(meal_plans.router)
