from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette import status

from family_meals.app.api.deps import get_candidate_generator, get_current_user_id, get_db_session
from family_meals.app.schemas.meal_plan import (
    MealPlanGenerateRequest,
    MealPlanGenerationResult,
    MealPlanRead,
    MealPlanRegenerateRequest,
)
from family_meals.app.services import meal_plan_service
from family_meals.app.services.llm_client import CandidateGenerator
from family_meals.app.services.plan_repository import PlanRepository

router = APIRouter(prefix="/meal-plans", tags=["meal_plans"])


def _respond(result: MealPlanGenerationResult) -> JSONResponse:
    status_code = status.HTTP_201_CREATED if result.status == "completed" else status.HTTP_422_UNPROCESSABLE_ENTITY
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.post("/generate", status_code=201, response_model=MealPlanGenerationResult)
def generate_meal_plan(
    payload: MealPlanGenerateRequest,
    db: Session = Depends(get_db_session),
    user_id: str = Depends(get_current_user_id),
    generator: CandidateGenerator = Depends(get_candidate_generator),
):
    result = meal_plan_service.generate_meal_plan(db, user_id, payload, generator=generator)
    return _respond(result)


@router.post("/{plan_id}/regenerate", status_code=201, response_model=MealPlanGenerationResult)
def regenerate_meal_plan(
    plan_id: int,
    payload: MealPlanRegenerateRequest,
    db: Session = Depends(get_db_session),
    user_id: str = Depends(get_current_user_id),
    generator: CandidateGenerator = Depends(get_candidate_generator),
):
    try:
        result = meal_plan_service.regenerate_meal_plan(db, user_id, plan_id, payload, generator=generator)
    except meal_plan_service.MealPlanNotFoundError:
        raise HTTPException(status_code=404, detail="Meal plan not found")
    except meal_plan_service.MealPlanNotDraftError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _respond(result)


@router.get("/{plan_id}", response_model=MealPlanRead)
def get_meal_plan(
    plan_id: int,
    db: Session = Depends(get_db_session),
    user_id: str = Depends(get_current_user_id),
):
    plan = PlanRepository(db).get_plan(user_id, plan_id)
    if plan is None:
        raise HTTPException(status_code=404, detail="Meal plan not found")
    return plan
