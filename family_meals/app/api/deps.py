from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from family_meals.app.db.session import get_db
from family_meals.app.services.llm_client import CandidateGenerator, LLMCandidateGenerator


def get_current_user_id(x_user_id: str | None = Header(None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header is required")
    return x_user_id.strip()


def get_db_session(db: Session = Depends(get_db)) -> Session:
    return db


def get_candidate_generator() -> CandidateGenerator:
    return LLMCandidateGenerator()
