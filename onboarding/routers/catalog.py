"""Read-only catalog the wizard renders from: active plans and interview questions."""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from onboarding.database import get_db
from onboarding.models.catalog import Plan
from onboarding.services.registration import active_questions

router = APIRouter(tags=["catalog"])


class PlanResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    price_cents: int
    currency: str
    interval: str
    features: list[str] = []


class InterviewQuestionResponse(BaseModel):
    field_name: str
    translation_key: str
    question_type: str
    input_config: dict | None = None
    validation: dict | None = None
    order: int


@router.get("/plans", response_model=list[PlanResponse])
def list_plans(db: Session = Depends(get_db)):
    plans = db.query(Plan).filter(Plan.is_active.is_(True)).order_by(Plan.sort_order, Plan.id).all()
    return [
        PlanResponse(
            id=p.slug,
            name=p.name,
            description=p.description,
            price_cents=p.price_cents,
            currency=p.currency,
            interval=p.interval,
            features=p.features or [],
        )
        for p in plans
    ]


@router.get("/interview/questions", response_model=list[InterviewQuestionResponse])
def list_interview_questions(db: Session = Depends(get_db)):
    return [
        InterviewQuestionResponse(
            field_name=q.field_name,
            translation_key=q.translation_key,
            question_type=q.question_type,
            input_config=q.input_config,
            validation=q.validation,
            order=q.sort_order,
        )
        for q in active_questions(db)
    ]
