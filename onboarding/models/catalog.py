"""Plan catalog and interview question configuration. Maintained by admin screens; read-only here."""
from sqlalchemy import Column, Integer, String, Boolean
from onboarding.database import Base, JSONType


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(128), nullable=False)
    description = Column(String(500), nullable=True)
    price_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    interval = Column(String(16), nullable=False, default="MONTHLY")  # MONTHLY | YEARLY
    features = Column(JSONType, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)


class InterviewQuestion(Base):
    __tablename__ = "interview_questions"

    id = Column(Integer, primary_key=True, index=True)
    # Key the answer is stored under in TemporaryRegistration.interview_answers
    field_name = Column(String(64), unique=True, nullable=False)
    translation_key = Column(String(255), nullable=False)
    question_type = Column(String(32), nullable=False)  # INPUT | SELECTION | MULTI_SELECTION | SLIDER | CONFIRMATION
    input_config = Column(JSONType, nullable=True)
    validation = Column(JSONType, nullable=True)  # e.g. {"pattern": "^https?://.+"}
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
