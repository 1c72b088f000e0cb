"""Seed the default plan catalog and interview questions for a fresh database."""
from sqlalchemy.orm import Session
from onboarding.models.catalog import Plan, InterviewQuestion


def seed_plans(db: Session) -> None:
    if db.query(Plan).count() > 0:
        return
    plans = [
        Plan(
            slug="basic",
            name="Basic",
            description="Perfect for small businesses getting started with SEO",
            price_cents=2900,
            currency="USD",
            interval="MONTHLY",
            features=["1 Website", "100 Keywords", "50 Content pieces/month", "Basic SEO audit", "Email support"],
            sort_order=1,
        ),
        Plan(
            slug="pro",
            name="Pro",
            description="For growing businesses that need more power",
            price_cents=7900,
            currency="USD",
            interval="MONTHLY",
            features=[
                "5 Websites", "500 Keywords", "200 Content pieces/month", "Advanced SEO audit",
                "Priority support", "Team collaboration", "API access",
            ],
            sort_order=2,
        ),
        Plan(
            slug="enterprise",
            name="Enterprise",
            description="For agencies and large organizations",
            price_cents=19900,
            currency="USD",
            interval="MONTHLY",
            features=[
                "Unlimited Websites", "Unlimited Keywords", "Unlimited Content", "White-label reports",
                "Dedicated support", "Custom integrations", "SLA guarantee",
            ],
            sort_order=3,
        ),
    ]
    for p in plans:
        db.add(p)
    db.commit()


def seed_interview_questions(db: Session) -> None:
    if db.query(InterviewQuestion).count() > 0:
        return
    questions = [
        InterviewQuestion(
            field_name="website_url",
            translation_key="interviewWizard.questions.websiteUrl",
            question_type="INPUT",
            input_config={"inputType": "url", "placeholder": "https://example.com"},
            validation={
                "pattern": r"^https?://.+",
                "error_message": "Please enter a valid URL starting with http:// or https://",
            },
            sort_order=1,
        ),
        InterviewQuestion(
            field_name="business_type",
            translation_key="interviewWizard.questions.businessType",
            question_type="SELECTION",
            input_config={"options": ["ecommerce", "saas", "blog", "local", "agency", "other"]},
            sort_order=2,
        ),
        InterviewQuestion(
            field_name="primary_products",
            translation_key="interviewWizard.questions.primaryProducts",
            question_type="INPUT",
            input_config={"inputType": "textarea"},
            sort_order=3,
        ),
        InterviewQuestion(
            field_name="target_audience",
            translation_key="interviewWizard.questions.targetAudience",
            question_type="INPUT",
            input_config={"inputType": "textarea"},
            sort_order=4,
        ),
        InterviewQuestion(
            field_name="target_regions",
            translation_key="interviewWizard.questions.targetRegions",
            question_type="MULTI_SELECTION",
            input_config={"options": ["israel", "usa", "europe", "asia", "global"]},
            sort_order=5,
        ),
        InterviewQuestion(
            field_name="seo_goals",
            translation_key="interviewWizard.questions.seoGoals",
            question_type="MULTI_SELECTION",
            input_config={"options": ["traffic", "rankings", "leads", "sales", "brand", "authority"]},
            sort_order=6,
        ),
        InterviewQuestion(
            field_name="monthly_budget",
            translation_key="interviewWizard.questions.monthlyBudget",
            question_type="SLIDER",
            input_config={"min": 0, "max": 10000, "step": 500, "defaultValue": 1000},
            sort_order=7,
        ),
        InterviewQuestion(
            field_name="has_existing_content",
            translation_key="interviewWizard.questions.hasExistingContent",
            question_type="CONFIRMATION",
            sort_order=8,
        ),
    ]
    for q in questions:
        db.add(q)
    db.commit()


def seed_catalog(db: Session) -> None:
    seed_plans(db)
    seed_interview_questions(db)
