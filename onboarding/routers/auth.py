"""Sign-in for users created by a finalized registration."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from onboarding.database import get_db
from onboarding.dependencies import get_current_user
from onboarding.models.account import Account, Membership
from onboarding.models.user import User
from onboarding.schemas.auth import AccountSummary, Token, UserLogin, UserResponse
from onboarding.services.auth import create_access_token, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])


def user_to_response(user: User, db: Session) -> UserResponse:
    """Build UserResponse with the accounts the user belongs to."""
    rows = (
        db.query(Account, Membership)
        .join(Membership, Membership.account_id == Account.id)
        .filter(Membership.user_id == user.id)
        .order_by(Account.id)
        .all()
    )
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        phone_number=user.phone_number,
        last_selected_account_id=user.last_selected_account_id,
        accounts=[AccountSummary(id=a.id, name=a.name, slug=a.slug, is_owner=m.is_owner) for a, m in rows],
    )


@router.post("/login", response_model=Token)
def login(data: UserLogin, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email.strip().lower()).first()
    if not user or not verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="This account has been deactivated.")
    token = create_access_token(user.id, user.email, user.last_selected_account_id)
    return Token(access_token=token, user=user_to_response(user, db))


@router.get("/me", response_model=UserResponse)
def me(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return user_to_response(current_user, db)
