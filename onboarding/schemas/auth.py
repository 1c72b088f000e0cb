"""Auth schemas for finalized users."""
from pydantic import BaseModel, EmailStr


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class AccountSummary(BaseModel):
    id: int
    name: str
    slug: str
    is_owner: bool = False

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    phone_number: str | None = None
    last_selected_account_id: int | None = None
    accounts: list[AccountSummary] = []


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class FinalizeResponse(Token):
    """Finalize result; already_finalized is True when this was a replay of an earlier success."""
    account: AccountSummary
    subscription_id: int | None = None
    already_finalized: bool = False
