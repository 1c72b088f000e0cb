from onboarding.schemas.auth import Token, UserLogin, UserResponse, AccountSummary, FinalizeResponse
from onboarding.schemas.registration import RegisterRequest, StepResponse, StepView, RegistrationStatus
