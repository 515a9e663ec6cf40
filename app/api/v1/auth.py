"""Authentication API endpoints"""
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.core.dependencies import get_current_user
from app.core.rate_limit import limiter
from app.models.user import User
from app.services.auth_service import AuthService
from app.schemas.auth import (
    RegisterRequest,
    RegisterData,
    RegisterResponse,
    LoginRequest,
    RefreshRequest,
    VerifyEmailRequest,
    ResendVerificationRequest,
    UserResponse,
    ProfileResponse,
    TokenResponse,
    AccessTokenResponse,
    VerifyEmailResponse,
    MessageResponse
)

router = APIRouter()


@router.post("/create", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.AUTH_RATE_LIMIT)
def register(
    request: Request,
    response: Response,
    payload: RegisterRequest,
    db: Session = Depends(get_db)
):
    """
    Register a new account together with its first device subscription

    - **username**, **email**, **password**, **phone_number**: account details
    - **device_name**, **imei**: device to subscribe
    - **plan**: one of the catalog plans (see GET /subscriptions/plans)
    - **cards**: encryption cards uploaded through POST /files/cards

    The account stays inactive until the email is verified. Registering again
    with an unverified email re-sends the verification link.
    """
    service = AuthService(db)
    result = service.register(
        username=payload.username,
        email=payload.email,
        password=payload.password,
        phone_number=payload.phone_number,
        device_name=payload.device_name,
        imei=payload.imei,
        plan=payload.plan,
        cards=[card.model_dump() for card in payload.cards]
    )

    user = result["user"]
    subscription = result["subscription"]

    if result["is_new_user"]:
        message = "Registration successful. Please check your email to verify your account."
    else:
        response.status_code = status.HTTP_200_OK
        message = "Verification email re-sent. Please check your inbox."

    return RegisterResponse(
        message=message,
        data=RegisterData(
            requires_verification=result["requires_verification"],
            email=user.email,
            username=user.username,
            is_new_user=result["is_new_user"],
            subscription_id=str(subscription.id) if subscription is not None else None,
            queue_position=subscription.queue_position if subscription is not None else None
        ),
        warning=result["warning"]
    )


@router.post("/login", response_model=TokenResponse)
@limiter.limit(settings.AUTH_RATE_LIMIT)
def login(request: Request, payload: LoginRequest, db: Session = Depends(get_db)):
    """
    Login with username or email

    Unverified accounts get 403 with data.requires_verification set.
    """
    result = AuthService(db).login(payload.username, payload.password)
    return TokenResponse(
        access_token=result["access_token"],
        refresh_token=result["refresh_token"],
        token_type=result["token_type"],
        user=UserResponse.model_validate(result["user"])
    )


@router.post("/refresh", response_model=AccessTokenResponse)
def refresh_token(payload: RefreshRequest, db: Session = Depends(get_db)):
    """Exchange a refresh token for a new access token"""
    result = AuthService(db).refresh(payload.refresh_token)
    return AccessTokenResponse(**result)


@router.post("/verify", response_model=VerifyEmailResponse)
def verify_email(payload: VerifyEmailRequest, db: Session = Depends(get_db)):
    """Verify an email address and activate the account"""
    result = AuthService(db).verify_email(payload.token)
    return VerifyEmailResponse(
        message="Email verified successfully. You can now log in.",
        **result
    )


@router.post("/resend-verification", response_model=MessageResponse)
@limiter.limit(settings.AUTH_RATE_LIMIT)
def resend_verification(request: Request, payload: ResendVerificationRequest, db: Session = Depends(get_db)):
    result = AuthService(db).resend_verification(payload.email)
    return MessageResponse(
        message=f"Verification email sent to {result['email']}",
        warning=result["warning"]
    )


@router.get("/me", response_model=ProfileResponse)
def get_me(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Current user with devices and subscriptions"""
    user = AuthService(db).get_profile(current_user)
    return ProfileResponse.model_validate(user)
