"""Registration, login and email verification"""
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import or_, func
from typing import Dict, Any, List, Optional
import logging

from app.database import atomic
from app.models.user import User
from app.models.subscription import Subscription, SubscriptionStatus
from app.core.plans import get_plan
from app.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    create_refresh_token,
    decode_token,
    REFRESH_TOKEN_TYPE,
)
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.services.email_service import EmailNotifier, dispatch, get_notifier
from app.services.subscription_service import SubscriptionService
from app.utils.time_utils import utc_now
from app.utils.validators import (
    parse_uuid,
    validate_email,
    validate_imei,
    validate_password,
    validate_phone,
    validate_username,
)

logger = logging.getLogger(__name__)


class AuthService:
    """Service for identity flows"""

    def __init__(self, db: Session, notifier: Optional[EmailNotifier] = None):
        self.db = db
        self.notifier = notifier or get_notifier()

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(func.lower(User.email) == email.lower()).first()

    def register(
        self,
        username: str,
        email: str,
        password: str,
        phone_number: str,
        device_name: str,
        imei: str,
        plan: str,
        cards: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Create an unverified account together with its first device and subscription.

        User, device, subscription and CREATED ledger entry are written in one
        store transaction. Re-registering an unverified email only re-issues
        the verification token.

        Returns:
            Dict with user, subscription (None for re-registration),
            requires_verification, is_new_user and warning
        """
        username = validate_username(username)
        email = validate_email(email)
        password = validate_password(password)
        phone_number = validate_phone(phone_number)
        imei = validate_imei(imei)
        get_plan(plan)
        if not device_name or not device_name.strip():
            raise ValidationError("Device name is required")
        if not cards:
            raise ValidationError("Please upload at least one encryption card file")

        existing = self._find_by_email(email)
        if existing:
            if existing.email_verified:
                raise ConflictError("User with this email already exists and is verified")

            with atomic(self.db):
                token = existing.generate_verification_token()

            logger.info(f"Re-issued verification token for unverified user {existing.id}")
            warning = dispatch(self.notifier.send_verification, existing.email, existing.username, token)
            return {
                "user": existing,
                "subscription": None,
                "requires_verification": True,
                "is_new_user": False,
                "warning": warning
            }

        if self.db.query(User).filter(User.username == username).first():
            raise ConflictError("Username already taken")

        phone_in_use = self.db.query(Subscription).filter(
            Subscription.phone == phone_number,
            Subscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING])
        ).first()
        if phone_in_use:
            raise ConflictError("Phone number already has an active subscription")

        subscriptions = SubscriptionService(self.db, self.notifier)
        with atomic(self.db):
            user = User(
                username=username,
                email=email,
                password_hash=get_password_hash(password),
                phone_number=phone_number,
                email_verified=False,
                is_active=False
            )
            token = user.generate_verification_token()
            self.db.add(user)
            self.db.flush()

            created = subscriptions.create_pending(
                user,
                imei=imei,
                device_name=device_name.strip(),
                plan=plan,
                phone=phone_number,
                cards=cards,
                metadata={"is_new_user": True}
            )

        logger.info(f"Registered user {user.id} with subscription {created['subscription'].id}")
        warning = dispatch(self.notifier.send_verification, user.email, user.username, token)
        return {
            "user": user,
            "subscription": created["subscription"],
            "requires_verification": True,
            "is_new_user": True,
            "warning": warning
        }

    def login(self, identifier: str, password: str) -> Dict[str, Any]:
        """
        Authenticate by username or email

        Raises:
            UnauthorizedError: Unknown user or wrong password
            ForbiddenError: Email not verified or account inactive
        """
        if not identifier or not password:
            raise ValidationError("Username and password are required")

        user = self.db.query(User).filter(
            or_(func.lower(User.email) == identifier.strip().lower(), User.username == identifier.strip())
        ).first()

        if not user or not verify_password(password, user.password_hash):
            raise UnauthorizedError("Invalid credentials")

        if not user.email_verified:
            raise ForbiddenError(
                "Please verify your email address before logging in. Check your inbox for the verification link.",
                data={"requires_verification": True, "email": user.email}
            )
        if not user.is_active:
            raise ForbiddenError("Account is not active. Please contact support.")

        with atomic(self.db):
            user.last_login = utc_now()

        logger.info(f"User {user.id} logged in")
        return {
            "access_token": create_access_token(str(user.id), is_admin=user.is_admin),
            "refresh_token": create_refresh_token(str(user.id)),
            "token_type": "bearer",
            "user": user
        }

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        payload = decode_token(refresh_token, REFRESH_TOKEN_TYPE)
        user = self.db.query(User).filter(User.id == parse_uuid(payload["sub"], "token subject")).first()
        if not user or not user.can_authenticate:
            raise UnauthorizedError("Invalid refresh token")

        return {
            "access_token": create_access_token(str(user.id), is_admin=user.is_admin),
            "token_type": "bearer"
        }

    def verify_email(self, token: str) -> Dict[str, Any]:
        if not token:
            raise ValidationError("Verification token is required")

        user = self.db.query(User).filter(User.email_verification_token == token).first()
        if not user or not user.has_valid_verification_token(token):
            raise ValidationError("Invalid or expired verification token")

        with atomic(self.db):
            user.activate_account()

        logger.info(f"Email verified for user {user.id}")
        warning = dispatch(self.notifier.send_welcome, user.email, user.username)
        return {"verified": True, "email": user.email, "username": user.username, "warning": warning}

    def resend_verification(self, email: str) -> Dict[str, Any]:
        email = validate_email(email)
        user = self._find_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        if user.email_verified:
            raise ValidationError("Email is already verified")

        with atomic(self.db):
            token = user.generate_verification_token()

        warning = dispatch(self.notifier.send_verification, user.email, user.username, token)
        return {"email": user.email, "warning": warning}

    def get_profile(self, user: User) -> User:
        """User with devices and subscriptions loaded"""
        return self.db.query(User).options(
            selectinload(User.devices),
            selectinload(User.subscriptions)
        ).filter(User.id == user.id).first()
