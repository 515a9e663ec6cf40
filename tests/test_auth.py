"""Registration, verification and login"""
import pytest

from app.core.exceptions import (
    ConflictError,
    DeviceOwnershipConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.core.security import decode_token
from app.models.device import Device
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.transaction import Transaction
from app.models.user import User
from app.services.auth_service import AuthService

from conftest import CARDS, IMEI_A, PASSWORD


@pytest.fixture
def auth(db, notifier):
    return AuthService(db, notifier)


def register(auth, username="dave", email="dave@example.com", phone="+15559876543", imei=IMEI_A):
    return auth.register(
        username=username,
        email=email,
        password="s3cret-pass",
        phone_number=phone,
        device_name="Dave's phone",
        imei=imei,
        plan="mobile-v4-basic",
        cards=CARDS
    )


def test_register_creates_user_device_and_pending_subscription(db, auth, notifier):
    result = register(auth)

    user = result["user"]
    assert result["is_new_user"] is True
    assert result["requires_verification"] is True
    assert user.email_verified is False
    assert user.is_active is False
    assert user.email_verification_token

    subscription = result["subscription"]
    assert subscription.status == SubscriptionStatus.PENDING
    assert subscription.queue_position == 1
    assert db.query(Device).filter(Device.imei == IMEI_A).one().user_id == user.id

    created = db.query(Transaction).filter(Transaction.subscription_id == subscription.id).one()
    assert created.metadata_["is_new_user"] is True
    assert notifier.kinds() == ["verification"]


def test_register_again_while_unverified_reissues_token(db, auth, notifier):
    first_token = register(auth)["user"].email_verification_token

    result = register(auth)

    assert result["is_new_user"] is False
    assert result["subscription"] is None
    assert result["user"].email_verification_token != first_token
    assert db.query(User).count() == 1
    assert db.query(Subscription).count() == 1
    assert notifier.kinds() == ["verification", "verification"]


def test_register_verified_email_conflicts(auth):
    user = register(auth)["user"]
    auth.verify_email(user.email_verification_token)

    with pytest.raises(ConflictError):
        register(auth)


def test_register_rejects_taken_username_and_bad_input(auth):
    register(auth)

    with pytest.raises(ConflictError):
        register(auth, email="other@example.com", phone="+15550001111", imei="356938035643809")
    with pytest.raises(ValidationError):
        register(auth, username="erin", email="not-an-email")


def test_failed_registration_leaves_nothing_behind(db, auth, make_user, create_sub):
    owner = make_user()
    create_sub(owner, IMEI_A)

    with pytest.raises(DeviceOwnershipConflictError):
        register(auth, username="mallory", email="mallory@example.com")

    assert db.query(User).filter(User.username == "mallory").first() is None
    assert db.query(Subscription).count() == 1


def test_phone_with_live_subscription_conflicts(auth):
    register(auth)

    with pytest.raises(ConflictError, match="Phone number"):
        register(auth, username="frank", email="frank@example.com", imei="356938035643809")


def test_login_requires_verified_email(auth):
    user = register(auth)["user"]

    with pytest.raises(ForbiddenError) as excinfo:
        auth.login("dave", "s3cret-pass")
    assert excinfo.value.data == {"requires_verification": True, "email": user.email}

    auth.verify_email(user.email_verification_token)
    tokens = auth.login("dave@example.com", "s3cret-pass")

    assert decode_token(tokens["access_token"])["sub"] == str(user.id)
    assert tokens["user"].last_login is not None


def test_login_with_wrong_password(auth, make_user):
    user = make_user()

    with pytest.raises(UnauthorizedError):
        auth.login(user.username, "wrong-password")
    assert auth.login(user.username, PASSWORD)["token_type"] == "bearer"


def test_verify_email_sends_welcome(auth, notifier):
    user = register(auth)["user"]

    result = auth.verify_email(user.email_verification_token)

    assert result["verified"] is True
    assert user.email_verified is True and user.is_active is True
    assert user.email_verification_token is None
    assert notifier.kinds()[-1] == "welcome"

    with pytest.raises(ValidationError):
        auth.verify_email("stale-token")


def test_resend_verification(auth, notifier):
    register(auth)

    auth.resend_verification("DAVE@example.com")
    assert notifier.kinds() == ["verification", "verification"]

    with pytest.raises(NotFoundError):
        auth.resend_verification("nobody@example.com")


def test_refresh_issues_new_access_token(auth, make_user):
    user = make_user()
    tokens = auth.login(user.username, PASSWORD)

    refreshed = auth.refresh(tokens["refresh_token"])

    assert decode_token(refreshed["access_token"])["sub"] == str(user.id)
    with pytest.raises(UnauthorizedError):
        auth.refresh(tokens["access_token"])


def test_ensure_admin_user_creates_then_repairs(db):
    from app.config import settings
    from app.core.security import verify_password
    from app.utils.admin_setup import ensure_admin_user

    admin = ensure_admin_user(db)
    assert admin.is_admin and admin.email_verified

    admin.is_admin = False
    admin.is_active = False
    db.commit()

    repaired = ensure_admin_user(db)

    assert repaired.id == admin.id
    assert repaired.is_admin and repaired.is_active
    assert verify_password(settings.ADMIN_PASSWORD, repaired.password_hash)
    assert db.query(User).filter(User.email == settings.ADMIN_EMAIL).count() == 1
