"""Shared fixtures: in-memory SQLite store, recording notifier, API client"""
import os

# Settings are read at import time; keep the app off the network.
os.environ.setdefault("DATABASE_HOST", "localhost")
os.environ.setdefault("DATABASE_NAME", "subscriptions_test")
os.environ.setdefault("DATABASE_USERNAME", "test")
os.environ.setdefault("DATABASE_PASSWORD", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")
os.environ.setdefault("ADMIN_PASSWORD", "admin-password")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.security import create_access_token, get_password_hash
from app.database import Base, get_db
from app.models.user import User
from app.services import email_service
from app.services.subscription_service import SubscriptionService

PASSWORD = "password123"
PASSWORD_HASH = get_password_hash(PASSWORD)

CARDS = [{"file_id": "card-1", "url": "https://files.example.com/card-1", "original_name": "card.png"}]

IMEI_A = "123456789012345"
IMEI_B = "356938035643809"
IMEI_C = "490154203237518"


class FakeNotifier:
    """Records emails instead of sending them; set ``fail`` to simulate an SMTP outage"""

    def __init__(self):
        self.sent = []
        self.fail = False

    def _record(self, kind, *args):
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append((kind, args))

    def kinds(self):
        return [kind for kind, _ in self.sent]

    def send_verification(self, to, username, token):
        self._record("verification", to, username, token)

    def send_welcome(self, to, username):
        self._record("welcome", to, username)

    def send_subscription_queued(self, subscription):
        self._record("queued", subscription.id)

    def send_subscription_approved(self, subscription, activated):
        self._record("approved", subscription.id, activated)

    def send_subscription_rejected(self, subscription, reason):
        self._record("rejected", subscription.id, reason)

    def send_activation_instructions(self, subscription):
        self._record("activation_instructions", subscription.id)

    def close(self):
        pass


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def notifier(monkeypatch):
    fake = FakeNotifier()
    monkeypatch.setattr(email_service, "_notifier", fake)
    return fake


@pytest.fixture
def service(db, notifier):
    return SubscriptionService(db, notifier)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(username=None, is_admin=False, verified=True):
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=PASSWORD_HASH,
            phone_number=f"+1555000{counter['n']:04d}",
            email_verified=verified,
            is_active=verified,
            is_admin=is_admin
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin", is_admin=True)


@pytest.fixture
def create_sub(service):
    """Create a PENDING subscription for ``user`` on ``imei``"""
    def _create(user, imei=IMEI_A, plan="mobile-v4-basic", device_name="Field phone"):
        return service.create_subscription(
            user, imei=imei, device_name=device_name, plan=plan, cards=CARDS
        )["subscription"]

    return _create


def auth_headers(user):
    token = create_access_token(str(user.id), is_admin=user.is_admin)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db, notifier):
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: startup would connect to the configured Postgres
    yield TestClient(app)
    app.dependency_overrides.clear()
