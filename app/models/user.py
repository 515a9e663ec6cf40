"""User model"""
from sqlalchemy import Column, String, Boolean, DateTime, Uuid
from sqlalchemy.orm import relationship
from datetime import timedelta
import uuid
from app.database import Base
from app.config import settings
from app.utils.time_utils import utc_now


class User(Base):
    """Identity record: credentials, verification state and role"""

    __tablename__ = "users"

    # Identity
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    phone_number = Column(String(32), nullable=True)

    # Verification
    email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token = Column(String(128), nullable=True, index=True)
    email_verification_expires = Column(DateTime, nullable=True)

    # Status
    is_active = Column(Boolean, default=False, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    last_login = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    devices = relationship("Device", back_populates="user")
    subscriptions = relationship(
        "Subscription",
        back_populates="user",
        foreign_keys="Subscription.user_id",
        order_by="Subscription.created_at.desc()"
    )

    @property
    def can_authenticate(self) -> bool:
        """Only verified, active identities may use protected operations"""
        return self.email_verified and self.is_active

    def generate_verification_token(self) -> str:
        """Issue a fresh verification token with a new expiry"""
        from app.core.security import generate_verification_token

        token = generate_verification_token()
        self.email_verification_token = token
        self.email_verification_expires = utc_now() + timedelta(
            hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS
        )
        return token

    def has_valid_verification_token(self, token: str) -> bool:
        if not self.email_verification_token or self.email_verification_token != token:
            return False
        if self.email_verification_expires is None:
            return False
        return utc_now() < self.email_verification_expires

    def activate_account(self):
        """Mark email verified and the account active, consuming the token"""
        self.email_verified = True
        self.is_active = True
        self.email_verification_token = None
        self.email_verification_expires = None

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, email={self.email})>"
