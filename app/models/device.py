"""Device registry model"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid
from app.database import Base
from app.utils.time_utils import utc_now


class Device(Base):
    """Hardware device keyed by IMEI, optionally owned by a user"""

    __tablename__ = "devices"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)

    imei = Column(String(32), unique=True, nullable=False, index=True)
    device_name = Column(String(100), nullable=False, default="Device")

    # Base32 shared secret for time-based one-time codes
    totp_secret = Column(String(64), nullable=False)
    onboarded = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    user = relationship("User", back_populates="devices")

    def is_owned_by_other(self, user_id) -> bool:
        return self.user_id is not None and str(self.user_id) != str(user_id)

    def __repr__(self):
        return f"<Device(id={self.id}, imei={self.imei}, onboarded={self.onboarded})>"
