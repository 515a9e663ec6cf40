"""Subscription model"""
from sqlalchemy import (
    Column, String, DateTime, Integer, Numeric, Text, ForeignKey, Index, Enum, JSON, Uuid, text
)
from sqlalchemy.orm import relationship
import enum
import uuid
from app.database import Base
from app.utils.time_utils import utc_now


class SubscriptionStatus(str, enum.Enum):
    """Lifecycle states of a subscription"""
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


# Statuses that hold a place in a device's review queue
QUEUE_STATUSES = (SubscriptionStatus.PENDING, SubscriptionStatus.QUEUED)


class Subscription(Base):
    """A plan purchase for one device, moving through the approval pipeline"""

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_imei_status_queue", "imei", "status", "queue_position"),
        Index("ix_subscriptions_status_queue", "status", "queue_position"),
        # At most one ACTIVE subscription per identity and per device
        Index(
            "uq_subscriptions_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index(
            "uq_subscriptions_active_imei",
            "imei",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    device_id = Column(Uuid(as_uuid=True), ForeignKey("devices.id"), nullable=True, index=True)

    # Device and contact snapshot
    imei = Column(String(32), nullable=False, index=True)
    device_name = Column(String(100), nullable=False, default="Device")
    phone = Column(String(32), nullable=False)
    email = Column(String(255), nullable=False)

    # Plan
    plan = Column(String(50), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    cards = Column(JSON, nullable=False, default=list)  # uploaded encryption card references

    # Queue (1-based, dense per IMEI among PENDING/QUEUED; NULL once out of the queue)
    queue_position = Column(Integer, nullable=True)
    priority = Column(Integer, nullable=False, default=0)  # higher goes first

    # Validity window, set on activation
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    status = Column(
        Enum(SubscriptionStatus, native_enum=False, length=20),
        nullable=False,
        default=SubscriptionStatus.PENDING,
        index=True
    )

    # Admin tracking
    reviewed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    queued_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    queued_at = Column(DateTime, nullable=True)
    admin_notes = Column(Text, nullable=True)

    # Scheduled downgrade: {"new_plan", "new_price", "effective_date"}
    pending_plan_change = Column(JSON, nullable=True)

    # Deferred cancellation
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    user = relationship("User", back_populates="subscriptions", foreign_keys=[user_id])
    reviewer = relationship("User", foreign_keys=[reviewed_by])
    device = relationship("Device")
    transactions = relationship(
        "Transaction",
        back_populates="subscription",
        order_by="Transaction.sequence"
    )

    @property
    def in_queue(self) -> bool:
        return self.status in QUEUE_STATUSES

    def __repr__(self):
        return (
            f"<Subscription(id={self.id}, imei={self.imei}, plan={self.plan}, "
            f"status={self.status}, queue_position={self.queue_position})>"
        )
