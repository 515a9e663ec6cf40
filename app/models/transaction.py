"""Transaction ledger model"""
from sqlalchemy import (
    Column, String, DateTime, Integer, Numeric, Text, ForeignKey, Enum, JSON, Uuid, UniqueConstraint, event
)
from sqlalchemy.orm import relationship
import enum
import uuid
from app.core.exceptions import InternalError
from app.database import Base
from app.utils.time_utils import utc_now


class TransactionType(str, enum.Enum):
    CREATED = "CREATED"
    QUEUED = "QUEUED"
    APPROVED = "APPROVED"
    ACTIVATED = "ACTIVATED"
    UPGRADED = "UPGRADED"
    DOWNGRADED = "DOWNGRADED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    RENEWED = "RENEWED"
    QUEUE_POSITION_UPDATED = "QUEUE_POSITION_UPDATED"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Transaction(Base):
    """
    Write-once ledger entry.

    Entries of one subscription form a chain through previous_transaction_id;
    ``sequence`` is the entry's index in that chain. Rows are never updated
    after insert: a status change is a new entry pointing at the old one.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("subscription_id", "sequence", name="uq_transactions_subscription_sequence"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(String(40), unique=True, nullable=False, index=True)

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = Column(Uuid(as_uuid=True), ForeignKey("subscriptions.id"), nullable=False, index=True)
    device_id = Column(Uuid(as_uuid=True), ForeignKey("devices.id"), nullable=True)

    type = Column(Enum(TransactionType, native_enum=False, length=32), nullable=False, index=True)
    status = Column(Enum(TransactionStatus, native_enum=False, length=20), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False, default=0)
    plan = Column(String(50), nullable=False)  # plan snapshot at the time of the event

    processed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    admin_notes = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)

    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)

    # Chain
    sequence = Column(Integer, nullable=False, default=1)
    previous_transaction_id = Column(Uuid(as_uuid=True), ForeignKey("transactions.id"), nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)

    # Relationships
    subscription = relationship("Subscription", back_populates="transactions")
    previous_transaction = relationship("Transaction", remote_side=[id])
    # Entries that point back at this one; derived, never written on this row
    related_transactions = relationship("Transaction", viewonly=True)

    def __repr__(self):
        return (
            f"<Transaction(transaction_id={self.transaction_id}, type={self.type}, "
            f"status={self.status}, amount={self.amount})>"
        )


@event.listens_for(Transaction, "before_update")
def _reject_update(mapper, connection, target):
    raise InternalError(f"Ledger entry {target.transaction_id} is write-once")


@event.listens_for(Transaction, "before_delete")
def _reject_delete(mapper, connection, target):
    raise InternalError(f"Ledger entry {target.transaction_id} cannot be deleted")
