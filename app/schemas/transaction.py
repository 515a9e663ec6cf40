"""Schemas for transaction ledger endpoints"""
from pydantic import BaseModel, Field, field_validator, field_serializer
from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid

from app.models.transaction import TransactionType, TransactionStatus
from app.utils.time_utils import to_utc_isoformat


class TransactionResponse(BaseModel):
    """Single ledger entry"""
    id: str
    transaction_id: str
    user_id: str
    subscription_id: str
    device_id: Optional[str] = None
    type: TransactionType
    status: TransactionStatus
    amount: float
    plan: str
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    sequence: int
    previous_transaction_id: Optional[str] = None
    created_at: datetime

    @field_validator(
        'id', 'user_id', 'subscription_id', 'device_id', 'processed_by', 'previous_transaction_id',
        mode='before'
    )
    @classmethod
    def convert_uuid_to_str(cls, v):
        """Convert UUID objects to strings"""
        if isinstance(v, uuid.UUID):
            return str(v)
        return v

    @field_serializer('processed_at', 'completed_at', 'period_start', 'period_end', 'created_at')
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)

    class Config:
        from_attributes = True
        populate_by_name = True


class TransactionListResponse(BaseModel):
    """Ledger chain of one subscription"""
    success: bool = True
    transactions: List[TransactionResponse]
    total: int
