"""Schemas for Subscription endpoints"""
from pydantic import BaseModel, Field, field_validator, field_serializer
from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid

from app.models.subscription import SubscriptionStatus
from app.schemas.transaction import TransactionResponse
from app.utils.time_utils import to_utc_isoformat


class SubscriptionPlan(BaseModel):
    """Subscription plan details"""
    id: str
    name: str
    price: float
    duration_days: int


class SubscriptionPlansResponse(BaseModel):
    """Response with all available plans"""
    plans: List[SubscriptionPlan]


class CardReference(BaseModel):
    """Uploaded encryption card, as returned by POST /files/cards"""
    file_id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    original_name: Optional[str] = None
    size: Optional[int] = None
    mime_type: Optional[str] = None


class SubscriptionResponse(BaseModel):
    """Subscription record"""
    id: str
    user_id: str
    device_id: Optional[str] = None
    imei: str
    device_name: str
    phone: str
    email: str
    plan: str
    price: float
    cards: List[Dict[str, Any]] = []
    queue_position: Optional[int] = None
    priority: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: SubscriptionStatus
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    queued_by: Optional[str] = None
    queued_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    pending_plan_change: Optional[Dict[str, Any]] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator('id', 'user_id', 'device_id', 'reviewed_by', 'queued_by', mode='before')
    @classmethod
    def convert_uuid_to_str(cls, v):
        """Convert UUID objects to strings"""
        if isinstance(v, uuid.UUID):
            return str(v)
        return v

    @field_serializer(
        'start_date', 'end_date', 'reviewed_at', 'queued_at', 'cancelled_at', 'created_at', 'updated_at'
    )
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)

    class Config:
        from_attributes = True


class CreateSubscriptionRequest(BaseModel):
    """Request a subscription for a (new or owned) device"""
    device_name: str = Field(..., min_length=1, max_length=100)
    imei: str = Field(..., min_length=1, max_length=32)
    plan: str
    phone_number: Optional[str] = None
    cards: List[CardReference] = Field(..., min_length=1)


class SubscriptionActionResponse(BaseModel):
    """Result of a state transition"""
    success: bool = True
    message: str
    subscription: SubscriptionResponse
    transaction: Optional[TransactionResponse] = None
    warning: Optional[str] = None

    @classmethod
    def from_result(cls, result: Dict[str, Any], message: str, **extra):
        """Build from a service result dict ({subscription, transaction, warning})"""
        transaction = result.get("transaction")
        return cls(
            message=message,
            subscription=SubscriptionResponse.model_validate(result["subscription"]),
            transaction=TransactionResponse.model_validate(transaction) if transaction is not None else None,
            warning=result.get("warning"),
            **extra
        )


class CreateSubscriptionResponse(SubscriptionActionResponse):
    is_new_device: bool
    queue_length: int


class SubscriptionListResponse(BaseModel):
    success: bool = True
    subscriptions: List[SubscriptionResponse]
    total: int


class ChangePlanRequest(BaseModel):
    new_plan: str


class UpgradeResponse(SubscriptionActionResponse):
    prorated_amount: float


class DowngradeResponse(SubscriptionActionResponse):
    effective_date: Optional[datetime] = None

    @field_serializer('effective_date')
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
    immediate: bool = False


class DeviceCheckRequest(BaseModel):
    imei: str = Field(..., min_length=1, max_length=32)


class DeviceCheckResponse(BaseModel):
    success: bool = True
    exists: bool
    onboarded: bool
    device_name: Optional[str] = None


class DeviceSetupRequest(BaseModel):
    imei: str = Field(..., min_length=1, max_length=32)
    device_name: Optional[str] = Field(None, max_length=100)


class DeviceSetupResponse(BaseModel):
    """TOTP enrolment material; the secret is shown once"""
    success: bool = True
    imei: str
    device_name: str
    secret: str
    provisioning_uri: str
    qr_code: str  # SVG data URI


class ActivateSubscriptionRequest(BaseModel):
    subscription_id: str
    imei: str = Field(..., min_length=1, max_length=32)
    otp_code: str = Field(..., min_length=6, max_length=8)


class ActivateSubscriptionResponse(SubscriptionActionResponse):
    duration: int  # days
