"""Schemas for authentication endpoints"""
from pydantic import BaseModel, Field, field_validator, field_serializer
from typing import Optional, List
from datetime import datetime
import uuid

from app.schemas.device import DeviceResponse
from app.schemas.subscription import CardReference, SubscriptionResponse
from app.utils.time_utils import to_utc_isoformat


class RegisterRequest(BaseModel):
    """Account + first device + first subscription request"""
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    phone_number: str = Field(..., max_length=32)
    device_name: str = Field(..., min_length=1, max_length=100)
    imei: str = Field(..., min_length=1, max_length=32)
    plan: str
    cards: List[CardReference] = Field(..., min_length=1)


class RegisterData(BaseModel):
    requires_verification: bool
    email: str
    username: str
    is_new_user: bool
    subscription_id: Optional[str] = None
    queue_position: Optional[int] = None


class RegisterResponse(BaseModel):
    success: bool = True
    message: str
    data: RegisterData
    warning: Optional[str] = None


class LoginRequest(BaseModel):
    """Login with username or email"""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class ResendVerificationRequest(BaseModel):
    email: str


class UserResponse(BaseModel):
    """Public user profile"""
    id: str
    username: str
    email: str
    phone_number: Optional[str] = None
    email_verified: bool
    is_active: bool
    is_admin: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    @field_validator('id', mode='before')
    @classmethod
    def convert_uuid_to_str(cls, v):
        if isinstance(v, uuid.UUID):
            return str(v)
        return v

    @field_serializer('last_login', 'created_at')
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)

    class Config:
        from_attributes = True


class ProfileResponse(UserResponse):
    devices: List[DeviceResponse] = []
    subscriptions: List[SubscriptionResponse] = []


class TokenResponse(BaseModel):
    """JWT pair returned on login"""
    success: bool = True
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


class AccessTokenResponse(BaseModel):
    success: bool = True
    access_token: str
    token_type: str = "bearer"


class VerifyEmailResponse(BaseModel):
    success: bool = True
    message: str
    verified: bool
    email: str
    username: str
    warning: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str
    warning: Optional[str] = None
