"""Schemas for device endpoints"""
from pydantic import BaseModel, field_validator, field_serializer
from typing import Optional, List
from datetime import datetime
import uuid

from app.utils.time_utils import to_utc_isoformat


class DeviceResponse(BaseModel):
    """Device record without its OTP secret"""
    id: str
    user_id: Optional[str] = None
    imei: str
    device_name: str
    onboarded: bool
    created_at: datetime

    @field_validator('id', 'user_id', mode='before')
    @classmethod
    def convert_uuid_to_str(cls, v):
        if isinstance(v, uuid.UUID):
            return str(v)
        return v

    @field_serializer('created_at')
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)

    class Config:
        from_attributes = True


class DeviceSearchResponse(BaseModel):
    success: bool = True
    data: List[DeviceResponse]
