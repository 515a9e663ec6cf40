"""Input validation helpers shared by services and schemas"""
import re
import uuid
from typing import Any

from app.core.exceptions import ValidationError

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_REGEX = re.compile(r"^\+?[\d\s\-()]{10,}$")
IMEI_REGEX = re.compile(r"^[0-9A-Za-z\-]{6,32}$")
USERNAME_REGEX = re.compile(r"^[A-Za-z0-9_.\-]{3,50}$")

MIN_PASSWORD_LENGTH = 8


def parse_uuid(value: Any, label: str = "id") -> uuid.UUID:
    """Coerce a path/body value into a UUID, raising ValidationError when malformed"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise ValidationError(f"Invalid {label}: {value}")


def validate_email(email: str) -> str:
    if not email or not EMAIL_REGEX.match(email.strip()):
        raise ValidationError("Please provide a valid email address")
    return email.strip().lower()


def validate_phone(phone: str) -> str:
    if not phone or not PHONE_REGEX.match(phone.strip()):
        raise ValidationError("Please provide a valid phone number")
    return phone.strip()


def validate_imei(imei: str) -> str:
    if not imei or not IMEI_REGEX.match(imei.strip()):
        raise ValidationError("Please provide a valid device IMEI")
    return imei.strip()


def validate_username(username: str) -> str:
    if not username or not USERNAME_REGEX.match(username.strip()):
        raise ValidationError(
            "Username must be 3-50 characters: letters, digits, '.', '_' or '-'"
        )
    return username.strip()


def validate_password(password: str) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return password
