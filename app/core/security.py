"""Password hashing and JWT issuance"""
from datetime import timedelta
from typing import Any, Dict, Optional
import secrets

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.config import settings
from app.core.exceptions import UnauthorizedError
from app.utils.time_utils import utc_now

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Check a plain password against its bcrypt hash"""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def generate_verification_token() -> str:
    """Random token mailed to the user for email verification"""
    return secrets.token_hex(32)


def _create_token(
    subject: str,
    token_type: str,
    expires_delta: timedelta,
    secret: str,
    extra_claims: Optional[Dict[str, Any]] = None
) -> str:
    to_encode: Dict[str, Any] = {
        "sub": subject,
        "type": token_type,
        "exp": utc_now() + expires_delta,
        "iat": utc_now(),
    }
    if extra_claims:
        to_encode.update(extra_claims)
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM)


def create_access_token(user_id: str, is_admin: bool = False) -> str:
    return _create_token(
        subject=user_id,
        token_type=ACCESS_TOKEN_TYPE,
        expires_delta=timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        secret=settings.JWT_SECRET_KEY,
        extra_claims={"role": "admin" if is_admin else "user"}
    )


def create_refresh_token(user_id: str) -> str:
    return _create_token(
        subject=user_id,
        token_type=REFRESH_TOKEN_TYPE,
        expires_delta=timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
        secret=settings.REFRESH_SECRET
    )


def decode_token(token: str, token_type: str = ACCESS_TOKEN_TYPE) -> Dict[str, Any]:
    """
    Decode and validate a JWT

    Raises:
        UnauthorizedError: If the signature, expiry or token type is invalid
    """
    secret = settings.JWT_SECRET_KEY if token_type == ACCESS_TOKEN_TYPE else settings.REFRESH_SECRET
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise UnauthorizedError("Invalid or expired token")

    if payload.get("type") != token_type or not payload.get("sub"):
        raise UnauthorizedError("Invalid token")

    return payload
