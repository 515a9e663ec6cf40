"""FastAPI dependencies for authentication"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from app.database import get_db
from app.core.exceptions import ForbiddenError, UnauthorizedError, ValidationError
from app.core.security import decode_token
from app.models.user import User
from app.utils.validators import parse_uuid

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the bearer token to a verified, active user

    Raises:
        UnauthorizedError: Missing/invalid token or unknown user
        ForbiddenError: Email not verified or account inactive
    """
    if credentials is None:
        raise UnauthorizedError("Not authenticated")

    payload = decode_token(credentials.credentials)
    try:
        user_id = parse_uuid(payload["sub"], "token subject")
    except ValidationError:
        raise UnauthorizedError("Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise UnauthorizedError("User not found")

    if not user.can_authenticate:
        raise ForbiddenError(
            "Account is not verified or not active",
            data={"requires_verification": not user.email_verified}
        )

    return user


def get_admin_user(current_user: User = Depends(get_current_user)) -> User:
    """Require admin privileges"""
    if not current_user.is_admin:
        raise ForbiddenError("Admin privileges required")
    return current_user
