"""Seed the configured admin account on startup"""
from sqlalchemy import or_
from sqlalchemy.orm import Session
import logging

from app.models.user import User
from app.core.security import get_password_hash
from app.config import settings

logger = logging.getLogger(__name__)


def ensure_admin_user(db: Session) -> User:
    """
    Create the ADMIN_* account, or bring an existing one (matched by
    email or username) back to a verified, active admin with the
    configured password.
    """
    admin = db.query(User).filter(
        or_(User.email == settings.ADMIN_EMAIL, User.username == settings.ADMIN_USERNAME)
    ).first()

    created = admin is None
    if created:
        admin = User(username=settings.ADMIN_USERNAME, email=settings.ADMIN_EMAIL)
        db.add(admin)
    elif not admin.is_admin:
        logger.info(f"Promoting {admin.email} to admin")

    admin.password_hash = get_password_hash(settings.ADMIN_PASSWORD)
    admin.is_admin = True
    admin.email_verified = True
    admin.is_active = True

    try:
        db.commit()
    except Exception as e:
        logger.error(f"Failed to ensure admin user: {e}")
        db.rollback()
        raise

    logger.info(f"{'Created' if created else 'Verified'} admin user {admin.email}")
    return admin
