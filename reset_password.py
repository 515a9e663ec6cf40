"""
Reset a user's password
Run with: python reset_password.py <email-or-username> <new_password>
"""
import sys
from pathlib import Path

# Add app to path
sys.path.insert(0, str(Path(__file__).parent))

from sqlalchemy import or_

from app.core.exceptions import ValidationError
from app.core.security import get_password_hash
from app.database import SessionLocal
from app.models.user import User
from app.utils.validators import validate_password


def reset_password(identifier: str, new_password: str) -> bool:
    """Set a new password for the user matching email or username"""
    try:
        new_password = validate_password(new_password)
    except ValidationError as e:
        print(f"[ERROR] {e.message}")
        return False

    db = SessionLocal()
    try:
        user = db.query(User).filter(
            or_(User.email == identifier.lower(), User.username == identifier)
        ).first()

        if not user:
            print(f"[ERROR] User not found: {identifier}")
            return False

        print(f"[INFO] Found user: {user.username} <{user.email}> ({user.id})")

        user.password_hash = get_password_hash(new_password)
        db.commit()

        print(f"[SUCCESS] Password updated for: {user.email}")
        return True

    except Exception as e:
        print(f"[ERROR] Failed to reset password: {e}")
        db.rollback()
        return False
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("Usage: python reset_password.py <email-or-username> <new_password>")
        print("Example: python reset_password.py user@example.com mynewpassword123")
        sys.exit(1)

    print("=" * 50)
    print("Password Reset Script")
    print("=" * 50)

    success = reset_password(sys.argv[1], sys.argv[2])
    sys.exit(0 if success else 1)
