"""Device registry and one-time-password onboarding"""
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Dict, Any, Optional, Tuple
import base64
import io
import logging

import pyotp
import qrcode
import qrcode.image.svg

from app.config import settings
from app.database import atomic
from app.models.device import Device
from app.models.user import User
from app.core.exceptions import DeviceOwnershipConflictError, ValidationError
from app.utils.validators import validate_imei

logger = logging.getLogger(__name__)

SEARCH_RESULT_LIMIT = 50


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DeviceService:
    """Service for device ownership and TOTP onboarding"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_imei(self, imei: str, lock: bool = False) -> Optional[Device]:
        query = self.db.query(Device).filter(Device.imei == imei)
        if lock:
            query = query.with_for_update()
        return query.first()

    def claim_device(self, user: User, imei: str, device_name: Optional[str] = None) -> Tuple[Device, bool]:
        """
        Find or create the device for ``imei`` and bind it to ``user``.

        Runs inside the caller's store transaction.

        Returns:
            (device, is_new_device)

        Raises:
            DeviceOwnershipConflictError: Device belongs to a different user
        """
        device = self.get_by_imei(imei, lock=True)

        if device is not None:
            if device.is_owned_by_other(user.id):
                raise DeviceOwnershipConflictError("Device is already registered to another user")
            if device.user_id is None:
                device.user_id = user.id
                if device_name:
                    device.device_name = device_name
                logger.info(f"Device {imei} claimed by user {user.id}")
            return device, False

        device = Device(
            user_id=user.id,
            imei=imei,
            device_name=device_name or "Device",
            totp_secret=pyotp.random_base32(),
            onboarded=False
        )
        self.db.add(device)
        self.db.flush()
        logger.info(f"New device {imei} registered for user {user.id}")
        return device, True

    # ------------------------------------------------------------------
    # OTP onboarding
    # ------------------------------------------------------------------

    @staticmethod
    def build_provisioning_uri(device: Device, account_name: Optional[str] = None) -> str:
        return pyotp.TOTP(device.totp_secret).provisioning_uri(
            name=account_name or device.imei,
            issuer_name=settings.OTP_ISSUER_NAME
        )

    @staticmethod
    def render_qr_code(data: str) -> str:
        """Render ``data`` as an SVG QR code data URI"""
        image = qrcode.make(data, image_factory=qrcode.image.svg.SvgPathImage)
        buffer = io.BytesIO()
        image.save(buffer)
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/svg+xml;base64,{encoded}"

    def setup_device_otp(self, user: User, imei: str, device_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Issue a fresh TOTP secret for the user's device.

        Creates the device on first sight of the IMEI and resets its
        onboarded flag; the previous secret stops working immediately.

        Raises:
            DeviceOwnershipConflictError: Device belongs to a different user
        """
        imei = validate_imei(imei)

        with atomic(self.db):
            device, is_new = self.claim_device(user, imei, device_name)
            if device_name:
                device.device_name = device_name
            if not is_new:
                device.totp_secret = pyotp.random_base32()
            device.onboarded = False

        provisioning_uri = self.build_provisioning_uri(device, account_name=f"{user.username}:{imei}")
        logger.info(f"OTP setup issued for device {imei} (user {user.id})")

        return {
            "imei": device.imei,
            "device_name": device.device_name,
            "secret": device.totp_secret,
            "provisioning_uri": provisioning_uri,
            "qr_code": self.render_qr_code(provisioning_uri)
        }

    def check_onboarded(self, user: User, imei: str) -> Dict[str, Any]:
        """Read-only onboarding status; an unknown device is not an error"""
        imei = validate_imei(imei)
        device = self.db.query(Device).filter(
            Device.imei == imei,
            Device.user_id == user.id
        ).first()

        if device is None:
            return {"exists": False, "onboarded": False, "device_name": None}

        return {"exists": True, "onboarded": device.onboarded, "device_name": device.device_name}

    @staticmethod
    def verify_otp(device: Device, code: str) -> bool:
        """Check a TOTP code, accepting OTP_VALID_WINDOW steps of clock drift either way"""
        if not code or not device.totp_secret:
            return False
        code = str(code).strip()
        if not code.isdigit():
            return False
        return pyotp.TOTP(device.totp_secret).verify(code, valid_window=settings.OTP_VALID_WINDOW)

    def search_devices(self, user: User, query: str) -> List[Device]:
        """Case-insensitive IMEI / device-name search among the caller's devices (admins see all)"""
        if not query or not query.strip():
            raise ValidationError("Missing or invalid query parameter `q`")

        pattern = f"%{_escape_like(query.strip())}%"
        devices = self.db.query(Device).filter(
            or_(
                Device.imei.ilike(pattern, escape="\\"),
                Device.device_name.ilike(pattern, escape="\\")
            )
        )
        if not user.is_admin:
            devices = devices.filter(Device.user_id == user.id)

        return devices.order_by(Device.created_at.desc()).limit(SEARCH_RESULT_LIMIT).all()
