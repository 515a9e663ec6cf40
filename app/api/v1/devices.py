"""Device API endpoints"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.core.dependencies import get_current_user
from app.models.user import User
from app.services.device_service import DeviceService
from app.schemas.device import DeviceResponse, DeviceSearchResponse

router = APIRouter(prefix="/devices", tags=["devices"])


@router.get("/search", response_model=DeviceSearchResponse)
def search_devices(
    q: str = Query(..., min_length=1, max_length=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Search devices by IMEI or name

    - **q**: Case-insensitive substring

    Admins search every device; other users only their own.
    """
    devices = DeviceService(db).search_devices(current_user, q)
    return DeviceSearchResponse(data=[DeviceResponse.model_validate(d) for d in devices])
