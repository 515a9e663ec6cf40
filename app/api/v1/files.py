"""File API endpoints"""
from fastapi import APIRouter, Depends, Request, status, UploadFile, File
from typing import List

from app.config import settings
from app.core.dependencies import get_current_user
from app.core.rate_limit import limiter
from app.models.user import User
from app.services.filerunner_service import CardStorageService
from app.schemas.file import CardUploadResponse
from app.schemas.subscription import CardReference

router = APIRouter(prefix="/files", tags=["files"])


@router.post("/cards", response_model=CardUploadResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
async def upload_cards(
    request: Request,
    files: List[UploadFile] = File(...),
    current_user: User = Depends(get_current_user)
):
    """
    Upload encryption card files to FileRunner

    - **files**: One or more card files

    Every file is validated before any is stored. Returns card references
    to include in a subscription request.
    """
    storage = CardStorageService()

    contents = []
    for upload in files:
        content = await upload.read()
        storage.validate(content, upload.filename)
        contents.append((upload, content))

    cards = []
    for upload, content in contents:
        card = await storage.upload_card(content, upload.filename, upload.content_type)
        cards.append(CardReference(**card))

    return CardUploadResponse(
        message=f"{len(cards)} card(s) uploaded",
        cards=cards,
        total=len(cards)
    )
