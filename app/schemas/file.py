"""Schemas for File endpoints"""
from pydantic import BaseModel
from typing import List

from app.schemas.subscription import CardReference


class CardUploadResponse(BaseModel):
    """Stored encryption cards, ready to pass as `cards` when subscribing"""
    success: bool = True
    message: str
    cards: List[CardReference]
    total: int
