"""
ID card schemas.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class IdCardCreate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=255)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class IdCardResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    display_name: str
    attributes: Dict[str, Any] = Field(default_factory=dict)


class IdCardTokenRequest(BaseModel):
    card_id: uuid.UUID


class IdCardTokenResponse(BaseModel):
    """Short-lived token to embed in the card's QR code."""

    token: str
    expires_at: datetime
    verify_url: str


class IdCardVerificationResponse(BaseModel):
    valid: bool = True
    owner_id: uuid.UUID
    owner_name: str
    card_id: Optional[uuid.UUID] = None
    verified_at: datetime
