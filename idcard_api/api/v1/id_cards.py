"""
ID card endpoints: create a card, mint a QR verification token, redeem it.
"""

from fastapi import APIRouter, HTTPException, status

from idcard_api.api.deps import Credentials, CurrentUser, IdCardVerifyRateLimit
from idcard_api.config import get_settings
from idcard_api.schemas.id_card import (
    IdCardCreate,
    IdCardResponse,
    IdCardTokenRequest,
    IdCardTokenResponse,
    IdCardVerificationResponse,
)

router = APIRouter()


@router.post("", response_model=IdCardResponse, status_code=status.HTTP_201_CREATED)
async def create_id_card(data: IdCardCreate, user: CurrentUser, credentials: Credentials):
    """Create an ID card for the current user."""
    card = await credentials.create_id_card(user.id, data.display_name, data.attributes)
    return IdCardResponse(
        id=card.id,
        user_id=card.user_id,
        display_name=card.display_name,
        attributes=card.attributes,
    )


@router.post("/generate", response_model=IdCardTokenResponse)
async def generate_id_card_token(data: IdCardTokenRequest, user: CurrentUser, credentials: Credentials):
    """
    Mint a short-lived, single-use verification token for one of the
    current user's cards.
    """
    try:
        issued = await credentials.generate_id_card_token(user.id, data.card_id)
    except LookupError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )

    base = get_settings().public_base_url.rstrip("/")
    return IdCardTokenResponse(
        token=issued.token,
        expires_at=issued.expires_at,
        verify_url=f"{base}/verify/{issued.token}",
    )


@router.get(
    "/verify/{token}",
    response_model=IdCardVerificationResponse,
    dependencies=[IdCardVerifyRateLimit],
)
async def verify_id_card_token(token: str, credentials: Credentials):
    """Redeem a card token once and return its owner for display."""
    result = await credentials.verify_id_card_token(token)
    return IdCardVerificationResponse(
        owner_id=result.owner_id,
        owner_name=result.owner_name,
        card_id=result.card_id,
        verified_at=result.verified_at,
    )
