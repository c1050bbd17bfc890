"""
API routes.
"""

from fastapi import APIRouter

from idcard_api.api.v1 import auth, id_cards, maintenance

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(id_cards.router, prefix="/id-card", tags=["ID Cards"])
router.include_router(maintenance.router, tags=["Maintenance"])
