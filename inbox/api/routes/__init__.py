"""
API Routes
"""
from fastapi import APIRouter

from inbox.api.routes.admin_debug import router as admin_debug_router
from inbox.api.webhooks.instagram import router as instagram_router

router = APIRouter()

router.include_router(instagram_router, prefix="/instagram", tags=["Webhooks"])
router.include_router(admin_debug_router, prefix="/admin/debug", tags=["Admin Debug"])
