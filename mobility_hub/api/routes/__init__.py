"""
API Routes
"""
from fastapi import APIRouter

from mobility_hub.api.routes.admin_bridge import router as admin_bridge_router
from mobility_hub.api.webhooks.whatsapp_cloud import router as whatsapp_cloud_router

router = APIRouter()

router.include_router(whatsapp_cloud_router, prefix="/whatsapp", tags=["webhooks"])
router.include_router(admin_bridge_router, prefix="/admin", tags=["Admin Bridge"])
