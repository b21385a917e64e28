"""Admin API router for management endpoints."""

from fastapi import APIRouter

from captiongate.api.admin.blocks import router as blocks_router
from captiongate.api.admin.cache import router as cache_router
from captiongate.api.admin.health import router as health_router
from captiongate.api.admin.quota import router as quota_router

admin_router = APIRouter(prefix="/admin/v1", tags=["Admin"])

admin_router.include_router(health_router, prefix="/health")
admin_router.include_router(cache_router, prefix="/cache")
admin_router.include_router(quota_router, prefix="/quota")
admin_router.include_router(blocks_router, prefix="/blocks")
