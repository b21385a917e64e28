"""V1 public API router."""

from fastapi import APIRouter

from captiongate.api.v1.blocks import router as blocks_router
from captiongate.api.v1.captions import router as captions_router
from captiongate.api.v1.quota import router as quota_router

v1_router = APIRouter(prefix="/v1", tags=["Captions"])

v1_router.include_router(captions_router)
v1_router.include_router(quota_router)
v1_router.include_router(blocks_router)
