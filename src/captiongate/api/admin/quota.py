"""Quota window management endpoints."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import ORJSONResponse

from captiongate.api.deps import Admin, AdminKey, admin_response

router = APIRouter()


@router.post("/reset-all", summary="Delete every quota window")
async def reset_all(admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.reset_all_quotas())


@router.get("/{key}", summary="Quota status for an identity key")
async def quota_status(key: str, admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.quota_status(key))


@router.delete("/{key}", summary="Reset one quota window")
async def reset_quota(key: str, admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.reset_quota(key))
