"""Credential block list endpoints."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import ORJSONResponse

from captiongate.api.deps import Admin, AdminKey, admin_response
from captiongate.schemas.abuse import BlockRequest

router = APIRouter()


@router.post("", summary="Block a credential")
async def block_credential(
    body: BlockRequest, admin_key: AdminKey, service: Admin
) -> ORJSONResponse:
    return admin_response(
        await service.block(body.credential, body.reason, body.ip_address, body.user_agent)
    )


@router.post("/reactivate-all", summary="Lift every block")
async def reactivate_all(admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.reactivate_all())


@router.get("/{credential}", summary="Block status for a credential")
async def block_status(credential: str, admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.block_status(credential))


@router.delete("/{credential}", summary="Lift a block")
async def unblock(credential: str, admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.unblock(credential))
