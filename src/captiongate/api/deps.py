"""
FastAPI dependency injection.

Components are built once per app and live on ``app.state``; dependencies
only read them from there.
"""

from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, Header, Request
from fastapi.responses import ORJSONResponse

from captiongate.common.errors import AuthenticationError, AuthorizationError
from captiongate.config import Settings
from captiongate.core.quota.identity import Caller, client_ip
from captiongate.core.storage.factory import Components
from captiongate.services.admin import AdminResult, AdminService
from captiongate.services.generation import GenerationService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_components(request: Request) -> Components:
    return request.app.state.components


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


def get_admin_service(request: Request) -> AdminService:
    return request.app.state.admin_service


def get_caller(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> Caller:
    """Identity as asserted by the upstream auth proxy, plus the client address."""
    headers = request.headers
    peer = request.client.host if request.client else None
    return Caller(
        user_id=(headers.get(settings.auth.user_id_header) or "").strip() or None,
        email=(headers.get(settings.auth.user_email_header) or "").strip() or None,
        ip=client_ip(headers, peer),
        user_agent=headers.get("user-agent"),
    )


async def require_admin(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_app_settings),
) -> str:
    """
    Authenticate an admin request.

    Accepts:
        - Authorization: Bearer <master key>
    """
    if not authorization:
        raise AuthenticationError("Missing Authorization header")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid Authorization header format. Expected: Bearer <key>")

    master = settings.auth.master_api_key
    if not master:
        raise AuthorizationError("Admin API is disabled (no master key configured)")
    if not secrets.compare_digest(parts[1].strip(), master):
        raise AuthenticationError("Invalid API key")
    return "master"


# Annotated types for route signatures
AppSettings = Annotated[Settings, Depends(get_app_settings)]
AppComponents = Annotated[Components, Depends(get_components)]
CurrentCaller = Annotated[Caller, Depends(get_caller)]
Generation = Annotated[GenerationService, Depends(get_generation_service)]
Admin = Annotated[AdminService, Depends(get_admin_service)]
AdminKey = Annotated[str, Depends(require_admin)]


def admin_response(result: AdminResult) -> ORJSONResponse:
    """Admin results are always a body; failures use the status code they carry."""
    status_code = 200 if result.get("success") else int(result.pop("code", 500))
    return ORJSONResponse(status_code=status_code, content=result)
