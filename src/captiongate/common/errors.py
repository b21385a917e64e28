"""
Unified error handling.

Every captiongate error maps to a JSON body of the form
``{"error": {"message", "type", "code", ...details}}``.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

logger = structlog.stdlib.get_logger()


class CaptionGateError(Exception):
    """Base exception for all captiongate errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.status_code,
                **self.details,
            }
        }


class ValidationError(CaptionGateError):
    status_code = 400
    error_type = "invalid_request_error"


class AuthenticationError(CaptionGateError):
    status_code = 401
    error_type = "authentication_error"


class AuthorizationError(CaptionGateError):
    status_code = 403
    error_type = "authorization_error"


class CredentialBlockedError(CaptionGateError):
    status_code = 403
    error_type = "credential_blocked"


class NotFoundError(CaptionGateError):
    status_code = 404
    error_type = "not_found"


class QuotaExceededError(CaptionGateError):
    status_code = 429
    error_type = "quota_exceeded"


class BackendError(CaptionGateError):
    status_code = 502
    error_type = "backend_error"


class StoreUnavailableError(CaptionGateError):
    """The durable store could not be reached (connection failure or timeout)."""

    status_code = 503
    error_type = "store_unavailable"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(CaptionGateError)
    async def captiongate_error_handler(
        request: Request, exc: CaptionGateError
    ) -> ORJSONResponse:
        await logger.awarning(
            "captiongate.error",
            error_type=exc.error_type,
            message=exc.message,
            status_code=exc.status_code,
            path=request.url.path,
        )
        return ORJSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
        await logger.aexception(
            "captiongate.unhandled_error",
            path=request.url.path,
            error=str(exc),
        )
        return ORJSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": "An internal error occurred.",
                    "type": "internal_error",
                    "code": 500,
                }
            },
        )
