"""Abstract base class for caption generation backends."""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx
import structlog

from captiongate.common.errors import BackendError
from captiongate.core.cache.fingerprint import ImagePayload

logger = structlog.stdlib.get_logger()


class CaptionBackend(ABC):
    """
    Turns an image plus mood (and optional prompt) into a list of captions.

    Subclasses raise ``BackendError`` on any failure; the caller decides what
    to do with it. Nothing is cached for a failed generation.
    """

    provider_name: str

    @abstractmethod
    async def generate(self, image: ImagePayload, prompt: str | None, mood: str) -> list[str]: ...

    async def _handle_error_response(self, response: httpx.Response) -> None:
        """Shared error handling for non-2xx responses."""
        error_body = response.text
        await logger.aerror(
            f"backend.{self.provider_name}.error",
            status_code=response.status_code,
            body=error_body[:500],
        )

        if response.status_code in (401, 403):
            raise BackendError(
                f"{self.provider_name} rejected the API key",
                details={"provider": self.provider_name, "status_code": response.status_code},
            )
        if response.status_code == 429:
            raise BackendError(
                f"{self.provider_name} rate limit exceeded",
                details={"provider": self.provider_name, "status_code": 429, "retry": True},
            )

        raise BackendError(
            f"{self.provider_name} returned {response.status_code}: {error_body[:200]}",
            details={"provider": self.provider_name, "status_code": response.status_code},
        )
