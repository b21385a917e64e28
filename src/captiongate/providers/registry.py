"""Caption backend registry: maps provider names to backend classes."""

from __future__ import annotations

import httpx

from captiongate.config import BackendSettings
from captiongate.providers.base import CaptionBackend
from captiongate.providers.gemini import GeminiCaptionBackend

_BACKENDS: dict[str, type[GeminiCaptionBackend]] = {
    "gemini": GeminiCaptionBackend,
}

_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared async HTTP client."""
    global _http_client  # noqa: PLW0603
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=10.0),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            http2=True,
            follow_redirects=True,
        )
    return _http_client


async def close_http_client() -> None:
    """Close the shared HTTP client (called on app shutdown)."""
    global _http_client  # noqa: PLW0603
    if _http_client and not _http_client.is_closed:
        await _http_client.aclose()
        _http_client = None


def get_caption_backend(settings: BackendSettings, provider: str = "gemini") -> CaptionBackend:
    """Get a backend instance for the given provider."""
    backend_cls = _BACKENDS.get(provider)
    if backend_cls is None:
        supported = ", ".join(sorted(_BACKENDS))
        raise ValueError(f"Unsupported caption backend: '{provider}'. Supported: {supported}")
    return backend_cls(get_http_client(), settings)
