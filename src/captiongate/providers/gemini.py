"""
Google Gemini caption backend (AI Studio).

  - Endpoint: {api_base}/v1beta/models/{model}:generateContent?key=...
  - Image part: ``inlineData`` for data URLs / base64 / raw bytes,
    ``fileData`` for remote URLs
  - Output: JSON (``responseMimeType``) of the form {"captions": [...]}
"""

from __future__ import annotations

import base64
import json
from typing import Any
from urllib.parse import unquote_to_bytes

import httpx
import structlog

from captiongate.common.errors import BackendError, ValidationError
from captiongate.config import BackendSettings
from captiongate.core.cache.fingerprint import ImagePayload, decode_inline_image, is_inline_image
from captiongate.providers.base import CaptionBackend

logger = structlog.stdlib.get_logger()

DEFAULT_GEMINI_BASE = "https://generativelanguage.googleapis.com"
DEFAULT_MIME = "image/jpeg"

PROMPT_TEMPLATE = """You are a social media content creator who writes captions for photos.

Look at the image and describe to yourself what is actually in it: the main
subject, the setting, the colours, the light and the overall vibe.

Target mood: {mood}
{context}
Write exactly {count} different captions that:
- reference specific things visible in the image
- match the target mood
- include 2-4 emojis and 3-5 relevant hashtags
- are under 150 characters each

Respond with JSON only: {{"captions": ["...", "..."]}}
"""


def _sniff_mime(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"GIF8"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return DEFAULT_MIME


def _inline_part(data: bytes) -> dict[str, Any]:
    return {
        "inlineData": {
            "mimeType": _sniff_mime(data),
            "data": base64.b64encode(data).decode("ascii"),
        }
    }


class GeminiCaptionBackend(CaptionBackend):
    provider_name = "gemini"

    def __init__(self, http_client: httpx.AsyncClient, settings: BackendSettings) -> None:
        self.client = http_client
        self._settings = settings

    # Request Transform

    def build_prompt(self, prompt: str | None, mood: str) -> str:
        context = f"Additional context from the user: {prompt}\n" if prompt else ""
        return PROMPT_TEMPLATE.format(
            mood=mood, context=context, count=self._settings.captions_per_image
        )

    @staticmethod
    def image_part(image: ImagePayload) -> dict[str, Any]:
        """Convert an image payload to a Gemini content part."""
        if isinstance(image, (bytes, bytearray, memoryview)):
            return _inline_part(bytes(image))

        image = image.strip()
        if is_inline_image(image):
            if image.startswith("data:"):
                header, _, data = image.partition(",")
                mime = header.removeprefix("data:").split(";", 1)[0] or DEFAULT_MIME
                if ";base64" not in header:
                    # Percent-encoded data URL; Gemini wants base64
                    data = base64.b64encode(unquote_to_bytes(data)).decode("ascii")
                return {"inlineData": {"mimeType": mime, "data": data}}
            # Bare or ``base64,``-prefixed payload
            return _inline_part(decode_inline_image(image))

        return {"fileData": {"fileUri": image}}

    def transform_request(
        self, image: ImagePayload, prompt: str | None, mood: str
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Returns (url, headers, body) for the Gemini API."""
        base = self._settings.api_base.rstrip("/") or DEFAULT_GEMINI_BASE
        model = self._settings.model_name
        url = f"{base}/v1beta/models/{model}:generateContent?key={self._settings.api_key}"
        headers = {"Content-Type": "application/json"}

        body: dict[str, Any] = {
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": self.build_prompt(prompt, mood)}, self.image_part(image)],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "temperature": 1.0,
            },
        }
        return url, headers, body

    # Response Transform

    def transform_response(self, raw_response: dict[str, Any]) -> list[str]:
        candidates = raw_response.get("candidates", [])
        if not candidates:
            raise BackendError(
                "Gemini returned no candidates",
                details={"provider": self.provider_name},
            )

        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts).strip()
        # Tolerate a fenced ```json block
        if text.startswith("```"):
            text = text.strip("`").removeprefix("json").strip()

        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise BackendError(
                "Gemini returned malformed JSON",
                details={"provider": self.provider_name, "body": text[:200]},
            ) from e

        raw = payload.get("captions") if isinstance(payload, dict) else payload
        if not isinstance(raw, list):
            raise BackendError(
                "Gemini response has no caption list",
                details={"provider": self.provider_name},
            )

        captions = [c.strip() for c in raw if isinstance(c, str) and c.strip()]
        if not captions:
            raise BackendError(
                "Gemini returned no usable captions",
                details={"provider": self.provider_name},
            )
        return captions[: self._settings.captions_per_image]

    # Generation

    async def generate(self, image: ImagePayload, prompt: str | None, mood: str) -> list[str]:
        if not self._settings.api_key:
            raise BackendError(
                "Caption backend is not configured (missing API key)",
                details={"provider": self.provider_name},
            )
        if isinstance(image, str) and not image.strip():
            raise ValidationError("Image reference is empty")

        url, headers, body = self.transform_request(image, prompt, mood)

        try:
            response = await self.client.post(
                url, headers=headers, json=body, timeout=self._settings.timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise BackendError(
                f"Gemini request timed out: {e}",
                details={"provider": self.provider_name},
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(
                f"Failed to reach Gemini: {e}",
                details={"provider": self.provider_name},
            ) from e

        if not response.is_success:
            await self._handle_error_response(response)

        captions = self.transform_response(response.json())
        await logger.ainfo(
            "backend.gemini.generated",
            model=self._settings.model_name,
            captions=len(captions),
            mood=mood,
        )
        return captions
