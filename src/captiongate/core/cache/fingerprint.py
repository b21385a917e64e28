"""
Content fingerprints for submitted images.

Key: SHA-256 hex digest (64 chars) of
  - the decoded bytes for inline payloads: ``data:`` URLs, ``base64,``-prefixed
    strings and bare base64,
  - the raw bytes for buffers,
  - the reference string itself for remote URLs and content-store ids.

Anything with a URL scheme (``https://...``) is a reference, even when its
query string happens to contain ``base64,``.

The same bytes always give the same key regardless of how they were
submitted. Two different references to the same remote image do not
collide; that is an accepted limitation (no network I/O happens here).
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import re
from dataclasses import asdict, dataclass
from typing import Union
from urllib.parse import unquote_to_bytes

from captiongate.common.errors import ValidationError

ImagePayload = Union[bytes, bytearray, memoryview, str]

_BASE64_MARKER = "base64,"
_URL_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")
_STRICT_BASE64 = re.compile(
    r"(?:[A-Za-z0-9+/]{4})+(?:[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}=)?"
    r"|[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}="
)


@dataclass
class ImageMetadata:
    width: int | None = None
    height: int | None = None
    size: int | None = None
    format: str | None = None
    name: str | None = None

    def canonical(self) -> str:
        """Sorted-key compact JSON of the fields that are set."""
        data = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(data, sort_keys=True, separators=(",", ":"))

    def is_empty(self) -> bool:
        return all(v is None for v in asdict(self).values())


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def is_inline_image(image: str) -> bool:
    """True for data URLs, ``base64,`` payloads and bare base64; False for URLs and ids."""
    image = image.strip()
    if image.startswith("data:"):
        return True
    if _URL_SCHEME.match(image):
        return False
    if _BASE64_MARKER in image:
        return True
    return _STRICT_BASE64.fullmatch("".join(image.split())) is not None


def decode_inline_image(image: str) -> bytes:
    """Strip an optional ``data:<type>;base64,`` prefix and decode the rest."""
    if image.startswith("data:") and _BASE64_MARKER not in image:
        # Plain (percent-encoded) data URL
        _, _, body = image.partition(",")
        if not body:
            raise ValidationError("Inline image payload is empty")
        return unquote_to_bytes(body)

    payload = image.split(_BASE64_MARKER, 1)[1] if _BASE64_MARKER in image else image
    payload = "".join(payload.split())
    if not payload:
        raise ValidationError("Inline image payload is empty")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Inline image is not valid base64") from e


class FingerprintService:
    """Derives a deterministic content key from an image payload."""

    def fingerprint(self, image: ImagePayload) -> str:
        if isinstance(image, (bytes, bytearray, memoryview)):
            data = bytes(image)
            if not data:
                raise ValidationError("Image buffer is empty")
            return _sha256(data)

        if not isinstance(image, str):
            raise ValidationError(f"Unsupported image payload type: {type(image).__name__}")

        image = image.strip()
        if not image:
            raise ValidationError("Image reference is empty")

        if is_inline_image(image):
            return _sha256(decode_inline_image(image))

        return _sha256(image.encode("utf-8"))

    def fingerprint_with_metadata(
        self, image: ImagePayload, metadata: ImageMetadata | None = None
    ) -> str:
        """Content key combined with a canonical hash of the image metadata."""
        content_key = self.fingerprint(image)
        if metadata is None or metadata.is_empty():
            return content_key

        metadata_key = _sha256(metadata.canonical().encode("utf-8"))
        return _sha256(f"{content_key}{metadata_key}".encode("utf-8"))
