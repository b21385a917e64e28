"""Identity keys for quota windows."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from captiongate.common.errors import ValidationError

# Checked in order; the first present header wins
_IP_HEADERS = ("cf-connecting-ip", "x-real-ip")


def identity_key(user_id: str | None, ip: str | None) -> str:
    """``user:<id>`` for signed-in callers, ``ip:<address>`` otherwise."""
    if user_id and user_id.strip():
        return f"user:{user_id.strip()}"
    if ip and ip.strip():
        return f"ip:{ip.strip()}"
    raise ValidationError("Cannot identify caller: no user id or client address")


def client_ip(headers: Mapping[str, str], peer: str | None) -> str | None:
    """Client address: first ``x-forwarded-for`` hop, then proxy headers, then the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for name in _IP_HEADERS:
        value = headers.get(name)
        if value and value.strip():
            return value.strip()

    return peer


@dataclass
class Caller:
    """Who is asking, as far as the gateway can tell."""

    user_id: str | None = None
    email: str | None = None
    ip: str | None = None
    user_agent: str | None = None

    @property
    def authenticated(self) -> bool:
        return bool(self.user_id and self.user_id.strip())

    @property
    def key(self) -> str:
        return identity_key(self.user_id, self.ip)
