"""Client identity extraction: IP address, IP hash and device fingerprint.

All functions are pure and never raise; missing headers degrade to empty
strings (fingerprint) or the ``"unknown"`` sentinel (IP address).
"""

import hashlib
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict

UNKNOWN_IP = "unknown"
HASH_LENGTH = 16

DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"
DEFAULT_ACCEPT_ENCODING = "gzip, deflate, br"


def _header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup returning "" when absent."""
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                value = candidate
                break
    return value or ""


def _truncated_sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def generate_fingerprint(headers: Mapping[str, str]) -> str:
    """Derive a fixed-length device fingerprint from browser headers.

    Uses user-agent, accept-language and accept-encoding. The result is a
    truncated SHA-256 digest, so it is stable for a given browser and reveals
    nothing about the raw header values.
    """
    parts = (
        _header(headers, "user-agent"),
        _header(headers, "accept-language"),
        _header(headers, "accept-encoding"),
    )
    return _truncated_sha256("\n".join(parts))


def get_client_ip(headers: Mapping[str, str], fallback: str = UNKNOWN_IP) -> str:
    """Resolve the client IP from proxy headers.

    Order: first entry of X-Forwarded-For, then X-Real-IP, then ``fallback``.
    """
    forwarded = _header(headers, "x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = _header(headers, "x-real-ip").strip()
    if real_ip:
        return real_ip

    return fallback or UNKNOWN_IP


def hash_ip(ip_address: str) -> str:
    """One-way, truncated hash of an IP address for token binding."""
    return _truncated_sha256(ip_address)


class RequestContext(BaseModel):
    """Identity-relevant snapshot of an inbound request."""

    model_config = ConfigDict(frozen=True)

    client_ip: str = UNKNOWN_IP
    user_agent: str = ""
    accept_language: str = ""
    accept_encoding: str = ""

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], peer: str | None = None) -> "RequestContext":
        """Build a context from request headers.

        Args:
            headers: Request headers (any mapping; lookup is case-insensitive)
            peer: Socket peer address, used only when no proxy header is present

        """
        return cls(
            client_ip=get_client_ip(headers, fallback=peer or UNKNOWN_IP),
            user_agent=_header(headers, "user-agent"),
            accept_language=_header(headers, "accept-language"),
            accept_encoding=_header(headers, "accept-encoding"),
        )

    @classmethod
    def from_client(cls, ip_address: str, user_agent: str) -> "RequestContext":
        """Build a context from the bare (ip, user-agent) pair a login handler has."""
        return cls(
            client_ip=ip_address or UNKNOWN_IP,
            user_agent=user_agent or "",
            accept_language=DEFAULT_ACCEPT_LANGUAGE,
            accept_encoding=DEFAULT_ACCEPT_ENCODING,
        )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "user-agent": self.user_agent,
            "accept-language": self.accept_language,
            "accept-encoding": self.accept_encoding,
        }

    @property
    def fingerprint(self) -> str:
        return generate_fingerprint(self.headers)

    @property
    def ip_hash(self) -> str:
        return hash_ip(self.client_ip)
