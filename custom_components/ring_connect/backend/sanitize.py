"""Shared sanitisation helpers for log output."""

from __future__ import annotations

from collections.abc import Mapping
import re
from typing import Any

_BEARER_RE = re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)
_TOKEN_QUERY_RE = re.compile(
    r"(?i)(token|refresh_token|access_token|authcode|ticket)=([^&\s]+)"
)
_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

_SECRET_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "password",
        "2fa-code",
        "authorization",
        "hardware_id",
        "ticket",
        "authcode",
    }
)


def redact_text(value: str | None) -> str:
    """Return ``value`` with bearer tokens, emails and query tokens removed."""

    if not value:
        return ""
    text = str(value)
    redacted = _BEARER_RE.sub("Bearer ***", text)
    redacted = _TOKEN_QUERY_RE.sub(lambda match: f"{match.group(1)}=***", redacted)
    redacted = _EMAIL_RE.sub("***@***", redacted)
    return redacted.replace("authorization", "auth").replace("Authorization", "Auth")


def redact_token_fragment(value: str | None) -> str:
    """Return a shortened representation of a token-like string."""

    if value is None:
        return ""
    trimmed = str(value).strip()
    if not trimmed:
        return ""
    if len(trimmed) <= 4:
        return "***"
    if len(trimmed) <= 8:
        return f"{trimmed[:2]}***{trimmed[-2:]}"
    return f"{trimmed[:4]}...{trimmed[-4:]}"


def mask_identifier(value: Any) -> str:
    """Return a masked identifier suitable for log output."""

    if value is None:
        return ""
    trimmed = str(value).strip()
    if not trimmed:
        return ""
    if len(trimmed) <= 4:
        return "***"
    if len(trimmed) <= 8:
        return f"{trimmed[:2]}...{trimmed[-2:]}"
    return f"{trimmed[:6]}...{trimmed[-4:]}"


def redact_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a copy of request parameters with secret values masked."""

    if not params:
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in params.items():
        if str(key).lower() in _SECRET_KEYS:
            cleaned[key] = "***"
        elif isinstance(value, Mapping):
            cleaned[key] = redact_params(value)
        elif isinstance(value, str):
            cleaned[key] = redact_text(value)
        else:
            cleaned[key] = value
    return cleaned


__all__ = [
    "mask_identifier",
    "redact_params",
    "redact_text",
    "redact_token_fragment",
]
