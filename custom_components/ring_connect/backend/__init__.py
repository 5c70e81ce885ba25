"""Backend package exports."""
from __future__ import annotations

from typing import Any

from .ws_health import ReconnectBackoff, WsConnectionState

__all__ = [
    "ReconnectBackoff",
    "RingWebSocketClient",
    "TicketError",
    "WsConnectionState",
]


def __getattr__(name: str) -> Any:
    """Lazily import the websocket client to avoid circular imports."""

    if name in {"RingWebSocketClient", "TicketError"}:
        from . import ws_client

        value = getattr(ws_client, name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
