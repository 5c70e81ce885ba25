"""Websocket connection state and reconnect backoff primitives."""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any

from ..const import (
    BACKOFF_BASE,
    BACKOFF_FAILURE_FLOOR,
    BACKOFF_MAX,
    SILENCE_THRESHOLD,
)


@dataclass
class WsConnectionState:
    """Track socket status, the outbound sequence counter and frame freshness."""

    status: str = "disconnected"
    seq: int = 0
    last_message_at: float | None = None
    last_status_at: float | None = None
    silence_threshold: float = SILENCE_THRESHOLD

    def update_status(self, status: str, *, timestamp: float | None = None) -> bool:
        """Update the tracked status and return True when it changed."""

        if status == self.status:
            return False
        self.status = status
        self.last_status_at = timestamp if timestamp is not None else time.time()
        return True

    def mark_frame(self, *, timestamp: float | None = None) -> None:
        """Record the receipt of any inbound frame."""

        self.last_message_at = timestamp if timestamp is not None else time.time()

    def reset_seq(self) -> None:
        """Restart the per-connection sequence counter."""

        self.seq = 0

    def next_seq(self) -> int:
        """Advance the sequence counter and return the value to send."""

        self.seq += 1
        return self.seq

    def silence(self, *, now: float | None = None) -> float | None:
        """Return seconds since the last frame, or None when none was seen."""

        if self.last_message_at is None:
            return None
        current = now if now is not None else time.time()
        return abs(current - self.last_message_at)

    def is_silent(self, *, now: float | None = None) -> bool:
        """Return True when no frame arrived within the silence threshold."""

        elapsed = self.silence(now=now)
        if elapsed is None:
            return False
        return elapsed >= self.silence_threshold

    def snapshot(self, *, now: float | None = None) -> dict[str, Any]:
        """Return a serializable snapshot of the connection state."""

        return {
            "status": self.status,
            "seq": self.seq,
            "last_message_at": self.last_message_at,
            "last_status_at": self.last_status_at,
            "silence": self.silence(now=now),
        }


@dataclass
class ReconnectBackoff:
    """Exponential reconnect delay with a ceiling and a failure floor."""

    base: float = BACKOFF_BASE
    ceiling: float = BACKOFF_MAX
    failure_floor: float = BACKOFF_FAILURE_FLOOR
    delay: float | None = None

    def next_delay(self, *, floor: float | None = None) -> float:
        """Return the next delay, doubling the previous one."""

        candidate = self.base if self.delay is None else self.delay * 2
        if floor is not None:
            candidate = max(candidate, floor)
        self.delay = min(candidate, self.ceiling)
        return self.delay

    def next_failure_delay(self) -> float:
        """Return the next delay after a ticket or connect step failed outright."""

        return self.next_delay(floor=self.failure_floor)

    def reset(self) -> None:
        """Forget previous failures so the next delay is the base value."""

        self.delay = None


__all__ = ["ReconnectBackoff", "WsConnectionState"]
