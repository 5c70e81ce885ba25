"""Runtime container helpers for Ring Connect config entries."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant

from .const import DOMAIN

if TYPE_CHECKING:
    from .api import RingRESTClient
    from .backend.ws_client import RingWebSocketClient
    from .poller import DingPoller, SnapshotPoller
    from .registry import DeviceRegistry
    from .session import RingAuthSession
    from .snapshots import SnapshotCache


@dataclass(slots=True)
class EntryRuntime:
    """Runtime container for a configured Ring Connect entry."""

    config_entry: ConfigEntry
    auth: RingAuthSession
    client: RingRESTClient
    registry: DeviceRegistry
    snapshots: SnapshotCache
    location_id: str
    webhook_token: str | None = None
    ws_client: RingWebSocketClient | None = None
    ding_poller: DingPoller | None = None
    snapshot_poller: SnapshotPoller | None = None
    ws_state: dict[str, Any] = field(default_factory=dict)
    save_state: Callable[[], None] | None = None
    shutdown_complete: bool = False

    async def async_shutdown(self) -> None:
        """Stop every background task owned by the entry."""

        if self.shutdown_complete:
            return
        self.shutdown_complete = True
        for poller in (self.ding_poller, self.snapshot_poller):
            if poller is not None:
                await poller.async_shutdown()
        if self.ws_client is not None:
            await self.ws_client.stop()
        await self.client.async_close()
        await self.auth.async_close()


def require_runtime(hass: HomeAssistant, entry_id: str) -> EntryRuntime:
    """Return the runtime container stored for ``entry_id``."""

    domain_data = hass.data.get(DOMAIN)
    if not isinstance(domain_data, dict):
        raise LookupError("Ring Connect runtime data is unavailable")  # noqa: TRY004
    runtime = domain_data.get(entry_id)
    if isinstance(runtime, EntryRuntime):
        return runtime
    raise LookupError("Ring Connect runtime data is unavailable")


__all__ = ["EntryRuntime", "require_runtime"]
