"""Periodic REST polling for dings and camera snapshots."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Callable
from contextlib import suppress
from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING

from homeassistant.core import HomeAssistant
from homeassistant.helpers.event import async_track_time_interval

from .api import RingRequestError
from .backend.sanitize import mask_identifier
from .const import (
    DEFAULT_DING_INTERVAL,
    DEFAULT_SNAPSHOT_INTERVAL,
    MIN_DING_INTERVAL,
    SNAPSHOT_FETCH_DELAY,
    SNAPSHOT_INTERVALS,
)
from .session import RingAuthError, RingRateLimitError, RingRequestsHeld

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .api import RingRESTClient
    from .registry import DeviceRegistry
    from .snapshots import SnapshotCache

_LOGGER = logging.getLogger(__name__)

_POLL_ERRORS = (RingRequestError, RingAuthError, RingRateLimitError, RingRequestsHeld)


class _IntervalPoller(ABC):
    """Run ``poll_once`` on a fixed interval, one run at a time."""

    name = "poller"

    def __init__(self, hass: HomeAssistant, interval: float) -> None:
        self._hass = hass
        self.interval = interval
        self._remove_listener: Callable[[], None] | None = None
        self._active_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._remove_listener is not None

    def start(self) -> None:
        """Register the periodic trigger."""

        if self._remove_listener is not None:
            return
        _LOGGER.info("%s started with an interval of %s seconds", self.name, self.interval)
        self._remove_listener = async_track_time_interval(
            self._hass, self._on_time, timedelta(seconds=self.interval)
        )

    async def async_shutdown(self) -> None:
        """Cancel the trigger and any running poll."""

        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        task = self._active_task
        self._active_task = None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    def _on_time(self, now: datetime | None = None) -> None:
        if self._active_task is not None and not self._active_task.done():
            _LOGGER.debug("%s: skipping trigger while previous run is active", self.name)
            return
        task = self._hass.async_create_task(self.poll_once())
        self._active_task = task

        def _finalise(finished: asyncio.Task[None]) -> None:
            if self._active_task is finished:
                self._active_task = None
            if finished.cancelled():
                _LOGGER.debug("%s task cancelled", self.name)
                return
            exception = finished.exception()
            if exception is not None:
                _LOGGER.exception("%s run raised an exception", self.name, exc_info=exception)

        task.add_done_callback(_finalise)

    @abstractmethod
    async def poll_once(self) -> None:
        """Run one poll."""


class DingPoller(_IntervalPoller):
    """Poll active dings and hand each camera its current event."""

    name = "Ding polling"

    def __init__(
        self,
        hass: HomeAssistant,
        client: RingRESTClient,
        registry: DeviceRegistry,
        interval: float = DEFAULT_DING_INTERVAL,
    ) -> None:
        super().__init__(hass, max(float(interval), MIN_DING_INTERVAL))
        self._client = client
        self._registry = registry

    async def poll_once(self) -> None:
        """Fetch active dings once and deliver them."""

        if not self._registry.dingables:
            return
        try:
            dings = await self._client.active_dings()
        except _POLL_ERRORS as err:
            _LOGGER.warning("Ding polling failed: %s", err)
            return
        self._registry.handle_dings(dings)


class SnapshotPoller(_IntervalPoller):
    """Ask cameras for fresh snapshots, then download them."""

    name = "Snapshot polling"

    def __init__(
        self,
        hass: HomeAssistant,
        client: RingRESTClient,
        registry: DeviceRegistry,
        cache: SnapshotCache,
        interval: int = DEFAULT_SNAPSHOT_INTERVAL,
        *,
        fetch_delay: float = SNAPSHOT_FETCH_DELAY,
        on_stored: Callable[[str], None] | None = None,
    ) -> None:
        if interval not in SNAPSHOT_INTERVALS:
            _LOGGER.warning(
                "Unsupported snapshot interval %s; using %s",
                interval,
                DEFAULT_SNAPSHOT_INTERVAL,
            )
            interval = DEFAULT_SNAPSHOT_INTERVAL
        super().__init__(hass, interval)
        self._client = client
        self._registry = registry
        self._cache = cache
        self._fetch_delay = fetch_delay
        self._on_stored = on_stored

    async def poll_once(self) -> None:
        """Request timestamps, wait for the cameras, then fetch images."""

        device_ids = sorted(self._registry.snappables)
        if not device_ids:
            return
        try:
            await self._client.snapshot_timestamps(device_ids)
        except _POLL_ERRORS as err:
            _LOGGER.warning("Snapshot timestamp request failed: %s", err)
            return
        await asyncio.sleep(self._fetch_delay)
        for device_id in device_ids:
            try:
                image = await self._client.snapshot_image(device_id)
            except _POLL_ERRORS as err:
                _LOGGER.warning(
                    "Snapshot for %s failed: %s", mask_identifier(device_id), err
                )
                continue
            if self._cache.store(device_id, image):
                _LOGGER.debug("Snapshot for %s updated", mask_identifier(device_id))
                if self._on_stored is not None:
                    self._on_stored(device_id)


__all__ = ["DingPoller", "SnapshotPoller"]
