"""Binary sensors for Ring devices and the real-time connection."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
import logging
from typing import Any

from homeassistant.components.binary_sensor import (
    BinarySensorDeviceClass,
    BinarySensorEntity,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.entity import Entity
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import signal_ws_status
from .devices import CameraDevice, FloodFreezeSensorDevice, VirtualDevice
from .entity import RingDeviceEntity, async_setup_device_entities
from .runtime import require_runtime

_LOGGER = logging.getLogger(__name__)


def _device_class(handle: VirtualDevice) -> BinarySensorDeviceClass | None:
    if handle.device_class is None:
        return None
    try:
        return BinarySensorDeviceClass(handle.device_class)
    except ValueError:
        _LOGGER.debug("No binary sensor class for %s", handle.device_class)
        return None


def _entities_for(entry_id: str, handle: VirtualDevice) -> Iterator[Entity]:
    if isinstance(handle, CameraDevice):
        yield RingMotionBinarySensor(entry_id, handle)
        if handle.kind.ringable:
            yield RingDingBinarySensor(entry_id, handle)
        return
    if _device_class(handle) is not None:
        yield RingStateBinarySensor(entry_id, handle)
    if isinstance(handle, FloodFreezeSensorDevice):
        yield RingFreezeBinarySensor(entry_id, handle)
    if "tamper_status" in handle.attributes or handle.kind.kind.startswith("sensor."):
        yield RingTamperBinarySensor(entry_id, handle)


async def async_setup_entry(
    hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback
) -> None:
    """Set up device binary sensors and the connectivity sensor."""

    runtime = require_runtime(hass, entry.entry_id)
    extra: list[Entity] = []
    if runtime.registry.websocket_capable:
        extra.append(RingConnectivityBinarySensor(entry.entry_id, runtime.location_id))
    await async_setup_device_entities(
        hass, entry, async_add_entities, _entities_for, extra=extra
    )


class RingStateBinarySensor(RingDeviceEntity, BinarySensorEntity):
    """Primary binary state of a hub child (contact, motion, smoke, ...)."""

    _attr_name = None

    def __init__(self, entry_id: str, handle: VirtualDevice) -> None:
        super().__init__(entry_id, handle, "state")
        self._attr_device_class = _device_class(handle)

    @property
    def is_on(self) -> bool | None:
        return self.handle.is_on


class RingFreezeBinarySensor(RingDeviceEntity, BinarySensorEntity):
    _attr_device_class = BinarySensorDeviceClass.COLD
    _attr_translation_key = "freeze"

    def __init__(self, entry_id: str, handle: FloodFreezeSensorDevice) -> None:
        super().__init__(entry_id, handle, "freeze")

    @property
    def is_on(self) -> bool | None:
        return self.handle.freeze


class RingTamperBinarySensor(RingDeviceEntity, BinarySensorEntity):
    _attr_device_class = BinarySensorDeviceClass.TAMPER
    _attr_translation_key = "tamper"

    def __init__(self, entry_id: str, handle: VirtualDevice) -> None:
        super().__init__(entry_id, handle, "tamper")

    @property
    def is_on(self) -> bool | None:
        status = self.handle.attributes.get("tamper_status")
        if status is None:
            return None
        return status != "ok"


class RingMotionBinarySensor(RingDeviceEntity, BinarySensorEntity):
    """Motion events from ding polling or the IFTTT webhook."""

    _attr_device_class = BinarySensorDeviceClass.MOTION
    _attr_translation_key = "motion"

    def __init__(self, entry_id: str, handle: CameraDevice) -> None:
        super().__init__(entry_id, handle, "motion")

    @property
    def is_on(self) -> bool:
        return self.handle.motion

    @property
    def extra_state_attributes(self) -> dict[str, Any] | None:
        last = self.handle.last_ding
        if not last:
            return None
        return {"last_event": last.get("kind"), "last_event_at": self.handle.last_ding_at}


class RingDingBinarySensor(RingDeviceEntity, BinarySensorEntity):
    """Doorbell presses."""

    _attr_device_class = BinarySensorDeviceClass.OCCUPANCY
    _attr_translation_key = "ding"

    def __init__(self, entry_id: str, handle: CameraDevice) -> None:
        super().__init__(entry_id, handle, "ding")

    @property
    def is_on(self) -> bool:
        return self.handle.ding


class RingConnectivityBinarySensor(BinarySensorEntity):
    """Connectivity of the real-time relay socket."""

    _attr_has_entity_name = True
    _attr_should_poll = False
    _attr_device_class = BinarySensorDeviceClass.CONNECTIVITY
    _attr_translation_key = "websocket"

    def __init__(self, entry_id: str, location_id: str) -> None:
        self._entry_id = entry_id
        self._attr_unique_id = f"{location_id}_websocket"
        self._status: str | None = None
        self._snapshot: Mapping[str, Any] = {}

    async def async_added_to_hass(self) -> None:
        await super().async_added_to_hass()
        runtime = require_runtime(self.hass, self._entry_id)
        self._status = runtime.ws_state.get("status")
        self._snapshot = dict(runtime.ws_state)
        self.async_on_remove(
            async_dispatcher_connect(
                self.hass, signal_ws_status(self._entry_id), self._handle_status
            )
        )

    @callback
    def _handle_status(self, payload: Mapping[str, Any]) -> None:
        self._status = payload.get("status")
        self._snapshot = dict(payload)
        self.async_write_ha_state()

    @property
    def is_on(self) -> bool:
        return self._status == "connected"

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        return {
            "status": self._status,
            "last_message_at": self._snapshot.get("last_message_at"),
        }
