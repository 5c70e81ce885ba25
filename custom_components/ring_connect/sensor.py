"""Sensors for Ring device batteries, signal strength and alarm mode."""

from __future__ import annotations

from collections.abc import Iterator
import logging
from typing import Any

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorEntity,
    SensorStateClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import PERCENTAGE, EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity import Entity
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .devices import HubDevice, VirtualDevice
from .entity import RingDeviceEntity, async_setup_device_entities

_LOGGER = logging.getLogger(__name__)


def _entities_for(entry_id: str, handle: VirtualDevice) -> Iterator[Entity]:
    if handle.kind.hub:
        if isinstance(handle, HubDevice) and handle.driver == "alarm_hub":
            yield RingAlarmModeSensor(entry_id, handle)
        return
    yield RingBatterySensor(entry_id, handle)
    yield RingSignalSensor(entry_id, handle)


async def async_setup_entry(
    hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback
) -> None:
    """Set up battery, signal and alarm mode sensors."""

    await async_setup_device_entities(hass, entry, async_add_entities, _entities_for)


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class RingBatterySensor(RingDeviceEntity, SensorEntity):
    _attr_device_class = SensorDeviceClass.BATTERY
    _attr_native_unit_of_measurement = PERCENTAGE
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_entity_category = EntityCategory.DIAGNOSTIC

    def __init__(self, entry_id: str, handle: VirtualDevice) -> None:
        super().__init__(entry_id, handle, "battery")

    @property
    def native_value(self) -> float | None:
        return _as_number(self.handle.battery_level)

    @property
    def extra_state_attributes(self) -> dict[str, Any] | None:
        status = self.handle.attributes.get("battery_status")
        return {"battery_status": status} if status is not None else None


class RingSignalSensor(RingDeviceEntity, SensorEntity):
    _attr_device_class = SensorDeviceClass.SIGNAL_STRENGTH
    _attr_native_unit_of_measurement = "dBm"
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_entity_category = EntityCategory.DIAGNOSTIC
    _attr_entity_registry_enabled_default = False

    def __init__(self, entry_id: str, handle: VirtualDevice) -> None:
        super().__init__(entry_id, handle, "signal_strength")

    @property
    def native_value(self) -> float | None:
        return _as_number(self.handle.signal_strength)


class RingAlarmModeSensor(RingDeviceEntity, SensorEntity):
    """Alarm mode reported through the base station's security panel."""

    _attr_translation_key = "alarm_mode"

    def __init__(self, entry_id: str, handle: HubDevice) -> None:
        super().__init__(entry_id, handle, "alarm_mode")
        self._hub = handle

    @property
    def native_value(self) -> str | None:
        mode = self._hub.mode
        return str(mode) if mode is not None else None
