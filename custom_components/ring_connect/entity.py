"""Entity base classes shared across Ring Connect platforms."""

from __future__ import annotations

from collections.abc import Callable, Iterable
import logging

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.entity import Entity
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import DOMAIN, signal_device_update, signal_new_device
from .devices import VirtualDevice
from .runtime import require_runtime

_LOGGER = logging.getLogger(__name__)

EntityFactory = Callable[[str, VirtualDevice], Iterable[Entity]]


def build_device_info(handle: VirtualDevice) -> DeviceInfo:
    """Return Home Assistant device metadata for ``handle``."""

    info = DeviceInfo(
        identifiers={(DOMAIN, handle.vendor_id)},
        name=handle.name,
        manufacturer=str(handle.metadata.get("manufacturer") or "Ring"),
        model=handle.kind.name,
    )
    if handle.metadata.get("firmware"):
        info["sw_version"] = str(handle.metadata["firmware"])
    if handle.metadata.get("hardware_version"):
        info["hw_version"] = str(handle.metadata["hardware_version"])
    if handle.metadata.get("serial"):
        info["serial_number"] = str(handle.metadata["serial"])
    if handle.hub_id and handle.hub_id != handle.vendor_id:
        info["via_device"] = (DOMAIN, handle.hub_id)
    return info


class RingDeviceEntity(Entity):
    """Entity mirroring one device handle, refreshed by dispatcher signals."""

    _attr_has_entity_name = True
    _attr_should_poll = False

    def __init__(self, entry_id: str, handle: VirtualDevice, key: str) -> None:
        self._entry_id = entry_id
        self._handle = handle
        self._attr_unique_id = f"{handle.vendor_id}_{key}"
        self._attr_device_info = build_device_info(handle)

    @property
    def handle(self) -> VirtualDevice:
        return self._handle

    @property
    def available(self) -> bool:
        return self._handle.available

    async def async_added_to_hass(self) -> None:
        """Subscribe to device update signals."""

        await super().async_added_to_hass()
        self.async_on_remove(
            async_dispatcher_connect(
                self.hass, signal_device_update(self._entry_id), self._handle_update
            )
        )

    @callback
    def _handle_update(self, vendor_id: str) -> None:
        if vendor_id == self._handle.vendor_id:
            self.async_write_ha_state()


async def async_setup_device_entities(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
    factory: EntityFactory,
    *,
    extra: Iterable[Entity] = (),
) -> None:
    """Add entities for current handles and for handles created later."""

    runtime = require_runtime(hass, entry.entry_id)
    entities: list[Entity] = list(extra)
    for handle in runtime.registry.devices:
        entities.extend(factory(entry.entry_id, handle))
    if entities:
        _LOGGER.debug("Adding %d entities", len(entities))
        async_add_entities(entities)

    @callback
    def _on_new_device(handle: VirtualDevice) -> None:
        new_entities = list(factory(entry.entry_id, handle))
        if new_entities:
            async_add_entities(new_entities)

    entry.async_on_unload(
        async_dispatcher_connect(hass, signal_new_device(entry.entry_id), _on_new_device)
    )


__all__ = ["RingDeviceEntity", "async_setup_device_entities", "build_device_info"]
