"""Location mode selector for accounts without an alarm base station."""

from __future__ import annotations

import logging

from homeassistant.components.select import SelectEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import LOCATION_MODES, signal_registry_change
from .runtime import require_runtime

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback
) -> None:
    """Add the location mode selector when the account has no alarm."""

    runtime = require_runtime(hass, entry.entry_id)
    if runtime.registry.alarm_capable:
        _LOGGER.debug("Alarm present; location modes are not available")
        return
    async_add_entities([RingLocationModeSelect(entry.entry_id, runtime.location_id)])


class RingLocationModeSelect(SelectEntity):
    """Read and set the Ring location mode."""

    _attr_has_entity_name = True
    _attr_should_poll = False
    _attr_translation_key = "location_mode"
    _attr_options = list(LOCATION_MODES)

    def __init__(self, entry_id: str, location_id: str) -> None:
        self._entry_id = entry_id
        self._location_id = location_id
        self._attr_unique_id = f"{location_id}_mode"

    async def async_added_to_hass(self) -> None:
        await super().async_added_to_hass()
        self.async_on_remove(
            async_dispatcher_connect(
                self.hass, signal_registry_change(self._entry_id), self._handle_update
            )
        )

    @callback
    def _handle_update(self) -> None:
        self.async_write_ha_state()

    @property
    def current_option(self) -> str | None:
        mode = require_runtime(self.hass, self._entry_id).registry.location_mode
        return mode if mode in LOCATION_MODES else None

    async def async_select_option(self, option: str) -> None:
        """Ask Ring to switch the location mode; the reply updates the state."""

        runtime = require_runtime(self.hass, self._entry_id)
        _LOGGER.info("Setting location mode to %s", option)
        runtime.client.mode_set(self._location_id, option)
