"""Services that send relay commands and REST device controls."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
import logging
from typing import TYPE_CHECKING, Any, Final

from homeassistant.core import HomeAssistant, ServiceCall
import homeassistant.helpers.config_validation as cv
import voluptuous as vol

from custom_components.ring_connect.const import DOMAIN, LOCATION_MODES
from custom_components.ring_connect.runtime import EntryRuntime

if TYPE_CHECKING:  # pragma: no cover - typing only
    from custom_components.ring_connect.backend.ws_client import RingWebSocketClient

_LOGGER = logging.getLogger(__name__)

ATTR_ENTRY_ID: Final = "entry_id"
ATTR_ZID: Final = "zid"
ATTR_DST: Final = "dst"

SERVICE_SET_MODE: Final = "set_mode"
SERVICE_REFRESH: Final = "refresh"
SERVICE_CREATE_DEVICES: Final = "create_devices"
SERVICE_SEND_COMMAND: Final = "send_command"
SERVICE_SEND_DEVICE: Final = "send_device"
SERVICE_REQUEST_SYSINFO: Final = "request_sysinfo"
SERVICE_REQUEST_MANAGER: Final = "request_manager"
SERVICE_FIND_DEVICE: Final = "find_device"
SERVICE_DEVICE_CONTROL: Final = "device_control"

_ENTRY = {vol.Optional(ATTR_ENTRY_ID): cv.string}

SET_MODE_SCHEMA: Final = vol.Schema(
    {
        **_ENTRY,
        vol.Required("mode"): vol.All(cv.string, vol.Lower, vol.In(LOCATION_MODES)),
    }
)
HUB_SCHEMA: Final = vol.Schema({**_ENTRY, vol.Optional(ATTR_ZID): cv.string})
SEND_COMMAND_SCHEMA: Final = vol.Schema(
    {
        **_ENTRY,
        vol.Required(ATTR_ZID): cv.string,
        vol.Optional(ATTR_DST): cv.string,
        vol.Required("command_type"): cv.string,
        vol.Optional("data", default=dict): dict,
    }
)
SEND_DEVICE_SCHEMA: Final = vol.Schema(
    {
        **_ENTRY,
        vol.Required(ATTR_ZID): cv.string,
        vol.Optional(ATTR_DST): cv.string,
        vol.Required("data"): dict,
    }
)
DST_SCHEMA: Final = vol.Schema({**_ENTRY, vol.Required(ATTR_DST): cv.string})
FIND_DEVICE_SCHEMA: Final = vol.Schema(
    {
        **_ENTRY,
        vol.Required(ATTR_DST): cv.string,
        vol.Required("adapter_id"): cv.string,
    }
)
DEVICE_CONTROL_SCHEMA: Final = vol.Schema(
    {
        **_ENTRY,
        vol.Required("kind"): cv.string,
        vol.Required("device_id"): cv.string,
        vol.Optional("action"): cv.string,
        vol.Optional("method", default="post"): vol.In(["post", "put"]),
        vol.Optional("query", default=dict): dict,
        vol.Optional("body"): object,
    }
)

SERVICES: Final = (
    SERVICE_SET_MODE,
    SERVICE_REFRESH,
    SERVICE_CREATE_DEVICES,
    SERVICE_SEND_COMMAND,
    SERVICE_SEND_DEVICE,
    SERVICE_REQUEST_SYSINFO,
    SERVICE_REQUEST_MANAGER,
    SERVICE_FIND_DEVICE,
    SERVICE_DEVICE_CONTROL,
)

RuntimeHandler = Callable[[EntryRuntime, Mapping[str, Any]], Awaitable[None]]


def _target_runtimes(hass: HomeAssistant, call: ServiceCall) -> list[EntryRuntime]:
    """Return the runtimes a service call applies to."""

    records = hass.data.get(DOMAIN, {})
    if not isinstance(records, Mapping):
        return []
    entry_filter = call.data.get(ATTR_ENTRY_ID)
    if entry_filter:
        record = records.get(entry_filter)
        return [record] if isinstance(record, EntryRuntime) else []
    return [rec for rec in records.values() if isinstance(rec, EntryRuntime)]


def _relay(runtime: EntryRuntime, service: str) -> RingWebSocketClient | None:
    """Return the entry's relay client, or None when it is not running."""

    client = runtime.ws_client
    if client is None:
        _LOGGER.warning(
            "%s: no real-time connection for location %s", service, runtime.location_id
        )
    return client


async def _set_mode(runtime: EntryRuntime, data: Mapping[str, Any]) -> None:
    if runtime.registry.alarm_capable:
        _LOGGER.error(
            "set_mode is not supported; the account has an alarm, use alarm modes instead"
        )
        return
    runtime.client.mode_set(runtime.location_id, data["mode"])


async def _refresh(runtime: EntryRuntime, data: Mapping[str, Any]) -> None:
    if (client := _relay(runtime, SERVICE_REFRESH)) is not None:
        await client.refresh(data.get(ATTR_ZID))


async def _create_devices(runtime: EntryRuntime, data: Mapping[str, Any]) -> None:
    if (client := _relay(runtime, SERVICE_CREATE_DEVICES)) is not None:
        await client.create_devices(data.get(ATTR_ZID))


async def _send_command(runtime: EntryRuntime, data: Mapping[str, Any]) -> None:
    if (client := _relay(runtime, SERVICE_SEND_COMMAND)) is not None:
        await client.send_command(
            data[ATTR_ZID], data.get(ATTR_DST), data["command_type"], data.get("data")
        )


async def _send_device(runtime: EntryRuntime, data: Mapping[str, Any]) -> None:
    if (client := _relay(runtime, SERVICE_SEND_DEVICE)) is not None:
        await client.send_device(data[ATTR_ZID], data.get(ATTR_DST), data["data"])


async def _request_sysinfo(runtime: EntryRuntime, data: Mapping[str, Any]) -> None:
    if (client := _relay(runtime, SERVICE_REQUEST_SYSINFO)) is not None:
        await client.request_sysinfo(data[ATTR_DST])


async def _request_manager(runtime: EntryRuntime, data: Mapping[str, Any]) -> None:
    if (client := _relay(runtime, SERVICE_REQUEST_MANAGER)) is not None:
        await client.request_manager(data[ATTR_DST])


async def _find_device(runtime: EntryRuntime, data: Mapping[str, Any]) -> None:
    if (client := _relay(runtime, SERVICE_FIND_DEVICE)) is not None:
        await client.find_device(data[ATTR_DST], data["adapter_id"])


async def _device_control(runtime: EntryRuntime, data: Mapping[str, Any]) -> None:
    if data.get("method") != "put" and not data.get("action"):
        _LOGGER.error("device_control: an action is required for POST requests")
        return
    send = (
        runtime.client.device_set
        if data.get("method") == "put"
        else runtime.client.device_control
    )
    send(
        data["kind"],
        data["device_id"],
        data.get("action"),
        query=data.get("query"),
        body=data.get("body"),
    )


_HANDLERS: Final[dict[str, tuple[RuntimeHandler, vol.Schema]]] = {
    SERVICE_SET_MODE: (_set_mode, SET_MODE_SCHEMA),
    SERVICE_REFRESH: (_refresh, HUB_SCHEMA),
    SERVICE_CREATE_DEVICES: (_create_devices, HUB_SCHEMA),
    SERVICE_SEND_COMMAND: (_send_command, SEND_COMMAND_SCHEMA),
    SERVICE_SEND_DEVICE: (_send_device, SEND_DEVICE_SCHEMA),
    SERVICE_REQUEST_SYSINFO: (_request_sysinfo, DST_SCHEMA),
    SERVICE_REQUEST_MANAGER: (_request_manager, DST_SCHEMA),
    SERVICE_FIND_DEVICE: (_find_device, FIND_DEVICE_SCHEMA),
    SERVICE_DEVICE_CONTROL: (_device_control, DEVICE_CONTROL_SCHEMA),
}


async def async_register_device_services(hass: HomeAssistant) -> None:
    """Register the device command services that are still missing."""

    for service, (handler, schema) in _HANDLERS.items():
        if hass.services.has_service(DOMAIN, service):
            continue

        async def _async_handle(call: ServiceCall, handler=handler) -> None:
            runtimes = _target_runtimes(hass, call)
            if not runtimes:
                _LOGGER.debug("%s: no matching config entries", call.service)
                return
            for runtime in runtimes:
                await handler(runtime, call.data)

        hass.services.async_register(DOMAIN, service, _async_handle, schema=schema)


def async_remove_device_services(hass: HomeAssistant) -> None:
    """Remove the services once no entry is loaded."""

    for service in SERVICES:
        hass.services.async_remove(DOMAIN, service)
