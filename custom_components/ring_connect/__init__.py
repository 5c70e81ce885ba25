"""Home Assistant entry point for the Ring Connect integration."""

from __future__ import annotations

import logging
from typing import Any, Final

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import (
    CONF_PASSWORD,
    CONF_USERNAME,
    EVENT_HOMEASSISTANT_STOP,
)
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import ConfigEntryAuthFailed, ConfigEntryNotReady
from homeassistant.helpers import aiohttp_client, device_registry as dr
from homeassistant.helpers.dispatcher import async_dispatcher_send
from homeassistant.helpers.storage import Store

from .api import RingRequestError, RingRESTClient
from .backend.sanitize import mask_identifier
from .backend.ws_client import RingWebSocketClient
from .const import (
    CONF_DING_INTERVAL,
    CONF_DING_POLLING,
    CONF_HARDWARE_ID,
    CONF_LOCATION_ID,
    CONF_REFRESH_TOKEN,
    CONF_SELECTED_DEVICES,
    CONF_SNAPSHOT_INTERVAL,
    CONF_SNAPSHOT_POLLING,
    CONF_SUPPRESS_MISSING,
    CONF_TWO_FACTOR,
    CONF_WEBHOOK_TOKEN,
    DEFAULT_DING_INTERVAL,
    DEFAULT_SNAPSHOT_INTERVAL,
    DOMAIN,
    STORAGE_VERSION,
    signal_device_update,
    signal_new_device,
    signal_registry_change,
    signal_ws_status,
    storage_key,
)
from .devices import VirtualDevice
from .http import async_register_views
from .poller import DingPoller, SnapshotPoller
from .registry import DeviceRegistry
from .runtime import EntryRuntime, require_runtime
from .services.device_commands import (
    async_register_device_services,
    async_remove_device_services,
)
from .session import (
    AuthStatus,
    CredentialState,
    RingAuthError,
    RingAuthSession,
    RingRateLimitError,
    RingRequestsHeld,
    RingTwoFactorRequired,
)
from .snapshots import SnapshotCache

_LOGGER = logging.getLogger(__name__)

PLATFORMS = ["binary_sensor", "select", "sensor"]

SAVE_DELAY: Final = 5

_NOT_READY_REASONS: Final = frozenset({"rate_limited", "cannot_connect", "invalid_response"})


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up the Ring Connect integration for a config entry."""

    session = aiohttp_client.async_get_clientsession(hass)
    options = entry.options
    location_id = str(entry.data[CONF_LOCATION_ID])
    store: Store[dict[str, Any]] = Store(
        hass, STORAGE_VERSION, storage_key(entry.entry_id)
    )
    stored = await store.async_load() or {}

    @callback
    def _persist_credentials(creds: CredentialState) -> None:
        """Write the rotated refresh token and hardware id back to the entry."""

        data = {
            **entry.data,
            CONF_HARDWARE_ID: creds.hardware_id,
            CONF_REFRESH_TOKEN: creds.refresh_token,
        }
        if data != dict(entry.data):
            hass.config_entries.async_update_entry(entry, data=data)

    auth = RingAuthSession(
        session,
        entry.data[CONF_USERNAME],
        entry.data[CONF_PASSWORD],
        credentials=CredentialState.from_dict(
            {
                "hardware_id": entry.data.get(CONF_HARDWARE_ID),
                "refresh_token": entry.data.get(CONF_REFRESH_TOKEN),
            }
        ),
        two_factor_enabled=bool(entry.data.get(CONF_TWO_FACTOR, True)),
        on_change=_persist_credentials,
    )
    client = RingRESTClient(session, auth)
    snapshots = SnapshotCache()

    def _data_to_save() -> dict[str, Any]:
        return {"registry": registry.as_dict(), "snapshots": snapshots.as_dict()}

    @callback
    def _save_state() -> None:
        store.async_delay_save(_data_to_save, SAVE_DELAY)

    @callback
    def _on_created(handle: VirtualDevice) -> None:
        _LOGGER.debug("Created %s %s", handle.kind.name, mask_identifier(handle.vendor_id))
        async_dispatcher_send(hass, signal_new_device(entry.entry_id), handle)
        _save_state()

    @callback
    def _on_updated(handle: VirtualDevice) -> None:
        async_dispatcher_send(hass, signal_device_update(entry.entry_id), handle.vendor_id)

    @callback
    def _on_removed(handle: VirtualDevice) -> None:
        device_registry = dr.async_get(hass)
        device = device_registry.async_get_device(
            identifiers={(DOMAIN, handle.vendor_id)}
        )
        if device is not None:
            device_registry.async_update_device(
                device.id, remove_config_entry_id=entry.entry_id
            )
        _save_state()

    @callback
    def _on_registry_change() -> None:
        async_dispatcher_send(hass, signal_registry_change(entry.entry_id))
        _save_state()

    registry = DeviceRegistry(
        client,
        suppress_missing=bool(options.get(CONF_SUPPRESS_MISSING, False)),
        on_created=_on_created,
        on_updated=_on_updated,
        on_removed=_on_removed,
        on_change=_on_registry_change,
    )
    client.set_response_handler(registry.handle_response)
    runtime = EntryRuntime(
        config_entry=entry,
        auth=auth,
        client=client,
        registry=registry,
        snapshots=snapshots,
        location_id=location_id,
        webhook_token=entry.data.get(CONF_WEBHOOK_TOKEN),
        save_state=_save_state,
    )

    registry.restore(stored.get("registry"))
    snapshots.restore(stored.get("snapshots"))

    try:
        await _async_connect(runtime, options.get(CONF_SELECTED_DEVICES))
    except Exception:
        await runtime.async_shutdown()
        raise

    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = runtime

    async def _async_handle_hass_stop(_event: Any) -> None:
        """Stop background activity gracefully when Home Assistant stops."""

        await runtime.async_shutdown()

    entry.async_on_unload(
        hass.bus.async_listen_once(EVENT_HOMEASSISTANT_STOP, _async_handle_hass_stop)
    )

    applied_options = dict(entry.options)

    async def _async_options_updated(hass: HomeAssistant, updated: ConfigEntry) -> None:
        # Credential rotation also fires update listeners.
        if dict(updated.options) == applied_options:
            return
        _LOGGER.debug("Options changed; reloading entry")
        await hass.config_entries.async_reload(updated.entry_id)

    entry.async_on_unload(entry.add_update_listener(_async_options_updated))

    async_register_views(hass)
    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    await async_register_device_services(hass)

    if registry.websocket_capable:
        _start_ws(hass, entry, runtime)
    if not registry.alarm_capable:
        client.mode_get(location_id)
    _start_pollers(hass, entry, runtime)

    _LOGGER.info(
        "Ring Connect setup complete for location %s (%d devices)",
        mask_identifier(location_id),
        len(registry),
    )
    return True


async def _async_connect(runtime: EntryRuntime, selected: list[str] | None) -> None:
    """Authenticate, register the session and discover devices."""

    auth = runtime.auth
    result = await auth.authenticate()
    if result.status is AuthStatus.CHALLENGE:
        raise ConfigEntryAuthFailed("Ring requires a new two-factor verification")
    if not result.ok:
        if result.reason in _NOT_READY_REASONS:
            raise ConfigEntryNotReady(f"Ring authentication failed: {result.reason}")
        raise ConfigEntryAuthFailed(f"Ring rejected the credentials: {result.reason}")

    registry = runtime.registry
    try:
        await auth.create_session()
        discovered = await registry.discover(
            runtime.location_id, selected=selected or None
        )
    except (RingAuthError, RingTwoFactorRequired) as err:
        raise ConfigEntryAuthFailed from err
    except (RingRateLimitError, RingRequestsHeld, RingRequestError) as err:
        raise ConfigEntryNotReady from err

    registry.add_devices(discovered)
    registry.set_snapshot_devices(item.vendor_id for item in discovered)


def _start_ws(hass: HomeAssistant, entry: ConfigEntry, runtime: EntryRuntime) -> None:
    """Create and start the real-time client for the entry's location."""

    @callback
    def _on_status(status: str, snapshot: Any) -> None:
        runtime.ws_state = dict(snapshot)
        async_dispatcher_send(hass, signal_ws_status(entry.entry_id), runtime.ws_state)

    ws_client = RingWebSocketClient(
        aiohttp_client.async_get_clientsession(hass),
        runtime.client,
        runtime.registry,
        location_id=runtime.location_id,
        on_status=_on_status,
        loop=hass.loop,
    )
    runtime.ws_client = ws_client
    if ws_client.initialize():
        _LOGGER.info("WS: started real-time client")


def _start_pollers(hass: HomeAssistant, entry: ConfigEntry, runtime: EntryRuntime) -> None:
    """Start ding and snapshot polling as configured in the entry options."""

    options = entry.options
    registry = runtime.registry
    if options.get(CONF_DING_POLLING, True) and registry.dingables:
        runtime.ding_poller = DingPoller(
            hass,
            runtime.client,
            registry,
            options.get(CONF_DING_INTERVAL, DEFAULT_DING_INTERVAL),
        )
        runtime.ding_poller.start()

    if options.get(CONF_SNAPSHOT_POLLING, False) and registry.snappables:

        @callback
        def _on_stored(device_id: str) -> None:
            async_dispatcher_send(hass, signal_device_update(entry.entry_id), device_id)
            if runtime.save_state is not None:
                runtime.save_state()

        runtime.snapshot_poller = SnapshotPoller(
            hass,
            runtime.client,
            registry,
            runtime.snapshots,
            int(options.get(CONF_SNAPSHOT_INTERVAL, DEFAULT_SNAPSHOT_INTERVAL)),
            on_stored=_on_stored,
        )
        runtime.snapshot_poller.start()


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry and stop its background tasks."""

    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if not unload_ok:
        return False
    runtime = hass.data.get(DOMAIN, {}).pop(entry.entry_id, None)
    if isinstance(runtime, EntryRuntime):
        await runtime.async_shutdown()
    if not any(
        isinstance(record, EntryRuntime) for record in hass.data.get(DOMAIN, {}).values()
    ):
        async_remove_device_services(hass)
    return True


async def async_remove_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Drop the persisted registry and snapshots of a removed entry."""

    await Store(hass, STORAGE_VERSION, storage_key(entry.entry_id)).async_remove()


async def async_remove_config_entry_device(
    hass: HomeAssistant, entry: ConfigEntry, device_entry: dr.DeviceEntry
) -> bool:
    """Forget a device the user deleted from the device page."""

    vendor_ids = [
        identifier
        for domain, identifier in device_entry.identifiers
        if domain == DOMAIN
    ]
    if not vendor_ids:
        return False
    try:
        runtime = require_runtime(hass, entry.entry_id)
    except LookupError:
        return True
    for vendor_id in vendor_ids:
        if runtime.registry.delete_device(vendor_id, notify_removed=False):
            _LOGGER.info("Removed device %s on request", mask_identifier(vendor_id))
    return True
