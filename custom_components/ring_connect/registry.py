"""Registry of local device handles mirroring the Ring account."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any

from .backend.sanitize import mask_identifier
from .codecs.ring_codec import (
    EnvelopeKind,
    MalformedPayloadError,
    classify,
    extract_device_updates,
)
from .codecs.ring_models import DeviceUpdate
from .devices import DRIVERS, CameraDevice, VirtualDevice
from .inventory import (
    ALARM_HUB_KIND,
    LIGHT_GROUP_KIND,
    REST_KINDS,
    DeviceKind,
    MissingDriverError,
    UnknownKind,
    resolve_any_kind,
    resolve_kind,
)

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .api import RingRESTClient

_LOGGER = logging.getLogger(__name__)

DeviceCallback = Callable[[VirtualDevice], None]


@dataclass(slots=True)
class RegistryEntry:
    """Cached metadata for one mirrored vendor device."""

    vendor_id: str
    kind: str
    handle: VirtualDevice

    @property
    def name(self) -> str:
        return self.handle.name

    @property
    def source(self) -> str | None:
        return self.handle.hub_id

    def as_dict(self) -> dict[str, Any]:
        """Return the persisted form of the entry."""

        return {
            "vendor_id": self.vendor_id,
            "kind": self.kind,
            "metadata": dict(self.handle.metadata),
        }


@dataclass(frozen=True, slots=True)
class DiscoveredDevice:
    """Device returned by the REST listing for the selected location."""

    vendor_id: str
    kind: str
    name: str
    location_id: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Hub:
    """Hub reachable over the real-time relay."""

    zid: str
    kind: str
    doorbot_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"zid": self.zid, "kind": self.kind, "doorbot_id": self.doorbot_id}


class DeviceRegistry:
    """Own the local device handles and route updates to them."""

    def __init__(
        self,
        client: RingRESTClient | None,
        *,
        drivers: Mapping[str, type[VirtualDevice]] = DRIVERS,
        suppress_missing: bool = False,
        on_created: DeviceCallback | None = None,
        on_updated: DeviceCallback | None = None,
        on_removed: DeviceCallback | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._client = client
        self._drivers = dict(drivers)
        self.suppress_missing = suppress_missing
        self._on_created = on_created
        self._on_updated = on_updated
        self._on_removed = on_removed
        self._on_change = on_change
        self._entries: dict[str, RegistryEntry] = {}
        self._unknown_logged: set[str] = set()
        self._create_pending = False
        self.creatable_hubs: set[str] = set()
        self.hubs: list[Hub] = []
        self.alarm_capable = False
        self.location_mode: str | None = None
        self.snappables: set[str] = set()
        self.catalog: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def __contains__(self, vendor_id: object) -> bool:
        return str(vendor_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, vendor_id: str | int | None) -> VirtualDevice | None:
        """Return the handle for ``vendor_id`` if one exists."""

        if vendor_id is None:
            return None
        entry = self._entries.get(str(vendor_id))
        return entry.handle if entry else None

    @property
    def entries(self) -> list[RegistryEntry]:
        return list(self._entries.values())

    @property
    def devices(self) -> list[VirtualDevice]:
        return [entry.handle for entry in self._entries.values()]

    @property
    def dingables(self) -> list[CameraDevice]:
        """Return the handles that receive motion and ring events."""

        return [
            entry.handle
            for entry in self._entries.values()
            if entry.handle.kind.dingable and isinstance(entry.handle, CameraDevice)
        ]

    @property
    def create_pending(self) -> bool:
        """Return True while a bulk creation pass is pending."""

        return self._create_pending

    @property
    def websocket_capable(self) -> bool:
        """Return True when a hub kind enables the real-time relay."""

        return bool(self.creatable_hubs)

    def hub_kind(self, zid: str | None) -> str | None:
        """Return the kind of the hub identified by ``zid``."""

        for hub in self.hubs:
            if hub.zid == zid:
                return hub.kind
        return None

    # ------------------------------------------------------------------
    # Discovery and creation
    # ------------------------------------------------------------------
    async def discover(
        self,
        location_id: str,
        *,
        selected: Iterable[str | int] | None = None,
    ) -> list[DiscoveredDevice]:
        """List supported devices at ``location_id``.

        Hub kinds are not returned; they enable the real-time relay instead
        and their children are created from the relay's device list.
        """

        if self._client is None:
            raise RuntimeError("Device discovery requires a REST client")
        wanted = {str(item) for item in selected} if selected is not None else None
        listing = await self._client.devices()
        self.creatable_hubs.clear()
        self.alarm_capable = False
        self.catalog.clear()
        discovered: list[DiscoveredDevice] = []
        for node in listing:
            kind = node.get("kind")
            descriptor = resolve_kind(kind, REST_KINDS)
            if isinstance(descriptor, UnknownKind):
                self._log_unknown(descriptor)
                continue
            if str(node.get("location_id")) != str(location_id):
                continue
            vendor_id = str(node.get("id"))
            name = f"{descriptor.name} - {node.get('description') or vendor_id}"
            self.catalog[vendor_id] = name
            if wanted is not None and vendor_id not in wanted:
                continue
            if descriptor.hub:
                self.creatable_hubs.add(descriptor.kind)
                if descriptor.kind == ALARM_HUB_KIND:
                    self.alarm_capable = True
                _LOGGER.info(
                    "Found %s %s; enabling real-time updates",
                    descriptor.name,
                    mask_identifier(vendor_id),
                )
                continue
            discovered.append(
                DiscoveredDevice(
                    vendor_id=vendor_id,
                    kind=descriptor.kind,
                    name=name,
                    location_id=node.get("location_id"),
                    raw=dict(node),
                )
            )
        self._changed()
        return discovered

    def add_devices(self, discovered: Iterable[DiscoveredDevice]) -> list[VirtualDevice]:
        """Create handles for discovered REST devices."""

        created: list[VirtualDevice] = []
        for item in discovered:
            handle = self.ensure_device(
                item.vendor_id,
                item.kind,
                {
                    "name": item.raw.get("description") or item.name,
                    "firmware": item.raw.get("firmware_version"),
                    "location_id": item.location_id,
                },
                table=REST_KINDS,
            )
            if handle is not None:
                created.append(handle)
        return created

    def ensure_device(
        self,
        vendor_id: str | int | None,
        kind: str | None,
        metadata: Mapping[str, Any] | None = None,
        *,
        table: Mapping[str, DeviceKind] | None = None,
    ) -> VirtualDevice | None:
        """Return the handle for ``vendor_id``, creating it on first sight."""

        if vendor_id is None:
            _LOGGER.debug("Not creating %s device without an identifier", kind)
            return None
        key = str(vendor_id)
        metadata = dict(metadata or {})
        existing = self._entries.get(key)
        if existing is not None:
            if existing.handle.update_metadata(metadata):
                self._changed()
            return existing.handle

        descriptor = (
            resolve_kind(kind, table) if table is not None else resolve_any_kind(kind)
        )
        if isinstance(descriptor, UnknownKind):
            self._log_unknown(descriptor)
            return None
        if not descriptor.creatable:
            _LOGGER.debug("Not a creatable device: %s", descriptor.kind)
            return None

        src = metadata.get("src")
        if not descriptor.hub and src is not None:
            parent_kind = self.hub_kind(src)
            if parent_kind not in self.creatable_hubs:
                _LOGGER.debug(
                    "Not creating %s because parent %s is not creatable",
                    metadata.get("name") or descriptor.name,
                    parent_kind,
                )
                return None

        driver = str(descriptor.driver)
        device_cls = self._drivers.get(driver)
        if device_cls is None:
            _LOGGER.error("%s", MissingDriverError(driver, descriptor.kind))
            return None

        handle = device_cls(key, descriptor, metadata, on_update=self._device_updated)
        self._entries[key] = RegistryEntry(key, descriptor.kind, handle)
        _LOGGER.info(
            "Created %s (%s) for %s",
            descriptor.name,
            descriptor.kind,
            mask_identifier(key),
        )
        if self._on_created is not None:
            self._on_created(handle)
        self._changed()
        return handle

    def delete_device(self, vendor_id: str | int, *, notify_removed: bool = True) -> bool:
        """Remove the handle for ``vendor_id``; return True when removed.

        ``notify_removed=False`` skips the removal callback, for removals that
        Home Assistant started itself.
        """

        entry = self._entries.pop(str(vendor_id), None)
        if entry is None:
            _LOGGER.debug("No device %s to delete", mask_identifier(str(vendor_id)))
            return False
        self.snappables.discard(entry.vendor_id)
        if notify_removed and self._on_removed is not None:
            try:
                self._on_removed(entry.handle)
            except Exception:  # noqa: BLE001 - removal errors are reported only
                _LOGGER.exception(
                    "Error removing device %s", mask_identifier(entry.vendor_id)
                )
        self._changed()
        return True

    def request_bulk_creation(self) -> None:
        """Create every device reported by the next device list."""

        self._create_pending = True

    # ------------------------------------------------------------------
    # Real-time routing
    # ------------------------------------------------------------------
    def set_hubs_from_assets(self, assets: Iterable[Any]) -> None:
        """Replace the hub list from ticket assets of creatable kinds."""

        hubs: list[Hub] = []
        for asset in assets:
            kind = getattr(asset, "kind", None)
            uuid = getattr(asset, "uuid", None)
            if kind not in self.creatable_hubs or uuid is None:
                continue
            doorbot_id = getattr(asset, "doorbot_id", None)
            hubs.append(
                Hub(
                    zid=str(uuid),
                    kind=kind,
                    doorbot_id=str(doorbot_id) if doorbot_id is not None else None,
                )
            )
        self.hubs = hubs
        self._changed()

    def apply_event(self, event: str | None, payload: Any) -> EnvelopeKind:
        """Apply one decoded real-time event and return its envelope kind."""

        kind = classify(event, payload)
        records: list[DeviceUpdate] = []
        try:
            if kind is EnvelopeKind.DATA_UPDATE:
                if self._from_creatable_hub(payload):
                    records = extract_device_updates(payload)
            elif kind is EnvelopeKind.DEVICE_LIST:
                if self._from_creatable_hub(payload):
                    records = extract_device_updates(payload)
                    self._ensure_reporting_hub(payload)
            elif kind is EnvelopeKind.ACK:
                self._log_ack(payload)
            elif kind is EnvelopeKind.IGNORED:
                _LOGGER.debug("Ignoring %s message", payload.get("msg"))
            elif kind is EnvelopeKind.UNKNOWN:
                _LOGGER.warning(
                    "Unhandled real-time message %s: %s", event, _preview(payload)
                )
        except MalformedPayloadError as err:
            _LOGGER.warning("Dropping malformed %s message: %s", event, err)
            records = []
        self._process_batch(records)
        return kind

    def route_update(self, vendor_id: str | None, record: DeviceUpdate) -> bool:
        """Deliver ``record`` to ``vendor_id``; return False when dropped."""

        handle = self.get(vendor_id)
        if handle is None:
            if not self.suppress_missing:
                _LOGGER.warning(
                    "Could not find device %s of type %s with zid %s",
                    record.display_name,
                    record.device_type,
                    mask_identifier(record.zid),
                )
            return False
        handle.apply_update(record)
        return True

    def route_passthru(self, record: DeviceUpdate) -> bool:
        """Deliver a passthrough record by ``zid``."""

        handle = self.get(record.zid)
        if handle is None:
            if not self.suppress_missing:
                _LOGGER.warning(
                    "Could not find device %s for passthru", mask_identifier(record.zid)
                )
            return False
        handle.apply_passthru(record)
        return True

    def _from_creatable_hub(self, payload: Mapping[str, Any]) -> bool:
        context = payload.get("context")
        asset_kind = context.get("assetKind") if isinstance(context, Mapping) else None
        if asset_kind in self.creatable_hubs:
            return True
        _LOGGER.debug("Discarding %s from hub kind %s", payload.get("msg"), asset_kind)
        return False

    def _ensure_reporting_hub(self, payload: Mapping[str, Any]) -> None:
        context = payload["context"]
        asset_id = context.get("assetId")
        if asset_id is None or str(asset_id) in self._entries:
            return
        self.ensure_device(
            asset_id,
            context.get("assetKind"),
            {"src": payload.get("src")},
        )
        self._create_pending = True

    def _process_batch(self, records: list[DeviceUpdate]) -> None:
        deferred: list[DeviceUpdate] = []
        for record in records:
            if record.passthru or record.msg == "Passthru":
                self.route_passthru(record)
                continue
            if record.device_type == LIGHT_GROUP_KIND:
                deferred.append(record)
                continue
            if self._create_pending:
                self._create_from_record(record)
            self._deliver(record)
        # Groups reference their member lights.
        for record in deferred:
            if self._create_pending:
                self._create_from_record(record)
            self._deliver(record)
        self._create_pending = False

    def _create_from_record(self, record: DeviceUpdate) -> None:
        if record.device_type is None:
            return
        self.ensure_device(
            record.zid,
            record.device_type,
            {
                "name": record.display_name,
                "src": record.src,
                "fingerprint": record.fingerprint,
                "manufacturer": record.manufacturer_name,
                "serial": record.serial_number,
            },
        )

    def _deliver(self, record: DeviceUpdate) -> None:
        if record.device_type is None:
            _LOGGER.debug("No device type on %s record", record.msg)
            return
        descriptor = resolve_any_kind(record.device_type)
        if isinstance(descriptor, UnknownKind):
            _LOGGER.debug("Unsupported device type %s", descriptor)
            return
        target = record.asset_id if descriptor.hidden else record.zid
        self.route_update(target, record)

    def _log_ack(self, payload: Mapping[str, Any]) -> None:
        msg = payload.get("msg")
        if payload.get("status") == 0:
            _LOGGER.debug("%s with seq %s succeeded", msg, payload.get("seq"))
        else:
            _LOGGER.warning(
                "%s with seq %s failed: %s", msg, payload.get("seq"), _preview(payload)
            )

    # ------------------------------------------------------------------
    # REST results, dings and webhooks
    # ------------------------------------------------------------------
    def handle_response(
        self, operation: str, params: Mapping[str, Any], result: Any
    ) -> None:
        """Deliver the result of a dispatched REST operation."""

        if operation == "refresh":
            for info in result or ():
                if not isinstance(info, Mapping):
                    continue
                handle = self.get(info.get("id"))
                if handle is not None:
                    handle.apply_response(operation, info)
        elif operation == "dings":
            self.handle_dings(result)
        elif operation in ("device-control", "device-set"):
            handle = self.get(params.get("device_id"))
            if handle is None:
                _LOGGER.debug("No device for %s result", operation)
                return
            handle.apply_response(operation, result)
        elif operation in ("mode-set", "mode-get"):
            mode = result.get("mode") if isinstance(result, Mapping) else None
            if mode is None:
                _LOGGER.debug("%s returned no mode", operation)
                return
            if mode != self.location_mode:
                _LOGGER.info("Mode set to %s", str(mode).capitalize())
            self.location_mode = mode
            self._changed()
        elif operation in ("snapshot-update", "history", "snapshot-timestamps"):
            _LOGGER.debug("%s successful", operation)
        else:
            _LOGGER.error("Unhandled response for %s", operation)

    def handle_dings(self, dings: Iterable[Any] | None) -> None:
        """Give every dingable handle its active ding, or ``None``."""

        by_device: dict[str, Mapping[str, Any]] = {}
        for ding in dings or ():
            if isinstance(ding, Mapping) and ding.get("doorbot_id") is not None:
                by_device[str(ding["doorbot_id"])] = ding
        for handle in self.dingables:
            handle.apply_ding(by_device.get(handle.vendor_id))

    def handle_ifttt(self, body_text: str) -> bool:
        """Apply a webhook notification; return False for malformed JSON."""

        try:
            data = json.loads(body_text)
        except ValueError:
            _LOGGER.error("JSON received from IFTTT is invalid: %s", body_text)
            return False
        if not isinstance(data, Mapping):
            _LOGGER.error("JSON received from IFTTT is not an object: %s", body_text)
            return False
        kind = data.get("kind")
        handle = self.get(data.get("id"))
        _LOGGER.debug("IFTTT %s for %s", kind, mask_identifier(str(data.get("id"))))
        if handle is None or kind not in ("motion", "ding"):
            return True
        handle.apply_ding({"kind": kind, "doorbot_id": handle.vendor_id, "source": "ifttt"})
        return True

    def set_snapshot_devices(self, device_ids: Iterable[str | int]) -> None:
        """Choose which cameras take part in snapshot polling."""

        self.snappables = {
            str(device_id)
            for device_id in device_ids
            if isinstance(self.get(device_id), CameraDevice)
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def as_dict(self) -> dict[str, Any]:
        """Return the persisted registry state."""

        return {
            "entries": [entry.as_dict() for entry in self._entries.values()],
            "hubs": [hub.as_dict() for hub in self.hubs],
            "creatable_hubs": sorted(self.creatable_hubs),
            "alarm_capable": self.alarm_capable,
            "location_mode": self.location_mode,
            "snappables": sorted(self.snappables),
        }

    def restore(self, data: Mapping[str, Any] | None) -> None:
        """Recreate handles and hub state from :meth:`as_dict` output."""

        if not data:
            return
        self.creatable_hubs = set(data.get("creatable_hubs") or ())
        self.hubs = [
            Hub(str(item["zid"]), str(item["kind"]), item.get("doorbot_id"))
            for item in data.get("hubs") or ()
            if isinstance(item, Mapping) and item.get("zid") and item.get("kind")
        ]
        self.alarm_capable = bool(data.get("alarm_capable"))
        self.location_mode = data.get("location_mode")
        for item in data.get("entries") or ():
            if not isinstance(item, Mapping):
                continue
            metadata = dict(item.get("metadata") or {})
            # Parent checks ran when the entry was first created.
            src = metadata.pop("src", None)
            handle = self.ensure_device(item.get("vendor_id"), item.get("kind"), metadata)
            if handle is not None and src is not None:
                handle.metadata["src"] = src
        self.set_snapshot_devices(data.get("snappables") or ())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _log_unknown(self, kind: UnknownKind) -> None:
        key = str(kind)
        if key in self._unknown_logged:
            return
        self._unknown_logged.add(key)
        _LOGGER.warning("Unsupported device kind %s", key)

    def _device_updated(self, handle: VirtualDevice) -> None:
        if self._on_updated is not None:
            self._on_updated(handle)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()


def _preview(payload: Any, limit: int = 200) -> str:
    text = str(payload)
    return text if len(text) <= limit else text[:limit] + "..."


__all__ = [
    "DeviceRegistry",
    "DiscoveredDevice",
    "Hub",
    "RegistryEntry",
]
