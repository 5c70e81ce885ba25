"""Decode Ring real-time frames and project envelopes onto flat records."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
import json
import logging
from typing import Any, Final

from pydantic import ValidationError

from ..const import MESSAGE_PREFIX, WS_PING, WS_PONG
from .ring_models import DeviceUpdate

_LOGGER = logging.getLogger(__name__)

IGNORED_MSG_TYPES: Final = frozenset({"SessionInfo", "SubscriptionTopicsInfo"})

_CONTEXT_KEYS: Final = (
    ("accountId", "account_id"),
    ("affectedEntityType", "affected_entity_type"),
    ("affectedEntityId", "affected_entity_id"),
    ("affectedEntityName", "affected_entity_name"),
    ("assetId", "asset_id"),
    ("assetKind", "asset_kind"),
    ("eventOccurredTsMs", "event_occurred_ts_ms"),
    ("eventLevel", "level"),
)

_GENERAL_KEYS: Final = (
    ("acStatus", "ac_status"),
    ("adapterType", "adapter_type"),
    ("batteryLevel", "battery_level"),
    ("batteryStatus", "battery_status"),
    ("deviceType", "device_type"),
    ("fingerprint", "fingerprint"),
    ("lastUpdate", "last_update"),
    ("lastCommTime", "last_comm_time"),
    ("manufacturerName", "manufacturer_name"),
    ("name", "name"),
    ("nextExpectedWakeup", "next_expected_wakeup"),
    ("roomId", "room_id"),
    ("serialNumber", "serial_number"),
    ("tamperStatus", "tamper_status"),
    ("zid", "zid"),
    ("componentDevices", "component_devices"),
)


class MalformedPayloadError(ValueError):
    """Raised when an inbound payload cannot be decoded."""


class FrameKind(StrEnum):
    """Transport level classification of a socket frame."""

    PING = "ping"
    PONG = "pong"
    EVENT = "event"
    OTHER = "other"


class EnvelopeKind(StrEnum):
    """Known real-time envelope kinds."""

    DATA_UPDATE = "data_update"
    DEVICE_LIST = "device_list"
    ACK = "ack"
    DISCONNECT = "disconnect"
    IGNORED = "ignored"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class Frame:
    """A decoded socket frame."""

    kind: FrameKind
    raw: str
    event: str | None = None
    payload: Any = None


def decode_frame(text: str) -> Frame:
    """Decode one text frame received from the socket."""

    if text == WS_PING:
        return Frame(FrameKind.PING, text)
    if text == WS_PONG:
        return Frame(FrameKind.PONG, text)
    if not text.startswith(MESSAGE_PREFIX):
        return Frame(FrameKind.OTHER, text)
    try:
        decoded = json.loads(text[len(MESSAGE_PREFIX) :])
    except ValueError as err:
        raise MalformedPayloadError(f"invalid JSON in frame: {err}") from err
    if not isinstance(decoded, list) or not decoded or not isinstance(decoded[0], str):
        raise MalformedPayloadError("frame is not an [event, payload] array")
    payload = decoded[1] if len(decoded) > 1 else None
    return Frame(FrameKind.EVENT, text, decoded[0], payload)


def encode_event(event: str, payload: Any) -> str:
    """Serialise ``[event, payload]`` as a prefixed data frame."""

    return MESSAGE_PREFIX + json.dumps([event, payload], separators=(",", ":"))


def classify(event: str | None, payload: Any) -> EnvelopeKind:
    """Return the envelope kind for a decoded event."""

    if event == "disconnect":
        return EnvelopeKind.DISCONNECT
    if not isinstance(payload, Mapping):
        return EnvelopeKind.UNKNOWN
    msg = payload.get("msg")
    if msg in IGNORED_MSG_TYPES:
        return EnvelopeKind.IGNORED
    if event == "DataUpdate":
        return EnvelopeKind.DATA_UPDATE
    if event == "message":
        if msg == "DeviceInfoDocGetList" and payload.get("datatype") == "DeviceInfoDocType":
            return EnvelopeKind.DEVICE_LIST
        if msg in ("DeviceInfoSet", "SetKeychainValue"):
            return EnvelopeKind.ACK
    return EnvelopeKind.UNKNOWN


def _mapping(value: Any) -> Mapping[str, Any] | None:
    return value if isinstance(value, Mapping) else None


def _dig(value: Any, *path: str) -> Any:
    current = value
    for key in path:
        current = _mapping(current)
        if current is None:
            return None
        current = current.get(key)
    return current


def _copy_keys(
    source: Mapping[str, Any],
    keys: tuple[tuple[str, str], ...],
    target: dict[str, Any],
) -> None:
    for wire_key, field_name in keys:
        value = source.get(wire_key)
        if value is not None:
            target[field_name] = value


def _envelope_defaults(payload: Mapping[str, Any]) -> dict[str, Any]:
    defaults: dict[str, Any] = {}
    for wire_key, field_name in (("src", "src"), ("msg", "msg")):
        if payload.get(wire_key) is not None:
            defaults[field_name] = payload[wire_key]
    context = _mapping(payload.get("context"))
    if context is not None:
        _copy_keys(context, _CONTEXT_KEYS, defaults)
    return defaults


def _project_entry(entry: Mapping[str, Any], fields: dict[str, Any]) -> None:
    general = _mapping(entry.get("general"))
    if general is not None:
        general_v = _mapping(general.get("v1")) or _mapping(general.get("v2"))
        if general_v is not None:
            _copy_keys(general_v, _GENERAL_KEYS, fields)

    if entry.get("context") or entry.get("adapter"):
        adapter = _mapping(_dig(entry, "context", "v1", "adapter", "v1")) or _mapping(
            _dig(entry, "adapter", "v1")
        )
        if adapter is not None:
            if adapter.get("signalStrength") is not None:
                fields["signal_strength"] = adapter["signalStrength"]
            if adapter.get("firmwareVersion") is not None:
                fields["firmware"] = str(adapter["firmwareVersion"])
            version = _dig(adapter, "fingerprint", "firmware", "version")
            if version:
                subversion = _dig(adapter, "fingerprint", "firmware", "subversion")
                fields["firmware"] = f"{version}.{subversion}"
                hardware = _dig(adapter, "fingerprint", "hardwareVersion")
                if hardware is not None:
                    fields["hardware_version"] = str(hardware)

        context = _mapping(_dig(entry, "context", "v1"))
        if context is not None:
            if context.get("deviceName") is not None:
                fields["device_name"] = context["deviceName"]
            if context.get("roomName") is not None:
                fields["room_name"] = context["roomName"]
            if "battery_status" not in fields and context.get("batteryStatus") is not None:
                fields["battery_status"] = context["batteryStatus"]
            smoke = _mapping(_dig(context, "device", "v1"))
            if (
                fields.get("device_type") == "alarm.smoke"
                and smoke is not None
                and smoke.get("alarmStatus")
            ):
                fields["state"] = {"smoke": dict(smoke)}

    impulses = _dig(entry, "impulse", "v1")
    if isinstance(impulses, list) and impulses:
        first = _mapping(impulses[0])
        if first is not None and first.get("impulseType") is not None:
            fields["impulse_type"] = first["impulseType"]
        fields["impulses"] = {
            item["impulseType"]: item.get("data")
            for item in impulses
            if isinstance(item, Mapping) and item.get("impulseType") is not None
        }

    device_v1 = _dig(entry, "device", "v1")
    if device_v1:
        fields["state"] = device_v1

    if (
        entry.get("data") is not None
        and general is None
        and entry.get("device") is None
    ):
        fields["state"] = entry["data"]
        if "asset_id" in fields:
            fields["zid"] = fields["asset_id"]
        if entry.get("type") is not None:
            fields["device_type"] = entry["type"]
        fields["passthru"] = True


def extract_device_updates(payload: Any) -> list[DeviceUpdate]:
    """Return one record per ``body`` entry of a real-time envelope."""

    if not isinstance(payload, Mapping):
        raise MalformedPayloadError("envelope payload is not an object")
    if payload.get("msg") in IGNORED_MSG_TYPES:
        return []
    body = payload.get("body")
    if body is None:
        return []
    if not isinstance(body, list):
        raise MalformedPayloadError("envelope body is not an array")

    defaults = _envelope_defaults(payload)
    records: list[DeviceUpdate] = []
    for entry in body:
        fields = dict(defaults)
        if isinstance(entry, Mapping):
            _project_entry(entry, fields)
        try:
            record = DeviceUpdate(**fields)
        except ValidationError as err:
            _LOGGER.warning(
                "Dropping malformed %s entry: %s", defaults.get("msg"), err
            )
            continue
        if record.device_type is None:
            _LOGGER.debug("Record without device type in %s envelope", record.msg)
        records.append(record)
    return records


def normalize(event: str | None, payload: Any) -> list[DeviceUpdate]:
    """Return normalized records for update-bearing envelopes only."""

    kind = classify(event, payload)
    if kind in (EnvelopeKind.DATA_UPDATE, EnvelopeKind.DEVICE_LIST):
        return extract_device_updates(payload)
    return []


__all__ = [
    "IGNORED_MSG_TYPES",
    "EnvelopeKind",
    "Frame",
    "FrameKind",
    "MalformedPayloadError",
    "classify",
    "decode_frame",
    "encode_event",
    "extract_device_updates",
    "normalize",
]
