"""Closed table of Ring device kinds and their capabilities."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True, slots=True)
class DeviceKind:
    """Capability descriptor for a supported vendor device kind."""

    kind: str
    name: str
    driver: str | None
    hub: bool = False
    hidden: bool = False
    dingable: bool = False
    ringable: bool = False

    @property
    def creatable(self) -> bool:
        """Return True when a local device may be created for this kind."""

        return not self.hidden and self.driver is not None


@dataclass(frozen=True, slots=True)
class UnknownKind:
    """Kind string not present in any device table."""

    raw: str | None

    def __str__(self) -> str:
        return str(self.raw)


class MissingDriverError(LookupError):
    """Raised when a supported kind maps to a driver that is not installed."""

    def __init__(self, driver: str, kind: str) -> None:
        super().__init__(
            f'The "{driver}" driver was not found and needs to be installed '
            f"to create {kind} devices"
        )
        self.driver = driver
        self.kind = kind


HUB_KINDS: Final = frozenset({"base_station_v1", "beams_bridge_v1"})
ALARM_HUB_KIND: Final = "base_station_v1"
LIGHT_GROUP_KIND: Final = "group.light-group.beams"

RINGABLE_KINDS: Final = frozenset(
    {
        "doorbell",
        "doorbell_v3",
        "doorbell_v4",
        "doorbell_v5",
        "doorbell_portal",
        "doorbell_scallop",
        "doorbell_scallop_lite",
        "cocoa_doorbell",
        "cocoa_floodlight",
        "lpd_v1",
        "lpd_v2",
        "lpd_v4",
        "jbox_v1",
    }
)


def _cam(kind: str, name: str, driver: str) -> DeviceKind:
    return DeviceKind(
        kind,
        name,
        driver,
        dingable=True,
        ringable=kind in RINGABLE_KINDS,
    )


# Kinds reported by the REST device listing.
REST_KINDS: Final[Mapping[str, DeviceKind]] = {
    item.kind: item
    for item in (
        DeviceKind("base_station_v1", "Ring Alarm Base Station", None, hub=True),
        DeviceKind("beams_bridge_v1", "Ring Bridge Hub", None, hub=True),
        DeviceKind("chime_pro_v2", "Ring Chime Pro (v2)", "chime"),
        DeviceKind("chime_pro", "Ring Chime Pro", "chime"),
        DeviceKind("chime", "Ring Chime", "chime"),
        _cam("cocoa_camera", "Ring Stick Up Cam", "camera_siren"),
        _cam("cocoa_doorbell", "Ring Video Doorbell 2020", "camera"),
        _cam("cocoa_floodlight", "Ring Floodlight Cam Wired Plus", "light_siren"),
        _cam("doorbell_portal", "Ring Peephole Cam", "camera"),
        _cam("doorbell_scallop_lite", "Ring Video Doorbell 3", "camera"),
        _cam("doorbell_scallop", "Ring Video Doorbell 3 Plus", "camera"),
        _cam("doorbell_v3", "Ring Video Doorbell", "camera"),
        _cam("doorbell_v4", "Ring Video Doorbell 2", "camera"),
        _cam("doorbell_v5", "Ring Video Doorbell 2", "camera"),
        _cam("doorbell", "Ring Video Doorbell", "camera"),
        _cam("floodlight_pro", "Ring Floodlight Cam Wired Pro", "light_siren"),
        _cam("floodlight_v2", "Ring Floodlight Cam Wired", "light_siren"),
        _cam("hp_cam_v1", "Ring Floodlight Cam", "light_siren"),
        _cam("hp_cam_v2", "Ring Spotlight Cam Wired", "light_siren"),
        _cam("jbox_v1", "Ring Video Doorbell Elite", "camera"),
        _cam("lpd_v1", "Ring Video Doorbell Pro", "camera"),
        _cam("lpd_v2", "Ring Video Doorbell Pro", "camera"),
        _cam("lpd_v4", "Ring Video Doorbell Pro 2", "camera"),
        _cam("spotlightw_v2", "Ring Spotlight Cam Wired", "light_siren"),
        _cam("stickup_cam_elite", "Ring Stick Up Cam Wired", "camera_siren"),
        _cam("stickup_cam_lunar", "Ring Stick Up Cam Battery", "camera_siren"),
        _cam("stickup_cam_mini", "Ring Indoor Cam", "camera_siren"),
        _cam("stickup_cam_v3", "Ring Stick Up Cam", "camera"),
        _cam("stickup_cam_v4", "Ring Spotlight Cam Battery", "light"),
        _cam("stickup_cam", "Ring Original Stick Up Cam", "camera"),
    )
}

# Kinds reported by hubs over the real-time socket.
HUB_CHILD_KINDS: Final[Mapping[str, DeviceKind]] = {
    item.kind: item
    for item in (
        DeviceKind("sensor.contact", "Ring Contact Sensor", "contact"),
        DeviceKind("sensor.tilt", "Ring Contact Sensor", "contact"),
        DeviceKind("sensor.zone", "Ring Contact Sensor", "contact"),
        DeviceKind("sensor.motion", "Ring Motion Sensor", "motion"),
        DeviceKind("sensor.flood-freeze", "Ring Flood & Freeze Sensor", "flood_freeze"),
        DeviceKind("listener.smoke-co", "Ring Smoke & CO Listener", "smoke_co_listener"),
        DeviceKind("alarm.co", "Ring CO Alarm", "co_alarm"),
        DeviceKind("alarm.smoke", "Ring Smoke Alarm", "smoke_alarm"),
        DeviceKind("range-extender.zwave", "Ring Alarm Range Extender", "range_extender"),
        DeviceKind("lock", "Ring Lock", "lock"),
        DeviceKind("security-keypad", "Ring Keypad", "keypad"),
        DeviceKind("security-panic", "Ring Panic Button", "panic_button"),
        DeviceKind("base_station_v1", "Ring Alarm Hub", "alarm_hub", hub=True),
        DeviceKind("siren", "Ring Siren", "siren"),
        DeviceKind("siren.outdoor-strobe", "Ring Siren", "siren"),
        DeviceKind("switch", "Ring Switch", "switch"),
        DeviceKind("bridge.flatline", "Ring Retrofit Alarm Kit", "retrofit_kit"),
        DeviceKind("adapter.zwave", "Ring Z-Wave Adapter", None, hidden=True),
        DeviceKind("adapter.zigbee", "Ring Zigbee Adapter", None, hidden=True),
        DeviceKind("security-panel", "Ring Alarm Security Panel", None, hidden=True),
        DeviceKind("hub.redsky", "Ring Alarm Base Station", None, hidden=True),
        DeviceKind("access-code.vault", "Code Vault", None, hidden=True),
        DeviceKind("access-code", "Access Code", None, hidden=True),
        DeviceKind("switch.multilevel.beams", "Ring Beams Light", "beams_light"),
        DeviceKind("motion-sensor.beams", "Ring Beams Motion Sensor", "beams_motion"),
        DeviceKind(LIGHT_GROUP_KIND, "Ring Beams Group", "beams_group"),
        DeviceKind("beams_bridge_v1", "Ring Beams Bridge", "beams_bridge", hub=True),
        DeviceKind("adapter.ringnet", "Ring Beams Ringnet Adapter", None, hidden=True),
    )
}


def resolve_kind(
    raw: str | None,
    table: Mapping[str, DeviceKind] = HUB_CHILD_KINDS,
) -> DeviceKind | UnknownKind:
    """Return the descriptor for ``raw`` or an ``UnknownKind`` marker."""

    if raw is None:
        return UnknownKind(None)
    found = table.get(str(raw))
    if found is None:
        return UnknownKind(str(raw))
    return found


def resolve_any_kind(raw: str | None) -> DeviceKind | UnknownKind:
    """Resolve ``raw`` against the hub-side table first, then the REST table."""

    found = resolve_kind(raw, HUB_CHILD_KINDS)
    if isinstance(found, UnknownKind):
        return resolve_kind(raw, REST_KINDS)
    return found


def is_hub_kind(raw: str | None) -> bool:
    """Return True when ``raw`` names a hub-capable kind."""

    return raw in HUB_KINDS


__all__ = [
    "ALARM_HUB_KIND",
    "HUB_CHILD_KINDS",
    "HUB_KINDS",
    "LIGHT_GROUP_KIND",
    "REST_KINDS",
    "RINGABLE_KINDS",
    "DeviceKind",
    "MissingDriverError",
    "UnknownKind",
    "is_hub_kind",
    "resolve_any_kind",
    "resolve_kind",
]
