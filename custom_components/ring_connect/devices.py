"""Local device handles that mirror Ring devices."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging
import time
from typing import Any, ClassVar

from .backend.sanitize import mask_identifier
from .codecs.ring_models import DeviceUpdate
from .inventory import DeviceKind

_LOGGER = logging.getLogger(__name__)

UpdateListener = Callable[["VirtualDevice"], None]

_METADATA_FIELDS = (
    "name",
    "firmware",
    "hardware_version",
    "manufacturer",
    "serial",
    "fingerprint",
    "src",
    "location_id",
)


class VirtualDevice:
    """Generic handle applying normalized updates to a local device."""

    driver: ClassVar[str] = "generic"
    device_class: ClassVar[str | None] = None

    def __init__(
        self,
        vendor_id: str,
        kind: DeviceKind,
        metadata: Mapping[str, Any] | None = None,
        *,
        on_update: UpdateListener | None = None,
    ) -> None:
        self.vendor_id = vendor_id
        self.kind = kind
        self.metadata: dict[str, Any] = {"manufacturer": "Ring"}
        self.attributes: dict[str, Any] = {}
        self.state: dict[str, Any] = {}
        self.impulses: dict[str, Any] = {}
        self.last_impulse: str | None = None
        self.available = True
        self._on_update = on_update
        self.update_metadata(metadata or {})

    @property
    def name(self) -> str:
        """Return the display name."""

        return str(self.metadata.get("name") or self.kind.name)

    @property
    def hub_id(self) -> str | None:
        """Return the parent hub identifier, if any."""

        return self.metadata.get("src")

    @property
    def battery_level(self) -> Any:
        """Return the last reported battery level."""

        return self.attributes.get("battery_level")

    @property
    def signal_strength(self) -> Any:
        """Return the last reported signal strength."""

        return self.attributes.get("signal_strength")

    @property
    def is_on(self) -> bool | None:
        """Return the primary binary state, when the device has one."""

        return None

    def update_metadata(self, metadata: Mapping[str, Any]) -> bool:
        """Merge registry metadata; return True when anything changed."""

        changed = False
        for key in _METADATA_FIELDS:
            value = metadata.get(key)
            if value is not None and self.metadata.get(key) != value:
                self.metadata[key] = value
                changed = True
        return changed

    def apply_update(self, record: DeviceUpdate) -> None:
        """Apply a normalized real-time update."""

        data = record.as_dict()
        state = data.pop("state", None)
        impulses = data.pop("impulses", None)
        data.pop("impulse_type", None)
        self.attributes.update(data)
        if isinstance(state, Mapping):
            self.state.update(state)
        if impulses:
            self.impulses.update(impulses)
            self.last_impulse = record.impulse_type
        self.update_metadata(
            {
                "name": record.display_name,
                "firmware": record.firmware,
                "hardware_version": record.hardware_version,
                "manufacturer": record.manufacturer_name,
                "serial": record.serial_number,
            }
        )
        self._notify()

    def apply_passthru(self, record: DeviceUpdate) -> None:
        """Apply a passthrough acknowledgement or raw data record."""

        _LOGGER.debug(
            "Passthru for %s (%s)", mask_identifier(self.vendor_id), record.device_type
        )
        if isinstance(record.state, Mapping):
            self.state.update(record.state)
        self._notify()

    def apply_response(self, operation: str, response: Any) -> None:
        """Apply the result of an asynchronous REST operation."""

        if operation == "refresh" and isinstance(response, Mapping):
            self.attributes.update(
                {
                    key: response[key]
                    for key in ("battery_life", "firmware_version", "health", "settings")
                    if key in response
                }
            )
            if response.get("description"):
                self.metadata["name"] = response["description"]
            health = response.get("health")
            if isinstance(health, Mapping) and "rssi" in health:
                self.attributes["signal_strength"] = health["rssi"]
            if response.get("battery_life") is not None:
                self.attributes["battery_level"] = response["battery_life"]
        else:
            self.attributes[f"last_{operation.replace('-', '_')}"] = response
        self._notify()

    def apply_ding(self, ding: Mapping[str, Any] | None) -> None:
        """Apply an active ding (or its absence) to the device."""

        _LOGGER.debug("%s ignores dings", self.driver)

    def as_dict(self) -> dict[str, Any]:
        """Return a diagnostics-friendly snapshot."""

        return {
            "vendor_id": self.vendor_id,
            "kind": self.kind.kind,
            "driver": self.driver,
            "metadata": dict(self.metadata),
            "attributes": dict(self.attributes),
            "state": dict(self.state),
        }

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update(self)


class FaultSensorDevice(VirtualDevice):
    """Device whose primary state is the ``faulted`` flag."""

    state_path: ClassVar[tuple[str, ...]] = ("faulted",)

    @property
    def is_on(self) -> bool | None:
        value: Any = self.state
        for key in self.state_path:
            if not isinstance(value, Mapping) or key not in value:
                return None
            value = value[key]
        return bool(value)


class ContactSensorDevice(FaultSensorDevice):
    driver = "contact"
    device_class = "opening"


class MotionSensorDevice(FaultSensorDevice):
    driver = "motion"
    device_class = "motion"


class BeamsMotionSensorDevice(MotionSensorDevice):
    driver = "beams_motion"

    @property
    def is_on(self) -> bool | None:
        if "motionStatus" in self.state:
            return self.state["motionStatus"] == "faulted"
        return super().is_on


class FloodFreezeSensorDevice(FaultSensorDevice):
    driver = "flood_freeze"
    device_class = "moisture"
    state_path = ("flood", "faulted")

    @property
    def freeze(self) -> bool | None:
        """Return the freeze fault flag."""

        freeze = self.state.get("freeze")
        if isinstance(freeze, Mapping) and "faulted" in freeze:
            return bool(freeze["faulted"])
        return None


class AlarmStatusDevice(VirtualDevice):
    """Smoke or CO alarm reporting an ``alarmStatus`` value."""

    status_key: ClassVar[str] = "smoke"

    @property
    def is_on(self) -> bool | None:
        nested = self.state.get(self.status_key)
        status = nested.get("alarmStatus") if isinstance(nested, Mapping) else None
        if status is None:
            status = self.state.get("alarmStatus")
        if status is None:
            return None
        return status == "active"


class SmokeAlarmDevice(AlarmStatusDevice):
    driver = "smoke_alarm"
    device_class = "smoke"


class COAlarmDevice(AlarmStatusDevice):
    driver = "co_alarm"
    device_class = "carbon_monoxide"
    status_key = "co"


class SmokeCOListenerDevice(AlarmStatusDevice):
    driver = "smoke_co_listener"
    device_class = "smoke"


class LockDevice(VirtualDevice):
    driver = "lock"
    device_class = "lock"

    @property
    def is_on(self) -> bool | None:
        locked = self.state.get("locked")
        if locked is None:
            return None
        # Home Assistant's lock binary sensor is "on" when unlocked.
        return locked != "locked"


class SwitchDevice(VirtualDevice):
    driver = "switch"
    device_class = None

    @property
    def is_on(self) -> bool | None:
        on = self.state.get("on")
        return None if on is None else bool(on)


class BeamsLightDevice(SwitchDevice):
    driver = "beams_light"


class BeamsGroupDevice(SwitchDevice):
    driver = "beams_group"


class SirenDevice(SwitchDevice):
    driver = "siren"
    device_class = "sound"


class HubDevice(VirtualDevice):
    """Alarm base station or beams bridge."""

    driver = "alarm_hub"

    @property
    def mode(self) -> str | None:
        """Return the alarm mode reported by the security panel."""

        return self.state.get("mode")


class BeamsBridgeDevice(HubDevice):
    driver = "beams_bridge"


class KeypadDevice(VirtualDevice):
    driver = "keypad"


class PanicButtonDevice(VirtualDevice):
    driver = "panic_button"


class RangeExtenderDevice(VirtualDevice):
    driver = "range_extender"


class RetrofitKitDevice(VirtualDevice):
    driver = "retrofit_kit"


class ChimeDevice(VirtualDevice):
    driver = "chime"


class CameraDevice(VirtualDevice):
    """Camera or doorbell receiving dings from polling or the webhook."""

    driver = "camera"
    device_class = "motion"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.motion = False
        self.ding = False
        self.last_ding: dict[str, Any] | None = None
        self.last_ding_at: float | None = None

    @property
    def is_on(self) -> bool | None:
        return self.motion

    def apply_ding(self, ding: Mapping[str, Any] | None) -> None:
        motion = False
        ring = False
        if ding:
            kind = ding.get("kind")
            motion = kind == "motion" or bool(ding.get("motion"))
            ring = kind in ("ding", "on_demand_ding") and self.kind.ringable
            if kind == "ding" and not self.kind.ringable:
                motion = True
            self.last_ding = dict(ding)
            self.last_ding_at = time.time()
        if motion == self.motion and ring == self.ding and not ding:
            return
        self.motion = motion
        self.ding = ring
        self._notify()


class CameraWithSirenDevice(CameraDevice):
    driver = "camera_siren"


class LightDevice(CameraDevice):
    driver = "light"


class LightWithSirenDevice(CameraDevice):
    driver = "light_siren"


DRIVERS: dict[str, type[VirtualDevice]] = {
    cls.driver: cls
    for cls in (
        ContactSensorDevice,
        MotionSensorDevice,
        BeamsMotionSensorDevice,
        FloodFreezeSensorDevice,
        SmokeAlarmDevice,
        COAlarmDevice,
        SmokeCOListenerDevice,
        LockDevice,
        SwitchDevice,
        BeamsLightDevice,
        BeamsGroupDevice,
        SirenDevice,
        HubDevice,
        BeamsBridgeDevice,
        KeypadDevice,
        PanicButtonDevice,
        RangeExtenderDevice,
        RetrofitKitDevice,
        ChimeDevice,
        CameraDevice,
        CameraWithSirenDevice,
        LightDevice,
        LightWithSirenDevice,
    )
}


__all__ = [
    "DRIVERS",
    "CameraDevice",
    "HubDevice",
    "VirtualDevice",
]
