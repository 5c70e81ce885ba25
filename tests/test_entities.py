from __future__ import annotations

from homeassistant.components.binary_sensor import BinarySensorDeviceClass

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from custom_components.ring_connect import binary_sensor, select, sensor
from custom_components.ring_connect.const import DOMAIN
from custom_components.ring_connect.entity import build_device_info
from custom_components.ring_connect.registry import DeviceRegistry, Hub
from custom_components.ring_connect.runtime import EntryRuntime
from custom_components.ring_connect.snapshots import SnapshotCache


def _registry() -> DeviceRegistry:
    registry = DeviceRegistry(None)
    registry.creatable_hubs = {"base_station_v1"}
    registry.hubs = [Hub("hub-1", "base_station_v1")]
    return registry


def test_device_info_links_children_to_their_hub() -> None:
    registry = _registry()
    hub = registry.ensure_device("hub-1", "base_station_v1", {"src": "hub-1"})
    child = registry.ensure_device(
        "c1",
        "sensor.contact",
        {"src": "hub-1", "name": "Back Door", "firmware": "2.7", "serial": "SN1"},
    )

    hub_info = build_device_info(hub)
    child_info = build_device_info(child)

    assert "via_device" not in hub_info
    assert child_info["identifiers"] == {(DOMAIN, "c1")}
    assert child_info["name"] == "Back Door"
    assert child_info["model"] == "Ring Contact Sensor"
    assert child_info["manufacturer"] == "Ring"
    assert child_info["sw_version"] == "2.7"
    assert child_info["serial_number"] == "SN1"
    assert child_info["via_device"] == (DOMAIN, "hub-1")


def test_binary_sensors_for_cameras() -> None:
    registry = _registry()
    doorbell = registry.ensure_device("7", "doorbell_v3", {"name": "Door"})
    cam = registry.ensure_device("8", "stickup_cam_v3", {"name": "Yard"})

    doorbell_entities = list(binary_sensor._entities_for("e1", doorbell))
    cam_entities = list(binary_sensor._entities_for("e1", cam))

    assert [type(entity) for entity in doorbell_entities] == [
        binary_sensor.RingMotionBinarySensor,
        binary_sensor.RingDingBinarySensor,
    ]
    assert [type(entity) for entity in cam_entities] == [
        binary_sensor.RingMotionBinarySensor
    ]
    assert doorbell_entities[0].unique_id == "7_motion"
    assert doorbell_entities[1].unique_id == "7_ding"


def test_binary_sensors_for_hub_children() -> None:
    registry = _registry()
    contact = registry.ensure_device("c1", "sensor.contact", {"src": "hub-1"})
    flood = registry.ensure_device("f1", "sensor.flood-freeze", {"src": "hub-1"})

    contact_entities = list(binary_sensor._entities_for("e1", contact))
    flood_entities = list(binary_sensor._entities_for("e1", flood))

    assert [type(entity) for entity in contact_entities] == [
        binary_sensor.RingStateBinarySensor,
        binary_sensor.RingTamperBinarySensor,
    ]
    assert contact_entities[0].device_class is BinarySensorDeviceClass.OPENING
    assert [type(entity) for entity in flood_entities] == [
        binary_sensor.RingStateBinarySensor,
        binary_sensor.RingFreezeBinarySensor,
        binary_sensor.RingTamperBinarySensor,
    ]

    flood.state.update({"flood": {"faulted": True}, "freeze": {"faulted": False}})
    assert flood_entities[0].is_on is True
    assert flood_entities[1].is_on is False
    assert flood_entities[2].is_on is None

    flood.attributes["tamper_status"] = "tamper"
    assert flood_entities[2].is_on is True


def test_hubs_only_get_the_alarm_mode_sensor() -> None:
    registry = _registry()
    hub = registry.ensure_device("hub-1", "base_station_v1", {"src": "hub-1"})
    child = registry.ensure_device("c1", "sensor.contact", {"src": "hub-1"})
    child.attributes.update({"battery_level": 77, "signal_strength": "-60"})

    (mode,) = sensor._entities_for("e1", hub)
    assert isinstance(mode, sensor.RingAlarmModeSensor)
    assert mode.unique_id == "hub-1_alarm_mode"
    assert mode.native_value is None
    hub.state["mode"] = "some"
    assert mode.native_value == "some"

    battery, signal = sensor._entities_for("e1", child)

    assert battery.native_value == 77.0
    assert signal.native_value == -60.0
    assert battery.unique_id == "c1_battery"


def _runtime(registry: DeviceRegistry) -> EntryRuntime:
    return EntryRuntime(
        config_entry=MagicMock(),
        auth=MagicMock(),
        client=MagicMock(),
        registry=registry,
        snapshots=SnapshotCache(),
        location_id="loc-1",
    )


@pytest.mark.asyncio
async def test_location_mode_select_reads_and_sets_the_mode() -> None:
    registry = DeviceRegistry(None)
    runtime = _runtime(registry)
    entity = select.RingLocationModeSelect("e1", "loc-1")
    entity.hass = SimpleNamespace(data={DOMAIN: {"e1": runtime}})

    assert entity.unique_id == "loc-1_mode"
    assert entity.options == ["disarmed", "home", "away"]
    assert entity.current_option is None

    registry.handle_response("mode-get", {"location_id": "loc-1"}, {"mode": "home"})
    assert entity.current_option == "home"

    await entity.async_select_option("away")
    runtime.client.mode_set.assert_called_once_with("loc-1", "away")


@pytest.mark.asyncio
async def test_location_mode_select_skipped_for_alarm_accounts() -> None:
    registry = DeviceRegistry(None)
    registry.alarm_capable = True
    hass = SimpleNamespace(data={DOMAIN: {"e1": _runtime(registry)}})
    entry = SimpleNamespace(entry_id="e1")
    added = MagicMock()

    await select.async_setup_entry(hass, entry, added)

    added.assert_not_called()
