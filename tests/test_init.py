from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from custom_components.ring_connect import async_remove_config_entry_device
from custom_components.ring_connect.const import DOMAIN
from custom_components.ring_connect.registry import DeviceRegistry
from custom_components.ring_connect.runtime import EntryRuntime
from custom_components.ring_connect.snapshots import SnapshotCache


def _setup(on_removed: MagicMock) -> tuple[SimpleNamespace, SimpleNamespace, EntryRuntime]:
    registry = DeviceRegistry(None, on_removed=on_removed)
    registry.ensure_device("8", "stickup_cam_v3", {"name": "Yard"})
    registry.set_snapshot_devices(["8"])
    entry = SimpleNamespace(entry_id="entry-1")
    runtime = EntryRuntime(
        config_entry=entry,  # type: ignore[arg-type]
        auth=MagicMock(),
        client=MagicMock(),
        registry=registry,
        snapshots=SnapshotCache(),
        location_id="loc-1",
    )
    hass = SimpleNamespace(data={DOMAIN: {"entry-1": runtime}})
    return hass, entry, runtime


@pytest.mark.asyncio
async def test_remove_device_drops_it_from_the_registry() -> None:
    on_removed = MagicMock()
    hass, entry, runtime = _setup(on_removed)
    device = SimpleNamespace(identifiers={(DOMAIN, "8")})

    assert await async_remove_config_entry_device(hass, entry, device)

    assert "8" not in runtime.registry
    assert "8" not in runtime.registry.snappables
    on_removed.assert_not_called()


@pytest.mark.asyncio
async def test_remove_device_accepts_stale_devices() -> None:
    hass, entry, runtime = _setup(MagicMock())

    assert await async_remove_config_entry_device(
        hass, entry, SimpleNamespace(identifiers={(DOMAIN, "404")})
    )
    assert "8" in runtime.registry


@pytest.mark.asyncio
async def test_remove_device_refuses_foreign_identifiers() -> None:
    hass, entry, runtime = _setup(MagicMock())

    assert not await async_remove_config_entry_device(
        hass, entry, SimpleNamespace(identifiers={("other", "8")})
    )
    assert "8" in runtime.registry
