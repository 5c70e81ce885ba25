from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from homeassistant.helpers.network import NoURLAvailableError
import pytest

from custom_components.ring_connect import http
from custom_components.ring_connect.const import DOMAIN
from custom_components.ring_connect.http import (
    RingSnapshotView,
    RingWebhookView,
    async_register_views,
    inbound_urls,
)
from custom_components.ring_connect.registry import DeviceRegistry
from custom_components.ring_connect.runtime import EntryRuntime
from custom_components.ring_connect.snapshots import PLACEHOLDER_IMAGE, SnapshotCache


def _runtime(token: str = "tok-1") -> EntryRuntime:
    registry = DeviceRegistry(None)
    registry.ensure_device("7", "doorbell_v3", {"name": "Door"})
    return EntryRuntime(
        config_entry=MagicMock(),
        auth=MagicMock(),
        client=MagicMock(),
        registry=registry,
        snapshots=SnapshotCache(),
        location_id="loc-1",
        webhook_token=token,
    )


def _hass(runtime: EntryRuntime) -> SimpleNamespace:
    return SimpleNamespace(data={DOMAIN: {"entry-1": runtime, "_views_registered": True}})


def _request(token: str | None, body: str = "") -> SimpleNamespace:
    query: dict[str, Any] = {} if token is None else {"access_token": token}
    return SimpleNamespace(query=query, text=AsyncMock(return_value=body))


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, "", "wrong"])
async def test_webhook_rejects_bad_tokens(token: str | None) -> None:
    view = RingWebhookView(_hass(_runtime()))

    response = await view.post(_request(token, '{"id": 7, "kind": "ding"}'))

    assert response.status == 401


@pytest.mark.asyncio
async def test_webhook_rejects_malformed_body() -> None:
    view = RingWebhookView(_hass(_runtime()))

    response = await view.post(_request("tok-1", "{not json"))

    assert response.status == 400


@pytest.mark.asyncio
async def test_webhook_applies_ding() -> None:
    runtime = _runtime()
    view = RingWebhookView(_hass(runtime))

    response = await view.post(
        _request("tok-1", json.dumps({"id": 7, "kind": "ding", "state": "ringing"}))
    )

    assert response.status == 200
    assert json.loads(response.text) == {"status": "complete"}
    assert runtime.registry.get("7").ding is True


@pytest.mark.asyncio
async def test_webhook_accepts_unknown_device() -> None:
    view = RingWebhookView(_hass(_runtime()))

    response = await view.post(_request("tok-1", json.dumps({"id": 404, "kind": "ding"})))

    assert response.status == 200


@pytest.mark.asyncio
async def test_snapshot_view_unknown_device() -> None:
    view = RingSnapshotView(_hass(_runtime()))

    response = await view.get(_request("tok-1"), "999")

    assert response.status == 404


@pytest.mark.asyncio
async def test_snapshot_view_serves_svg() -> None:
    runtime = _runtime()
    view = RingSnapshotView(_hass(runtime))

    placeholder = await view.get(_request("tok-1"), "7")
    runtime.snapshots.store("7", b"\xff\xd8\xffimage")
    fresh = await view.get(_request("tok-1"), "7")

    assert placeholder.status == 200
    assert placeholder.content_type == "image/svg+xml"
    assert placeholder.headers["Cache-Control"] == "no-store"
    assert PLACEHOLDER_IMAGE in placeholder.text
    assert "data:image/jpeg;base64," in fresh.text


@pytest.mark.asyncio
async def test_snapshot_view_requires_token() -> None:
    view = RingSnapshotView(_hass(_runtime()))

    response = await view.get(_request("other"), "7")

    assert response.status == 401


def test_views_register_once() -> None:
    hass = SimpleNamespace(data={}, http=MagicMock())

    async_register_views(hass)
    async_register_views(hass)

    assert hass.http.register_view.call_count == 2
    assert hass.data[DOMAIN]["_views_registered"] is True


def test_inbound_urls_fall_back_to_relative_paths(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _no_url(hass: Any, **kwargs: Any) -> str:
        raise NoURLAvailableError

    monkeypatch.setattr(http, "get_url", _no_url)

    urls = inbound_urls(SimpleNamespace(), "tok-1")

    assert urls == {
        "webhook_url": "/api/ring_connect/ifttt?access_token=tok-1",
        "snapshot_url": "/api/ring_connect/snapshot/<device_id>?access_token=tok-1",
    }
    assert inbound_urls(SimpleNamespace(), None)["webhook_url"] == "/api/ring_connect/ifttt"
