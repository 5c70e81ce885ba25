from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from custom_components.ring_connect.backend.ws_client import (
    RingWebSocketClient,
    TicketError,
)
from custom_components.ring_connect.registry import DeviceRegistry, Hub


class FakeWebSocket:
    def __init__(self, messages: list[Any] | None = None) -> None:
        self.closed = False
        self.sent: list[str] = []
        self._messages = list(messages or [])

    async def send_str(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    async def receive(self) -> Any:
        if not self._messages:
            return SimpleNamespace(type=aiohttp.WSMsgType.CLOSED, data=None)
        return self._messages.pop(0)

    def exception(self) -> Exception | None:
        return None


class FakeWsSession:
    def __init__(self, ws: FakeWebSocket) -> None:
        self.ws = ws
        self.urls: list[str] = []
        self.kwargs: dict[str, Any] = {}

    async def ws_connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.urls.append(url)
        self.kwargs = kwargs
        return self.ws


def _text(data: str) -> SimpleNamespace:
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data)


def _registry(alarm: bool = True) -> DeviceRegistry:
    registry = DeviceRegistry(None)
    registry.creatable_hubs = {"base_station_v1"}
    registry.alarm_capable = alarm
    registry.hubs = [Hub("hub-1", "base_station_v1")]
    return registry


def _client(
    registry: DeviceRegistry | None = None,
    ws: FakeWebSocket | None = None,
    *,
    clock: float = 1000.0,
    tickets: Any = None,
) -> tuple[RingWebSocketClient, SimpleNamespace, FakeWsSession]:
    rest = SimpleNamespace(
        tickets=AsyncMock(
            return_value=tickets
            if tickets is not None
            else {"server": "relay.example", "authCode": "code-1"}
        ),
        mode_get=MagicMock(),
        mode_set=MagicMock(),
    )
    session = FakeWsSession(ws or FakeWebSocket())
    statuses: list[str] = []
    client = RingWebSocketClient(
        session,  # type: ignore[arg-type]
        rest,  # type: ignore[arg-type]
        registry or _registry(),
        location_id="loc-1",
        on_status=lambda status, snapshot: statuses.append(status),
        clock=lambda: clock,
    )
    client.statuses = statuses  # type: ignore[attr-defined]
    return client, rest, session


@pytest.mark.asyncio
async def test_ping_is_echoed_back() -> None:
    client, _, _ = _client()
    ws = FakeWebSocket()
    client._ws = ws  # type: ignore[assignment]

    assert await client._handle_text("2")
    assert await client._handle_text("3")

    assert ws.sent == ["2"]
    assert client.state.last_message_at == 1000.0


@pytest.mark.asyncio
async def test_disconnect_event_ends_the_socket() -> None:
    client, _, _ = _client()
    ws = FakeWebSocket()
    client._ws = ws  # type: ignore[assignment]

    keep_going = await client._handle_text('42["disconnect",{}]')

    assert keep_going is False
    assert ws.closed
    assert client.status == "disconnect"


@pytest.mark.asyncio
async def test_malformed_frame_is_dropped(caplog: pytest.LogCaptureFixture) -> None:
    client, _, _ = _client()

    assert await client._handle_text("42[broken")

    assert "Dropping malformed frame" in caplog.text


@pytest.mark.asyncio
async def test_data_update_frame_reaches_registry() -> None:
    registry = _registry()
    handle = registry.ensure_device("c1", "sensor.contact", {"src": "hub-1"})
    client, _, _ = _client(registry)
    payload = {
        "msg": "DataUpdate",
        "context": {"assetId": "hub-1", "assetKind": "base_station_v1"},
        "body": [
            {
                "general": {"v2": {"zid": "c1", "deviceType": "sensor.contact"}},
                "device": {"v1": {"faulted": True}},
            }
        ],
    }

    await client._handle_text("42" + json.dumps(["DataUpdate", payload]))

    assert handle.is_on is True


@pytest.mark.asyncio
async def test_send_message_numbers_messages() -> None:
    client, _, _ = _client()
    ws = FakeWebSocket()
    client._ws = ws  # type: ignore[assignment]

    assert await client.send_command("z1", "hub-1", "security-panel.switch-mode", {"mode": "all"})
    assert await client.request_sysinfo("hub-1")

    first = json.loads(ws.sent[0][2:])
    second = json.loads(ws.sent[1][2:])
    assert first[0] == "message"
    assert first[1]["seq"] == 1
    assert first[1]["msg"] == "DeviceInfoSet"
    assert first[1]["body"][0]["command"]["v1"][0]["commandType"] == (
        "security-panel.switch-mode"
    )
    assert second[1] == {"msg": "GetSystemInformation", "dst": "hub-1", "seq": 2}


@pytest.mark.asyncio
async def test_send_message_requires_open_socket() -> None:
    client, _, _ = _client()

    assert not await client.send_message({"msg": "DeviceInfoDocGetList"})


@pytest.mark.asyncio
async def test_refresh_requests_device_lists_and_mode() -> None:
    registry = _registry(alarm=False)
    registry.hubs.append(Hub("hub-2", "base_station_v1"))
    client, rest, _ = _client(registry)
    ws = FakeWebSocket()
    client._ws = ws  # type: ignore[assignment]

    await client.refresh()

    sent = [json.loads(item[2:])[1] for item in ws.sent]
    assert [item["dst"] for item in sent] == ["hub-1", "hub-2"]
    assert all(item["msg"] == "DeviceInfoDocGetList" for item in sent)
    rest.mode_get.assert_called_once_with("loc-1")


@pytest.mark.asyncio
async def test_create_devices_flags_bulk_creation() -> None:
    registry = _registry()
    client, _, _ = _client(registry)
    client._ws = FakeWebSocket()  # type: ignore[assignment]

    await client.create_devices("hub-1")

    assert registry.create_pending


@pytest.mark.asyncio
async def test_connect_once_with_host_ticket_sets_hubs() -> None:
    registry = DeviceRegistry(None)
    registry.creatable_hubs = {"base_station_v1"}
    ws = FakeWebSocket()
    client, rest, session = _client(
        registry,
        ws,
        tickets={
            "host": "relay.example",
            "ticket": "tkt",
            "assets": [
                {"kind": "base_station_v1", "uuid": "hub-9", "doorbotId": 12},
                {"kind": "camera", "uuid": "cam-1"},
            ],
        },
    )
    client.backoff.delay = 64
    client.state.seq = 5

    result = await client._connect_once()

    assert result is ws
    assert session.urls == [
        "wss://relay.example/socket.io/?authcode=tkt&ack=false&EIO=3&transport=websocket"
    ]
    assert session.kwargs == {"heartbeat": None, "autoclose": False}
    assert [hub.zid for hub in registry.hubs] == ["hub-9"]
    assert registry.hubs[0].doorbot_id == "12"
    assert client.status == "connected"
    assert client.statuses == ["connecting", "connected"]  # type: ignore[attr-defined]
    assert client.backoff.delay is None
    assert ws.sent == []
    rest.tickets.assert_awaited_once_with("loc-1")


@pytest.mark.asyncio
async def test_connect_once_without_server_raises() -> None:
    client, _, _ = _client(tickets={"assets": []})

    with pytest.raises(TicketError):
        await client._connect_once()


@pytest.mark.asyncio
async def test_runner_uses_failure_floor(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _, _ = _client()
    delays: list[float] = []

    async def _fail() -> None:
        raise TicketError("no server")

    async def _wait(delay: float) -> None:
        delays.append(delay)
        if len(delays) == 3:
            client._closing = True

    monkeypatch.setattr(client, "_connect_once", _fail)
    monkeypatch.setattr(client, "_wait", _wait)

    await client._runner()

    assert delays == [900, 1800, 1800]
    assert client.status == "error"


@pytest.mark.asyncio
async def test_runner_reads_until_close_then_backs_off(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ws = FakeWebSocket([_text("2"), _text("40")])
    client, _, _ = _client(ws=ws)
    delays: list[float] = []

    async def _wait(delay: float) -> None:
        delays.append(delay)
        client._closing = True

    monkeypatch.setattr(client, "_wait", _wait)

    await client._runner()

    assert delays == [2]
    first = json.loads(ws.sent[0][2:])[1]
    assert first["msg"] == "DeviceInfoDocGetList"
    assert first["seq"] == 1
    assert ws.sent[1] == "2"
    assert client.status == "closed"


@pytest.mark.asyncio
async def test_runner_survives_send_failure_during_refresh(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ws = FakeWebSocket()
    ws.send_str = AsyncMock(side_effect=ConnectionResetError("reset"))  # type: ignore[method-assign]
    client, _, _ = _client(ws=ws)
    delays: list[float] = []

    async def _wait(delay: float) -> None:
        delays.append(delay)
        client._closing = True

    monkeypatch.setattr(client, "_wait", _wait)

    await client._runner()

    assert delays == [2]
    assert ws.closed
    assert client._ws is None
    assert client.status == "error"


@pytest.mark.asyncio
async def test_runner_survives_unexpected_errors(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    client, _, _ = _client()
    delays: list[float] = []

    async def _broken() -> None:
        raise KeyError("assets")

    async def _wait(delay: float) -> None:
        delays.append(delay)
        if len(delays) == 2:
            client._closing = True

    monkeypatch.setattr(client, "_connect_once", _broken)
    monkeypatch.setattr(client, "_wait", _wait)

    await client._runner()

    assert delays == [900, 1800]
    assert client.status == "error"
    assert "raised unexpectedly" in caplog.text


@pytest.mark.asyncio
async def test_connect_clears_pending_reconnect_request() -> None:
    client, _, _ = _client()
    client._reconnect_now = True

    await client._connect_once()

    assert not client._reconnect_now
    assert client.status == "connected"


@pytest.mark.asyncio
async def test_watchdog_forces_reconnect_when_silent() -> None:
    client, _, _ = _client()
    client.force_reconnect = AsyncMock()  # type: ignore[method-assign]
    client.state.mark_frame(timestamp=0.0)
    client.state.status = "disconnect"

    assert await client.check_watchdog(now=301.0)
    client.force_reconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_watchdog_leaves_connected_or_recent_sockets() -> None:
    client, _, _ = _client()
    client.force_reconnect = AsyncMock()  # type: ignore[method-assign]

    assert not await client.check_watchdog(now=10_000.0)

    client.state.mark_frame(timestamp=0.0)
    client.state.status = "connected"
    assert not await client.check_watchdog(now=301.0)

    client.state.status = "closed"
    assert not await client.check_watchdog(now=120.0)
    client.force_reconnect.assert_not_awaited()


@pytest.mark.asyncio
async def test_initialize_requires_a_hub() -> None:
    client, _, _ = _client(DeviceRegistry(None))

    assert not client.initialize()
    assert not client.is_running()


@pytest.mark.asyncio
async def test_initialize_and_stop(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _, _ = _client()
    started = asyncio.Event()

    async def _runner() -> None:
        started.set()
        await asyncio.Event().wait()

    monkeypatch.setattr(client, "_runner", _runner)

    assert client.initialize()
    await started.wait()
    assert client.is_running()

    await client.stop()

    assert not client.is_running()
    assert client.status == "closed"


@pytest.mark.asyncio
async def test_force_reconnect_skips_backoff_wait() -> None:
    client, _, _ = _client()
    ws = FakeWebSocket()
    client._ws = ws  # type: ignore[assignment]
    client._task = asyncio.get_running_loop().create_future()  # type: ignore[assignment]

    await client.force_reconnect()
    await asyncio.wait_for(client._wait(1800), timeout=1)

    assert ws.closed
    assert not client._reconnect_now
    client._task.cancel()  # type: ignore[union-attr]


def test_set_mode_only_without_alarm() -> None:
    client, rest, _ = _client(_registry(alarm=True))
    assert client.set_mode("Away") is None
    rest.mode_set.assert_not_called()

    client, rest, _ = _client(_registry(alarm=False))
    client.set_mode("Away")
    rest.mode_set.assert_called_once_with("loc-1", "away")
