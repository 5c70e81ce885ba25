"""Real-time relay client for Ring alarm and lighting hubs."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from contextlib import suppress
import logging
import time
from typing import TYPE_CHECKING, Any

import aiohttp
from pydantic import ValidationError

from ..api import RingRequestError
from ..codecs.ring_codec import (
    EnvelopeKind,
    FrameKind,
    MalformedPayloadError,
    decode_frame,
    encode_event,
)
from ..codecs.ring_models import TicketResponse
from ..const import DOMAIN, WATCHDOG_INTERVAL, WS_PING
from ..session import RingAuthError, RingRateLimitError, RingRequestsHeld
from .sanitize import mask_identifier, redact_text
from .ws_health import ReconnectBackoff, WsConnectionState

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..api import RingRESTClient
    from ..registry import DeviceRegistry

_LOGGER = logging.getLogger(__name__)

StatusCallback = Callable[[str, Mapping[str, Any]], None]


class TicketError(RuntimeError):
    """Raised when a ticket response does not yield a socket URL."""


class SocketClosedError(RuntimeError):
    """Raised when the relay socket reports an error or closes."""


_CONNECT_ERRORS = (
    TicketError,
    RingRequestError,
    RingAuthError,
    RingRateLimitError,
    RingRequestsHeld,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)

_READ_ERRORS = (
    SocketClosedError,
    aiohttp.ClientError,
    ConnectionError,
    asyncio.TimeoutError,
)


class RingWebSocketClient:
    """Maintain the relay socket and feed its events to the registry."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        rest: RingRESTClient,
        registry: DeviceRegistry,
        *,
        location_id: str,
        on_status: StatusCallback | None = None,
        clock: Callable[[], float] = time.time,
        loop: asyncio.AbstractEventLoop | None = None,
        watchdog_interval: float = WATCHDOG_INTERVAL,
    ) -> None:
        self._session = session
        self._rest = rest
        self._registry = registry
        self._location_id = location_id
        self._on_status = on_status
        self._clock = clock
        self._loop = loop
        self._watchdog_interval = watchdog_interval
        self.state = WsConnectionState()
        self.backoff = ReconnectBackoff()
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task | None = None
        self._watchdog_task: asyncio.Task | None = None
        self._wake = asyncio.Event()
        self._reconnect_now = False
        self._closing = False

    # ------------------------------------------------------------------
    # Public control
    # ------------------------------------------------------------------
    @property
    def status(self) -> str:
        return self.state.status

    def is_running(self) -> bool:
        """Return True if the runner task is active."""

        return bool(self._task and not self._task.done())

    def initialize(self) -> bool:
        """Start the relay when a hub kind makes it useful."""

        if not self._registry.websocket_capable:
            _LOGGER.warning("Nothing to initialize; no hub enables real-time updates")
            return False
        self._closing = False
        self._start_runner()
        if self._watchdog_task is None or self._watchdog_task.done():
            self._watchdog_task = self._get_loop().create_task(
                self._watchdog_loop(), name=f"{DOMAIN}-ws-watchdog"
            )
        return True

    async def stop(self) -> None:
        """Cancel background tasks and close the socket."""

        _LOGGER.debug("WS: stop requested")
        self._closing = True
        self._wake.set()
        for task in (self._watchdog_task, self._task):
            if task is None:
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._watchdog_task = None
        self._task = None
        await self._close_ws()
        self._update_status("closed")

    async def force_reconnect(self) -> None:
        """Tear down the current socket and reconnect without waiting."""

        if self._closing:
            return
        _LOGGER.info("WS: forcing reconnect")
        self._reconnect_now = True
        self._wake.set()
        await self._close_ws()
        if not self.is_running():
            self._start_runner()

    async def check_watchdog(self, *, now: float | None = None) -> bool:
        """Reconnect after prolonged silence; return True when forced."""

        current = now if now is not None else self._clock()
        silence = self.state.silence(now=current)
        if silence is None:
            return False
        _LOGGER.debug(
            "Watchdog check: %.1f minutes since last message", silence / 60
        )
        if not self.state.is_silent(now=current):
            return False
        _LOGGER.warning("Watchdog checking interval exceeded")
        if self.state.status == "connected":
            return False
        await self.force_reconnect()
        return True

    # ------------------------------------------------------------------
    # Outbound messages
    # ------------------------------------------------------------------
    async def send_message(self, message: Mapping[str, Any]) -> bool:
        """Send a ``message`` event with the next sequence number."""

        ws = self._ws
        if ws is None or ws.closed:
            _LOGGER.warning("WS: cannot send %s; socket not open", message.get("msg"))
            return False
        payload = {**message, "seq": self.state.next_seq()}
        await ws.send_str(encode_event("message", payload))
        return True

    async def refresh(self, zid: str | None = None) -> None:
        """Request the device list of one hub, or of every hub."""

        for hub in self._registry.hubs:
            if zid is None or hub.zid == zid:
                _LOGGER.info(
                    "Refreshing hub %s with kind %s", mask_identifier(hub.zid), hub.kind
                )
                await self.send_message({"msg": "DeviceInfoDocGetList", "dst": hub.zid})
        if not self._registry.alarm_capable:
            self._rest.mode_get(self._location_id)

    async def create_devices(self, zid: str | None = None) -> None:
        """Create every device the next device list reports."""

        self._registry.request_bulk_creation()
        await self.refresh(zid)

    async def send_command(
        self, zid: str, dst: str | None, command_type: str, data: Any = None
    ) -> bool:
        """Send a ``DeviceInfoSet`` command to a hub child."""

        return await self.send_message(
            {
                "body": [
                    {
                        "zid": zid,
                        "command": {
                            "v1": [{"commandType": command_type, "data": data or {}}]
                        },
                    }
                ],
                "datatype": "DeviceInfoSetType",
                "dst": dst,
                "msg": "DeviceInfoSet",
            }
        )

    async def send_device(self, zid: str, dst: str | None, data: Mapping[str, Any]) -> bool:
        """Send a ``DeviceInfoSet`` device settings update."""

        return await self.send_message(
            {
                "body": [{"zid": zid, "device": {"v1": dict(data)}}],
                "datatype": "DeviceInfoSetType",
                "dst": dst,
                "msg": "DeviceInfoSet",
            }
        )

    async def request_manager(self, dst: str) -> bool:
        return await self.send_message({"msg": "GetAdapterManagersList", "dst": dst})

    async def request_sysinfo(self, dst: str) -> bool:
        return await self.send_message({"msg": "GetSystemInformation", "dst": dst})

    async def find_device(self, dst: str, adapter_id: str) -> bool:
        return await self.send_message(
            {
                "msg": "FindDevice",
                "datatype": "FindDeviceType",
                "body": [{"adapterManagerName": adapter_id}],
                "dst": dst,
            }
        )

    def set_mode(self, mode: str) -> asyncio.Task | None:
        """Set the location mode on accounts without an alarm."""

        if self._registry.alarm_capable:
            _LOGGER.error(
                "Not supported from the API device; the account has an alarm, "
                "use alarm modes instead"
            )
            return None
        return self._rest.mode_set(self._location_id, mode.lower())

    # ------------------------------------------------------------------
    # Core loop
    # ------------------------------------------------------------------
    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _start_runner(self) -> None:
        if self.is_running():
            return
        self._task = self._get_loop().create_task(
            self._runner(), name=f"{DOMAIN}-ws-{self._location_id}"
        )

    async def _runner(self) -> None:
        """Connect, read until the socket ends, then back off and retry."""

        while not self._closing:
            failed = False
            try:
                ws = await self._connect_once()
            except asyncio.CancelledError:
                raise
            except _CONNECT_ERRORS as err:
                failed = True
                _LOGGER.error(
                    "WebSocket connect failed: %s", redact_text(str(err)) or type(err).__name__
                )
                self._update_status("error")
            except Exception:  # noqa: BLE001 - keep the runner alive
                failed = True
                _LOGGER.exception("WebSocket connect raised unexpectedly")
                await self._close_ws()
                self._update_status("error")
            else:
                try:
                    await self.refresh()
                    await self._read_loop(ws)
                except asyncio.CancelledError:
                    raise
                except _READ_ERRORS as err:
                    _LOGGER.warning(
                        "WebSocket error, reconnecting: %s", redact_text(str(err))
                    )
                    self._update_status("error")
                except Exception:  # noqa: BLE001 - keep the runner alive
                    failed = True
                    _LOGGER.exception("WebSocket session raised unexpectedly")
                    self._update_status("error")
                finally:
                    await self._close_ws()
            if self._closing:
                break
            delay = self.backoff.next_failure_delay() if failed else self.backoff.next_delay()
            _LOGGER.info("WS: reconnecting in %s seconds", delay)
            await self._wait(delay)

    async def _wait(self, delay: float) -> None:
        if not self._reconnect_now:
            self._wake.clear()
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
        self._reconnect_now = False

    async def _connect_once(self) -> aiohttp.ClientWebSocketResponse:
        self._update_status("connecting")
        payload = await self._rest.tickets(self._location_id)
        self.state.reset_seq()
        try:
            ticket = TicketResponse.model_validate(payload or {})
        except ValidationError as err:
            raise TicketError(f"Invalid ticket response: {err}") from err
        url = ticket.socket_url()
        if url is None:
            raise TicketError("Can't find the server in the ticket response")
        if ticket.host:
            self._registry.set_hubs_from_assets(ticket.assets)
        _LOGGER.debug("WS: connecting to %s", redact_text(url))
        ws = await self._session.ws_connect(url, heartbeat=None, autoclose=False)
        self._ws = ws
        _LOGGER.info("WebSocket is open")
        self._update_status("connected")
        self.backoff.reset()
        self._reconnect_now = False
        return ws

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            msg = await ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                if not await self._handle_text(msg.data):
                    return
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise SocketClosedError(f"socket error: {ws.exception()}")
            elif msg.type in {
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            }:
                _LOGGER.warning("WebSocket connection closing")
                self._update_status("closed")
                return
            else:
                _LOGGER.debug("WS: ignoring %s frame", msg.type)

    async def _handle_text(self, text: str) -> bool:
        """Process one text frame; return False when the socket should end."""

        self.state.mark_frame(timestamp=self._clock())
        try:
            frame = decode_frame(text)
        except MalformedPayloadError as err:
            _LOGGER.warning("Dropping malformed frame: %s (%s)", err, text[:200])
            return True
        if frame.kind is FrameKind.PING:
            ws = self._ws
            if ws is not None and not ws.closed:
                await ws.send_str(WS_PING)
            return True
        if frame.kind is FrameKind.PONG:
            return True
        if frame.kind is FrameKind.OTHER:
            _LOGGER.debug("WS: unhandled frame %s", text[:200])
            return True
        kind = self._registry.apply_event(frame.event, frame.payload)
        if kind is EnvelopeKind.DISCONNECT:
            _LOGGER.info("Websocket timeout hit; reconnecting")
            self._update_status("disconnect")
            await self._close_ws()
            return False
        return True

    async def _close_ws(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is not None and not ws.closed:
            await ws.close()

    async def _watchdog_loop(self) -> None:
        while not self._closing:
            await asyncio.sleep(self._watchdog_interval)
            await self.check_watchdog()

    def _update_status(self, status: str) -> None:
        if not self.state.update_status(status, timestamp=self._clock()):
            return
        _LOGGER.debug("WS: status -> %s", status)
        if self._on_status is not None:
            self._on_status(status, self.state.snapshot(now=self._clock()))


__all__ = ["RingWebSocketClient", "SocketClosedError", "TicketError"]
