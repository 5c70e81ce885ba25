"""Ring REST dispatcher: operation table, execution and 401 recovery."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any, Final
from urllib.parse import urlsplit

import aiohttp

from .backend.sanitize import redact_params, redact_text
from .const import (
    API_BASE,
    API_VERSION,
    APP_BASE,
    APP_USER_AGENT,
    DOMAIN,
    MODES_BASE,
    SNAPSHOT_ACCEPT,
    STANDARD_HEADERS,
    WINDOWS_USER_AGENT,
)
from .session import (
    AuthResult,
    RingAuthError,
    RingAuthSession,
    RingRateLimitError,
    RingRequestsHeld,
)

_LOGGER = logging.getLogger(__name__)

ResponseHandler = Callable[[str, Mapping[str, Any], Any], None]


class ResponseType(StrEnum):
    """How a response body is decoded."""

    JSON = "json"
    TEXT = "text"
    BYTES = "bytes"


@dataclass(frozen=True, slots=True)
class RequestSpec:
    """Static description of one logical vendor operation."""

    method: str
    base: str
    path: str
    synchronous: bool = True
    response: ResponseType = ResponseType.JSON
    query: Mapping[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class PreparedRequest:
    """A fully resolved HTTP request for one operation call."""

    operation: str
    method: str
    url: str
    headers: dict[str, str]
    query: dict[str, Any]
    body: Any
    response: ResponseType


class RingRequestError(Exception):
    """Transport failure or unexpected status on a vendor operation."""

    def __init__(self, operation: str, status: int | None, message: str = "") -> None:
        detail = f" ({status})" if status is not None else ""
        super().__init__(f"{operation} failed{detail}: {message}".rstrip(": "))
        self.operation = operation
        self.status = status


_API_V11: Final = {"api_version": API_VERSION}
_MODES_HEADERS: Final = {"User-Agent": APP_USER_AGENT}
_SNAPSHOT_HEADERS: Final = {"Accept": SNAPSHOT_ACCEPT}
_WINDOWS_HEADERS: Final = {"User-Agent": WINDOWS_USER_AGENT, "Accept": SNAPSHOT_ACCEPT}

OPERATIONS: Final[Mapping[str, RequestSpec]] = {
    "locations": RequestSpec("GET", API_BASE, "/devices/v1/locations"),
    "devices": RequestSpec(
        "GET", API_BASE, "/clients_api/ring_devices{device_path}", query=_API_V11
    ),
    "refresh": RequestSpec(
        "GET",
        API_BASE,
        "/clients_api/ring_devices{device_path}",
        synchronous=False,
        query=_API_V11,
    ),
    "dings": RequestSpec(
        "GET", API_BASE, "/clients_api/dings/active", synchronous=False, query=_API_V11
    ),
    "device-control": RequestSpec(
        "POST",
        API_BASE,
        "/clients_api/{kind}/{device_id}/{action}",
        synchronous=False,
        response=ResponseType.TEXT,
    ),
    "device-set": RequestSpec(
        "PUT",
        API_BASE,
        "/clients_api/{kind}/{device_id}{action_path}",
        synchronous=False,
        response=ResponseType.TEXT,
    ),
    "tickets": RequestSpec("GET", APP_BASE, "/api/v1/clap/tickets"),
    "mode-set": RequestSpec(
        "POST",
        MODES_BASE,
        "/api/v1/mode/location/{location_id}",
        synchronous=False,
        query={"api_version": str(API_VERSION)},
        headers=_MODES_HEADERS,
    ),
    "mode-get": RequestSpec(
        "GET",
        MODES_BASE,
        "/api/v1/mode/location/{location_id}",
        synchronous=False,
        query={"api_version": str(API_VERSION)},
        headers=_MODES_HEADERS,
    ),
    "mode-settings": RequestSpec(
        "GET",
        MODES_BASE,
        "/api/v1/mode/location/{location_id}/settings",
        query={"api_version": str(API_VERSION)},
        headers=_MODES_HEADERS,
    ),
    "history": RequestSpec(
        "GET",
        API_BASE,
        "/clients_api/doorbots/history",
        synchronous=False,
        query={"api_version": API_VERSION, "limit": 9},
    ),
    "snapshot-timestamps": RequestSpec(
        "POST",
        API_BASE,
        "/clients_api/snapshots/timestamps",
        headers={**_SNAPSHOT_HEADERS, "Accept-Encoding": "gzip"},
    ),
    "snapshot-image": RequestSpec(
        "GET",
        API_BASE,
        "/clients_api/snapshots/image/{device_id}",
        synchronous=False,
        response=ResponseType.BYTES,
        headers=_WINDOWS_HEADERS,
    ),
    "snapshot-image-tmp": RequestSpec(
        "GET",
        API_BASE,
        "/clients_api/snapshots/image/{device_id}",
        response=ResponseType.BYTES,
        headers=_SNAPSHOT_HEADERS,
    ),
    "snapshot-update": RequestSpec(
        "PUT",
        API_BASE,
        "/clients_api/snapshots/update_all",
        synchronous=False,
        headers=_WINDOWS_HEADERS,
    ),
    "subscribe": RequestSpec(
        "PUT",
        API_BASE,
        "/clients_api/device",
        response=ResponseType.TEXT,
        headers=_WINDOWS_HEADERS,
    ),
    "master-key": RequestSpec("GET", APP_BASE, "/api/v1/rs/masterkey"),
}

DEVICE_GROUPS: Final = (
    "stickup_cams",
    "doorbots",
    "authorized_doorbots",
    "chimes",
    "base_stations",
    "beams_bridges",
)


def _ids(values: Iterable[Any]) -> list[int | str]:
    result: list[int | str] = []
    for value in values:
        text = str(value)
        result.append(int(text) if text.isdigit() else text)
    return result


def _path_params(params: Mapping[str, Any]) -> dict[str, Any]:
    device_id = params.get("device_id")
    action = params.get("action")
    return {
        **params,
        "device_path": f"/{device_id}" if device_id is not None else "",
        "action_path": f"/{action}" if action else "",
    }


def _query(operation: str, params: Mapping[str, Any]) -> dict[str, Any]:
    query: dict[str, Any] = dict(params.get("query") or {})
    if operation == "tickets":
        query["locationID"] = params["location_id"]
    elif operation == "master-key":
        query["locationId"] = params["location_id"]
    elif operation == "history" and params.get("device_id") is not None:
        query["doorbot_ids[]"] = params["device_id"]
    return query


def _body(operation: str, params: Mapping[str, Any]) -> Any:
    if operation == "mode-set":
        return {"mode": str(params["mode"]).lower(), "readOnly": True}
    if operation == "snapshot-timestamps":
        return {"doorbot_ids": _ids(params.get("device_ids", ()))}
    if operation == "snapshot-update":
        return {"refresh": True, "doorbot_ids": _ids(params.get("device_ids", ()))}
    if operation == "subscribe":
        return {"device": {"push_notification_token": params["push_url"]}}
    return params.get("body")


def decode_devices(payload: Any) -> list[dict[str, Any]]:
    """Merge every device group of a listing into one list."""

    if not isinstance(payload, Mapping):
        return []
    merged: list[dict[str, Any]] = []
    for group in DEVICE_GROUPS:
        for item in payload.get(group) or ():
            if isinstance(item, Mapping):
                merged.append(dict(item))
    return merged


class RingRESTClient:
    """Resolve logical operations to HTTP calls against the Ring cloud."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        auth: RingAuthSession,
        *,
        response_handler: ResponseHandler | None = None,
    ) -> None:
        """Initialise the dispatcher with a shared session and auth manager."""

        self._session = session
        self._auth = auth
        self._response_handler = response_handler
        self._pending: set[asyncio.Task] = set()

    @property
    def auth(self) -> RingAuthSession:
        """Return the session manager."""

        return self._auth

    def set_response_handler(self, handler: ResponseHandler | None) -> None:
        """Register the receiver of fire-and-forget results."""

        self._response_handler = handler

    def build_request(
        self, operation: str, params: Mapping[str, Any] | None = None
    ) -> PreparedRequest:
        """Resolve ``operation`` and ``params`` into a prepared request."""

        spec = OPERATIONS.get(operation)
        if spec is None:
            raise ValueError(f"Unknown Ring operation: {operation}")
        params = params or {}
        try:
            path = spec.path.format(**_path_params(params))
        except KeyError as err:
            raise ValueError(f"{operation} requires parameter {err}") from err
        headers = {
            "Host": urlsplit(spec.base).netloc,
            **STANDARD_HEADERS,
            **self._auth.bearer_headers(),
            "hardware_id": self._auth.hardware_id,
            **spec.headers,
        }
        return PreparedRequest(
            operation=operation,
            method=spec.method,
            url=f"{spec.base}{path}",
            headers=headers,
            query={**spec.query, **_query(operation, params)},
            body=_body(operation, params),
            response=spec.response,
        )

    async def request(self, operation: str, **params: Any) -> Any:
        """Execute ``operation`` and return its decoded response.

        A 401 clears the access token, re-authenticates once and replays the
        call once. A failed re-authentication, or a second 401, is terminal.
        """

        if operation == "auth":
            return await self._auth.authenticate(params.get("two_factor_code"))
        if operation == "session":
            return await self._auth.create_session()

        recovery = _AuthRecovery()
        while True:
            self._auth.ensure_not_held()
            sent_token = self._auth.access_token
            prepared = self.build_request(operation, params)
            status, payload = await self._execute(prepared, params)
            if status == 401:
                if not recovery.begin():
                    raise RingAuthError(f"Unauthenticated request {operation} failed")
                self._auth.invalidate_access(sent_token)
                if self._auth.requests_held:
                    raise RingAuthError(
                        f"Unauthenticated request {operation} failed; requests held"
                    )
                result: AuthResult = await self._auth.reauthenticate(sent_token)
                if not result.ok:
                    recovery.fail()
                    raise RingAuthError(
                        f"Re-authentication for {operation} failed: {result.reason}"
                    )
                recovery.replay()
                continue
            if status == 429:
                self._auth.mark_rate_limited()
                raise RingRateLimitError(f"{operation} rate limited")
            if status >= 400:
                raise RingRequestError(operation, status, redact_text(str(payload)))
            return self._decode(operation, params, payload)

    def dispatch(self, operation: str, **params: Any) -> asyncio.Task:
        """Run ``operation`` in the background and hand the result off."""

        task = asyncio.get_running_loop().create_task(
            self._run_dispatched(operation, params), name=f"{DOMAIN}-{operation}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def call(self, operation: str, **params: Any) -> Any:
        """Run ``operation`` in the mode its table entry declares.

        Synchronous operations return their decoded response; the others are
        dispatched and return ``None``.
        """

        spec = OPERATIONS.get(operation)
        if spec is not None and not spec.synchronous:
            self.dispatch(operation, **params)
            return None
        return await self.request(operation, **params)

    async def async_close(self) -> None:
        """Cancel in-flight fire-and-forget requests."""

        tasks = list(self._pending)
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_dispatched(self, operation: str, params: Mapping[str, Any]) -> None:
        try:
            result = await self.request(operation, **params)
        except (
            RingAuthError,
            RingRateLimitError,
            RingRequestsHeld,
            RingRequestError,
        ) as err:
            _LOGGER.error(
                "Request %s with %s failed: %s",
                operation,
                redact_params(params),
                redact_text(str(err)),
            )
            return
        handler = self._response_handler
        if handler is None:
            _LOGGER.debug("No response handler for %s", operation)
            return
        handler(operation, params, result)

    async def _execute(
        self, prepared: PreparedRequest, params: Mapping[str, Any]
    ) -> tuple[int, Any]:
        _LOGGER.debug("HTTP %s %s", prepared.method, prepared.url)
        kwargs: dict[str, Any] = {}
        if prepared.query:
            kwargs["params"] = {k: str(v) for k, v in prepared.query.items()}
        if prepared.body is not None:
            kwargs["json"] = prepared.body
        try:
            async with self._session.request(
                prepared.method,
                prepared.url,
                headers=prepared.headers,
                timeout=aiohttp.ClientTimeout(total=25),
                **kwargs,
            ) as resp:
                if resp.status >= 400:
                    body_text = await resp.text()
                    log_fn = _LOGGER.debug if resp.status == 401 else _LOGGER.error
                    log_fn(
                        "HTTP error %s %s -> %s; body=%s",
                        prepared.method,
                        prepared.operation,
                        resp.status,
                        redact_text(body_text),
                    )
                    return resp.status, body_text
                if prepared.response is ResponseType.BYTES:
                    return resp.status, await resp.read()
                body_text = await resp.text()
                if prepared.response is ResponseType.TEXT or not body_text:
                    return resp.status, body_text or None
                try:
                    return resp.status, await resp.json(content_type=None)
                except ValueError:
                    return resp.status, body_text
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            _LOGGER.error(
                "Request %s with %s failed (sanitized): %s",
                prepared.operation,
                redact_params(params),
                redact_text(str(err)),
            )
            raise RingRequestError(prepared.operation, None, str(err)) from err

    def _decode(self, operation: str, params: Mapping[str, Any], payload: Any) -> Any:
        if operation == "locations":
            if isinstance(payload, Mapping):
                return list(payload.get("user_locations") or [])
            return []
        if operation == "devices" and params.get("device_id") is None:
            return decode_devices(payload)
        if operation == "refresh":
            if isinstance(payload, Mapping):
                if payload.get("id") is not None:
                    return [dict(payload)]
                return decode_devices(payload)
            return list(payload or [])
        if operation == "dings":
            return list(payload or [])
        return payload

    # Convenience wrappers

    async def locations(self) -> list[dict[str, Any]]:
        """Return the account's locations."""

        return await self.request("locations")

    async def devices(self) -> list[dict[str, Any]]:
        """Return every device across all device groups."""

        return await self.request("devices")

    async def device(self, device_id: str | int) -> Any:
        """Return one device record."""

        return await self.request("devices", device_id=device_id)

    async def active_dings(self) -> list[dict[str, Any]]:
        """Return active motion and ring events."""

        return await self.request("dings")

    async def tickets(self, location_id: str) -> Any:
        """Return a real-time connection ticket for ``location_id``."""

        return await self.request("tickets", location_id=location_id)

    async def mode_settings(self, location_id: str) -> Any:
        """Return the location's mode settings."""

        return await self.request("mode-settings", location_id=location_id)

    async def master_key(self, location_id: str) -> Any:
        """Return the location's master key."""

        return await self.request("master-key", location_id=location_id)

    async def snapshot_timestamps(self, device_ids: Iterable[Any]) -> Any:
        """Ask the vendor for fresh snapshot timestamps."""

        return await self.request("snapshot-timestamps", device_ids=list(device_ids))

    async def snapshot_image(self, device_id: str | int) -> bytes:
        """Fetch the latest snapshot image bytes for a camera."""

        return await self.request("snapshot-image-tmp", device_id=device_id)

    async def subscribe(self, push_url: str) -> Any:
        """Register a push notification URL."""

        return await self.request("subscribe", push_url=push_url)

    def refresh_device(self, device_id: str | int | None = None) -> asyncio.Task:
        """Refresh one device (or all devices) in the background."""

        if device_id is None:
            return self.dispatch("refresh")
        return self.dispatch("refresh", device_id=device_id)

    def device_control(
        self,
        kind: str,
        device_id: str | int,
        action: str,
        *,
        query: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> asyncio.Task:
        """POST an actuation command in the background."""

        return self.dispatch(
            "device-control",
            kind=kind,
            device_id=device_id,
            action=action,
            query=dict(query or {}),
            body=body,
        )

    def device_set(
        self,
        kind: str,
        device_id: str | int,
        action: str | None = None,
        *,
        query: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> asyncio.Task:
        """PUT a device setting in the background."""

        return self.dispatch(
            "device-set",
            kind=kind,
            device_id=device_id,
            action=action,
            query=dict(query or {}),
            body=body,
        )

    def mode_set(self, location_id: str, mode: str) -> asyncio.Task:
        """Set the location mode in the background."""

        return self.dispatch("mode-set", location_id=location_id, mode=mode)

    def mode_get(self, location_id: str) -> asyncio.Task:
        """Read the location mode in the background."""

        return self.dispatch("mode-get", location_id=location_id)

    def history(self, device_id: str | int) -> asyncio.Task:
        """Fetch recent history for a camera in the background."""

        return self.dispatch("history", device_id=device_id)

    def snapshot_update(self, device_ids: Iterable[Any]) -> asyncio.Task:
        """Ask cameras to refresh their snapshots in the background."""

        return self.dispatch("snapshot-update", device_ids=list(device_ids))


class RecoveryState(StrEnum):
    """States of the 401 recovery state machine."""

    IDLE = "idle"
    REFRESHING = "refreshing"
    REPLAYING = "replaying"
    FAILED = "failed"


@dataclass(slots=True)
class _AuthRecovery:
    """Allow at most one re-authentication and one replay per request."""

    state: RecoveryState = RecoveryState.IDLE

    def begin(self) -> bool:
        if self.state is not RecoveryState.IDLE:
            self.state = RecoveryState.FAILED
            return False
        self.state = RecoveryState.REFRESHING
        return True

    def replay(self) -> None:
        self.state = RecoveryState.REPLAYING

    def fail(self) -> None:
        self.state = RecoveryState.FAILED


__all__ = [
    "OPERATIONS",
    "PreparedRequest",
    "RecoveryState",
    "RequestSpec",
    "ResponseType",
    "RingRESTClient",
    "RingRequestError",
    "decode_devices",
]
