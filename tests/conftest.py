# ruff: noqa: D100,D101,D102,D103,D105,D107,INP001
from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import pytest

from custom_components.ring_connect.devices import DRIVERS
from custom_components.ring_connect.inventory import HUB_CHILD_KINDS, REST_KINDS
from custom_components.ring_connect.session import CredentialState, RingAuthSession


class FakeResponse:
    """Async context manager mimicking an aiohttp client response."""

    def __init__(
        self,
        status: int = 200,
        json_data: Any = None,
        *,
        text_data: str | None = None,
        body: bytes | None = None,
        headers: dict[str, str] | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.status = status
        self._gate = gate
        self._json = json_data
        if text_data is None and json_data is not None:
            text_data = json.dumps(json_data)
        self._text = text_data or ""
        self._body = body
        self.headers = headers or {}

    async def __aenter__(self) -> FakeResponse:
        if self._gate is not None:
            await self._gate.wait()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def text(self) -> str:
        return self._text

    async def json(self, content_type: str | None = None) -> Any:
        if self._json is None:
            return json.loads(self._text)
        return self._json

    async def read(self) -> bytes:
        if self._body is not None:
            return self._body
        return self._text.encode()


class FakeSession:
    """Serve queued responses to ``request`` and ``post`` in FIFO order."""

    def __init__(self, responses: list[Any] | None = None) -> None:
        self.responses: list[Any] = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def _next(self, method: str, url: str, kwargs: dict[str, Any]) -> Any:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected request {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        return self._next(method, url, kwargs)

    def post(self, url: str, **kwargs: Any) -> Any:
        return self._next("POST", url, kwargs)


class FakeTimerHandle:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Record ``call_later`` requests instead of scheduling them."""

    def __init__(self) -> None:
        self.timers: list[FakeTimerHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimerHandle:
        handle = FakeTimerHandle(delay, callback)
        self.timers.append(handle)
        return handle

    def create_task(self, coro: Any, **kwargs: Any) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(coro, **kwargs)


def token_response(
    access: str = "access-1", refresh: str = "refresh-1", expires_in: int = 3600
) -> FakeResponse:
    return FakeResponse(
        200,
        {
            "access_token": access,
            "refresh_token": refresh,
            "expires_in": expires_in,
            "scope": "client",
            "token_type": "Bearer",
        },
    )


@pytest.fixture
def fake_loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def make_auth(fake_loop: FakeLoop) -> Callable[..., RingAuthSession]:
    def _factory(
        session: FakeSession,
        *,
        refresh_token: str | None = None,
        access_token: str | None = None,
        two_factor: bool = True,
        on_change: Callable[[CredentialState], None] | None = None,
    ) -> RingAuthSession:
        creds = CredentialState(hardware_id="hw-0000-1111")
        if refresh_token is not None:
            creds.refresh_token = refresh_token
        if access_token is not None:
            creds.access_token = access_token
        return RingAuthSession(
            session,  # type: ignore[arg-type]
            "user@example.com",
            "secret",
            credentials=creds,
            two_factor_enabled=two_factor,
            on_change=on_change,
            loop=fake_loop,  # type: ignore[arg-type]
        )

    return _factory


def rest_kind(kind: str):
    return REST_KINDS[kind]


def hub_kind(kind: str):
    return HUB_CHILD_KINDS[kind]


def make_handle(vendor_id: str, kind: str, **metadata: Any):
    descriptor = HUB_CHILD_KINDS.get(kind) or REST_KINDS[kind]
    return DRIVERS[str(descriptor.driver)](vendor_id, descriptor, metadata)
