"""OAuth session management for the Ring cloud."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from enum import StrEnum
import logging
from typing import Any
import uuid

import aiohttp
from pydantic import ValidationError

from .backend.sanitize import redact_text, redact_token_fragment
from .codecs.ring_models import TokenResponse
from .const import (
    API_BASE,
    BROWSER_USER_AGENT,
    EMPTY_TOKEN,
    OAUTH_BASE,
    OAUTH_CLIENT_ID,
    OAUTH_SCOPE,
    OAUTH_TOKEN_PATH,
    REFRESH_MARGIN,
)

_LOGGER = logging.getLogger(__name__)

SESSION_PATH = "/clients_api/session"


class RingAuthError(Exception):
    """Credentials were rejected or re-authentication failed."""


class RingTwoFactorRequired(Exception):
    """The grant endpoint demands a two-factor verification code."""


class RingRateLimitError(Exception):
    """The vendor throttled the account."""


class RingRequestsHeld(Exception):
    """Requests are suspended until the user supplies new credentials."""


def generate_hardware_id() -> str:
    """Return a fresh installation hardware identifier."""

    return str(uuid.uuid4())


@dataclass
class CredentialState:
    """Token pair, hardware id and request-hold flag for one installation."""

    hardware_id: str
    access_token: str = EMPTY_TOKEN
    authentication_token: str = EMPTY_TOKEN
    refresh_token: str | None = None
    expires_in: int | None = None
    hold_requests: bool = False
    two_factor_pending: bool = False

    @property
    def is_valid(self) -> bool:
        """Return True when an access token is available."""

        return bool(self.access_token) and self.access_token != EMPTY_TOKEN

    def set_from_grant(self, token: TokenResponse) -> bool:
        """Store a grant response; return True when it carried both tokens."""

        if not token.access_token or not token.refresh_token:
            return False
        self.access_token = token.access_token
        self.refresh_token = token.refresh_token
        self.expires_in = token.expires_in
        self.hold_requests = False
        self.two_factor_pending = False
        return True

    def clear_access(self) -> bool:
        """Drop the access token only; return False when already cleared."""

        if not self.is_valid and self.authentication_token == EMPTY_TOKEN:
            return False
        self.access_token = EMPTY_TOKEN
        self.authentication_token = EMPTY_TOKEN
        return True

    def clear_all(self) -> None:
        """Drop every token including the refresh token."""

        self.access_token = EMPTY_TOKEN
        self.authentication_token = EMPTY_TOKEN
        self.refresh_token = None
        self.expires_in = None

    def as_dict(self) -> dict[str, Any]:
        """Return a serializable copy of the state."""

        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> CredentialState:
        """Rebuild state from persisted data, minting a hardware id if needed."""

        data = data or {}
        return cls(
            hardware_id=str(data.get("hardware_id") or generate_hardware_id()),
            access_token=str(data.get("access_token") or EMPTY_TOKEN),
            refresh_token=data.get("refresh_token") or None,
            hold_requests=bool(data.get("hold_requests", False)),
        )


class AuthStatus(StrEnum):
    """Outcome of an authentication attempt."""

    ACCESS_TOKEN = "access_token"
    CHALLENGE = "challenge"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class AuthResult:
    """Result of ``RingAuthSession.authenticate``."""

    status: AuthStatus
    access_token: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when a usable access token was obtained."""

        return self.status is AuthStatus.ACCESS_TOKEN


class RingAuthSession:
    """Owns the credential state and every mutation applied to it."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        username: str,
        password: str,
        *,
        credentials: CredentialState | None = None,
        two_factor_enabled: bool = True,
        on_change: Callable[[CredentialState], None] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialise the session manager with stored credentials."""

        self._session = session
        self._username = username
        self._password = password
        self._two_factor_enabled = two_factor_enabled
        self._credentials = credentials or CredentialState(
            hardware_id=generate_hardware_id()
        )
        self._on_change = on_change
        self._loop = loop
        self._refresh_handle: asyncio.TimerHandle | None = None
        self._refresh_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def credentials(self) -> CredentialState:
        """Return the live credential state."""

        return self._credentials

    @property
    def hardware_id(self) -> str:
        """Return the installation hardware identifier."""

        return self._credentials.hardware_id

    @property
    def access_token(self) -> str:
        """Return the current access token (``EMPTY`` when absent)."""

        return self._credentials.access_token

    @property
    def requests_held(self) -> bool:
        """Return True while requests are suspended."""

        return self._credentials.hold_requests

    def bearer_headers(self) -> dict[str, str]:
        """Return the Authorization header for the current access token."""

        return {"Authorization": f"Bearer {self._credentials.access_token}"}

    def ensure_not_held(self) -> None:
        """Raise ``RingRequestsHeld`` while requests are suspended."""

        if self._credentials.hold_requests:
            raise RingRequestsHeld("Requests are on hold until credentials are renewed")

    def grant_data(self, two_factor_code: str | None = None) -> dict[str, str] | None:
        """Return the grant body fields for the next authentication."""

        creds = self._credentials
        if creds.refresh_token and not two_factor_code:
            _LOGGER.debug("Using refresh token grant")
            return {"grant_type": "refresh_token", "refresh_token": creds.refresh_token}
        if not self._two_factor_enabled or not creds.refresh_token:
            return {
                "grant_type": "password",
                "username": self._username,
                "password": self._password,
            }
        _LOGGER.error(
            "Refresh token is not valid; unable to authenticate with Ring servers"
        )
        return None

    def grant_headers(
        self, grant: Mapping[str, str], two_factor_code: str | None = None
    ) -> dict[str, str]:
        """Return headers for a grant request."""

        headers = {
            "User-Agent": BROWSER_USER_AGENT,
            "hardware_id": self._credentials.hardware_id,
        }
        if self._two_factor_enabled and two_factor_code is not None:
            headers["2fa-support"] = "true"
            headers["2fa-code"] = str(two_factor_code)
        if grant.get("grant_type") == "refresh_token":
            headers.update(self.bearer_headers())
        return headers

    async def authenticate(self, two_factor_code: str | None = None) -> AuthResult:
        """Run one grant and return the outcome.

        Grant selection, token persistence and the request-hold flag follow the
        vendor's rules: 412 asks for a two-factor code, 429 clears everything
        and holds requests, and any other failing status means the
        credentials were rejected.
        """

        async with self._lock:
            return await self._grant(two_factor_code)

    async def reauthenticate(self, stale_token: str | None = None) -> AuthResult:
        """Renew the access token after ``stale_token`` was rejected.

        Callers that saw a 401 for a token another caller already replaced
        get the current token back without a second grant.
        """

        async with self._lock:
            creds = self._credentials
            if creds.is_valid and creds.access_token != stale_token:
                _LOGGER.debug("Access token already renewed by a concurrent request")
                return AuthResult(
                    AuthStatus.ACCESS_TOKEN, access_token=creds.access_token
                )
            return await self._grant(None)

    async def _grant(self, two_factor_code: str | None) -> AuthResult:
        grant = self.grant_data(two_factor_code)
        if grant is None:
            return AuthResult(AuthStatus.FAILURE, reason="no_grant")
        body = {"client_id": OAUTH_CLIENT_ID, "scope": OAUTH_SCOPE, **grant}
        headers = self.grant_headers(grant, two_factor_code)
        url = f"{OAUTH_BASE}{OAUTH_TOKEN_PATH}"
        try:
            status, payload = await self._post(url, body, headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            _LOGGER.error("Authentication request failed: %s", redact_text(str(err)))
            return AuthResult(AuthStatus.FAILURE, reason="cannot_connect")

        result = self._apply_auth_status("auth", status)
        if result is not None:
            return result

        try:
            token = TokenResponse.model_validate(payload or {})
        except ValidationError as err:
            _LOGGER.error("Unexpected grant response: %s", err)
            return AuthResult(AuthStatus.FAILURE, reason="invalid_response")
        if not self._credentials.set_from_grant(token):
            _LOGGER.error("Grant response did not include both tokens")
            return AuthResult(AuthStatus.FAILURE, reason="invalid_response")

        _LOGGER.info(
            "Authenticated with Ring (token %s)",
            redact_token_fragment(token.access_token),
        )
        if token.expires_in is not None:
            self._schedule_refresh(token.expires_in)
        self._notify()
        return AuthResult(AuthStatus.ACCESS_TOKEN, access_token=token.access_token)

    async def create_session(self) -> Any:
        """Register the hardware id with the vendor's session endpoint."""

        self.ensure_not_held()
        body = {
            "device": {
                "hardware_id": self._credentials.hardware_id,
                "metadata": {"api_version": 9},
                "os": "android",
            }
        }
        headers = {
            "User-Agent": BROWSER_USER_AGENT,
            "hardware_id": self._credentials.hardware_id,
            **self.bearer_headers(),
        }
        status, payload = await self._post(f"{API_BASE}{SESSION_PATH}", body, headers)
        result = self._apply_auth_status("session", status)
        if result is None:
            return payload
        if result.status is AuthStatus.CHALLENGE:
            raise RingTwoFactorRequired("Two-factor verification required")
        if result.reason == "rate_limited":
            raise RingRateLimitError("Rate limited by Ring")
        raise RingAuthError(f"Session registration rejected ({status})")

    def _apply_auth_status(self, operation: str, status: int) -> AuthResult | None:
        """Apply credential side effects of a failing grant or session status."""

        if status < 400:
            return None
        creds = self._credentials
        if status == 412:
            _LOGGER.info("Two-factor challenge issued on %s", operation)
            creds.clear_all()
            creds.hold_requests = True
            creds.two_factor_pending = True
            self._notify()
            return AuthResult(AuthStatus.CHALLENGE, reason="two_factor_required")
        if status == 429:
            _LOGGER.warning("Rate limited during %s; holding requests", operation)
            self.mark_rate_limited()
            return AuthResult(AuthStatus.FAILURE, reason="rate_limited")
        _LOGGER.warning(
            "Ring rejected the credentials on %s (status %s)", operation, status
        )
        creds.clear_all()
        self.cancel_refresh()
        self._notify()
        return AuthResult(AuthStatus.FAILURE, reason="invalid_auth")

    def invalidate_access(self, sent_token: str | None = None) -> bool:
        """Clear the access token after a 401; return False if nothing changed.

        When ``sent_token`` is given and no longer current, the 401 belongs to
        a token that was already replaced and the live token is kept.
        """

        if sent_token is not None and self._credentials.access_token != sent_token:
            _LOGGER.debug("Ignoring 401 for a token that was already replaced")
            return False
        if not self._credentials.clear_access():
            return False
        _LOGGER.info("Access token rejected; cleared")
        self._notify()
        return True

    def mark_rate_limited(self) -> None:
        """Clear every token and hold further requests."""

        self._credentials.clear_all()
        self._credentials.hold_requests = True
        self.cancel_refresh()
        self._notify()

    def reset_hardware_id(self) -> str:
        """Mint a new hardware id and force a fresh login."""

        self._credentials.hardware_id = generate_hardware_id()
        self._credentials.clear_all()
        self.cancel_refresh()
        self._notify()
        return self._credentials.hardware_id

    def cancel_refresh(self) -> None:
        """Cancel any scheduled proactive refresh."""

        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None

    async def async_close(self) -> None:
        """Cancel timers and any in-flight proactive refresh."""

        self.cancel_refresh()
        task = self._refresh_task
        self._refresh_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _schedule_refresh(self, expires_in: int) -> None:
        delay = max(expires_in - REFRESH_MARGIN, 0)
        loop = self._loop or asyncio.get_running_loop()
        self.cancel_refresh()
        _LOGGER.info(
            "Token expires in %s seconds; refreshing in %s seconds", expires_in, delay
        )
        self._refresh_handle = loop.call_later(delay, self._on_refresh_due)

    def _on_refresh_due(self) -> None:
        self._refresh_handle = None
        loop = self._loop or asyncio.get_running_loop()
        self._refresh_task = loop.create_task(self._async_proactive_refresh())

    async def _async_proactive_refresh(self) -> None:
        result = await self.authenticate()
        if not result.ok:
            _LOGGER.warning("Proactive token refresh failed: %s", result.reason)

    async def _post(
        self, url: str, body: Mapping[str, Any], headers: Mapping[str, str]
    ) -> tuple[int, Any]:
        async with self._session.post(
            url,
            json=dict(body),
            headers=dict(headers),
            timeout=aiohttp.ClientTimeout(total=25),
        ) as resp:
            if resp.status >= 400:
                text = await resp.text()
                _LOGGER.debug(
                    "HTTP POST %s -> %s; body=%s", url, resp.status, redact_text(text)
                )
                return resp.status, None
            try:
                payload = await resp.json(content_type=None)
            except ValueError:
                payload = None
            return resp.status, payload

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self._credentials)


__all__ = [
    "AuthResult",
    "AuthStatus",
    "CredentialState",
    "RingAuthError",
    "RingAuthSession",
    "RingRateLimitError",
    "RingRequestsHeld",
    "RingTwoFactorRequired",
    "generate_hardware_id",
]
