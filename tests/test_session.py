from __future__ import annotations

import logging
from typing import Any

import aiohttp
import pytest

from conftest import FakeResponse, FakeSession, token_response
from custom_components.ring_connect.const import EMPTY_TOKEN, REFRESH_MARGIN
from custom_components.ring_connect.session import (
    AuthStatus,
    CredentialState,
    RingTwoFactorRequired,
    generate_hardware_id,
)


def test_grant_uses_refresh_token_when_present(make_auth) -> None:
    auth = make_auth(FakeSession(), refresh_token="r-token")

    assert auth.grant_data() == {
        "grant_type": "refresh_token",
        "refresh_token": "r-token",
    }


def test_grant_uses_password_without_refresh_token(make_auth) -> None:
    auth = make_auth(FakeSession())

    grant = auth.grant_data("123456")

    assert grant == {
        "grant_type": "password",
        "username": "user@example.com",
        "password": "secret",
    }


def test_grant_uses_password_when_two_factor_disabled(make_auth) -> None:
    auth = make_auth(FakeSession(), refresh_token="r-token", two_factor=False)

    assert auth.grant_data("123456")["grant_type"] == "password"


def test_grant_refuses_code_with_stale_refresh_token(
    make_auth, caplog: pytest.LogCaptureFixture
) -> None:
    auth = make_auth(FakeSession(), refresh_token="r-token")

    with caplog.at_level(logging.ERROR):
        assert auth.grant_data("123456") is None

    assert "Refresh token is not valid" in caplog.text


def test_grant_headers_carry_two_factor_code_and_bearer(make_auth) -> None:
    auth = make_auth(FakeSession(), refresh_token="r", access_token="a-token")

    password = auth.grant_headers({"grant_type": "password"}, "654321")
    refresh = auth.grant_headers({"grant_type": "refresh_token"})

    assert password["2fa-support"] == "true"
    assert password["2fa-code"] == "654321"
    assert password["hardware_id"] == "hw-0000-1111"
    assert "Authorization" not in password
    assert refresh["Authorization"] == "Bearer a-token"
    assert "2fa-code" not in refresh


def test_grant_headers_skip_two_factor_when_disabled(make_auth) -> None:
    auth = make_auth(FakeSession(), two_factor=False)

    headers = auth.grant_headers({"grant_type": "password"}, "654321")

    assert "2fa-support" not in headers
    assert "2fa-code" not in headers
    assert headers["hardware_id"] == "hw-0000-1111"


@pytest.mark.asyncio
async def test_authenticate_stores_tokens_and_schedules_refresh(
    make_auth, fake_loop
) -> None:
    changes: list[CredentialState] = []
    session = FakeSession([token_response("a1", "r1", expires_in=3600)])
    auth = make_auth(session, on_change=changes.append)

    result = await auth.authenticate()

    assert result.status is AuthStatus.ACCESS_TOKEN
    assert result.ok
    assert auth.access_token == "a1"
    assert auth.credentials.refresh_token == "r1"
    assert [timer.delay for timer in fake_loop.timers] == [3600 - REFRESH_MARGIN]
    assert changes and changes[-1].refresh_token == "r1"
    body = session.calls[0]["json"]
    assert body["client_id"] == "ring_official_android"
    assert body["scope"] == "client"
    assert body["grant_type"] == "password"


@pytest.mark.asyncio
async def test_authenticate_412_requests_two_factor(make_auth) -> None:
    session = FakeSession([FakeResponse(412, text_data="verification required")])
    auth = make_auth(session, refresh_token="old", access_token="a-old")

    result = await auth.authenticate()

    assert result.status is AuthStatus.CHALLENGE
    creds = auth.credentials
    assert creds.two_factor_pending
    assert creds.hold_requests
    assert creds.refresh_token is None
    assert creds.access_token == EMPTY_TOKEN


@pytest.mark.asyncio
async def test_authenticate_with_code_after_challenge(make_auth) -> None:
    session = FakeSession(
        [FakeResponse(412), token_response("a2", "r2", expires_in=60)]
    )
    auth = make_auth(session)

    first = await auth.authenticate()
    second = await auth.authenticate("112233")

    assert first.status is AuthStatus.CHALLENGE
    assert second.ok
    assert session.calls[1]["headers"]["2fa-code"] == "112233"
    assert not auth.requests_held
    assert not auth.credentials.two_factor_pending


@pytest.mark.asyncio
async def test_authenticate_429_clears_tokens_and_holds(make_auth) -> None:
    session = FakeSession([FakeResponse(429)])
    auth = make_auth(session, refresh_token="r", access_token="a")

    result = await auth.authenticate()

    assert result.status is AuthStatus.FAILURE
    assert result.reason == "rate_limited"
    assert auth.requests_held
    assert auth.credentials.refresh_token is None
    assert auth.access_token == EMPTY_TOKEN


@pytest.mark.asyncio
async def test_authenticate_rejected_credentials(make_auth) -> None:
    session = FakeSession([FakeResponse(401, text_data="nope")])
    auth = make_auth(session, refresh_token="r")

    result = await auth.authenticate()

    assert result.reason == "invalid_auth"
    assert auth.credentials.refresh_token is None
    assert not auth.requests_held


@pytest.mark.asyncio
async def test_authenticate_transport_error_keeps_tokens(make_auth) -> None:
    session = FakeSession([aiohttp.ClientConnectionError("boom")])
    auth = make_auth(session, refresh_token="r", access_token="a")

    result = await auth.authenticate()

    assert result.reason == "cannot_connect"
    assert auth.credentials.refresh_token == "r"
    assert auth.access_token == "a"


@pytest.mark.asyncio
async def test_authenticate_without_both_tokens_fails(make_auth) -> None:
    session = FakeSession([FakeResponse(200, {"access_token": "only"})])
    auth = make_auth(session)

    result = await auth.authenticate()

    assert result.reason == "invalid_response"
    assert auth.access_token == EMPTY_TOKEN


@pytest.mark.asyncio
async def test_create_session_412_raises(make_auth) -> None:
    session = FakeSession([FakeResponse(412)])
    auth = make_auth(session, access_token="a")

    with pytest.raises(RingTwoFactorRequired):
        await auth.create_session()

    call = session.calls[0]
    assert call["url"].endswith("/clients_api/session")
    assert call["json"]["device"]["hardware_id"] == "hw-0000-1111"


def test_invalidate_access_only_once(make_auth) -> None:
    auth = make_auth(FakeSession(), refresh_token="r", access_token="a")

    assert auth.invalidate_access()
    assert not auth.invalidate_access()
    assert auth.credentials.refresh_token == "r"


def test_reset_hardware_id_forces_new_login(make_auth) -> None:
    seen: list[Any] = []
    auth = make_auth(
        FakeSession(), refresh_token="r", access_token="a", on_change=seen.append
    )

    new_id = auth.reset_hardware_id()

    assert new_id != "hw-0000-1111"
    assert auth.hardware_id == new_id
    assert auth.credentials.refresh_token is None
    assert not auth.credentials.is_valid
    assert seen


def test_credentials_from_dict_mints_hardware_id() -> None:
    creds = CredentialState.from_dict({"refresh_token": "r"})

    assert creds.hardware_id
    assert creds.refresh_token == "r"
    assert creds.access_token == EMPTY_TOKEN
    assert generate_hardware_id() != generate_hardware_id()


def test_invalidate_access_ignores_replaced_token(make_auth) -> None:
    auth = make_auth(FakeSession(), refresh_token="r", access_token="a-new")

    assert not auth.invalidate_access("a-old")
    assert auth.access_token == "a-new"
    assert auth.invalidate_access("a-new")
    assert not auth.credentials.is_valid


@pytest.mark.asyncio
async def test_reauthenticate_reuses_renewed_token(make_auth) -> None:
    session = FakeSession()
    auth = make_auth(session, refresh_token="r", access_token="a-new")

    result = await auth.reauthenticate("a-old")

    assert result.ok
    assert result.access_token == "a-new"
    assert session.calls == []


@pytest.mark.asyncio
async def test_reauthenticate_grants_for_current_token(make_auth) -> None:
    session = FakeSession([token_response("a2", "r2")])
    auth = make_auth(session, refresh_token="r1", access_token="a1")

    result = await auth.reauthenticate("a1")

    assert result.ok
    assert auth.access_token == "a2"
    assert session.calls[0]["json"]["refresh_token"] == "r1"


@pytest.mark.asyncio
async def test_proactive_refresh_rotates_tokens_each_cycle(
    make_auth, fake_loop
) -> None:
    rotated: list[str | None] = []
    session = FakeSession(
        [
            token_response("a1", "r1", expires_in=600),
            token_response("a2", "r2", expires_in=900),
            token_response("a3", "r3", expires_in=10),
        ]
    )
    auth = make_auth(
        session,
        refresh_token="r0",
        on_change=lambda creds: rotated.append(creds.refresh_token),
    )

    await auth.authenticate()
    for _ in range(2):
        fake_loop.timers[-1].callback()
        await auth._refresh_task

    sent = [call["json"]["refresh_token"] for call in session.calls]
    assert sent == ["r0", "r1", "r2"]
    assert auth.access_token == "a3"
    assert auth.credentials.refresh_token == "r3"
    assert [timer.delay for timer in fake_loop.timers] == [
        600 - REFRESH_MARGIN,
        900 - REFRESH_MARGIN,
        0,
    ]
    assert rotated == ["r1", "r2", "r3"]
    assert session.calls[1]["headers"]["Authorization"] == "Bearer a1"
