"""Pydantic models for Ring REST and real-time payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TokenResponse(BaseModel):
    """Bearer token payload returned by the OAuth grant endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    token_type: str | None = None

    @field_validator("expires_in", mode="before")
    @classmethod
    def _coerce_expiry(cls, value: Any) -> Any:
        """Accept integer-like strings and drop anything else."""

        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value.strip())
        return None


class Location(BaseModel):
    """A user location returned by ``/devices/v1/locations``."""

    model_config = ConfigDict(extra="ignore")

    location_id: str
    name: str | None = None


class TicketAsset(BaseModel):
    """Hub asset listed alongside a real-time ticket."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    doorbot_id: int | str | None = Field(default=None, alias="doorbotId")
    kind: str | None = None
    uuid: str | None = None


class TicketResponse(BaseModel):
    """Connection ticket supporting both legacy response shapes."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    server: str | None = None
    auth_code: str | None = Field(default=None, alias="authCode")
    host: str | None = None
    ticket: str | None = None
    assets: list[TicketAsset] = Field(default_factory=list)

    def socket_url(self) -> str | None:
        """Return the socket URL for whichever shape was received."""

        if self.server:
            return _socket_url(self.server, self.auth_code)
        if self.host:
            return _socket_url(self.host, self.ticket)
        return None


def _socket_url(host: str, code: str | None) -> str:
    return (
        f"wss://{host}/socket.io/?authcode={code}&ack=false&EIO=3&transport=websocket"
    )


class DeviceUpdate(BaseModel):
    """Flat record projected from one entry of a real-time ``body`` array.

    Every optional field stays ``None`` unless the corresponding input key was
    present, so ``as_dict`` never reports values the vendor did not send.
    """

    model_config = ConfigDict(extra="forbid")

    device_type: str | None = None
    zid: str | None = None
    src: str | None = None
    msg: str | None = None

    account_id: str | None = None
    affected_entity_type: str | None = None
    affected_entity_id: str | None = None
    affected_entity_name: str | None = None
    asset_id: str | None = None
    asset_kind: str | None = None
    event_occurred_ts_ms: int | None = None
    level: Any = None

    ac_status: str | None = None
    adapter_type: str | None = None
    battery_level: int | float | None = None
    battery_status: str | None = None
    fingerprint: Any = None
    last_update: Any = None
    last_comm_time: Any = None
    manufacturer_name: str | None = None
    name: str | None = None
    next_expected_wakeup: Any = None
    room_id: Any = None
    serial_number: str | None = None
    tamper_status: str | None = None
    component_devices: Any = None

    signal_strength: Any = None
    firmware: str | None = None
    hardware_version: str | None = None

    device_name: str | None = None
    room_name: str | None = None

    state: Any = None
    impulse_type: str | None = None
    impulses: dict[str, Any] | None = None
    passthru: bool = False

    @field_validator(
        "zid",
        "src",
        "asset_id",
        "account_id",
        "affected_entity_id",
        mode="before",
    )
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        """Vendor identifiers arrive as numbers or strings."""

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return value

    @property
    def display_name(self) -> str | None:
        """Return the best available human readable name."""

        return self.name or self.device_name

    def as_dict(self) -> dict[str, Any]:
        """Return only the fields that were populated from the input."""

        data = self.model_dump(exclude_none=True)
        if not self.passthru:
            data.pop("passthru", None)
        return data


__all__ = [
    "DeviceUpdate",
    "Location",
    "TicketAsset",
    "TicketResponse",
    "TokenResponse",
]
