"""Config flow handlers for the Ring Connect integration."""

from __future__ import annotations

import logging
import secrets
from typing import Any

from homeassistant import config_entries
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import CONF_PASSWORD, CONF_USERNAME
from homeassistant.core import callback
from homeassistant.data_entry_flow import FlowResult
from homeassistant.helpers import aiohttp_client
import homeassistant.helpers.config_validation as cv
import voluptuous as vol

from .api import RingRequestError, RingRESTClient
from .const import (
    CONF_DING_INTERVAL,
    CONF_DING_POLLING,
    CONF_HARDWARE_ID,
    CONF_LOCATION_ID,
    CONF_LOCATIONS,
    CONF_REFRESH_TOKEN,
    CONF_RESET_HARDWARE_ID,
    CONF_SELECTED_DEVICES,
    CONF_SNAPSHOT_INTERVAL,
    CONF_SNAPSHOT_POLLING,
    CONF_SUPPRESS_MISSING,
    CONF_TWO_FACTOR,
    CONF_WEBHOOK_TOKEN,
    DEFAULT_DING_INTERVAL,
    DEFAULT_SNAPSHOT_INTERVAL,
    DOMAIN,
    MAX_DING_INTERVAL,
    MIN_DING_INTERVAL,
    SNAPSHOT_INTERVALS,
)
from .http import inbound_urls
from .runtime import require_runtime
from .session import (
    AuthStatus,
    CredentialState,
    RingAuthError,
    RingAuthSession,
    RingRateLimitError,
    RingRequestsHeld,
    RingTwoFactorRequired,
    generate_hardware_id,
)

_LOGGER = logging.getLogger(__name__)

CONF_CODE = "code"


def _login_schema(default_user: str = "", two_factor: bool = True) -> vol.Schema:
    """Build the login form schema with provided defaults."""
    return vol.Schema(
        {
            vol.Required(CONF_USERNAME, default=default_user): str,
            vol.Required(CONF_PASSWORD): str,
            vol.Required(CONF_TWO_FACTOR, default=two_factor): bool,
        }
    )


_CODE_SCHEMA = vol.Schema({vol.Required(CONF_CODE): str})


class RingConnectConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    """Log in, answer the two-factor challenge and pick a location."""

    VERSION = 1

    def __init__(self) -> None:
        """Initialise transient flow state."""
        self._auth: RingAuthSession | None = None
        self._username = ""
        self._password = ""
        self._two_factor = True
        self._locations: dict[str, str] = {}
        self._reauth_entry: ConfigEntry | None = None

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> RingConnectOptionsFlow:
        """Return the options flow handler for this config entry."""
        return RingConnectOptionsFlow(config_entry)

    def _build_auth(self, hardware_id: str) -> RingAuthSession:
        session = aiohttp_client.async_get_clientsession(self.hass)
        return RingAuthSession(
            session,
            self._username,
            self._password,
            credentials=CredentialState(hardware_id=hardware_id),
            two_factor_enabled=self._two_factor,
        )

    async def _authenticate(self, code: str | None = None) -> str | None:
        """Run one grant; return a form error key or ``None`` on success."""

        assert self._auth is not None
        result = await self._auth.authenticate(code)
        if result.status is AuthStatus.CHALLENGE:
            return "invalid_2fa" if code else "two_factor_required"
        if not result.ok:
            if result.reason in ("rate_limited", "cannot_connect"):
                return result.reason
            return "invalid_auth"
        try:
            await self._auth.create_session()
        except RingTwoFactorRequired:
            return "two_factor_required"
        except RingRateLimitError:
            return "rate_limited"
        except (RingAuthError, RingRequestsHeld):
            return "invalid_auth"
        return None

    async def async_step_user(self, user_input: dict[str, Any] | None = None) -> FlowResult:
        """Collect credentials and run the first grant."""
        if user_input is None:
            return self.async_show_form(step_id="user", data_schema=_login_schema())

        self._username = user_input[CONF_USERNAME].strip()
        self._password = user_input[CONF_PASSWORD]
        self._two_factor = bool(user_input.get(CONF_TWO_FACTOR, True))
        await self.async_set_unique_id(self._username.lower())
        if self._reauth_entry is None:
            self._abort_if_unique_id_configured()

        hardware_id = generate_hardware_id()
        if self._reauth_entry is not None:
            hardware_id = self._reauth_entry.data.get(CONF_HARDWARE_ID) or hardware_id
        self._auth = self._build_auth(hardware_id)

        errors: dict[str, str] = {}
        try:
            error = await self._authenticate()
        except Exception:
            _LOGGER.exception("Unexpected error during login")
            error = "unknown"
        if error == "two_factor_required":
            return await self.async_step_two_factor()
        if error is None:
            return await self.async_step_location()
        errors["base"] = error
        return self.async_show_form(
            step_id="user",
            data_schema=_login_schema(self._username, self._two_factor),
            errors=errors,
        )

    async def async_step_two_factor(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        """Submit the code Ring sent by SMS or e-mail."""
        if user_input is None:
            return self.async_show_form(step_id="two_factor", data_schema=_CODE_SCHEMA)

        errors: dict[str, str] = {}
        try:
            error = await self._authenticate(str(user_input[CONF_CODE]).strip())
        except Exception:
            _LOGGER.exception("Unexpected error during two-factor verification")
            error = "unknown"
        if error is None:
            return await self.async_step_location()
        errors["base"] = error
        return self.async_show_form(
            step_id="two_factor", data_schema=_CODE_SCHEMA, errors=errors
        )

    async def async_step_location(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        """Pick the location whose devices are mirrored."""
        assert self._auth is not None
        if self._reauth_entry is not None:
            return self._finish_reauth()

        if not self._locations:
            session = aiohttp_client.async_get_clientsession(self.hass)
            client = RingRESTClient(session, self._auth)
            try:
                locations = await client.locations()
            except (RingAuthError, RingRequestsHeld):
                return self.async_abort(reason="invalid_auth")
            except RingRateLimitError:
                return self.async_abort(reason="rate_limited")
            except RingRequestError:
                return self.async_abort(reason="cannot_connect")
            self._locations = {
                str(loc["location_id"]): str(loc.get("name") or loc["location_id"])
                for loc in locations
                if loc.get("location_id")
            }
            if not self._locations:
                return self.async_abort(reason="no_locations")

        if user_input is None:
            return self.async_show_form(
                step_id="location",
                data_schema=vol.Schema(
                    {vol.Required(CONF_LOCATION_ID): vol.In(self._locations)}
                ),
            )

        location_id = user_input[CONF_LOCATION_ID]
        creds = self._auth.credentials
        data = {
            CONF_USERNAME: self._username,
            CONF_PASSWORD: self._password,
            CONF_TWO_FACTOR: self._two_factor,
            CONF_LOCATION_ID: location_id,
            CONF_LOCATIONS: self._locations,
            CONF_HARDWARE_ID: creds.hardware_id,
            CONF_REFRESH_TOKEN: creds.refresh_token,
            CONF_WEBHOOK_TOKEN: secrets.token_hex(16),
        }
        _LOGGER.info("Ring Connect configured for location %s", location_id)
        return self.async_create_entry(
            title=f"Ring ({self._locations[location_id]})", data=data
        )

    async def async_step_reauth(self, entry_data: dict[str, Any]) -> FlowResult:
        """Start re-authentication after the stored credentials were rejected."""
        self._reauth_entry = self.hass.config_entries.async_get_entry(
            self.context["entry_id"]
        )
        self._username = entry_data.get(CONF_USERNAME, "")
        self._two_factor = bool(entry_data.get(CONF_TWO_FACTOR, True))
        return await self.async_step_reauth_confirm()

    async def async_step_reauth_confirm(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        """Ask for the password again and rerun the login."""
        if user_input is None:
            return self.async_show_form(
                step_id="reauth_confirm",
                data_schema=_login_schema(self._username, self._two_factor),
            )
        return await self.async_step_user(user_input)

    def _finish_reauth(self) -> FlowResult:
        assert self._auth is not None and self._reauth_entry is not None
        creds = self._auth.credentials
        data = {
            **self._reauth_entry.data,
            CONF_USERNAME: self._username,
            CONF_PASSWORD: self._password,
            CONF_TWO_FACTOR: self._two_factor,
            CONF_HARDWARE_ID: creds.hardware_id,
            CONF_REFRESH_TOKEN: creds.refresh_token,
        }
        self.hass.config_entries.async_update_entry(self._reauth_entry, data=data)
        self.hass.async_create_task(
            self.hass.config_entries.async_reload(self._reauth_entry.entry_id)
        )
        return self.async_abort(reason="reauth_successful")


class RingConnectOptionsFlow(config_entries.OptionsFlow):
    """Options flow for polling, device selection and hardware id reset."""

    def __init__(self, entry: ConfigEntry) -> None:
        """Store the entry being configured."""
        self.entry = entry

    def _device_choices(self) -> dict[str, str]:
        try:
            runtime = require_runtime(self.hass, self.entry.entry_id)
        except LookupError:
            return {}
        return dict(runtime.registry.catalog)

    async def async_step_init(self, user_input: dict[str, Any] | None = None) -> FlowResult:
        """Show or process the options form."""
        if user_input is not None:
            options = dict(user_input)
            options[CONF_SNAPSHOT_INTERVAL] = int(options[CONF_SNAPSHOT_INTERVAL])
            if options.pop(CONF_RESET_HARDWARE_ID, False):
                _LOGGER.info("Resetting hardware id; a new login will be required")
                self.hass.config_entries.async_update_entry(
                    self.entry,
                    data={
                        **self.entry.data,
                        CONF_HARDWARE_ID: generate_hardware_id(),
                        CONF_REFRESH_TOKEN: None,
                    },
                )
            return self.async_create_entry(title="", data=options)

        opts = self.entry.options
        choices = self._device_choices()
        selected = [
            vendor_id
            for vendor_id in opts.get(CONF_SELECTED_DEVICES, [])
            if vendor_id in choices
        ]
        schema: dict[Any, Any] = {
            vol.Optional(
                CONF_DING_POLLING, default=opts.get(CONF_DING_POLLING, True)
            ): bool,
            vol.Optional(
                CONF_DING_INTERVAL,
                default=opts.get(CONF_DING_INTERVAL, DEFAULT_DING_INTERVAL),
            ): vol.All(
                vol.Coerce(int),
                vol.Range(min=MIN_DING_INTERVAL, max=MAX_DING_INTERVAL),
            ),
            vol.Optional(
                CONF_SNAPSHOT_POLLING, default=opts.get(CONF_SNAPSHOT_POLLING, False)
            ): bool,
            vol.Optional(
                CONF_SNAPSHOT_INTERVAL,
                default=str(
                    opts.get(CONF_SNAPSHOT_INTERVAL, DEFAULT_SNAPSHOT_INTERVAL)
                ),
            ): vol.In({str(key): label for key, label in SNAPSHOT_INTERVALS.items()}),
            vol.Optional(
                CONF_SUPPRESS_MISSING, default=opts.get(CONF_SUPPRESS_MISSING, False)
            ): bool,
        }
        if choices:
            schema[vol.Optional(CONF_SELECTED_DEVICES, default=selected)] = (
                cv.multi_select(choices)
            )
        schema[vol.Optional(CONF_RESET_HARDWARE_ID, default=False)] = bool
        return self.async_show_form(
            step_id="init",
            data_schema=vol.Schema(schema),
            description_placeholders=inbound_urls(
                self.hass, self.entry.data.get(CONF_WEBHOOK_TOKEN)
            ),
        )
