"""Constants for the Ring Connect integration."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Final

# Domain
DOMAIN: Final = "ring_connect"

# HTTP bases
OAUTH_BASE: Final = "https://oauth.ring.com"
OAUTH_TOKEN_PATH: Final = "/oauth/token"
API_BASE: Final = "https://api.ring.com"
APP_BASE: Final = "https://app.ring.com"
MODES_BASE: Final = "https://prd-ring-web-us.prd.rings.solutions"
API_VERSION: Final = 11

# OAuth client identity (public Android client)
OAUTH_CLIENT_ID: Final = "ring_official_android"
OAUTH_SCOPE: Final = "client"

# UA strings (match the vendor apps; the grant endpoint rejects app UAs)
BROWSER_USER_AGENT: Final = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/75.0.3770.100 Safari/537.36"
)
APP_USER_AGENT: Final = "android:com.ringapp:3.25.0(26452333)"
WINDOWS_USER_AGENT: Final = "ring_official_windows/2.4.0"
SNAPSHOT_ACCEPT: Final = "application.vnd.api.v11+json"

STANDARD_HEADERS: Final[Mapping[str, str]] = {
    "User-Agent": APP_USER_AGENT,
    "app_brand": "ring",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "Keep-Alive",
}

# Token lifecycle
EMPTY_TOKEN: Final = "EMPTY"
REFRESH_MARGIN: Final = 20

# Real-time gateway
MESSAGE_PREFIX: Final = "42"
WS_PING: Final = "2"
WS_PONG: Final = "3"
BACKOFF_BASE: Final = 2
BACKOFF_FAILURE_FLOOR: Final = 900
BACKOFF_MAX: Final = 1800
WATCHDOG_INTERVAL: Final = 300
SILENCE_THRESHOLD: Final = 300

# Config entry keys
CONF_TWO_FACTOR: Final = "two_factor"
CONF_LOCATION_ID: Final = "location_id"
CONF_LOCATIONS: Final = "locations"
CONF_HARDWARE_ID: Final = "hardware_id"
CONF_REFRESH_TOKEN: Final = "refresh_token"
CONF_WEBHOOK_TOKEN: Final = "webhook_token"

# Options
CONF_DING_POLLING: Final = "ding_polling"
CONF_DING_INTERVAL: Final = "ding_interval"
CONF_SNAPSHOT_POLLING: Final = "snapshot_polling"
CONF_SNAPSHOT_INTERVAL: Final = "snapshot_interval"
CONF_SUPPRESS_MISSING: Final = "suppress_missing_device_messages"
CONF_SELECTED_DEVICES: Final = "selected_devices"
CONF_RESET_HARDWARE_ID: Final = "reset_hardware_id"

# Location modes of accounts without an alarm
LOCATION_MODES: Final = ("disarmed", "home", "away")

DEFAULT_DING_INTERVAL: Final = 15
MIN_DING_INTERVAL: Final = 8
MAX_DING_INTERVAL: Final = 20
DEFAULT_SNAPSHOT_INTERVAL: Final = 600
SNAPSHOT_FETCH_DELAY: Final = 15

SNAPSHOT_INTERVALS: Final[Mapping[int, str]] = {
    30: "30 Seconds",
    60: "1 Minute",
    90: "1.5 Minutes",
    120: "2 Minutes",
    180: "3 Minutes",
    240: "4 Minutes",
    300: "5 Minutes",
    360: "6 Minutes",
    600: "10 Minutes",
    720: "12 Minutes",
    900: "15 Minutes",
    1200: "20 Minutes",
    1800: "30 Minutes",
    3600: "1 Hour",
    7200: "2 Hours",
    10800: "3 Hours",
    14400: "4 Hours",
    21600: "6 Hours",
    28800: "8 Hours",
    43200: "12 Hours",
    86400: "24 Hours",
}

# Inbound HTTP endpoints
WEBHOOK_URL: Final = f"/api/{DOMAIN}/ifttt"
SNAPSHOT_URL: Final = f"/api/{DOMAIN}/snapshot/{{device_id}}"

STORAGE_VERSION: Final = 1


def storage_key(entry_id: str) -> str:
    """Return the storage key holding persisted state for an entry."""

    return f"{DOMAIN}.{entry_id}"


def signal_device_update(entry_id: str) -> str:
    """Return the dispatcher signal name for device state updates."""

    return f"{DOMAIN}_{entry_id}_device_update"


def signal_new_device(entry_id: str) -> str:
    """Return the dispatcher signal name for newly created devices."""

    return f"{DOMAIN}_{entry_id}_new_device"


def signal_ws_status(entry_id: str) -> str:
    """Return the dispatcher signal name for websocket status updates."""

    return f"{DOMAIN}_{entry_id}_ws_status"


def signal_registry_change(entry_id: str) -> str:
    """Return the dispatcher signal name for registry-level changes."""

    return f"{DOMAIN}_{entry_id}_registry_change"
