"""Inbound HTTP endpoints: IFTTT webhook and snapshot images."""

from __future__ import annotations

from collections.abc import Iterator
from http import HTTPStatus
import hmac
import logging

from aiohttp import web
from homeassistant.components.http import HomeAssistantView
from homeassistant.core import HomeAssistant
from homeassistant.helpers.network import NoURLAvailableError, get_url

from .const import DOMAIN, SNAPSHOT_URL, WEBHOOK_URL
from .runtime import EntryRuntime

_LOGGER = logging.getLogger(__name__)


def _runtimes(hass: HomeAssistant) -> Iterator[EntryRuntime]:
    for value in hass.data.get(DOMAIN, {}).values():
        if isinstance(value, EntryRuntime):
            yield value


def _authorized(hass: HomeAssistant, request: web.Request) -> EntryRuntime | None:
    """Return the entry whose webhook token matches the request."""

    token = request.query.get("access_token")
    if not token:
        return None
    for runtime in _runtimes(hass):
        if runtime.webhook_token and hmac.compare_digest(token, runtime.webhook_token):
            return runtime
    return None


class RingWebhookView(HomeAssistantView):
    """Accept motion and ring notifications from IFTTT."""

    url = WEBHOOK_URL
    name = f"api:{DOMAIN}:ifttt"
    requires_auth = False

    def __init__(self, hass: HomeAssistant) -> None:
        self._hass = hass

    async def post(self, request: web.Request) -> web.Response:
        runtime = _authorized(self._hass, request)
        if runtime is None:
            return web.Response(status=HTTPStatus.UNAUTHORIZED)
        body = await request.text()
        if not runtime.registry.handle_ifttt(body):
            return web.Response(status=HTTPStatus.BAD_REQUEST)
        return web.json_response({"status": "complete"})


class RingSnapshotView(HomeAssistantView):
    """Serve the cached snapshot of a camera as an SVG image."""

    url = SNAPSHOT_URL
    name = f"api:{DOMAIN}:snapshot"
    requires_auth = False

    def __init__(self, hass: HomeAssistant) -> None:
        self._hass = hass

    async def get(self, request: web.Request, device_id: str) -> web.Response:
        runtime = _authorized(self._hass, request)
        if runtime is None:
            return web.Response(status=HTTPStatus.UNAUTHORIZED)
        if device_id not in runtime.registry:
            _LOGGER.error("Could not locate a device with an id of %s", device_id)
            return web.Response(status=HTTPStatus.NOT_FOUND)
        return web.Response(
            text=runtime.snapshots.render_svg(device_id),
            content_type="image/svg+xml",
            headers={"Cache-Control": "no-store"},
        )


def inbound_urls(hass: HomeAssistant, token: str | None) -> dict[str, str]:
    """Return the IFTTT and snapshot URLs that carry the entry token."""

    try:
        base = get_url(hass, prefer_external=True)
    except NoURLAvailableError:
        _LOGGER.debug("No Home Assistant URL configured; showing relative paths")
        base = ""
    query = f"?access_token={token}" if token else ""
    snapshot = SNAPSHOT_URL.replace("{device_id}", "<device_id>")
    return {
        "webhook_url": f"{base}{WEBHOOK_URL}{query}",
        "snapshot_url": f"{base}{snapshot}{query}",
    }


def async_register_views(hass: HomeAssistant) -> None:
    """Register the inbound views once per Home Assistant instance."""

    domain_data = hass.data.setdefault(DOMAIN, {})
    if domain_data.get("_views_registered"):
        return
    hass.http.register_view(RingWebhookView(hass))
    hass.http.register_view(RingSnapshotView(hass))
    domain_data["_views_registered"] = True


__all__ = [
    "RingSnapshotView",
    "RingWebhookView",
    "async_register_views",
    "inbound_urls",
]
