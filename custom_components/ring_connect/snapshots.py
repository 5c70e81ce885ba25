"""Cache of the latest camera snapshots and their SVG wrapper."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
import logging
import time
from typing import Any, Final

_LOGGER = logging.getLogger(__name__)

PLACEHOLDER_IMAGE: Final = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

_JPEG_MAGIC: Final = b"\xff\xd8\xff"
_PNG_MAGIC: Final = b"\x89PNG\r\n\x1a\n"


def image_mime_type(data: bytes) -> str:
    """Return the MIME type of a PNG or JPEG payload."""

    if data.startswith(_PNG_MAGIC):
        return "image/png"
    return "image/jpeg"


def render_snapshot_svg(data_uri: str, *, width: int = 640, height: int = 360) -> str:
    """Wrap ``data_uri`` in an SVG document sized for dashboards."""

    return (
        '<svg xmlns="http://www.w3.org/2000/svg" '
        'xmlns:xlink="http://www.w3.org/1999/xlink" '
        f'width="{width}" height="{height}" viewBox="0 0 {width} {height}">'
        f'<image width="{width}" height="{height}" xlink:href="{data_uri}"/>'
        "</svg>"
    )


class SnapshotCache:
    """Keep the most recent snapshot bytes per camera."""

    def __init__(self) -> None:
        self._images: dict[str, bytes] = {}
        self._updated: dict[str, float] = {}

    def __contains__(self, device_id: object) -> bool:
        return str(device_id) in self._images

    def store(self, device_id: str | int, data: bytes | None) -> bool:
        """Store ``data`` for ``device_id``; return False for empty payloads."""

        if not data:
            _LOGGER.debug("Empty snapshot for %s", device_id)
            return False
        key = str(device_id)
        self._images[key] = bytes(data)
        self._updated[key] = time.time()
        return True

    def get(self, device_id: str | int) -> bytes | None:
        return self._images.get(str(device_id))

    def updated_at(self, device_id: str | int) -> float | None:
        return self._updated.get(str(device_id))

    def discard(self, device_id: str | int) -> None:
        self._images.pop(str(device_id), None)
        self._updated.pop(str(device_id), None)

    def data_uri(self, device_id: str | int) -> str:
        """Return the cached image as a data URI, or the placeholder."""

        data = self.get(device_id)
        if data is None:
            return PLACEHOLDER_IMAGE
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{image_mime_type(data)};base64,{encoded}"

    def render_svg(self, device_id: str | int) -> str:
        return render_snapshot_svg(self.data_uri(device_id))

    def as_dict(self) -> dict[str, Any]:
        """Return the cache with images base64 encoded for storage."""

        return {
            key: {
                "image": base64.b64encode(value).decode("ascii"),
                "updated": self._updated.get(key),
            }
            for key, value in self._images.items()
        }

    def restore(self, data: Mapping[str, Any] | None) -> None:
        """Load images saved by :meth:`as_dict`, skipping corrupt entries."""

        for key, item in (data or {}).items():
            if not isinstance(item, Mapping) or not item.get("image"):
                continue
            try:
                image = base64.b64decode(item["image"], validate=True)
            except (binascii.Error, ValueError):
                _LOGGER.warning("Discarding corrupt cached snapshot for %s", key)
                continue
            self._images[str(key)] = image
            if item.get("updated") is not None:
                self._updated[str(key)] = float(item["updated"])


__all__ = [
    "PLACEHOLDER_IMAGE",
    "SnapshotCache",
    "image_mime_type",
    "render_snapshot_svg",
]
