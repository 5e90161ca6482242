"""Capability payloads for the new session command."""

from collections.abc import Mapping
from typing import Any

from webgrid_smoke.models.config import Browser

VENDOR_OPTIONS_KEY = "webgrid:options"


def build_capabilities(
    browser: Browser, metadata: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Build the W3C ``capabilities`` object for a browser.

    Metadata is attached under the grid's vendor options so the grid can
    label the session in its dashboard. Grids that do not know the vendor
    prefix ignore it.
    """
    always_match: dict[str, Any] = {"browserName": browser}
    if metadata:
        always_match[VENDOR_OPTIONS_KEY] = {"metadata": dict(metadata)}
    return {"capabilities": {"alwaysMatch": always_match, "firstMatch": [{}]}}
