"""WebDriver protocol client module."""

from webgrid_smoke.webdriver.capabilities import build_capabilities
from webgrid_smoke.webdriver.client import (
    ENTER_KEY,
    WebDriverClient,
    WebDriverError,
    WebDriverSession,
    WebElement,
    by_class_name,
    by_css,
    by_id,
)

__all__ = [
    "ENTER_KEY",
    "WebDriverClient",
    "WebDriverError",
    "WebDriverSession",
    "WebElement",
    "build_capabilities",
    "by_class_name",
    "by_css",
    "by_id",
]
