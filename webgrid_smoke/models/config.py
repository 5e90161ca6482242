"""Dispatch configuration resolved once at startup."""

from typing import Literal, TypeAlias

from pydantic import Field, field_validator
from yarl import URL

from webgrid_smoke.models.base import Model

Browser: TypeAlias = Literal["firefox", "chrome", "safari"]


class DispatchConfig(Model):
    """Immutable configuration shared by the dispatcher and every worker."""

    endpoint: str = Field(..., description="WebDriver endpoint URL (http/https)")
    fork_count: int = Field(..., ge=1, description="Number of concurrent sessions")
    browser: Browser = Field(default="firefox", description="Requested browser")
    timeout: float = Field(
        default=600, gt=0, description="Per-session deadline in seconds"
    )
    stagger: float = Field(
        default=0.025, ge=0, description="Delay between fork starts in seconds"
    )
    session_name: str = Field(default="test-name", description="Grid metadata name")
    session_build: str = Field(
        default="test-build", description="Grid metadata build"
    )
    cleanup_grace: float = Field(
        default=5,
        ge=0,
        description="Seconds to wait on exit for teardown of abandoned sessions",
    )

    @field_validator("endpoint")
    @classmethod
    def _validate_endpoint(cls, value: str) -> str:
        url = URL(value)
        if url.scheme not in {"http", "https"} or not url.host:
            raise ValueError(f"endpoint must be an absolute http(s) URL: {value!r}")
        return value.rstrip("/")

    @field_validator("browser", mode="before")
    @classmethod
    def _normalise_browser(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ConfigurationError(ValueError):
    """Raised when a configuration cannot be dispatched."""
