"""Async client for the subset of the W3C WebDriver protocol the workload uses."""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, TypeAlias

import aiohttp
from pydantic import ValidationError
from yarl import URL

from webgrid_smoke.models.config import DispatchConfig
from webgrid_smoke.webdriver.models import (
    Cookie,
    ElementReference,
    ErrorValue,
    NewSession,
)

log = logging.getLogger(__name__)

ENTER_KEY = "\ue007"

Locator: TypeAlias = tuple[str, str]


def by_css(selector: str) -> Locator:
    """Locate elements by CSS selector."""
    return ("css selector", selector)


def by_id(element_id: str) -> Locator:
    """Locate an element by its id attribute."""
    return by_css(f'[id="{element_id}"]')


def by_class_name(class_name: str) -> Locator:
    """Locate elements by a single class name."""
    return by_css(f".{class_name}")


class WebDriverError(Exception):
    """Raised when the remote end answers a command with an error."""

    def __init__(self, error: str, message: str, status: int) -> None:
        super().__init__(f"{error} ({status}): {message}" if message else error)
        self.error = error
        self.message = message
        self.status = status


@dataclass(frozen=True, kw_only=True)
class WebDriverClient:
    """Client bound to one WebDriver endpoint.

    A single client is shared by all sessions of a dispatch. It owns the HTTP
    connection pool and the background tasks that tear down sessions
    abandoned after a local timeout.
    """

    endpoint: URL
    session: aiohttp.ClientSession = field(repr=False)
    _abandoned: set[asyncio.Task[None]] = field(
        default_factory=set, repr=False, compare=False
    )

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: DispatchConfig
    ) -> AsyncGenerator["WebDriverClient", None]:
        """Create client with managed session lifecycle.

        The connector has no connection limit so that forks never queue
        behind each other locally. On exit, teardown of abandoned sessions is
        given ``cleanup_grace`` seconds before being cancelled.
        """
        connector = aiohttp.TCPConnector(limit=0)
        # Deadlines are enforced per fork by the dispatcher
        timeout = aiohttp.ClientTimeout(total=None)
        async with aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={"Accept": "application/json"},
        ) as session:
            client = cls(endpoint=URL(config.endpoint), session=session)
            try:
                yield client
            finally:
                await client.drain(config.cleanup_grace)

    async def request(
        self,
        method: str,
        segments: Sequence[str],
        payload: Mapping[str, Any] | None = None,
    ) -> Mapping[str, Any]:
        """Send a command and return the decoded response body.

        Raises:
            WebDriverError: If the remote end reports an error or the body is
                not a JSON object.

        """
        url = self.endpoint.joinpath(*segments)
        if payload is None and method == "POST":
            payload = {}
        async with self.session.request(method, url, json=payload) as response:
            text = await response.text()
            status = response.status

        try:
            data = json.loads(text) if text else {}
        except json.JSONDecodeError:
            raise WebDriverError(
                "unknown error", f"non-JSON response: {text[:200]}", status
            ) from None

        if not isinstance(data, dict):
            raise WebDriverError(
                "unknown error", f"unexpected body: {text[:200]}", status
            )

        value = data.get("value")
        if isinstance(value, dict) and "error" in value:
            error = ErrorValue.model_validate(value)
            raise WebDriverError(error.error, error.message or "", status)
        if status >= 400:
            raise WebDriverError("unknown error", text[:200], status)

        return data

    async def command(
        self,
        method: str,
        segments: Sequence[str],
        payload: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send a command and return its ``value``."""
        data = await self.request(method, segments, payload)
        return data.get("value")

    async def new_session(
        self, capabilities: Mapping[str, Any]
    ) -> "WebDriverSession":
        """Create a remote session.

        Legacy remote ends answer with ``sessionId`` at the top level instead
        of inside ``value``; both shapes are accepted.
        """
        data = await self.request("POST", ["session"], capabilities)
        value = data.get("value") or {}
        if "sessionId" in data:
            created = NewSession(sessionId=data["sessionId"], capabilities=value)
        else:
            created = NewSession.model_validate(value)
        log.debug("Created session %s", created.session_id)
        return WebDriverSession(
            client=self,
            session_id=created.session_id,
            capabilities=created.capabilities,
        )

    async def delete_session(self, session_id: str) -> None:
        """Delete a remote session."""
        await self.command("DELETE", ["session", session_id])
        log.debug("Deleted session %s", session_id)

    def abandon(self, session_id: str) -> None:
        """Schedule best-effort deletion of a session without waiting for it."""
        task = asyncio.get_running_loop().create_task(
            self._delete_abandoned(session_id)
        )
        self._abandoned.add(task)
        task.add_done_callback(self._abandoned.discard)

    async def _delete_abandoned(self, session_id: str) -> None:
        try:
            await self.delete_session(session_id)
        except (
            aiohttp.ClientError,
            WebDriverError,
            ValidationError,
            TimeoutError,
        ) as e:
            log.warning("Failed to delete abandoned session %s: %s", session_id, e)
        else:
            log.info("Deleted abandoned session %s", session_id)

    @property
    def pending_cleanups(self) -> int:
        """Number of abandoned session deletions still in flight."""
        return len(self._abandoned)

    async def drain(self, grace: float) -> None:
        """Wait up to ``grace`` seconds for abandoned session deletions."""
        if not self._abandoned:
            return

        log.info(
            "Waiting up to %.1fs for %d abandoned session(s) to be deleted",
            grace,
            len(self._abandoned),
        )
        if grace > 0:
            _, pending = await asyncio.wait(set(self._abandoned), timeout=grace)
        else:
            pending = set(self._abandoned)

        if pending:
            log.warning(
                "Gave up deleting %d abandoned session(s); the grid must reap them",
                len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


@dataclass(frozen=True, kw_only=True)
class WebDriverSession:
    """Handle to one live remote session."""

    client: WebDriverClient = field(repr=False)
    session_id: str
    capabilities: Mapping[str, Any] = field(default_factory=dict, repr=False)

    async def command(
        self,
        method: str,
        segments: Sequence[str],
        payload: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send a command scoped to this session."""
        return await self.client.command(
            method, ["session", self.session_id, *segments], payload
        )

    async def navigate(self, url: str) -> None:
        """Navigate the top-level browsing context to ``url``."""
        await self.command("POST", ["url"], {"url": url})

    async def find_element(self, locator: Locator) -> "WebElement":
        """Find the first element matching ``locator``."""
        using, value = locator
        result = await self.command(
            "POST", ["element"], {"using": using, "value": value}
        )
        reference = ElementReference.model_validate(result)
        return WebElement(session=self, element_id=reference.element_id)

    async def find_elements(self, locator: Locator) -> list["WebElement"]:
        """Find all elements matching ``locator``; may be empty."""
        using, value = locator
        result = await self.command(
            "POST", ["elements"], {"using": using, "value": value}
        )
        return [
            WebElement(
                session=self,
                element_id=ElementReference.model_validate(item).element_id,
            )
            for item in result or []
        ]

    async def set_implicit_wait(self, seconds: float) -> None:
        """Set the implicit element lookup timeout."""
        await self.command("POST", ["timeouts"], {"implicit": int(seconds * 1000)})

    async def add_cookie(self, name: str, value: str) -> None:
        """Add a cookie to the current browsing context."""
        cookie = Cookie(name=name, value=value)
        await self.command(
            "POST",
            ["cookie"],
            {"cookie": cookie.model_dump(by_alias=True, exclude_none=True)},
        )


@dataclass(frozen=True, kw_only=True)
class WebElement:
    """Reference to an element within a session."""

    session: WebDriverSession = field(repr=False)
    element_id: str

    async def send_keys(self, text: str) -> None:
        """Type ``text`` into the element."""
        await self.session.command(
            "POST", ["element", self.element_id, "value"], {"text": text}
        )

    async def text(self) -> str:
        """Return the rendered text of the element."""
        result = await self.session.command(
            "GET", ["element", self.element_id, "text"]
        )
        return str(result or "")
