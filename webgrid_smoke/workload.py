"""Search workload executed inside every session."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal, Protocol

from webgrid_smoke.webdriver import (
    ENTER_KEY,
    WebDriverSession,
    WebElement,
    by_class_name,
    by_id,
)

log = logging.getLogger(__name__)

MESSAGE_COOKIE = "webgrid:message"
STATUS_COOKIE = "webgrid:metadata.session:status"


class WorkloadAssertionError(Exception):
    """Raised when the workload's final check does not hold."""


class Workload(Protocol):
    """Unit of work run against a live session; raises on failure."""

    async def __call__(self, session: WebDriverSession) -> None: ...


async def send_message(session: WebDriverSession, message: str) -> None:
    """Report a progress message to the grid dashboard."""
    await session.add_cookie(MESSAGE_COOKIE, message)


async def set_status(
    session: WebDriverSession, status: Literal["success", "failure"]
) -> None:
    """Report the session's verdict to the grid dashboard."""
    await session.add_cookie(STATUS_COOKIE, status)


@dataclass(frozen=True, kw_only=True)
class SearchWorkload:
    """Search for a term and expect a result containing a given text."""

    url: str = "https://duckduckgo.com"
    input_id: str = "search_form_input_homepage"
    query: str = "webgrid.dev"
    result_class: str = "result__a"
    expected_text: str = "WebGrid"
    poll_timeout: float = 20
    poll_interval: float = 0.5

    async def __call__(self, session: WebDriverSession) -> None:
        await session.navigate(self.url)
        await send_message(session, f"Visiting {self.url}")

        form = await session.find_element(by_id(self.input_id))
        await send_message(session, f"Searching for {self.query}")
        await form.send_keys(self.query)
        await form.send_keys(ENTER_KEY)

        # Results are polled explicitly below
        await session.set_implicit_wait(0)

        await send_message(session, "Looking at results")
        for result in await self.wait_for_results(session):
            if self.expected_text in await result.text():
                await send_message(session, "Found result!")
                await set_status(session, "success")
                return

        await send_message(session, "No result.")
        await set_status(session, "failure")
        raise WorkloadAssertionError(
            f"No result containing {self.expected_text!r} for query {self.query!r}"
        )

    async def wait_for_results(self, session: WebDriverSession) -> Sequence[WebElement]:
        """Poll for result elements until some appear or the poll times out.

        Returns:
            The matching elements, empty if none appeared in time

        """
        deadline = asyncio.get_event_loop().time() + self.poll_timeout
        locator = by_class_name(self.result_class)

        while True:
            if results := await session.find_elements(locator):
                return results

            if asyncio.get_event_loop().time() >= deadline:
                log.debug(
                    "No %s elements after %.1fs in session %s",
                    self.result_class,
                    self.poll_timeout,
                    session.session_id,
                )
                return []

            await asyncio.sleep(self.poll_interval)
