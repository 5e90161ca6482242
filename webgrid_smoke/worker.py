"""Session worker running one complete browser session."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from webgrid_smoke.models.config import DispatchConfig
from webgrid_smoke.models.result import FailureStage, OutcomeStatus, SessionOutcome
from webgrid_smoke.webdriver import (
    WebDriverClient,
    WebDriverSession,
    build_capabilities,
)
from webgrid_smoke.workload import Workload

log = logging.getLogger(__name__)


def describe_error(error: BaseException) -> str:
    """Human-readable cause, falling back to the type for empty messages."""
    return str(error) or type(error).__name__


@dataclass(frozen=True, kw_only=True)
class SessionWorker:
    """Runs one session lifecycle against the endpoint.

    The worker knows nothing about other forks or deadlines. It never raises
    an ``Exception``; cancellation is the only thing that escapes ``run``.
    """

    fork: int
    config: DispatchConfig
    client: WebDriverClient
    workload: Workload

    @property
    def capabilities(self) -> Mapping[str, Any]:
        return build_capabilities(
            self.config.browser,
            {"name": self.config.session_name, "build": self.config.session_build},
        )

    async def run(
        self, on_decided: Callable[[SessionOutcome], None] | None = None
    ) -> SessionOutcome:
        """Create a session, run the workload in it and delete it again.

        Args:
            on_decided: Called with the outcome once the workload has finished
                and before the session is deleted, so a caller cancelling the
                teardown still knows how the session went

        Returns:
            ``success`` when both steps complete, otherwise ``failure`` with
            the failing stage and its cause

        """
        started = asyncio.get_event_loop().time()

        try:
            async with self.session_scope() as session:
                outcome = await self._exercise(session, started)
                if on_decided is not None:
                    on_decided(outcome)
        except Exception as e:
            return self._outcome(
                "failure",
                started,
                stage="session",
                message=f"Could not create session: {describe_error(e)}",
            )

        return outcome

    async def _exercise(
        self, session: WebDriverSession, started: float
    ) -> SessionOutcome:
        try:
            await self.workload(session)
        except Exception as e:
            return self._outcome(
                "failure",
                started,
                stage="workload",
                message=f"{session.session_id} failed due to {describe_error(e)}",
                session_id=session.session_id,
            )
        return self._outcome("success", started, session_id=session.session_id)

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[WebDriverSession, None]:
        """Hold a remote session for the duration of the block.

        Deletion is attempted on every exit path. When the block is left
        because the surrounding task is being cancelled, deletion is handed to
        the client as a background task so the cancellation is not delayed.
        """
        session = await self.client.new_session(self.capabilities)
        log.debug("Fork #%d acquired session %s", self.fork, session.session_id)
        try:
            yield session
        finally:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                log.warning(
                    "Fork #%d cancelled, abandoning session %s",
                    self.fork,
                    session.session_id,
                )
                self.client.abandon(session.session_id)
            else:
                await self.release(session)

    async def release(self, session: WebDriverSession) -> None:
        """Delete the session; failures are logged and otherwise ignored.

        A deletion cancelled midway is handed to the client's background
        cleanup before the cancellation propagates.
        """
        try:
            await self.client.delete_session(session.session_id)
        except asyncio.CancelledError:
            log.warning(
                "Fork #%d cancelled while deleting session %s, abandoning it",
                self.fork,
                session.session_id,
            )
            self.client.abandon(session.session_id)
            raise
        except Exception as e:
            log.warning(
                "Fork #%d failed to delete session %s: %s",
                self.fork,
                session.session_id,
                describe_error(e),
            )

    def _outcome(
        self,
        status: OutcomeStatus,
        started: float,
        *,
        stage: FailureStage | None = None,
        message: str | None = None,
        session_id: str | None = None,
    ) -> SessionOutcome:
        return SessionOutcome(
            fork=self.fork,
            status=status,
            duration=asyncio.get_event_loop().time() - started,
            stage=stage,
            message=message,
            session_id=session_id,
        )
