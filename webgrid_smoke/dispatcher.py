"""Dispatcher fanning out concurrent sessions against one endpoint."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from webgrid_smoke.models.config import ConfigurationError, DispatchConfig
from webgrid_smoke.models.result import AggregateResult, SessionOutcome
from webgrid_smoke.webdriver import WebDriverClient
from webgrid_smoke.worker import SessionWorker, describe_error
from webgrid_smoke.workload import SearchWorkload, Workload

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class Dispatcher:
    """Runs one session worker per fork and collects their outcomes."""

    client: WebDriverClient
    workload: Workload = field(default_factory=SearchWorkload)

    async def dispatch(self, config: DispatchConfig) -> AggregateResult:
        """Run ``fork_count`` sessions concurrently and tally the outcomes.

        Every fork runs to a terminal outcome; a failing or hanging fork never
        stops its siblings.

        Args:
            config: Validated dispatch configuration

        Returns:
            Aggregate of exactly ``fork_count`` outcomes

        Raises:
            ConfigurationError: If ``fork_count`` is below one

        """
        if config.fork_count < 1:
            raise ConfigurationError(
                f"fork_count must be at least 1, got {config.fork_count}"
            )

        log.info(
            "Running %d session(s) against '%s' (browser=%s, timeout=%gs)",
            config.fork_count,
            config.endpoint,
            config.browser,
            config.timeout,
        )
        tasks = [self._run_fork(fork, config) for fork in range(config.fork_count)]

        results = await asyncio.gather(*tasks, return_exceptions=True)

        aggregate = AggregateResult(outcomes=self._process_results(results))
        log.info(
            "All sessions finished. %d / %d succeeded.",
            aggregate.passed,
            aggregate.total,
        )
        return aggregate

    def _process_results(
        self,
        results: Sequence[SessionOutcome | BaseException],
    ) -> Sequence[SessionOutcome]:
        """Turn anything that escaped a fork into a failure for that fork."""
        outcomes: list[SessionOutcome] = []

        for fork, result in enumerate(results):
            if isinstance(result, SessionOutcome):
                outcomes.append(result)
            else:
                log.error("Fork #%d crashed: %s", fork, result, exc_info=result)
                outcomes.append(
                    SessionOutcome(
                        fork=fork,
                        status="failure",
                        duration=0.0,
                        stage="internal",
                        message=describe_error(result),
                    )
                )

        return outcomes

    async def _run_fork(self, fork: int, config: DispatchConfig) -> SessionOutcome:
        """Run one worker against its own deadline."""
        # Stagger the requests a little so the grid is not hit all at once
        if config.stagger:
            await asyncio.sleep(fork * config.stagger)

        worker = SessionWorker(
            fork=fork, config=config, client=self.client, workload=self.workload
        )
        started = asyncio.get_event_loop().time()
        decided: list[SessionOutcome] = []

        try:
            async with asyncio.timeout(config.timeout):
                outcome = await worker.run(on_decided=decided.append)
        except TimeoutError:
            if decided:
                # Only the teardown ran out of time
                log.warning(
                    "Fork #%d hit its deadline while deleting its session", fork
                )
                outcome = decided[0]
            else:
                outcome = SessionOutcome(
                    fork=fork,
                    status="timeout",
                    duration=asyncio.get_event_loop().time() - started,
                    message="Session did not finish within "
                    f"{config.timeout:g} seconds",
                )

        if outcome.status == "success":
            log.info("Fork #%d finished in %.2fs.", fork, outcome.duration)
        else:
            log.info("Fork #%d %s: %s", fork, outcome.status, outcome.message)

        return outcome
