"""Tests for the dispatcher."""

import asyncio
import itertools
import logging
import random
from collections.abc import Callable, Mapping
from typing import Any, TypeAlias
from unittest.mock import AsyncMock, Mock, patch

import aiohttp
import pytest

from webgrid_smoke.dispatcher import Dispatcher
from webgrid_smoke.models.config import ConfigurationError, DispatchConfig
from webgrid_smoke.models.result import AggregateResult
from webgrid_smoke.testing.factories import DispatchConfigFactory
from webgrid_smoke.webdriver import WebDriverClient, WebDriverSession
from webgrid_smoke.worker import SessionWorker
from webgrid_smoke.workload import WorkloadAssertionError

SessionScript: TypeAlias = Callable[[WebDriverSession], Any]


@pytest.fixture
def client_mock() -> Mock:
    """Create mock client handing out sessions session-0, session-1, ..."""
    client = Mock(spec=WebDriverClient)
    counter = itertools.count()

    async def new_session(capabilities: Mapping[str, Any]) -> WebDriverSession:
        return WebDriverSession(client=client, session_id=f"session-{next(counter)}")

    client.new_session.side_effect = new_session
    return client


async def _hang(session: WebDriverSession) -> None:
    await asyncio.Event().wait()


def scripted_workload(script: Mapping[str, SessionScript]) -> AsyncMock:
    """Workload whose behaviour depends on the session it runs in."""

    async def run(session: WebDriverSession) -> None:
        behaviour = script.get(session.session_id)
        if behaviour is not None:
            await behaviour(session)

    return AsyncMock(side_effect=run)


@pytest.mark.parametrize("fork_count", [1, 3, 10])
async def test_healthy_endpoint_yields_all_successes(
    client_mock: Mock, fork_count: int
) -> None:
    """Every fork succeeds against a healthy endpoint."""
    dispatcher = Dispatcher(client=client_mock, workload=AsyncMock())
    config = DispatchConfigFactory.build(fork_count=fork_count)

    result = await dispatcher.dispatch(config)

    assert result.total == fork_count
    assert result.passed == fork_count
    assert result.succeeded
    assert sorted(o.fork for o in result.outcomes) == list(range(fork_count))
    assert client_mock.delete_session.await_count == fork_count


@pytest.mark.parametrize("fork_count", [1, 4])
async def test_unreachable_endpoint_fails_every_fork(
    client_mock: Mock, fork_count: int
) -> None:
    """Each fork discovers the connectivity failure on its own."""
    client_mock.new_session.side_effect = aiohttp.ClientConnectionError("refused")
    workload = AsyncMock()
    dispatcher = Dispatcher(client=client_mock, workload=workload)
    config = DispatchConfigFactory.build(fork_count=fork_count)

    result = await dispatcher.dispatch(config)

    assert result.total == fork_count
    assert result.failed == fork_count
    assert result.failures_by_stage == {"session": fork_count}
    assert not result.succeeded
    assert client_mock.new_session.await_count == fork_count
    workload.assert_not_awaited()


async def test_hanging_fork_times_out_after_its_deadline(client_mock: Mock) -> None:
    """A fork that never finishes is reported as timeout at its deadline."""
    dispatcher = Dispatcher(client=client_mock, workload=AsyncMock(side_effect=_hang))
    config = DispatchConfigFactory.build(fork_count=2, timeout=0.2)
    loop = asyncio.get_running_loop()

    started = loop.time()
    result = await dispatcher.dispatch(config)
    elapsed = loop.time() - started

    assert result.timeouts == 2
    assert not result.succeeded
    assert elapsed == pytest.approx(0.2, abs=0.15)
    for outcome in result.outcomes:
        assert outcome.duration == pytest.approx(0.2, abs=0.1)
        assert outcome.message == "Session did not finish within 0.2 seconds"
    assert client_mock.abandon.call_count == 2


async def test_timeout_does_not_affect_siblings(client_mock: Mock) -> None:
    """Siblings of a hanging fork still run to success."""
    workload = scripted_workload({"session-1": _hang})
    dispatcher = Dispatcher(client=client_mock, workload=workload)

    result = await dispatcher.dispatch(
        DispatchConfigFactory.build(fork_count=3, timeout=0.2)
    )

    assert result.passed == 2
    assert result.timeouts == 1
    client_mock.abandon.assert_called_once_with("session-1")


@pytest.mark.parametrize(
    ("workload_error", "expected_status"),
    [
        (None, "success"),
        (WorkloadAssertionError("No result."), "failure"),
    ],
)
async def test_deadline_during_teardown_keeps_decided_outcome(
    client_mock: Mock,
    caplog: pytest.LogCaptureFixture,
    workload_error: Exception | None,
    expected_status: str,
) -> None:
    """A slow deletion neither turns the outcome into a timeout nor leaks."""

    async def slow_delete(session_id: str) -> None:
        await asyncio.sleep(10)

    client_mock.delete_session.side_effect = slow_delete
    dispatcher = Dispatcher(
        client=client_mock, workload=AsyncMock(side_effect=workload_error)
    )
    loop = asyncio.get_running_loop()

    started = loop.time()
    with caplog.at_level(logging.WARNING):
        result = await dispatcher.dispatch(
            DispatchConfigFactory.build(fork_count=1, timeout=0.2)
        )

    assert loop.time() - started < 1
    assert result.timeouts == 0
    assert [o.status for o in result.outcomes] == [expected_status]
    assert result.outcomes[0].session_id == "session-0"
    client_mock.abandon.assert_called_once_with("session-0")
    assert "Fork #0 hit its deadline while deleting its session" in caplog.text


async def test_mixed_outcomes(client_mock: Mock) -> None:
    """Three successes, one failure and one timeout are tallied as such."""

    async def fail(session: WebDriverSession) -> None:
        raise WorkloadAssertionError("Element not found :(")

    workload = scripted_workload({"session-3": fail, "session-4": _hang})
    dispatcher = Dispatcher(client=client_mock, workload=workload)

    result = await dispatcher.dispatch(
        DispatchConfigFactory.build(fork_count=5, timeout=0.3)
    )

    assert result.total == 5
    assert result.passed == 3
    assert result.failed == 1
    assert result.timeouts == 1
    assert result.failures_by_stage == {"workload": 1}
    assert not result.succeeded


async def test_completion_order_does_not_change_result(client_mock: Mock) -> None:
    """Shuffling completion order yields the same aggregate."""

    def delay(seconds: float) -> SessionScript:
        async def run(session: WebDriverSession) -> None:
            await asyncio.sleep(seconds)

        return run

    def failing_after(seconds: float) -> SessionScript:
        async def run(session: WebDriverSession) -> None:
            await asyncio.sleep(seconds)
            raise WorkloadAssertionError("no result")

        return run

    def summary(result: AggregateResult) -> tuple[int, int, int, Mapping[str, int]]:
        return (result.passed, result.failed, result.timeouts, result.failures_by_stage)

    delays = [0.0, 0.01, 0.02, 0.03, 0.04, 0.05]
    summaries = []
    for seed in range(3):
        random.Random(seed).shuffle(delays)
        script: dict[str, SessionScript] = {
            f"session-{i}": delay(d) for i, d in enumerate(delays[:4])
        }
        script["session-4"] = failing_after(delays[4])
        script["session-5"] = failing_after(delays[5])

        counter = itertools.count()

        async def new_session(capabilities: Mapping[str, Any]) -> WebDriverSession:
            return WebDriverSession(
                client=client_mock, session_id=f"session-{next(counter)}"
            )

        client_mock.new_session.side_effect = new_session
        dispatcher = Dispatcher(client=client_mock, workload=scripted_workload(script))
        summaries.append(
            summary(
                await dispatcher.dispatch(DispatchConfigFactory.build(fork_count=6))
            )
        )

    assert summaries == [(4, 2, 0, {"workload": 2})] * 3


async def test_timeout_measured_from_each_fork_start(client_mock: Mock) -> None:
    """Staggered forks each get their full timeout."""

    async def slow(session: WebDriverSession) -> None:
        await asyncio.sleep(0.2)

    dispatcher = Dispatcher(client=client_mock, workload=AsyncMock(side_effect=slow))
    config = DispatchConfigFactory.build(fork_count=3, stagger=0.2, timeout=0.5)

    result = await dispatcher.dispatch(config)

    # The last fork starts 0.4s in and finishes after the first deadline
    assert result.passed == 3


async def test_rejects_zero_forks_before_any_network_call(client_mock: Mock) -> None:
    """A fork count of zero never reaches the endpoint."""
    dispatcher = Dispatcher(client=client_mock, workload=AsyncMock())
    config = DispatchConfig.model_construct(
        endpoint="http://grid.test:4444", fork_count=0, timeout=1.0, stagger=0.0
    )

    with pytest.raises(ConfigurationError, match="at least 1"):
        await dispatcher.dispatch(config)

    client_mock.new_session.assert_not_called()


async def test_crashed_fork_becomes_internal_failure(client_mock: Mock) -> None:
    """Anything escaping a worker is counted as a failure for that fork."""
    dispatcher = Dispatcher(client=client_mock, workload=AsyncMock())

    with patch.object(
        SessionWorker,
        "run",
        new_callable=AsyncMock,
        side_effect=[RuntimeError("boom")],
    ):
        result = await dispatcher.dispatch(DispatchConfigFactory.build(fork_count=1))

    assert result.total == 1
    assert result.outcomes[0].status == "failure"
    assert result.outcomes[0].stage == "internal"
    assert result.outcomes[0].message == "boom"
