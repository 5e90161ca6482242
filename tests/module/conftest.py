"""Fixtures for module tests against an in-process fake grid."""

from collections.abc import AsyncGenerator
from typing import Protocol

import pytest
from aiohttp.test_utils import TestServer

from webgrid_smoke.testing.grid import FakeGrid


class ServeGridFn(Protocol):
    """Protocol for the grid serving function."""

    async def __call__(self, grid: FakeGrid) -> str:
        """Serve the grid and return its endpoint URL."""


@pytest.fixture
async def serve_grid() -> AsyncGenerator[ServeGridFn, None]:
    """Return a function that serves fake grids until the test ends."""
    running: list[tuple[FakeGrid, TestServer]] = []

    async def _serve(grid: FakeGrid) -> str:
        server = TestServer(grid.app())
        await server.start_server()
        running.append((grid, server))
        return str(server.make_url("/"))

    yield _serve

    for grid, server in running:
        grid.release()
        await server.close()
