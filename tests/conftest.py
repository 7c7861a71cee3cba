"""Pytest fixtures for playbench tests."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

from playbench.assertions import AssertionEngine
from playbench.clock import VirtualClock
from playbench.config import HarnessConfig
from playbench.dom import QueryEngine
from playbench.network import NetworkInterceptor
from playbench.orchestrator import ScenarioContext
from playbench.redaction import registry

from playground_fake import REAL_TODO, PlaygroundPage, PlaygroundSession

REPO_ROOT = Path(__file__).resolve().parent.parent
PLAYGROUND_SUITE_DIR = REPO_ROOT / "suites" / "playground"


@pytest.fixture
def fast_config() -> HarnessConfig:
    """Short timeouts so failing waits finish quickly."""
    return HarnessConfig(
        default_timeout_ms=300,
        poll_interval_ms=10,
        request_timeout_ms=300,
        response_timeout_ms=300,
        step_timeout_ms=2000,
    )


@pytest.fixture
def suite_dir(tmp_path: Path) -> Path:
    """A writable copy of the playground suite and its fixtures."""
    target = tmp_path / "playground"
    shutil.copytree(PLAYGROUND_SUITE_DIR, target, ignore=shutil.ignore_patterns("downloads"))
    return target


@pytest.fixture
def session() -> PlaygroundSession:
    return PlaygroundSession()


@pytest.fixture
def http_client() -> Generator[httpx.AsyncClient, None, None]:
    """Client whose transport answers like the todos endpoint."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/todos/1":
            return httpx.Response(200, json=REAL_TODO)
        return httpx.Response(404, json={})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    yield client


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def interceptor() -> NetworkInterceptor:
    return NetworkInterceptor()


@pytest_asyncio.fixture
async def page(
    session: PlaygroundSession,
    clock: VirtualClock,
    interceptor: NetworkInterceptor,
    tmp_path: Path,
) -> PlaygroundPage:
    """A loaded playground page."""
    page = await session.new_page(clock, interceptor, tmp_path / "downloads")
    await page.goto("https://playground.test/index.html", 1000)
    return page


@pytest.fixture
def context(
    page: PlaygroundPage,
    clock: VirtualClock,
    interceptor: NetworkInterceptor,
    fast_config: HarnessConfig,
    tmp_path: Path,
) -> ScenarioContext:
    """Scenario context bound to the loaded playground page."""
    return ScenarioContext(
        name="scenario",
        config=fast_config,
        page=page,
        query=QueryEngine(page, fast_config),
        assertions=AssertionEngine(fast_config),
        interceptor=interceptor,
        clock=clock,
        base_url="https://playground.test/index.html",
        files_root=tmp_path,
        downloads_dir=tmp_path / "downloads",
    )


@pytest.fixture
def mock_page() -> MagicMock:
    """Bare page double for tests that only inspect driver calls."""
    page = MagicMock()
    page.url = "https://playground.test/index.html"
    return page


@pytest.fixture(autouse=True)
def clear_secrets() -> Generator[None, None, None]:
    yield
    registry.clear()
