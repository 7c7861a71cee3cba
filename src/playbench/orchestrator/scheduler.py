"""
Test orchestrator.

Registers scenarios and runs them with:
- A fresh isolated page per scenario
- A fresh virtual clock and network interceptor per scenario
- Navigation to the target page before the first step
- Semaphore-bounded concurrency across scenarios
- Both sync and async entry points
"""

from __future__ import annotations

import asyncio
import random
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

import httpx
import structlog

from playbench.assertions import AssertionEngine
from playbench.clock import VirtualClock
from playbench.commands.actions import Command
from playbench.commands.queue import CommandQueue, StepResult, StepStatus
from playbench.config import HarnessConfig
from playbench.dom import QueryEngine
from playbench.drivers.base import BrowserSession, PageDriver
from playbench.errors import HarnessError, ScenarioDefinitionError
from playbench.fixtures import FixtureStore
from playbench.network import NetworkInterceptor
from playbench.orchestrator.builder import ScenarioBuilder
from playbench.orchestrator.scenario import (
    Scenario,
    ScenarioContext,
    ScenarioResult,
    ScenarioStatus,
)
from playbench.redaction import redact

logger = structlog.get_logger(__name__)

ScenarioBody = Iterable[Command] | Callable[[ScenarioBuilder], Any]


@dataclass
class SuiteResult:
    """Aggregated results of one orchestrator run."""

    suite_name: str | None
    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int = 0
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[ScenarioResult] = field(default_factory=list)
    max_parallelism_reached: int = 0

    @property
    def success_rate(self) -> float:
        executed = self.total - self.skipped
        if executed == 0:
            return 0.0
        return (self.passed / executed) * 100

    @property
    def is_success(self) -> bool:
        """True when no scenario failed; skipped scenarios do not count against it."""
        return self.failed == 0


class TestOrchestrator:
    """
    Runs registered scenarios in isolation.

    Usage:
        async with PlaywrightSession(config) as session:
            orchestrator = TestOrchestrator(session, config, base_url=URL)
            orchestrator.define_scenario("shows banner", lambda s: s.get("#banner").should("visible"))
            result = await orchestrator.run()
    """

    __test__ = False

    def __init__(
        self,
        session: BrowserSession,
        config: HarnessConfig | None = None,
        base_url: str = "",
        *,
        name: str | None = None,
        fixtures: FixtureStore | None = None,
        files_root: Path | None = None,
        downloads_dir: Path | None = None,
        clock_at: datetime | str | int | None = None,
        variables: Mapping[str, Any] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._session = session
        self._config = config or HarnessConfig()
        self._base_url = base_url
        self._name = name
        self._fixtures = fixtures
        self._files_root = files_root or Path.cwd()
        self._downloads_dir = downloads_dir or self._files_root / "downloads"
        self._clock_at = clock_at
        self._variables = dict(variables or {})
        self._http_client = http_client
        self._scenarios: dict[str, Scenario] = {}
        self._log = logger.bind(component="orchestrator", suite=name)

    @property
    def config(self) -> HarnessConfig:
        return self._config

    @property
    def scenarios(self) -> list[Scenario]:
        return list(self._scenarios.values())

    def define_scenario(
        self,
        name: str,
        body: ScenarioBody,
        skip: bool = False,
        variables: Mapping[str, Any] | None = None,
    ) -> Scenario:
        """
        Register a scenario.

        Args:
            name: Unique scenario name
            body: Commands, or a callable that fills a ScenarioBuilder
            skip: Report the scenario as skipped without running it
            variables: Scenario-level variables, layered over the suite's

        Returns:
            The registered scenario
        """
        if callable(body):
            builder = ScenarioBuilder()
            body(builder)
            commands = builder.commands
        else:
            commands = list(body)
        return self.add_scenario(Scenario(name, tuple(commands), skip, dict(variables or {})))

    def add_scenario(self, scenario: Scenario) -> Scenario:
        if not scenario.name.strip():
            raise ScenarioDefinitionError("Scenario name cannot be empty")
        if scenario.name in self._scenarios:
            raise ScenarioDefinitionError(f"Duplicate scenario name: {scenario.name}")
        self._scenarios[scenario.name] = scenario
        return scenario

    def _prepare_downloads(self) -> None:
        if self._downloads_dir.exists():
            shutil.rmtree(self._downloads_dir)
        self._downloads_dir.mkdir(parents=True, exist_ok=True)

    async def run(self, names: Sequence[str] | None = None) -> SuiteResult:
        """
        Run scenarios concurrently, bounded by max_parallel.

        Args:
            names: Subset of scenario names to run (default: all, in registration order)

        Returns:
            Aggregated results in registration order
        """
        if names is None:
            scenarios = self.scenarios
        else:
            unknown = [n for n in names if n not in self._scenarios]
            if unknown:
                raise ScenarioDefinitionError(f"Unknown scenario(s): {', '.join(unknown)}")
            scenarios = [self._scenarios[n] for n in names]

        result = SuiteResult(
            suite_name=self._name,
            started_at=datetime.now(UTC),
            total=len(scenarios),
        )
        if not scenarios:
            result.finished_at = datetime.now(UTC)
            return result

        self._prepare_downloads()
        await self._session.start()

        self._log.info(
            "Starting scenario run",
            scenario_count=len(scenarios),
            max_parallel=self._config.max_parallel,
        )

        semaphore = asyncio.Semaphore(self._config.max_parallel)
        concurrent_count = 0
        max_concurrent = 0

        async def run_single(scenario: Scenario) -> ScenarioResult:
            nonlocal concurrent_count, max_concurrent
            async with semaphore:
                concurrent_count += 1
                max_concurrent = max(max_concurrent, concurrent_count)
                try:
                    return await self._run_scenario(scenario)
                finally:
                    concurrent_count -= 1

        tasks = [asyncio.create_task(run_single(s)) for s in scenarios]
        try:
            results = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            self._log.warning("Scenario run cancelled")
            for task in tasks:
                task.cancel()
            raise

        for res in results:
            result.results.append(res)
            match res.status:
                case ScenarioStatus.PASSED:
                    result.passed += 1
                case ScenarioStatus.FAILED:
                    result.failed += 1
                case ScenarioStatus.SKIPPED:
                    result.skipped += 1

        result.max_parallelism_reached = max_concurrent
        result.finished_at = datetime.now(UTC)
        result.duration_ms = int((result.finished_at - result.started_at).total_seconds() * 1000)

        self._log.info(
            "Scenario run completed",
            total=result.total,
            passed=result.passed,
            failed=result.failed,
            skipped=result.skipped,
            duration_ms=result.duration_ms,
            max_concurrent=result.max_parallelism_reached,
        )
        return result

    def run_sync(self, names: Sequence[str] | None = None) -> SuiteResult:
        """Blocking entry point; closes the session when done."""
        return asyncio.run(self._run_with_lifecycle(names))

    async def _run_with_lifecycle(self, names: Sequence[str] | None) -> SuiteResult:
        try:
            return await self.run(names)
        finally:
            await self._session.close()

    async def _run_scenario(self, scenario: Scenario) -> ScenarioResult:
        result = ScenarioResult(
            name=scenario.name,
            status=ScenarioStatus.SKIPPED,
            started_at=datetime.now(UTC),
        )
        log = self._log.bind(scenario=scenario.name)

        if scenario.skip:
            result.finished_at = result.started_at
            result.step_results = [
                _skipped(i, command) for i, command in enumerate(scenario.commands)
            ]
            log.info("Scenario skipped")
            return result

        seed = self._config.random_seed
        if seed is None:
            seed = random.randrange(2**32)
        result.seed = seed

        clock = VirtualClock()
        interceptor = NetworkInterceptor(self._fixtures)
        if self._clock_at is not None:
            clock.freeze(self._clock_at)

        page: PageDriver | None = None
        try:
            page = await self._session.new_page(clock, interceptor, self._downloads_dir)
            ctx = ScenarioContext(
                name=scenario.name,
                config=self._config,
                page=page,
                query=QueryEngine(page, self._config),
                assertions=AssertionEngine(self._config),
                interceptor=interceptor,
                clock=clock,
                base_url=self._base_url,
                files_root=self._files_root,
                downloads_dir=self._downloads_dir,
                fixtures=self._fixtures,
                variables={**self._variables, **scenario.variables},
                rng=random.Random(seed),
                http_client=self._http_client,
            )
            log.info("Starting scenario", steps=len(scenario.commands), seed=seed)

            if self._base_url:
                await page.goto(self._base_url, self._config.page_load_timeout_ms)

            steps = await CommandQueue(scenario.name, scenario.commands).run(ctx)
            result.step_results = steps
            failure = next((s for s in steps if s.status == StepStatus.FAILED), None)
            if failure is None:
                result.status = ScenarioStatus.PASSED
            else:
                result.status = ScenarioStatus.FAILED
                result.failed_step = failure.step_name
                result.error = failure.error
                result.expected = failure.expected
                result.observed = failure.observed

        except HarnessError as e:
            result.status = ScenarioStatus.FAILED
            result.error = redact(e.message)
            result.expected = redact(e.expected)
            result.observed = redact(e.observed)
            result.step_results = [
                _skipped(i, command) for i, command in enumerate(scenario.commands)
            ]
        except Exception as e:
            result.status = ScenarioStatus.FAILED
            result.error = redact(f"{type(e).__name__}: {e}")
            result.step_results = [
                _skipped(i, command) for i, command in enumerate(scenario.commands)
            ]
            log.exception("Scenario setup failed")

        finally:
            interceptor.reset()
            clock.reset()
            if page is not None:
                try:
                    await page.close()
                except Exception as e:
                    log.warning("Failed to close page", error=str(e))

        result.finished_at = datetime.now(UTC)
        result.duration_ms = int((result.finished_at - result.started_at).total_seconds() * 1000)
        log.info(
            "Scenario finished",
            status=result.status,
            duration_ms=result.duration_ms,
            failed_step=result.failed_step,
        )
        return result


def _skipped(index: int, command: Command) -> StepResult:
    return StepResult(index, redact(command.describe()), command.action, StepStatus.SKIPPED)
