"""
Transformers from parsed suite definitions to runnable commands.

StepTransformer maps one StepSpec onto a Command; SuiteTransformer wires a
whole SuiteSpec into a TestOrchestrator rooted at the suite's directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import structlog

from playbench.assertions import Expectation, Predicate
from playbench.commands.actions import (
    AdvanceClock,
    Blur,
    Capture,
    Click,
    Command,
    Expect,
    FreezeClock,
    Intercept,
    InvokeValue,
    ReadFile,
    Reload,
    Request,
    Select,
    SetChecked,
    Target,
    Type,
    UnfreezeClock,
    Upload,
    Visit,
    WaitFor,
)
from playbench.config import HarnessConfig
from playbench.drivers.base import BrowserSession
from playbench.dsl.models import ResponseModel, StepAction, StepSpec, SuiteSpec
from playbench.fixtures import FixtureStore
from playbench.network import ResponseSpec
from playbench.orchestrator import Scenario, TestOrchestrator

logger = structlog.get_logger(__name__)


class StepTransformer:
    """Transforms suite steps into commands."""

    def __init__(self) -> None:
        self._log = logger.bind(component="step_transformer")

    def transform(self, step: StepSpec) -> Command:
        """
        Transform a step into a command.

        Raises:
            ValueError: If the action has no command
        """
        label = step.name
        timeout = step.timeout

        match step.action:
            # Navigation
            case StepAction.VISIT:
                return Visit(step.url or "", label=label)
            case StepAction.RELOAD:
                return Reload(label=label)

            # Interactions
            case StepAction.CLICK:
                return Click(self._target(step), label=label)
            case StepAction.TYPE:
                return Type(self._target(step), step.text or "", step.sensitive, label=label)
            case StepAction.CHECK | StepAction.UNCHECK:
                return SetChecked(
                    self._target(step), step.action == StepAction.CHECK, label=label
                )
            case StepAction.SELECT:
                values: tuple[str, ...] = ()
                if step.values:
                    values = tuple(step.values)
                elif step.value is not None:
                    values = (step.value,)
                return Select(
                    self._target(step),
                    values,
                    option_index=step.option_index,
                    random=step.random,
                    capture_as=step.capture_as,
                    label=label,
                )
            case StepAction.UPLOAD:
                return Upload(
                    self._target(step), tuple(step.files or ()), step.drag_drop, label=label
                )
            case StepAction.INVOKE:
                return InvokeValue(self._target(step), step.value or "", step.trigger, label=label)
            case StepAction.BLUR:
                return Blur(self._target(step), label=label)

            # Network
            case StepAction.INTERCEPT:
                return Intercept(
                    (step.method or "GET").upper(),
                    step.url or "",
                    self._response(step.response),
                    step.alias,
                    step.persist,
                    step.regex,
                    label=label,
                )
            case StepAction.WAIT_FOR:
                return WaitFor(step.alias or "", step.status, label=label)
            case StepAction.REQUEST:
                return Request(
                    (step.method or "GET").upper(),
                    step.url or "",
                    step.status,
                    tuple(step.headers.items()),
                    step.body,
                    label=label,
                )

            # Variables
            case StepAction.CAPTURE:
                return Capture(self._target(step), step.variable or "", step.attribute, label=label)

            # Assertions
            case StepAction.EXPECT:
                return Expect(self._target(step), self._expectations(step), timeout, label=label)
            case StepAction.READ_FILE:
                return ReadFile(
                    step.path or "",
                    self._expectations(step) or (Expectation(Predicate.EXIST),),
                    step.encoding,
                    timeout,
                    label=label,
                )

            # Clock
            case StepAction.FREEZE_CLOCK:
                return FreezeClock(step.at, label=label)  # type: ignore[arg-type]
            case StepAction.ADVANCE_CLOCK:
                return AdvanceClock(step.milliseconds or 0, label=label)
            case StepAction.UNFREEZE_CLOCK:
                return UnfreezeClock(label=label)

        raise ValueError(f"Unknown action: {step.action}")

    def transform_all(self, steps: list[StepSpec]) -> list[Command]:
        return [self.transform(step) for step in steps]

    @staticmethod
    def _target(step: StepSpec) -> Target:
        return Target(
            selector=step.selector,
            text=step.contains,
            exact=step.exact,
            position=step.position,
        )

    @staticmethod
    def _expectations(step: StepSpec) -> tuple[Expectation, ...]:
        return tuple(
            Expectation(model.predicate, model.expected, model.name) for model in step.should or []
        )

    @staticmethod
    def _response(model: ResponseModel | None) -> ResponseSpec | None:
        if model is None:
            return None
        return ResponseSpec(
            status_code=model.status_code,
            body=model.body,
            fixture=model.fixture,
            headers=dict(model.headers),
            force_network_error=model.force_network_error,
            passthrough=model.passthrough,
        )


class SuiteTransformer:
    """Builds a TestOrchestrator from a parsed suite."""

    def __init__(self, step_transformer: StepTransformer | None = None) -> None:
        self._steps = step_transformer or StepTransformer()
        self._log = logger.bind(component="suite_transformer")

    def scenarios(self, suite: SuiteSpec) -> list[Scenario]:
        """Concrete scenarios, parametrized ones expanded in declaration order."""
        scenarios: list[Scenario] = []
        for spec in suite.scenarios:
            commands = tuple(self._steps.transform_all(spec.steps))
            for name, variables in spec.expand():
                scenarios.append(Scenario(name, commands, spec.skip, variables))
        return scenarios

    def configure(
        self,
        suite: SuiteSpec,
        config: HarnessConfig | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> HarnessConfig:
        """
        Layer the suite's timeouts and parallelism over a base configuration.

        Explicit overrides (command-line flags) win over the suite.
        """
        changes: dict[str, Any] = suite.environment.config_overrides()
        if suite.max_parallel is not None:
            changes["max_parallel"] = suite.max_parallel
        changes.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return (config or HarnessConfig()).with_overrides(**changes)

    def build(
        self,
        suite: SuiteSpec,
        suite_path: str | Path,
        session: BrowserSession,
        config: HarnessConfig | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> TestOrchestrator:
        """
        Wire a suite into an orchestrator.

        Relative paths (fixtures, downloads, uploads, read_file) resolve
        against the directory holding the suite file.

        Args:
            suite: Parsed suite
            suite_path: The suite file, or its directory
            session: Browser session that opens one page per scenario
            config: Final configuration, usually from configure(); defaults to
                the suite's settings over HarnessConfig defaults
            base_url: Overrides the suite's environment.base_url

        Returns:
            Orchestrator with every scenario registered
        """
        path = Path(suite_path)
        root = path if path.is_dir() else path.parent

        orchestrator = TestOrchestrator(
            session,
            config or self.configure(suite),
            base_url=base_url or suite.environment.base_url or "",
            name=suite.name,
            fixtures=FixtureStore(root / suite.fixtures_dir),
            files_root=root,
            downloads_dir=root / suite.downloads_dir,
            clock_at=suite.clock,
            variables=suite.variables,
            http_client=http_client,
        )
        for scenario in self.scenarios(suite):
            orchestrator.add_scenario(scenario)

        self._log.info(
            "Built suite",
            suite=suite.name,
            scenario_count=len(orchestrator.scenarios),
            root=str(root),
        )
        return orchestrator
