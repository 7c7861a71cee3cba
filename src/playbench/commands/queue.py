"""
Command queue.

Runs a scenario's commands strictly in order. Each command is awaited to
completion before the next one starts; the first failure stops the queue and
every remaining command is reported as skipped.
"""

from __future__ import annotations

import asyncio
import time
import traceback
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Iterable

import structlog

from playbench.commands.actions import Command
from playbench.errors import HarnessError, ScenarioDefinitionError
from playbench.redaction import redact

if TYPE_CHECKING:
    from playbench.orchestrator.scenario import ScenarioContext

logger = structlog.get_logger(__name__)


class StepStatus(StrEnum):
    """Status of a step execution."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    """Result of a single step execution."""

    step_index: int
    step_name: str
    action: str
    status: StepStatus
    duration_ms: int = 0
    result: Any = None
    error: str | None = None
    error_type: str | None = None
    expected: Any = None
    observed: Any = None
    error_traceback: str | None = None


class CommandQueue:
    """
    Ordered, fail-fast pipeline of commands bound to one scenario.

    Usage:
        queue = CommandQueue("subscribes")
        queue.enqueue(Click(Target("button", "Subscribe")))
        results = await queue.run(ctx)
    """

    def __init__(self, scenario: str, commands: Iterable[Command] = ()) -> None:
        self._scenario = scenario
        self._commands: list[Command] = []
        self._started = False
        self._log = logger.bind(component="command_queue", scenario=scenario)
        for command in commands:
            self.enqueue(command)

    def __len__(self) -> int:
        return len(self._commands)

    @property
    def commands(self) -> tuple[Command, ...]:
        return tuple(self._commands)

    def enqueue(self, command: Command) -> None:
        """Append a command; not allowed once the queue has started."""
        if self._started:
            raise ScenarioDefinitionError(
                f"Cannot enqueue into scenario '{self._scenario}' after it started running"
            )
        self._commands.append(command)

    async def run(self, ctx: ScenarioContext) -> list[StepResult]:
        """
        Execute every command in order.

        Returns:
            One StepResult per command; after a failure the rest are SKIPPED
        """
        self._started = True
        results: list[StepResult] = []
        failed = False
        step_timeout = ctx.config.step_timeout_ms

        for index, command in enumerate(self._commands):
            name = redact(command.describe())
            if failed:
                results.append(StepResult(index, name, command.action, StepStatus.SKIPPED))
                continue

            self._log.debug("Executing step", step=index, name=name, **command.log_fields())
            start = time.monotonic()
            result = StepResult(index, name, command.action, StepStatus.RUNNING)
            try:
                result.result = await asyncio.wait_for(command.execute(ctx), step_timeout / 1000)
                result.status = StepStatus.PASSED
            except TimeoutError:
                result.status = StepStatus.FAILED
                result.error = f"Step exceeded the hard limit of {step_timeout}ms"
                result.error_type = "StepTimeout"
            except HarnessError as e:
                result.status = StepStatus.FAILED
                result.error = redact(e.message)
                result.error_type = type(e).__name__
                result.expected = redact(e.expected)
                result.observed = redact(e.observed)
            except Exception as e:
                result.status = StepStatus.FAILED
                result.error = redact(f"{type(e).__name__}: {e}")
                result.error_type = type(e).__name__
                result.error_traceback = redact(traceback.format_exc())
            result.duration_ms = int((time.monotonic() - start) * 1000)
            results.append(result)

            if result.status == StepStatus.FAILED:
                failed = True
                self._log.warning(
                    "Step failed",
                    step=index,
                    name=name,
                    error=result.error,
                    expected=result.expected,
                    observed=result.observed,
                )

        return results
