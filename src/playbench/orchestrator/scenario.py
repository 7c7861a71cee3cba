"""
Scenario definitions, per-scenario context and results.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

import httpx

from playbench.errors import ScenarioDefinitionError

if TYPE_CHECKING:
    from playbench.assertions import AssertionEngine
    from playbench.clock import VirtualClock
    from playbench.commands.actions import Command, Target
    from playbench.commands.queue import StepResult
    from playbench.config import HarnessConfig
    from playbench.dom import ElementHandle, QueryEngine
    from playbench.drivers.base import PageDriver
    from playbench.fixtures import FixtureStore
    from playbench.network import NetworkInterceptor

# ${name}, ${name.field}, ${name|upper}, ${fixture:todo.title}
RUNTIME_VARIABLE_PATTERN = re.compile(r"\$\{([a-zA-Z_][\w.:-]*)(?:\|(upper|lower))?\}")


class ScenarioStatus(StrEnum):
    """Terminal state of a scenario."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Scenario:
    """A named, ordered list of commands."""

    name: str
    commands: tuple[Command, ...]
    skip: bool = False
    variables: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class ScenarioResult:
    """Outcome of one scenario."""

    name: str
    status: ScenarioStatus
    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int = 0
    step_results: list[StepResult] = field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    expected: Any = None
    observed: Any = None
    seed: int | None = None

    @property
    def reason(self) -> str | None:
        """One-line failure summary naming the step, expectation and last observation."""
        if self.status != ScenarioStatus.FAILED:
            return None
        parts = [f"step '{self.failed_step}'" if self.failed_step else "setup", self.error or "failed"]
        if self.expected is not None:
            parts.append(f"expected: {self.expected}")
        if self.observed is not None:
            parts.append(f"observed: {self.observed}")
        return " | ".join(parts)


def format_value(value: Any) -> str:
    """Render a value the way the page's JavaScript would print it."""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    return str(value)


@dataclass
class ScenarioContext:
    """
    Everything a command may touch while its scenario runs.

    Owned by exactly one scenario; nothing here is shared with siblings.
    """

    name: str
    config: HarnessConfig
    page: PageDriver
    query: QueryEngine
    assertions: AssertionEngine
    interceptor: NetworkInterceptor
    clock: VirtualClock
    base_url: str
    files_root: Path
    downloads_dir: Path
    fixtures: FixtureStore | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    rng: random.Random = field(default_factory=random.Random)
    http_client: httpx.AsyncClient | None = None
    """Shared client for harness-issued requests; a fresh one per request when None."""

    def lookup(self, name: str) -> Any:
        """Resolve a variable name, following dots into nested data."""
        if name.startswith("fixture:"):
            if self.fixtures is None:
                raise ScenarioDefinitionError(f"No fixture store configured for ${{{name}}}")
            head, *path = name.removeprefix("fixture:").split(".")
            value: Any = self.fixtures.get(head)
        else:
            head, *path = name.split(".")
            if head not in self.variables:
                raise ScenarioDefinitionError(
                    f"Undefined variable: {head}",
                    expected=head,
                    observed=sorted(self.variables),
                )
            value = self.variables[head]
        for key in path:
            try:
                value = value[int(key)] if isinstance(value, list | tuple) else value[key]
            except (KeyError, IndexError, ValueError, TypeError) as e:
                raise ScenarioDefinitionError(f"Cannot resolve {name}: no {key!r}") from e
        return value

    def render(self, text: str) -> str:
        """Interpolate ${...} references at execution time."""

        def replacer(match: re.Match[str]) -> str:
            value = format_value(self.lookup(match.group(1)))
            match match.group(2):
                case "upper":
                    return value.upper()
                case "lower":
                    return value.lower()
            return value

        return RUNTIME_VARIABLE_PATTERN.sub(replacer, text)

    def resolve_path(self, path: str) -> Path:
        candidate = Path(self.render(path)).expanduser()
        return candidate if candidate.is_absolute() else self.files_root / candidate

    async def find(self, target: Target, timeout_ms: int | None = None) -> ElementHandle:
        return await self.query.find(
            target.selector,
            self.render(target.text) if target.text is not None else None,
            target.exact,
            target.position,
            timeout_ms,
        )

    def handle(self, target: Target) -> ElementHandle:
        return self.query.handle(
            target.selector,
            self.render(target.text) if target.text is not None else None,
            target.exact,
            target.position,
        )
