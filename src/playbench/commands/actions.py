"""
User-intent commands.

Each command is a frozen dataclass executed against a ScenarioContext. Text
arguments may reference scenario variables (${name}), which are resolved when
the command runs, not when it is enqueued.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import urljoin

import httpx
import structlog

from playbench.assertions import Expectation, Predicate
from playbench.errors import (
    AssertionTimeout,
    ElementNotFound,
    FixtureError,
    ForcedNetworkError,
    NetworkInterceptFailure,
    RequestFailure,
)
from playbench.network import Exchange, ResponseSpec
from playbench.redaction import MASK

if TYPE_CHECKING:
    from playbench.orchestrator.scenario import ScenarioContext

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Target:
    """How to find an element: selector, text matcher, or both."""

    selector: str | None = None
    text: str | None = None
    exact: bool = False
    position: int = 0

    def __post_init__(self) -> None:
        if self.selector is None and self.text is None:
            raise ValueError("Target needs a selector or a text matcher")

    def describe(self) -> str:
        if self.text is None:
            label = self.selector or ""
        elif self.selector is None:
            label = f"contains {self.text!r}"
        else:
            label = f"{self.selector} contains {self.text!r}"
        return label if self.position == 0 else f"{label} [{self.position}]"


@dataclass(frozen=True)
class Command(ABC):
    """Base class for every step a scenario can run."""

    action: ClassVar[str]
    label: str | None = field(default=None, kw_only=True)

    @abstractmethod
    async def execute(self, ctx: ScenarioContext) -> Any:
        """Run the command; raise a HarnessError on failure."""

    def describe(self) -> str:
        return self.label or self.action

    def log_fields(self) -> dict[str, Any]:
        return {"action": self.action}


@dataclass(frozen=True)
class Visit(Command):
    action: ClassVar[str] = "visit"
    url: str = ""

    async def execute(self, ctx: ScenarioContext) -> str:
        url = urljoin(ctx.base_url, ctx.render(self.url)) if self.url else ctx.base_url
        await ctx.page.goto(url, ctx.config.page_load_timeout_ms)
        return url

    def describe(self) -> str:
        return self.label or f"visit {self.url or 'base url'}"


@dataclass(frozen=True)
class Reload(Command):
    action: ClassVar[str] = "reload"

    async def execute(self, ctx: ScenarioContext) -> None:
        await ctx.page.reload(ctx.config.page_load_timeout_ms)


@dataclass(frozen=True)
class Click(Command):
    action: ClassVar[str] = "click"
    target: Target

    async def execute(self, ctx: ScenarioContext) -> None:
        handle = await ctx.find(self.target)
        await handle.click()

    def describe(self) -> str:
        return self.label or f"click {self.target.describe()}"


@dataclass(frozen=True)
class Type(Command):
    action: ClassVar[str] = "type"
    target: Target
    text: str
    sensitive: bool = False

    async def execute(self, ctx: ScenarioContext) -> None:
        handle = await ctx.find(self.target)
        await handle.type(ctx.render(self.text))

    def describe(self) -> str:
        shown = MASK if self.sensitive else repr(self.text)
        return self.label or f"type {shown} into {self.target.describe()}"

    def log_fields(self) -> dict[str, Any]:
        text = MASK if self.sensitive else self.text
        return {"action": self.action, "text": text, "sensitive": self.sensitive}


@dataclass(frozen=True)
class SetChecked(Command):
    action: ClassVar[str] = "set_checked"
    target: Target
    checked: bool = True

    async def execute(self, ctx: ScenarioContext) -> None:
        handle = await ctx.find(self.target)
        await handle.set_checked(self.checked)

    def describe(self) -> str:
        verb = "check" if self.checked else "uncheck"
        return self.label or f"{verb} {self.target.describe()}"


@dataclass(frozen=True)
class Select(Command):
    """
    Select options of a select element.

    Exactly one mode applies: values (each matched against option values,
    then labels), option_index (0-based position among all options,
    placeholder included), or random (any option but the first, drawn from
    the scenario's seeded generator). capture_as stores the selected label(s).
    """

    action: ClassVar[str] = "select"
    target: Target
    values: tuple[str, ...] = ()
    option_index: int | None = None
    random: bool = False
    capture_as: str | None = None

    def __post_init__(self) -> None:
        modes = sum((bool(self.values), self.option_index is not None, self.random))
        if modes != 1:
            raise ValueError("Select needs exactly one of values, option_index or random")

    async def execute(self, ctx: ScenarioContext) -> list[str]:
        handle = await ctx.find(self.target)
        state = await handle.require()
        options = list(state.options)
        if not options:
            raise ElementNotFound(
                f"{self.target.describe()} has no options",
                expected="select element with options",
                observed=state.summary(),
            )

        if self.random:
            if len(options) < 2:
                raise ElementNotFound(
                    "No option to pick besides the first",
                    expected="at least 2 options",
                    observed=len(options),
                )
            chosen = [options[ctx.rng.randint(1, len(options) - 1)]]
        elif self.option_index is not None:
            if not 0 <= self.option_index < len(options):
                raise ElementNotFound(
                    f"Option index {self.option_index} out of range",
                    expected=f"0..{len(options) - 1}",
                    observed=self.option_index,
                )
            chosen = [options[self.option_index]]
        else:
            chosen = [self._match(ctx.render(value), options) for value in self.values]

        selected = await handle.select([value for value, _ in chosen])
        labels = [label for _, label in chosen]
        logger.debug("Selected options", target=self.target.describe(), labels=labels)
        if self.capture_as:
            ctx.variables[self.capture_as] = labels[0] if len(labels) == 1 else ", ".join(labels)
        return selected

    @staticmethod
    def _match(wanted: str, options: list[tuple[str, str]]) -> tuple[str, str]:
        for option in options:
            if option[0] == wanted:
                return option
        for option in options:
            if option[1] == wanted:
                return option
        raise ElementNotFound(
            f"No option with value or label {wanted!r}",
            expected=wanted,
            observed=[label for _, label in options],
        )

    def describe(self) -> str:
        if self.label:
            return self.label
        if self.random:
            how = "a random option"
        elif self.option_index is not None:
            how = f"option {self.option_index}"
        else:
            how = ", ".join(self.values)
        return f"select {how} in {self.target.describe()}"


@dataclass(frozen=True)
class Upload(Command):
    action: ClassVar[str] = "upload"
    target: Target
    paths: tuple[str, ...]
    drag_drop: bool = False

    async def execute(self, ctx: ScenarioContext) -> list[Path]:
        resolved = [ctx.resolve_path(path) for path in self.paths]
        missing = [str(path) for path in resolved if not path.is_file()]
        if missing:
            raise FixtureError(f"Upload file not found: {', '.join(missing)}", observed=missing)
        handle = await ctx.find(self.target)
        await handle.upload(resolved, self.drag_drop)
        return resolved

    def describe(self) -> str:
        how = " by drag and drop" if self.drag_drop else ""
        return self.label or f"upload {', '.join(self.paths)}{how}"


@dataclass(frozen=True)
class InvokeValue(Command):
    """Assign an element's value directly, then dispatch an event."""

    action: ClassVar[str] = "invoke"
    target: Target
    value: str
    trigger: str | None = None

    async def execute(self, ctx: ScenarioContext) -> None:
        handle = await ctx.find(self.target)
        await handle.set_value(ctx.render(self.value), self.trigger)

    def describe(self) -> str:
        then = f" and trigger {self.trigger}" if self.trigger else ""
        return self.label or f"set value {self.value!r} on {self.target.describe()}{then}"


@dataclass(frozen=True)
class Blur(Command):
    action: ClassVar[str] = "blur"
    target: Target

    async def execute(self, ctx: ScenarioContext) -> None:
        handle = await ctx.find(self.target)
        await handle.blur()


@dataclass(frozen=True)
class Intercept(Command):
    action: ClassVar[str] = "intercept"
    method: str
    url: str
    response: ResponseSpec | None = None
    alias: str | None = None
    persist: bool = False
    regex: bool = False

    async def execute(self, ctx: ScenarioContext) -> None:
        ctx.interceptor.intercept(
            self.method,
            ctx.render(self.url),
            response=self.response,
            alias=self.alias,
            persist=self.persist,
            regex=self.regex,
        )

    def describe(self) -> str:
        alias = f" as @{self.alias}" if self.alias else ""
        return self.label or f"intercept {self.method} {self.url}{alias}"


@dataclass(frozen=True)
class WaitFor(Command):
    action: ClassVar[str] = "wait_for"
    alias: str
    expect_status: int | None = None

    async def execute(self, ctx: ScenarioContext) -> Exchange:
        exchange = await ctx.interceptor.wait_for(
            self.alias,
            ctx.config.request_timeout_ms,
            ctx.config.response_timeout_ms,
        )
        if exchange.failure is not None:
            error_class = FixtureError if isinstance(exchange.failure, FixtureError) else NetworkInterceptFailure
            raise error_class(
                f"@{self.alias} could not be answered: {exchange.error}",
                expected=self.expect_status,
                observed=exchange.error,
            ) from exchange.failure
        if self.expect_status is None:
            return exchange
        if exchange.network_error:
            raise ForcedNetworkError(
                f"@{self.alias} failed at the connection level; no status to check",
                expected=self.expect_status,
                observed="network error",
            )
        if exchange.status_code != self.expect_status:
            raise AssertionTimeout(
                f"@{self.alias} responded with {exchange.status_code}",
                expected=self.expect_status,
                observed=exchange.status_code,
            )
        return exchange

    def describe(self) -> str:
        status = f" expecting {self.expect_status}" if self.expect_status is not None else ""
        return self.label or f"wait for @{self.alias}{status}"


@dataclass(frozen=True)
class Request(Command):
    """Issue an HTTP request from the harness itself, outside the page."""

    action: ClassVar[str] = "request"
    method: str
    url: str
    expect_status: int | None = None
    headers: tuple[tuple[str, str], ...] = ()
    body: str | None = None

    async def execute(self, ctx: ScenarioContext) -> int:
        url = urljoin(ctx.base_url, ctx.render(self.url))
        kwargs: dict[str, Any] = {"headers": dict(self.headers)}
        if self.body is not None:
            kwargs["content"] = ctx.render(self.body)
        try:
            if ctx.http_client is not None:
                response = await ctx.http_client.request(self.method, url, **kwargs)
            else:
                timeout = httpx.Timeout(ctx.config.response_timeout_ms / 1000)
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.request(self.method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RequestFailure(f"{self.method} {url} failed: {e}", expected=self.expect_status) from e

        logger.debug("Harness request completed", method=self.method, url=url, status=response.status_code)
        if self.expect_status is not None and response.status_code != self.expect_status:
            raise AssertionTimeout(
                f"{self.method} {url} responded with {response.status_code}",
                expected=self.expect_status,
                observed=response.status_code,
            )
        return response.status_code

    def describe(self) -> str:
        return self.label or f"request {self.method} {self.url}"


@dataclass(frozen=True)
class Capture(Command):
    """Store an element's text (or attribute) in a scenario variable."""

    action: ClassVar[str] = "capture"
    target: Target
    variable: str
    attribute: str | None = None

    async def execute(self, ctx: ScenarioContext) -> str | None:
        handle = await ctx.find(self.target)
        state = await handle.require()
        value = state.attribute(self.attribute) if self.attribute else state.text
        ctx.variables[self.variable] = value
        logger.debug("Captured value", variable=self.variable, value=value)
        return value

    def describe(self) -> str:
        return self.label or f"capture {self.target.describe()} as {self.variable}"


def _render_expectation(ctx: ScenarioContext, expectation: Expectation) -> Expectation:
    if isinstance(expectation.expected, str):
        return Expectation(expectation.predicate, ctx.render(expectation.expected), expectation.name)
    return expectation


@dataclass(frozen=True)
class Expect(Command):
    action: ClassVar[str] = "expect"
    target: Target
    expectations: tuple[Expectation, ...] = (Expectation(Predicate.EXIST),)
    timeout_ms: int | None = None

    async def execute(self, ctx: ScenarioContext) -> None:
        expectations = [_render_expectation(ctx, e) for e in self.expectations]
        await ctx.assertions.expect(ctx.handle(self.target), *expectations, timeout_ms=self.timeout_ms)

    def describe(self) -> str:
        expected = " and ".join(e.describe() for e in self.expectations)
        return self.label or f"expect {self.target.describe()} to {expected}"


@dataclass(frozen=True)
class ReadFile(Command):
    """Read a file (retrying until it exists) and check its contents."""

    action: ClassVar[str] = "read_file"
    path: str
    expectations: tuple[Expectation, ...] = (Expectation(Predicate.EXIST),)
    encoding: str = "utf-8"
    timeout_ms: int | None = None

    async def execute(self, ctx: ScenarioContext) -> str | None:
        path = ctx.resolve_path(self.path)

        async def read() -> str | None:
            try:
                return path.read_text(encoding=self.encoding)
            except FileNotFoundError:
                return None

        expectations = [_render_expectation(ctx, e) for e in self.expectations]
        return await ctx.assertions.expect_value(
            read, *expectations, subject=str(path), timeout_ms=self.timeout_ms
        )

    def describe(self) -> str:
        return self.label or f"read {self.path}"


@dataclass(frozen=True)
class FreezeClock(Command):
    action: ClassVar[str] = "freeze_clock"
    at: datetime | str | int

    async def execute(self, ctx: ScenarioContext) -> datetime:
        pinned = ctx.clock.freeze(self.at)
        await ctx.page.sync_clock(ctx.clock.state())
        return pinned

    def describe(self) -> str:
        return self.label or f"freeze clock at {self.at}"


@dataclass(frozen=True)
class AdvanceClock(Command):
    action: ClassVar[str] = "advance_clock"
    milliseconds: int

    async def execute(self, ctx: ScenarioContext) -> datetime:
        now = ctx.clock.advance(self.milliseconds)
        await ctx.page.sync_clock(ctx.clock.state())
        return now

    def describe(self) -> str:
        return self.label or f"advance clock by {self.milliseconds}ms"


@dataclass(frozen=True)
class UnfreezeClock(Command):
    action: ClassVar[str] = "unfreeze_clock"

    async def execute(self, ctx: ScenarioContext) -> None:
        ctx.clock.unfreeze()
        await ctx.page.sync_clock(ctx.clock.state())
