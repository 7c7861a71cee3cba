"""
Network interceptor.

Outgoing page requests are routed through an ordered rule chain. The newest
live rule that matches wins; the terminal rule is pass-through, so requests
nobody intercepts reach the real network untouched. Matched requests are
recorded as exchanges that wait_for() can block on by alias.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from playbench.errors import NetworkInterceptFailure
from playbench.fixtures import FixtureStore, thaw
from playbench.network.rules import (
    InterceptedRequest,
    InterceptRule,
    ResolutionKind,
    ResponseSpec,
)

logger = structlog.get_logger(__name__)


class Transport(Protocol):
    """Driver-side handle on one in-flight request."""

    async def fulfill(self, status: int, headers: dict[str, str], body: bytes) -> None:
        """Answer the request with a synthetic response."""

    async def abort(self) -> None:
        """Fail the request at the connection level."""

    async def forward(self) -> int:
        """Send the request to the real network, deliver the response, return its status."""

    async def continue_(self) -> None:
        """Let the request proceed without observing it."""


@dataclass
class Exchange:
    """A request matched by a rule, and its outcome once resolved."""

    request: InterceptedRequest
    kind: ResolutionKind
    alias: str | None = None
    rule_sequence: int = 0
    status_code: int | None = None
    network_error: bool = False
    error: str | None = None
    failure: Exception | None = None
    dispatched_at: float = field(default_factory=time.monotonic)
    resolved_at: float | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def describe(self) -> dict[str, Any]:
        outcome: Any = "network error" if self.network_error else self.status_code
        if self.failure is not None:
            outcome = "failed"
        return {
            "method": self.request.method,
            "url": self.request.url,
            "alias": self.alias,
            "resolution": str(self.kind),
            "outcome": outcome if self.is_resolved else "pending",
        }


class NetworkInterceptor:
    """Scenario-scoped rule chain with alias tracking."""

    CORS_HEADERS: dict[str, str] = {"access-control-allow-origin": "*"}

    def __init__(self, fixtures: FixtureStore | None = None) -> None:
        self._fixtures = fixtures
        self._rules: list[InterceptRule] = []
        self._exchanges: dict[str, list[Exchange]] = {}
        self._consumed: dict[str, int] = {}
        self._history: list[Exchange] = []
        self._unmatched: list[InterceptedRequest] = []
        self._sequence = itertools.count(1)
        self._condition = asyncio.Condition()
        self._waiters: set[asyncio.Task[Any]] = set()
        self._log = logger.bind(component="network_interceptor")

    @property
    def rules(self) -> list[InterceptRule]:
        return list(self._rules)

    @property
    def history(self) -> list[Exchange]:
        """Every matched exchange, oldest first."""
        return list(self._history)

    @property
    def unmatched(self) -> list[InterceptedRequest]:
        """Requests that fell through to the terminal pass-through rule."""
        return list(self._unmatched)

    def aliases(self) -> set[str]:
        return {rule.alias for rule in self._rules if rule.alias}

    def intercept(
        self,
        method: str,
        url_pattern: str | re.Pattern[str],
        response: ResponseSpec | None = None,
        alias: str | None = None,
        persist: bool = False,
        regex: bool = False,
    ) -> InterceptRule:
        """
        Register a rule.

        Args:
            method: HTTP method, or '*' for any
            url_pattern: Exact URL, glob, or regular expression
            response: Resolution to apply; None observes the real response
            alias: Name for wait_for(); unique within the scenario
            persist: Keep answering after the first match
            regex: Treat a string pattern as a regular expression

        Returns:
            The registered rule
        """
        if alias is not None and alias in self.aliases():
            raise NetworkInterceptFailure(
                f"Alias already registered in this scenario: @{alias}",
                expected="unique alias",
                observed=sorted(self.aliases()),
            )
        rule = InterceptRule(
            method=method,
            url_pattern=url_pattern,
            response=response or ResponseSpec.observe(),
            alias=alias,
            persist=persist,
            regex=regex,
            sequence=next(self._sequence),
        )
        self._rules.append(rule)
        self._log.info("Registered intercept", rule=rule.describe())
        return rule

    def match(self, request: InterceptedRequest) -> InterceptRule | None:
        """Find the newest live rule matching the request."""
        for rule in reversed(self._rules):
            if not rule.exhausted and rule.matches(request):
                return rule
        return None

    async def handle(self, request: InterceptedRequest, transport: Transport) -> Exchange | None:
        """
        Resolve one outgoing request through the rule chain.

        Returns:
            The recorded exchange, or None when the request passed through unmatched
        """
        rule = self.match(request)
        if rule is None:
            self._unmatched.append(request)
            await transport.continue_()
            return None

        rule.hits += 1
        exchange = Exchange(
            request=request,
            kind=rule.response.kind,
            alias=rule.alias,
            rule_sequence=rule.sequence,
        )
        self._history.append(exchange)
        if rule.alias:
            self._exchanges.setdefault(rule.alias, []).append(exchange)
        await self._notify()

        try:
            match exchange.kind:
                case ResolutionKind.STUB:
                    status, headers, body = self._render(rule.response)
                    await transport.fulfill(status, headers, body)
                    exchange.status_code = status
                case ResolutionKind.FORCE_NETWORK_ERROR:
                    await transport.abort()
                    exchange.network_error = True
                case ResolutionKind.PASSTHROUGH:
                    exchange.status_code = await transport.forward()
        except Exception as e:
            exchange.error = str(e)
            exchange.failure = e
            self._log.warning(
                "Intercepted request failed",
                url=request.url,
                alias=rule.alias,
                error=str(e),
            )
            # The page is still waiting on this request.
            try:
                await transport.abort()
            except Exception as abort_error:
                self._log.debug("Abort after failure also failed", url=request.url, error=str(abort_error))
        finally:
            exchange.resolved_at = time.monotonic()
            await self._notify()

        self._log.debug("Resolved intercepted request", **exchange.describe())
        return exchange

    def _render(self, spec: ResponseSpec) -> tuple[int, dict[str, str], bytes]:
        """Build status, headers and body bytes for a stub."""
        headers = {**self.CORS_HEADERS}
        if spec.fixture is not None:
            if self._fixtures is None:
                raise NetworkInterceptFailure(f"No fixture store configured for fixture '{spec.fixture}'")
            body = self._fixtures.raw(spec.fixture)
            headers["content-type"] = "application/json"
        elif spec.body is None:
            body = b""
        elif isinstance(spec.body, bytes):
            body = spec.body
            headers["content-type"] = "application/octet-stream"
        elif isinstance(spec.body, str):
            body = spec.body.encode("utf-8")
            headers["content-type"] = "text/plain; charset=utf-8"
        else:
            body = json.dumps(thaw(spec.body)).encode("utf-8")
            headers["content-type"] = "application/json"
        headers.update({k.lower(): v for k, v in spec.headers.items()})
        return spec.status_code, headers, body

    async def _notify(self) -> None:
        async with self._condition:
            self._condition.notify_all()

    async def wait_for(
        self,
        alias: str,
        request_timeout_ms: int,
        response_timeout_ms: int,
    ) -> Exchange:
        """
        Block until the next unconsumed request for alias is dispatched and resolved.

        Raises:
            NetworkInterceptFailure: Unknown alias, no request in time, or no response in time
        """
        if alias not in self.aliases():
            raise NetworkInterceptFailure(
                f"No intercept registered with alias @{alias}",
                expected=f"@{alias}",
                observed=sorted(self.aliases()),
            )

        task = asyncio.current_task()
        if task is not None:
            self._waiters.add(task)
        try:
            index = self._consumed.get(alias, 0)
            dispatched = await self._wait_until(
                lambda: len(self._exchanges.get(alias, [])) > index,
                request_timeout_ms,
            )
            if not dispatched:
                raise NetworkInterceptFailure(
                    f"No request matched @{alias} within {request_timeout_ms}ms",
                    expected=f"request matching @{alias}",
                    observed=[r.url for r in self._unmatched[-5:]] or "no requests",
                )
            exchange = self._exchanges[alias][index]
            self._consumed[alias] = index + 1

            resolved = await self._wait_until(lambda: exchange.is_resolved, response_timeout_ms)
            if not resolved:
                raise NetworkInterceptFailure(
                    f"Request for @{alias} did not resolve within {response_timeout_ms}ms",
                    expected="resolved response",
                    observed=exchange.describe(),
                )
            return exchange
        finally:
            if task is not None:
                self._waiters.discard(task)

    async def _wait_until(self, predicate: Any, timeout_ms: int) -> bool:
        if predicate():
            return True
        async with self._condition:
            try:
                await asyncio.wait_for(self._condition.wait_for(predicate), timeout_ms / 1000)
            except TimeoutError:
                return False
        return True

    def reset(self) -> None:
        """Drop every rule and exchange and cancel pending waiters."""
        for task in list(self._waiters):
            task.cancel()
        self._waiters.clear()
        self._rules.clear()
        self._exchanges.clear()
        self._consumed.clear()
        self._history.clear()
        self._unmatched.clear()
