"""
Assertion engine for retrying predicates.

Provides assertions for:
- Element presence and visibility
- Checked state of checkboxes and radios
- Values, attributes and text content
- Match counts
- Plain values produced by any async source (files, captured variables)

All expectations of one call are retried together until they hold at the same
time or the timeout elapses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Awaitable, Callable

import structlog

from playbench.config import HarnessConfig
from playbench.dom import ElementHandle, ElementState
from playbench.errors import AssertionTimeout, ElementNotFound
from playbench.polling import eventually

logger = structlog.get_logger(__name__)


class Predicate(StrEnum):
    """Conditions an expectation can check."""

    VISIBLE = "visible"
    NOT_VISIBLE = "not_visible"
    EXIST = "exist"
    NOT_EXIST = "not_exist"
    CHECKED = "checked"
    NOT_CHECKED = "not_checked"
    VALUE = "value"
    ATTRIBUTE = "attribute"
    NOT_ATTRIBUTE = "not_attribute"
    LENGTH = "length"
    CONTAINS_TEXT = "contains_text"
    TEXT = "text"
    EQUALS = "equals"


# Satisfied without the addressed element being present.
ABSENCE_TOLERANT = frozenset({Predicate.NOT_EXIST, Predicate.NOT_VISIBLE, Predicate.LENGTH})


@dataclass(frozen=True)
class Expectation:
    """One predicate with its expected value."""

    predicate: Predicate
    expected: Any = None
    name: str | None = None
    """Attribute name for ATTRIBUTE / NOT_ATTRIBUTE."""

    def __post_init__(self) -> None:
        if self.predicate in (Predicate.ATTRIBUTE, Predicate.NOT_ATTRIBUTE) and not self.name:
            raise ValueError(f"{self.predicate} requires an attribute name")
        if self.predicate == Predicate.LENGTH and not isinstance(self.expected, int):
            raise ValueError("length requires an integer expected value")

    @property
    def requires_element(self) -> bool:
        return self.predicate not in ABSENCE_TOLERANT

    def describe(self) -> str:
        match self.predicate:
            case Predicate.ATTRIBUTE:
                if self.expected is None:
                    return f"have attribute {self.name}"
                return f"have attribute {self.name}={self.expected!r}"
            case Predicate.NOT_ATTRIBUTE:
                if self.expected is None:
                    return f"not have attribute {self.name}"
                return f"not have attribute {self.name}={self.expected!r}"
            case Predicate.LENGTH:
                return f"have length {self.expected}"
            case Predicate.EXIST | Predicate.NOT_EXIST:
                return self.predicate.replace("_", " ")
            case Predicate.VALUE | Predicate.TEXT | Predicate.CONTAINS_TEXT | Predicate.EQUALS:
                return f"{self.predicate.replace('_', ' ')} {self.expected!r}"
            case _:
                return f"be {self.predicate.replace('_', ' ')}"


def check_element(
    expectation: Expectation,
    state: ElementState | None,
    count: int,
) -> bool:
    """Evaluate one expectation against the latest observation."""
    match expectation.predicate:
        case Predicate.EXIST:
            return state is not None
        case Predicate.NOT_EXIST:
            return state is None
        case Predicate.VISIBLE:
            return state is not None and state.visible
        case Predicate.NOT_VISIBLE:
            return state is None or not state.visible
        case Predicate.LENGTH:
            return count == expectation.expected
        case Predicate.EQUALS:
            raise ValueError("equals applies to values, not elements")

    if state is None:
        return False

    match expectation.predicate:
        case Predicate.CHECKED:
            return state.checked is True
        case Predicate.NOT_CHECKED:
            return state.checked is False
        case Predicate.VALUE:
            return state.value == str(expectation.expected)
        case Predicate.ATTRIBUTE:
            actual = state.attribute(expectation.name or "")
            if expectation.expected is None:
                return actual is not None
            return actual == str(expectation.expected)
        case Predicate.NOT_ATTRIBUTE:
            actual = state.attribute(expectation.name or "")
            if expectation.expected is None:
                return actual is None
            return actual != str(expectation.expected)
        case Predicate.CONTAINS_TEXT:
            return str(expectation.expected) in state.text
        case Predicate.TEXT:
            return state.text == str(expectation.expected)
    return False


def check_value(expectation: Expectation, value: Any) -> bool:
    """Evaluate one expectation against a plain value."""
    match expectation.predicate:
        case Predicate.EQUALS:
            return value == expectation.expected
        case Predicate.EXIST:
            return value is not None
        case Predicate.NOT_EXIST:
            return value is None
        case Predicate.CONTAINS_TEXT:
            return value is not None and str(expectation.expected) in str(value)
        case Predicate.LENGTH:
            return value is not None and len(value) == expectation.expected
        case _:
            raise ValueError(f"{expectation.predicate} does not apply to plain values")


class AssertionEngine:
    """
    Evaluates expectations with retry-until-timeout.

    Negative predicates pass as soon as the target condition is first
    observed; nothing has to persist.
    """

    def __init__(self, config: HarnessConfig) -> None:
        self._config = config
        self._log = logger.bind(component="assertion_engine")

    async def expect(
        self,
        handle: ElementHandle,
        *expectations: Expectation,
        timeout_ms: int | None = None,
    ) -> ElementState | None:
        """
        Wait until every expectation holds for the handle's element.

        Returns:
            The element state that satisfied the expectations (None if absent)

        Raises:
            ElementNotFound: A presence-requiring expectation never saw the element
            AssertionTimeout: The element was found but never satisfied the expectations
        """
        if not expectations:
            expectations = (Expectation(Predicate.EXIST),)
        timeout = self._config.default_timeout_ms if timeout_ms is None else timeout_ms

        async def attempt() -> tuple[bool, tuple[ElementState | None, int]]:
            _, matched = await handle.snapshot()
            state = matched[handle.position] if -len(matched) <= handle.position < len(matched) else None
            ok = all(check_element(e, state, len(matched)) for e in expectations)
            return ok, (state, len(matched))

        outcome = await eventually(attempt, timeout, self._config.poll_interval_ms)
        state, count = outcome.observed or (None, 0)
        expected = ", ".join(e.describe() for e in expectations)

        if outcome.satisfied:
            self._log.debug(
                "Assertion passed",
                target=handle.describe(),
                expected=expected,
                attempts=outcome.attempts,
            )
            return state

        if state is None and any(e.requires_element for e in expectations):
            raise ElementNotFound(
                f"Timed out after {timeout}ms: {handle.describe()} never appeared",
                expected=f"{handle.describe()} to {expected}",
                observed=f"{count} match(es)",
            )
        failing = [e.describe() for e in expectations if not check_element(e, state, count)]
        raise AssertionTimeout(
            f"Timed out after {timeout}ms: expected {handle.describe()} to {', '.join(failing)}",
            expected=expected,
            observed=state.summary() if state is not None else f"{count} match(es)",
            details={"attempts": outcome.attempts},
        )

    async def expect_value(
        self,
        attempt: Callable[[], Awaitable[Any]],
        *expectations: Expectation,
        subject: str = "value",
        timeout_ms: int | None = None,
    ) -> Any:
        """Wait until every expectation holds for the value returned by attempt."""
        timeout = self._config.default_timeout_ms if timeout_ms is None else timeout_ms

        async def check() -> tuple[bool, Any]:
            value = await attempt()
            return all(check_value(e, value) for e in expectations), value

        outcome = await eventually(check, timeout, self._config.poll_interval_ms)
        if outcome.satisfied:
            return outcome.observed

        expected = ", ".join(e.describe() for e in expectations)
        raise AssertionTimeout(
            f"Timed out after {timeout}ms: expected {subject} to {expected}",
            expected=expected,
            observed=outcome.observed,
            details={"attempts": outcome.attempts},
        )
