"""
DOM query engine.

Resolves a selector, optionally narrowed by a text matcher, against the live
document. Every resolution queries the page again from the document root; a
handle only remembers how to find its element, never the element itself.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

import structlog

from playbench.config import HarnessConfig
from playbench.errors import ElementNotFound
from playbench.polling import eventually

if TYPE_CHECKING:
    from playbench.drivers.base import PageDriver

logger = structlog.get_logger(__name__)

# Used when only a text matcher is given; the innermost match wins.
ANY_ELEMENT = "body *"

TextMatch = str | re.Pattern[str]


@dataclass(frozen=True)
class ElementState:
    """Snapshot of one element as read from the live page."""

    tag: str
    text: str
    index: int
    """Position among all elements matching the selector."""
    depth: int = 0
    value: str | None = None
    visible: bool = True
    checked: bool | None = None
    attributes: Mapping[str, str] = field(default_factory=dict)
    options: tuple[tuple[str, str], ...] = ()
    """(value, label) pairs of a select element's options, in document order."""

    def attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    def summary(self) -> dict[str, Any]:
        text = self.text if len(self.text) <= 80 else self.text[:77] + "..."
        summary: dict[str, Any] = {"tag": self.tag, "text": text, "visible": self.visible}
        if self.value is not None:
            summary["value"] = self.value
        if self.checked is not None:
            summary["checked"] = self.checked
        return summary


def text_matches(candidate: str, text: TextMatch, exact: bool = False) -> bool:
    """Case-preserving match of element text against a string or pattern."""
    if isinstance(text, re.Pattern):
        return text.search(candidate) is not None
    return candidate == text if exact else text in candidate


def _innermost(states: list[ElementState]) -> list[ElementState]:
    """Drop matches that are ancestors of the next match in document order."""
    return [
        state
        for i, state in enumerate(states)
        if i + 1 == len(states) or states[i + 1].depth <= state.depth
    ]


class ElementHandle:
    """
    Ephemeral reference to an element.

    Re-resolved on every access. If the element is gone when an action or
    state read happens, ElementNotFound is raised instead of acting on a stale
    snapshot.
    """

    def __init__(
        self,
        page: PageDriver,
        selector: str,
        text: TextMatch | None = None,
        exact: bool = False,
        position: int = 0,
        innermost: bool = False,
    ) -> None:
        self._page = page
        self.selector = selector
        self.text = text
        self.exact = exact
        self.position = position
        self.innermost = innermost

    def describe(self) -> str:
        if self.text is None:
            label = self.selector
        else:
            shown = self.text.pattern if isinstance(self.text, re.Pattern) else self.text
            where = "" if self.selector == ANY_ELEMENT else f"{self.selector} "
            label = f"{where}containing {shown!r}" + (" (exact)" if self.exact else "")
        return label if self.position == 0 else f"{label} [{self.position}]"

    def nth(self, position: int) -> ElementHandle:
        return ElementHandle(
            self._page, self.selector, self.text, self.exact, position, self.innermost
        )

    async def snapshot(self) -> tuple[int, list[ElementState]]:
        """Query the live page: (selector match count, text-filtered matches)."""
        states = await self._page.query(self.selector)
        matched = states
        if self.text is not None:
            matched = [s for s in states if text_matches(s.text, self.text, self.exact)]
            if self.innermost:
                matched = _innermost(matched)
        return len(states), matched

    async def resolve_all(self) -> list[ElementState]:
        _, matched = await self.snapshot()
        return matched

    async def state(self) -> ElementState | None:
        """Current state of the addressed element, or None if it does not exist."""
        matched = await self.resolve_all()
        if -len(matched) <= self.position < len(matched):
            return matched[self.position]
        return None

    async def require(self) -> ElementState:
        state = await self.state()
        if state is None:
            raise ElementNotFound(
                f"Element no longer present: {self.describe()}",
                expected=self.describe(),
                observed="detached",
            )
        return state

    async def click(self) -> None:
        state = await self.require()
        await self._page.click(self.selector, state.index)

    async def type(self, text: str) -> None:
        state = await self.require()
        await self._page.type_text(self.selector, state.index, text)

    async def set_checked(self, checked: bool) -> None:
        state = await self.require()
        await self._page.set_checked(self.selector, state.index, checked)

    async def select(self, values: list[str]) -> list[str]:
        state = await self.require()
        return await self._page.select_options(self.selector, state.index, values)

    async def upload(self, paths: list[Path], drag_drop: bool = False) -> None:
        state = await self.require()
        await self._page.set_files(self.selector, state.index, paths, drag_drop)

    async def set_value(self, value: str, trigger: str | None = None) -> None:
        state = await self.require()
        await self._page.set_value(self.selector, state.index, value, trigger)

    async def blur(self) -> None:
        state = await self.require()
        await self._page.blur(self.selector, state.index)


class QueryEngine:
    """Finds elements with retry-until-timeout semantics."""

    def __init__(self, page: PageDriver, config: HarnessConfig) -> None:
        self._page = page
        self._config = config
        self._log = logger.bind(component="query_engine")

    def handle(
        self,
        selector: str | None = None,
        text: TextMatch | None = None,
        exact: bool = False,
        position: int = 0,
    ) -> ElementHandle:
        """Build a handle without waiting for it to resolve."""
        if selector is None and text is None:
            raise ValueError("A selector or a text matcher is required")
        return ElementHandle(
            self._page,
            selector or ANY_ELEMENT,
            text=text,
            exact=exact,
            position=position,
            innermost=selector is None,
        )

    async def find(
        self,
        selector: str | None = None,
        text: TextMatch | None = None,
        exact: bool = False,
        position: int = 0,
        timeout_ms: int | None = None,
    ) -> ElementHandle:
        """
        Wait until the addressed element exists.

        Raises:
            ElementNotFound: Nothing matched within the timeout
        """
        handle = self.handle(selector, text, exact, position)
        timeout = self._config.default_timeout_ms if timeout_ms is None else timeout_ms

        async def attempt() -> tuple[bool, tuple[int, int]]:
            total, matched = await handle.snapshot()
            found = -len(matched) <= handle.position < len(matched)
            return found, (total, len(matched))

        outcome = await eventually(attempt, timeout, self._config.poll_interval_ms)
        if not outcome.satisfied:
            total, matched = outcome.observed or (0, 0)
            raise ElementNotFound(
                f"Timed out after {timeout}ms finding {handle.describe()}",
                expected=handle.describe(),
                observed=f"{total} element(s) matched the selector, {matched} matched the text",
                details={"selector_matches": total, "text_matches": matched},
            )
        self._log.debug("Element found", target=handle.describe(), attempts=outcome.attempts)
        return handle

    async def find_all(
        self,
        selector: str,
        text: TextMatch | None = None,
        exact: bool = False,
        timeout_ms: int | None = None,
    ) -> list[ElementHandle]:
        """Wait for at least one match and return a handle per match."""
        first = await self.find(selector, text, exact, 0, timeout_ms)
        matched = await first.resolve_all()
        return [first.nth(i) for i in range(len(matched))]
