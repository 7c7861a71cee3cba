"""
Fluent scenario builder.

Usage:
    def subscribes(s: ScenarioBuilder) -> None:
        s.contains("Subscribe", selector="button").click()
        s.contains("successfully subscribed", selector="#success").should("visible")

    orchestrator.define_scenario("subscribes", subscribes)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Self

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
from playbench.network import ResponseSpec


def _expectation(predicate: Predicate | str, expected: Any = None, name: str | None = None) -> Expectation:
    return Expectation(Predicate(predicate), expected, name)


class ElementChain:
    """Commands addressed to one element target; every method returns the chain."""

    def __init__(self, builder: ScenarioBuilder, target: Target) -> None:
        self._builder = builder
        self.target = target

    def _add(self, command: Command) -> Self:
        self._builder.add(command)
        return self

    def click(self) -> Self:
        return self._add(Click(self.target))

    def type(self, text: str, sensitive: bool = False) -> Self:
        return self._add(Type(self.target, text, sensitive))

    def check(self) -> Self:
        return self._add(SetChecked(self.target, True))

    def uncheck(self) -> Self:
        return self._add(SetChecked(self.target, False))

    def select(
        self,
        *values: str,
        index: int | None = None,
        random: bool = False,
        capture_as: str | None = None,
    ) -> Self:
        return self._add(
            Select(self.target, tuple(values), option_index=index, random=random, capture_as=capture_as)
        )

    def upload(self, *paths: str, drag_drop: bool = False) -> Self:
        return self._add(Upload(self.target, tuple(paths), drag_drop))

    def invoke(self, value: str, trigger: str | None = None) -> Self:
        return self._add(InvokeValue(self.target, value, trigger))

    def blur(self) -> Self:
        return self._add(Blur(self.target))

    def capture(self, variable: str, attribute: str | None = None) -> Self:
        return self._add(Capture(self.target, variable, attribute))

    def should(self, predicate: Predicate | str, expected: Any = None, name: str | None = None) -> Self:
        """Assert on the element; chain calls to assert several things in sequence."""
        return self._add(Expect(self.target, (_expectation(predicate, expected, name),)))

    def should_all(self, *expectations: Expectation, timeout_ms: int | None = None) -> Self:
        """Assert several expectations that must hold at the same time."""
        return self._add(Expect(self.target, expectations, timeout_ms))


class ScenarioBuilder:
    """Collects a scenario's commands in order."""

    def __init__(self) -> None:
        self._commands: list[Command] = []

    @property
    def commands(self) -> list[Command]:
        return list(self._commands)

    def add(self, command: Command) -> Self:
        self._commands.append(command)
        return self

    def visit(self, url: str = "") -> Self:
        return self.add(Visit(url))

    def reload(self) -> Self:
        return self.add(Reload())

    def get(self, selector: str, position: int = 0) -> ElementChain:
        return ElementChain(self, Target(selector=selector, position=position))

    def contains(self, text: str, selector: str | None = None, exact: bool = False) -> ElementChain:
        return ElementChain(self, Target(selector=selector, text=text, exact=exact))

    def intercept(
        self,
        method: str,
        url: str,
        response: ResponseSpec | None = None,
        alias: str | None = None,
        persist: bool = False,
        regex: bool = False,
    ) -> Self:
        return self.add(Intercept(method, url, response, alias, persist, regex))

    def wait(self, alias: str, expect_status: int | None = None) -> Self:
        return self.add(WaitFor(alias.removeprefix("@"), expect_status))

    def request(self, method: str, url: str, expect_status: int | None = None) -> Self:
        return self.add(Request(method, url, expect_status))

    def read_file(self, path: str, *expectations: Expectation, equals: str | None = None) -> Self:
        checks = list(expectations)
        if equals is not None:
            checks.append(Expectation(Predicate.EQUALS, equals))
        return self.add(ReadFile(path, tuple(checks) or (Expectation(Predicate.EXIST),)))

    def freeze_clock(self, at: datetime | str | int) -> Self:
        return self.add(FreezeClock(at))

    def advance_clock(self, milliseconds: int) -> Self:
        return self.add(AdvanceClock(milliseconds))

    def unfreeze_clock(self) -> Self:
        return self.add(UnfreezeClock())
