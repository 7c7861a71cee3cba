"""
Pydantic models for YAML suite definitions.

Provides strict type validation for suites, scenarios and steps.
"""

from __future__ import annotations

import itertools
import re
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from playbench.assertions import Predicate


class StepAction(StrEnum):
    """Supported step actions, one per command."""

    # Navigation
    VISIT = "visit"
    RELOAD = "reload"

    # Interactions
    CLICK = "click"
    TYPE = "type"
    CHECK = "check"
    UNCHECK = "uncheck"
    SELECT = "select"
    UPLOAD = "upload"
    INVOKE = "invoke"
    BLUR = "blur"

    # Network
    INTERCEPT = "intercept"
    WAIT_FOR = "wait_for"
    REQUEST = "request"

    # Variables
    CAPTURE = "capture"

    # Assertions
    EXPECT = "expect"
    READ_FILE = "read_file"

    # Clock
    FREEZE_CLOCK = "freeze_clock"
    ADVANCE_CLOCK = "advance_clock"
    UNFREEZE_CLOCK = "unfreeze_clock"


# Actions addressed to an element through selector and/or contains.
TARGETED_ACTIONS: frozenset[StepAction] = frozenset({
    StepAction.CLICK,
    StepAction.TYPE,
    StepAction.CHECK,
    StepAction.UNCHECK,
    StepAction.SELECT,
    StepAction.UPLOAD,
    StepAction.INVOKE,
    StepAction.BLUR,
    StepAction.CAPTURE,
    StepAction.EXPECT,
})

_PREDICATE_NAMES = frozenset(p.value for p in Predicate)

TIMEOUT_KEYS: dict[str, str] = {
    "default": "default_timeout_ms",
    "poll_interval": "poll_interval_ms",
    "request": "request_timeout_ms",
    "response": "response_timeout_ms",
    "page_load": "page_load_timeout_ms",
    "step": "step_timeout_ms",
}


class EnvironmentConfig(BaseModel):
    """Environment-specific configuration."""

    model_config = ConfigDict(extra="forbid")

    base_url: str | None = None
    timeouts: dict[str, int] = Field(default_factory=dict)

    @field_validator("timeouts")
    @classmethod
    def validate_timeouts(cls, v: dict[str, int]) -> dict[str, int]:
        unknown = sorted(set(v) - set(TIMEOUT_KEYS))
        if unknown:
            raise ValueError(
                f"Unknown timeout(s): {', '.join(unknown)}; expected one of {', '.join(TIMEOUT_KEYS)}"
            )
        negative = sorted(k for k, ms in v.items() if ms < 0)
        if negative:
            raise ValueError(f"Timeouts cannot be negative: {', '.join(negative)}")
        return v

    def config_overrides(self) -> dict[str, int]:
        """Timeouts keyed by HarnessConfig field name."""
        return {TIMEOUT_KEYS[key]: value for key, value in self.timeouts.items()}


class ExpectationModel(BaseModel):
    """
    One assertion predicate.

    Accepted shorthands:
        should: [visible]
        should: [{value: "Felipe"}]
        should: [{attribute: type, expected: text}]
        should: [{length: 5}]
    """

    model_config = ConfigDict(extra="forbid")

    predicate: Predicate
    expected: Any = None
    name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def expand_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"predicate": data}
        if isinstance(data, dict) and "predicate" not in data:
            keys = [k for k in data if k in _PREDICATE_NAMES]
            if len(keys) != 1:
                raise ValueError(
                    "Expectation must name exactly one predicate, e.g. 'visible' or {value: x}"
                )
            key = keys[0]
            rest = {k: v for k, v in data.items() if k != key}
            if key in (Predicate.ATTRIBUTE, Predicate.NOT_ATTRIBUTE):
                return {"predicate": key, "name": data[key], **rest}
            return {"predicate": key, "expected": data[key], **rest}
        return data

    @model_validator(mode="after")
    def validate_expected(self) -> ExpectationModel:
        value_predicates = {
            Predicate.VALUE,
            Predicate.CONTAINS_TEXT,
            Predicate.TEXT,
            Predicate.EQUALS,
            Predicate.LENGTH,
        }
        if self.predicate in value_predicates and self.expected is None:
            raise ValueError(f"Predicate '{self.predicate}' requires an expected value")
        if self.predicate == Predicate.LENGTH and (
            not isinstance(self.expected, int) or self.expected < 0
        ):
            raise ValueError("Predicate 'length' requires a non-negative integer")
        if self.predicate in (Predicate.ATTRIBUTE, Predicate.NOT_ATTRIBUTE) and not self.name:
            raise ValueError(f"Predicate '{self.predicate}' requires an attribute name")
        return self


class ResponseModel(BaseModel):
    """How an intercepted request is answered."""

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(default=200, ge=100, le=599)
    body: Any = None
    fixture: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    force_network_error: bool = False
    passthrough: bool = False

    @model_validator(mode="after")
    def validate_response(self) -> ResponseModel:
        if self.fixture is not None and self.body is not None:
            raise ValueError("Specify either 'body' or 'fixture', not both")
        if self.force_network_error and self.passthrough:
            raise ValueError("'force_network_error' and 'passthrough' are mutually exclusive")
        return self


class StepSpec(BaseModel):
    """A single scenario step."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    action: StepAction

    # Element target
    selector: str | None = None
    contains: str | None = None
    exact: bool = False
    position: int = 0

    # Navigation and network
    url: str | None = None
    method: str | None = None
    alias: str | None = None
    response: ResponseModel | None = None
    persist: bool = False
    regex: bool = False
    status: int | None = Field(default=None, ge=100, le=599)
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None

    # Forms
    text: str | None = None
    sensitive: bool = False
    value: str | None = None
    values: list[str] | None = None
    option_index: int | None = Field(default=None, ge=0)
    random: bool = False
    trigger: str | None = None
    files: list[str] | None = None
    drag_drop: bool = False

    # Variables
    capture_as: str | None = None
    variable: str | None = None
    attribute: str | None = None

    # Assertions
    should: list[ExpectationModel] | None = None
    path: str | None = None
    encoding: str = "utf-8"
    timeout: int | None = Field(default=None, ge=0, le=300000)

    # Clock
    at: datetime | str | int | None = None
    milliseconds: int | None = Field(default=None, ge=0)

    @field_validator("value", "text", mode="before")
    @classmethod
    def coerce_scalar(cls, v: Any) -> Any:
        # YAML reads 5 or 2025-11-10 as int/date; the page only sees strings.
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)

    @model_validator(mode="after")
    def validate_step_params(self) -> StepSpec:
        """Validate required parameters based on action type."""
        action_requirements: dict[StepAction, list[str]] = {
            StepAction.TYPE: ["text"],
            StepAction.UPLOAD: ["files"],
            StepAction.INVOKE: ["value"],
            StepAction.INTERCEPT: ["method", "url"],
            StepAction.WAIT_FOR: ["alias"],
            StepAction.REQUEST: ["url"],
            StepAction.CAPTURE: ["variable"],
            StepAction.EXPECT: ["should"],
            StepAction.READ_FILE: ["path"],
            StepAction.FREEZE_CLOCK: ["at"],
            StepAction.ADVANCE_CLOCK: ["milliseconds"],
        }

        for param in action_requirements.get(self.action, []):
            if getattr(self, param) is None:
                raise ValueError(f"Action '{self.action}' requires parameter '{param}'")

        if self.action in TARGETED_ACTIONS and self.selector is None and self.contains is None:
            raise ValueError(f"Action '{self.action}' requires 'selector' or 'contains'")

        if self.action == StepAction.SELECT:
            modes = sum((
                self.value is not None,
                bool(self.values),
                self.option_index is not None,
                self.random,
            ))
            if modes != 1:
                raise ValueError(
                    "Action 'select' requires exactly one of 'value', 'values', 'option_index' or 'random'"
                )

        if self.action == StepAction.EXPECT and not self.should:
            raise ValueError("Action 'expect' requires at least one 'should' entry")

        if self.alias is not None:
            self.alias = self.alias.removeprefix("@")

        return self

    @property
    def label(self) -> str:
        return self.name or str(self.action)


class ScenarioSpec(BaseModel):
    """One scenario, optionally expanded over parameter values."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=256)
    description: str | None = None
    skip: bool = False
    variables: dict[str, Any] = Field(default_factory=dict)
    parametrize: dict[str, list[Any]] | None = None
    steps: list[StepSpec] = Field(min_length=1)

    @field_validator("parametrize")
    @classmethod
    def validate_parametrize(cls, v: dict[str, list[Any]] | None) -> dict[str, list[Any]] | None:
        if v is not None:
            empty = [k for k, values in v.items() if not values]
            if empty:
                raise ValueError(f"Parameter(s) without values: {', '.join(empty)}")
        return v

    def expand(self) -> list[tuple[str, dict[str, Any]]]:
        """Concrete (name, variables) pairs, one per parameter combination."""
        if not self.parametrize:
            return [(self.name, dict(self.variables))]

        keys = list(self.parametrize)
        expanded = []
        for combo in itertools.product(*(self.parametrize[k] for k in keys)):
            params = dict(zip(keys, combo, strict=True))
            name = re.sub(
                r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}",
                lambda m: str(params.get(m.group(1), m.group(0))),
                self.name,
            )
            if name == self.name:
                name = f"{self.name} [{', '.join(f'{k}={v}' for k, v in params.items())}]"
            expanded.append((name, {**self.variables, **params}))
        return expanded


class SuiteSpec(BaseModel):
    """A suite of scenarios run against one target page."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=256)
    description: str | None = None
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    variables: dict[str, Any] = Field(default_factory=dict)
    clock: datetime | str | int | None = None
    fixtures_dir: str = "fixtures"
    downloads_dir: str = "downloads"
    max_parallel: int | None = Field(default=None, ge=1, le=100)
    scenarios: list[ScenarioSpec] = Field(min_length=1)
