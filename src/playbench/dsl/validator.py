"""
Semantic validator for suite definitions.

Performs deeper validation beyond Pydantic schema validation.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog

from playbench.dsl.models import StepAction

if TYPE_CHECKING:
    from playbench.dsl.models import ScenarioSpec, StepSpec, SuiteSpec

logger = structlog.get_logger(__name__)

# ${name}, ${name.field}, ${name|upper}, ${fixture:file.field}, ${env:KEY}
REFERENCE_PATTERN = re.compile(r"\$\{([a-zA-Z_][\w.:-]*)(?:\|[a-z]+)?\}")

_TEXT_FIELDS = ("selector", "contains", "url", "text", "value", "body", "path")


class DSLValidator:
    """Validates suite definitions for semantic correctness."""

    URL_PATTERN = re.compile(
        r"^(https?://|about:|data:|file://)"
        r"|([\w.-]+\.[a-zA-Z]{2,})"
        r"|localhost(:\d+)?"
    )

    def __init__(self) -> None:
        self._log = logger.bind(component="dsl_validator")

    def validate(self, suite: SuiteSpec) -> list[str]:
        """Validate a suite; returns human-readable problems, empty when valid."""
        errors: list[str] = []

        scenario_names: set[str] = set()
        for scenario in suite.scenarios:
            for name, _ in scenario.expand():
                if name in scenario_names:
                    errors.append(f"Duplicate scenario name in suite: '{name}'")
                scenario_names.add(name)

            for error in self._validate_scenario(scenario, set(suite.variables)):
                errors.append(f"Scenario '{scenario.name}': {error}")

        return errors

    def _validate_scenario(self, scenario: ScenarioSpec, suite_vars: set[str]) -> list[str]:
        errors: list[str] = []
        errors.extend(self._validate_steps(scenario.steps))
        errors.extend(self._validate_aliases(scenario.steps))

        defined = suite_vars | set(scenario.variables) | set(scenario.parametrize or {})
        errors.extend(self._validate_variable_references(scenario.steps, defined))
        return errors

    def _validate_steps(self, steps: list[StepSpec]) -> list[str]:
        """Validate a list of steps."""
        errors: list[str] = []

        for i, step in enumerate(steps):
            prefix = f"steps.{step.name or f'step {i + 1}'}"

            if step.url and step.action in (StepAction.VISIT, StepAction.REQUEST):
                if not self._is_valid_url(step.url):
                    errors.append(f"{prefix}: Invalid URL format '{step.url}'")

            if step.action == StepAction.INTERCEPT and step.url:
                if step.regex:
                    try:
                        re.compile(step.url)
                    except re.error as e:
                        errors.append(f"{prefix}: Invalid regex pattern: {e}")
                elif any(c.isspace() for c in step.url):
                    errors.append(f"{prefix}: URL pattern cannot contain whitespace '{step.url}'")

            paths = list(step.files or [])
            if step.path:
                paths.append(step.path)
            if step.response and step.response.fixture:
                paths.append(step.response.fixture)
            for path in paths:
                if path.startswith("${"):
                    continue
                if ".." in path:
                    errors.append(f"{prefix}: File path cannot contain '..': {path}")

        return errors

    def _validate_aliases(self, steps: list[StepSpec]) -> list[str]:
        """Aliases are unique and waited on only after registration."""
        errors: list[str] = []
        registered: set[str] = set()

        for i, step in enumerate(steps):
            step_name = step.name or f"step {i + 1}"
            if step.action == StepAction.INTERCEPT and step.alias:
                if step.alias in registered:
                    errors.append(f"steps.{step_name}: Duplicate alias '@{step.alias}'")
                registered.add(step.alias)
            elif step.action == StepAction.WAIT_FOR and step.alias not in registered:
                errors.append(
                    f"steps.{step_name}: wait_for references '@{step.alias}' "
                    "before it is registered"
                )

        return errors

    def _validate_variable_references(self, steps: list[StepSpec], defined: set[str]) -> list[str]:
        """Variables are defined, or captured by an earlier step, before use."""
        errors: list[str] = []
        available = set(defined)

        def check_string(value: str, context: str) -> None:
            for match in REFERENCE_PATTERN.finditer(value):
                reference = match.group(1)
                if reference.startswith(("fixture:", "env:")):
                    continue
                root = reference.split(".", 1)[0]
                if root not in available:
                    errors.append(f"{context}: Undefined variable '${{{reference}}}'")

        for i, step in enumerate(steps):
            step_name = step.name or f"step {i + 1}"
            for field in _TEXT_FIELDS:
                val = getattr(step, field)
                if isinstance(val, str):
                    check_string(val, f"steps.{step_name}.{field}")
            for value in step.values or []:
                check_string(value, f"steps.{step_name}.values")
            for expectation in step.should or []:
                if isinstance(expectation.expected, str):
                    check_string(expectation.expected, f"steps.{step_name}.should")

            for captured in (step.variable, step.capture_as):
                if captured:
                    if captured in available and captured not in defined:
                        self._log.warning(
                            "Overwriting previously captured variable",
                            step=step_name,
                            variable=captured,
                        )
                    available.add(captured)

        return errors

    def _is_valid_url(self, url: str) -> bool:
        """Check if URL has a valid format; paths relative to the base URL pass."""
        if self.URL_PATTERN.match(url):
            return True
        return url.startswith(("/", "?", "#", "${")) or ("/" in url and " " not in url)
