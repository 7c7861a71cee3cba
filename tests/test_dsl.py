"""Tests for the YAML suite DSL."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from playbench.assertions import Predicate
from playbench.commands import (
    Expect,
    Intercept,
    ReadFile,
    Request,
    Select,
    SetChecked,
    Type,
    WaitFor,
)
from playbench.config import HarnessConfig
from playbench.dsl import (
    DSLParseError,
    DSLParser,
    DSLValidator,
    ExpectationModel,
    ScenarioSpec,
    SecretResolutionError,
    StepAction,
    StepSpec,
    StepTransformer,
    SuiteSpec,
    SuiteTransformer,
)
from playbench.dsl.parser import SecretResolver
from playbench.network import ResolutionKind
from playbench.redaction import SecretRegistry

from playground_fake import PlaygroundSession

MINIMAL_SUITE = """
name: Minimal
environment:
  base_url: https://playground.test/index.html
scenarios:
  - name: shows a banner
    steps:
      - action: expect
        selector: "#promotional-banner"
        should: [visible]
"""


def suite(**scenario: object) -> SuiteSpec:
    data: dict[str, object] = {"name": "s", "steps": [{"action": "reload"}]}
    data.update(scenario)
    return SuiteSpec.model_validate({"name": "Suite", "scenarios": [data]})


class TestExpectationModel:
    """Tests for should shorthands."""

    def test_bare_predicate(self) -> None:
        model = ExpectationModel.model_validate("visible")
        assert model.predicate == Predicate.VISIBLE

    def test_value_shorthand(self) -> None:
        model = ExpectationModel.model_validate({"value": "Felipe"})
        assert (model.predicate, model.expected) == (Predicate.VALUE, "Felipe")

    def test_attribute_shorthand(self) -> None:
        model = ExpectationModel.model_validate({"attribute": "type", "expected": "password"})
        assert (model.predicate, model.name, model.expected) == (Predicate.ATTRIBUTE, "type", "password")

    def test_length_must_be_non_negative_int(self) -> None:
        with pytest.raises(ValidationError, match="non-negative integer"):
            ExpectationModel.model_validate({"length": -1})

    def test_value_predicate_needs_expected(self) -> None:
        with pytest.raises(ValidationError, match="requires an expected value"):
            ExpectationModel.model_validate({"predicate": "contains_text"})

    def test_ambiguous_shorthand(self) -> None:
        with pytest.raises(ValidationError, match="exactly one predicate"):
            ExpectationModel.model_validate({"value": "a", "text": "b"})


class TestStepSpec:
    """Tests for per-action requirements."""

    def test_targeted_action_needs_target(self) -> None:
        with pytest.raises(ValidationError, match="'selector' or 'contains'"):
            StepSpec(action=StepAction.CLICK)

    def test_required_parameters(self) -> None:
        with pytest.raises(ValidationError, match="requires parameter 'text'"):
            StepSpec(action=StepAction.TYPE, selector="#signature-textarea")
        with pytest.raises(ValidationError, match="requires parameter 'alias'"):
            StepSpec(action=StepAction.WAIT_FOR)

    def test_select_needs_exactly_one_mode(self) -> None:
        with pytest.raises(ValidationError, match="exactly one"):
            StepSpec(action=StepAction.SELECT, selector="#fruit", value="apple", random=True)

    def test_alias_prefix_is_stripped(self) -> None:
        step = StepSpec(action=StepAction.WAIT_FOR, alias="@getTodo")
        assert step.alias == "getTodo"

    def test_scalar_values_become_strings(self) -> None:
        step = StepSpec(action=StepAction.INVOKE, selector="input", value=7)  # type: ignore[arg-type]
        assert step.value == "7"

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            StepSpec(action=StepAction.RELOAD, unknown=True)  # type: ignore[call-arg]


class TestScenarioExpansion:
    def test_named_parameter_in_title(self) -> None:
        spec = ScenarioSpec(
            name="selects ${level} out of 10",
            parametrize={"level": [1, 2]},
            steps=[StepSpec(action=StepAction.RELOAD)],
        )

        assert spec.expand() == [
            ("selects 1 out of 10", {"level": 1}),
            ("selects 2 out of 10", {"level": 2}),
        ]

    def test_suffix_when_title_has_no_parameter(self) -> None:
        spec = ScenarioSpec(
            name="types",
            variables={"who": "x"},
            parametrize={"n": [1]},
            steps=[StepSpec(action=StepAction.RELOAD)],
        )

        assert spec.expand() == [("types [n=1]", {"who": "x", "n": 1})]

    def test_empty_parameter_list_rejected(self) -> None:
        with pytest.raises(ValidationError, match="without values"):
            ScenarioSpec(name="x", parametrize={"n": []}, steps=[StepSpec(action=StepAction.RELOAD)])


class TestEnvironmentConfig:
    def test_unknown_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown timeout"):
            SuiteSpec.model_validate({
                "name": "x",
                "environment": {"timeouts": {"forever": 1}},
                "scenarios": [{"name": "s", "steps": [{"action": "reload"}]}],
            })


class TestDSLParser:
    """Tests for YAML parsing and interpolation."""

    def test_parse_minimal(self) -> None:
        result = DSLParser().parse_string(MINIMAL_SUITE)

        assert result.name == "Minimal"
        assert result.scenarios[0].steps[0].should[0].predicate == Predicate.VISIBLE  # type: ignore[index]

    def test_invalid_yaml_reports_location(self) -> None:
        with pytest.raises(DSLParseError, match="Invalid YAML") as exc_info:
            DSLParser().parse_string("name: [unclosed\nscenarios: 1")

        assert exc_info.value.line is not None

    def test_root_must_be_mapping(self) -> None:
        with pytest.raises(DSLParseError, match="root must be a mapping"):
            DSLParser().parse_string("- a\n- b")

    def test_schema_errors_are_flattened(self) -> None:
        with pytest.raises(DSLParseError, match="Validation failed:\n  scenarios"):
            DSLParser().parse_string("name: x\nscenarios: []")

    def test_suite_variables_and_overrides(self) -> None:
        content = """
name: Vars
variables:
  greeting: hello
  count: 3
scenarios:
  - name: s
    steps:
      - action: type
        selector: "#signature-textarea"
        text: "${greeting} world"
      - action: expect
        selector: "#animals li"
        should: [{length: "${count}"}]
"""
        result = DSLParser().parse_string(content, variables={"greeting": "hi"})

        steps = result.scenarios[0].steps
        assert steps[0].text == "hi world"
        assert steps[1].should[0].expected == 3  # type: ignore[index]
        assert result.variables == {"greeting": "hi", "count": 3}

    def test_runtime_references_are_left_alone(self) -> None:
        content = """
name: Runtime
scenarios:
  - name: s
    steps:
      - action: capture
        selector: "#timestamp"
        variable: code
      - action: type
        selector: "#code"
        text: "${code}"
      - action: expect
        selector: "#todo li"
        contains: "${fixture:todo.title}"
        should: [visible]
"""
        steps = DSLParser().parse_string(content).scenarios[0].steps

        assert steps[1].text == "${code}"
        assert steps[2].contains == "${fixture:todo.title}"

    def test_secret_resolution_registers_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("USER_PASSWORD", "s3cret-pass")
        secrets = SecretRegistry()
        parser = DSLParser(secret_resolver=SecretResolver(secrets))
        content = MINIMAL_SUITE.replace(
            "      - action: expect",
            '      - action: type\n        selector: "#password"\n        text: ${env:USER_PASSWORD}\n        sensitive: true\n      - action: expect',
        )

        result = parser.parse_string(content)

        assert result.scenarios[0].steps[0].text == "s3cret-pass"
        assert "s3cret-pass" in secrets
        assert secrets.redact("pw=s3cret-pass") == "pw=********"

    def test_missing_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MISSING_SECRET", raising=False)
        content = MINIMAL_SUITE.replace("#promotional-banner", "${env:MISSING_SECRET}")

        with pytest.raises(DSLParseError, match="MISSING_SECRET"):
            DSLParser().parse_string(content)

    def test_secrets_left_unresolved_when_disabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MISSING_SECRET", raising=False)
        content = MINIMAL_SUITE.replace("#promotional-banner", "${env:MISSING_SECRET}")

        result = DSLParser(resolve_secrets=False).parse_string(content)

        assert result.scenarios[0].steps[0].selector == "${env:MISSING_SECRET}"

    def test_secret_resolver_caches(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOKEN", "one")
        resolver = SecretResolver(SecretRegistry())
        assert resolver.resolve("TOKEN") == "one"

        monkeypatch.setenv("TOKEN", "two")
        assert resolver.resolve("TOKEN") == "one"
        resolver.clear_cache()
        assert resolver.resolve("TOKEN") == "two"

    def test_secret_error_message(self) -> None:
        error = SecretResolutionError("KEY", "not set")
        assert str(error) == "Failed to resolve secret env:KEY: not set"

    def test_parse_file_and_directory(self, tmp_path: Path) -> None:
        (tmp_path / "a.yaml").write_text(MINIMAL_SUITE)
        nested = tmp_path / "nested"
        nested.mkdir()
        (nested / "b.yaml").write_text(MINIMAL_SUITE.replace("Minimal", "Nested"))
        (tmp_path / ".hidden.yaml").write_text("not: valid: yaml:")

        parser = DSLParser()
        assert parser.parse_file(tmp_path / "a.yaml").name == "Minimal"

        parsed = parser.parse_directory(tmp_path)
        assert [s.name for _, s in parsed] == ["Minimal", "Nested"]
        assert [s.name for _, s in parser.parse_directory(tmp_path, recursive=False)] == ["Minimal"]

    def test_missing_paths(self, tmp_path: Path) -> None:
        with pytest.raises(DSLParseError, match="File not found"):
            DSLParser().parse_file(tmp_path / "missing.yaml")
        with pytest.raises(DSLParseError, match="Directory not found"):
            DSLParser().parse_directory(tmp_path / "missing")

    def test_semantic_errors_are_raised(self) -> None:
        content = MINIMAL_SUITE.replace(
            '      - action: expect\n        selector: "#promotional-banner"\n        should: [visible]',
            "      - action: wait_for\n        alias: getTodo",
        )

        with pytest.raises(DSLParseError, match="Semantic validation failed"):
            DSLParser().parse_string(content)


class TestDSLValidator:
    """Tests for semantic checks."""

    def test_valid_suite(self) -> None:
        assert DSLValidator().validate(suite()) == []

    def test_duplicate_expanded_names(self) -> None:
        spec = SuiteSpec.model_validate({
            "name": "Dupes",
            "scenarios": [
                {"name": "level ${n}", "parametrize": {"n": [1]}, "steps": [{"action": "reload"}]},
                {"name": "level 1", "steps": [{"action": "reload"}]},
            ],
        })

        errors = DSLValidator().validate(spec)

        assert errors == ["Duplicate scenario name in suite: 'level 1'"]

    def test_invalid_url(self) -> None:
        errors = DSLValidator().validate(suite(steps=[{"action": "visit", "url": "not a url"}]))
        assert any("Invalid URL" in e for e in errors)

    def test_relative_visit_url_is_valid(self) -> None:
        assert DSLValidator().validate(suite(steps=[{"action": "visit", "url": "/index.html"}])) == []

    def test_invalid_intercept_regex(self) -> None:
        errors = DSLValidator().validate(
            suite(steps=[{"action": "intercept", "method": "GET", "url": "todos/(", "regex": True}])
        )
        assert any("Invalid regex" in e for e in errors)

    def test_path_traversal(self) -> None:
        errors = DSLValidator().validate(suite(steps=[{"action": "read_file", "path": "../secret.txt"}]))
        assert any("'..'" in e for e in errors)

    def test_wait_for_before_intercept(self) -> None:
        errors = DSLValidator().validate(suite(steps=[
            {"action": "wait_for", "alias": "getTodo"},
            {"action": "intercept", "method": "GET", "url": "**/todos/1", "alias": "getTodo"},
        ]))
        assert any("before it is registered" in e for e in errors)

    def test_duplicate_alias(self) -> None:
        errors = DSLValidator().validate(suite(steps=[
            {"action": "intercept", "method": "GET", "url": "**/todos/1", "alias": "getTodo"},
            {"action": "intercept", "method": "GET", "url": "**/todos/2", "alias": "getTodo"},
        ]))
        assert any("Duplicate alias" in e for e in errors)

    def test_undefined_variable(self) -> None:
        errors = DSLValidator().validate(
            suite(steps=[{"action": "type", "selector": "#code", "text": "${code}"}])
        )
        assert errors == ["Scenario 's': steps.step 1.text: Undefined variable '${code}'"]

    def test_captured_and_parametrized_variables_are_defined(self) -> None:
        spec = suite(
            name="level ${level}",
            parametrize={"level": [1]},
            steps=[
                {"action": "capture", "selector": "#timestamp", "variable": "code"},
                {"action": "type", "selector": "#code", "text": "${code}"},
                {"action": "select", "selector": "#selection-type", "random": True, "capture_as": "t"},
                {"action": "expect", "contains": "${t|upper} ${level}", "should": ["visible"]},
                {"action": "expect", "contains": "${fixture:todo.title}", "should": ["visible"]},
            ],
        )

        assert DSLValidator().validate(spec) == []


class TestStepTransformer:
    """Tests for step to command mapping."""

    def test_check_and_uncheck(self) -> None:
        transformer = StepTransformer()

        check = transformer.transform(StepSpec(action=StepAction.CHECK, selector="#off"))
        uncheck = transformer.transform(StepSpec(action=StepAction.UNCHECK, selector="#off"))

        assert isinstance(check, SetChecked) and check.checked is True
        assert isinstance(uncheck, SetChecked) and uncheck.checked is False

    def test_select_single_value(self) -> None:
        command = StepTransformer().transform(
            StepSpec(action=StepAction.SELECT, selector="#selection-type", value="VIP")
        )

        assert isinstance(command, Select)
        assert command.values == ("VIP",)

    def test_type_keeps_sensitivity_and_label(self) -> None:
        command = StepTransformer().transform(
            StepSpec(name="types password", action=StepAction.TYPE, selector="#password", text="x", sensitive=True)
        )

        assert isinstance(command, Type)
        assert command.sensitive is True
        assert command.describe() == "types password"

    def test_intercept_with_network_error(self) -> None:
        command = StepTransformer().transform(StepSpec.model_validate({
            "action": "intercept",
            "method": "get",
            "url": "**/todos/1",
            "alias": "offline",
            "response": {"force_network_error": True},
        }))

        assert isinstance(command, Intercept)
        assert command.method == "GET"
        assert command.response is not None
        assert command.response.kind == ResolutionKind.FORCE_NETWORK_ERROR

    def test_observing_intercept_has_no_response(self) -> None:
        command = StepTransformer().transform(
            StepSpec(action=StepAction.INTERCEPT, method="GET", url="**/todos/1", alias="getTodo")
        )

        assert isinstance(command, Intercept)
        assert command.response is None

    def test_wait_for_and_request(self) -> None:
        transformer = StepTransformer()

        wait = transformer.transform(StepSpec(action=StepAction.WAIT_FOR, alias="@fail", status=500))
        request = transformer.transform(StepSpec(action=StepAction.REQUEST, url="https://x.test/a", status=200))

        assert isinstance(wait, WaitFor) and (wait.alias, wait.expect_status) == ("fail", 500)
        assert isinstance(request, Request) and (request.method, request.expect_status) == ("GET", 200)

    def test_expect_carries_timeout(self) -> None:
        command = StepTransformer().transform(StepSpec.model_validate({
            "action": "expect",
            "selector": "#password",
            "should": ["visible", {"attribute": "type", "expected": "password"}],
            "timeout": 100,
        }))

        assert isinstance(command, Expect)
        assert command.timeout_ms == 100
        assert [e.predicate for e in command.expectations] == [Predicate.VISIBLE, Predicate.ATTRIBUTE]

    def test_read_file_defaults_to_exist(self) -> None:
        command = StepTransformer().transform(StepSpec(action=StepAction.READ_FILE, path="downloads/a.txt"))

        assert isinstance(command, ReadFile)
        assert command.expectations[0].predicate == Predicate.EXIST


class TestSuiteTransformer:
    """Tests for wiring a suite into an orchestrator."""

    def test_scenarios_expand_parameters(self) -> None:
        spec = suite(name="level ${n}", parametrize={"n": [1, 2, 3]})

        scenarios = SuiteTransformer().scenarios(spec)

        assert [s.name for s in scenarios] == ["level 1", "level 2", "level 3"]
        assert scenarios[2].variables == {"n": 3}

    def test_configure_layers_overrides(self) -> None:
        spec = SuiteSpec.model_validate({
            "name": "x",
            "environment": {"timeouts": {"default": 1000, "step": 5000}},
            "max_parallel": 4,
            "scenarios": [{"name": "s", "steps": [{"action": "reload"}]}],
        })

        config = SuiteTransformer().configure(
            spec, HarnessConfig(poll_interval_ms=20), {"default_timeout_ms": 250, "max_parallel": None}
        )

        assert config.default_timeout_ms == 250
        assert config.step_timeout_ms == 5000
        assert config.max_parallel == 4
        assert config.poll_interval_ms == 20

    def test_build_roots_paths_at_suite_directory(self, tmp_path: Path) -> None:
        suite_file = tmp_path / "suite.yaml"
        suite_file.write_text(MINIMAL_SUITE)
        spec = DSLParser().parse_file(suite_file)

        orchestrator = SuiteTransformer().build(spec, suite_file, PlaygroundSession())

        assert orchestrator._files_root == tmp_path
        assert orchestrator._downloads_dir == tmp_path / "downloads"
        assert orchestrator._base_url == "https://playground.test/index.html"
        assert [s.name for s in orchestrator.scenarios] == ["shows a banner"]

    def test_build_base_url_override(self, tmp_path: Path) -> None:
        spec = DSLParser().parse_string(MINIMAL_SUITE)

        orchestrator = SuiteTransformer().build(spec, tmp_path, PlaygroundSession(), base_url="http://localhost:8000")

        assert orchestrator._base_url == "http://localhost:8000"
