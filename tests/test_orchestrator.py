"""Tests for the test orchestrator."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from playbench.assertions import Expectation, Predicate
from playbench.commands import Click, Expect, StepStatus, Target
from playbench.config import HarnessConfig
from playbench.errors import ScenarioDefinitionError
from playbench.fixtures import FixtureStore
from playbench.network import ResponseSpec
from playbench.orchestrator import (
    ScenarioBuilder,
    ScenarioContext,
    ScenarioResult,
    ScenarioStatus,
    TestOrchestrator,
)

from playground_fake import PLAYGROUND_URL, TODO_URL, PlaygroundSession


def orchestrator(
    session: PlaygroundSession,
    config: HarnessConfig,
    tmp_path: Path,
    **kwargs: object,
) -> TestOrchestrator:
    return TestOrchestrator(
        session,
        config,
        base_url=PLAYGROUND_URL,
        files_root=tmp_path,
        **kwargs,  # type: ignore[arg-type]
    )


def subscribes(s: ScenarioBuilder) -> None:
    s.contains("Subscribe", selector="button").click()
    s.contains("successfully subscribed", selector="#success").should("visible")


class TestScenarioRegistration:
    """Tests for define_scenario and add_scenario."""

    def test_builder_body(self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path) -> None:
        orch = orchestrator(session, fast_config, tmp_path)

        scenario = orch.define_scenario("subscribes", subscribes)

        assert [c.action for c in scenario.commands] == ["click", "expect"]

    def test_command_list_body(self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path) -> None:
        orch = orchestrator(session, fast_config, tmp_path)

        scenario = orch.define_scenario("clicks", [Click(Target("button", "Subscribe"))])

        assert len(scenario.commands) == 1

    def test_duplicate_name_rejected(self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path) -> None:
        orch = orchestrator(session, fast_config, tmp_path)
        orch.define_scenario("subscribes", subscribes)

        with pytest.raises(ScenarioDefinitionError, match="Duplicate"):
            orch.define_scenario("subscribes", subscribes)

    def test_empty_name_rejected(self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path) -> None:
        with pytest.raises(ScenarioDefinitionError, match="empty"):
            orchestrator(session, fast_config, tmp_path).define_scenario("  ", [])


class TestScenarioBuilder:
    def test_chain_collects_commands_in_order(self) -> None:
        builder = ScenarioBuilder()

        builder.visit().get("#signature-textarea").type("Walmyr").should("value", "Walmyr")
        builder.intercept("GET", TODO_URL, ResponseSpec(status_code=500), alias="fail")
        builder.wait("@fail", expect_status=500)
        builder.read_file("downloads/example.txt", equals="Hello, World!")

        actions = [c.action for c in builder.commands]
        assert actions == ["visit", "type", "expect", "intercept", "wait_for", "read_file"]
        assert builder.commands[4].alias == "fail"  # type: ignore[attr-defined]

    def test_select_modes(self) -> None:
        builder = ScenarioBuilder()
        builder.get("#selection-type").select(random=True, capture_as="type")

        command = builder.commands[0]
        assert command.random is True  # type: ignore[attr-defined]
        assert command.capture_as == "type"  # type: ignore[attr-defined]

    def test_should_all_groups_expectations(self) -> None:
        builder = ScenarioBuilder()
        builder.get("#password").should_all(
            Expectation(Predicate.VISIBLE),
            Expectation(Predicate.ATTRIBUTE, "password", name="type"),
        )

        assert len(builder.commands) == 1
        assert len(builder.commands[0].expectations) == 2  # type: ignore[attr-defined]


class TestScenarioContext:
    def test_render_formats_like_javascript(self, context: ScenarioContext) -> None:
        context.variables.update({"done": False, "todo": {"id": 1, "title": "x"}, "nothing": None})

        assert context.render("Completed: ${done}") == "Completed: false"
        assert context.render("ID ${todo.id}: ${todo.title|upper}") == "ID 1: X"
        assert context.render("${nothing}") == "null"

    def test_render_fixture_reference(self, context: ScenarioContext, tmp_path: Path) -> None:
        (tmp_path / "todo.json").write_text('{"title": "delectus aut autem", "tags": ["a", "b"]}')
        context.fixtures = FixtureStore(tmp_path)

        assert context.render("${fixture:todo.title}") == "delectus aut autem"
        assert context.render("${fixture:todo.tags.1}") == "b"

    def test_undefined_variable(self, context: ScenarioContext) -> None:
        with pytest.raises(ScenarioDefinitionError, match="Undefined variable: missing"):
            context.render("${missing}")

    def test_resolve_path(self, context: ScenarioContext, tmp_path: Path) -> None:
        assert context.resolve_path("fixtures/example.json") == tmp_path / "fixtures" / "example.json"
        assert context.resolve_path("/abs/file.txt") == Path("/abs/file.txt")


class TestScenarioResult:
    def test_reason_names_step_and_observation(self) -> None:
        result = ScenarioResult(
            name="x",
            status=ScenarioStatus.FAILED,
            started_at=datetime.now(UTC),
            failed_step="expect #on-off to text 'OFF'",
            error="Timed out",
            expected="text 'OFF'",
            observed={"text": "ON"},
        )

        assert result.reason == (
            "step 'expect #on-off to text 'OFF'' | Timed out | expected: text 'OFF' | observed: {'text': 'ON'}"
        )

    def test_no_reason_when_passed(self) -> None:
        result = ScenarioResult(name="x", status=ScenarioStatus.PASSED, started_at=datetime.now(UTC))

        assert result.reason is None


class TestOrchestratorRun:
    """Tests for running scenarios."""

    @pytest.mark.asyncio
    async def test_runs_and_aggregates(
        self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path
    ) -> None:
        orch = orchestrator(session, fast_config, tmp_path, name="playground")
        orch.define_scenario("subscribes", subscribes)
        orch.define_scenario("fails", [Click(Target("button", "Unsubscribe"))])
        orch.define_scenario("skipped", subscribes, skip=True)

        result = await orch.run()

        assert (result.total, result.passed, result.failed, result.skipped) == (3, 1, 1, 1)
        assert [r.name for r in result.results] == ["subscribes", "fails", "skipped"]
        assert result.is_success is False
        assert result.success_rate == 50.0
        assert result.results[1].failed_step == "click button contains 'Unsubscribe'"
        assert all(s.status == StepStatus.SKIPPED for s in result.results[2].step_results)

    @pytest.mark.asyncio
    async def test_each_scenario_gets_a_fresh_page(
        self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path
    ) -> None:
        orch = orchestrator(session, fast_config, tmp_path)
        orch.define_scenario("subscribes", subscribes)
        orch.define_scenario(
            "starts unsubscribed",
            [Expect(Target("#success"), (Expectation(Predicate.NOT_EXIST),))],
        )

        result = await orch.run()

        assert result.passed == 2
        assert len(session.pages) == 2
        assert all(page.closed for page in session.pages)
        assert all(page.visits == [PLAYGROUND_URL] for page in session.pages)

    @pytest.mark.asyncio
    async def test_intercepts_do_not_leak_between_scenarios(
        self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path
    ) -> None:
        def stubbed(s: ScenarioBuilder) -> None:
            s.intercept("GET", TODO_URL, ResponseSpec(status_code=500), alias="todo")
            s.contains("Get TODO", selector="button").click()
            s.wait("@todo", expect_status=500)

        def real(s: ScenarioBuilder) -> None:
            s.intercept("GET", TODO_URL, alias="todo")
            s.contains("Get TODO", selector="button").click()
            s.wait("@todo", expect_status=200)
            s.contains("delectus aut autem", selector="#todo li").should("visible")

        orch = orchestrator(session, fast_config.with_overrides(max_parallel=2), tmp_path)
        orch.define_scenario("stubbed", stubbed)
        orch.define_scenario("real", real)

        result = await orch.run()

        assert result.failed == 0, [r.reason for r in result.results]

    @pytest.mark.asyncio
    async def test_parallelism_is_bounded(
        self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path
    ) -> None:
        orch = orchestrator(session, fast_config.with_overrides(max_parallel=2), tmp_path)
        for i in range(5):
            orch.define_scenario(f"subscribes {i}", subscribes)

        result = await orch.run()

        assert result.passed == 5
        assert 1 <= result.max_parallelism_reached <= 2

    @pytest.mark.asyncio
    async def test_navigation_failure_fails_scenario(
        self, fast_config: HarnessConfig, tmp_path: Path
    ) -> None:
        session = PlaygroundSession(fail_navigation=True)
        orch = orchestrator(session, fast_config, tmp_path)
        orch.define_scenario("subscribes", subscribes)

        result = await orch.run()

        scenario = result.results[0]
        assert scenario.status == ScenarioStatus.FAILED
        assert scenario.failed_step is None
        assert scenario.reason is not None and scenario.reason.startswith("setup | Navigation")
        assert all(s.status == StepStatus.SKIPPED for s in scenario.step_results)
        assert session.pages[0].closed

    @pytest.mark.asyncio
    async def test_run_subset_and_unknown_names(
        self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path
    ) -> None:
        orch = orchestrator(session, fast_config, tmp_path)
        orch.define_scenario("a", subscribes)
        orch.define_scenario("b", subscribes)

        result = await orch.run(["b"])
        assert [r.name for r in result.results] == ["b"]

        with pytest.raises(ScenarioDefinitionError, match="Unknown scenario"):
            await orch.run(["c"])

    @pytest.mark.asyncio
    async def test_seed_is_recorded_and_reused(
        self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path
    ) -> None:
        def picks(s: ScenarioBuilder) -> None:
            s.get("#selection-type").select(random=True, capture_as="type")
            s.contains("You've selected: ${type|upper}").should("visible")

        orch = orchestrator(session, fast_config.with_overrides(random_seed=7), tmp_path)
        orch.define_scenario("picks", picks)

        first = await orch.run()
        second = await orch.run()

        assert first.results[0].seed == second.results[0].seed == 7
        assert first.passed == second.passed == 1
        assert session.pages[0].state.selected_type == session.pages[1].state.selected_type

    @pytest.mark.asyncio
    async def test_empty_run(self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path) -> None:
        result = await orchestrator(session, fast_config, tmp_path).run()

        assert result.total == 0
        assert session.started == 0

    def test_run_sync_closes_session(
        self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path
    ) -> None:
        orch = orchestrator(session, fast_config, tmp_path)
        orch.define_scenario("subscribes", subscribes)

        result = orch.run_sync()

        assert result.passed == 1
        assert session.closed == 1

    @pytest.mark.asyncio
    async def test_downloads_dir_is_emptied_before_run(
        self, session: PlaygroundSession, fast_config: HarnessConfig, tmp_path: Path
    ) -> None:
        stale = tmp_path / "downloads" / "stale.txt"
        stale.parent.mkdir()
        stale.write_text("old")
        orch = orchestrator(session, fast_config, tmp_path)
        orch.define_scenario("subscribes", subscribes)

        await orch.run()

        assert not stale.exists()
