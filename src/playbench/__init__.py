"""
playbench.

Scenario-driven browser test harness: YAML or fluent scenarios, retried
queries and assertions, network interception with fixtures, and a virtual
clock, run in isolated Playwright pages.
"""

__version__ = "1.0.0"

from playbench.assertions import AssertionEngine, Expectation, Predicate
from playbench.clock import VirtualClock
from playbench.commands import CommandQueue, StepResult, StepStatus, Target
from playbench.config import BrowserName, HarnessConfig, load_harness_config
from playbench.drivers.playwright_driver import PlaywrightSession
from playbench.dsl import DSLParseError, DSLParser, SuiteSpec, SuiteTransformer
from playbench.errors import (
    AssertionTimeout,
    ClockError,
    ElementNotFound,
    FixtureError,
    ForcedNetworkError,
    HarnessError,
    NavigationFailure,
    NetworkInterceptFailure,
    RequestFailure,
    ScenarioDefinitionError,
)
from playbench.fixtures import FixtureStore
from playbench.network import NetworkInterceptor, ResponseSpec
from playbench.orchestrator import (
    ScenarioBuilder,
    ScenarioResult,
    ScenarioStatus,
    SuiteResult,
    TestOrchestrator,
)

__all__ = [
    # Core
    "AssertionEngine",
    "BrowserName",
    "CommandQueue",
    "DSLParseError",
    "DSLParser",
    "Expectation",
    "FixtureStore",
    "HarnessConfig",
    "NetworkInterceptor",
    "PlaywrightSession",
    "Predicate",
    "ResponseSpec",
    "ScenarioBuilder",
    "ScenarioResult",
    "ScenarioStatus",
    "StepResult",
    "StepStatus",
    "SuiteResult",
    "SuiteSpec",
    "SuiteTransformer",
    "Target",
    "TestOrchestrator",
    "VirtualClock",
    "load_harness_config",
    "__version__",
    # Errors
    "AssertionTimeout",
    "ClockError",
    "ElementNotFound",
    "FixtureError",
    "ForcedNetworkError",
    "HarnessError",
    "NavigationFailure",
    "NetworkInterceptFailure",
    "RequestFailure",
    "ScenarioDefinitionError",
]
