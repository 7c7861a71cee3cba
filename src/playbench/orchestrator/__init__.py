"""
Scenario orchestration.

Provides:
- Scenario registration (command lists or a fluent builder)
- Per-scenario isolation of page, clock, interceptor and variables
- Bounded concurrent execution and aggregated results
"""

from playbench.orchestrator.builder import ElementChain, ScenarioBuilder
from playbench.orchestrator.scenario import (
    Scenario,
    ScenarioContext,
    ScenarioResult,
    ScenarioStatus,
)
from playbench.orchestrator.scheduler import SuiteResult, TestOrchestrator

__all__ = [
    "ElementChain",
    "Scenario",
    "ScenarioBuilder",
    "ScenarioContext",
    "ScenarioResult",
    "ScenarioStatus",
    "SuiteResult",
    "TestOrchestrator",
]
