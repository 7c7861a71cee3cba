"""
DSL module for YAML suite definitions.

Provides parsing, validation, and transformation of suites into
orchestrated scenarios.
"""

from playbench.dsl.models import (
    EnvironmentConfig,
    ExpectationModel,
    ResponseModel,
    ScenarioSpec,
    StepAction,
    StepSpec,
    SuiteSpec,
)
from playbench.dsl.parser import DSLParseError, DSLParser, SecretResolutionError
from playbench.dsl.transformer import StepTransformer, SuiteTransformer
from playbench.dsl.validator import DSLValidator

__all__ = [
    # Models
    "EnvironmentConfig",
    "ExpectationModel",
    "ResponseModel",
    "ScenarioSpec",
    "StepAction",
    "StepSpec",
    "SuiteSpec",
    # Parser & Transformer
    "DSLParseError",
    "DSLParser",
    "DSLValidator",
    "SecretResolutionError",
    "StepTransformer",
    "SuiteTransformer",
]
