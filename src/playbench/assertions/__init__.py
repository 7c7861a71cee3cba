"""
Assertion engine module.

Provides retrying assertions over element state and plain values.
"""

from playbench.assertions.engine import (
    AssertionEngine,
    Expectation,
    Predicate,
    check_element,
    check_value,
)

__all__ = [
    "AssertionEngine",
    "Expectation",
    "Predicate",
    "check_element",
    "check_value",
]
