"""
Error types raised by the harness.

Every failure a step can produce derives from HarnessError so the command
queue can report the expected condition and the last observed state
uniformly.
"""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """Base class for step failures."""

    def __init__(
        self,
        message: str,
        expected: Any = None,
        observed: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.expected = expected
        self.observed = observed
        self.details = details or {}
        super().__init__(message)


class ElementNotFound(HarnessError):
    """Raised when a selector (and text matcher) never resolved to an element."""


class AssertionTimeout(HarnessError):
    """Raised when a retried predicate did not hold before the timeout."""


class NetworkInterceptFailure(HarnessError):
    """Raised when an alias never saw a matching request, or was misconfigured."""


class ForcedNetworkError(HarnessError):
    """Raised when a step needs an HTTP status but the request was aborted."""


class NavigationFailure(HarnessError):
    """Raised when the page could not be loaded."""


class ClockError(HarnessError):
    """Raised on invalid virtual clock operations."""


class FixtureError(HarnessError):
    """Raised when a fixture file is missing or unreadable."""


class RequestFailure(HarnessError):
    """Raised when a request issued by the harness itself fails at transport level."""


class ScenarioDefinitionError(HarnessError):
    """Raised when a scenario or command is defined inconsistently."""
