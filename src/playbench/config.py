"""
Harness configuration.

Provides typed configuration for:
- Command, request and page-load timeouts
- Polling interval for retried queries and assertions
- Scenario parallelism
- Browser launch options
- Environment variable support
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, Self

import structlog

logger = structlog.get_logger(__name__)


class BrowserName(StrEnum):
    """Browsers the Playwright session can launch."""

    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


@dataclass(slots=True)
class HarnessConfig:
    """
    Configuration for a harness run.

    Timeouts are in milliseconds. Validated on construction; use
    with_overrides() to derive a modified copy.
    """

    default_timeout_ms: int = 4000
    """Retry window for element queries and assertions."""

    poll_interval_ms: int = 50
    """Delay between retries of a query or assertion."""

    request_timeout_ms: int = 5000
    """How long wait_for waits for a matching request to be dispatched."""

    response_timeout_ms: int = 30000
    """How long a dispatched request may take to resolve."""

    page_load_timeout_ms: int = 60000
    """Navigation timeout."""

    step_timeout_ms: int = 120000
    """Hard cap on any single step, whatever it awaits."""

    max_parallel: int = 1
    """Scenarios allowed to run at the same time."""

    headless: bool = True

    browser: BrowserName = BrowserName.CHROMIUM

    random_seed: int | None = None
    """Seed for random choices made by steps; None picks a fresh seed per scenario."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values."""
        if self.default_timeout_ms < 0:
            raise ValueError("default_timeout_ms must be non-negative")
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        if self.request_timeout_ms < 0:
            raise ValueError("request_timeout_ms must be non-negative")
        if self.response_timeout_ms < 0:
            raise ValueError("response_timeout_ms must be non-negative")
        if self.page_load_timeout_ms <= 0:
            raise ValueError("page_load_timeout_ms must be positive")
        if self.step_timeout_ms <= 0:
            raise ValueError("step_timeout_ms must be positive")
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")

    def with_overrides(self, **overrides: Any) -> Self:
        """
        Create a new config with specified overrides.

        None values are ignored so CLI arguments can be passed through as-is.
        Returns a new instance - does not mutate the original.
        """
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)


def load_harness_config(
    env_prefix: str = "PLAYBENCH_",
    defaults: HarnessConfig | None = None,
) -> HarnessConfig:
    """
    Load harness configuration from environment variables.

    Environment variables (all optional):
    - PLAYBENCH_DEFAULT_TIMEOUT: Query/assertion retry window in ms
    - PLAYBENCH_POLL_INTERVAL: Retry interval in ms
    - PLAYBENCH_REQUEST_TIMEOUT: wait_for dispatch timeout in ms
    - PLAYBENCH_RESPONSE_TIMEOUT: wait_for/request response timeout in ms
    - PLAYBENCH_PAGE_LOAD_TIMEOUT: Navigation timeout in ms
    - PLAYBENCH_STEP_TIMEOUT: Hard cap per step in ms
    - PLAYBENCH_MAX_PARALLEL: Concurrent scenarios
    - PLAYBENCH_HEADLESS: true/false
    - PLAYBENCH_BROWSER: chromium/firefox/webkit
    - PLAYBENCH_SEED: Random seed for random option selection

    Args:
        env_prefix: Prefix for environment variables
        defaults: Default configuration to use as base

    Returns:
        Loaded and validated HarnessConfig
    """
    base = defaults or HarnessConfig()

    def get_int(key: str, default: int | None) -> int | None:
        value = os.environ.get(f"{env_prefix}{key}")
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning(
                "Invalid integer value for config",
                key=key,
                value=value,
                using_default=default,
            )
            return default

    def get_bool(key: str, default: bool) -> bool:
        value = os.environ.get(f"{env_prefix}{key}")
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes", "on")

    def get_browser(key: str, default: BrowserName) -> BrowserName:
        value = os.environ.get(f"{env_prefix}{key}")
        if value is None:
            return default
        try:
            return BrowserName(value.lower())
        except ValueError:
            logger.warning(
                "Invalid browser for config",
                key=key,
                value=value,
                using_default=default,
            )
            return default

    return HarnessConfig(
        default_timeout_ms=get_int("DEFAULT_TIMEOUT", base.default_timeout_ms),  # type: ignore[arg-type]
        poll_interval_ms=get_int("POLL_INTERVAL", base.poll_interval_ms),  # type: ignore[arg-type]
        request_timeout_ms=get_int("REQUEST_TIMEOUT", base.request_timeout_ms),  # type: ignore[arg-type]
        response_timeout_ms=get_int("RESPONSE_TIMEOUT", base.response_timeout_ms),  # type: ignore[arg-type]
        page_load_timeout_ms=get_int("PAGE_LOAD_TIMEOUT", base.page_load_timeout_ms),  # type: ignore[arg-type]
        step_timeout_ms=get_int("STEP_TIMEOUT", base.step_timeout_ms),  # type: ignore[arg-type]
        max_parallel=get_int("MAX_PARALLEL", base.max_parallel),  # type: ignore[arg-type]
        headless=get_bool("HEADLESS", base.headless),
        browser=get_browser("BROWSER", base.browser),
        random_seed=get_int("SEED", base.random_seed),
    )
