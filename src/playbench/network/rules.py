"""
Intercept rules and response specifications.

A rule pairs a method and URL pattern with the resolution to apply when an
outgoing request matches: a stubbed response, a forced connection failure, or
pass-through to the real network.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping


class ResolutionKind(StrEnum):
    """How a matched request is answered."""

    STUB = "stub"
    FORCE_NETWORK_ERROR = "force_network_error"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class ResponseSpec:
    """Response to apply to a matched request."""

    status_code: int = 200
    body: Any = None
    fixture: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    force_network_error: bool = False
    passthrough: bool = False

    def __post_init__(self) -> None:
        if not 100 <= self.status_code <= 599:
            raise ValueError(f"status_code must be between 100 and 599, got {self.status_code}")
        if self.force_network_error and self.passthrough:
            raise ValueError("A response cannot both force a network error and pass through")
        if self.fixture is not None and self.body is not None:
            raise ValueError("Specify either body or fixture, not both")

    @property
    def kind(self) -> ResolutionKind:
        if self.force_network_error:
            return ResolutionKind.FORCE_NETWORK_ERROR
        if self.passthrough:
            return ResolutionKind.PASSTHROUGH
        return ResolutionKind.STUB

    @classmethod
    def network_error(cls) -> ResponseSpec:
        return cls(force_network_error=True)

    @classmethod
    def observe(cls) -> ResponseSpec:
        """Let the request reach the real network while recording its outcome."""
        return cls(passthrough=True)


@dataclass(frozen=True)
class InterceptedRequest:
    """An outgoing request as seen by the interceptor."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None


def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a URL glob: ** crosses path separators, * and ? do not."""
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def url_matches(pattern: str | re.Pattern[str], url: str, regex: bool = False) -> bool:
    """
    Match a request URL against a rule pattern.

    Patterns are regular expressions (compiled, or strings with regex=True),
    globs when they contain '*' (where ? matches one character), and exact
    URLs otherwise. An exact pattern without a query string also matches
    the URL with any query string.
    """
    if isinstance(pattern, re.Pattern):
        return pattern.search(url) is not None
    if regex:
        return re.search(pattern, url) is not None
    if "*" in pattern:
        return _glob_to_regex(pattern).match(url) is not None
    if url == pattern:
        return True
    return "?" not in pattern and url.split("?", 1)[0] == pattern


@dataclass
class InterceptRule:
    """A registered interception rule."""

    method: str
    url_pattern: str | re.Pattern[str]
    response: ResponseSpec = field(default_factory=ResponseSpec.observe)
    alias: str | None = None
    persist: bool = False
    regex: bool = False
    sequence: int = 0
    hits: int = 0

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if isinstance(self.url_pattern, str) and not self.url_pattern.strip():
            raise ValueError("URL pattern cannot be empty")
        if self.regex and isinstance(self.url_pattern, str):
            re.compile(self.url_pattern)

    @property
    def exhausted(self) -> bool:
        """One-shot rules go inert after answering a request."""
        return not self.persist and self.hits > 0

    def matches(self, request: InterceptedRequest) -> bool:
        if self.method not in ("*", request.method.upper()):
            return False
        return url_matches(self.url_pattern, request.url, regex=self.regex)

    def describe(self) -> str:
        pattern = (
            self.url_pattern.pattern
            if isinstance(self.url_pattern, re.Pattern)
            else self.url_pattern
        )
        label = f" as @{self.alias}" if self.alias else ""
        return f"{self.method} {pattern} -> {self.response.kind}{label}"
