"""
Secret redaction for log output.

Secret values resolved from the environment are registered here; the
redact_secrets structlog processor masks them anywhere in an event.
"""

from __future__ import annotations

import threading
from typing import Any

MASK = "********"


class SecretRegistry:
    """Thread-safe set of values that must never reach a log sink."""

    def __init__(self) -> None:
        self._values: set[str] = set()
        self._lock = threading.Lock()

    def register(self, value: str) -> None:
        if value:
            with self._lock:
                self._values.add(value)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def __contains__(self, value: object) -> bool:
        return value in self._values

    def redact(self, text: str) -> str:
        # Longest first so a secret containing another is masked whole.
        for value in sorted(self._values, key=len, reverse=True):
            if value in text:
                text = text.replace(value, MASK)
        return text


registry = SecretRegistry()


def redact(value: Any) -> Any:
    """Mask registered secrets in a string or any nested list, tuple or dict of them."""
    if isinstance(value, str):
        return registry.redact(value)
    if isinstance(value, dict):
        return {k: redact(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return type(value)(redact(v) for v in value)
    return value


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor masking registered secrets and sensitive step text."""
    if event_dict.get("sensitive") and "text" in event_dict:
        event_dict["text"] = MASK
    return {key: redact(value) for key, value in event_dict.items()}
