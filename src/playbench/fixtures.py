"""
Named, read-only test data payloads.

Fixtures are JSON files under a fixtures directory, referenced by name with or
without the .json suffix. Each file is read once; afterwards every scenario
shares the same immutable view, so concurrent readers need no locking.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog

from playbench.errors import FixtureError

logger = structlog.get_logger(__name__)


def _freeze(value: Any) -> Any:
    """Recursively convert parsed JSON into read-only containers."""
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Convert a frozen fixture view back into plain JSON-serialisable data."""
    if isinstance(value, MappingProxyType | dict):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple | list):
        return [thaw(v) for v in value]
    return value


class FixtureStore:
    """Loads fixtures lazily, once, and serves read-only views."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._payloads: dict[str, Any] = {}
        self._raw: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self._log = logger.bind(component="fixture_store")

    @property
    def directory(self) -> Path:
        return self._directory

    def path(self, name: str) -> Path:
        """Resolve a fixture name to its file path."""
        candidate = self._directory / name
        if candidate.is_file():
            return candidate
        with_suffix = self._directory / f"{name}.json"
        if with_suffix.is_file():
            return with_suffix
        raise FixtureError(
            f"Fixture not found: {name}",
            expected=str(candidate),
            details={"directory": str(self._directory)},
        )

    def get(self, name: str) -> Any:
        """Return the parsed fixture as a read-only view."""
        self._ensure_loaded(name)
        return self._payloads[name]

    def raw(self, name: str) -> bytes:
        """Return the fixture file's bytes exactly as stored on disk."""
        self._ensure_loaded(name)
        return self._raw[name]

    def _ensure_loaded(self, name: str) -> None:
        if name in self._payloads:
            return
        with self._lock:
            if name in self._payloads:
                return
            path = self.path(name)
            try:
                raw = path.read_bytes()
                parsed = json.loads(raw)
            except (OSError, json.JSONDecodeError) as e:
                raise FixtureError(f"Failed to load fixture {name}: {e}") from e
            self._raw[name] = raw
            self._payloads[name] = _freeze(parsed)
            self._log.debug("Loaded fixture", name=name, path=str(path))
