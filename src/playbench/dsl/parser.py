"""
YAML suite loader.

A suite goes through three passes before it reaches the models: suite
variables are substituted, ${env:KEY} references are replaced with secrets
(which are registered for log redaction), and the result is validated by
pydantic and then by the semantic validator. References the parser does not
know, such as captured values, are left in place for execution time.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Callable

import structlog
import yaml
from pydantic import ValidationError

from playbench.dsl.models import SuiteSpec
from playbench.dsl.validator import DSLValidator
from playbench.redaction import SecretRegistry, registry

logger = structlog.get_logger(__name__)

MAX_NESTING = 50


class SecretResolutionError(Exception):
    """An ${env:KEY} reference named a variable that is not set."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Failed to resolve secret env:{key}: {reason}")


class DSLParseError(Exception):
    """A suite could not be read, interpolated or validated."""

    def __init__(self, message: str, line: int | None = None, column: int | None = None) -> None:
        self.line = line
        self.column = column
        where = [f"line {line}"] if line is not None else []
        if line is not None and column is not None:
            where.append(f"column {column}")
        super().__init__(f"{message} at {', '.join(where)}" if where else message)


class SecretResolver:
    """Reads secrets from the environment, once per key."""

    def __init__(self, secrets: SecretRegistry | None = None) -> None:
        self._secrets = secrets or registry
        self._cache: dict[str, str] = {}

    def resolve(self, key: str) -> str:
        if key not in self._cache:
            value = os.environ.get(key)
            if value is None:
                raise SecretResolutionError(key, f"Environment variable '{key}' not set")
            self._secrets.register(value)
            self._cache[key] = value
        return self._cache[key]

    def clear_cache(self) -> None:
        self._cache.clear()


def _walk(data: Any, transform: Callable[[str], Any], depth: int = 0) -> Any:
    """Apply transform to every string inside nested lists and mappings."""
    if depth > MAX_NESTING:
        raise DSLParseError("Suite nesting too deep (circular reference?)")
    if isinstance(data, str):
        return transform(data)
    if isinstance(data, dict):
        return {key: _walk(value, transform, depth + 1) for key, value in data.items()}
    if isinstance(data, list):
        return [_walk(item, transform, depth + 1) for item in data]
    return data


class DSLParser:
    """Turns suite YAML into validated SuiteSpec models."""

    SECRET_PATTERN = re.compile(r"\$\{env:([^}]+)\}")
    VARIABLE_PATTERN = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}")

    def __init__(
        self,
        secret_resolver: SecretResolver | None = None,
        validator: DSLValidator | None = None,
        resolve_secrets: bool = True,
    ) -> None:
        self._secret_resolver = secret_resolver or SecretResolver()
        self._validator = validator or DSLValidator()
        self._resolve_secrets_enabled = resolve_secrets
        self._log = logger.bind(component="dsl_parser")

    def parse_file(
        self,
        path: str | Path,
        variables: dict[str, Any] | None = None,
    ) -> SuiteSpec:
        """Parse one suite file."""
        file_path = Path(path)
        if not file_path.is_file():
            reason = "File not found" if not file_path.exists() else "Path is not a file"
            raise DSLParseError(f"{reason}: {file_path}")

        self._log.info("Parsing suite file", path=str(file_path))
        return self.parse_string(
            file_path.read_text(encoding="utf-8"),
            source_file=str(file_path),
            variables=variables,
        )

    def parse_string(
        self,
        content: str,
        source_file: str | None = None,
        variables: dict[str, Any] | None = None,
    ) -> SuiteSpec:
        """
        Parse suite YAML.

        Args:
            content: YAML text
            source_file: Path used in log messages
            variables: Values overriding the suite's own variables

        Returns:
            Validated SuiteSpec

        Raises:
            DSLParseError: Bad YAML, unresolvable secret, schema or semantic error
        """
        data = self._load(content)
        data = self._interpolate(data, variables or {})
        suite = self._build(data)
        self._log.info(
            "Parsed suite",
            name=suite.name,
            scenario_count=len(suite.scenarios),
            source=source_file,
        )
        return suite

    def _load(self, content: str) -> dict[str, Any]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            if mark is None:
                raise DSLParseError(f"Invalid YAML: {e}") from e
            raise DSLParseError(f"Invalid YAML: {e}", line=mark.line + 1, column=mark.column + 1) from e
        if not isinstance(data, dict):
            raise DSLParseError("YAML root must be a mapping/dictionary")
        return data

    def _interpolate(self, data: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
        suite_vars = data.get("variables")
        known = {**(suite_vars if isinstance(suite_vars, dict) else {}), **overrides}

        resolved = _walk(data, lambda text: self._substitute(text, known))
        resolved["variables"] = _walk(known, lambda text: self._substitute(text, known))
        if not self._resolve_secrets_enabled:
            return resolved
        try:
            return _walk(resolved, self._substitute_secrets)
        except SecretResolutionError as e:
            raise DSLParseError(str(e)) from e

    def _substitute(self, text: str, known: dict[str, Any]) -> Any:
        """
        Replace ${name} for known variables; unknown names stay for execution time.

        A string that is exactly one reference takes the variable's value as-is,
        so numbers and lists keep their type.
        """
        whole = self.VARIABLE_PATTERN.fullmatch(text)
        if whole and whole.group(1) in known:
            value = known[whole.group(1)]
            if isinstance(value, str) and self.VARIABLE_PATTERN.search(value):
                rest = {k: v for k, v in known.items() if k != whole.group(1)}
                return self._substitute(value, rest)
            return value

        return self.VARIABLE_PATTERN.sub(
            lambda m: str(known[m.group(1)]) if m.group(1) in known else m.group(0),
            text,
        )

    def _substitute_secrets(self, text: str) -> str:
        return self.SECRET_PATTERN.sub(lambda m: self._secret_resolver.resolve(m.group(1)), text)

    def _build(self, data: dict[str, Any]) -> SuiteSpec:
        try:
            suite = SuiteSpec.model_validate(data)
        except ValidationError as e:
            problems = [
                f"  {'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]
            raise DSLParseError("Validation failed:\n" + "\n".join(problems)) from e

        semantic = self._validator.validate(suite)
        if semantic:
            raise DSLParseError(
                "Semantic validation failed:\n" + "\n".join(f"  - {problem}" for problem in semantic)
            )
        return suite

    def parse_directory(
        self,
        directory: str | Path,
        pattern: str = "**/*.yaml",
        recursive: bool = True,
        variables: dict[str, Any] | None = None,
    ) -> list[tuple[Path, SuiteSpec]]:
        """Parse every suite file under a directory, skipping hidden files."""
        dir_path = Path(directory)
        if not dir_path.is_dir():
            reason = "Directory not found" if not dir_path.exists() else "Path is not a directory"
            raise DSLParseError(f"{reason}: {dir_path}")

        name_pattern = pattern.removeprefix("**/")
        matches = dir_path.rglob(name_pattern) if recursive else dir_path.glob(name_pattern)

        suites: list[tuple[Path, SuiteSpec]] = []
        for file_path in sorted(matches):
            if file_path.name.startswith("."):
                continue
            try:
                suites.append((file_path, self.parse_file(file_path, variables)))
            except DSLParseError as e:
                self._log.error("Failed to parse suite file", path=str(file_path), error=str(e))
                raise

        self._log.info("Parsed directory", path=str(dir_path), file_count=len(suites))
        return suites
