"""Configuration validation for qlserver.

Unknown keys are reported as warnings with a suggestion; values of the
wrong type are errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from difflib import get_close_matches
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from qlserver.core.logging import get_logger

LOGGER = get_logger(__name__)


class ValidationSeverity(Enum):
    """Severity level for validation issues."""

    ERROR = "error"  # Config will fail at runtime
    WARNING = "warning"  # Likely mistake but config usable


@dataclass
class ConfigValidationIssue:
    """A validation issue for configuration with severity."""

    message: str
    source: str
    severity: ValidationSeverity
    key: Optional[str] = None
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.source}: {self.message}"
        if self.suggestion:
            text += f" (did you mean '{self.suggestion}'?)"
        return text


VALID_TOP_LEVEL_KEYS: Set[str] = {
    "engine",
    "required_version",
}

VALID_ENGINE_KEYS: Set[str] = {
    "path",
    "server_args",
    "extra_args",
    "log_dir",
    "ram",
    "timeout",
    "shutdown_grace",
}

# Expected types for engine values (None is always allowed).
_ENGINE_VALUE_TYPES: Dict[str, Tuple[type, ...]] = {
    "path": (str,),
    "server_args": (list,),
    "extra_args": (list,),
    "log_dir": (str,),
    "ram": (int,),
    "timeout": (int, float),
    "shutdown_grace": (int, float),
}


def _suggest(key: str, valid: Set[str]) -> Optional[str]:
    matches = get_close_matches(key, sorted(valid), n=1, cutoff=0.6)
    return matches[0] if matches else None


def _check_unknown_keys(
    data: Dict[str, Any],
    valid: Set[str],
    source: str,
    prefix: str,
) -> List[ConfigValidationIssue]:
    issues = []
    for key in data:
        if key not in valid:
            issues.append(
                ConfigValidationIssue(
                    message=f"Unknown key '{prefix}{key}'",
                    source=source,
                    severity=ValidationSeverity.WARNING,
                    key=f"{prefix}{key}",
                    suggestion=_suggest(str(key), valid),
                )
            )
    return issues


def _check_engine_section(engine: Any, source: str) -> List[ConfigValidationIssue]:
    if not isinstance(engine, dict):
        return [
            ConfigValidationIssue(
                message=f"'engine' must be a mapping, got {type(engine).__name__}",
                source=source,
                severity=ValidationSeverity.ERROR,
                key="engine",
            )
        ]

    issues = _check_unknown_keys(engine, VALID_ENGINE_KEYS, source, "engine.")
    for key, expected in _ENGINE_VALUE_TYPES.items():
        value = engine.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, expected):
            issues.append(
                ConfigValidationIssue(
                    message=(
                        f"'engine.{key}' must be {' or '.join(t.__name__ for t in expected)}, "
                        f"got {type(value).__name__}"
                    ),
                    source=source,
                    severity=ValidationSeverity.ERROR,
                    key=f"engine.{key}",
                )
            )
        elif isinstance(value, list) and not all(isinstance(item, str) for item in value):
            issues.append(
                ConfigValidationIssue(
                    message=f"'engine.{key}' must be a list of strings",
                    source=source,
                    severity=ValidationSeverity.ERROR,
                    key=f"engine.{key}",
                )
            )
    return issues


def validate_config(data: Dict[str, Any], source: str) -> List[ConfigValidationIssue]:
    """Validate a raw configuration dictionary.

    Warnings are logged; issues of both severities are returned.

    Args:
        data: Parsed configuration.
        source: Where the data came from (file path or "cli").

    Returns:
        List of validation issues, empty when the config is clean.
    """
    issues = _check_unknown_keys(data, VALID_TOP_LEVEL_KEYS, source, "")

    if "engine" in data and data["engine"] is not None:
        issues.extend(_check_engine_section(data["engine"], source))

    required = data.get("required_version")
    if required is not None and not isinstance(required, str):
        issues.append(
            ConfigValidationIssue(
                message=f"'required_version' must be a string, got {type(required).__name__}",
                source=source,
                severity=ValidationSeverity.ERROR,
                key="required_version",
            )
        )

    for issue in issues:
        if issue.severity == ValidationSeverity.WARNING:
            LOGGER.warning(str(issue))

    return issues
