"""
execution-policy — configuration schema and validation.

Purpose
- Own the defaults for every config section and the rules each field must satisfy.

What should be included in this file
- A per-section table of field rules; one validator walks every section and
  every profile overlay with it.
- Schema versioning with migration guidance.
- Deep-merge and profile overlay helpers.
- Bridges from a validated mapping to ``FallbackConfig``, ``TestCommandOptions``,
  ``SelectionCriteria``, ``LoggingConfig`` and a configured strategy.

Functional requirements
- Report every problem as a ``ConfigValidationIssue`` with a dotted field path,
  in section order then field order.
- Profile overlays are partial: fields may be omitted, ``meta`` may not appear.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from execution_policy.constants import CONFIG_SCHEMA_VERSION
from execution_policy.domain.decisions import (
    FallbackConfig,
    ResourceConstraints,
    SelectionCriteria,
)
from execution_policy.domain.strategies import (
    AllAtOnce,
    Batch,
    DirectoryByDirectory,
    ExecutionStrategy,
    FileByFile,
    StrategyKind,
)
from execution_policy.execution.commands import TestCommandOptions
from execution_policy.observability.logging import LoggingConfig

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

AUTO_STRATEGY: Final[str] = "auto"
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "tolerant")
STRATEGY_NAMES: Final[tuple[str, ...]] = (
    AUTO_STRATEGY,
    *(kind.value for kind in StrategyKind),
)
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_PROFILE_NAME = re.compile(r"[a-z][a-z0-9_-]*")

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("execution", "working_directory"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class FallbackSection(TypedDict):
    enabled: bool
    max_retries: int
    timeout_limit_ms: int


class ExecutionSection(TypedDict):
    working_directory: str
    initial_strategy: str
    batch_size: int
    max_concurrency: int
    fail_fast: bool


class GoTestSection(TypedDict):
    binary: str
    verbose: bool
    race: bool
    cover: bool
    short: bool
    fail_fast: bool
    timeout_seconds: int
    parallel: int
    tags: list[str]
    build_flags: list[str]


class SelectionSection(TypedDict):
    has_complex_dependencies: bool
    time_constraint_seconds: float
    detect_resources: bool
    reserved_cores: int


class ObservabilitySection(TypedDict):
    log_level: str
    log_dir: str
    log_to_stdout: bool
    rotating_file: bool


class ProfileOverlay(TypedDict, total=False):
    fallback: dict[str, object]
    execution: dict[str, object]
    go_test: dict[str, object]
    selection: dict[str, object]
    observability: dict[str, object]


class ExecutionPolicyConfig(TypedDict):
    meta: MetaConfig
    fallback: FallbackSection
    execution: ExecutionSection
    go_test: GoTestSection
    selection: SelectionSection
    observability: ObservabilitySection
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[ExecutionPolicyConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "fallback": {
        "enabled": True,
        "max_retries": 3,
        "timeout_limit_ms": 300_000,
    },
    "execution": {
        "working_directory": ".",
        "initial_strategy": AUTO_STRATEGY,
        "batch_size": 10,
        "max_concurrency": 5,
        "fail_fast": False,
    },
    "go_test": {
        "binary": "go",
        "verbose": False,
        "race": False,
        "cover": False,
        "short": False,
        "fail_fast": False,
        "timeout_seconds": 0,
        "parallel": 0,
        "tags": [],
        "build_flags": [],
    },
    "selection": {
        "has_complex_dependencies": False,
        "time_constraint_seconds": 300.0,
        "detect_resources": True,
        "reserved_cores": 1,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs",
        "log_to_stdout": False,
        "rotating_file": False,
    },
    "profiles": {
        "strict": {
            "fallback": {"enabled": False},
            "execution": {"fail_fast": True},
            "go_test": {"fail_fast": True},
        },
        "tolerant": {
            "fallback": {"enabled": True, "max_retries": 5},
            "execution": {"fail_fast": False},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """One or more config fields failed validation; ``issues`` lists them in order."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <root>: no details"))


class _Invalid(Exception):
    """Internal signal: a field value was rejected with ``message``."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


_Check = Callable[[object], object]


def _boolean(value: object) -> bool:
    if not isinstance(value, bool):
        raise _Invalid(f"expected boolean, got {type(value).__name__}")
    return value


def _int_at_least(value: object, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Invalid(f"expected integer, got {type(value).__name__}")
    if value < minimum:
        raise _Invalid(f"must be >= {minimum}")
    return value


def _integer(minimum: int) -> _Check:
    return lambda value: _int_at_least(value, minimum)


def _number(minimum: float) -> _Check:
    def check(value: object) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _Invalid(f"expected number, got {type(value).__name__}")
        if not math.isfinite(value):
            raise _Invalid("must be finite")
        if value < minimum:
            raise _Invalid(f"must be >= {minimum}")
        return float(value)

    return check


def _text(value: object) -> str:
    if not isinstance(value, str):
        raise _Invalid(f"expected string, got {type(value).__name__}")
    if not value.strip():
        raise _Invalid("must not be empty")
    return value.strip()


def _path_text(value: object) -> str:
    parsed = _text(value)
    if "\x00" in parsed:
        raise _Invalid("must not contain NUL bytes")
    return parsed


def _choice(allowed: tuple[str, ...]) -> _Check:
    def check(value: object) -> str:
        parsed = _text(value)
        if parsed not in allowed:
            expected = ", ".join(sorted(allowed))
            raise _Invalid(f"invalid value {parsed!r}; expected one of: {expected}")
        return parsed

    return check


def _text_list(value: object) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise _Invalid(f"expected array of strings, got {type(value).__name__}")
    items = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    if len(items) != len(value):
        raise _Invalid("every entry must be a non-empty string")
    return items


def _schema_version(value: object) -> int:
    version = _int_at_least(value, 1)
    if version != ConfigSchemaVersion:
        raise _Invalid(migration_guidance(version))
    return version


# Field order here is the order issues are reported in.
_SECTION_RULES: Final[dict[str, dict[str, _Check]]] = {
    "meta": {"schema_version": _schema_version},
    "fallback": {
        "enabled": _boolean,
        "max_retries": _integer(0),
        "timeout_limit_ms": _integer(0),
    },
    "execution": {
        "working_directory": _path_text,
        "initial_strategy": _choice(STRATEGY_NAMES),
        "batch_size": _integer(1),
        "max_concurrency": _integer(1),
        "fail_fast": _boolean,
    },
    "go_test": {
        "binary": _text,
        "verbose": _boolean,
        "race": _boolean,
        "cover": _boolean,
        "short": _boolean,
        "fail_fast": _boolean,
        "timeout_seconds": _integer(0),
        "parallel": _integer(0),
        "tags": _text_list,
        "build_flags": _text_list,
    },
    "selection": {
        "has_complex_dependencies": _boolean,
        "time_constraint_seconds": _number(0.0),
        "detect_resources": _boolean,
        "reserved_cores": _integer(0),
    },
    "observability": {
        "log_level": _choice(LOG_LEVELS),
        "log_dir": _path_text,
        "log_to_stdout": _boolean,
        "rotating_file": _boolean,
    },
}
_OVERLAY_SECTIONS: Final[tuple[str, ...]] = tuple(
    name for name in _SECTION_RULES if name != "meta"
)


def default_config() -> ExecutionPolicyConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "rewrite execution_policy.toml for the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "install a newer execution-policy release"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; nested tables merge, other values replace."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Merge the named profile's overlay onto ``config`` and validate the result."""

    name = (profile or "").strip()
    if not name:
        return copy.deepcopy(dict(config))

    profiles = config.get("profiles")
    overlay = profiles.get(name) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {name!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{name}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(config, overlay))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    issues: list[ConfigValidationIssue] = []
    if not isinstance(config, Mapping):
        issues.append(
            ConfigValidationIssue("<root>", f"expected object, got {type(config).__name__}")
        )
        return ConfigValidationResult(config=None, issues=tuple(issues))

    normalized: dict[str, Any] = {}
    for key in sorted(config):
        if key not in _SECTION_RULES and key != "profiles":
            issues.append(ConfigValidationIssue(str(key), "unknown field"))
    for name in _SECTION_RULES:
        if name not in config:
            issues.append(ConfigValidationIssue(name, "missing required field"))
            continue
        section = _validate_section(name, config[name], name, issues, partial=False)
        if section is not None:
            normalized[name] = section

    profiles = config.get("profiles")
    if profiles is not None:
        normalized["profiles"] = _validate_profiles(profiles, issues)

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def fallback_config_from(config: Mapping[str, Any]) -> FallbackConfig:
    section = config["fallback"]
    return FallbackConfig(
        enabled=section["enabled"],
        max_retries=section["max_retries"],
        timeout_limit_ms=section["timeout_limit_ms"],
    )


def go_test_options_from(config: Mapping[str, Any]) -> TestCommandOptions:
    section = config["go_test"]
    parallel = section["parallel"]
    return TestCommandOptions(
        verbose=section["verbose"],
        timeout_seconds=section["timeout_seconds"],
        race=section["race"],
        cover=section["cover"],
        short=section["short"],
        fail_fast=section["fail_fast"],
        parallel=parallel if parallel > 0 else None,
        tags=tuple(section["tags"]),
        build_flags=tuple(section["build_flags"]),
        binary=section["binary"],
    )


def logging_config_from(config: Mapping[str, Any], *, session_id: str) -> LoggingConfig:
    section = config["observability"]
    return LoggingConfig(
        session_id=session_id,
        base_log_dir=section["log_dir"],
        level=section["log_level"],
        log_to_stdout=section["log_to_stdout"],
        rotating_file=section["rotating_file"],
    )


def selection_criteria_from(
    config: Mapping[str, Any],
    *,
    total_packages: int,
    previous_failures: int = 0,
    resource_constraints: ResourceConstraints | None = None,
) -> SelectionCriteria:
    section = config["selection"]
    return SelectionCriteria(
        total_packages=total_packages,
        has_complex_dependencies=section["has_complex_dependencies"],
        time_constraint_seconds=section["time_constraint_seconds"],
        previous_failures=previous_failures,
        resource_constraints=resource_constraints,
    )


def configured_strategy(config: Mapping[str, Any]) -> ExecutionStrategy | None:
    """Explicitly configured initial strategy, or ``None`` for selector-driven choice."""

    section = config["execution"]
    name = section["initial_strategy"]
    if name == AUTO_STRATEGY:
        return None
    if name == StrategyKind.ALL_AT_ONCE.value:
        return AllAtOnce(parallel=False)
    if name == StrategyKind.BATCH.value:
        return Batch(batch_size=section["batch_size"], parallel=True)
    if name == StrategyKind.DIRECTORY_BY_DIRECTORY.value:
        return DirectoryByDirectory(max_concurrency=section["max_concurrency"])
    return FileByFile(stop_on_first_error=True)


def _validate_section(
    name: str,
    payload: object,
    path: str,
    issues: list[ConfigValidationIssue],
    *,
    partial: bool,
) -> dict[str, Any] | None:
    if not isinstance(payload, Mapping):
        issues.append(
            ConfigValidationIssue(path, f"expected object, got {type(payload).__name__}")
        )
        return None

    rules = _SECTION_RULES[name]
    for key in sorted(payload, key=str):
        if key not in rules:
            issues.append(ConfigValidationIssue(f"{path}.{key}", "unknown field"))

    section: dict[str, Any] = {}
    for key, check in rules.items():
        if key not in payload:
            if not partial:
                issues.append(ConfigValidationIssue(f"{path}.{key}", "missing required field"))
            continue
        try:
            section[key] = check(payload[key])
        except _Invalid as exc:
            issues.append(ConfigValidationIssue(f"{path}.{key}", exc.message))
    return section


def _validate_profiles(payload: object, issues: list[ConfigValidationIssue]) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        issues.append(
            ConfigValidationIssue("profiles", f"expected object, got {type(payload).__name__}")
        )
        return {}

    profiles: dict[str, Any] = {}
    for name in sorted(payload, key=str):
        path = f"profiles.{name}"
        if not isinstance(name, str) or _PROFILE_NAME.fullmatch(name) is None:
            issues.append(ConfigValidationIssue(path, "profile name must match [a-z][a-z0-9_-]*"))
            continue
        overlay = payload[name]
        if not isinstance(overlay, Mapping):
            issues.append(
                ConfigValidationIssue(path, f"expected object, got {type(overlay).__name__}")
            )
            continue
        for section_name in sorted(overlay, key=str):
            if section_name not in _OVERLAY_SECTIONS:
                issues.append(ConfigValidationIssue(f"{path}.{section_name}", "unknown field"))
        validated: dict[str, Any] = {}
        for section_name in _OVERLAY_SECTIONS:
            if section_name not in overlay:
                continue
            section_path = f"{path}.{section_name}"
            section = _validate_section(
                section_name, overlay[section_name], section_path, issues, partial=True
            )
            if section is not None:
                validated[section_name] = section
        profiles[name] = validated
    return profiles


__all__ = [
    "AUTO_STRATEGY",
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "STRATEGY_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ExecutionPolicyConfig",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "configured_strategy",
    "default_config",
    "fallback_config_from",
    "go_test_options_from",
    "logging_config_from",
    "merge_config",
    "migration_guidance",
    "selection_criteria_from",
    "validate_config",
]
