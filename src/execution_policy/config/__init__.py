"""
execution-policy config package public API.

Purpose
- Export config loading/validation entrypoints, public error types, and the
  bridges from a validated config to typed policy inputs.

Functional requirements
- Support loading from ``execution_policy.toml`` + ``EXECPOLICY_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from execution_policy.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    PROFILE_ENV_VAR,
    ConfigLayer,
    ConfigLoadError,
    LoadedConfig,
    dump_effective_config,
    env_var_for,
    load_config,
    load_config_with_sources,
    normalize_paths,
)
from execution_policy.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ExecutionPolicyConfig,
    apply_profile_overlay,
    assert_valid_config,
    configured_strategy,
    default_config,
    fallback_config_from,
    go_test_options_from,
    logging_config_from,
    merge_config,
    migration_guidance,
    selection_criteria_from,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigLayer",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ExecutionPolicyConfig",
    "LoadedConfig",
    "PATH_FIELDS",
    "PROFILE_ENV_VAR",
    "apply_profile_overlay",
    "assert_valid_config",
    "configured_strategy",
    "default_config",
    "dump_effective_config",
    "env_var_for",
    "fallback_config_from",
    "go_test_options_from",
    "load_config",
    "load_config_with_sources",
    "logging_config_from",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "selection_criteria_from",
    "validate_config",
]
