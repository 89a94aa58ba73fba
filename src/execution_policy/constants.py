"""Stable constants shared across the classifier, decision engine, and runner."""

from __future__ import annotations

from typing import Final

# Exit codes with a fixed meaning for classification and stop decisions.
EXIT_SUCCESS: Final[int] = 0
EXIT_TEST_FAILURE: Final[int] = 1
EXIT_BUILD_ERROR: Final[int] = 2
EXIT_TIMEOUT: Final[int] = 124
EXIT_EXECUTION_FAILURE: Final[int] = 127
EXIT_CANCELLED: Final[int] = 130
SIGNAL_EXIT_OFFSET: Final[int] = 128

# Decision engine thresholds.
ERROR_RATE_THRESHOLD: Final[float] = 0.5
MIN_TARGETS_FOR_THRESHOLD: Final[int] = 3
TIMEOUT_FALLBACK_CONCURRENCY: Final[int] = 3
DEFAULT_DIRECTORY_CONCURRENCY: Final[int] = 5

# Strategy selector thresholds.
SMALL_PROJECT_PACKAGES: Final[int] = 10
MEDIUM_PROJECT_PACKAGES: Final[int] = 50
TIGHT_TIME_CONSTRAINT_SECONDS: Final[int] = 60
MIN_BATCH_CONCURRENCY: Final[int] = 4
DEFAULT_BATCH_SIZE: Final[int] = 10

# Fallback defaults.
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_TIMEOUT_LIMIT_MS: Final[int] = 300_000

CONFIG_SCHEMA_VERSION: Final[int] = 1

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_DIRECTORY_CONCURRENCY",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_TIMEOUT_LIMIT_MS",
    "ERROR_RATE_THRESHOLD",
    "EXIT_BUILD_ERROR",
    "EXIT_CANCELLED",
    "EXIT_EXECUTION_FAILURE",
    "EXIT_SUCCESS",
    "EXIT_TEST_FAILURE",
    "EXIT_TIMEOUT",
    "MEDIUM_PROJECT_PACKAGES",
    "MIN_BATCH_CONCURRENCY",
    "MIN_TARGETS_FOR_THRESHOLD",
    "SIGNAL_EXIT_OFFSET",
    "SMALL_PROJECT_PACKAGES",
    "TIGHT_TIME_CONSTRAINT_SECONDS",
    "TIMEOUT_FALLBACK_CONCURRENCY",
]
