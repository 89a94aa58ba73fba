"""
Strategy decision engine.

`decide()` turns one classification plus the accumulated error context into a
continue/stop/fallback decision. It is stateless: identical inputs always
produce equal decisions, and nothing here performs IO or logging.

Degradation ladder, from coarse to fine:
- `AllAtOnce` -> `DirectoryByDirectory(5)`
- `Batch(n)` -> `Batch(max(1, n // 2), parallel=False)`
- `DirectoryByDirectory` -> `FileByFile(stop_on_first_error=True)`
- `FileByFile` is terminal
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from execution_policy.constants import (
    DEFAULT_DIRECTORY_CONCURRENCY,
    ERROR_RATE_THRESHOLD,
    MIN_TARGETS_FOR_THRESHOLD,
    TIMEOUT_FALLBACK_CONCURRENCY,
)
from execution_policy.domain.decisions import (
    AllFailed,
    ContinueDecision,
    ErrorRecord,
    ErrorThresholdExceeded,
    FallbackDecision,
    StopDecision,
    TimeoutExceeded,
)
from execution_policy.domain.outcomes import (
    BuildError,
    ClassificationKind,
    Killed,
    Success,
    TestFailure,
    Timeout,
    Unknown,
)
from execution_policy.domain.strategies import AllAtOnce, Batch, DirectoryByDirectory, FileByFile

if TYPE_CHECKING:
    from collections.abc import Sequence

    from execution_policy.domain.decisions import Decision, ErrorContext, FallbackConfig
    from execution_policy.domain.outcomes import ExitClassification
    from execution_policy.domain.strategies import ExecutionStrategy
    from execution_policy.domain.targets import ExecutionTarget


def decide(
    classification: ExitClassification,
    context: ErrorContext,
    fallback_config: FallbackConfig,
) -> Decision:
    if isinstance(classification, Success):
        return ContinueDecision(reason="target succeeded")

    if isinstance(classification, BuildError):
        return StopDecision(reason="build error detected", exit_code=classification.code)

    if isinstance(classification, Timeout):
        if fallback_config.enabled and isinstance(context.strategy, AllAtOnce):
            return FallbackDecision(
                new_strategy=DirectoryByDirectory(max_concurrency=TIMEOUT_FALLBACK_CONCURRENCY),
                trigger=TimeoutExceeded(
                    duration_ms=context.duration_ms,
                    limit_ms=fallback_config.timeout_limit_ms,
                ),
            )
        return StopDecision(reason="execution timed out", exit_code=classification.code)

    if isinstance(classification, TestFailure):
        return _decide_test_failure(classification, context, fallback_config)

    if isinstance(classification, Killed):
        return StopDecision(
            reason=f"process killed by {classification.signal}",
            exit_code=classification.code,
        )

    if isinstance(classification, Unknown):
        return StopDecision(
            reason=f"unrecognized exit code {classification.code}",
            exit_code=classification.code,
        )

    raise TypeError(f"unsupported classification type: {type(classification).__name__}")


def _decide_test_failure(
    classification: TestFailure,
    context: ErrorContext,
    fallback_config: FallbackConfig,
) -> Decision:
    strategy = context.strategy
    if fallback_config.enabled:
        rate = context.error_rate
        if rate == 1.0 and isinstance(strategy, AllAtOnce):
            return FallbackDecision(
                new_strategy=DirectoryByDirectory(max_concurrency=DEFAULT_DIRECTORY_CONCURRENCY),
                trigger=AllFailed(total_packages=context.total_targets),
            )
        if rate > ERROR_RATE_THRESHOLD and context.targets_executed >= MIN_TARGETS_FOR_THRESHOLD:
            next_strategy = next_strategy_in_ladder(strategy)
            if next_strategy is not None:
                return FallbackDecision(
                    new_strategy=next_strategy,
                    trigger=ErrorThresholdExceeded(
                        error_rate=rate,
                        threshold=ERROR_RATE_THRESHOLD,
                    ),
                )

    if isinstance(strategy, FileByFile) and strategy.stop_on_first_error:
        return StopDecision(
            reason="first error in file-by-file mode",
            exit_code=classification.code,
        )
    return ContinueDecision(reason="failure tolerated under current strategy")


def next_strategy_in_ladder(strategy: ExecutionStrategy) -> ExecutionStrategy | None:
    if isinstance(strategy, AllAtOnce):
        return DirectoryByDirectory(max_concurrency=DEFAULT_DIRECTORY_CONCURRENCY)
    if isinstance(strategy, Batch):
        return Batch(batch_size=max(1, strategy.batch_size // 2), parallel=False)
    if isinstance(strategy, DirectoryByDirectory):
        return FileByFile(stop_on_first_error=True)
    if isinstance(strategy, FileByFile):
        return None
    raise TypeError(f"unsupported strategy type: {type(strategy).__name__}")


def create_error_record(
    target: ExecutionTarget,
    exit_code: int,
    classification: ExitClassification,
    message: str | None = None,
    *,
    now: float | None = None,
) -> ErrorRecord:
    return ErrorRecord(
        timestamp=time.time() if now is None else now,
        target=target,
        exit_code=exit_code,
        error_type=classification.kind.value,
        message=message,
    )


def should_retry(error_history: Sequence[ErrorRecord], max_retries: int) -> bool:
    """False once the history reaches `max_retries` or contains a build error."""

    if len(error_history) >= max_retries:
        return False
    return not any(
        record.error_type == ClassificationKind.BUILD_ERROR.value for record in error_history
    )


__all__ = [
    "create_error_record",
    "decide",
    "next_strategy_in_ladder",
    "should_retry",
]
