"""
execution-policy — unit tests for the strategy decision engine

Purpose
- Validate continue/stop/fallback decisions and the degradation ladder.

What this test file should cover
- Build errors stop regardless of configuration or strategy.
- All-failed and error-threshold fallbacks, and when they do not apply.
- Ladder termination and retry gating.
- Purity: equal inputs produce equal decisions.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from execution_policy.control_plane.decision_engine import (
    create_error_record,
    decide,
    next_strategy_in_ladder,
    should_retry,
)
from execution_policy.domain.decisions import (
    AllFailed,
    ContinueDecision,
    ErrorContext,
    ErrorThresholdExceeded,
    FallbackConfig,
    FallbackDecision,
    StopDecision,
    TimeoutExceeded,
)
from execution_policy.domain.outcomes import (
    BuildError,
    Killed,
    Success,
    TestFailure,
    Timeout,
    Unknown,
)
from execution_policy.domain.strategies import (
    AllAtOnce,
    Batch,
    DirectoryByDirectory,
    ExecutionStrategy,
    FileByFile,
)
from execution_policy.domain.targets import package_target

ENABLED = FallbackConfig(enabled=True, max_retries=3, timeout_limit_ms=300_000)
DISABLED = FallbackConfig(enabled=False)

_STRATEGIES = st.one_of(
    st.builds(AllAtOnce, parallel=st.booleans()),
    st.builds(Batch, batch_size=st.integers(min_value=1, max_value=64), parallel=st.booleans()),
    st.builds(DirectoryByDirectory, max_concurrency=st.integers(min_value=1, max_value=16)),
    st.builds(FileByFile, stop_on_first_error=st.booleans()),
)


def _context(
    strategy: ExecutionStrategy,
    *,
    executed: int,
    failed: int,
    total: int | None = None,
    duration_ms: int = 0,
) -> ErrorContext:
    return ErrorContext(
        strategy=strategy,
        targets_executed=executed,
        targets_failed=failed,
        total_targets=executed if total is None else total,
        duration_ms=duration_ms,
    )


def test_success_continues() -> None:
    decision = decide(Success(), _context(AllAtOnce(), executed=1, failed=0), ENABLED)

    assert decision == ContinueDecision(reason="target succeeded")


@settings(max_examples=100, deadline=None)
@given(strategy=_STRATEGIES, enabled=st.booleans(), executed=st.integers(0, 50))
def test_build_error_always_stops_with_exit_two(
    strategy: ExecutionStrategy,
    enabled: bool,
    executed: int,
) -> None:
    context = _context(strategy, executed=executed, failed=executed)

    decision = decide(BuildError(), context, FallbackConfig(enabled=enabled))

    assert decision == StopDecision(reason="build error detected", exit_code=2)


def test_all_failed_under_all_at_once_falls_back_to_directories() -> None:
    context = _context(AllAtOnce(parallel=False), executed=10, failed=10, total=10)

    decision = decide(TestFailure(), context, ENABLED)

    assert decision == FallbackDecision(
        new_strategy=DirectoryByDirectory(max_concurrency=5),
        trigger=AllFailed(total_packages=10),
    )


def test_four_of_four_failures_under_all_at_once() -> None:
    context = _context(AllAtOnce(), executed=4, failed=4, total=4)

    assert decide(TestFailure(), context, ENABLED) == FallbackDecision(
        new_strategy=DirectoryByDirectory(max_concurrency=5),
        trigger=AllFailed(total_packages=4),
    )


def test_error_rate_above_threshold_degrades_batches() -> None:
    context = _context(Batch(batch_size=10), executed=4, failed=3, total=30)

    decision = decide(TestFailure(), context, ENABLED)

    assert decision == FallbackDecision(
        new_strategy=Batch(batch_size=5, parallel=False),
        trigger=ErrorThresholdExceeded(error_rate=0.75, threshold=0.5),
    )


def test_error_rate_requires_minimum_sample() -> None:
    context = _context(Batch(batch_size=10), executed=2, failed=2, total=30)

    decision = decide(TestFailure(), context, ENABLED)

    assert decision == ContinueDecision(reason="failure tolerated under current strategy")


def test_error_rate_exactly_at_threshold_does_not_fall_back() -> None:
    context = _context(DirectoryByDirectory(max_concurrency=5), executed=4, failed=2)

    decision = decide(TestFailure(), context, ENABLED)

    assert isinstance(decision, ContinueDecision)


def test_directory_failures_degrade_to_file_by_file() -> None:
    context = _context(DirectoryByDirectory(max_concurrency=5), executed=6, failed=5)

    decision = decide(TestFailure(), context, ENABLED)

    assert isinstance(decision, FallbackDecision)
    assert decision.new_strategy == FileByFile(stop_on_first_error=True)


def test_file_by_file_has_nowhere_to_go_and_stops_on_first_error() -> None:
    context = _context(FileByFile(stop_on_first_error=True), executed=5, failed=5)

    decision = decide(TestFailure(), context, ENABLED)

    assert decision == StopDecision(reason="first error in file-by-file mode", exit_code=1)


def test_file_by_file_without_stop_tolerates_failures() -> None:
    context = _context(FileByFile(stop_on_first_error=False), executed=5, failed=5)

    assert isinstance(decide(TestFailure(), context, ENABLED), ContinueDecision)


def test_disabled_fallback_never_degrades() -> None:
    context = _context(AllAtOnce(), executed=10, failed=10)

    assert decide(TestFailure(), context, DISABLED) == ContinueDecision(
        reason="failure tolerated under current strategy"
    )


def test_timeout_under_all_at_once_falls_back_with_reduced_concurrency() -> None:
    context = _context(AllAtOnce(), executed=1, failed=1, duration_ms=301_000)

    decision = decide(Timeout(), context, ENABLED)

    assert decision == FallbackDecision(
        new_strategy=DirectoryByDirectory(max_concurrency=3),
        trigger=TimeoutExceeded(duration_ms=301_000, limit_ms=300_000),
    )


@pytest.mark.parametrize(
    "strategy",
    [Batch(batch_size=4), DirectoryByDirectory(max_concurrency=2), FileByFile()],
)
def test_timeout_elsewhere_stops(strategy: ExecutionStrategy) -> None:
    decision = decide(Timeout(), _context(strategy, executed=1, failed=1), ENABLED)

    assert decision == StopDecision(reason="execution timed out", exit_code=124)


def test_timeout_with_fallback_disabled_stops() -> None:
    decision = decide(Timeout(), _context(AllAtOnce(), executed=1, failed=1), DISABLED)

    assert decision == StopDecision(reason="execution timed out", exit_code=124)


def test_killed_and_unknown_stop_with_their_codes() -> None:
    context = _context(AllAtOnce(), executed=1, failed=1)

    assert decide(Killed(code=137, signal="SIGKILL"), context, ENABLED) == StopDecision(
        reason="process killed by SIGKILL", exit_code=137
    )
    assert decide(Unknown(code=3), context, ENABLED) == StopDecision(
        reason="unrecognized exit code 3", exit_code=3
    )


@settings(max_examples=150, deadline=None)
@given(
    strategy=_STRATEGIES,
    enabled=st.booleans(),
    executed=st.integers(0, 40),
    data=st.data(),
)
def test_decide_is_pure(
    strategy: ExecutionStrategy,
    enabled: bool,
    executed: int,
    data: st.DataObject,
) -> None:
    failed = data.draw(st.integers(0, executed))
    classification = data.draw(
        st.sampled_from([Success(), TestFailure(), BuildError(), Timeout(), Unknown(5)])
    )
    context = _context(strategy, executed=executed, failed=failed, total=executed + 3)
    config = FallbackConfig(enabled=enabled)

    assert decide(classification, context, config) == decide(classification, context, config)


@settings(max_examples=100, deadline=None)
@given(strategy=_STRATEGIES)
def test_ladder_terminates_within_four_steps(strategy: ExecutionStrategy) -> None:
    current: ExecutionStrategy | None = strategy
    steps = 0
    while current is not None and not isinstance(current, Batch):
        current = next_strategy_in_ladder(current)
        steps += 1

    assert steps <= 3


def test_batch_ladder_halves_down_to_one() -> None:
    assert next_strategy_in_ladder(Batch(batch_size=9)) == Batch(batch_size=4, parallel=False)
    assert next_strategy_in_ladder(Batch(batch_size=1)) == Batch(batch_size=1, parallel=False)


def test_ladder_from_all_at_once_reaches_terminal() -> None:
    chain = [AllAtOnce()]
    while (following := next_strategy_in_ladder(chain[-1])) is not None:
        chain.append(following)

    assert chain == [
        AllAtOnce(),
        DirectoryByDirectory(max_concurrency=5),
        FileByFile(stop_on_first_error=True),
    ]


def test_create_error_record_uses_classification_kind() -> None:
    target = package_target("example.com/m/pkg").unwrap()

    record = create_error_record(target, 2, BuildError(), "undefined: x", now=1234.5)

    assert record.timestamp == 1234.5
    assert record.target == target
    assert record.exit_code == 2
    assert record.error_type == "build-error"
    assert record.message == "undefined: x"


def test_should_retry_respects_budget_and_build_errors() -> None:
    target = package_target("example.com/m/pkg").unwrap()
    failure = create_error_record(target, 1, TestFailure(), now=1.0)
    build = create_error_record(target, 2, BuildError(), now=2.0)

    assert should_retry([], 3)
    assert should_retry([failure, failure], 3)
    assert not should_retry([failure, failure, failure], 3)
    assert not should_retry([build], 3)
    assert not should_retry([], 0)
