"""
execution-policy — unit tests for the fallback coordinator

Purpose
- Validate retry-budget enforcement, state snapshots, and observer isolation.

What this test file should cover
- Grants up to `max_retries`, then denial without raising.
- Use before initialization is denied.
- Observer exceptions are captured and do not block the grant.
- Reset clears state between sessions.
"""

from __future__ import annotations

from structlog.testing import capture_logs

from execution_policy.control_plane.fallback import (
    NOT_INITIALIZED_REASON,
    FallbackCoordinator,
    default_fallback_config,
    trigger_reason,
)
from execution_policy.domain.decisions import (
    AllFailed,
    ErrorThresholdExceeded,
    FallbackConfig,
    FirstErrorDetected,
    TimeoutExceeded,
)
from execution_policy.domain.strategies import AllAtOnce, Batch, DirectoryByDirectory, FileByFile
from execution_policy.domain.targets import file_target
from execution_policy.observability.events import FallbackTransition, TransitionRecorder


class _ExplodingObserver:
    def on_transition(self, transition: FallbackTransition) -> None:
        raise RuntimeError("observer is down")


def _coordinator(max_retries: int = 3, **kwargs: object) -> FallbackCoordinator:
    return FallbackCoordinator(
        FallbackConfig(enabled=True, max_retries=max_retries),
        clock=lambda: 100.0,
        **kwargs,  # type: ignore[arg-type]
    )


def test_default_config_values() -> None:
    config = default_fallback_config()

    assert config.enabled is True
    assert config.max_retries == 3
    assert config.timeout_limit_ms == 300_000


def test_initialize_sets_fresh_state() -> None:
    coordinator = _coordinator()

    state = coordinator.initialize(AllAtOnce())

    assert state.original_strategy == AllAtOnce()
    assert state.current_strategy == AllAtOnce()
    assert state.fallback_count == 0
    assert state.triggers == ()
    assert state.start_time == 100.0
    assert coordinator.can_fallback()


def test_fallback_before_initialize_is_denied() -> None:
    coordinator = _coordinator()

    result = coordinator.execute_fallback(AllFailed(total_packages=3), FileByFile())

    assert not result.executed
    assert result.reason == NOT_INITIALIZED_REASON
    assert result.new_strategy is None
    assert not coordinator.can_fallback()
    assert coordinator.get_fallback_history() == ()


def test_grants_until_budget_then_denies() -> None:
    coordinator = _coordinator(max_retries=2)
    coordinator.initialize(AllAtOnce())
    trigger = AllFailed(total_packages=8)

    first = coordinator.execute_fallback(trigger, DirectoryByDirectory(max_concurrency=5))
    second = coordinator.execute_fallback(trigger, FileByFile())
    third = coordinator.execute_fallback(trigger, FileByFile())

    assert first.executed and second.executed
    assert first.reason == "all tests failed (8 packages)"
    assert not third.executed
    assert third.reason == "max retries exceeded (2)"
    assert not coordinator.can_fallback()

    state = coordinator.get_state()
    assert state is not None
    assert state.fallback_count == 2
    assert state.current_strategy == FileByFile()
    assert coordinator.get_fallback_history() == (trigger, trigger)


def test_zero_retries_denies_immediately() -> None:
    coordinator = _coordinator(max_retries=0)
    coordinator.initialize(AllAtOnce())

    result = coordinator.execute_fallback(AllFailed(total_packages=1), FileByFile())

    assert not result.executed
    assert result.reason == "max retries exceeded (0)"


def test_state_snapshots_are_not_mutated_by_later_grants() -> None:
    coordinator = _coordinator()
    before = coordinator.initialize(Batch(batch_size=10))

    coordinator.execute_fallback(
        ErrorThresholdExceeded(error_rate=0.8, threshold=0.5),
        Batch(batch_size=5, parallel=False),
    )

    assert before.fallback_count == 0
    assert before.current_strategy == Batch(batch_size=10)


def test_disabled_config_reports_no_fallback_available() -> None:
    coordinator = FallbackCoordinator(FallbackConfig(enabled=False))
    coordinator.initialize(AllAtOnce())

    assert not coordinator.can_fallback()


def test_observer_receives_transition() -> None:
    recorder = TransitionRecorder()
    coordinator = _coordinator(observer=recorder)
    coordinator.initialize(AllAtOnce())

    coordinator.execute_fallback(
        TimeoutExceeded(duration_ms=310_000, limit_ms=300_000),
        DirectoryByDirectory(max_concurrency=3),
    )

    (transition,) = recorder.replay()
    assert transition.from_strategy == AllAtOnce()
    assert transition.to_strategy == DirectoryByDirectory(max_concurrency=3)
    assert transition.fallback_count == 1
    assert transition.reason == "execution exceeded time limit (310000ms > 300000ms)"
    assert transition.from_description == "all-at-once (parallel: false)"


def test_observer_failure_is_captured_and_grant_still_applies() -> None:
    coordinator = _coordinator(observer=_ExplodingObserver())
    coordinator.initialize(AllAtOnce())

    with capture_logs() as logs:
        result = coordinator.execute_fallback(AllFailed(total_packages=4), FileByFile())

    assert result.executed
    (error,) = coordinator.observer_errors
    assert error.observer == "_ExplodingObserver"
    assert error.error_type == "RuntimeError"
    assert error.message == "observer is down"
    events = [entry["event"] for entry in logs]
    assert events == ["fallback_granted", "fallback_observer_failed"]


def test_reset_clears_state_and_errors() -> None:
    coordinator = _coordinator(observer=_ExplodingObserver())
    coordinator.initialize(AllAtOnce())
    coordinator.execute_fallback(AllFailed(total_packages=4), FileByFile())

    coordinator.reset()

    assert coordinator.get_state() is None
    assert coordinator.observer_errors == ()
    assert coordinator.get_fallback_history() == ()


def test_trigger_reasons() -> None:
    target = file_target("pkg/api/handler_test.go", "TestCreate").unwrap()

    assert (
        trigger_reason(ErrorThresholdExceeded(error_rate=0.75, threshold=0.5))
        == "error rate 75% exceeded threshold 50%"
    )
    assert (
        trigger_reason(FirstErrorDetected(target=target))
        == "first error detected in file pkg/api/handler_test.go (TestCreate)"
    )
