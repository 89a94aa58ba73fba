"""Unit tests for fallback transition events and observers."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

import pytest
from structlog.testing import capture_logs

from execution_policy.domain.decisions import AllFailed, FirstErrorDetected
from execution_policy.domain.strategies import AllAtOnce, DirectoryByDirectory, FileByFile
from execution_policy.domain.targets import file_target
from execution_policy.observability.events import (
    CompositeTransitionObserver,
    FallbackTransition,
    LoggingTransitionObserver,
    ObserverError,
    TransitionObserver,
    TransitionRecorder,
    notify_observer,
)


def _transition(count: int = 1) -> FallbackTransition:
    return FallbackTransition(
        from_strategy=AllAtOnce(),
        to_strategy=DirectoryByDirectory(max_concurrency=5),
        trigger=AllFailed(total_packages=7),
        reason="all tests failed (7 packages)",
        fallback_count=count,
        occurred_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
    )


class _Failing:
    def on_transition(self, transition: FallbackTransition) -> None:
        raise ValueError("sink closed")


def test_transition_serializes_descriptions_and_trigger() -> None:
    payload = _transition().to_dict()

    assert payload["from_description"] == "all-at-once (parallel: false)"
    assert payload["to_description"] == "directory-by-directory (concurrency: 5)"
    assert payload["trigger"] == {"type": "all-tests-failed", "total_packages": 7}
    assert payload["occurred_at"] == "2026-01-02T03:04:05Z"


def test_first_error_trigger_serializes_target_label() -> None:
    target = file_target("pkg/a_test.go").unwrap()
    transition = FallbackTransition(
        from_strategy=DirectoryByDirectory(max_concurrency=2),
        to_strategy=FileByFile(),
        trigger=FirstErrorDetected(target=target),
        reason="first error detected in file pkg/a_test.go",
        fallback_count=2,
    )

    assert transition.to_dict()["trigger"] == {
        "type": "first-error-detected",
        "target": "file pkg/a_test.go",
    }
    assert transition.occurred_at.tzinfo is UTC


def test_recorder_is_bounded_and_replays_latest() -> None:
    recorder = TransitionRecorder(buffer_size=2)
    for count in range(1, 4):
        recorder.on_transition(_transition(count))

    assert len(recorder) == 2
    assert [item.fallback_count for item in recorder.replay()] == [2, 3]
    assert [item.fallback_count for item in recorder.replay(limit=1)] == [3]
    assert recorder.replay(limit=0) == ()

    recorder.clear()
    assert len(recorder) == 0


def test_recorder_is_thread_safe() -> None:
    recorder = TransitionRecorder(buffer_size=1000)

    def worker() -> None:
        for _ in range(100):
            recorder.on_transition(_transition())

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(recorder) == 400


@pytest.mark.parametrize("size", [0, -1, True])
def test_recorder_rejects_invalid_buffer_size(size: object) -> None:
    with pytest.raises(ValueError, match="buffer_size"):
        TransitionRecorder(buffer_size=size)  # type: ignore[arg-type]


def test_observers_satisfy_protocol() -> None:
    assert isinstance(TransitionRecorder(), TransitionObserver)
    assert isinstance(LoggingTransitionObserver(), TransitionObserver)
    assert isinstance(CompositeTransitionObserver([]), TransitionObserver)


def test_logging_observer_emits_structured_event() -> None:
    with capture_logs() as logs:
        LoggingTransitionObserver().on_transition(_transition())

    (entry,) = logs
    assert entry["event"] == "fallback_transition"
    assert entry["log_level"] == "info"
    assert entry["to_strategy"] == "directory-by-directory (concurrency: 5)"
    assert entry["fallback_count"] == 1


def test_notify_observer_captures_exceptions() -> None:
    errors = notify_observer(_Failing(), _transition())

    assert errors == (
        ObserverError(observer="_Failing", error_type="ValueError", message="sink closed"),
    )


def test_composite_isolates_failures_and_still_delivers() -> None:
    recorder = TransitionRecorder()
    composite = CompositeTransitionObserver([_Failing(), recorder])

    errors = notify_observer(composite, _transition())

    assert len(recorder) == 1
    assert [error.error_type for error in errors] == ["ValueError"]
    assert composite.observers[1] is recorder
