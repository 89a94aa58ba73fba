"""
Fallback coordination for one orchestration session.

The coordinator owns an explicit `FallbackState` value and grants or denies
strategy degradations under the `max_retries` budget. State is replaced on
every grant, never mutated in place, so snapshots returned by `get_state()`
stay valid after later fallbacks.

The coordinator never raises: denials come back as `FallbackResult` values and
observer exceptions are captured in `observer_errors`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import structlog

from execution_policy.domain.decisions import (
    AllFailed,
    ErrorThresholdExceeded,
    FallbackConfig,
    TimeoutExceeded,
    trigger_to_dict,
)
from execution_policy.domain.strategies import describe_strategy
from execution_policy.domain.targets import describe_target
from execution_policy.observability.events import FallbackTransition, notify_observer

if TYPE_CHECKING:
    from execution_policy.domain.decisions import FallbackTrigger
    from execution_policy.domain.strategies import ExecutionStrategy
    from execution_policy.observability.events import ObserverError, TransitionObserver

NOT_INITIALIZED_REASON = "fallback coordinator not initialized"


@dataclass(frozen=True, slots=True)
class FallbackState:
    original_strategy: ExecutionStrategy
    current_strategy: ExecutionStrategy
    fallback_count: int
    triggers: tuple[FallbackTrigger, ...]
    start_time: float


@dataclass(frozen=True, slots=True)
class FallbackResult:
    executed: bool
    reason: str
    new_strategy: ExecutionStrategy | None = None


class FallbackCoordinator:
    """Grant strategy degradations until the retry budget is exhausted."""

    def __init__(
        self,
        config: FallbackConfig | None = None,
        *,
        observer: TransitionObserver | None = None,
        logger: Any | None = None,
        clock: Any | None = None,
    ) -> None:
        self._config = config if config is not None else default_fallback_config()
        self._observer = observer
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._clock = clock if clock is not None else time.monotonic
        self._state: FallbackState | None = None
        self._observer_errors: list[ObserverError] = []

    @property
    def config(self) -> FallbackConfig:
        return self._config

    @property
    def observer_errors(self) -> tuple[ObserverError, ...]:
        return tuple(self._observer_errors)

    def initialize(self, original_strategy: ExecutionStrategy) -> FallbackState:
        self._state = FallbackState(
            original_strategy=original_strategy,
            current_strategy=original_strategy,
            fallback_count=0,
            triggers=(),
            start_time=self._clock(),
        )
        return self._state

    def execute_fallback(
        self,
        trigger: FallbackTrigger,
        new_strategy: ExecutionStrategy,
    ) -> FallbackResult:
        state = self._state
        if state is None:
            return self._deny(trigger, NOT_INITIALIZED_REASON)

        if state.fallback_count >= self._config.max_retries:
            return self._deny(trigger, f"max retries exceeded ({self._config.max_retries})")

        previous = state.current_strategy
        self._state = replace(
            state,
            current_strategy=new_strategy,
            fallback_count=state.fallback_count + 1,
            triggers=(*state.triggers, trigger),
        )
        reason = trigger_reason(trigger)

        self._logger.info(
            "fallback_granted",
            from_strategy=describe_strategy(previous),
            to_strategy=describe_strategy(new_strategy),
            trigger=trigger_to_dict(trigger),
            fallback_count=self._state.fallback_count,
            max_retries=self._config.max_retries,
        )
        self._notify(
            FallbackTransition(
                from_strategy=previous,
                to_strategy=new_strategy,
                trigger=trigger,
                reason=reason,
                fallback_count=self._state.fallback_count,
            )
        )
        return FallbackResult(executed=True, reason=reason, new_strategy=new_strategy)

    def can_fallback(self) -> bool:
        state = self._state
        return (
            self._config.enabled
            and state is not None
            and state.fallback_count < self._config.max_retries
        )

    def get_fallback_history(self) -> tuple[FallbackTrigger, ...]:
        if self._state is None:
            return ()
        return self._state.triggers

    def get_state(self) -> FallbackState | None:
        return self._state

    def reset(self) -> None:
        self._state = None
        self._observer_errors.clear()

    def _deny(self, trigger: FallbackTrigger, reason: str) -> FallbackResult:
        self._logger.info(
            "fallback_denied",
            trigger=trigger_to_dict(trigger),
            reason=reason,
            fallback_count=self._state.fallback_count if self._state is not None else 0,
            max_retries=self._config.max_retries,
        )
        return FallbackResult(executed=False, reason=reason)

    def _notify(self, transition: FallbackTransition) -> None:
        if self._observer is None:
            return
        errors = notify_observer(self._observer, transition)
        for error in errors:
            self._logger.warning(
                "fallback_observer_failed",
                observer=error.observer,
                error_type=error.error_type,
                error_message=error.message,
            )
        self._observer_errors.extend(errors)


def trigger_reason(trigger: FallbackTrigger) -> str:
    if isinstance(trigger, AllFailed):
        return f"all tests failed ({trigger.total_packages} packages)"
    if isinstance(trigger, ErrorThresholdExceeded):
        return (
            f"error rate {trigger.error_rate:.0%} exceeded threshold {trigger.threshold:.0%}"
        )
    if isinstance(trigger, TimeoutExceeded):
        return f"execution exceeded time limit ({trigger.duration_ms}ms > {trigger.limit_ms}ms)"
    return f"first error detected in {describe_target(trigger.target)}"


def default_fallback_config() -> FallbackConfig:
    return FallbackConfig()


__all__ = [
    "NOT_INITIALIZED_REASON",
    "FallbackCoordinator",
    "FallbackResult",
    "FallbackState",
    "default_fallback_config",
    "trigger_reason",
]
