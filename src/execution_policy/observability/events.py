"""Fallback transition events, observers, and a bounded replay buffer."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import structlog

from execution_policy.domain.decisions import trigger_to_dict
from execution_policy.domain.strategies import describe_strategy, strategy_to_dict

if TYPE_CHECKING:
    from collections.abc import Iterable

    from execution_policy.domain.decisions import FallbackTrigger
    from execution_policy.domain.strategies import ExecutionStrategy

_DEFAULT_BUFFER_SIZE: Final[int] = 256


@dataclass(frozen=True, slots=True)
class FallbackTransition:
    """One granted strategy degradation, as delivered to observers."""

    from_strategy: ExecutionStrategy
    to_strategy: ExecutionStrategy
    trigger: FallbackTrigger
    reason: str
    fallback_count: int
    occurred_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def from_description(self) -> str:
        return describe_strategy(self.from_strategy)

    @property
    def to_description(self) -> str:
        return describe_strategy(self.to_strategy)

    def to_dict(self) -> dict[str, object]:
        return {
            "from": strategy_to_dict(self.from_strategy),
            "to": strategy_to_dict(self.to_strategy),
            "from_description": self.from_description,
            "to_description": self.to_description,
            "trigger": trigger_to_dict(self.trigger),
            "reason": self.reason,
            "fallback_count": self.fallback_count,
            "occurred_at": self.occurred_at.isoformat().replace("+00:00", "Z"),
        }


@runtime_checkable
class TransitionObserver(Protocol):
    def on_transition(self, transition: FallbackTransition) -> object: ...


@dataclass(frozen=True, slots=True)
class ObserverError:
    """Observer failure captured without interrupting the coordinator."""

    observer: str
    error_type: str
    message: str


class TransitionRecorder:
    """Thread-safe observer that keeps the most recent transitions for replay."""

    def __init__(self, *, buffer_size: int = _DEFAULT_BUFFER_SIZE) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        self._buffer = deque[FallbackTransition](maxlen=buffer_size)
        self._lock = threading.Lock()

    def on_transition(self, transition: FallbackTransition) -> None:
        with self._lock:
            self._buffer.append(transition)

    def replay(self, *, limit: int | None = None) -> tuple[FallbackTransition, ...]:
        with self._lock:
            transitions = tuple(self._buffer)
        if limit is None:
            return transitions
        if limit <= 0:
            return ()
        return transitions[-limit:]

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


class LoggingTransitionObserver:
    """Emit each transition as a structured `fallback_transition` log event."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def on_transition(self, transition: FallbackTransition) -> None:
        self._logger.info(
            "fallback_transition",
            from_strategy=transition.from_description,
            to_strategy=transition.to_description,
            trigger=trigger_to_dict(transition.trigger),
            reason=transition.reason,
            fallback_count=transition.fallback_count,
        )


class CompositeTransitionObserver:
    """Fan a transition out to several observers, isolating their failures."""

    def __init__(self, observers: Iterable[TransitionObserver]) -> None:
        self._observers = tuple(observers)

    @property
    def observers(self) -> tuple[TransitionObserver, ...]:
        return self._observers

    def on_transition(self, transition: FallbackTransition) -> tuple[ObserverError, ...]:
        errors: list[ObserverError] = []
        for observer in self._observers:
            errors.extend(notify_observer(observer, transition))
        return tuple(errors)


def notify_observer(
    observer: TransitionObserver,
    transition: FallbackTransition,
) -> tuple[ObserverError, ...]:
    """Deliver one transition; exceptions are returned, never raised."""

    try:
        result = observer.on_transition(transition)
    except Exception as exc:  # noqa: BLE001
        return (
            ObserverError(
                observer=_observer_name(observer),
                error_type=exc.__class__.__name__,
                message=str(exc),
            ),
        )
    if isinstance(result, tuple):
        return tuple(item for item in result if isinstance(item, ObserverError))
    return ()


def _observer_name(observer: object) -> str:
    name = getattr(observer, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return observer.__class__.__name__


__all__ = [
    "CompositeTransitionObserver",
    "FallbackTransition",
    "LoggingTransitionObserver",
    "ObserverError",
    "TransitionObserver",
    "TransitionRecorder",
    "notify_observer",
]
