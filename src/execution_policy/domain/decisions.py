"""Decision-engine inputs and outputs: error context, triggers, and decisions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

from execution_policy.constants import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_LIMIT_MS
from execution_policy.domain.strategies import strategy_to_dict
from execution_policy.domain.targets import describe_target

if TYPE_CHECKING:
    from execution_policy.domain.strategies import ExecutionStrategy
    from execution_policy.domain.targets import ExecutionTarget


class TriggerKind(StrEnum):
    ALL_FAILED = "all-tests-failed"
    ERROR_THRESHOLD_EXCEEDED = "error-threshold-exceeded"
    TIMEOUT_EXCEEDED = "timeout-exceeded"
    FIRST_ERROR_DETECTED = "first-error-detected"


class DecisionAction(StrEnum):
    CONTINUE = "continue"
    STOP = "stop"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    """Append-only log entry for one failed target."""

    timestamp: float
    target: ExecutionTarget
    exit_code: int
    error_type: str
    message: str | None = None


@dataclass(frozen=True, slots=True)
class ErrorContext:
    """Accumulated execution context for one round, passed by value to ``decide``."""

    strategy: ExecutionStrategy
    targets_executed: int
    targets_failed: int
    total_targets: int
    duration_ms: int = 0
    error_history: tuple[ErrorRecord, ...] = ()

    def __post_init__(self) -> None:
        for name in ("targets_executed", "targets_failed", "total_targets", "duration_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"ErrorContext.{name}: must be a non-negative integer")
        if self.targets_failed > self.targets_executed:
            raise ValueError("ErrorContext.targets_failed: cannot exceed targets_executed")
        object.__setattr__(self, "error_history", tuple(self.error_history))

    @property
    def error_rate(self) -> float:
        if self.targets_executed == 0:
            return 0.0
        return self.targets_failed / self.targets_executed


@dataclass(frozen=True, slots=True)
class AllFailed:
    kind: ClassVar[TriggerKind] = TriggerKind.ALL_FAILED

    total_packages: int


@dataclass(frozen=True, slots=True)
class ErrorThresholdExceeded:
    kind: ClassVar[TriggerKind] = TriggerKind.ERROR_THRESHOLD_EXCEEDED

    error_rate: float
    threshold: float


@dataclass(frozen=True, slots=True)
class TimeoutExceeded:
    kind: ClassVar[TriggerKind] = TriggerKind.TIMEOUT_EXCEEDED

    duration_ms: int
    limit_ms: int


@dataclass(frozen=True, slots=True)
class FirstErrorDetected:
    kind: ClassVar[TriggerKind] = TriggerKind.FIRST_ERROR_DETECTED

    target: ExecutionTarget


FallbackTrigger = AllFailed | ErrorThresholdExceeded | TimeoutExceeded | FirstErrorDetected


@dataclass(frozen=True, slots=True)
class ContinueDecision:
    action: ClassVar[DecisionAction] = DecisionAction.CONTINUE

    reason: str


@dataclass(frozen=True, slots=True)
class StopDecision:
    action: ClassVar[DecisionAction] = DecisionAction.STOP

    reason: str
    exit_code: int


@dataclass(frozen=True, slots=True)
class FallbackDecision:
    action: ClassVar[DecisionAction] = DecisionAction.FALLBACK

    new_strategy: ExecutionStrategy
    trigger: FallbackTrigger


Decision = ContinueDecision | StopDecision | FallbackDecision


@dataclass(frozen=True, slots=True)
class FallbackConfig:
    """Fallback policy knobs shared by the decision engine and coordinator."""

    enabled: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout_limit_ms: int = DEFAULT_TIMEOUT_LIMIT_MS

    def __post_init__(self) -> None:
        if not isinstance(self.enabled, bool):
            raise ValueError("FallbackConfig.enabled: expected boolean")
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int):
            raise ValueError("FallbackConfig.max_retries: expected integer")
        if self.max_retries < 0:
            raise ValueError("FallbackConfig.max_retries: must be >= 0")
        if self.timeout_limit_ms < 0:
            raise ValueError("FallbackConfig.timeout_limit_ms: must be >= 0")


@dataclass(frozen=True, slots=True)
class ResourceConstraints:
    max_concurrency: int
    memory_limit_mb: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.max_concurrency, bool) or not isinstance(self.max_concurrency, int):
            raise ValueError("ResourceConstraints.max_concurrency: expected integer")
        if self.max_concurrency < 1:
            raise ValueError("ResourceConstraints.max_concurrency: must be >= 1")
        if self.memory_limit_mb is not None and self.memory_limit_mb < 0:
            raise ValueError("ResourceConstraints.memory_limit_mb: must be >= 0")


@dataclass(frozen=True, slots=True)
class SelectionCriteria:
    """Static project characteristics used to pick the initial strategy."""

    total_packages: int
    has_complex_dependencies: bool = False
    time_constraint_seconds: float = 300.0
    previous_failures: int = 0
    resource_constraints: ResourceConstraints | None = None

    def __post_init__(self) -> None:
        if self.total_packages < 0:
            raise ValueError("SelectionCriteria.total_packages: must be >= 0")


def trigger_to_dict(trigger: FallbackTrigger) -> dict[str, object]:
    payload: dict[str, object] = {"type": trigger.kind.value}
    if isinstance(trigger, AllFailed):
        payload["total_packages"] = trigger.total_packages
    elif isinstance(trigger, ErrorThresholdExceeded):
        payload["error_rate"] = trigger.error_rate
        payload["threshold"] = trigger.threshold
    elif isinstance(trigger, TimeoutExceeded):
        payload["duration_ms"] = trigger.duration_ms
        payload["limit_ms"] = trigger.limit_ms
    else:
        payload["target"] = describe_target(trigger.target)
    return payload


def decision_to_dict(decision: Decision) -> dict[str, object]:
    if isinstance(decision, ContinueDecision):
        return {"action": decision.action.value, "reason": decision.reason}
    if isinstance(decision, StopDecision):
        return {
            "action": decision.action.value,
            "reason": decision.reason,
            "exit_code": decision.exit_code,
        }
    return {
        "action": decision.action.value,
        "new_strategy": strategy_to_dict(decision.new_strategy),
        "trigger": trigger_to_dict(decision.trigger),
    }


__all__ = [
    "AllFailed",
    "ContinueDecision",
    "Decision",
    "DecisionAction",
    "ErrorContext",
    "ErrorRecord",
    "ErrorThresholdExceeded",
    "FallbackConfig",
    "FallbackDecision",
    "FallbackTrigger",
    "FirstErrorDetected",
    "ResourceConstraints",
    "SelectionCriteria",
    "StopDecision",
    "TimeoutExceeded",
    "TriggerKind",
    "decision_to_dict",
    "trigger_to_dict",
]
