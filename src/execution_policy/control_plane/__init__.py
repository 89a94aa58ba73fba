"""Control-plane public API: classification, selection, decisions, fallback, sessions."""

from execution_policy.control_plane.classifier import (
    classify,
    classify_outcome,
    worst_classification,
)
from execution_policy.control_plane.decision_engine import (
    create_error_record,
    decide,
    next_strategy_in_ladder,
    should_retry,
)
from execution_policy.control_plane.fallback import (
    FallbackCoordinator,
    FallbackResult,
    FallbackState,
    default_fallback_config,
    trigger_reason,
)
from execution_policy.control_plane.selector import select_initial
from execution_policy.control_plane.session import (
    ExecutionStep,
    OrchestrationSession,
    SessionOutcome,
    SessionPhase,
    plan_steps,
)

__all__ = [
    "ExecutionStep",
    "FallbackCoordinator",
    "FallbackResult",
    "FallbackState",
    "OrchestrationSession",
    "SessionOutcome",
    "SessionPhase",
    "classify",
    "classify_outcome",
    "create_error_record",
    "decide",
    "default_fallback_config",
    "next_strategy_in_ladder",
    "plan_steps",
    "select_initial",
    "should_retry",
    "trigger_reason",
    "worst_classification",
]
