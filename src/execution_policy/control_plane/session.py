"""
Whole-session state machine.

An `OrchestrationSession` drives one test run from an initial strategy to a
terminal phase:

    running(strategy) --step decision--> running            (continue)
                      --step decision--> stopped(exit_code)  (stop)
                      --step decision--> degrading(trigger)  (fallback)
    degrading --grant--> running(new strategy) over targets not yet passed
    degrading --deny---> stopped(classification code)
    running --round done, all passed--> completed
    running --round done, failures tolerated--> stopped(1)

Every granted fallback consumes one retry from the coordinator budget, so a
session runs at most `max_retries + 1` rounds. A session is single use and owns
its own `FallbackCoordinator`; fallback state never leaks between sessions.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

import structlog

from execution_policy.constants import (
    EXIT_CANCELLED,
    EXIT_EXECUTION_FAILURE,
    EXIT_SUCCESS,
    EXIT_TEST_FAILURE,
)
from execution_policy.control_plane.classifier import worst_classification
from execution_policy.control_plane.decision_engine import create_error_record, decide
from execution_policy.control_plane.fallback import FallbackCoordinator
from execution_policy.domain.decisions import (
    ContinueDecision,
    ErrorContext,
    ErrorRecord,
    FallbackConfig,
    StopDecision,
    decision_to_dict,
)
from execution_policy.domain.strategies import (
    AllAtOnce,
    Batch,
    DirectoryByDirectory,
    FileByFile,
    describe_strategy,
)
from execution_policy.domain.targets import describe_target, target_group_key
from execution_policy.execution.process import ExecutionFailure
from execution_policy.execution.runner import BatchRunner
from execution_policy.observability.events import CompositeTransitionObserver, TransitionRecorder
from execution_policy.observability.logging import correlation_scope

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from execution_policy.domain.decisions import FallbackTrigger
    from execution_policy.domain.strategies import ExecutionStrategy
    from execution_policy.domain.targets import ExecutionTarget
    from execution_policy.execution.runner import PerTargetExecute, RunReport, TargetError
    from execution_policy.execution.target_executor import TargetResult
    from execution_policy.observability.events import FallbackTransition, TransitionObserver

EXECUTION_FAILURE_TYPE: Final[str] = "execution-failure"


class SessionPhase(StrEnum):
    RUNNING = "running"
    DEGRADING = "degrading"
    STOPPED = "stopped"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class ExecutionStep:
    """One barrier-separated unit of a round, handed to the batch runner."""

    targets: tuple[ExecutionTarget, ...]
    parallel: bool
    max_concurrency: int = 1
    stop_on_failure: bool = False


@dataclass(frozen=True, slots=True)
class SessionOutcome:
    phase: SessionPhase
    exit_code: int
    reason: str
    final_strategy: ExecutionStrategy
    results: tuple[TargetResult, ...]
    errors: tuple[TargetError, ...]
    error_history: tuple[ErrorRecord, ...]
    fallback_history: tuple[FallbackTrigger, ...]
    transitions: tuple[FallbackTransition, ...]
    rounds: int

    @property
    def succeeded(self) -> bool:
        return self.phase is SessionPhase.COMPLETED

    def to_dict(self) -> dict[str, object]:
        return {
            "phase": self.phase.value,
            "exit_code": self.exit_code,
            "reason": self.reason,
            "final_strategy": describe_strategy(self.final_strategy),
            "rounds": self.rounds,
            "results": [result.to_dict() for result in self.results],
            "errors": [
                {"target": describe_target(error.target), "error": str(error.error)}
                for error in self.errors
            ],
            "transitions": [transition.to_dict() for transition in self.transitions],
        }


@dataclass(frozen=True, slots=True)
class _Terminal:
    phase: SessionPhase
    exit_code: int
    reason: str


@dataclass(frozen=True, slots=True)
class _Degrade:
    new_strategy: ExecutionStrategy
    passed: frozenset[ExecutionTarget]


def plan_steps(
    strategy: ExecutionStrategy,
    targets: Sequence[ExecutionTarget],
) -> tuple[ExecutionStep, ...]:
    """Split one round of targets into runner steps according to `strategy`."""

    items = tuple(targets)
    if not items:
        return ()

    if isinstance(strategy, AllAtOnce):
        return (
            ExecutionStep(
                targets=items,
                parallel=strategy.parallel,
                max_concurrency=len(items) if strategy.parallel else 1,
            ),
        )

    if isinstance(strategy, Batch):
        size = strategy.batch_size
        return tuple(
            ExecutionStep(
                targets=items[start : start + size],
                parallel=strategy.parallel,
                max_concurrency=size if strategy.parallel else 1,
            )
            for start in range(0, len(items), size)
        )

    if isinstance(strategy, DirectoryByDirectory):
        groups: dict[str, list[ExecutionTarget]] = {}
        for target in items:
            groups.setdefault(target_group_key(target), []).append(target)
        return tuple(
            ExecutionStep(
                targets=tuple(members),
                parallel=True,
                max_concurrency=strategy.max_concurrency,
            )
            for members in groups.values()
        )

    if isinstance(strategy, FileByFile):
        return tuple(
            ExecutionStep(
                targets=(target,),
                parallel=False,
                stop_on_failure=strategy.stop_on_first_error,
            )
            for target in items
        )

    raise TypeError(f"unsupported strategy type: {type(strategy).__name__}")


class OrchestrationSession:
    """Single-use driver of the classify/decide/fallback loop."""

    def __init__(
        self,
        per_target_execute: PerTargetExecute,
        *,
        fallback_config: FallbackConfig | None = None,
        runner: BatchRunner | None = None,
        observer: TransitionObserver | None = None,
        fail_fast: bool = False,
        session_id: str | None = None,
        logger: Any | None = None,
        clock: Any | None = None,
    ) -> None:
        self._execute = per_target_execute
        self._config = fallback_config if fallback_config is not None else FallbackConfig()
        self._runner = runner if runner is not None else BatchRunner()
        self._fail_fast = fail_fast
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._clock = clock if clock is not None else time.monotonic
        self.session_id = session_id if session_id is not None else _generate_session_id()

        self._recorder = TransitionRecorder()
        observers: list[TransitionObserver] = [self._recorder]
        if observer is not None:
            observers.append(observer)
        self._coordinator = FallbackCoordinator(
            self._config,
            observer=CompositeTransitionObserver(observers),
            logger=self._logger,
            clock=self._clock,
        )

        self._phase = SessionPhase.RUNNING
        self._started = False
        self._rounds = 0
        self._results: list[TargetResult] = []
        self._errors: list[TargetError] = []
        self._error_history: list[ErrorRecord] = []

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def coordinator(self) -> FallbackCoordinator:
        return self._coordinator

    def cancel(self) -> None:
        """Stop launching further groups; the session ends `stopped`."""
        self._runner.cancel_token.cancel()

    async def run(
        self,
        targets: Iterable[ExecutionTarget],
        strategy: ExecutionStrategy,
    ) -> SessionOutcome:
        if self._started:
            raise RuntimeError("OrchestrationSession.run() may only be called once")
        self._started = True

        pending = _dedupe(targets)
        current = strategy
        self._coordinator.initialize(strategy)

        with correlation_scope(session_id=self.session_id):
            self._logger.info(
                "session_started",
                session_id=self.session_id,
                strategy=describe_strategy(strategy),
                total_targets=len(pending),
            )
            if not pending:
                return self._finish(
                    _Terminal(SessionPhase.COMPLETED, EXIT_SUCCESS, "no targets to execute"),
                    current,
                )

            while True:
                self._rounds += 1
                self._phase = SessionPhase.RUNNING
                with correlation_scope(round=self._rounds, strategy=describe_strategy(current)):
                    step_result = await self._run_round(current, pending)
                if isinstance(step_result, _Terminal):
                    return self._finish(step_result, current)
                current = step_result.new_strategy
                pending = tuple(target for target in pending if target not in step_result.passed)

    async def _run_round(
        self,
        strategy: ExecutionStrategy,
        targets: tuple[ExecutionTarget, ...],
    ) -> _Terminal | _Degrade:
        started = self._clock()
        passed: set[ExecutionTarget] = set()
        executed = 0
        failed = 0

        self._logger.info(
            "round_started",
            round=self._rounds,
            strategy=describe_strategy(strategy),
            targets=len(targets),
        )

        for step in plan_steps(strategy, targets):
            try:
                report = await self._execute_step(step)
            except ExecutionFailure as exc:
                return _Terminal(
                    SessionPhase.STOPPED,
                    EXIT_EXECUTION_FAILURE,
                    f"execution failure: {exc}",
                )

            self._results.extend(report.results)
            self._errors.extend(report.errors)

            for result in report.results:
                if result.success:
                    passed.add(result.target)
                    continue
                self._error_history.append(
                    create_error_record(
                        result.target,
                        result.outcome.exit_code,
                        result.classification,
                        _summarize(result),
                        now=time.time(),
                    )
                )

            if report.errors:
                for error in report.errors:
                    self._error_history.append(
                        ErrorRecord(
                            timestamp=time.time(),
                            target=error.target,
                            exit_code=EXIT_EXECUTION_FAILURE,
                            error_type=EXECUTION_FAILURE_TYPE,
                            message=str(error.error),
                        )
                    )
                return _Terminal(
                    SessionPhase.STOPPED,
                    EXIT_EXECUTION_FAILURE,
                    f"execution failure: {report.errors[0].error}",
                )

            if report.cancelled:
                return _Terminal(SessionPhase.STOPPED, EXIT_CANCELLED, "session cancelled")

            executed += len(report.results)
            failed += len(report.failed_results)

            classification = worst_classification(
                result.classification for result in report.results
            )
            context = ErrorContext(
                strategy=strategy,
                targets_executed=executed,
                targets_failed=failed,
                total_targets=len(targets),
                duration_ms=_elapsed_ms(started, self._clock()),
                error_history=tuple(self._error_history),
            )
            decision = decide(classification, context, self._config)
            self._logger.info(
                "step_decision",
                classification=classification.kind.value,
                targets_executed=executed,
                targets_failed=failed,
                decision=decision_to_dict(decision),
            )

            if isinstance(decision, ContinueDecision):
                continue
            if isinstance(decision, StopDecision):
                return _Terminal(SessionPhase.STOPPED, decision.exit_code, decision.reason)

            self._phase = SessionPhase.DEGRADING
            granted = self._coordinator.execute_fallback(decision.trigger, decision.new_strategy)
            if granted.executed and granted.new_strategy is not None:
                return _Degrade(new_strategy=granted.new_strategy, passed=frozenset(passed))
            return _Terminal(
                SessionPhase.STOPPED,
                classification.code,
                f"fallback denied: {granted.reason}",
            )

        if failed == 0 and len(passed) == len(targets):
            return _Terminal(SessionPhase.COMPLETED, EXIT_SUCCESS, "all targets succeeded")
        return _Terminal(
            SessionPhase.STOPPED,
            EXIT_TEST_FAILURE,
            f"{failed} of {len(targets)} targets failed",
        )

    async def _execute_step(self, step: ExecutionStep) -> RunReport:
        if step.parallel:
            return await self._runner.execute_parallel(
                step.targets,
                self._execute,
                step.max_concurrency,
                fail_fast=self._fail_fast,
            )
        return await self._runner.execute_sequence(
            step.targets,
            self._execute,
            stop_on_failure=step.stop_on_failure,
            fail_fast=self._fail_fast,
        )

    def _finish(self, terminal: _Terminal, strategy: ExecutionStrategy) -> SessionOutcome:
        self._phase = terminal.phase
        outcome = SessionOutcome(
            phase=terminal.phase,
            exit_code=terminal.exit_code,
            reason=terminal.reason,
            final_strategy=strategy,
            results=tuple(self._results),
            errors=tuple(self._errors),
            error_history=tuple(self._error_history),
            fallback_history=self._coordinator.get_fallback_history(),
            transitions=self._recorder.replay(),
            rounds=self._rounds,
        )
        self._logger.info(
            "session_finished",
            session_id=self.session_id,
            phase=outcome.phase.value,
            exit_code=outcome.exit_code,
            reason=outcome.reason,
            rounds=outcome.rounds,
            final_strategy=describe_strategy(strategy),
        )
        return outcome


def _dedupe(targets: Iterable[ExecutionTarget]) -> tuple[ExecutionTarget, ...]:
    seen: set[ExecutionTarget] = set()
    ordered: list[ExecutionTarget] = []
    for target in targets:
        if target in seen:
            continue
        seen.add(target)
        ordered.append(target)
    return tuple(ordered)


def _summarize(result: TargetResult) -> str | None:
    text = result.outcome.stderr.strip() or result.outcome.stdout.strip()
    if not text:
        return None
    return text.splitlines()[-1]


def _elapsed_ms(started: float, now: float) -> int:
    return max(0, int((now - started) * 1000))


def _generate_session_id() -> str:
    return f"session-{secrets.token_hex(8)}"


__all__ = [
    "EXIT_CANCELLED",
    "ExecutionStep",
    "OrchestrationSession",
    "SessionOutcome",
    "SessionPhase",
    "plan_steps",
]
