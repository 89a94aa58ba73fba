"""Per-target execution: build the command, run it, classify the outcome."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from execution_policy.control_plane.classifier import classify_outcome
from execution_policy.domain.outcomes import Success, classification_to_dict
from execution_policy.domain.targets import describe_target, target_to_dict
from execution_policy.execution.commands import TestCommandOptions, build_test_command
from execution_policy.observability.logging import correlation_scope

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from execution_policy.domain.outcomes import ExitClassification, ProcessOutcome
    from execution_policy.domain.targets import ExecutionTarget
    from execution_policy.execution.process import ProcessExecutor


@dataclass(frozen=True, slots=True)
class TargetResult:
    target: ExecutionTarget
    outcome: ProcessOutcome
    classification: ExitClassification
    started_at: float
    finished_at: float

    @property
    def success(self) -> bool:
        return isinstance(self.classification, Success)

    @property
    def duration_ms(self) -> int:
        return self.outcome.duration_ms

    def to_dict(self) -> dict[str, object]:
        return {
            "target": target_to_dict(self.target),
            "classification": classification_to_dict(self.classification),
            "exit_code": self.outcome.exit_code,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class TargetExecutor:
    """
    Callable used by the session as its `per_target_execute` capability.

    `ExecutionFailure` raised by the process executor propagates unchanged.
    """

    def __init__(
        self,
        process_executor: ProcessExecutor,
        *,
        working_directory: str | None = None,
        options: TestCommandOptions | None = None,
        command_builder: Callable[[ExecutionTarget, TestCommandOptions], tuple[str, ...]]
        | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._process_executor = process_executor
        self._working_directory = working_directory
        self._options = options if options is not None else TestCommandOptions()
        self._command_builder = (
            command_builder if command_builder is not None else build_test_command
        )
        self._env = dict(env) if env is not None else None

    @property
    def options(self) -> TestCommandOptions:
        return self._options

    def command_for(self, target: ExecutionTarget) -> tuple[str, ...]:
        return tuple(self._command_builder(target, self._options))

    async def __call__(self, target: ExecutionTarget) -> TargetResult:
        argv = self.command_for(target)
        started_at = time.time()
        with correlation_scope(target=describe_target(target)):
            outcome = await self._process_executor.execute(
                argv,
                cwd=self._working_directory,
                env=self._env,
                timeout_ms=self._options.timeout_ms,
            )
        return TargetResult(
            target=target,
            outcome=outcome,
            classification=classify_outcome(outcome),
            started_at=started_at,
            finished_at=time.time(),
        )


__all__ = ["TargetExecutor", "TargetResult"]
