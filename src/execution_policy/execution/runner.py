"""
Concurrent batch runner.

Targets are split into consecutive groups of `max_concurrency`. Each group is
launched concurrently behind a join barrier, so group i+1 starts only after
every member of group i has resolved. Per-target `ExecutionFailure`s are
collected as `TargetError`s next to successful results; with `fail_fast` the
first failure of a group, in submission order, is re-raised once that group's
barrier has been reached and no further groups are launched. Sequences honour
`fail_fast` the same way: an `ExecutionFailure` is re-raised as soon as it
occurs, while an unsuccessful test result only halts a `stop_on_failure` run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from execution_policy.domain.targets import describe_target
from execution_policy.execution.process import ExecutionFailure
from execution_policy.utils.concurrency import CancellationToken, gather_barrier, partition

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from execution_policy.domain.targets import ExecutionTarget
    from execution_policy.execution.target_executor import TargetResult

    PerTargetExecute = Callable[[ExecutionTarget], Awaitable[TargetResult]]


@dataclass(frozen=True, slots=True)
class TargetError:
    target: ExecutionTarget
    error: ExecutionFailure


@dataclass(frozen=True, slots=True)
class RunReport:
    results: tuple[TargetResult, ...] = ()
    errors: tuple[TargetError, ...] = ()
    group_sizes: tuple[int, ...] = ()
    cancelled: bool = False

    @property
    def failed_results(self) -> tuple[TargetResult, ...]:
        return tuple(result for result in self.results if not result.success)

    @property
    def all_succeeded(self) -> bool:
        return not self.errors and all(result.success for result in self.results)


class BatchRunner:
    """Run per-target executions in barrier-separated groups."""

    def __init__(
        self,
        *,
        cancel_token: CancellationToken | None = None,
        logger: Any | None = None,
    ) -> None:
        self._token = cancel_token if cancel_token is not None else CancellationToken()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def cancel_token(self) -> CancellationToken:
        return self._token

    async def execute_parallel(
        self,
        targets: Sequence[ExecutionTarget],
        per_target_execute: PerTargetExecute,
        max_concurrency: int,
        fail_fast: bool = False,
    ) -> RunReport:
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int):
            raise ValueError(
                f"max_concurrency must be an integer, got {type(max_concurrency).__name__}"
            )
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        results: list[TargetResult] = []
        errors: list[TargetError] = []
        group_sizes: list[int] = []

        for index, group in enumerate(partition(list(targets), max_concurrency)):
            if self._token.is_cancelled:
                return _report(results, errors, group_sizes, cancelled=True)

            self._logger.debug("group_started", group_index=index, group_size=len(group))
            outcomes = await gather_barrier(per_target_execute(target) for target in group)
            group_sizes.append(len(group))

            first_failure: ExecutionFailure | None = None
            for target, outcome in zip(group, outcomes, strict=True):
                if isinstance(outcome, ExecutionFailure):
                    errors.append(TargetError(target=target, error=outcome))
                    if first_failure is None:
                        first_failure = outcome
                elif isinstance(outcome, Exception):
                    raise outcome
                else:
                    results.append(outcome)

            self._logger.debug(
                "group_completed",
                group_index=index,
                group_size=len(group),
                failures=sum(1 for outcome in outcomes if isinstance(outcome, Exception)),
            )
            if fail_fast and first_failure is not None:
                raise first_failure

        return _report(results, errors, group_sizes)

    async def execute_sequence(
        self,
        targets: Sequence[ExecutionTarget],
        per_target_execute: PerTargetExecute,
        stop_on_failure: bool = False,
        fail_fast: bool = False,
    ) -> RunReport:
        results: list[TargetResult] = []
        errors: list[TargetError] = []
        group_sizes: list[int] = []

        for target in targets:
            if self._token.is_cancelled:
                return _report(results, errors, group_sizes, cancelled=True)
            group_sizes.append(1)
            try:
                result = await per_target_execute(target)
            except ExecutionFailure as exc:
                errors.append(TargetError(target=target, error=exc))
                self._logger.debug("target_failed", target=describe_target(target), error=str(exc))
                if fail_fast:
                    raise
                if stop_on_failure:
                    break
                continue
            results.append(result)
            if stop_on_failure and not result.success:
                break

        return _report(results, errors, group_sizes)


def order_by_history(
    targets: Sequence[ExecutionTarget],
    durations_ms: Mapping[ExecutionTarget, float] | None = None,
) -> tuple[ExecutionTarget, ...]:
    """
    Order targets fastest first by previously observed duration.

    Targets without history go last, keeping their relative order; with no
    history at all the input order is returned unchanged.
    """
    if not durations_ms:
        return tuple(targets)
    return tuple(
        sorted(
            targets,
            key=lambda target: (target not in durations_ms, durations_ms.get(target, 0.0)),
        )
    )


def _report(
    results: list[TargetResult],
    errors: list[TargetError],
    group_sizes: list[int],
    *,
    cancelled: bool = False,
) -> RunReport:
    return RunReport(
        results=tuple(results),
        errors=tuple(errors),
        group_sizes=tuple(group_sizes),
        cancelled=cancelled,
    )


__all__ = ["BatchRunner", "RunReport", "TargetError", "order_by_history", "partition"]
