"""Unit tests for per-target execution and classification."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import pytest

from execution_policy.domain.outcomes import BuildError, Killed, ProcessOutcome, Success
from execution_policy.domain.targets import file_target, package_target
from execution_policy.execution.commands import TestCommandOptions
from execution_policy.execution.process import ExecutionFailure
from execution_policy.execution.target_executor import TargetExecutor
from execution_policy.observability.logging import get_correlation_context


class _RecordingProcessExecutor:
    def __init__(self, outcome: ProcessOutcome | ExecutionFailure) -> None:
        self._outcome = outcome
        self.calls: list[dict[str, object]] = []

    async def execute(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None,
        env: Mapping[str, str] | None,
        timeout_ms: int | None,
    ) -> ProcessOutcome:
        self.calls.append(
            {
                "argv": tuple(argv),
                "cwd": cwd,
                "env": env,
                "timeout_ms": timeout_ms,
                "correlation": get_correlation_context(),
            }
        )
        if isinstance(self._outcome, ExecutionFailure):
            raise self._outcome
        return self._outcome


@pytest.mark.asyncio
async def test_runs_go_test_and_classifies() -> None:
    process = _RecordingProcessExecutor(ProcessOutcome(exit_code=0, duration_ms=42))
    executor = TargetExecutor(
        process,
        working_directory="/repo",
        options=TestCommandOptions(timeout_seconds=30),
        env={"GOFLAGS": "-mod=mod"},
    )
    target = package_target("example.com/m/api").unwrap()

    result = await executor(target)

    assert result.success
    assert result.classification == Success()
    assert result.duration_ms == 42
    (call,) = process.calls
    assert call["argv"] == ("go", "test", "-timeout=30s", "example.com/m/api")
    assert call["cwd"] == "/repo"
    assert call["env"] == {"GOFLAGS": "-mod=mod"}
    assert call["timeout_ms"] == 30_000
    assert call["correlation"] == {"target": "package example.com/m/api"}


@pytest.mark.asyncio
async def test_signal_outcome_is_classified_as_killed() -> None:
    process = _RecordingProcessExecutor(
        ProcessOutcome(exit_code=137, killed=True, signal="SIGKILL")
    )
    target = file_target("pkg/a_test.go").unwrap()

    result = await TargetExecutor(process)(target)

    assert not result.success
    assert result.classification == Killed(code=137, signal="SIGKILL")
    assert result.to_dict()["classification"] == {
        "type": "killed",
        "code": 137,
        "signal": "SIGKILL",
    }


@pytest.mark.asyncio
async def test_custom_command_builder_is_used() -> None:
    process = _RecordingProcessExecutor(ProcessOutcome(exit_code=2))
    executor = TargetExecutor(process, command_builder=lambda target, options: ("make", "test"))

    result = await executor(package_target("example.com/m").unwrap())

    assert process.calls[0]["argv"] == ("make", "test")
    assert process.calls[0]["timeout_ms"] is None
    assert result.classification == BuildError()


@pytest.mark.asyncio
async def test_execution_failure_propagates() -> None:
    process = _RecordingProcessExecutor(ExecutionFailure(["go", "test"], "no go toolchain"))

    with pytest.raises(ExecutionFailure, match="no go toolchain"):
        await TargetExecutor(process)(package_target("example.com/m").unwrap())
