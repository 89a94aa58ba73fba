"""Execution adapters: command building, process execution, and the batch runner."""

from execution_policy.execution.commands import TestCommandOptions, build_test_command
from execution_policy.execution.process import (
    ExecutionFailure,
    LocalProcessExecutor,
    ProcessExecutor,
    ProcessRequest,
)
from execution_policy.execution.resources import detect_resource_constraints
from execution_policy.execution.runner import BatchRunner, RunReport, TargetError
from execution_policy.execution.target_executor import TargetExecutor, TargetResult

__all__ = [
    "BatchRunner",
    "ExecutionFailure",
    "LocalProcessExecutor",
    "ProcessExecutor",
    "ProcessRequest",
    "RunReport",
    "TargetError",
    "TargetExecutor",
    "TargetResult",
    "TestCommandOptions",
    "build_test_command",
    "detect_resource_constraints",
]
