"""
execution-policy domain layer.

Purpose
- Value types shared by the classifier, selector, decision engine, fallback
  coordinator, and batch runner: targets, strategies, outcomes, decisions.

Functional requirements
- Tagged variants are flat unions of frozen dataclasses.
- Target identifiers are validated before they enter the pipeline.

Non-functional requirements
- No IO and no logging in this layer.
"""

from execution_policy.domain.decisions import (
    AllFailed,
    ContinueDecision,
    Decision,
    DecisionAction,
    ErrorContext,
    ErrorRecord,
    ErrorThresholdExceeded,
    FallbackConfig,
    FallbackDecision,
    FallbackTrigger,
    FirstErrorDetected,
    ResourceConstraints,
    SelectionCriteria,
    StopDecision,
    TimeoutExceeded,
    TriggerKind,
)
from execution_policy.domain.outcomes import (
    BuildError,
    ClassificationKind,
    ExitClassification,
    Killed,
    ProcessOutcome,
    Success,
    TestFailure,
    Timeout,
    Unknown,
)
from execution_policy.domain.strategies import (
    AllAtOnce,
    Batch,
    DirectoryByDirectory,
    ExecutionStrategy,
    FileByFile,
    StrategyKind,
    describe_strategy,
)
from execution_policy.domain.targets import (
    AllPackagesTarget,
    DirectoryPath,
    DirectoryTarget,
    ExecutionTarget,
    FilePath,
    FileTarget,
    PackageImportPath,
    PackageTarget,
    TargetKind,
    TargetValidationError,
    TestName,
    Validated,
    ValidationFailure,
    ValidationKind,
    all_packages,
    describe_target,
    directory_target,
    file_target,
    package_target,
    target_group_key,
)

__all__ = [
    "AllAtOnce",
    "AllFailed",
    "AllPackagesTarget",
    "Batch",
    "BuildError",
    "ClassificationKind",
    "ContinueDecision",
    "Decision",
    "DecisionAction",
    "DirectoryByDirectory",
    "DirectoryPath",
    "DirectoryTarget",
    "ErrorContext",
    "ErrorRecord",
    "ErrorThresholdExceeded",
    "ExecutionStrategy",
    "ExecutionTarget",
    "ExitClassification",
    "FallbackConfig",
    "FallbackDecision",
    "FallbackTrigger",
    "FileByFile",
    "FilePath",
    "FileTarget",
    "FirstErrorDetected",
    "Killed",
    "PackageImportPath",
    "PackageTarget",
    "ProcessOutcome",
    "ResourceConstraints",
    "SelectionCriteria",
    "StopDecision",
    "StrategyKind",
    "Success",
    "TargetKind",
    "TargetValidationError",
    "TestFailure",
    "TestName",
    "Timeout",
    "TimeoutExceeded",
    "TriggerKind",
    "Unknown",
    "Validated",
    "ValidationFailure",
    "ValidationKind",
    "all_packages",
    "describe_strategy",
    "describe_target",
    "directory_target",
    "file_target",
    "package_target",
    "target_group_key",
]
