"""Execution strategies: immutable policies for partitioning one round of targets."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar


class StrategyKind(StrEnum):
    ALL_AT_ONCE = "all-at-once"
    BATCH = "batch"
    DIRECTORY_BY_DIRECTORY = "directory-by-directory"
    FILE_BY_FILE = "file-by-file"


@dataclass(frozen=True, slots=True)
class AllAtOnce:
    kind: ClassVar[StrategyKind] = StrategyKind.ALL_AT_ONCE

    parallel: bool = False


@dataclass(frozen=True, slots=True)
class Batch:
    kind: ClassVar[StrategyKind] = StrategyKind.BATCH

    batch_size: int
    parallel: bool = True

    def __post_init__(self) -> None:
        _require_positive(self.batch_size, "Batch.batch_size")


@dataclass(frozen=True, slots=True)
class DirectoryByDirectory:
    kind: ClassVar[StrategyKind] = StrategyKind.DIRECTORY_BY_DIRECTORY

    max_concurrency: int

    def __post_init__(self) -> None:
        _require_positive(self.max_concurrency, "DirectoryByDirectory.max_concurrency")


@dataclass(frozen=True, slots=True)
class FileByFile:
    kind: ClassVar[StrategyKind] = StrategyKind.FILE_BY_FILE

    stop_on_first_error: bool = True


ExecutionStrategy = AllAtOnce | Batch | DirectoryByDirectory | FileByFile


def describe_strategy(strategy: ExecutionStrategy) -> str:
    """Human-readable form used in fallback transition notifications."""

    if isinstance(strategy, AllAtOnce):
        return f"all-at-once (parallel: {_flag(strategy.parallel)})"
    if isinstance(strategy, Batch):
        return f"batch (size: {strategy.batch_size}, parallel: {_flag(strategy.parallel)})"
    if isinstance(strategy, DirectoryByDirectory):
        return f"directory-by-directory (concurrency: {strategy.max_concurrency})"
    if isinstance(strategy, FileByFile):
        return f"file-by-file (stop on error: {_flag(strategy.stop_on_first_error)})"
    raise TypeError(f"unsupported strategy type: {type(strategy).__name__}")


def strategy_to_dict(strategy: ExecutionStrategy) -> dict[str, object]:
    if isinstance(strategy, AllAtOnce):
        return {"type": strategy.kind.value, "parallel": strategy.parallel}
    if isinstance(strategy, Batch):
        return {
            "type": strategy.kind.value,
            "batch_size": strategy.batch_size,
            "parallel": strategy.parallel,
        }
    if isinstance(strategy, DirectoryByDirectory):
        return {"type": strategy.kind.value, "max_concurrency": strategy.max_concurrency}
    if isinstance(strategy, FileByFile):
        return {"type": strategy.kind.value, "stop_on_first_error": strategy.stop_on_first_error}
    raise TypeError(f"unsupported strategy type: {type(strategy).__name__}")


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _require_positive(value: object, path: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path}: expected integer, got {type(value).__name__}")
    if value < 1:
        raise ValueError(f"{path}: must be >= 1")


__all__ = [
    "AllAtOnce",
    "Batch",
    "DirectoryByDirectory",
    "ExecutionStrategy",
    "FileByFile",
    "StrategyKind",
    "describe_strategy",
    "strategy_to_dict",
]
