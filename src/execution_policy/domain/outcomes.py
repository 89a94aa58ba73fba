"""Raw process outcomes and their semantic exit classifications."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar

from execution_policy.constants import (
    EXIT_BUILD_ERROR,
    EXIT_SUCCESS,
    EXIT_TEST_FAILURE,
    EXIT_TIMEOUT,
)


class ClassificationKind(StrEnum):
    SUCCESS = "success"
    TEST_FAILURE = "test-failure"
    BUILD_ERROR = "build-error"
    TIMEOUT = "timeout"
    KILLED = "killed"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    """What the injected process-execution capability reports for one command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    killed: bool = False
    signal: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.exit_code, bool) or not isinstance(self.exit_code, int):
            raise ValueError(
                f"ProcessOutcome.exit_code: expected integer, got {type(self.exit_code).__name__}"
            )
        if self.duration_ms < 0:
            raise ValueError("ProcessOutcome.duration_ms: must be >= 0")


@dataclass(frozen=True, slots=True)
class Success:
    kind: ClassVar[ClassificationKind] = ClassificationKind.SUCCESS
    code: ClassVar[int] = EXIT_SUCCESS


@dataclass(frozen=True, slots=True)
class TestFailure:
    __test__: ClassVar[bool] = False
    kind: ClassVar[ClassificationKind] = ClassificationKind.TEST_FAILURE
    code: ClassVar[int] = EXIT_TEST_FAILURE


@dataclass(frozen=True, slots=True)
class BuildError:
    kind: ClassVar[ClassificationKind] = ClassificationKind.BUILD_ERROR
    code: ClassVar[int] = EXIT_BUILD_ERROR


@dataclass(frozen=True, slots=True)
class Timeout:
    kind: ClassVar[ClassificationKind] = ClassificationKind.TIMEOUT
    code: ClassVar[int] = EXIT_TIMEOUT


@dataclass(frozen=True, slots=True)
class Killed:
    kind: ClassVar[ClassificationKind] = ClassificationKind.KILLED

    code: int
    signal: str


@dataclass(frozen=True, slots=True)
class Unknown:
    kind: ClassVar[ClassificationKind] = ClassificationKind.UNKNOWN

    code: int


ExitClassification = Success | TestFailure | BuildError | Timeout | Killed | Unknown


def classification_to_dict(classification: ExitClassification) -> dict[str, object]:
    payload: dict[str, object] = {
        "type": classification.kind.value,
        "code": classification.code,
    }
    if isinstance(classification, Killed):
        payload["signal"] = classification.signal
    return payload


__all__ = [
    "BuildError",
    "ClassificationKind",
    "ExitClassification",
    "Killed",
    "ProcessOutcome",
    "Success",
    "TestFailure",
    "Timeout",
    "Unknown",
    "classification_to_dict",
]
