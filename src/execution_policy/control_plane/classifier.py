"""
Exit outcome classification.

Maps a raw `(exit_code, killed, signal)` triple from the process layer to an
`ExitClassification`. The rule table is evaluated top to bottom and the first
match wins, so the mapping is total: every triple classifies to exactly one
variant.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from execution_policy.constants import (
    EXIT_BUILD_ERROR,
    EXIT_SUCCESS,
    EXIT_TEST_FAILURE,
    EXIT_TIMEOUT,
)
from execution_policy.domain.outcomes import (
    BuildError,
    ClassificationKind,
    Killed,
    Success,
    TestFailure,
    Timeout,
    Unknown,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from execution_policy.domain.outcomes import ExitClassification, ProcessOutcome

_SEVERITY: Final[dict[ClassificationKind, int]] = {
    ClassificationKind.SUCCESS: 0,
    ClassificationKind.TEST_FAILURE: 1,
    ClassificationKind.TIMEOUT: 2,
    ClassificationKind.KILLED: 3,
    ClassificationKind.UNKNOWN: 4,
    ClassificationKind.BUILD_ERROR: 5,
}


def classify(exit_code: int, killed: bool, signal: str | None) -> ExitClassification:
    if exit_code == EXIT_SUCCESS:
        return Success()
    if exit_code == EXIT_TEST_FAILURE and not killed:
        return TestFailure()
    if exit_code == EXIT_BUILD_ERROR:
        return BuildError()
    if exit_code == EXIT_TIMEOUT:
        return Timeout()
    if killed and signal:
        return Killed(code=exit_code, signal=signal)
    return Unknown(code=exit_code)


def classify_outcome(outcome: ProcessOutcome) -> ExitClassification:
    return classify(outcome.exit_code, outcome.killed, outcome.signal)


def severity(classification: ExitClassification) -> int:
    return _SEVERITY[classification.kind]


def worst_classification(classifications: Iterable[ExitClassification]) -> ExitClassification:
    """
    Fold several classifications into the most severe one.

    Ties keep the first seen. An empty input classifies as `Success`.
    """

    worst: ExitClassification = Success()
    for item in classifications:
        if severity(item) > severity(worst):
            worst = item
    return worst


__all__ = ["classify", "classify_outcome", "severity", "worst_classification"]
