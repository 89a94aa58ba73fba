"""Initial strategy selection from static project characteristics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from execution_policy.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_DIRECTORY_CONCURRENCY,
    MEDIUM_PROJECT_PACKAGES,
    MIN_BATCH_CONCURRENCY,
    SMALL_PROJECT_PACKAGES,
    TIGHT_TIME_CONSTRAINT_SECONDS,
)
from execution_policy.domain.strategies import AllAtOnce, Batch, DirectoryByDirectory, FileByFile

if TYPE_CHECKING:
    from execution_policy.domain.decisions import SelectionCriteria
    from execution_policy.domain.strategies import ExecutionStrategy


def select_initial(criteria: SelectionCriteria) -> ExecutionStrategy:
    constraints = criteria.resource_constraints

    if (
        criteria.total_packages <= SMALL_PROJECT_PACKAGES
        or criteria.time_constraint_seconds < TIGHT_TIME_CONSTRAINT_SECONDS
    ):
        return AllAtOnce(parallel=False)

    if criteria.total_packages <= MEDIUM_PROJECT_PACKAGES and (
        constraints is None or constraints.max_concurrency >= MIN_BATCH_CONCURRENCY
    ):
        return Batch(batch_size=DEFAULT_BATCH_SIZE, parallel=True)

    if criteria.total_packages > MEDIUM_PROJECT_PACKAGES or criteria.has_complex_dependencies:
        concurrency = (
            constraints.max_concurrency
            if constraints is not None
            else DEFAULT_DIRECTORY_CONCURRENCY
        )
        return DirectoryByDirectory(max_concurrency=concurrency)

    return FileByFile(stop_on_first_error=True)


__all__ = ["select_initial"]
