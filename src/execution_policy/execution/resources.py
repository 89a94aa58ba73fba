"""Host resource detection for initial strategy selection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

import psutil

from execution_policy.domain.decisions import ResourceConstraints

_BYTES_PER_MIB: Final[int] = 1024 * 1024
_DEFAULT_RESERVED_CORES: Final[int] = 1


@dataclass(frozen=True, slots=True)
class HostResources:
    logical_cpus: int
    available_memory_mb: int
    total_memory_mb: int


def snapshot_host_resources() -> HostResources:
    cpus = psutil.cpu_count(logical=True) or 1
    memory = psutil.virtual_memory()
    return HostResources(
        logical_cpus=int(cpus),
        available_memory_mb=int(memory.available) // _BYTES_PER_MIB,
        total_memory_mb=int(memory.total) // _BYTES_PER_MIB,
    )


def detect_resource_constraints(
    *,
    reserved_cores: int = _DEFAULT_RESERVED_CORES,
    max_concurrency_cap: int | None = None,
    host: HostResources | None = None,
) -> ResourceConstraints:
    """
    Derive `ResourceConstraints` from the current host.

    `reserved_cores` are kept free for the orchestrator itself; the result
    never drops below one concurrent target.
    """

    if reserved_cores < 0:
        raise ValueError("reserved_cores must be >= 0")
    if max_concurrency_cap is not None and max_concurrency_cap < 1:
        raise ValueError("max_concurrency_cap must be >= 1")

    resources = host if host is not None else snapshot_host_resources()
    concurrency = max(1, resources.logical_cpus - reserved_cores)
    if max_concurrency_cap is not None:
        concurrency = min(concurrency, max_concurrency_cap)
    return ResourceConstraints(
        max_concurrency=concurrency,
        memory_limit_mb=resources.available_memory_mb,
    )


__all__ = ["HostResources", "detect_resource_constraints", "snapshot_host_resources"]
