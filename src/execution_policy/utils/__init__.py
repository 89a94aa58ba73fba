"""Utility exports for concurrency helpers."""

from execution_policy.utils.concurrency import CancellationToken, gather_barrier, partition

__all__ = ["CancellationToken", "gather_barrier", "partition"]
