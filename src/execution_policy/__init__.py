"""
execution-policy

Purpose
- Adaptive execution policy for `go test` runs: classify exit outcomes, pick
  an initial execution strategy, decide continue/stop/fallback after each step,
  and degrade the strategy under a bounded retry budget.

Import boundary
- No side effects at import time (no config loading, no logging init).
- Submodules are imported explicitly by callers.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
