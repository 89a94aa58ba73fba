"""
Process execution capability.

The policy engine never spawns processes itself; it calls a `ProcessExecutor`.
`LocalProcessExecutor` is the asyncio-subprocess implementation used outside
tests. Its reporting contract:
- normal exit: the process exit code, `killed=False`
- timeout: the child runs in its own session, so the whole process group
  (the `go` driver and the test binary it forks) is killed; reported as exit
  code 124, `killed=True`, `signal="SIGKILL"`
- terminated by a signal: `128 + signum`, `killed=True`, the signal name
- spawn failure: `ExecutionFailure` is raised
"""

from __future__ import annotations

import asyncio
import os
import signal as signal_module
import sys
import time
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import structlog

from execution_policy.constants import EXIT_TIMEOUT, SIGNAL_EXIT_OFFSET
from execution_policy.domain.outcomes import ProcessOutcome

if TYPE_CHECKING:
    from collections.abc import Sequence

_DEFAULT_MAX_OUTPUT_CHARS: Final[int] = 200_000
_TIMEOUT_SIGNAL: Final[str] = "SIGKILL"
_KILL_DRAIN_SECONDS: Final[float] = 2.0
_PROCESS_GROUPS: Final[bool] = sys.platform != "win32"


class ExecutionFailure(RuntimeError):
    """I/O-level failure of the process capability, distinct from a failing exit code."""

    def __init__(self, argv: Sequence[str], cause: BaseException | str) -> None:
        self.argv = tuple(argv)
        self.cause = cause
        super().__init__(f"failed to execute {' '.join(self.argv)!r}: {cause}")


@runtime_checkable
class ProcessExecutor(Protocol):
    async def execute(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None,
        env: Mapping[str, str] | None,
        timeout_ms: int | None,
    ) -> ProcessOutcome: ...


@dataclass(slots=True)
class ProcessRequest:
    """Normalized invocation handed to the local executor."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_ms: int | None = None
    inherit_env: bool = True

    def __post_init__(self) -> None:
        argv = tuple(self.argv)
        if not argv:
            raise ValueError("ProcessRequest.argv: must not be empty")
        for index, item in enumerate(argv):
            if not isinstance(item, str) or not item:
                raise ValueError(f"ProcessRequest.argv[{index}]: expected non-empty string")
        self.argv = argv
        if self.cwd is not None and not isinstance(self.cwd, str):
            raise ValueError("ProcessRequest.cwd: expected string or None")
        if not isinstance(self.env, Mapping):
            raise ValueError("ProcessRequest.env: expected mapping")
        self.env = {str(key): str(value) for key, value in self.env.items()}
        if self.timeout_ms is not None:
            if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int):
                raise ValueError("ProcessRequest.timeout_ms: expected integer or None")
            if self.timeout_ms <= 0:
                raise ValueError("ProcessRequest.timeout_ms: must be > 0")

    @property
    def timeout_seconds(self) -> float | None:
        if self.timeout_ms is None:
            return None
        return self.timeout_ms / 1000.0

    def build_env(self) -> dict[str, str] | None:
        if self.inherit_env:
            env = dict(os.environ)
            env.update(self.env)
            return env
        return dict(self.env)


class LocalProcessExecutor:
    """Asyncio subprocess executor with timeout kill and output capture."""

    def __init__(
        self,
        *,
        max_output_chars: int | None = _DEFAULT_MAX_OUTPUT_CHARS,
        logger: Any | None = None,
    ) -> None:
        if max_output_chars is not None and max_output_chars <= 0:
            raise ValueError("max_output_chars must be > 0")
        self._max_output_chars = max_output_chars
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def execute(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout_ms: int | None = None,
    ) -> ProcessOutcome:
        request = ProcessRequest(
            argv=tuple(argv),
            cwd=cwd,
            env=dict(env) if env is not None else {},
            timeout_ms=timeout_ms,
        )
        return await self.run(request)

    async def run(self, request: ProcessRequest) -> ProcessOutcome:
        started_ns = time.monotonic_ns()
        try:
            process = await asyncio.create_subprocess_exec(
                *request.argv,
                cwd=request.cwd,
                env=request.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=_PROCESS_GROUPS,
            )
        except OSError as exc:
            self._logger.warning("process_spawn_failed", argv=list(request.argv), error=str(exc))
            raise ExecutionFailure(request.argv, exc) from exc

        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(
                process=process,
                timeout_seconds=request.timeout_seconds,
            )
        except _ProcessTimeoutError as exc:
            self._logger.info(
                "process_timed_out",
                argv=list(request.argv),
                timeout_ms=request.timeout_ms,
            )
            return ProcessOutcome(
                exit_code=EXIT_TIMEOUT,
                stdout=self._render(exc.stdout),
                stderr=self._render(exc.stderr),
                duration_ms=_elapsed_ms(started_ns),
                killed=True,
                signal=_TIMEOUT_SIGNAL,
            )

        exit_code, killed, signal_name = _interpret_returncode(process.returncode)
        return ProcessOutcome(
            exit_code=exit_code,
            stdout=self._render(stdout_bytes),
            stderr=self._render(stderr_bytes),
            duration_ms=_elapsed_ms(started_ns),
            killed=killed,
            signal=signal_name,
        )

    def _render(self, raw: bytes) -> str:
        return _truncate_text(_normalize_output_text(raw), self._max_output_chars)


class _ProcessTimeoutError(Exception):
    def __init__(self, stdout: bytes, stderr: bytes) -> None:
        super().__init__("process timed out")
        self.stdout = stdout
        self.stderr = stderr


async def _communicate_with_timeout(
    *,
    process: asyncio.subprocess.Process,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate()
        return await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        _kill_process_group(process)
        stdout_bytes, stderr_bytes = await _drain_killed(process)
        raise _ProcessTimeoutError(stdout=stdout_bytes, stderr=stderr_bytes) from exc
    except asyncio.CancelledError:
        _kill_process_group(process)
        await _drain_killed(process)
        raise


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    if not _PROCESS_GROUPS:
        with suppress(ProcessLookupError):
            process.kill()
        return
    # start_new_session makes the child its group leader: pgid == pid.
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(process.pid, signal_module.SIGKILL)


async def _drain_killed(process: asyncio.subprocess.Process) -> tuple[bytes, bytes]:
    """Collect remaining output, bounded so a descendant outside the group cannot block."""
    try:
        return await asyncio.wait_for(process.communicate(), timeout=_KILL_DRAIN_SECONDS)
    except TimeoutError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        return (b"", b"")


def _interpret_returncode(returncode: int | None) -> tuple[int, bool, str | None]:
    if returncode is None:
        return (-1, False, None)
    if returncode >= 0:
        return (returncode, False, None)
    signum = -returncode
    return (SIGNAL_EXIT_OFFSET + signum, True, signal_name(signum))


def signal_name(signum: int) -> str:
    try:
        return signal_module.Signals(signum).name
    except ValueError:
        return f"SIG{signum}"


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {omitted} chars]"


__all__ = [
    "ExecutionFailure",
    "LocalProcessExecutor",
    "ProcessExecutor",
    "ProcessRequest",
    "signal_name",
]
