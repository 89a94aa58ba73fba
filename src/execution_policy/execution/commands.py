"""`go test` command construction for a single execution target."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from execution_policy.domain.targets import (
    AllPackagesTarget,
    DirectoryTarget,
    ExecutionTarget,
    FileTarget,
    PackageTarget,
)


@dataclass(frozen=True, slots=True)
class TestCommandOptions:
    __test__: ClassVar[bool] = False

    verbose: bool = False
    timeout_seconds: int = 0
    race: bool = False
    cover: bool = False
    short: bool = False
    fail_fast: bool = False
    parallel: int | None = None
    tags: tuple[str, ...] = ()
    build_flags: tuple[str, ...] = ()
    binary: str = "go"

    def __post_init__(self) -> None:
        if self.timeout_seconds < 0:
            raise ValueError("TestCommandOptions.timeout_seconds: must be >= 0")
        if self.parallel is not None and self.parallel < 1:
            raise ValueError("TestCommandOptions.parallel: must be >= 1")
        if not self.binary:
            raise ValueError("TestCommandOptions.binary: must not be empty")
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "build_flags", tuple(self.build_flags))

    @property
    def timeout_ms(self) -> int | None:
        if self.timeout_seconds == 0:
            return None
        return self.timeout_seconds * 1000


def build_test_command(target: ExecutionTarget, options: TestCommandOptions) -> tuple[str, ...]:
    args: list[str] = [options.binary, "test"]

    if options.verbose:
        args.append("-v")
    if options.race:
        args.append("-race")
    if options.cover:
        args.append("-cover")
    if options.short:
        args.append("-short")
    if options.fail_fast:
        args.append("-failfast")
    if options.timeout_seconds > 0:
        args.append(f"-timeout={options.timeout_seconds}s")
    if options.parallel is not None:
        args.append(f"-parallel={options.parallel}")
    if options.tags:
        args.append(f"-tags={','.join(options.tags)}")

    args.extend(_target_args(target))
    args.extend(options.build_flags)
    return tuple(args)


def _target_args(target: ExecutionTarget) -> tuple[str, ...]:
    if isinstance(target, AllPackagesTarget):
        return (target.pattern,)
    if isinstance(target, DirectoryTarget):
        path = target.path.value
        if target.recursive:
            return (f"{path.rstrip('/')}/...",)
        return (path,)
    if isinstance(target, FileTarget):
        if target.test_name is not None:
            return (target.path.value, "-run", target.test_name.value)
        return (target.path.value,)
    if isinstance(target, PackageTarget):
        return (target.import_path.value,)
    raise TypeError(f"unsupported target type: {type(target).__name__}")


__all__ = ["TestCommandOptions", "build_test_command"]
