"""Execution targets and the validated identifiers they are built from.

Identifiers are validated newtypes: ``create()`` returns a ``Validated``
outcome instead of raising, so routine rejection of user input stays out of
the exception path. Constructing an identifier directly with invalid input
raises ``TargetValidationError``; an invalid instance can never exist.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from pathlib import PurePosixPath
from typing import ClassVar, Final, Generic, TypeVar

T = TypeVar("T")

_TEST_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_IMPORT_PATH_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_\-./]+$")
_TEST_FILE_SUFFIX: Final[str] = ".go"


class ValidationKind(StrEnum):
    EMPTY_INPUT = "empty_input"
    INVALID_FORMAT = "invalid_format"
    PATTERN_MISMATCH = "pattern_mismatch"


class TargetKind(StrEnum):
    ALL_PACKAGES = "all-packages"
    DIRECTORY = "directory"
    FILE = "file"
    PACKAGE = "package"


@dataclass(frozen=True, slots=True)
class ValidationFailure:
    """Structured rejection of a malformed target identifier."""

    kind: ValidationKind
    field: str
    message: str

    def render(self) -> str:
        return f"{self.field}: {self.message}"


class TargetValidationError(ValueError):
    """Raised when an invalid identifier is constructed directly."""

    def __init__(self, failure: ValidationFailure) -> None:
        self.failure = failure
        super().__init__(failure.render())


@dataclass(frozen=True, slots=True)
class Validated(Generic[T]):
    """Outcome of a checked factory: exactly one of ``value``/``failure`` is set."""

    value: T | None = None
    failure: ValidationFailure | None = None

    def __post_init__(self) -> None:
        if (self.value is None) == (self.failure is None):
            raise ValueError("Validated requires exactly one of value or failure")

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> T:
        if self.failure is not None:
            raise TargetValidationError(self.failure)
        assert self.value is not None
        return self.value


def _accept(value: T) -> Validated[T]:
    return Validated(value=value)


def _check_non_empty(raw: object, field: str) -> ValidationFailure | None:
    if not isinstance(raw, str) or not raw.strip():
        return ValidationFailure(ValidationKind.EMPTY_INPUT, field, "must not be empty")
    return None


def _check_directory(raw: object) -> ValidationFailure | None:
    failure = _check_non_empty(raw, "directory_path")
    if failure is not None:
        return failure
    assert isinstance(raw, str)
    if "\0" in raw:
        return ValidationFailure(
            ValidationKind.INVALID_FORMAT,
            "directory_path",
            "expected a path without null bytes",
        )
    return None


def _check_file(raw: object) -> ValidationFailure | None:
    failure = _check_non_empty(raw, "file_path")
    if failure is not None:
        return failure
    assert isinstance(raw, str)
    if not raw.strip().endswith(_TEST_FILE_SUFFIX):
        return ValidationFailure(
            ValidationKind.PATTERN_MISMATCH,
            "file_path",
            f"{raw.strip()!r} does not match *{_TEST_FILE_SUFFIX}",
        )
    return None


def _check_test_name(raw: object) -> ValidationFailure | None:
    failure = _check_non_empty(raw, "test_name")
    if failure is not None:
        return failure
    assert isinstance(raw, str)
    if _TEST_NAME_RE.fullmatch(raw.strip()) is None:
        return ValidationFailure(
            ValidationKind.PATTERN_MISMATCH,
            "test_name",
            f"{raw.strip()!r} is not a valid test identifier",
        )
    return None


def _check_import_path(raw: object) -> ValidationFailure | None:
    failure = _check_non_empty(raw, "package_import_path")
    if failure is not None:
        return failure
    assert isinstance(raw, str)
    if _IMPORT_PATH_RE.fullmatch(raw.strip()) is None:
        return ValidationFailure(
            ValidationKind.PATTERN_MISMATCH,
            "package_import_path",
            f"{raw.strip()!r} is not a valid import path",
        )
    return None


def _normalized(instance: object, raw: str) -> None:
    object.__setattr__(instance, "value", raw.strip())


@dataclass(frozen=True, slots=True)
class DirectoryPath:
    value: str

    def __post_init__(self) -> None:
        failure = _check_directory(self.value)
        if failure is not None:
            raise TargetValidationError(failure)
        _normalized(self, self.value)

    @classmethod
    def create(cls, raw: str) -> Validated[DirectoryPath]:
        failure = _check_directory(raw)
        if failure is not None:
            return Validated(failure=failure)
        return _accept(cls(raw))

    def join(self, segment: str) -> Validated[DirectoryPath]:
        return DirectoryPath.create(f"{self.value}/{segment}")


@dataclass(frozen=True, slots=True)
class FilePath:
    value: str

    def __post_init__(self) -> None:
        failure = _check_file(self.value)
        if failure is not None:
            raise TargetValidationError(failure)
        _normalized(self, self.value)

    @classmethod
    def create(cls, raw: str) -> Validated[FilePath]:
        failure = _check_file(raw)
        if failure is not None:
            return Validated(failure=failure)
        return _accept(cls(raw))

    def directory(self) -> DirectoryPath:
        parent = PurePosixPath(self.value).parent.as_posix()
        return DirectoryPath(parent)

    def file_name(self) -> str:
        return PurePosixPath(self.value).name


@dataclass(frozen=True, slots=True)
class TestName:
    __test__: ClassVar[bool] = False

    value: str

    def __post_init__(self) -> None:
        failure = _check_test_name(self.value)
        if failure is not None:
            raise TargetValidationError(failure)
        _normalized(self, self.value)

    @classmethod
    def create(cls, raw: str) -> Validated[TestName]:
        failure = _check_test_name(raw)
        if failure is not None:
            return Validated(failure=failure)
        return _accept(cls(raw))


@dataclass(frozen=True, slots=True)
class PackageImportPath:
    value: str

    def __post_init__(self) -> None:
        failure = _check_import_path(self.value)
        if failure is not None:
            raise TargetValidationError(failure)
        _normalized(self, self.value)

    @classmethod
    def create(cls, raw: str) -> Validated[PackageImportPath]:
        failure = _check_import_path(raw)
        if failure is not None:
            return Validated(failure=failure)
        return _accept(cls(raw))


@dataclass(frozen=True, slots=True)
class AllPackagesTarget:
    kind: ClassVar[TargetKind] = TargetKind.ALL_PACKAGES

    pattern: str = "./..."

    def __post_init__(self) -> None:
        failure = _check_non_empty(self.pattern, "pattern")
        if failure is not None:
            raise TargetValidationError(failure)


@dataclass(frozen=True, slots=True)
class DirectoryTarget:
    kind: ClassVar[TargetKind] = TargetKind.DIRECTORY

    path: DirectoryPath
    recursive: bool = False


@dataclass(frozen=True, slots=True)
class FileTarget:
    kind: ClassVar[TargetKind] = TargetKind.FILE

    path: FilePath
    test_name: TestName | None = None


@dataclass(frozen=True, slots=True)
class PackageTarget:
    kind: ClassVar[TargetKind] = TargetKind.PACKAGE

    import_path: PackageImportPath


ExecutionTarget = AllPackagesTarget | DirectoryTarget | FileTarget | PackageTarget


def all_packages(pattern: str = "./...") -> Validated[AllPackagesTarget]:
    failure = _check_non_empty(pattern, "pattern")
    if failure is not None:
        return Validated(failure=failure)
    return _accept(AllPackagesTarget(pattern=pattern.strip()))


def directory_target(path: str, *, recursive: bool = False) -> Validated[DirectoryTarget]:
    checked = DirectoryPath.create(path)
    if checked.failure is not None:
        return Validated(failure=checked.failure)
    return _accept(DirectoryTarget(path=checked.unwrap(), recursive=recursive))


def file_target(path: str, test_name: str | None = None) -> Validated[FileTarget]:
    checked_path = FilePath.create(path)
    if checked_path.failure is not None:
        return Validated(failure=checked_path.failure)
    name: TestName | None = None
    if test_name is not None:
        checked_name = TestName.create(test_name)
        if checked_name.failure is not None:
            return Validated(failure=checked_name.failure)
        name = checked_name.unwrap()
    return _accept(FileTarget(path=checked_path.unwrap(), test_name=name))


def package_target(import_path: str) -> Validated[PackageTarget]:
    checked = PackageImportPath.create(import_path)
    if checked.failure is not None:
        return Validated(failure=checked.failure)
    return _accept(PackageTarget(import_path=checked.unwrap()))


def describe_target(target: ExecutionTarget) -> str:
    """Human-readable target label used in logs and fallback reasons."""

    if isinstance(target, AllPackagesTarget):
        return f"pattern {target.pattern}"
    if isinstance(target, DirectoryTarget):
        return f"directory {target.path.value}"
    if isinstance(target, FileTarget):
        if target.test_name is not None:
            return f"file {target.path.value} ({target.test_name.value})"
        return f"file {target.path.value}"
    if isinstance(target, PackageTarget):
        return f"package {target.import_path.value}"
    raise TypeError(f"unsupported target type: {type(target).__name__}")


def target_group_key(target: ExecutionTarget) -> str:
    """Directory a target belongs to when partitioning directory by directory."""

    if isinstance(target, AllPackagesTarget):
        return target.pattern
    if isinstance(target, DirectoryTarget):
        return target.path.value
    if isinstance(target, FileTarget):
        return target.path.directory().value
    if isinstance(target, PackageTarget):
        return target.import_path.value
    raise TypeError(f"unsupported target type: {type(target).__name__}")


def target_to_dict(target: ExecutionTarget) -> dict[str, object]:
    payload: dict[str, object] = {"type": target.kind.value}
    if isinstance(target, AllPackagesTarget):
        payload["pattern"] = target.pattern
    elif isinstance(target, DirectoryTarget):
        payload["path"] = target.path.value
        payload["recursive"] = target.recursive
    elif isinstance(target, FileTarget):
        payload["path"] = target.path.value
        payload["test_name"] = target.test_name.value if target.test_name else None
    else:
        payload["import_path"] = target.import_path.value
    return payload


__all__ = [
    "AllPackagesTarget",
    "DirectoryPath",
    "DirectoryTarget",
    "ExecutionTarget",
    "FilePath",
    "FileTarget",
    "PackageImportPath",
    "PackageTarget",
    "TargetKind",
    "TargetValidationError",
    "TestName",
    "Validated",
    "ValidationFailure",
    "ValidationKind",
    "all_packages",
    "describe_target",
    "directory_target",
    "file_target",
    "package_target",
    "target_group_key",
    "target_to_dict",
]
