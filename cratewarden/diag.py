"""Diagnostics, labels, severities and the in-memory file store they refer to."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from functools import total_ordering
from typing import Any, Generic, Iterator, TypeVar

T = TypeVar("T")


class Severity(enum.IntEnum):
    """How serious a diagnostic is; larger values are more severe."""

    HELP = 1
    NOTE = 2
    WARNING = 3
    ERROR = 4
    BUG = 5

    def __str__(self) -> str:
        return self.name.lower()


class LintLevel(enum.Enum):
    """The user-configurable response to a lint."""

    ALLOW = "allow"
    WARN = "warn"
    DENY = "deny"

    def to_severity(self) -> Severity:
        """The severity a diagnostic raised at this level is reported with."""
        return {
            LintLevel.ALLOW: Severity.NOTE,
            LintLevel.WARN: Severity.WARNING,
            LintLevel.DENY: Severity.ERROR,
        }[self]

    def __str__(self) -> str:
        return self.value


@total_ordering
@dataclass(eq=False)
class Spanned(Generic[T]):
    """A value together with the byte range it was read from.

    Equality, ordering and hashing look only at the value, so a value read
    from a file compares equal to the same value built by hand.
    """

    value: T
    span: range = range(0)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Spanned):
            return self.value == other.value
        return NotImplemented

    def __lt__(self, other: object) -> bool:
        if isinstance(other, Spanned):
            return self.value < other.value  # type: ignore[operator]
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.value)


@dataclass(frozen=True)
class Label:
    """A message attached to a byte range of a file."""

    file_id: int
    span: range
    message: str = ""
    is_primary: bool = True

    @classmethod
    def primary(cls, file_id: int, span: range, message: str = "") -> Label:
        return cls(file_id, span, message, True)

    @classmethod
    def secondary(cls, file_id: int, span: range, message: str = "") -> Label:
        return cls(file_id, span, message, False)

    def with_message(self, message: str) -> Label:
        """A copy of this label carrying ``message``."""
        return replace(self, message=message)


@dataclass(frozen=True)
class CfgCoord:
    """A location inside a configuration file."""

    file: int
    span: range

    def to_label(self, message: str = "") -> Label:
        return Label.primary(self.file, self.span, message)


@dataclass
class Diagnostic:
    """A single reported problem or note."""

    severity: Severity
    message: str = ""
    code: str | None = None
    labels: list[Label] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.code, enum.Enum):
            self.code = str(self.code.value)


class Check(enum.Enum):
    """The individual checks that produce diagnostics."""

    ADVISORIES = "advisories"
    BANS = "bans"
    LICENSES = "licenses"
    SOURCES = "sources"


@dataclass
class Pack:
    """The diagnostics one check produced, optionally for a single crate."""

    check: Check
    kid: Any = None
    diags: list[Diagnostic] = field(default_factory=list)

    def push(self, diagnostic: Diagnostic) -> None:
        self.diags.append(diagnostic)

    def __len__(self) -> int:
        return len(self.diags)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.diags)


class Files:
    """Named source texts addressed by integer ids."""

    def __init__(self) -> None:
        self._files: dict[int, tuple[str, str]] = {}

    def add(self, name: str, source: str) -> int:
        file_id = len(self._files)
        self._files[file_id] = (name, source)
        return file_id

    def _get(self, file_id: int) -> tuple[str, str]:
        try:
            return self._files[file_id]
        except KeyError:
            raise KeyError(f"unknown file id {file_id}") from None

    def source(self, file_id: int) -> str:
        return self._get(file_id)[1]

    def name(self, file_id: int) -> str:
        return self._get(file_id)[0]

    def update(self, file_id: int, source: str) -> None:
        name, _ = self._get(file_id)
        self._files[file_id] = (name, source)

    def __len__(self) -> int:
        return len(self._files)