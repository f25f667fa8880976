"""Crates, their package sources and the context a check runs in."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence
from urllib.parse import parse_qsl, urlsplit

from .diag import Files


class SourceKind(enum.Enum):
    """Where a crate was fetched from."""

    REGISTRY = "registry"
    SPARSE = "sparse"
    GIT = "git"
    PATH = "path"


@dataclass(frozen=True)
class GitReference:
    """The reference a git source is pinned to: ``branch``, ``tag`` or ``rev``."""

    kind: str
    name: str


_GIT_REF_KEYS = ("branch", "tag", "rev")


@dataclass(frozen=True)
class Source:
    """A package source as written in a lockfile, e.g. ``git+https://...``."""

    kind: SourceKind
    url: str

    @classmethod
    def parse(cls, text: str) -> Source:
        prefix, sep, url = text.partition("+")
        if not sep:
            raise ValueError(f"source '{text}' has no kind prefix")
        try:
            kind = SourceKind(prefix)
        except ValueError:
            raise ValueError(f"unsupported source kind '{prefix}'") from None
        parts = urlsplit(url)
        if not parts.scheme or (kind is not SourceKind.PATH and not parts.netloc):
            raise ValueError(f"invalid source url '{url}'")
        return cls(kind, url)

    def is_registry(self) -> bool:
        return self.kind in (SourceKind.REGISTRY, SourceKind.SPARSE)

    def is_git(self) -> bool:
        return self.kind is SourceKind.GIT

    @property
    def git_reference(self) -> GitReference | None:
        """The git reference; unpinned git sources follow the ``master`` branch."""
        if not self.is_git():
            return None
        for key, value in parse_qsl(urlsplit(self.url).query):
            if key in _GIT_REF_KEYS:
                return GitReference(key, value)
        return GitReference("branch", "master")

    @property
    def precise(self) -> str | None:
        """The exact revision recorded after ``#``, if any."""
        return urlsplit(self.url).fragment or None

    def __str__(self) -> str:
        return f"{self.kind.value}+{self.url}"


@dataclass
class Krate:
    """A single package in the dependency graph."""

    name: str
    version: str
    source: Source | None = None
    manifest_path: Path | None = None
    license: str | None = None
    license_file: str | None = None

    def id_repr(self) -> str:
        """The package id, ``name version (source)``."""
        if self.source is not None:
            return f"{self.name} {self.version} ({self.source})"
        if self.manifest_path is not None:
            root = Path(self.manifest_path).parent.absolute()
            return f"{self.name} {self.version} (path+{root.as_uri()})"
        return f"{self.name} {self.version}"

    def __str__(self) -> str:
        return f"{self.name} = {self.version}"


@dataclass
class KrateSpans:
    """Where each crate's id sits in a synthesized lockfile-like text."""

    file_id: int
    spans: list[range] = field(default_factory=list)

    @classmethod
    def synthesize(cls, krates: Iterable[Krate], files: Files, name: str) -> KrateSpans:
        spans: list[range] = []
        lines: list[str] = []
        offset = 0
        for krate in krates:
            repr_ = krate.id_repr()
            spans.append(range(offset, offset + len(repr_)))
            lines.append(f"{repr_}\n")
            offset += len(repr_) + 1
        return cls(files.add(name, "".join(lines)), spans)

    def __getitem__(self, index: int) -> range:
        return self.spans[index]

    def __len__(self) -> int:
        return len(self.spans)


@dataclass
class CheckCtx:
    """Everything a check needs: the crates, their spans and a validated config."""

    krates: Sequence[Krate]
    krate_spans: KrateSpans
    cfg: Any
    serialize_extra: bool = False
    colorize: bool = False