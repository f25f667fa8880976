"""Configuration of the licenses check and its validation."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from . import spdx
from .diag import Diagnostic, Label, LintLevel, Severity, Spanned
from .sources import _lint_level, _parse_url, _spanned, _spanned_list, normalize_url

DEFAULT_CONFIDENCE_THRESHOLD = 0.8

_IDENT = r"[0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*"
_VERSION_RE = re.compile(rf"(\d+)\.(\d+)\.(\d+)(?:-({_IDENT}))?(?:\+{_IDENT})?")
_PART = r"(\d+|[*xX])"
_COMPARATOR_RE = re.compile(
    rf"(=|>=|<=|>|<|~|\^)?\s*{_PART}(?:\.{_PART})?(?:\.{_PART})?"
    rf"(?:-({_IDENT}))?(?:\+{_IDENT})?"
)
_WILDCARDS = frozenset("*xX")


def _pre_key(pre: str) -> tuple[Any, ...]:
    """Sort key for a pre-release; a release sorts after every pre-release."""
    if not pre:
        return (1,)
    return (
        0,
        tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in pre.split(".")),
    )


@dataclass(frozen=True)
class _Version:
    major: int
    minor: int
    patch: int
    pre: str = ""


def _parse_version(text: str) -> _Version:
    match = _VERSION_RE.fullmatch(text.strip())
    if match is None:
        raise ValueError(f"invalid version '{text}'")
    major, minor, patch, pre = match.groups()
    return _Version(int(major), int(minor), int(patch), pre or "")


@dataclass(frozen=True)
class _Comparator:
    op: str
    major: int
    minor: int | None
    patch: int | None
    pre: str = ""

    def _exact(self, v: _Version) -> bool:
        return (
            v.major == self.major
            and (self.minor is None or v.minor == self.minor)
            and (self.patch is None or v.patch == self.patch)
            and v.pre == self.pre
        )

    def _greater(self, v: _Version) -> bool:
        if v.major != self.major:
            return v.major > self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor > self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch > self.patch
        return _pre_key(v.pre) > _pre_key(self.pre)

    def _less(self, v: _Version) -> bool:
        if v.major != self.major:
            return v.major < self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor < self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch < self.patch
        return _pre_key(v.pre) < _pre_key(self.pre)

    def _tilde(self, v: _Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return v.patch > self.patch
        return _pre_key(v.pre) >= _pre_key(self.pre)

    def _caret(self, v: _Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is None:
            return True
        if self.patch is None:
            return v.minor >= self.minor if self.major > 0 else v.minor == self.minor
        if self.major > 0:
            if v.minor != self.minor:
                return v.minor > self.minor
            if v.patch != self.patch:
                return v.patch > self.patch
        elif self.minor > 0:
            if v.minor != self.minor:
                return False
            if v.patch != self.patch:
                return v.patch > self.patch
        elif v.minor != self.minor or v.patch != self.patch:
            return False
        return _pre_key(v.pre) >= _pre_key(self.pre)

    def matches(self, v: _Version) -> bool:
        if self.op == "=":
            return self._exact(v)
        if self.op == ">":
            return self._greater(v)
        if self.op == ">=":
            return self._exact(v) or self._greater(v)
        if self.op == "<":
            return self._less(v)
        if self.op == "<=":
            return self._exact(v) or self._less(v)
        if self.op == "~":
            return self._tilde(v)
        return self._caret(v)

    def pre_compatible(self, v: _Version) -> bool:
        return (
            self.major == v.major
            and self.minor == v.minor
            and self.patch == v.patch
            and bool(self.pre)
        )


def _parse_comparator(part: str, text: str) -> _Comparator:
    match = _COMPARATOR_RE.fullmatch(part)
    if match is None:
        raise ValueError(f"invalid version requirement '{text}'")
    op, major, minor, patch, pre = match.groups()
    if major in _WILDCARDS:
        raise ValueError(f"unexpected wildcard in version requirement '{text}'")
    values: list[int | None] = []
    wildcard = False
    for part_text in (minor, patch):
        if part_text is None or part_text in _WILDCARDS:
            wildcard = wildcard or part_text is not None
            values.append(None)
        elif wildcard or (values and values[-1] is None):
            raise ValueError(f"unexpected number after wildcard in '{text}'")
        else:
            values.append(int(part_text))
    if wildcard and op not in (None, "="):
        raise ValueError(f"unexpected wildcard after operator in '{text}'")
    if pre and values[1] is None:
        raise ValueError(f"pre-release needs a full version in '{text}'")
    if op is None:
        op = "=" if wildcard else "^"
    return _Comparator(op, int(major), values[0], values[1], pre or "")


@dataclass(frozen=True)
class VersionReq:
    """A version requirement such as ``^1.2``, ``>=1.0, <2`` or ``*``."""

    comparators: tuple[_Comparator, ...]
    text: str = field(default="*", compare=False)

    @classmethod
    def parse(cls, text: str) -> VersionReq:
        stripped = text.strip()
        if not stripped:
            raise ValueError("empty version requirement")
        if stripped in _WILDCARDS:
            return cls((), text)
        comparators = tuple(_parse_comparator(p.strip(), text) for p in stripped.split(","))
        return cls(comparators, text)

    def matches(self, version: str) -> bool:
        """Whether ``version`` satisfies every comparator of this requirement."""
        v = _parse_version(str(version))
        if not all(c.matches(v) for c in self.comparators):
            return False
        return not v.pre or any(c.pre_compatible(v) for c in self.comparators)

    def __str__(self) -> str:
        return self.text


def match_req(version: str, req: VersionReq | None) -> bool:
    """Whether ``version`` meets ``req``; no requirement matches every version."""
    return req is None or req.matches(version)


class BlanketAgreement(enum.Enum):
    """Accept licenses by their OSI approval and FSF free status."""

    BOTH = "both"
    EITHER = "either"
    OSI_ONLY = "osi-only"
    FSF_ONLY = "fsf-only"
    NEITHER = "neither"


@dataclass
class Private:
    """How private crates are detected and whether they are skipped."""

    ignore: bool = False
    ignore_sources: list[Spanned[str]] = field(default_factory=list)
    registries: list[str] = field(default_factory=list)


@dataclass
class FileSource:
    """A license file, relative to the crate root, and the hash of its text."""

    path: Spanned[Path]
    hash: int

    def __repr__(self) -> str:
        return f"FileSource(path={self.path.value!s}, hash={self.hash:#x})"


@dataclass
class Clarification:
    """A user-supplied license expression for a crate, tied to its license files."""

    name: str
    expression: Spanned[str]
    license_files: list[FileSource]
    version: VersionReq | None = None


@dataclass
class LicenseException:
    """Licenses allowed for one crate only."""

    name: Spanned[str]
    allow: list[Spanned[str]]
    version: VersionReq | None = None


@dataclass
class ValidClarification:
    name: str
    version: VersionReq | None
    expr_offset: int
    expression: spdx.Expression
    license_files: list[FileSource]


@dataclass
class ValidException:
    name: Spanned[str]
    version: VersionReq | None
    allowed: list[Spanned[spdx.Licensee]]


@dataclass
class ValidConfig:
    """The licenses configuration after validation."""

    file_id: int
    private: Private
    unlicensed: LintLevel
    copyleft: LintLevel
    unused_allowed_license: LintLevel
    allow_osi_fsf_free: BlanketAgreement
    default: LintLevel
    confidence_threshold: float
    denied: list[Spanned[spdx.Licensee]]
    allowed: list[Spanned[spdx.Licensee]]
    clarifications: list[ValidClarification]
    exceptions: list[ValidException]
    ignore_sources: list[str]


def _check_keys(data: Any, allowed: frozenset[str], what: str) -> None:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be a table")
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"unknown field '{unknown[0]}' in {what}")


def _required(data: Mapping[str, Any], key: str, what: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"missing field '{key}' in {what}") from None


def _tables(data: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    values = data[key]
    if not isinstance(values, (list, tuple)):
        raise ValueError(f"'{key}' must be an array of tables")
    return list(values)


def _version(data: Mapping[str, Any]) -> VersionReq | None:
    value = data.get("version")
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'version' must be a string, found {value!r}")
    return VersionReq.parse(value)


def _private_from(data: Any) -> Private:
    _check_keys(data, frozenset({"ignore", "ignore-sources", "registries"}), "private")
    private = Private()
    if "ignore" in data:
        if not isinstance(data["ignore"], bool):
            raise ValueError("'ignore' must be a boolean")
        private.ignore = data["ignore"]
    if "ignore-sources" in data:
        private.ignore_sources = _spanned_list(data, "ignore-sources")
    if "registries" in data:
        private.registries = [s.value for s in _spanned_list(data, "registries")]
    return private


def _file_source_from(data: Any) -> FileSource:
    _check_keys(data, frozenset({"path", "hash"}), "license-files")
    path = _spanned(_required(data, "path", "license-files"), "path")
    file_hash = _required(data, "hash", "license-files")
    if isinstance(file_hash, bool) or not isinstance(file_hash, int):
        raise ValueError(f"'hash' must be an integer, found {file_hash!r}")
    return FileSource(Spanned(Path(path.value), path.span), file_hash)


def _clarification_from(data: Any) -> Clarification:
    what = "clarify"
    _check_keys(data, frozenset({"name", "version", "expression", "license-files"}), what)
    name = _spanned(_required(data, "name", what), "name").value
    expression = _spanned(_required(data, "expression", what), "expression")
    _required(data, "license-files", what)
    files = [_file_source_from(t) for t in _tables(data, "license-files")]
    return Clarification(name, expression, files, _version(data))


def _exception_from(data: Any) -> LicenseException:
    what = "exceptions"
    _check_keys(data, frozenset({"name", "version", "allow"}), what)
    name = _spanned(_required(data, "name", what), "name")
    _required(data, "allow", what)
    return LicenseException(name, _spanned_list(data, "allow"), _version(data))


def _offset_error(
    file_id: int, entry: Spanned[str], err: spdx.ParseError, message: str
) -> Diagnostic:
    # the span of a config string starts at its opening quote
    offset = entry.span.start + 1
    span = range(err.span.start + offset, err.span.stop + offset)
    return Diagnostic(
        Severity.ERROR, message, labels=[Label.primary(file_id, span, err.reason)]
    )


_CONFIG_KEYS = frozenset(
    {
        "private",
        "unlicensed",
        "allow-osi-fsf-free",
        "copyleft",
        "default",
        "confidence-threshold",
        "deny",
        "allow",
        "unused-allowed-license",
        "clarify",
        "exceptions",
    }
)


@dataclass
class Config:
    """The licenses configuration as written by the user."""

    private: Private = field(default_factory=Private)
    unlicensed: LintLevel = LintLevel.DENY
    allow_osi_fsf_free: BlanketAgreement = BlanketAgreement.NEITHER
    copyleft: LintLevel = LintLevel.WARN
    default: LintLevel = LintLevel.DENY
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    deny: list[Spanned[str]] = field(default_factory=list)
    allow: list[Spanned[str]] = field(default_factory=list)
    unused_allowed_license: LintLevel = LintLevel.WARN
    clarify: list[Clarification] = field(default_factory=list)
    exceptions: list[LicenseException] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Config:
        """Build a config from kebab-case keys; unknown keys are rejected."""
        _check_keys(data, _CONFIG_KEYS, "licenses")
        cfg = cls()
        if "private" in data:
            cfg.private = _private_from(data["private"])
        if "unlicensed" in data:
            cfg.unlicensed = _lint_level(data, "unlicensed")
        if "copyleft" in data:
            cfg.copyleft = _lint_level(data, "copyleft")
        if "default" in data:
            cfg.default = _lint_level(data, "default")
        if "unused-allowed-license" in data:
            cfg.unused_allowed_license = _lint_level(data, "unused-allowed-license")
        if "allow-osi-fsf-free" in data:
            value = data["allow-osi-fsf-free"]
            try:
                cfg.allow_osi_fsf_free = BlanketAgreement(value)
            except ValueError:
                raise ValueError(
                    f"invalid value '{value}' for 'allow-osi-fsf-free', expected one of: "
                    "both, either, osi-only, fsf-only, neither"
                ) from None
        if "confidence-threshold" in data:
            value = data["confidence-threshold"]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'confidence-threshold' must be a number, found {value!r}")
            cfg.confidence_threshold = float(value)
        if "deny" in data:
            cfg.deny = _spanned_list(data, "deny")
        if "allow" in data:
            cfg.allow = _spanned_list(data, "allow")
        if "clarify" in data:
            cfg.clarify = [_clarification_from(t) for t in _tables(data, "clarify")]
        if "exceptions" in data:
            cfg.exceptions = [_exception_from(t) for t in _tables(data, "exceptions")]
        return cfg

    def validate(self, file_id: int) -> tuple[ValidConfig, list[Diagnostic]]:
        """Parse every URL, licensee and expression; returns the valid config and any errors."""
        diagnostics: list[Diagnostic] = []

        ignore_sources: list[str] = []
        for aurl in self.private.ignore_sources:
            try:
                ignore_sources.append(normalize_url(_parse_url(aurl.value)))
            except ValueError as err:
                diagnostics.append(
                    Diagnostic(
                        Severity.ERROR,
                        "failed to parse url",
                        labels=[Label.primary(file_id, aurl.span, str(err))],
                    )
                )

        def parse_licensees(entries: list[Spanned[str]]) -> list[Spanned[spdx.Licensee]]:
            parsed = []
            for entry in entries:
                try:
                    parsed.append(Spanned(spdx.Licensee.parse(entry.value), entry.span))
                except spdx.ParseError as err:
                    diagnostics.append(_offset_error(file_id, entry, err, "invalid licensee"))
            return parsed

        denied = sorted(parse_licensees(self.deny))
        allowed = sorted(parse_licensees(self.allow))

        exceptions = [
            ValidException(exc.name, exc.version, parse_licensees(exc.allow))
            for exc in self.exceptions
        ]

        # the same license both allowed and denied is almost certainly a mistake
        for d in denied:
            match = next((a for a in allowed if a == d), None)
            if match is not None:
                diagnostics.append(
                    Diagnostic(
                        Severity.ERROR,
                        "a license id was specified in both `allow` and `deny`",
                        labels=[
                            Label.secondary(file_id, d.span, "deny"),
                            Label.secondary(file_id, match.span, "allow"),
                        ],
                    )
                )

        clarifications: list[ValidClarification] = []
        for c in self.clarify:
            try:
                expression = spdx.Expression.parse(c.expression.value)
            except spdx.ParseError as err:
                diagnostics.append(
                    _offset_error(file_id, c.expression, err, "unable to parse license expression")
                )
                continue
            clarifications.append(
                ValidClarification(
                    name=c.name,
                    version=c.version,
                    expr_offset=c.expression.span.start + 1,
                    expression=expression,
                    license_files=sorted(c.license_files, key=lambda f: f.path.value),
                )
            )

        valid = ValidConfig(
            file_id=file_id,
            private=self.private,
            unlicensed=self.unlicensed,
            copyleft=self.copyleft,
            unused_allowed_license=self.unused_allowed_license,
            allow_osi_fsf_free=self.allow_osi_fsf_free,
            default=self.default,
            confidence_threshold=self.confidence_threshold,
            denied=denied,
            allowed=allowed,
            clarifications=clarifications,
            exceptions=exceptions,
            ignore_sources=ignore_sources,
        )
        return valid, diagnostics