"""The sources check: only allow crates fetched from registries and git repositories the user trusts."""

from __future__ import annotations

import enum
import ipaddress
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import SplitResult, urlsplit, urlunsplit

from .diag import CfgCoord, Check, Diagnostic, Label, LintLevel, Pack, Severity, Spanned
from .krates import CheckCtx

CRATES_IO_URL = "https://github.com/rust-lang/crates.io-index"

_SPECIAL_SCHEMES = frozenset({"http", "https", "ws", "wss", "ftp", "file"})
_FORBIDDEN_HOST_CHARS = frozenset(" \t\n\r#%/:<>?@[\\]^|")


class OrgType(enum.Enum):
    """A hosting service whose organizations can be allowed wholesale."""

    GITHUB = "github.com"
    GITLAB = "gitlab.com"
    BITBUCKET = "bitbucket.org"

    def __str__(self) -> str:
        return self.value


class GitSpec(enum.IntEnum):
    """How precisely a git source is pinned, from least to most specific."""

    ANY = 0
    BRANCH = 1
    TAG = 2
    REV = 3

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, text: str) -> GitSpec:
        try:
            return cls[text.upper()] if text == text.lower() else cls[""]
        except KeyError:
            raise ValueError(
                f"unknown git spec '{text}', expected one of: any, branch, tag, rev"
            ) from None


class Code(enum.Enum):
    """Diagnostic codes emitted by the sources check."""

    GIT_SOURCE_UNDERSPECIFIED = "git-source-underspecified"
    ALLOWED_SOURCE = "allowed-source"
    ALLOWED_BY_ORGANIZATION = "allowed-by-organization"
    SOURCE_NOT_ALLOWED = "source-not-allowed"
    UNMATCHED_SOURCE = "unmatched-source"
    UNMATCHED_ORGANIZATION = "unmatched-organization"

    def __str__(self) -> str:
        return self.value


def _parse_url(text: str) -> str:
    """Validate ``text`` as an absolute URL and return it in canonical form."""
    text = text.strip()
    try:
        parts = urlsplit(text)
    except ValueError as err:
        raise ValueError(f"invalid URL: {err}") from None
    if not parts.scheme:
        raise ValueError("relative URL without a base")
    scheme = parts.scheme.lower()
    host = parts.hostname
    if scheme in _SPECIAL_SCHEMES and scheme != "file" and not host:
        raise ValueError("empty host")
    if host and any(c in _FORBIDDEN_HOST_CHARS for c in host):
        raise ValueError("invalid domain character")
    try:
        parts.port
    except ValueError:
        raise ValueError("invalid port number") from None
    userinfo, at, hostport = parts.netloc.rpartition("@")
    netloc = f"{userinfo}{at}{hostport.lower()}"
    path = parts.path or ("/" if scheme in _SPECIAL_SCHEMES and netloc else "")
    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def _without_revision(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit(parts._replace(query="", fragment=""))


def normalize_url(url: str) -> str:
    """Strip a trailing ``.git`` so different spellings of a repository compare equal."""
    parts: SplitResult = urlsplit(url)
    if parts.path.endswith(".git"):
        parts = parts._replace(path=parts.path[: -len(".git")])
    return urlunsplit(parts)


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


_ORG_DOMAINS = {org.value: org for org in OrgType}


def get_org(url: str) -> tuple[OrgType, str] | None:
    """The hosting service and organization a repository URL belongs to, if known."""
    parts = urlsplit(url)
    host = parts.hostname
    if not host or _is_ip(host):
        return None
    org_type = _ORG_DOMAINS.get(host.lower())
    if org_type is None or not parts.path.startswith("/"):
        return None
    return org_type, parts.path[1:].split("/", 1)[0]


@dataclass
class Orgs:
    """Organizations, per hosting service, whose repositories are allowed."""

    github: list[Spanned[str]] = field(default_factory=list)
    gitlab: list[Spanned[str]] = field(default_factory=list)
    bitbucket: list[Spanned[str]] = field(default_factory=list)


@dataclass
class UrlSource:
    """An allowed source URL; non-exact ones allow every URL under them."""

    url: Spanned[str]
    exact: bool


@dataclass
class ValidConfig:
    """The sources configuration after validation."""

    file_id: int
    unknown_registry: LintLevel
    unknown_git: LintLevel
    allowed_sources: list[UrlSource]
    allowed_orgs: list[tuple[OrgType, Spanned[str]]]
    required_git_spec: Spanned[GitSpec] | None


def _default_allow_registry() -> list[Spanned[str]]:
    return [Spanned(CRATES_IO_URL, range(0, len(CRATES_IO_URL)))]


def _spanned(value: Any, key: str) -> Spanned[Any]:
    if isinstance(value, Spanned):
        return value
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must hold strings, found {value!r}")
    return Spanned(value)


def _spanned_list(data: Mapping[str, Any], key: str) -> list[Spanned[str]]:
    values = data[key]
    if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple)):
        raise ValueError(f"'{key}' must be an array of strings")
    return [_spanned(v, key) for v in values]


def _lint_level(data: Mapping[str, Any], key: str) -> LintLevel:
    value = data[key]
    try:
        return LintLevel(value)
    except ValueError:
        raise ValueError(
            f"invalid value '{value}' for '{key}', expected one of: allow, warn, deny"
        ) from None


_CONFIG_KEYS = frozenset(
    {
        "unknown-registry",
        "unknown-git",
        "allow-registry",
        "allow-git",
        "allow-org",
        "private",
        "required-git-spec",
    }
)


@dataclass
class Config:
    """The sources configuration as written by the user."""

    unknown_registry: LintLevel = LintLevel.WARN
    unknown_git: LintLevel = LintLevel.WARN
    allow_registry: list[Spanned[str]] = field(default_factory=_default_allow_registry)
    allow_git: list[Spanned[str]] = field(default_factory=list)
    allow_org: Orgs = field(default_factory=Orgs)
    private: list[Spanned[str]] = field(default_factory=list)
    required_git_spec: Spanned[GitSpec] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Config:
        """Build a config from kebab-case keys; unknown keys are rejected."""
        unknown = sorted(set(data) - _CONFIG_KEYS)
        if unknown:
            raise ValueError(f"unknown field '{unknown[0]}'")
        cfg = cls()
        if "unknown-registry" in data:
            cfg.unknown_registry = _lint_level(data, "unknown-registry")
        if "unknown-git" in data:
            cfg.unknown_git = _lint_level(data, "unknown-git")
        if "allow-registry" in data:
            cfg.allow_registry = _spanned_list(data, "allow-registry")
        if "allow-git" in data:
            cfg.allow_git = _spanned_list(data, "allow-git")
        if "private" in data:
            cfg.private = _spanned_list(data, "private")
        if "allow-org" in data:
            orgs = data["allow-org"]
            if not isinstance(orgs, Mapping):
                raise ValueError("'allow-org' must be a table")
            cfg.allow_org = Orgs(
                **{
                    name: _spanned_list(orgs, name)
                    for name in ("github", "gitlab", "bitbucket")
                    if name in orgs
                }
            )
        if "required-git-spec" in data:
            spec = _spanned(data["required-git-spec"], "required-git-spec")
            cfg.required_git_spec = Spanned(GitSpec.parse(spec.value), spec.span)
        return cfg

    def validate(self, file_id: int) -> tuple[ValidConfig, list[Diagnostic]]:
        """Parse every allowed URL; returns the valid config and any errors found."""
        diagnostics: list[Diagnostic] = []
        allowed_sources: list[UrlSource] = []
        candidates = (
            [(u, True) for u in self.allow_registry]
            + [(u, True) for u in self.allow_git]
            + [(u, False) for u in self.private]
        )
        for aurl, exact in candidates:
            try:
                url = normalize_url(_parse_url(aurl.value))
            except ValueError as err:
                diagnostics.append(
                    Diagnostic(
                        Severity.ERROR,
                        "failed to parse url",
                        labels=[Label.primary(file_id, aurl.span, str(err))],
                    )
                )
                continue
            allowed_sources.append(UrlSource(Spanned(url, aurl.span), exact))

        allowed_orgs = (
            [(OrgType.GITHUB, o) for o in self.allow_org.github]
            + [(OrgType.GITLAB, o) for o in self.allow_org.gitlab]
            + [(OrgType.BITBUCKET, o) for o in self.allow_org.bitbucket]
        )

        valid = ValidConfig(
            file_id=file_id,
            unknown_registry=self.unknown_registry,
            unknown_git=self.unknown_git,
            allowed_sources=allowed_sources,
            allowed_orgs=allowed_orgs,
            required_git_spec=self.required_git_spec,
        )
        return valid, diagnostics


def _git_spec(source: Any) -> GitSpec:
    ref = source.git_reference
    if ref is None:
        return GitSpec.ANY
    if ref.kind == "branch":
        return GitSpec.ANY if ref.name == "master" else GitSpec.BRANCH
    if ref.kind == "tag":
        return GitSpec.TAG
    return GitSpec.REV


def _source_matches(allowed: UrlSource, source_url: str) -> bool:
    if allowed.exact:
        return allowed.url.value == source_url
    ours, theirs = urlsplit(source_url), urlsplit(allowed.url.value)
    return ours.hostname == theirs.hostname and ours.path.startswith(theirs.path)


def check(ctx: CheckCtx) -> list[Pack]:
    """Check the source of every crate against the allowed sources and organizations."""
    cfg: ValidConfig = ctx.cfg
    if cfg.unknown_registry is LintLevel.ALLOW and cfg.unknown_git is LintLevel.ALLOW:
        return []

    packs: list[Pack] = []
    source_hits = [False] * len(cfg.allowed_sources)
    org_hits = [False] * len(cfg.allowed_orgs)

    min_git_spec = None
    if cfg.required_git_spec is not None:
        min_git_spec = (
            cfg.required_git_spec.value,
            CfgCoord(cfg.file_id, cfg.required_git_spec.span),
        )

    for i, krate in enumerate(ctx.krates):
        source = krate.source
        if source is None:
            continue

        source_url = normalize_url(_without_revision(_parse_url(source.url)))
        kid = krate.id_repr()
        pack = Pack(Check.SOURCES, kid)

        span = ctx.krate_spans[i]
        last_space = kid.rfind(" ")
        source_label = Label.primary(
            ctx.krate_spans.file_id,
            range(span.start + last_space + 1, span.stop),
            "source",
        )

        if source.is_registry():
            lint_level, type_name = cfg.unknown_registry, "registry"
        elif source.is_git():
            if min_git_spec is not None:
                min_spec, cfg_coord = min_git_spec
                spec = _git_spec(source)
                if spec < min_spec:
                    pack.push(
                        Diagnostic(
                            Severity.ERROR,
                            f"'git' source is underspecified, expected '{min_spec}', "
                            f"but found '{spec}'",
                            Code.GIT_SOURCE_UNDERSPECIFIED,
                            [source_label, cfg_coord.to_label("minimum spec defined here")],
                        )
                    )
            lint_level, type_name = cfg.unknown_git, "git"
        else:
            continue

        index = next(
            (n for n, src in enumerate(cfg.allowed_sources) if _source_matches(src, source_url)),
            None,
        )
        if index is not None:
            # crates.io is the default and covers most crates, so it is not noted
            if source_url != CRATES_IO_URL:
                allow_cfg = CfgCoord(cfg.file_id, cfg.allowed_sources[index].url.span)
                pack.push(
                    Diagnostic(
                        Severity.NOTE,
                        f"'{type_name}' source explicitly allowed",
                        Code.ALLOWED_SOURCE,
                        [source_label, allow_cfg.to_label("source allowance")],
                    )
                )
            source_hits[index] = True
        else:
            org = get_org(source_url)
            org_index = None
            if org is not None:
                org_index = next(
                    (
                        n
                        for n, (org_type, org_name) in enumerate(cfg.allowed_orgs)
                        if org_type is org[0] and org_name.value == org[1]
                    ),
                    None,
                )
            if org_index is not None:
                org_hits[org_index] = True
                org_cfg = CfgCoord(cfg.file_id, cfg.allowed_orgs[org_index][1].span)
                pack.push(
                    Diagnostic(
                        Severity.NOTE,
                        "source allowed by organization allowance",
                        Code.ALLOWED_BY_ORGANIZATION,
                        [source_label, org_cfg.to_label("organization allowance")],
                    )
                )
            else:
                pack.push(
                    Diagnostic(
                        lint_level.to_severity(),
                        f"detected '{type_name}' source not explicitly allowed",
                        Code.SOURCE_NOT_ALLOWED,
                        [source_label],
                    )
                )

        if len(pack):
            packs.append(pack)

    pack = Pack(Check.SOURCES)
    for hit, src in zip(source_hits, cfg.allowed_sources):
        # disallowing crates.io has to be done by listing registries explicitly
        if hit or src.url.value == CRATES_IO_URL:
            continue
        pack.push(
            Diagnostic(
                Severity.WARNING,
                "allowed source was not encountered",
                Code.UNMATCHED_SOURCE,
                [
                    CfgCoord(cfg.file_id, src.url.span).to_label(
                        "no crate source matched these criteria"
                    )
                ],
            )
        )
    for hit, (org_type, org_name) in zip(org_hits, cfg.allowed_orgs):
        if hit:
            continue
        pack.push(
            Diagnostic(
                Severity.WARNING,
                f"allowed '{org_type}' organization  was not encountered",
                Code.UNMATCHED_ORGANIZATION,
                [
                    CfgCoord(cfg.file_id, org_name.span).to_label(
                        "no crate source fell under this organization"
                    )
                ],
            )
        )
    if len(pack):
        packs.append(pack)

    return packs