"""Work out the license expression of every crate in the graph."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Union

from . import spdx
from .diag import Files, Label
from .krates import Krate
from .licenses_cfg import ValidClarification, ValidConfig, match_req
from .licenses_diags import missing_clarification_file
from .licensepack import LicensePack, MismatchReason
from .licensestore import LicenseStore

DEFAULT_THRESHOLD = 0.8


class LicenseExprSource(enum.Enum):
    """Where a crate's license expression came from."""

    METADATA = "metadata"
    USER_OVERRIDE = "user-override"
    OVERLAY_OVERRIDE = "overlay-override"
    LICENSE_FILES = "license-files"


@dataclass
class LicenseExprInfo:
    """The file and offset at which an expression can be shown to the user."""

    file_id: int
    offset: int
    source: LicenseExprSource


@dataclass
class SpdxExpression:
    """An expression parsed or synthesized from a crate's license information."""

    expr: spdx.Expression
    nfo: LicenseExprInfo


@dataclass
class Unlicensed:
    """No license could be determined for the crate."""


LicenseInfo = Union[SpdxExpression, Unlicensed]


@dataclass
class KrateLicense:
    """The license information of one crate and the reasons it was chosen."""

    krate: Krate
    lic_info: LicenseInfo
    labels: list[Label] = field(default_factory=list)


@dataclass
class Summary:
    """The license information of every crate, sorted by crate."""

    store: LicenseStore
    nfos: list[KrateLicense] = field(default_factory=list)


def _iter_clarifications(
    clarifications: Iterable[ValidClarification], krate: Krate
) -> Iterator[ValidClarification]:
    for vc in clarifications:
        if vc.name == krate.name and match_req(krate.version, vc.version):
            yield vc


def _get_toml_span(key: str, content: str) -> range:
    """The range of the quoted value of ``key`` in a synthesized manifest."""
    offset = 0
    while True:
        newline = content.find("\n", offset)
        if newline < 0:
            raise ValueError(f"key '{key}' not found in synthesized manifest")
        line_start = newline + 1
        if content.startswith(key, line_start):
            val_start = line_start + len(key)
            break
        offset = line_start

    val_end = content.find('"\n', val_start)
    if val_end < 0:
        raise ValueError(f"value of '{key}' is not terminated")
    start = val_start + 4
    return range(start, val_end)


def _version_key(version: str) -> tuple[Any, ...]:
    core = re.split(r"[-+]", version, maxsplit=1)[0]
    numbers = tuple(int(p) if p.isdigit() else -1 for p in core.split("."))
    return (numbers, version)


def _krate_key(krate: Krate) -> tuple[Any, ...]:
    return (krate.name, _version_key(krate.version), krate.id_repr())


class _SynthManifest:
    """A minimal manifest for a crate, created on first use, that labels point into."""

    def __init__(self, krate: Krate, files: Files) -> None:
        self._krate = krate
        self._files = files
        self.file_id: int | None = None

    def span(self, key: str) -> tuple[int, range]:
        if self.file_id is None:
            krate = self._krate
            manifest = (
                f'[package]\nname = "{krate.name}"\nversion = "{krate.version}"\n'
                f'license = "{krate.license or ""}"\n'
            )
            self.file_id = self._files.add(krate.id_repr(), manifest)
        return self.file_id, _get_toml_span(key, self._files.source(self.file_id))


class Gatherer:
    """Determines the license expression of crates.

    In order of precedence: a user clarification whose license files still
    match, the crate's ``license`` field, then the crate's LICENSE files, whose
    licenses are all joined with ``AND``.
    """

    def __init__(
        self, store: LicenseStore | None = None, threshold: float = DEFAULT_THRESHOLD
    ) -> None:
        self.store = store if store is not None else LicenseStore()
        self.threshold = threshold

    def with_store(self, store: LicenseStore) -> Gatherer:
        self.store = store
        return self

    def with_confidence_threshold(self, threshold: float) -> Gatherer:
        """Set the minimum score for a license text, clamped to 0.0..1.0."""
        self.threshold = min(max(threshold, 0.0), 1.0)
        return self

    def gather(
        self, krates: Iterable[Krate], files: Files, cfg: ValidConfig | None = None
    ) -> Summary:
        summary = Summary(self.store)
        summary.nfos = sorted(
            (self._gather_one(krate, files, cfg) for krate in krates),
            key=lambda nfo: _krate_key(nfo.krate),
        )
        return summary

    def _gather_one(
        self, krate: Krate, files: Files, cfg: ValidConfig | None
    ) -> KrateLicense:
        labels: list[Label] = []
        manifest = _SynthManifest(krate, files)
        license_pack: LicensePack | None = None

        if cfg is not None:
            for clarification in _iter_clarifications(cfg.clarifications, krate):
                if license_pack is None:
                    license_pack = LicensePack.read(krate)

                matched = True
                for clf in clarification.license_files:
                    reason = license_pack.license_files_match(clf)
                    if reason is not None:
                        if reason is MismatchReason.FILE_NOT_FOUND:
                            labels.append(missing_clarification_file(clf.path, cfg.file_id))
                        matched = False
                        break

                if matched:
                    info = LicenseExprInfo(
                        cfg.file_id, clarification.expr_offset, LicenseExprSource.USER_OVERRIDE
                    )
                    return KrateLicense(
                        krate, SpdxExpression(clarification.expression, info), labels
                    )

        if krate.license is not None:
            try:
                expr = spdx.Expression.parse(krate.license)
            except spdx.ParseError as err:
                file_id, lic_span = manifest.span("license")
                span = range(lic_span.start + err.span.start, lic_span.start + err.span.stop)
                labels.append(Label.secondary(file_id, span, str(err.reason)))
            else:
                file_id, span = manifest.span("license")
                info = LicenseExprInfo(file_id, span.start, LicenseExprSource.METADATA)
                return KrateLicense(krate, SpdxExpression(expr, info), labels)
        else:
            file_id, lic_span = manifest.span("license")
            labels.append(
                Label.secondary(file_id, lic_span, "license expression was not specified")
            )

        if license_pack is None:
            license_pack = LicensePack.read(krate)

        if license_pack.license_files:
            file_id, _ = manifest.span("license")
            synth, expr, fails = license_pack.get_expression(
                krate, file_id, self.store, self.threshold
            )
            source = files.source(file_id)
            if expr is not None:
                files.update(file_id, f'{source}files-expr = "{expr}"\n{synth}\n')
                info = LicenseExprInfo(
                    file_id, len(source) + len('files-expr = "'), LicenseExprSource.LICENSE_FILES
                )
                return KrateLicense(krate, SpdxExpression(expr, info), labels)

            old_end = len(source)
            files.update(file_id, f"{source}{synth}\n")
            for label in fails:
                span = range(label.span.start + old_end, label.span.stop + old_end)
                labels.append(Label.secondary(label.file_id, span, label.message))

        file_id, name_span = manifest.span("name")
        labels.append(
            Label.primary(
                file_id,
                name_span,
                "a valid license expression could not be retrieved for the crate",
            )
        )
        return KrateLicense(krate, Unlicensed(), labels)