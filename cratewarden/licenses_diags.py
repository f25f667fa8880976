"""Diagnostics emitted by the licenses check."""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Iterable

from .diag import CfgCoord, Diagnostic, Label, Severity, Spanned
from .krates import Krate


class Code(enum.Enum):
    """Diagnostic codes emitted by the licenses check."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    UNLICENSED = "unlicensed"
    SKIPPED_PRIVATE_WORKSPACE_CRATE = "skipped-private-workspace-crate"
    LICENSE_NOT_ENCOUNTERED = "license-not-encountered"
    LICENSE_EXCEPTION_NOT_ENCOUNTERED = "license-exception-not-encountered"
    MISSING_CLARIFICATION_FILE = "missing-clarification-file"

    def __str__(self) -> str:
        return self.value


def unlicensed(severity: Severity, krate: Krate, breadcrumbs: Iterable[Label]) -> Diagnostic:
    """No license could be determined for ``krate``."""
    return Diagnostic(severity, f"{krate} is unlicensed", Code.UNLICENSED, list(breadcrumbs))


def skipped_private_workspace_crate(krate: Krate) -> Diagnostic:
    return Diagnostic(
        Severity.NOTE,
        f"skipping private workspace crate '{krate}'",
        Code.SKIPPED_PRIVATE_WORKSPACE_CRATE,
    )


def unmatched_license_allowance(severity: Severity, allowed_license_cfg: CfgCoord) -> Diagnostic:
    """An allowed license was used by no crate."""
    return Diagnostic(
        severity,
        "license was not encountered",
        Code.LICENSE_NOT_ENCOUNTERED,
        [allowed_license_cfg.to_label("unmatched license allowance")],
    )


def unmatched_license_exception(license_exc_cfg: CfgCoord) -> Diagnostic:
    """A license exception applied to no crate."""
    return Diagnostic(
        Severity.WARNING,
        "license exception was not encountered",
        Code.LICENSE_EXCEPTION_NOT_ENCOUNTERED,
        [license_exc_cfg.to_label("unmatched license exception")],
    )


def missing_clarification_file(expected: Spanned[Path], cfg_file_id: int) -> Label:
    """A label pointing at a clarification's license file that was not found."""
    return Label.secondary(
        cfg_file_id, expected.span, "unable to locate specified license file"
    )