from pathlib import Path

import pytest

from cratewarden.diag import Files
from cratewarden.gather import (
    Gatherer,
    LicenseExprSource,
    SpdxExpression,
    Unlicensed,
)
from cratewarden.krates import Krate
from cratewarden.licenses_cfg import Config
from cratewarden.licensepack import get_file_source
from cratewarden.licensestore import LicenseStore

MIT_TEXT = (
    "The lighthouse keeper climbed the spiral stairs every evening,\n"
    "trimmed the wick, and polished the great lens so that passing ships\n"
    "could find their way home through fog and storm.\n"
    "She kept a careful log of every vessel that sailed past the point,\n"
    "along with notes about wind, tide, and weather.\n"
)

UNRELATED_TEXT = "Bananas grow in bunches on tall tropical plants near a river bank.\n"


def make_krate(tmp_path: Path, name="foo", version="1.0.0", license=None, files=None) -> Krate:
    root = tmp_path / f"{name}-{version}"
    root.mkdir()
    (root / "Cargo.toml").write_text("[package]\n")
    for fname, text in (files or {}).items():
        (root / fname).write_text(text)
    return Krate(name, version, manifest_path=root / "Cargo.toml", license=license)


def mit_store() -> LicenseStore:
    store = LicenseStore()
    store.add("MIT", MIT_TEXT)
    return store


def test_metadata_license(tmp_path):
    krate = make_krate(tmp_path, license="MIT")
    files = Files()
    summary = Gatherer().gather([krate], files)
    nfo = summary.nfos[0]
    assert isinstance(nfo.lic_info, SpdxExpression)
    assert nfo.lic_info.nfo.source is LicenseExprSource.METADATA
    offset = nfo.lic_info.nfo.offset
    assert files.source(nfo.lic_info.nfo.file_id)[offset:offset + 3] == "MIT"
    assert nfo.labels == []


def test_invalid_license_expression_without_files_is_unlicensed(tmp_path):
    krate = make_krate(tmp_path, license="MIT AND")
    files = Files()
    nfo = Gatherer().gather([krate], files).nfos[0]
    assert isinstance(nfo.lic_info, Unlicensed)
    assert len(nfo.labels) == 2
    source = files.source(nfo.labels[0].file_id)
    value_start = source.index('license = "') + len('license = "')
    assert nfo.labels[0].span.start >= value_start
    assert not nfo.labels[0].is_primary
    last = nfo.labels[-1]
    assert last.is_primary
    assert last.message == "a valid license expression could not be retrieved for the crate"
    assert source[last.span.start:last.span.stop] == "foo"


def test_missing_license_field(tmp_path):
    krate = make_krate(tmp_path)
    files = Files()
    nfo = Gatherer().gather([krate], files).nfos[0]
    assert isinstance(nfo.lic_info, Unlicensed)
    first = nfo.labels[0]
    assert first.message == "license expression was not specified"
    assert len(first.span) == 0
    assert files.name(first.file_id) == krate.id_repr()
    assert len(files) == 1


def test_license_files_produce_expression(tmp_path):
    krate = make_krate(tmp_path, files={"LICENSE": MIT_TEXT})
    files = Files()
    nfo = Gatherer().with_store(mit_store()).gather([krate], files).nfos[0]
    assert isinstance(nfo.lic_info, SpdxExpression)
    info = nfo.lic_info.nfo
    assert info.source is LicenseExprSource.LICENSE_FILES
    source = files.source(info.file_id)
    assert source[info.offset - 14:info.offset] == 'files-expr = "'
    assert "license-files = [" in source
    assert nfo.labels[0].message == "license expression was not specified"


def test_low_confidence_license_file(tmp_path):
    krate = make_krate(tmp_path, files={"LICENSE": UNRELATED_TEXT})
    files = Files()
    nfo = Gatherer().with_store(mit_store()).gather([krate], files).nfos[0]
    assert isinstance(nfo.lic_info, Unlicensed)
    messages = [label.message for label in nfo.labels]
    assert "low confidence in the license text" in messages
    low = nfo.labels[messages.index("low confidence in the license text")]
    source = files.source(low.file_id)
    assert source[low.span.start:low.span.stop].startswith("0.")


def clarify_cfg(files: Files, hash_value: int, path="LICENSE", version=None):
    table = {
        "name": "foo",
        "expression": "MIT AND ISC",
        "license-files": [{"path": path, "hash": hash_value}],
    }
    if version is not None:
        table["version"] = version
    cfg_id = files.add("config.toml", "")
    valid, diags = Config.from_mapping({"clarify": [table]}).validate(cfg_id)
    assert diags == []
    return valid


def test_clarification_overrides(tmp_path):
    krate = make_krate(tmp_path, license="MIT", files={"LICENSE": MIT_TEXT})
    hash_value = get_file_source(krate.manifest_path.parent / "LICENSE").data.hash
    files = Files()
    cfg = clarify_cfg(files, hash_value)
    nfo = Gatherer().gather([krate], files, cfg).nfos[0]
    assert isinstance(nfo.lic_info, SpdxExpression)
    assert nfo.lic_info.nfo.source is LicenseExprSource.USER_OVERRIDE
    assert nfo.lic_info.nfo.file_id == cfg.file_id
    assert nfo.lic_info.nfo.offset == cfg.clarifications[0].expr_offset
    assert nfo.lic_info.expr is cfg.clarifications[0].expression


def test_clarification_hash_mismatch_falls_back(tmp_path):
    krate = make_krate(tmp_path, license="MIT", files={"LICENSE": MIT_TEXT})
    hash_value = get_file_source(krate.manifest_path.parent / "LICENSE").data.hash
    files = Files()
    cfg = clarify_cfg(files, hash_value ^ 1)
    nfo = Gatherer().gather([krate], files, cfg).nfos[0]
    assert nfo.lic_info.nfo.source is LicenseExprSource.METADATA
    assert nfo.labels == []


def test_clarification_missing_file_label(tmp_path):
    krate = make_krate(tmp_path, license="MIT", files={"LICENSE": MIT_TEXT})
    files = Files()
    cfg = clarify_cfg(files, 0, path="COPYING")
    nfo = Gatherer().gather([krate], files, cfg).nfos[0]
    assert nfo.lic_info.nfo.source is LicenseExprSource.METADATA
    assert [label.message for label in nfo.labels] == ["unable to locate specified license file"]
    assert nfo.labels[0].file_id == cfg.file_id


def test_clarification_version_must_match(tmp_path):
    krate = make_krate(tmp_path, license="MIT", files={"LICENSE": MIT_TEXT})
    hash_value = get_file_source(krate.manifest_path.parent / "LICENSE").data.hash
    files = Files()
    cfg = clarify_cfg(files, hash_value, version="2.0.0")
    nfo = Gatherer().gather([krate], files, cfg).nfos[0]
    assert nfo.lic_info.nfo.source is LicenseExprSource.METADATA


@pytest.mark.parametrize("given,expected", [(1.5, 1.0), (-0.2, 0.0), (0.3, 0.3)])
def test_confidence_threshold_is_clamped(given, expected):
    assert Gatherer().with_confidence_threshold(given).threshold == expected


def test_default_threshold_and_store():
    gatherer = Gatherer()
    assert gatherer.threshold == 0.8
    assert len(gatherer.store) == 0


def test_results_sorted_by_crate(tmp_path):
    krates = [
        make_krate(tmp_path, name="zeta", license="MIT"),
        make_krate(tmp_path, name="alpha", license="MIT"),
        make_krate(tmp_path, name="mid", license="MIT"),
    ]
    files = Files()
    summary = Gatherer().gather(krates, files)
    assert [nfo.krate.name for nfo in summary.nfos] == ["alpha", "mid", "zeta"]
    assert len(files) == 3