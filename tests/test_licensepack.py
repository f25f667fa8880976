from pathlib import Path

import pytest

from cratewarden import spdx
from cratewarden.diag import Spanned
from cratewarden.krates import Krate
from cratewarden.licensepack import (
    LicenseFile,
    LicensePack,
    MismatchReason,
    PackFile,
    find_license_files,
    get_file_source,
    license_hash,
)
from cratewarden.licenses_cfg import FileSource
from cratewarden.licensestore import LicenseStore

MIT_TEXT = (
    "The lighthouse keeper climbed the spiral stairs every evening to trim "
    "the wick and polish the great lens so that passing ships could find "
    "their way home through fog and storm\n"
    "She kept a careful log of every vessel that sailed past the rocky point "
    "along with notes about wind tide and weather\n"
)


def make_crate(tmp_path: Path, files: dict[str, str], license_file: str | None = None) -> Krate:
    root = tmp_path / "crate"
    root.mkdir()
    manifest = root / "Cargo.toml"
    manifest.write_text('[package]\nname = "demo"\n')
    for name, text in files.items():
        (root / name).write_bytes(text.encode("utf-8"))
    return Krate("demo", "1.0.0", manifest_path=manifest, license_file=license_file)


def mit_store() -> LicenseStore:
    store = LicenseStore(0.5)
    store.add("MIT", MIT_TEXT)
    return store


def test_hash_known_values():
    assert license_hash(b"") == 0x02CC5D05
    assert license_hash(b"abc") == 0x32D153FF


def test_hash_accepts_text_and_long_input():
    data = "x" * 100
    assert license_hash(data) == license_hash(data.encode())
    assert license_hash(data) != license_hash(data + "y")
    assert 0 <= license_hash(data) <= 0xFFFFFFFF


def test_normalizes_line_endings(tmp_path):
    crlf = tmp_path / "LICENSE-CRLF"
    crlf.write_bytes(b"line one\r\nline two\r\n\r\nline four\r\n")
    lf = tmp_path / "LICENSE-LF"
    lf.write_bytes(b"line one\nline two\n\nline four\n")

    a = get_file_source(crlf)
    b = get_file_source(lf)
    assert isinstance(a.data, LicenseFile)
    assert a.data.content == "line one\nline two\n\nline four\n"
    assert a.data == b.data


def test_missing_final_newline_is_added(tmp_path):
    path = tmp_path / "LICENSE"
    path.write_bytes(b"first\nlast")
    pf = get_file_source(path)
    assert pf.data.content == "first\nlast\n"
    assert pf.data.hash == license_hash("first\nlast\n")


def test_unreadable_file_records_error(tmp_path):
    pf = get_file_source(tmp_path / "LICENSE-NOPE")
    assert isinstance(pf.data, OSError)
    assert pf.path == tmp_path / "LICENSE-NOPE"


def test_find_license_files_only_license_prefixed_files(tmp_path):
    (tmp_path / "LICENSE-MIT").write_text("a")
    (tmp_path / "LICENSE").write_text("b")
    (tmp_path / "README").write_text("c")
    (tmp_path / "LICENSES").mkdir()
    found = find_license_files(tmp_path)
    assert [p.name for p in found] == ["LICENSE", "LICENSE-MIT"]


def test_find_license_files_missing_dir(tmp_path):
    with pytest.raises(OSError):
        find_license_files(tmp_path / "nothing")


def test_read_adds_license_file_and_sorts(tmp_path):
    krate = make_crate(
        tmp_path, {"LICENSE-B": "b\n", "LICENSE-A": "a\n", "COPYING": "c\n"}, "COPYING"
    )
    pack = LicensePack.read(krate)
    assert pack.err is None
    assert [pf.path.name for pf in pack.license_files] == ["COPYING", "LICENSE-A", "LICENSE-B"]


def test_read_does_not_duplicate_license_file(tmp_path):
    krate = make_crate(tmp_path, {"LICENSE": "x\n"}, "LICENSE")
    pack = LicensePack.read(krate)
    assert [pf.path.name for pf in pack.license_files] == ["LICENSE"]


def test_read_missing_directory_sets_error(tmp_path):
    krate = Krate("gone", "0.1.0", manifest_path=tmp_path / "gone" / "Cargo.toml")
    pack = LicensePack.read(krate)
    assert pack.license_files == []
    assert isinstance(pack.err, OSError)


def test_license_files_match_reasons(tmp_path):
    krate = make_crate(tmp_path, {"LICENSE": "text\n"}, "LICENSE-GONE")
    pack = LicensePack.read(krate)
    good_hash = license_hash("text\n")

    assert pack.license_files_match(FileSource(Spanned(Path("LICENSE")), good_hash)) is None
    assert (
        pack.license_files_match(FileSource(Spanned(Path("LICENSE")), good_hash ^ 1))
        is MismatchReason.HASH_DIFFERS
    )
    assert (
        pack.license_files_match(FileSource(Spanned(Path("COPYING")), good_hash))
        is MismatchReason.FILE_NOT_FOUND
    )
    assert (
        pack.license_files_match(FileSource(Spanned(Path("LICENSE-GONE")), good_hash))
        is MismatchReason.ERROR
    )


def test_expression_from_identified_files(tmp_path):
    krate = make_crate(tmp_path, {"LICENSE-MIT": MIT_TEXT})
    pack = LicensePack.read(krate)
    toml, expr, labels = pack.get_expression(krate, 3, mit_store(), 0.8)
    assert labels == []
    assert expr == spdx.Expression.parse("MIT")
    expected_hash = license_hash(MIT_TEXT)
    assert toml == (
        "license-files = [\n"
        f'    {{ path = "LICENSE-MIT", hash = 0x{expected_hash:08x},  }},\n'
        "]"
    )


def test_multiple_files_joined_with_and(tmp_path):
    krate = make_crate(tmp_path, {"LICENSE-A": MIT_TEXT, "LICENSE-B": MIT_TEXT})
    store = mit_store()
    store.add("Zlib", "zlib zlib totally different words here for zlib license")
    _, expr, labels = LicensePack.read(krate).get_expression(krate, 0, store, 0.8)
    assert labels == []
    assert [str(r) for r in expr.requirements()] == ["MIT", "MIT"]


def test_unknown_spdx_identifier(tmp_path):
    krate = make_crate(tmp_path, {"LICENSE": MIT_TEXT})
    store = LicenseStore(0.5)
    store.add("Custom", MIT_TEXT)
    toml, expr, labels = LicensePack.read(krate).get_expression(krate, 7, store, 0.8)
    assert expr is None
    assert len(labels) == 1
    label = labels[0]
    assert label.message == "unknown SPDX identifier"
    assert label.file_id == 7
    assert not label.is_primary
    assert toml[label.span.start : label.span.stop] == "Custom"
    assert "score = 1.00" in toml


def test_low_confidence_with_guess(tmp_path):
    krate = make_crate(tmp_path, {"LICENSE": MIT_TEXT + "extra appended words\n"})
    toml, expr, labels = LicensePack.read(krate).get_expression(krate, 0, mit_store(), 0.99)
    assert expr is None
    assert [lb.message for lb in labels] == ["low confidence in the license text"]
    score = float(toml[labels[0].span.start : labels[0].span.stop])
    assert 0.5 <= score < 0.99
    assert 'license = "MIT"' in toml


def test_no_match_at_all(tmp_path):
    krate = make_crate(tmp_path, {"LICENSE": "zzz yyy xxx www\n"})
    toml, expr, labels = LicensePack.read(krate).get_expression(krate, 0, mit_store(), 0.8)
    assert expr is None
    assert labels[0].message == "low confidence in the license text"
    assert toml[labels[0].span.start : labels[0].span.stop] == "0.00"
    assert "license =" not in toml


def test_unreadable_file_label(tmp_path):
    krate = make_crate(tmp_path, {"LICENSE-MIT": MIT_TEXT}, "COPYING")
    pack = LicensePack.read(krate)
    toml, expr, labels = pack.get_expression(krate, 0, mit_store(), 0.8)
    assert expr is None
    assert [lb.message for lb in labels] == ["unable to read license file"]
    bad = next(pf for pf in pack.license_files if pf.path.name == "COPYING")
    assert isinstance(bad.data, OSError)
    assert toml[labels[0].span.start : labels[0].span.stop] == str(bad.data)


def test_gather_error_label(tmp_path):
    krate = Krate("gone", "0.1.0", manifest_path=tmp_path / "gone" / "Cargo.toml")
    pack = LicensePack.read(krate)
    toml, expr, labels = pack.get_expression(krate, 2, mit_store(), 0.8)
    assert expr is None
    assert toml.startswith('license-files = "')
    assert labels[0].message == "unable to gather license files"
    assert toml[labels[0].span.start : labels[0].span.stop] == str(pack.err)


def test_pack_file_holds_error_or_contents(tmp_path):
    pf = PackFile(tmp_path / "LICENSE", LicenseFile(license_hash(""), ""))
    assert pf.data.hash == 0x02CC5D05