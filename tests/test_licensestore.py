import pytest

from cratewarden.licensestore import LicenseMatch, LicenseStore, TextData

MIT_TEXT = (
    "The lighthouse keeper climbed the stairs, trimmed the wick, "
    "and polished the lens for passing ships, every single evening."
)
ZLIB_TEXT = (
    "A small bakery on the corner sells warm bread each morning. "
    "Customers queue early for rye loaves and sweet buns."
)


def _store():
    store = LicenseStore()
    store.add("MIT", MIT_TEXT)
    store.add("Zlib", ZLIB_TEXT)
    return store


def test_identical_text_is_identified():
    match = _store().scan(MIT_TEXT)
    assert match == LicenseMatch(1.0, "MIT")


def test_case_punctuation_and_line_endings_are_ignored():
    variant = MIT_TEXT.upper().replace(", ", ",\r\n")
    assert _store().scan(variant).license == "MIT"


def test_unrelated_text_is_not_identified():
    match = _store().scan("completely different words about cooking pasta")
    assert match.license is None
    assert match.score < 0.5


def test_empty_store_reports_nothing():
    store = LicenseStore()
    assert len(store) == 0
    assert store.scan(MIT_TEXT) == LicenseMatch(0.0, None)


def test_add_replaces_existing_name():
    store = _store()
    store.add("MIT", ZLIB_TEXT)
    assert len(store) == 2
    assert store.scan(ZLIB_TEXT).license == "MIT"


def test_threshold_is_inclusive():
    store = LicenseStore()
    store.add("x", "a b c")
    assert store.scan("a b d") == LicenseMatch(0.5, "x")


def test_higher_threshold_withholds_name_but_keeps_score():
    store = LicenseStore(confidence_threshold=0.6)
    store.add("x", "a b c")
    match = store.scan(TextData("a b d"))
    assert match.license is None
    assert match.score == pytest.approx(0.5)


def test_threshold_must_be_in_range():
    with pytest.raises(ValueError):
        LicenseStore(confidence_threshold=1.5)


def test_similarity_is_symmetric_and_bounded():
    a, b = TextData(MIT_TEXT), TextData(ZLIB_TEXT)
    assert a.similarity(b) == b.similarity(a)
    assert 0.0 <= a.similarity(b) < 1.0
    assert a.similarity(a) == 1.0


def test_empty_text_has_no_similarity():
    assert TextData("").similarity(TextData("")) == 0.0
    assert TextData("...").similarity(TextData(MIT_TEXT)) == 0.0