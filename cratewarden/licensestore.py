"""Identify licenses from their full text by n-gram similarity."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass

_WORD = re.compile(r"[a-z0-9]+")


class TextData:
    """A license text reduced to the word bigrams used to compare it."""

    def __init__(self, text: str) -> None:
        self.text = text
        words = _WORD.findall(text.lower())
        self.words = tuple(words)
        if len(words) > 1:
            self._grams: Counter[tuple[str, ...]] = Counter(zip(words, words[1:]))
        else:
            self._grams = Counter((w,) for w in words)

    def similarity(self, other: TextData) -> float:
        """Sørensen–Dice coefficient of the two texts, from 0.0 to 1.0."""
        total = sum(self._grams.values()) + sum(other._grams.values())
        if not total:
            return 0.0
        shared = sum((self._grams & other._grams).values())
        return 2.0 * shared / total


@dataclass(frozen=True)
class LicenseMatch:
    """The best score found, and the license name when it met the threshold."""

    score: float
    license: str | None = None


class LicenseStore:
    """Known license texts that unknown texts are matched against."""

    def __init__(self, confidence_threshold: float = 0.5) -> None:
        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError("confidence threshold must be between 0.0 and 1.0")
        self.confidence_threshold = confidence_threshold
        self._licenses: dict[str, TextData] = {}

    def add(self, name: str, text: str | TextData) -> None:
        """Register (or replace) the text of the license ``name``."""
        self._licenses[name] = text if isinstance(text, TextData) else TextData(text)

    def __len__(self) -> int:
        return len(self._licenses)

    def scan(self, text: str | TextData) -> LicenseMatch:
        """The closest known license; ties go to the license added first."""
        data = text if isinstance(text, TextData) else TextData(text)
        best_name: str | None = None
        best_score = 0.0
        for name, known in self._licenses.items():
            score = data.similarity(known)
            if score > best_score:
                best_name, best_score = name, score
        if best_score < self.confidence_threshold:
            return LicenseMatch(best_score, None)
        return LicenseMatch(best_score, best_name)