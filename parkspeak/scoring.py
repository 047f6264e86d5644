"""Word-level intelligibility scoring for read-aloud exercises.

Recognized text comes from an external transcription service; this module
only compares word multisets, so word order does not matter but duplicate
words must each be matched.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass

from .languages import LANGUAGES, resolve_language

_STRIP_RE = re.compile(r"[^\w\s\u0590-\u05FF\u0400-\u04FF]")


@dataclass(frozen=True, slots=True)
class WordResult:
    target_word: str
    matched: bool


def normalize_words(text: str) -> list[str]:
    cleaned = _STRIP_RE.sub("", str(text).lower())
    return [w for w in cleaned.split() if w]


def word_results(recognized: str, target: str) -> list[WordResult]:
    remaining = Counter(normalize_words(recognized))
    out: list[WordResult] = []
    for word in normalize_words(target):
        if remaining[word] > 0:
            remaining[word] -= 1
            out.append(WordResult(target_word=word, matched=True))
        else:
            out.append(WordResult(target_word=word, matched=False))
    return out


def calculate_intelligibility(recognized: str, target: str) -> int:
    """Return the percentage (0-100) of target words found in the recognized text."""

    results = word_results(recognized, target)
    if not results:
        return 0
    matches = sum(1 for r in results if r.matched)
    # Round half up.
    return int(math.floor(matches * 100 / len(results) + 0.5))


def pronunciation_tip(word: str, language: str) -> str:
    return LANGUAGES[resolve_language(language)].pronunciation_tip(word)
