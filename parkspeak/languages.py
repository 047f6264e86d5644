from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable


def _english_tip(word: str) -> str:
    if re.search(r"[bcdfghjklmnpqrstvwxyz]{2,}", word, flags=re.IGNORECASE):
        return f'Slow down on "{word}" and exaggerate each consonant'
    if len(word) >= 8:
        return f'Break "{word}" into syllables and say each one clearly'
    return f'Try saying "{word}" slowly and with more volume'


def _hebrew_tip(word: str) -> str:
    return f'נסה להגיד "{word}" לאט יותר, תוך הדגשת כל הברה'


def _russian_tip(word: str) -> str:
    if len(word) >= 8:
        return f'Разбейте "{word}" на слоги и произнесите каждый чётко'
    return f'Попробуйте произнести "{word}" медленно и громче'


@dataclass(frozen=True, slots=True)
class LanguageConfig:
    code: str
    label: str
    english_name: str
    rtl: bool
    tts_voice: str  # voice name understood by say/espeak
    pronunciation_tip: Callable[[str], str]


LANGUAGES: dict[str, LanguageConfig] = {
    "en": LanguageConfig("en", "English", "English", False, "en", _english_tip),
    "he": LanguageConfig("he", "עברית", "Hebrew", True, "he", _hebrew_tip),
    "ru": LanguageConfig("ru", "Русский", "Russian", False, "ru", _russian_tip),
}

LANGUAGE_ORDER: tuple[str, ...] = ("en", "he", "ru")


def resolve_language(code: str) -> str:
    key = str(code).strip().lower()
    return key if key in LANGUAGES else "en"


def next_language(current: str) -> str:
    idx = LANGUAGE_ORDER.index(resolve_language(current))
    return LANGUAGE_ORDER[(idx + 1) % len(LANGUAGE_ORDER)]
