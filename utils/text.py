"""Word-bounded phrase matching shared by classifiers and filters."""

import re
from functools import lru_cache
from typing import Iterable

WORD_RE = re.compile(r"[^\W\d_]+", re.UNICODE)


@lru_cache(maxsize=4096)
def phrase_pattern(phrase: str) -> re.Pattern:
    """Case-insensitive pattern matching `phrase` on word boundaries."""
    escaped = r"\s+".join(re.escape(part) for part in phrase.lower().split())
    return re.compile(rf"(?<!\w){escaped}(?!\w)", re.IGNORECASE)


def contains_phrase(text: str, phrase: str) -> bool:
    return phrase_pattern(phrase).search(text) is not None


def find_phrases(text: str, phrases: Iterable[str]) -> list[str]:
    """Phrases from the list that occur in text, in list order."""
    return [p for p in phrases if contains_phrase(text, p)]


def find_spans(text: str, phrase: str) -> list[tuple[int, int]]:
    return [m.span() for m in phrase_pattern(phrase).finditer(text)]


def words(text: str) -> list[str]:
    """Lowercased alphabetic tokens."""
    return [w.lower() for w in WORD_RE.findall(text)]
