"""Typo-tolerant word matching."""

from rapidfuzz.distance import Levenshtein

MAX_EDIT_DISTANCE = 2
MIN_FUZZY_LENGTH = 4


def edit_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def is_fuzzy_candidate(keyword: str, min_length: int = MIN_FUZZY_LENGTH) -> bool:
    """Only single words long enough that two edits don't change their meaning."""
    return " " not in keyword.strip() and len(keyword) >= min_length


def fuzzy_word_matches(
    tokens: list[str],
    keyword: str,
    max_distance: int = MAX_EDIT_DISTANCE,
    min_length: int = MIN_FUZZY_LENGTH,
) -> int:
    """
    Count tokens within `max_distance` edits of a keyword.

    Multi-word and short keywords never match fuzzily.
    """
    if not is_fuzzy_candidate(keyword, min_length):
        return 0
    return sum(
        1 for token in tokens
        if Levenshtein.distance(token, keyword, score_cutoff=max_distance) <= max_distance
    )
