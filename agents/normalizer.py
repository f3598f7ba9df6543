"""Inbound message normalization."""

import re
from typing import Optional

from config.locale import LocaleConfig, get_locale

WHITESPACE_RE = re.compile(r"\s+")
TRAILING_PUNCTUATION_RE = re.compile(r"[\s.,!?;:~]+$")
TOKEN_RE = re.compile(r"\b(\w+)\b", re.UNICODE)


class MessageNormalizer:
    """Lowercase, collapse whitespace, strip trailing punctuation, expand abbreviations."""

    def __init__(self, locale: Optional[LocaleConfig] = None):
        self.locale = locale or get_locale()
        self.abbreviations = self.locale.abbreviations

    def normalize(self, text: str) -> str:
        normalized = WHITESPACE_RE.sub(" ", (text or "").lower()).strip()
        normalized = TRAILING_PUNCTUATION_RE.sub("", normalized)
        return TOKEN_RE.sub(lambda m: self.abbreviations.get(m.group(1), m.group(1)), normalized)
