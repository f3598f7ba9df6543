"""Output validation for natural-language patient replies."""

import logging
import re
from typing import Optional

from pydantic import BaseModel, Field

from config.locale import LocaleConfig, get_locale
from utils.text import contains_phrase, words

logger = logging.getLogger(__name__)

# Hiragana, katakana, CJK ideographs, hangul
CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")


class ValidationResult(BaseModel):
    is_valid: bool = True
    reasons: list[str] = Field(default_factory=list)


class LanguageValidator:
    """Checks a reply is in the patient's language."""

    def __init__(self, locale: Optional[LocaleConfig] = None):
        self.locale = locale or get_locale()
        self.config = self.locale.validation

    def validate(self, text: str) -> ValidationResult:
        reasons = []
        if not text or not text.strip():
            return ValidationResult(is_valid=False, reasons=["empty response"])

        if CJK_RE.search(text):
            reasons.append("contains CJK script")

        tokens = words(text)
        if tokens:
            english = sum(1 for t in tokens if t in self.config.english_markers)
            ratio = english / len(tokens)
            if ratio > self.config.max_english_ratio:
                reasons.append(f"mostly English ({ratio:.0%} English markers)")

            if len(tokens) >= self.config.min_words_for_marker_check:
                normalized = " ".join(tokens)
                if not any(contains_phrase(normalized, m) for m in self.config.markers):
                    reasons.append(f"no {self.locale.locale} language markers")

        if reasons:
            logger.warning(f"Reply failed language validation: {reasons}")
        return ValidationResult(is_valid=not reasons, reasons=reasons)
