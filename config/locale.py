"""Locale data (keywords, safety patterns, templates) loaded from YAML."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

LOCALES_DIR = Path(__file__).parent / "locales"


class EmergencyPatterns(BaseModel):
    """Weighted emergency scoring configuration."""
    weight: int = 25
    threshold: int = 25
    patterns: list[str] = Field(default_factory=list)
    pain_words: list[str] = Field(default_factory=list)
    now_words: list[str] = Field(default_factory=list)
    help_words: list[str] = Field(default_factory=list)
    short_message_length: int = 30


class SafetyPatterns(BaseModel):
    """Pattern lists keyed by severity for each violation type."""
    emergency: EmergencyPatterns = Field(default_factory=EmergencyPatterns)
    medical_advice: dict[str, list[str]] = Field(default_factory=dict)
    diagnosis: dict[str, list[str]] = Field(default_factory=dict)
    profanity: dict[str, list[str]] = Field(default_factory=dict)
    inappropriate: dict[str, list[str]] = Field(default_factory=dict)


class ValidationMarkers(BaseModel):
    """Markers used by the reply language validator."""
    markers: list[str] = Field(default_factory=list)
    english_markers: list[str] = Field(default_factory=list)
    max_english_ratio: float = 0.3
    min_words_for_marker_check: int = 4


class SentimentWords(BaseModel):
    positive: list[str] = Field(default_factory=list)
    negative: list[str] = Field(default_factory=list)


class LocaleConfig(BaseModel):
    """Everything language-specific the engine needs."""
    locale: str = "id"
    abbreviations: dict[str, str] = Field(default_factory=dict)
    negations: list[str] = Field(default_factory=list)
    keywords: dict[str, list[str]] = Field(default_factory=dict)
    unsubscribe_indicators: list[str] = Field(default_factory=list)
    unsubscribe_strict: list[str] = Field(default_factory=list)
    verification_keywords: list[str] = Field(default_factory=list)
    confirmation_keywords: list[str] = Field(default_factory=list)
    sentiment: SentimentWords = Field(default_factory=SentimentWords)
    safety: SafetyPatterns = Field(default_factory=SafetyPatterns)
    validation: ValidationMarkers = Field(default_factory=ValidationMarkers)
    templates: dict[str, str] = Field(default_factory=dict)

    def keywords_for(self, intent: str) -> list[str]:
        """Keyword list for an intent label, empty if none configured."""
        return self.keywords.get(intent, [])

    def template(self, key: str) -> str:
        """Localized template text, falling back to the default template."""
        if key in self.templates:
            return self.templates[key]
        logger.warning(f"Missing template '{key}' for locale {self.locale}, using default")
        return self.templates.get("default", "")


def load_locale(locale: str = "id", path: Optional[str] = None) -> LocaleConfig:
    """
    Load a locale file.

    Args:
        locale: Locale code, resolved to config/locales/<locale>.yaml
        path: Explicit path overriding the locale lookup

    Returns:
        Parsed LocaleConfig
    """
    locale_path = Path(path) if path else LOCALES_DIR / f"{locale}.yaml"
    with open(locale_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    logger.info(f"Loaded locale '{data.get('locale', locale)}' from {locale_path}")
    return LocaleConfig(**data)


@lru_cache(maxsize=8)
def get_locale(locale: str = "id") -> LocaleConfig:
    """Cached accessor for a bundled locale."""
    return load_locale(locale)
