"""Deterministic keyword-based intent classification."""

import logging
from typing import Optional

from config.locale import LocaleConfig, get_locale
from schemas.intent import IntentType, MessageIntent, Sentiment
from utils.text import contains_phrase, find_spans, words
from .fuzzy import fuzzy_word_matches

logger = logging.getLogger(__name__)

EXACT_MATCH_SCORE = 10
FUZZY_WEIGHT = 0.5
FALLBACK_CONFIDENCE_CAP = 0.5

# Ties go to the earlier intent
SCORED_INTENTS = [
    IntentType.CONFIRM_TAKEN,
    IntentType.CONFIRM_MISSED,
    IntentType.CONFIRM_LATER,
    IntentType.UNSUBSCRIBE,
    IntentType.REMINDER_INQUIRY,
    IntentType.EMERGENCY,
    IntentType.INQUIRY,
]

DEFAULT_SENTIMENT = {
    IntentType.ACCEPT: Sentiment.POSITIVE,
    IntentType.CONFIRM_TAKEN: Sentiment.POSITIVE,
    IntentType.DECLINE: Sentiment.NEGATIVE,
    IntentType.CONFIRM_MISSED: Sentiment.NEGATIVE,
    IntentType.UNSUBSCRIBE: Sentiment.NEGATIVE,
}


class KeywordIntentClassifier:
    """
    Weighted keyword scorer used when provider classification is
    unavailable, and for the verification and unsubscribe fast paths.

    Score per keyword: +10 when the whole message equals it, otherwise its
    length when it occurs as a phrase, plus half its length for every
    message word within two edits of it. The best-scoring intent wins and
    confidence is score / message length, capped.
    """

    def __init__(self, locale: Optional[LocaleConfig] = None):
        self.locale = locale or get_locale()

    def keyword_score(self, message: str, keywords: list[str]) -> float:
        tokens = words(message)
        score = 0.0
        for keyword in keywords:
            if message == keyword:
                score += EXACT_MATCH_SCORE
            elif contains_phrase(message, keyword):
                score += len(keyword)
            score += fuzzy_word_matches(tokens, keyword) * len(keyword) * FUZZY_WEIGHT
        return score

    def scores(self, message: str) -> dict[IntentType, float]:
        return {
            intent: self.keyword_score(message, self.locale.keywords_for(intent.value))
            for intent in SCORED_INTENTS
        }

    def classify(self, message: str) -> MessageIntent:
        """
        Best keyword intent for a normalized message.

        Returns:
            MessageIntent; unknown with confidence 0 when nothing matched
        """
        scores = self.scores(message)
        best_intent = IntentType.UNKNOWN
        best_score = 0.0
        for intent in SCORED_INTENTS:
            if scores[intent] > best_score:
                best_intent, best_score = intent, scores[intent]

        if best_score <= 0 or not message:
            return MessageIntent(intent=IntentType.UNKNOWN, confidence=0.0)

        confidence = min(best_score / len(message), 1.0, FALLBACK_CONFIDENCE_CAP)
        logger.debug(f"Keyword intent {best_intent.value} score={best_score} confidence={confidence:.2f}")
        return MessageIntent(intent=best_intent, confidence=confidence)

    def is_accept(self, message: str) -> bool:
        """Whether a verification reply agrees. Negated accept words don't count."""
        negations = set(self.locale.negations)
        for keyword in self.locale.keywords_for(IntentType.ACCEPT.value):
            for start, _ in find_spans(message, keyword):
                preceding = words(message[:start])
                if not preceding or preceding[-1] not in negations:
                    return True
        return False

    def contains_any(self, message: str, phrases: list[str]) -> bool:
        return any(contains_phrase(message, p) for p in phrases)

    def has_unsubscribe_indicator(self, message: str) -> bool:
        return self.contains_any(message, self.locale.unsubscribe_indicators)

    def is_strict_unsubscribe(self, message: str) -> bool:
        return self.contains_any(message, self.locale.unsubscribe_strict)

    def sentiment(self, message: str, intent: IntentType) -> Sentiment:
        positive = sum(1 for w in self.locale.sentiment.positive if contains_phrase(message, w))
        negative = sum(1 for w in self.locale.sentiment.negative if contains_phrase(message, w))
        if positive > negative:
            return Sentiment.POSITIVE
        if negative > positive:
            return Sentiment.NEGATIVE
        return DEFAULT_SENTIMENT.get(intent, Sentiment.NEUTRAL)
