"""Provider-backed intent detection with keyword fallback."""

import logging
from typing import Optional

from llm.prompts import PromptContext
from llm.service import LLMService
from schemas.intent import IntentType, MessageEntity, MessageIntent
from .entity_extractor import EntityExtractor
from .keyword_classifier import KeywordIntentClassifier

logger = logging.getLogger(__name__)


class IntentDetector:
    """
    Classifies a normalized message.

    Uses the provider when one is configured; any provider failure (usage
    block, open circuit, exhausted retries, permanent rejection) falls back
    to the deterministic keyword scorer.
    """

    def __init__(
        self,
        classifier: KeywordIntentClassifier,
        extractor: EntityExtractor,
        llm_service: Optional[LLMService] = None,
    ):
        self.classifier = classifier
        self.extractor = extractor
        self.llm_service = llm_service

    def detect(self, message: str, context: PromptContext) -> tuple[MessageIntent, bool]:
        """
        Classify a message.

        Args:
            message: Normalized patient message
            context: Prompt context for the provider

        Returns:
            (MessageIntent, whether the provider produced it)
        """
        entities = self.extractor.extract(message)

        if self.llm_service is not None:
            try:
                detection = self.llm_service.detect_intent(message, context)
                for key, value in detection.entities.items():
                    if value not in (None, "", [], {}):
                        entities.append(MessageEntity(type=str(key), value=str(value), confidence=detection.confidence))
                return MessageIntent(
                    intent=detection.intent,
                    confidence=detection.confidence,
                    entities=entities,
                ), True
            except Exception as e:
                logger.warning(f"LLM intent detection failed, falling back to keywords: {e}")

        fallback = self.classifier.classify(message)
        logger.info(f"Keyword intent: {fallback.intent.value} ({fallback.confidence:.2f})")
        return MessageIntent(
            intent=fallback.intent,
            confidence=fallback.confidence,
            entities=entities,
        ), False

    @staticmethod
    def is_inconclusive(intent: MessageIntent, threshold: float) -> bool:
        return intent.intent in (IntentType.UNKNOWN, IntentType.INQUIRY) or intent.confidence < threshold
