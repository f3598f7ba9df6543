"""Message understanding agents for the patient messaging engine."""

from .normalizer import MessageNormalizer
from .keyword_classifier import KeywordIntentClassifier
from .entity_extractor import EntityExtractor
from .response_templates import ResponseTemplates, TemplateEntry
from .intent_detector import IntentDetector

__all__ = [
    "MessageNormalizer",
    "KeywordIntentClassifier",
    "EntityExtractor",
    "ResponseTemplates",
    "TemplateEntry",
    "IntentDetector",
]
