"""Entity extraction from patient messages."""

import re
from typing import Optional

from config.locale import LocaleConfig, get_locale
from schemas.intent import MessageEntity
from utils.text import find_phrases

TIME_RE = re.compile(r"\b(\d{1,2}):(\d{2})\b")


class EntityExtractor:
    """Pulls HH:MM times and an emergency level out of a message."""

    def __init__(self, locale: Optional[LocaleConfig] = None):
        self.locale = locale or get_locale()

    def extract_times(self, message: str) -> list[MessageEntity]:
        entities = []
        for match in TIME_RE.finditer(message):
            hour, minute = int(match.group(1)), int(match.group(2))
            if hour < 24 and minute < 60:
                entities.append(MessageEntity(type="time", value=f"{hour:02d}:{minute:02d}"))
        return entities

    def extract(self, message: str) -> list[MessageEntity]:
        entities = self.extract_times(message)
        if find_phrases(message, self.locale.keywords_for("emergency")):
            entities.append(MessageEntity(type="emergency_level", value="high", confidence=0.8))
        return entities
