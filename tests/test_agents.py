"""Tests for message understanding agents."""

from unittest.mock import Mock

from agents.entity_extractor import EntityExtractor
from agents.fuzzy import edit_distance, fuzzy_word_matches, is_fuzzy_candidate
from agents.intent_detector import IntentDetector
from agents.keyword_classifier import KeywordIntentClassifier, FALLBACK_CONFIDENCE_CAP
from agents.normalizer import MessageNormalizer
from agents.response_templates import ResponseTemplates
from llm.errors import TransientLLMError
from llm.prompts import PromptContext
from schemas.intent import IntentDetectionResult, IntentType, MessageIntent, Sentiment
from schemas.responses import Priority, ResponseKind

from conftest import make_patient
from schemas.collaborators import ReminderInfo


class TestMessageNormalizer:
    """Test normalization."""

    def setup_method(self):
        self.normalizer = MessageNormalizer()

    def test_lowercases_and_expands_abbreviations(self):
        assert self.normalizer.normalize("  Udh   MINUM obat!!  ") == "sudah minum obat"

    def test_expands_negation_slang(self):
        assert self.normalizer.normalize("Gak mau") == "tidak mau"

    def test_keeps_words_containing_abbreviations(self):
        # "ga" inside "harga" is not a token of its own
        assert self.normalizer.normalize("harga obat") == "harga obat"

    def test_empty(self):
        assert self.normalizer.normalize("") == ""


class TestFuzzyMatching:
    """Test typo tolerance."""

    def test_edit_distance(self):
        assert edit_distance("sudah", "sudaah") == 1

    def test_short_and_multi_word_keywords_are_not_fuzzy(self):
        assert is_fuzzy_candidate("ya") is False
        assert is_fuzzy_candidate("sudah minum") is False
        assert is_fuzzy_candidate("sudah") is True

    def test_counts_tokens_within_two_edits(self):
        assert fuzzy_word_matches(["sudaah", "minum"], "sudah") == 1
        assert fuzzy_word_matches(["mana"], "sudah") == 0


class TestKeywordIntentClassifier:
    """Test keyword fallback classification."""

    def setup_method(self):
        self.classifier = KeywordIntentClassifier()

    def test_confirm_taken(self):
        result = self.classifier.classify("sudah minum obat")
        assert result.intent == IntentType.CONFIRM_TAKEN
        assert result.confidence == FALLBACK_CONFIDENCE_CAP

    def test_typo_still_matches(self):
        result = self.classifier.classify("sudaah")
        assert result.intent == IntentType.CONFIRM_TAKEN
        assert 0 < result.confidence <= FALLBACK_CONFIDENCE_CAP

    def test_nothing_matched_is_unknown(self):
        result = self.classifier.classify("hmm")
        assert result.intent == IntentType.UNKNOWN
        assert result.confidence == 0.0

    def test_confidence_never_exceeds_cap(self):
        result = self.classifier.classify("stop")
        assert result.intent == IntentType.UNSUBSCRIBE
        assert result.confidence <= FALLBACK_CONFIDENCE_CAP

    def test_keywords_match_on_word_boundaries(self):
        # "ya" inside "saya" must not count as agreement
        assert self.classifier.is_accept("saya") is False

    def test_accept(self):
        assert self.classifier.is_accept("ya") is True
        assert self.classifier.is_accept("iya boleh") is True
        assert self.classifier.is_accept("ok siap") is True

    def test_negated_accept_is_decline(self):
        assert self.classifier.is_accept("tidak mau") is False
        assert self.classifier.is_accept("belum bisa") is False
        assert self.classifier.is_accept("tidak") is False

    def test_unsubscribe_indicators(self):
        assert self.classifier.has_unsubscribe_indicator("tolong hentikan pengingat") is True
        assert self.classifier.is_strict_unsubscribe("tolong hentikan pengingat") is True

        assert self.classifier.has_unsubscribe_indicator("saya sudah sembuh") is True
        assert self.classifier.is_strict_unsubscribe("saya sudah sembuh") is False

    def test_sentiment(self):
        assert self.classifier.sentiment("terima kasih bagus", IntentType.INQUIRY) == Sentiment.POSITIVE
        assert self.classifier.sentiment("saya kecewa", IntentType.INQUIRY) == Sentiment.NEGATIVE
        assert self.classifier.sentiment("ok", IntentType.ACCEPT) == Sentiment.POSITIVE
        assert self.classifier.sentiment("hmm", IntentType.UNKNOWN) == Sentiment.NEUTRAL

    def test_emergency_defaults_to_neutral_sentiment(self):
        assert self.classifier.sentiment("xyz", IntentType.EMERGENCY) == Sentiment.NEUTRAL


class TestEntityExtractor:
    """Test entity extraction."""

    def setup_method(self):
        self.extractor = EntityExtractor()

    def test_extracts_times(self):
        entities = self.extractor.extract("minum obat jam 8:05 dan 20:30")
        assert [e.value for e in entities if e.type == "time"] == ["08:05", "20:30"]

    def test_rejects_invalid_times(self):
        assert self.extractor.extract_times("jam 25:00") == []

    def test_emergency_level(self):
        entities = self.extractor.extract("kepala saya sakit sekali")
        assert any(e.type == "emergency_level" and e.value == "high" for e in entities)


class TestResponseTemplates:
    """Test template selection and rendering."""

    def setup_method(self):
        self.templates = ResponseTemplates()

    def test_compliance_intents_are_template_only(self):
        for intent in (IntentType.ACCEPT, IntentType.DECLINE, IntentType.UNSUBSCRIBE, IntentType.EMERGENCY):
            assert self.templates.generative_allowed(intent) is False
        assert self.templates.generative_allowed(IntentType.CONFIRM_TAKEN) is True

    def test_emergency_entry(self):
        entry = self.templates.entry(IntentType.EMERGENCY)
        assert entry.priority == Priority.URGENT
        assert entry.kind == ResponseKind.ESCALATION
        assert entry.actions[0].type == "notify_volunteer"

    def test_render_accept(self):
        assert self.templates.render_intent(IntentType.ACCEPT) == self.templates.locale.templates["accept"]

    def test_reminder_inquiry_lists_reminders(self):
        patient = make_patient(
            "081234567890",
            "verified",
            "p1",
            reminders=[
                ReminderInfo(id="r1", medication_name="Paracetamol", scheduled_time="08:00", is_today=True),
                ReminderInfo(id="r2", medication_name="Morfin", scheduled_time="20:00"),
            ],
        )
        text = self.templates.render_intent(IntentType.REMINDER_INQUIRY, patient)

        lines = text.split("\n")
        assert lines[0] == "Berikut pengingat obat Anda:"
        assert "Hari ini:" in lines
        assert "- Paracetamol - 08:00" in lines
        assert "Pengingat aktif:" in lines
        assert "- Morfin - 20:00" in lines

    def test_reminder_inquiry_without_reminders(self):
        text = self.templates.render_intent(IntentType.REMINDER_INQUIRY, None)
        assert text == "Saat ini tidak ada pengingat obat yang aktif."


class TestIntentDetector:
    """Test provider-first detection with keyword fallback."""

    def setup_method(self):
        self.context = PromptContext(patient_id="p1", phone_number="081234567890")
        self.classifier = KeywordIntentClassifier()
        self.extractor = EntityExtractor()

    def test_keyword_fallback_without_provider(self):
        detector = IntentDetector(self.classifier, self.extractor)

        intent, used_llm = detector.detect("sudah minum obat", self.context)

        assert used_llm is False
        assert intent.intent == IntentType.CONFIRM_TAKEN

    def test_provider_result_is_used(self):
        service = Mock()
        service.detect_intent.return_value = IntentDetectionResult(
            intent=IntentType.CONFIRM_LATER,
            confidence=0.9,
            entities={"time": "20:00"},
        )
        detector = IntentDetector(self.classifier, self.extractor, service)

        intent, used_llm = detector.detect("nanti jam 20:00", self.context)

        assert used_llm is True
        assert intent.intent == IntentType.CONFIRM_LATER
        assert intent.confidence == 0.9
        assert any(e.type == "time" and e.value == "20:00" for e in intent.entities)

    def test_provider_failure_falls_back(self):
        service = Mock()
        service.detect_intent.side_effect = TransientLLMError("timeout")
        detector = IntentDetector(self.classifier, self.extractor, service)

        intent, used_llm = detector.detect("sudah minum obat", self.context)

        assert used_llm is False
        assert intent.intent == IntentType.CONFIRM_TAKEN

    def test_inconclusive(self):
        assert IntentDetector.is_inconclusive(MessageIntent(intent=IntentType.UNKNOWN, confidence=0.9), 0.6)
        assert IntentDetector.is_inconclusive(MessageIntent(intent=IntentType.INQUIRY, confidence=0.9), 0.6)
        assert IntentDetector.is_inconclusive(MessageIntent(intent=IntentType.UNSUBSCRIBE, confidence=0.5), 0.6)
        assert not IntentDetector.is_inconclusive(MessageIntent(intent=IntentType.UNSUBSCRIBE, confidence=0.8), 0.6)
