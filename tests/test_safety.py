"""Tests for the safety filter and escalation notifier."""

from unittest.mock import Mock

from collaborators.memory import LoggingNotifier
from safety.escalation import EscalationNotifier
from safety.filter import SafetyFilter
from schemas.collaborators import EscalationRequest
from schemas.safety import SafetyContext, Severity, ViolationType


class TestEmergencyDetection:
    """Test weighted emergency scoring."""

    def setup_method(self):
        self.filter = SafetyFilter()

    def test_breathing_difficulty_is_emergency(self):
        result = self.filter.detect_emergency("saya merasa sangat sesak napas tolong")
        assert result.is_emergency is True
        assert "sesak napas" in result.indicators
        assert result.score >= 25

    def test_pain_with_urgency_bonus(self):
        result = self.filter.detect_emergency("perut saya sakit, tolong datang sekarang juga ya bu")
        assert "pain with urgency" in result.indicators
        assert result.is_emergency is True

    def test_short_help_message(self):
        result = self.filter.detect_emergency("tolong!")
        assert result.indicators == ["short urgent message"]
        assert result.is_emergency is True

    def test_ordinary_message(self):
        result = self.filter.detect_emergency("saya sudah minum obat tadi pagi")
        assert result.is_emergency is False
        assert result.score == 0

    def test_score_is_capped(self):
        text = "darurat emergency sesak napas pingsan berdarah stroke koma sekarat"
        assert self.filter.detect_emergency(text).score == 100


class TestGeneratedContentFilter:
    """Test screening of generated replies."""

    def setup_method(self):
        self.notifier = LoggingNotifier()
        self.escalation = EscalationNotifier(self.notifier)
        self.filter = SafetyFilter(escalation=self.escalation)
        self.context = SafetyContext(patient_id="p1", phone_number="081234567890", conversation_id="c1")

    def teardown_method(self):
        self.escalation.shutdown()

    def test_safe_reply(self):
        result = self.filter.filter_generated("Terima kasih, semoga lekas sembuh.", self.context)
        assert result.is_safe is True
        assert result.violations == []
        assert result.escalation_required is False
        assert result.sanitized_text is None

    def test_medical_advice_is_sanitized_and_escalated(self):
        result = self.filter.filter_generated("Saya sarankan anda harus minum obat ini", self.context)

        assert result.is_safe is False
        assert result.escalation_required is True
        assert all(v.type == ViolationType.MEDICAL_ADVICE for v in result.violations)
        assert "sarankan" not in result.sanitized_text
        assert "[MEDICAL_ADVICE REMOVED]" in result.sanitized_text

        assert self.escalation.drain(timeout=5)
        assert self.notifier.notifications[0].reason == "llm_response_violation"
        assert self.notifier.notifications[0].intent == "safety_violation"
        assert self.notifier.notifications[0].priority == "high"

    def test_low_severity_is_unsafe_without_escalation(self):
        result = self.filter.filter_generated("Jadwal kemoterapi Anda dari rumah sakit.", self.context)
        assert result.is_safe is False
        assert result.escalation_required is False
        assert result.violations[0].severity == Severity.LOW

    def test_diagnosis(self):
        violations = self.filter.detect_medical_advice("Anda menderita kanker")
        assert violations[0].type == ViolationType.DIAGNOSIS
        assert violations[0].severity == Severity.HIGH


class TestInboundAnalysis:
    """Test screening of patient messages."""

    def setup_method(self):
        self.notifier = LoggingNotifier()
        self.escalation = EscalationNotifier(self.notifier)
        self.filter = SafetyFilter(escalation=self.escalation)
        self.context = SafetyContext(patient_id="p1", phone_number="081234567890")

    def teardown_method(self):
        self.escalation.shutdown()

    def test_emergency_escalates_urgently(self):
        analysis = self.filter.analyze_inbound("saya merasa sangat sesak napas tolong", self.context)

        assert analysis.is_emergency is True
        assert analysis.escalation_required is True
        assert self.escalation.drain(timeout=5)
        request = self.notifier.notifications[0]
        assert request.priority == "urgent"
        assert request.reason == "emergency_detection"
        assert request.intent == "emergency"
        assert "sesak napas" in request.context["emergency_indicators"]

    def test_medium_profanity_is_reported_not_escalated(self):
        analysis = self.filter.analyze_inbound("dasar anjing", self.context)

        assert analysis.escalation_required is False
        assert analysis.violations[0].type == ViolationType.PROFANITY
        assert self.escalation.drain(timeout=5)
        assert self.notifier.notifications == []

    def test_high_profanity_escalates(self):
        analysis = self.filter.analyze_inbound("kontol", self.context)

        assert analysis.escalation_required is True
        assert self.escalation.drain(timeout=5)
        assert self.notifier.notifications[0].reason == "inappropriate_content"
        assert self.notifier.notifications[0].intent == "inappropriate"
        assert self.notifier.notifications[0].priority == "high"


class TestEscalationNotifier:
    """Test fire-and-forget delivery."""

    def test_notifier_failure_is_swallowed(self):
        failing = Mock()
        failing.notify.side_effect = RuntimeError("gateway down")
        escalation = EscalationNotifier(failing)

        future = escalation.escalate(EscalationRequest(patient_id="p1", message="x", reason="test"))

        assert future.result(timeout=5) is None
        assert escalation.drain(timeout=5) is True
        failing.notify.assert_called_once()
        escalation.shutdown()
