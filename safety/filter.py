"""Pattern-based safety screening of inbound and generated text."""

import logging
import re
from typing import Optional

from config.locale import LocaleConfig, get_locale
from schemas.collaborators import EscalationRequest
from schemas.safety import (
    ViolationType,
    Severity,
    SafetyViolation,
    SafetyFilterResult,
    EmergencyDetectionResult,
    InboundSafetyAnalysis,
    SafetyContext,
)
from utils.text import contains_phrase, find_phrases, phrase_pattern
from .escalation import EscalationNotifier

logger = logging.getLogger(__name__)

DESCRIPTIONS = {
    ViolationType.MEDICAL_ADVICE: "Content contains medical advice",
    ViolationType.DIAGNOSIS: "Content contains a diagnosis",
    ViolationType.PROFANITY: "Content contains inappropriate language",
    ViolationType.INAPPROPRIATE: "Content references inappropriate topics",
}


class SafetyFilter:
    """
    Best-effort classifier for medical advice, diagnosis, emergency,
    profanity and inappropriate content.

    Stateless apart from the escalation side-effect: any high or critical
    violation, and any inbound emergency, is handed to the escalation
    notifier without blocking the caller.
    """

    def __init__(
        self,
        locale: Optional[LocaleConfig] = None,
        escalation: Optional[EscalationNotifier] = None,
    ):
        self.locale = locale or get_locale()
        self.patterns = self.locale.safety
        self.escalation = escalation

    def _scan(self, text: str, vtype: ViolationType, table: dict[str, list[str]]) -> list[SafetyViolation]:
        violations = []
        for severity_name, phrases in table.items():
            severity = Severity(severity_name)
            for phrase in find_phrases(text, phrases):
                violations.append(SafetyViolation(
                    type=vtype,
                    severity=severity,
                    description=DESCRIPTIONS[vtype],
                    matched_text=phrase,
                ))
        return violations

    def detect_medical_advice(self, text: str) -> list[SafetyViolation]:
        return (
            self._scan(text, ViolationType.MEDICAL_ADVICE, self.patterns.medical_advice)
            + self._scan(text, ViolationType.DIAGNOSIS, self.patterns.diagnosis)
        )

    def detect_profanity(self, text: str) -> list[SafetyViolation]:
        return (
            self._scan(text, ViolationType.PROFANITY, self.patterns.profanity)
            + self._scan(text, ViolationType.INAPPROPRIATE, self.patterns.inappropriate)
        )

    def detect_emergency(self, text: str) -> EmergencyDetectionResult:
        """
        Weighted emergency scoring.

        Each matched pattern adds a fixed weight; pain words together with
        urgency words and short help messages add one more indicator each.
        """
        config = self.patterns.emergency
        lowered = text.lower()
        indicators = find_phrases(lowered, config.patterns)

        has_pain = any(contains_phrase(lowered, w) for w in config.pain_words)
        has_now = any(contains_phrase(lowered, w) for w in config.now_words)
        if has_pain and has_now:
            indicators.append("pain with urgency")

        if len(text.strip()) < config.short_message_length and any(
            contains_phrase(lowered, w) for w in config.help_words
        ):
            indicators.append("short urgent message")

        score = min(len(indicators) * config.weight, 100)
        return EmergencyDetectionResult(
            is_emergency=score >= config.threshold,
            score=score,
            indicators=indicators,
        )

    @staticmethod
    def _needs_escalation(violations: list[SafetyViolation]) -> bool:
        return any(v.severity.at_least(Severity.HIGH) for v in violations)

    def filter_generated(self, text: str, context: SafetyContext) -> SafetyFilterResult:
        """
        Screen a generated reply before it reaches the patient.

        Args:
            text: Generated reply
            context: Patient the reply is addressed to

        Returns:
            SafetyFilterResult with sanitized text when violations were found
        """
        violations = self.detect_medical_advice(text) + self.detect_profanity(text)
        escalation_required = self._needs_escalation(violations)

        if violations:
            self._log_violations("llm_response", context, violations)
            if escalation_required:
                self._escalate(EscalationRequest(
                    patient_id=context.patient_id,
                    phone_number=context.phone_number,
                    message=text,
                    reason="llm_response_violation",
                    intent="safety_violation",
                    priority="high",
                    context={
                        "conversation_id": context.conversation_id,
                        "violations": [v.model_dump(mode="json") for v in violations],
                    },
                ))

        return SafetyFilterResult(
            is_safe=not violations,
            violations=violations,
            escalation_required=escalation_required,
            sanitized_text=self.sanitize(text, violations) if violations else None,
        )

    def analyze_inbound(self, text: str, context: SafetyContext) -> InboundSafetyAnalysis:
        """
        Screen a patient message for emergencies and abusive content.

        Args:
            text: Raw inbound message
            context: Sender

        Returns:
            InboundSafetyAnalysis
        """
        emergency = self.detect_emergency(text)
        violations = self.detect_profanity(text)
        escalation_required = emergency.is_emergency or self._needs_escalation(violations)

        if violations or emergency.is_emergency:
            self._log_violations("patient_message", context, violations, emergency)

        if escalation_required:
            self._escalate(EscalationRequest(
                patient_id=context.patient_id,
                phone_number=context.phone_number,
                message=text,
                reason="emergency_detection" if emergency.is_emergency else "inappropriate_content",
                intent="emergency" if emergency.is_emergency else "inappropriate",
                priority="urgent" if emergency.is_emergency else "high",
                context={
                    "conversation_id": context.conversation_id,
                    "current_context": context.current_context,
                    "violations": [v.model_dump(mode="json") for v in violations],
                    "emergency_indicators": emergency.indicators,
                },
            ))

        return InboundSafetyAnalysis(
            emergency=emergency,
            violations=violations,
            escalation_required=escalation_required,
        )

    def sanitize(self, text: str, violations: list[SafetyViolation]) -> str:
        """Replace each matched span with a typed placeholder."""
        sanitized = text
        # Longest first so overlapping phrases collapse into one placeholder
        for violation in sorted(violations, key=lambda v: len(v.matched_text or ""), reverse=True):
            if not violation.matched_text:
                continue
            placeholder = f"[{violation.type.value.upper()} REMOVED]"
            sanitized = phrase_pattern(violation.matched_text).sub(placeholder, sanitized)
        return re.sub(r"[ \t]{2,}", " ", sanitized)

    def _escalate(self, request: EscalationRequest):
        if self.escalation is None:
            logger.warning(f"No escalation notifier configured, dropping escalation for {request.patient_id}")
            return
        self.escalation.escalate(request)

    def _log_violations(
        self,
        source: str,
        context: SafetyContext,
        violations: list[SafetyViolation],
        emergency: Optional[EmergencyDetectionResult] = None,
    ):
        summary = ", ".join(f"{v.type.value}/{v.severity.value}" for v in violations) or "none"
        logger.warning(
            f"Safety violation detected in {source}: patient={context.patient_id} "
            f"violations=[{summary}] emergency={bool(emergency and emergency.is_emergency)}"
        )
