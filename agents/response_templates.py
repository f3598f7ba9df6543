"""Intent-keyed reply templates and recommended actions."""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from config.locale import LocaleConfig, get_locale
from schemas.collaborators import PatientContext
from schemas.intent import IntentType
from schemas.responses import Priority, ResponseAction, ResponseKind

logger = logging.getLogger(__name__)


class TemplateEntry(BaseModel):
    """How an intent is answered."""
    template_key: str
    generative_allowed: bool = True
    priority: Priority = Priority.LOW
    kind: ResponseKind = ResponseKind.AUTO_REPLY
    actions: list[ResponseAction] = Field(default_factory=list)


INTENT_TEMPLATES: dict[IntentType, TemplateEntry] = {
    # Compliance-critical: always the fixed wording
    IntentType.ACCEPT: TemplateEntry(
        template_key="accept",
        generative_allowed=False,
        priority=Priority.MEDIUM,
        actions=[
            ResponseAction(type="update_patient_status", data={"verification_status": "verified"}),
            ResponseAction(type="log_verification_event", data={"result": "accepted"}),
        ],
    ),
    IntentType.DECLINE: TemplateEntry(
        template_key="decline",
        generative_allowed=False,
        priority=Priority.MEDIUM,
        actions=[
            ResponseAction(type="update_patient_status", data={"verification_status": "declined"}),
            ResponseAction(type="log_verification_event", data={"result": "declined"}),
        ],
    ),
    IntentType.UNSUBSCRIBE: TemplateEntry(
        template_key="unsubscribe",
        generative_allowed=False,
        priority=Priority.HIGH,
        actions=[
            ResponseAction(type="deactivate_reminders"),
            ResponseAction(type="update_patient_status", data={"verification_status": "unsubscribed"}),
        ],
    ),
    IntentType.CONFIRM_TAKEN: TemplateEntry(
        template_key="confirm_taken",
        actions=[ResponseAction(type="log_confirmation", data={"status": "taken"})],
    ),
    IntentType.CONFIRM_MISSED: TemplateEntry(
        template_key="confirm_missed",
        priority=Priority.MEDIUM,
        actions=[
            ResponseAction(type="log_confirmation", data={"status": "missed"}),
            ResponseAction(type="send_followup", data={"reason": "missed_medication"}),
        ],
    ),
    IntentType.CONFIRM_LATER: TemplateEntry(
        template_key="confirm_later",
        actions=[
            ResponseAction(type="log_confirmation", data={"status": "later"}),
            ResponseAction(type="send_followup", data={"delay_minutes": 30}),
        ],
    ),
    IntentType.EMERGENCY: TemplateEntry(
        template_key="emergency",
        generative_allowed=False,
        priority=Priority.URGENT,
        kind=ResponseKind.ESCALATION,
        actions=[ResponseAction(type="notify_volunteer", data={"priority": "urgent"})],
    ),
    IntentType.REMINDER_INQUIRY: TemplateEntry(template_key="reminder_inquiry"),
    IntentType.INQUIRY: TemplateEntry(template_key="medium_confidence"),
    IntentType.UNKNOWN: TemplateEntry(template_key="default"),
}

LOW_CONFIDENCE_ENTRY = TemplateEntry(
    template_key="low_confidence",
    priority=Priority.MEDIUM,
    kind=ResponseKind.HUMAN_INTERVENTION,
    actions=[ResponseAction(type="notify_volunteer", data={"priority": "medium"})],
)

ESCALATION_ENTRY = TemplateEntry(
    template_key="escalation",
    generative_allowed=False,
    priority=Priority.HIGH,
    kind=ResponseKind.ESCALATION,
    actions=[ResponseAction(type="notify_volunteer", data={"priority": "high"})],
)


class ResponseTemplates:
    """Renders localized templates for intents."""

    def __init__(self, locale: Optional[LocaleConfig] = None):
        self.locale = locale or get_locale()

    def entry(self, intent: IntentType) -> TemplateEntry:
        return INTENT_TEMPLATES.get(intent, INTENT_TEMPLATES[IntentType.UNKNOWN])

    def generative_allowed(self, intent: IntentType) -> bool:
        return self.entry(intent).generative_allowed

    def render(self, entry: TemplateEntry, patient: Optional[PatientContext] = None) -> str:
        if entry.template_key == "reminder_inquiry":
            return self.render_reminder_inquiry(patient)
        return self.locale.template(entry.template_key)

    def render_intent(self, intent: IntentType, patient: Optional[PatientContext] = None) -> str:
        return self.render(self.entry(intent), patient)

    def render_reminder_inquiry(self, patient: Optional[PatientContext]) -> str:
        """List today's and other active reminders."""
        if patient is None or not patient.active_reminders:
            return self.locale.template("reminder_inquiry_empty")

        def line(reminder) -> str:
            name = reminder.medication_name or reminder.message or "Obat"
            when = f" - {reminder.scheduled_time}" if reminder.scheduled_time else ""
            return f"- {name}{when}"

        lines = [self.locale.template("reminder_inquiry_header")]
        today = patient.todays_reminders
        if today:
            lines.append(self.locale.template("reminder_inquiry_today"))
            lines.extend(line(r) for r in today)
        others = [r for r in patient.active_reminders if not r.is_today]
        if others:
            lines.append(self.locale.template("reminder_inquiry_active"))
            lines.extend(line(r) for r in others)
        return "\n".join(lines)
