"""End-to-end tests for the message processing pipeline."""

import gc
import sqlite3
import threading
from unittest.mock import Mock, patch

import pytest

from llm.errors import TransientLLMError
from orchestrator import MessageProcessor
from schemas.collaborators import DeliveryResult, InboundMessage
from schemas.conversation import ContextType, Direction
from schemas.intent import IntentType
from schemas.responses import Priority, ResponseKind

from conftest import FailingLLMClient, ScriptedLLMClient, PENDING_PHONE, VERIFIED_PHONE

GENERATED_REPLY = "Bagus Ibu Sari, terima kasih sudah minum obat. Semoga sehat selalu ya."


class TestMessageProcessor:
    """Pipeline behavior per context."""

    @pytest.fixture(autouse=True)
    def _wire(self, settings, directory, notifier, retry_queue):
        self.settings = settings
        self.directory = directory
        self.notifier = notifier
        self.retry_queue = retry_queue
        self.processors = []
        yield
        for processor in self.processors:
            processor.close()

    def build(self, client=None, transport=None) -> MessageProcessor:
        processor = MessageProcessor(
            settings=self.settings,
            llm_client=client,
            patient_lookup=self.directory,
            notifier=self.notifier,
            retry_queue=self.retry_queue,
            transport=transport,
            sleep=lambda seconds: None,
        )
        self.processors.append(processor)
        return processor

    # Verification

    def test_verification_accept_is_deterministic(self):
        client = ScriptedLLMClient([])
        processor = self.build(client)

        result = processor.process_message(InboundMessage(phone_number=PENDING_PHONE, message="Ya"))

        assert client.call_count == 0
        assert result.intent.intent == IntentType.ACCEPT
        assert result.intent.confidence == 1.0
        assert result.response.template_key == "accept"
        assert result.response.generated is False
        assert result.response.message == processor.locale.templates["accept"]
        assert any(a.type == "update_patient_status" for a in result.response.actions)

        state = processor.store.get(result.conversation_id)
        assert state.current_context == ContextType.GENERAL_INQUIRY
        assert state.message_count == 1

    def test_verification_accept_with_tolong_is_not_an_emergency_reply(self):
        client = ScriptedLLMClient([])
        processor = self.build(client)

        result = processor.process_message(InboundMessage(phone_number=PENDING_PHONE, message="Ya, tolong"))
        processor.close()

        assert client.call_count == 0
        assert result.intent.intent == IntentType.ACCEPT
        assert result.intent.confidence == 1.0
        assert result.response.template_key == "accept"
        assert result.response.message == processor.locale.templates["accept"]
        assert processor.store.get(result.conversation_id).current_context == ContextType.GENERAL_INQUIRY

        # The short help message still reaches a human
        assert result.escalated is True
        assert result.escalation_reason == "emergency_detection"
        assert self.notifier.notifications[0].intent == "emergency"

    def test_verification_decline(self):
        client = ScriptedLLMClient([])
        processor = self.build(client)

        result = processor.process_message(InboundMessage(phone_number=PENDING_PHONE, message="tidak mau"))

        assert client.call_count == 0
        assert result.intent.intent == IntentType.DECLINE
        assert result.response.template_key == "decline"

    def test_verified_patient_leaves_stale_verification(self):
        processor = self.build()
        stale = processor.store.get_or_create("patient-verified", VERIFIED_PHONE, ContextType.VERIFICATION)

        result = processor.process_message(InboundMessage(phone_number=VERIFIED_PHONE, message="terima kasih"))

        assert result.conversation_id == stale.id
        assert processor.store.get(stale.id).current_context == ContextType.GENERAL_INQUIRY
        assert result.response.template_key == "default"

    # Provider outage

    def test_unsubscribe_uses_template_when_provider_is_down(self):
        client = FailingLLMClient(TransientLLMError("timeout"))
        processor = self.build(client)

        result = processor.process_message(InboundMessage(phone_number=VERIFIED_PHONE, message="STOP"))

        assert result.intent.intent == IntentType.UNSUBSCRIBE
        assert result.intent.confidence == 0.9
        assert result.response.template_key == "unsubscribe"
        assert result.response.generated is False
        assert result.response.priority == Priority.HIGH
        assert len(self.retry_queue) == 1

    def test_confirmation_falls_back_to_template_when_provider_is_down(self):
        client = FailingLLMClient(TransientLLMError("503 service unavailable"))
        processor = self.build(client)
        state = processor.store.get_or_create(
            "patient-verified", VERIFIED_PHONE, ContextType.REMINDER_CONFIRMATION
        )

        result = processor.process_message(InboundMessage(phone_number=VERIFIED_PHONE, message="udh minum obat"))

        assert result.normalized_message == "sudah minum obat"
        assert result.intent.intent == IntentType.CONFIRM_TAKEN
        assert result.response.message == processor.locale.templates["confirm_taken"]
        assert result.escalated is False
        assert processor.store.get(state.id).current_context == ContextType.GENERAL_INQUIRY

    # Generated replies

    def test_confirmation_gets_generated_reply(self):
        client = ScriptedLLMClient([
            '{"intent": "confirm_taken", "confidence": 0.95, "entities": {}, "reasoning": "sudah minum"}',
            GENERATED_REPLY,
        ])
        processor = self.build(client)
        state = processor.store.get_or_create(
            "patient-verified", VERIFIED_PHONE, ContextType.REMINDER_CONFIRMATION
        )

        result = processor.process_message(InboundMessage(phone_number=VERIFIED_PHONE, message="sudah minum obat"))

        assert client.call_count == 2
        assert result.intent.intent == IntentType.CONFIRM_TAKEN
        assert result.response.generated is True
        assert result.response.message == GENERATED_REPLY
        assert result.response.generation.model == "scripted-model"

        history = processor.store.history(state.id)
        assert [m.direction for m in history] == [Direction.INBOUND, Direction.OUTBOUND]
        assert history[0].confidence == 95
        assert history[1].llm_model == "scripted-model"
        assert processor.store.get(state.id).current_context == ContextType.GENERAL_INQUIRY

    def test_reminder_inquiry_lists_patient_reminders(self):
        processor = self.build()

        result = processor.process_message(
            InboundMessage(phone_number=VERIFIED_PHONE, message="jadwal obat hari ini")
        )

        assert result.intent.intent == IntentType.REMINDER_INQUIRY
        assert "Paracetamol" in result.response.message
        assert "Morfin" in result.response.message

    # Safety and escalation

    def test_emergency_escalates_urgently(self):
        client = ScriptedLLMClient([])
        processor = self.build(client)

        result = processor.process_message(
            InboundMessage(phone_number=VERIFIED_PHONE, message="saya merasa sangat sesak napas tolong")
        )
        processor.close()

        assert client.call_count == 0
        assert result.intent.intent == IntentType.EMERGENCY
        assert result.response.template_key == "emergency"
        assert result.response.priority == Priority.URGENT
        assert result.response.type == ResponseKind.ESCALATION
        assert result.escalated is True
        assert result.escalation_reason == "emergency_detection"
        assert result.requires_human_intervention is True

        assert len(self.notifier.notifications) == 1
        assert self.notifier.notifications[0].priority == "urgent"

    def test_low_confidence_asks_for_clarification_and_escalates(self):
        processor = self.build()
        state = processor.store.get_or_create(
            "patient-verified", VERIFIED_PHONE, ContextType.REMINDER_CONFIRMATION
        )

        result = processor.process_message(InboundMessage(phone_number=VERIFIED_PHONE, message="hmm"))
        processor.close()

        assert result.intent.intent == IntentType.UNKNOWN
        assert result.response.template_key == "low_confidence"
        assert result.response.type == ResponseKind.HUMAN_INTERVENTION
        assert result.escalated is True
        assert result.escalation_reason == "low_confidence"

        updated = processor.store.get(state.id)
        assert updated.attempt_count == 1
        assert updated.last_clarification_sent_at is not None
        assert updated.current_context == ContextType.REMINDER_CONFIRMATION

        assert self.notifier.notifications[0].reason == "low_confidence"
        assert self.notifier.notifications[0].priority == "medium"

    def test_abusive_message_gets_escalation_template(self):
        processor = self.build()

        result = processor.process_message(InboundMessage(phone_number=VERIFIED_PHONE, message="kontol"))

        assert result.response.template_key == "escalation"
        assert result.escalation_reason == "inappropriate_content"

    # Unknown senders and failures

    def test_unknown_sender_gets_default_reply(self):
        processor = self.build()

        result = processor.process_message(InboundMessage(phone_number="089999999999", message="halo"))

        assert result.patient_id == "phone:6289999999999"
        assert result.response.template_key == "default"

    def test_unknown_sender_keeps_one_conversation_across_spellings(self):
        processor = self.build()

        first = processor.process_message(InboundMessage(phone_number="081355550000", message="halo"))
        second = processor.process_message(InboundMessage(phone_number="6281355550000", message="halo lagi"))

        assert first.patient_id == second.patient_id == "phone:6281355550000"
        assert first.conversation_id == second.conversation_id
        assert processor.store.get(first.conversation_id).message_count == 2
        assert processor.store.stats(first.patient_id).active_conversations == 1

    def test_patient_locks_are_released_after_processing(self):
        processor = self.build()

        processor.process_message(InboundMessage(phone_number="089999999999", message="halo"))
        gc.collect()

        assert len(processor._patient_locks) == 0

    def test_persist_failure_queues_patient_message(self):
        processor = self.build()

        with patch.object(processor.store, "append_message", side_effect=sqlite3.OperationalError("database is locked")):
            result = processor.process_message(InboundMessage(phone_number=VERIFIED_PHONE, message="halo"))

        assert result.response.message
        assert len(self.retry_queue) == 1
        queued = self.retry_queue.pending()[0]
        assert queued.message == "halo"
        assert queued.metadata["failure_reason"].startswith("persist_failed")

    def test_handle_queues_failed_delivery(self):
        transport = Mock()
        transport.send.return_value = DeliveryResult(success=False, error="gateway down")
        processor = self.build(transport=transport)

        result = processor.handle(InboundMessage(phone_number=VERIFIED_PHONE, message="halo"))

        transport.send.assert_called_once_with(VERIFIED_PHONE, result.response.message)
        queued = self.retry_queue.pending()[0]
        assert queued.message == result.response.message
        assert queued.metadata["failure_reason"] == "delivery_failed: gateway down"

    def test_handle_sends_reply(self):
        transport = Mock()
        transport.send.return_value = DeliveryResult(success=True, message_id="m1")
        processor = self.build(transport=transport)

        processor.handle(InboundMessage(phone_number=VERIFIED_PHONE, message="halo"))

        transport.send.assert_called_once()
        assert len(self.retry_queue) == 0

    def test_same_patient_messages_are_serialized(self):
        processor = self.build()

        def send():
            processor.process_message(InboundMessage(phone_number=VERIFIED_PHONE, message="halo"))

        threads = [threading.Thread(target=send) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = processor.store.find_by_phone_number(VERIFIED_PHONE)
        assert state.message_count == 5
        assert processor.store.stats("patient-verified").total_conversations == 1

    def test_sweep_expired(self):
        processor = self.build()
        processor.process_message(InboundMessage(phone_number=VERIFIED_PHONE, message="halo"))
        assert processor.sweep_expired() == 0
