"""Tests for the SQLite conversation state store."""

import threading
from datetime import timedelta

import pytest

from memory.errors import ConversationNotFoundError
from memory.models import ConversationMessage, ReminderStateData
from memory.phone import phone_alternatives
from memory.sqlite_store import ConversationStateStore
from schemas.conversation import ContextType, Direction, ExpectedResponseType

from conftest import MutableClock


class TestConversationStateStore:
    """Lifecycle, messages and lookups."""

    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.clock = MutableClock()
        self.store = ConversationStateStore(
            db_path=str(tmp_path / "states.db"),
            ttl_minutes=120,
            clock=self.clock,
        )

    def test_get_or_create_returns_same_alive_state(self):
        first = self.store.get_or_create("p1", "081234567890")
        second = self.store.get_or_create("p1", "081234567890")

        assert first.id == second.id
        assert first.current_context == ContextType.GENERAL_INQUIRY
        assert first.expected_response_type == ExpectedResponseType.TEXT
        assert first.expires_at == self.clock.now + timedelta(minutes=120)

    def test_get_or_create_derives_expected_response(self):
        state = self.store.get_or_create("p1", "081234567890", ContextType.VERIFICATION)
        assert state.expected_response_type == ExpectedResponseType.YES_NO

    def test_expired_state_is_replaced(self):
        old = self.store.get_or_create("p1", "081234567890")
        self.clock.advance(minutes=121)

        assert old.is_alive(self.clock.now) is False

        new = self.store.get_or_create("p1", "081234567890")

        assert new.id != old.id
        assert self.store.get(old.id).is_active is False
        assert new.is_active is True

    def test_get_missing_raises_not_found(self):
        with pytest.raises(ConversationNotFoundError):
            self.store.get("missing")

    def test_update_missing_raises_not_found(self):
        with pytest.raises(ConversationNotFoundError):
            self.store.update("missing", attempt_count=1)

    def test_update_rejects_unknown_fields(self):
        state = self.store.get_or_create("p1", "081234567890")
        with pytest.raises(ValueError):
            self.store.update(state.id, patient_id="someone-else")

    def test_update_skips_none_values(self):
        state = self.store.get_or_create("p1", "081234567890")
        self.store.update(state.id, related_entity_id="r1")

        updated = self.store.update(state.id, related_entity_id=None, attempt_count=2)

        assert updated.related_entity_id == "r1"
        assert updated.attempt_count == 2

    def test_append_message_bumps_counters(self):
        state = self.store.get_or_create("p1", "081234567890")
        self.store.append_message(state.id, ConversationMessage(message="halo", direction=Direction.INBOUND))
        self.store.append_message(state.id, ConversationMessage(message="hai", direction=Direction.OUTBOUND))

        refreshed = self.store.get(state.id)
        assert refreshed.message_count == 2
        assert refreshed.last_message == "hai"

        history = self.store.history(state.id)
        assert [m.message for m in history] == ["halo", "hai"]

    def test_history_limit_keeps_most_recent(self):
        state = self.store.get_or_create("p1", "081234567890")
        for i in range(5):
            self.store.append_message(state.id, ConversationMessage(message=f"m{i}", direction=Direction.INBOUND))

        history = self.store.history(state.id, limit=3)
        assert [m.message for m in history] == ["m2", "m3", "m4"]

    def test_append_to_missing_state_raises(self):
        with pytest.raises(ConversationNotFoundError):
            self.store.append_message("missing", ConversationMessage(message="x", direction=Direction.INBOUND))

    def test_concurrent_appends_keep_exact_count(self):
        state = self.store.get_or_create("p1", "081234567890")

        def worker(n):
            for i in range(5):
                self.store.append_message(
                    state.id,
                    ConversationMessage(message=f"t{n}-{i}", direction=Direction.INBOUND),
                )

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert self.store.get(state.id).message_count == 20
        assert len(self.store.history(state.id, limit=100)) == 20

    def test_sweep_is_idempotent(self):
        self.store.get_or_create("p1", "081234567890")
        self.store.get_or_create("p2", "081111111111")
        self.clock.advance(hours=3)

        assert self.store.sweep_expired() == 2
        assert self.store.sweep_expired() == 0

    def test_switch_context_resets_window_and_attempts(self):
        state = self.store.get_or_create("p1", "081234567890")
        self.store.update(state.id, attempt_count=2)
        self.clock.advance(minutes=30)

        switched = self.store.switch_context(
            state.id,
            ContextType.REMINDER_CONFIRMATION,
            related_entity_id="r1",
            related_entity_type="reminder",
            state_data=ReminderStateData(reminder_id="r1", medication_name="Paracetamol"),
        )

        assert switched.current_context == ContextType.REMINDER_CONFIRMATION
        assert switched.expected_response_type == ExpectedResponseType.CONFIRMATION
        assert switched.attempt_count == 0
        assert switched.context_set_at == self.clock.now
        assert switched.expires_at == self.clock.now + timedelta(minutes=120)
        assert isinstance(switched.state_data, ReminderStateData)
        assert switched.state_data.medication_name == "Paracetamol"

    def test_switch_context_missing_raises(self):
        with pytest.raises(ConversationNotFoundError):
            self.store.switch_context("missing", ContextType.GENERAL_INQUIRY)

    def test_find_by_phone_number_across_spellings(self):
        state = self.store.get_or_create("p1", "081234567890")

        for spelling in ("081234567890", "6281234567890", "+6281234567890"):
            found = self.store.find_by_phone_number(spelling)
            assert found is not None
            assert found.id == state.id

    def test_find_by_phone_number_ignores_expired(self):
        self.store.get_or_create("p1", "081234567890")
        self.clock.advance(hours=3)
        assert self.store.find_by_phone_number("081234567890") is None

    def test_clear_context_resets_to_general_inquiry(self):
        state = self.store.get_or_create("p1", "081234567890", ContextType.VERIFICATION)

        assert self.store.clear_context("p1") == 1

        cleared = self.store.get(state.id)
        assert cleared.current_context == ContextType.GENERAL_INQUIRY
        assert cleared.expected_response_type == ExpectedResponseType.TEXT

    def test_deactivate_and_extend_expiry(self):
        state = self.store.get_or_create("p1", "081234567890")
        extended = self.store.extend_expiry(state.id, 30)
        assert extended.expires_at == self.clock.now + timedelta(minutes=30)

        assert self.store.deactivate(state.id).is_active is False

    def test_stats(self):
        state = self.store.get_or_create("p1", "081234567890")
        self.store.append_message(state.id, ConversationMessage(message="halo", direction=Direction.INBOUND))

        stats = self.store.stats("p1")
        assert stats.total_conversations == 1
        assert stats.active_conversations == 1
        assert stats.average_message_count == 1.0
        assert stats.context_distribution == {"general_inquiry": 1}


class TestPhoneAlternatives:
    """Indonesian number spellings."""

    def test_local_number(self):
        assert phone_alternatives("081234567890") == ["081234567890", "6281234567890", "+6281234567890"]

    def test_international_number(self):
        alternatives = phone_alternatives("+62 812-3456-7890")
        assert alternatives[0] == "+62 812-3456-7890"
        assert "081234567890" in alternatives
        assert "6281234567890" in alternatives

    def test_empty(self):
        assert phone_alternatives("") == []
