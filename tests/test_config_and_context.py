"""Tests for settings, locale loading, collaborators and prompt context."""

from config.locale import get_locale, load_locale
from config.settings import Settings
from collaborators.memory import InMemoryRetryQueue, StaticPatientDirectory
from llm.prompts import build_intent_messages
from memory.context_manager import ConversationContextManager
from memory.models import ConversationMessage
from memory.sqlite_store import ConversationStateStore
from schemas.collaborators import QueuedMessage
from schemas.conversation import ContextType, Direction

from conftest import make_patient, PENDING_PHONE


class TestSettings:
    """Test environment overrides."""

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("DAILY_TOKEN_LIMIT", "1234")
        monkeypatch.setenv("ENABLE_CIRCUIT_BREAKER", "false")

        settings = Settings()

        assert settings.llm_provider == "openai"
        assert settings.get_llm_api_key() == "sk-test"
        assert settings.daily_token_limit == 1234
        assert settings.circuit_breaker_enabled is False

    def test_explicit_values_win(self, monkeypatch):
        monkeypatch.setenv("PRIMA_DB_PATH", "/tmp/env.db")
        assert Settings(db_path="/tmp/explicit.db").db_path == "/tmp/explicit.db"


class TestLocale:
    """Test locale data."""

    def test_boolean_like_keywords_stay_strings(self):
        locale = get_locale("id")
        assert "yes" in locale.keywords_for("accept")
        assert "no" in locale.verification_keywords

    def test_missing_template_falls_back_to_default(self):
        locale = get_locale("id")
        assert locale.template("does_not_exist") == locale.templates["default"]

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "mini.yaml"
        path.write_text("locale: xx\ntemplates:\n  default: hello\n", encoding="utf-8")

        locale = load_locale(path=str(path))

        assert locale.locale == "xx"
        assert locale.template("accept") == "hello"


class TestCollaborators:
    """Test in-process collaborators."""

    def test_retry_queue_is_fifo(self):
        queue = InMemoryRetryQueue()
        first = queue.enqueue(QueuedMessage(patient_id="p1", phone_number="0812", message="a"))
        queue.enqueue(QueuedMessage(patient_id="p1", phone_number="0812", message="b"))

        item_id, item = queue.pop()
        assert item_id == first
        assert item.message == "a"
        assert len(queue) == 1

    def test_directory_resolves_international_spelling(self):
        directory = StaticPatientDirectory([make_patient(PENDING_PHONE, "pending", "p1")])

        result = directory.get_patient_context("+6281234567890")

        assert result.found is True
        assert result.context.patient.id == "p1"
        assert directory.get_patient_context("0899").found is False


class TestConversationContextManager:
    """Test prompt context assembly."""

    def test_history_becomes_chat_turns(self, tmp_path):
        store = ConversationStateStore(db_path=str(tmp_path / "ctx.db"))
        state = store.get_or_create("p1", PENDING_PHONE, ContextType.VERIFICATION)
        store.append_message(state.id, ConversationMessage(message="Apakah Anda setuju?", direction=Direction.OUTBOUND))
        store.append_message(state.id, ConversationMessage(message="ya", direction=Direction.INBOUND))

        manager = ConversationContextManager(store, max_turns=10)
        context = manager.build_prompt_context(
            store.get(state.id),
            make_patient(PENDING_PHONE, "pending", "p1"),
        )

        assert [m.role for m in context.history] == ["assistant", "user"]
        assert context.patient_name == "Ibu Sari"
        assert context.current_context == "verification"

        messages = build_intent_messages("ya", context)
        assert messages[0].role == "system"
        assert "Ibu Sari" in messages[0].content
        assert messages[-1].content.startswith("Pesan pasien: ya")
