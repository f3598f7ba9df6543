"""Shared test doubles."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

import pytest

from collaborators.memory import InMemoryRetryQueue, LoggingNotifier, StaticPatientDirectory
from config.locale import get_locale
from config.settings import Settings
from llm.base_client import BaseLLMClient, LLMResponse, Message
from schemas.collaborators import PatientContext, PatientInfo, ReminderInfo

PENDING_PHONE = "081234567890"
VERIFIED_PHONE = "081298765432"


class ScriptedLLMClient(BaseLLMClient):
    """Returns queued replies in order; queued exceptions are raised instead."""

    def __init__(self, responses: Optional[List[Union[str, Exception]]] = None, model: str = "scripted-model"):
        self.responses = list(responses or [])
        self.model = model
        self.calls: List[List[Message]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def chat(self, messages, temperature=0.7, max_tokens=1000) -> LLMResponse:
        self.calls.append(list(messages))
        if not self.responses:
            raise AssertionError("ScriptedLLMClient ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return LLMResponse(
            content=item,
            usage={"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150},
            finish_reason="stop",
            model=self.model,
        )

    def get_provider_name(self) -> str:
        return "scripted"

    def get_model_name(self) -> str:
        return self.model


class FailingLLMClient(ScriptedLLMClient):
    """Raises the same error on every call."""

    def __init__(self, error: Exception):
        super().__init__()
        self.error = error

    def chat(self, messages, temperature=0.7, max_tokens=1000) -> LLMResponse:
        self.calls.append(list(messages))
        raise self.error


class MutableClock:
    """Controllable clock returning either datetimes or epoch floats."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 15, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_patient(phone: str, status: str, patient_id: str, reminders=None) -> PatientContext:
    return PatientContext(
        patient=PatientInfo(id=patient_id, name="Ibu Sari", phone_number=phone, verification_status=status),
        active_reminders=reminders or [],
    )


@pytest.fixture
def locale():
    return get_locale("id")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        anthropic_api_key="",
        openai_api_key="",
        db_path=str(tmp_path / "conversations.db"),
    )


@pytest.fixture
def retry_queue():
    return InMemoryRetryQueue()


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def directory():
    return StaticPatientDirectory([
        make_patient(PENDING_PHONE, "pending", "patient-pending"),
        make_patient(
            VERIFIED_PHONE,
            "verified",
            "patient-verified",
            reminders=[
                ReminderInfo(id="r1", medication_name="Paracetamol", scheduled_time="08:00", is_today=True),
                ReminderInfo(id="r2", medication_name="Morfin", scheduled_time="20:00"),
            ],
        ),
    ])
