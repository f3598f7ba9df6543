"""In-process collaborator implementations for local runs and tests."""

import logging
import threading
import uuid
from typing import Optional

from .base import RetryQueue, HumanNotifier, PatientContextLookup, OutboundTransport
from memory.phone import phone_alternatives
from schemas.collaborators import (
    QueuedMessage,
    EscalationRequest,
    PatientContext,
    PatientContextResult,
    DeliveryResult,
)

logger = logging.getLogger(__name__)


class InMemoryRetryQueue(RetryQueue):
    """List-backed queue."""

    def __init__(self):
        self._items: list[tuple[str, QueuedMessage]] = []
        self._lock = threading.Lock()

    def enqueue(self, item: QueuedMessage) -> str:
        item_id = uuid.uuid4().hex
        with self._lock:
            self._items.append((item_id, item))
        logger.info(
            f"Queued message {item_id} for patient {item.patient_id}: "
            f"{item.metadata.get('failure_reason', 'n/a')}"
        )
        return item_id

    def pending(self) -> list[QueuedMessage]:
        with self._lock:
            return [item for _, item in self._items]

    def pop(self) -> Optional[tuple[str, QueuedMessage]]:
        with self._lock:
            return self._items.pop(0) if self._items else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class LoggingNotifier(HumanNotifier):
    """Records escalations and writes them to the log."""

    def __init__(self):
        self.notifications: list[EscalationRequest] = []
        self._lock = threading.Lock()

    def notify(self, request: EscalationRequest):
        with self._lock:
            self.notifications.append(request)
        logger.warning(
            f"Volunteer escalation [{request.priority}] patient={request.patient_id} "
            f"reason={request.reason}"
        )


class StaticPatientDirectory(PatientContextLookup):
    """Patient lookup over a fixed set of records keyed by phone number."""

    def __init__(self, patients: Optional[list[PatientContext]] = None):
        self._by_phone: dict[str, PatientContext] = {}
        for context in patients or []:
            self.add(context)

    def add(self, context: PatientContext):
        for candidate in phone_alternatives(context.patient.phone_number or ""):
            self._by_phone[candidate] = context

    def get_patient_context(self, phone_number: str) -> PatientContextResult:
        for candidate in phone_alternatives(phone_number):
            if candidate in self._by_phone:
                return PatientContextResult(found=True, context=self._by_phone[candidate])
        return PatientContextResult(found=False)


class ConsoleTransport(OutboundTransport):
    """Prints replies instead of sending them."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    def send(self, phone_number: str, text: str) -> DeliveryResult:
        self.sent.append((phone_number, text))
        print(f"[to {phone_number}] {text}")
        return DeliveryResult(success=True, message_id=uuid.uuid4().hex)
