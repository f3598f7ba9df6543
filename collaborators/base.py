"""Interfaces to systems outside the engine."""

from abc import ABC, abstractmethod

from schemas.collaborators import (
    QueuedMessage,
    EscalationRequest,
    PatientContextResult,
    DeliveryResult,
)


class RetryQueue(ABC):
    """Durable queue the redelivery worker drains."""

    @abstractmethod
    def enqueue(self, item: QueuedMessage) -> str:
        """
        Store a work item.

        Args:
            item: Message and metadata to redeliver

        Returns:
            Queue item ID
        """
        pass


class HumanNotifier(ABC):
    """Delivers escalations to volunteers."""

    @abstractmethod
    def notify(self, request: EscalationRequest):
        pass


class PatientContextLookup(ABC):
    """Read access to patient records and reminders."""

    @abstractmethod
    def get_patient_context(self, phone_number: str) -> PatientContextResult:
        pass


class OutboundTransport(ABC):
    """Messaging gateway used to send replies."""

    @abstractmethod
    def send(self, phone_number: str, text: str) -> DeliveryResult:
        pass
