"""Collaborator interfaces and local implementations."""

from .base import RetryQueue, HumanNotifier, PatientContextLookup, OutboundTransport
from .memory import InMemoryRetryQueue, LoggingNotifier, StaticPatientDirectory, ConsoleTransport

__all__ = [
    "RetryQueue",
    "HumanNotifier",
    "PatientContextLookup",
    "OutboundTransport",
    "InMemoryRetryQueue",
    "LoggingNotifier",
    "StaticPatientDirectory",
    "ConsoleTransport",
]
