"""Safety screening and escalation."""

from .escalation import EscalationNotifier
from .filter import SafetyFilter

__all__ = ["EscalationNotifier", "SafetyFilter"]
