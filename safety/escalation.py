"""Asynchronous escalation to human responders."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, Future, wait
from typing import Optional

from collaborators.base import HumanNotifier
from schemas.collaborators import EscalationRequest

logger = logging.getLogger(__name__)


class EscalationNotifier:
    """
    Fire-and-forget wrapper around a HumanNotifier.

    Notifications run on a small thread pool so the message pipeline never
    waits on them; failures are logged and dropped.
    """

    def __init__(self, notifier: HumanNotifier, max_workers: int = 2):
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="escalation")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def escalate(self, request: EscalationRequest) -> Future:
        future = self._executor.submit(self._deliver, request)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _deliver(self, request: EscalationRequest):
        try:
            self.notifier.notify(request)
            logger.info(
                f"Escalated to volunteer: patient={request.patient_id} "
                f"reason={request.reason} intent={request.intent}"
            )
        except Exception as e:
            logger.error(f"Failed to escalate to volunteer for patient {request.patient_id}: {e}")

    def _forget(self, future: Future):
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight notifications. Returns True if all finished."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True):
        self._executor.shutdown(wait=wait_for_pending)
