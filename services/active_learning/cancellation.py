"""
Cooperative cancellation for long-running training
"""

import threading

from utils.error_handling import TrainingCancelled

class CancellationToken:
    """Set from any thread; checked by the orchestrator and trainers between stages"""

    def __init__(self):
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TrainingCancelled(self.reason or "Training was cancelled")
