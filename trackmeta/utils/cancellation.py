"""
Cooperative cancellation for analysis stages running in worker threads.

A timed-out asyncio wait does not stop a function already running on the
executor, so stages poll a token at frame boundaries and bail out once the
orchestrator has given up on them.
"""

import threading
import time
from typing import Optional

from trackmeta.utils.errors import AnalysisCancelledError


class CancellationToken:
    """Thread-safe cancellation flag with an optional deadline."""

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds from now after which the token counts as
                     cancelled. None means no deadline.
        """
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Mark the token as cancelled. The first reason wins."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise AnalysisCancelledError if the token has been cancelled."""
        if self.cancelled:
            raise AnalysisCancelledError(self._reason or "cancelled")

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())
