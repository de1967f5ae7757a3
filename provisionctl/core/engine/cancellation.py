"""
Cancellation token — run-level stop signal.

Set by the CLI's SIGINT/SIGTERM handler (or by a test). The engine
checks it before launching each unit and while waiting out retry
backoff; it never interrupts a check or apply step from the inside.
"""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled by operator") -> None:
        if not self._event.is_set():
            self._reason = reason
            logger.warning("Run cancellation requested: %s", reason)
        self._event.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)
