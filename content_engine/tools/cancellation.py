from __future__ import annotations

import threading

from content_engine.models.errors import PipelineCancelled


class CancellationToken:
    """Cooperative cancellation, checked between stages and between batch items."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str = "") -> None:
        if self._event.is_set():
            suffix = f" before {where}" if where else ""
            raise PipelineCancelled(f"{self.reason}{suffix}")

