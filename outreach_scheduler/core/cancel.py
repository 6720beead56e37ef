from __future__ import annotations

from outreach_scheduler.core.errors import SearchCancelledError


class CancellationToken:
    """Cooperative stop flag, polled between candidate pages."""

    def __init__(self) -> None:
        self._cancel_requested = False

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def request_cancel(self) -> None:
        self._cancel_requested = True

    def raise_if_cancelled(self, message: str) -> None:
        if self._cancel_requested:
            raise SearchCancelledError(message)
