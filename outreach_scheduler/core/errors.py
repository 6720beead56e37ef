from __future__ import annotations


class OutreachSchedulerError(Exception):
    """Base error for the scheduling core."""


class InvalidInputError(OutreachSchedulerError, ValueError):
    """Raised when a required identifier or parameter is missing or malformed."""


class StoreError(OutreachSchedulerError):
    """Base store error."""


class StoreUnavailableError(StoreError):
    """Raised when the store is unreachable, times out, or rejects a query."""


class PartialBatchFailureError(StoreUnavailableError):
    """Raised when some, but not all, batched lookups of one call failed."""

    def __init__(self, message: str, *, failed_batches: int, total_batches: int) -> None:
        super().__init__(message)
        self.failed_batches = failed_batches
        self.total_batches = total_batches


class SearchCancelledError(OutreachSchedulerError):
    """Raised when a cancellation request aborts a multi-page search."""


class DispatchError(OutreachSchedulerError):
    """Raised when the workflow runtime rejects or cannot receive a start request."""
