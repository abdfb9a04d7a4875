"""Exception hierarchy for the sync and enrichment pipeline."""

from __future__ import annotations


class SwapAnalyticsError(Exception):
    """Base exception for swap analytics errors."""


class SourceUnavailableError(SwapAnalyticsError):
    """Raised when reading completed orders from the source store fails."""


class AnalysisStoreError(SwapAnalyticsError):
    """Raised when the analysis store cannot be read or written."""


class SyncWriteError(AnalysisStoreError):
    """Raised when a sync cycle's write failed and its transaction was rolled back."""

    def __init__(self, message: str, *, order_id: str | None = None) -> None:
        super().__init__(message)
        self.order_id = order_id
