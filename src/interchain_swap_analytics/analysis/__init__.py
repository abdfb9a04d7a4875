"""Read-side duration statistics over the analysis store."""

from interchain_swap_analytics.analysis.query import (
    NO_DURATIONS,
    NO_MATCHING_ORDERS,
    AnalysisQueryService,
    AnalysisSummary,
    NoAnalysisData,
    clamped_seconds,
    null_aware_average,
    record_durations,
    summarize,
)

__all__ = [
    "NO_DURATIONS",
    "NO_MATCHING_ORDERS",
    "AnalysisQueryService",
    "AnalysisSummary",
    "NoAnalysisData",
    "clamped_seconds",
    "null_aware_average",
    "record_durations",
    "summarize",
]
