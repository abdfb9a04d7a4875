"""HTTP API exposing analysis statistics."""

from interchain_swap_analytics.api.app import AnalysisRequest, create_app

__all__ = ["AnalysisRequest", "create_app"]
