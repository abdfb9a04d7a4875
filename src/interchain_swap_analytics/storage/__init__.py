"""Storage layer - Database schemas and repositories."""

from interchain_swap_analytics.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
    reset_analysis_table,
)
from interchain_swap_analytics.storage.models import (
    Base,
    CreateOrderModel,
    MatchedOrderModel,
    OrderAnalysisModel,
    SourceBase,
    SwapModel,
    UTCDateTime,
)
from interchain_swap_analytics.storage.repos import (
    EPOCH_START,
    OrderAnalysisDTO,
    OrderAnalysisRepository,
    PendingInitDTO,
    SourceOrderDTO,
    SourceOrderRepository,
    SwapLegDTO,
)

__all__ = [
    "EPOCH_START",
    "Base",
    "CreateOrderModel",
    "DatabaseManager",
    "MatchedOrderModel",
    "OrderAnalysisDTO",
    "OrderAnalysisModel",
    "OrderAnalysisRepository",
    "PendingInitDTO",
    "SourceBase",
    "SourceOrderDTO",
    "SourceOrderRepository",
    "SwapLegDTO",
    "SwapModel",
    "UTCDateTime",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    "reset_analysis_table",
]
