"""Sync layer - incremental copy of completed orders into the analysis store."""

from interchain_swap_analytics.sync.engine import OrderSyncEngine, SyncResult, map_source_order
from interchain_swap_analytics.sync.service import OrderSyncService, SyncState, SyncStats

__all__ = [
    "OrderSyncEngine",
    "OrderSyncService",
    "SyncResult",
    "SyncState",
    "SyncStats",
    "map_source_order",
]
