"""Order book replica and the snapshot/delta reconciliation state machine."""

from .errors import BookSyncError, DecodeError, DesynchronizationExceeded, FeedUnavailable, SequenceGap
from .local_orderbook import OrderBook
from .price_levels import PriceLevelMap
from .sync_engine import (
    FeedSource,
    OverflowPolicy,
    ReconciliationController,
    SyncConfig,
    SyncResult,
    SyncState,
)
from .types import Delta, LevelStatus, LevelUpdate, PriceLevel, Side, Snapshot

__all__ = [
    "BookSyncError",
    "DecodeError",
    "DesynchronizationExceeded",
    "FeedUnavailable",
    "SequenceGap",
    "OrderBook",
    "PriceLevelMap",
    "FeedSource",
    "OverflowPolicy",
    "ReconciliationController",
    "SyncConfig",
    "SyncResult",
    "SyncState",
    "Delta",
    "LevelStatus",
    "LevelUpdate",
    "PriceLevel",
    "Side",
    "Snapshot",
]
