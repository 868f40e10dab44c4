"""Items and videos: storage and idempotent reconciliation."""

from src.items.reconciler import NewItemListener, Reconciler
from src.items.repository import ItemRepository, VideoRepository
from src.items.schemas import (
    BulkReconcileResult,
    Item,
    ReconcileOutcome,
    ReconcileResult,
    VideoItem,
    VideoType,
)

__all__ = [
    "Item",
    "VideoItem",
    "VideoType",
    "ReconcileOutcome",
    "ReconcileResult",
    "BulkReconcileResult",
    "ItemRepository",
    "VideoRepository",
    "Reconciler",
    "NewItemListener",
]
