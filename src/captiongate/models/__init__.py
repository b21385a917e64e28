"""SQLAlchemy models. Imported here so Base.metadata sees every table."""

from captiongate.models.base import Base
from captiongate.models.block_record import BlockReason, BlockRecord
from captiongate.models.cache_entry import CacheEntry
from captiongate.models.quota_window import QuotaWindow

__all__ = [
    "Base",
    "CacheEntry",
    "QuotaWindow",
    "BlockRecord",
    "BlockReason",
]
