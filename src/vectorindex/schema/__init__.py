from .base import UUIDMixin, TimestampMixin, utcnow
from .enums import IndexAction, SkipReason, DriverCapability, ReindexModeKind
from .entries import (
    VectorLink, VectorResultPresenter, VectorIndexSource, VectorIndexEntry,
    VectorQueryFilter, VectorIndexOperationResult, VectorSearchHit, ReindexReport,
)
from .tables import VectorSearchRecord

__all__ = [
    "UUIDMixin", "TimestampMixin", "utcnow",
    "IndexAction", "SkipReason", "DriverCapability", "ReindexModeKind",
    "VectorLink", "VectorResultPresenter", "VectorIndexSource", "VectorIndexEntry",
    "VectorQueryFilter", "VectorIndexOperationResult", "VectorSearchHit", "ReindexReport",
    "VectorSearchRecord",
]
