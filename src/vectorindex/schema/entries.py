"""
Data shapes exchanged between the pipeline, the drivers and callers.

`links` and `payload` are typed as "structured or str" because, with tenant
encryption enabled, they travel as opaque ciphertext strings between the
encryption adapter and the driver.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .base import utcnow
from .enums import IndexAction, SkipReason, ReindexModeKind


class VectorLink(BaseModel):
    href: str
    label: Optional[str] = None
    kind: Optional[str] = None


class VectorResultPresenter(BaseModel):
    title: str
    subtitle: Optional[str] = None
    icon: Optional[str] = None
    badge: Optional[str] = None


class VectorIndexSource(BaseModel):
    """What a source provider hands to the pipeline for one record."""
    input: List[str]
    presenter: Optional[VectorResultPresenter] = None
    links: Optional[List[VectorLink]] = None
    payload: Optional[Dict[str, Any]] = None
    # Defaults to {record, custom_fields} when left empty
    checksum_source: Optional[Any] = None


LinksValue = Union[List[VectorLink], str, None]
PayloadValue = Union[Dict[str, Any], str, None]


class VectorIndexEntry(BaseModel):
    """
    The persisted unit. Unique on (driver_id, entity_id, record_id, tenant_id).

    `score` is only populated on query results.
    """
    driver_id: str
    entity_id: str
    record_id: str
    tenant_id: str
    organization_id: Optional[str] = None
    checksum: str
    embedding: List[float] = Field(default_factory=list)
    result_title: str
    result_subtitle: Optional[str] = None
    result_icon: Optional[str] = None
    result_badge: Optional[str] = None
    result_snapshot: Optional[str] = None
    primary_link_href: Optional[str] = None
    primary_link_label: Optional[str] = None
    # Record url from the provider; kept in plaintext like the badge
    url: Optional[str] = None
    links: LinksValue = None
    payload: PayloadValue = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    score: Optional[float] = None


class VectorQueryFilter(BaseModel):
    tenant_id: str
    organization_id: Optional[str] = None
    entity_ids: Optional[List[str]] = None


class VectorIndexOperationResult(BaseModel):
    """Outcome of one index/delete call. Returned, never persisted."""
    action: IndexAction
    created: bool = False
    existed: bool = False
    tenant_id: str
    organization_id: Optional[str] = None
    reason: Optional[SkipReason] = None


class VectorSearchHit(BaseModel):
    entity_id: str
    record_id: str
    score: Optional[float] = None
    url: Optional[str] = None
    presenter: VectorResultPresenter
    links: Optional[List[VectorLink]] = None
    driver_id: str
    metadata: Optional[Dict[str, Any]] = None


class ReindexReport(BaseModel):
    """Summary of a reindex_entity call."""
    entity_id: str
    tenant_id: Optional[str] = None
    organization_id: Optional[str] = None
    mode: ReindexModeKind
    purged: bool = False
    indexed: int = 0
    skipped: int = 0
    deleted: int = 0
    orphans_removed: int = 0
    errors: List[Dict[str, str]] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return self.indexed + self.skipped + self.deleted

    def record(self, result: VectorIndexOperationResult) -> None:
        if result.action == IndexAction.INDEXED:
            self.indexed += 1
        elif result.action == IndexAction.DELETED:
            self.deleted += 1
        else:
            self.skipped += 1
