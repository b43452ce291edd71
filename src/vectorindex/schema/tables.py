from typing import List, Optional, Dict, Any, Union
from sqlmodel import Field
from sqlalchemy import Column, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from pgvector.sqlalchemy import Vector

from vectorindex.config import settings
from .base import UUIDMixin, TimestampMixin


class VectorSearchRecord(UUIDMixin, TimestampMixin, table=True):
    """
    Row backing one VectorIndexEntry in the pgvector driver.

    result_* / primary_link_* columns may hold ciphertext when tenant
    encryption is on, so they are plain text columns without length limits.
    """
    __tablename__ = "vector_search"
    __table_args__ = (
        UniqueConstraint(
            "driver_id", "entity_id", "record_id", "tenant_id",
            name="vector_search_driver_entity_record_tenant_uq",
        ),
    )

    driver_id: str = Field(index=True)
    entity_id: str = Field(index=True)
    record_id: str
    tenant_id: str = Field(index=True)
    organization_id: Optional[str] = Field(default=None, index=True)

    checksum: str
    embedding: List[float] = Field(
        default=None, sa_column=Column(Vector(settings.embedding_dimensions))
    )

    result_title: str
    result_subtitle: Optional[str] = None
    result_icon: Optional[str] = None
    result_badge: Optional[str] = None
    result_snapshot: Optional[str] = None
    primary_link_href: Optional[str] = None
    primary_link_label: Optional[str] = None
    url: Optional[str] = None

    # JSONB accepts both the structured form and a ciphertext string
    links: Optional[Union[List[Dict[str, Any]], str]] = Field(
        default=None, sa_column=Column(JSONB)
    )
    payload: Optional[Union[Dict[str, Any], str]] = Field(
        default=None, sa_column=Column(JSONB)
    )

    class Config:
        arbitrary_types_allowed = True


Index(
    "idx_vector_search_tenant_entity",
    VectorSearchRecord.tenant_id,
    VectorSearchRecord.entity_id,
)
