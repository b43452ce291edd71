"""
Postgres + pgvector driver.

Rows live in the `vector_search` table (VectorSearchRecord). Blocking
database work runs in a worker thread so callers stay on the event loop.
"""
import asyncio
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, select, text

from vectorindex.core.logging import get_logger
from vectorindex.schema import (
    DriverCapability, VectorIndexEntry, VectorLink, VectorQueryFilter, VectorSearchRecord, utcnow,
)
from vectorindex.utils.db import get_engine
from .base import ORDER_BY_FIELDS, VectorDriver

logger = get_logger(__name__)

UNIQUE_CONSTRAINT = "vector_search_driver_entity_record_tenant_uq"
KEY_COLUMNS = ("driver_id", "entity_id", "record_id", "tenant_id")


class PgVectorDriver(VectorDriver):
    capabilities = frozenset(DriverCapability)

    def __init__(
        self,
        engine: Optional[Engine] = None,
        database_url: Optional[str] = None,
        driver_id: str = "pgvector",
    ):
        self.driver_id = driver_id
        self._engine = engine
        self._database_url = database_url
        self._ready = False
        self._ready_lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine(self._database_url)
        return self._engine

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def ensure_ready(self) -> None:
        if self._ready:
            return
        await asyncio.to_thread(self._ensure_ready_sync)

    def _ensure_ready_sync(self) -> None:
        with self._ready_lock:
            if self._ready:
                return
            logger.info("pgvector_driver_initializing", driver_id=self.driver_id)
            with Session(self.engine) as session:
                session.exec(text("CREATE EXTENSION IF NOT EXISTS vector"))
                session.commit()

            SQLModel.metadata.create_all(self.engine, tables=[VectorSearchRecord.__table__])

            # HNSW gives approximate nearest-neighbour search on cosine distance
            with Session(self.engine) as session:
                session.exec(text("""
                    CREATE INDEX IF NOT EXISTS vector_search_embedding_hnsw_idx
                    ON vector_search USING hnsw (embedding vector_cosine_ops)
                """))
                session.commit()

            self._ready = True
            logger.info("pgvector_driver_ready", driver_id=self.driver_id)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_values(self, entry: VectorIndexEntry) -> Dict[str, Any]:
        links = entry.links
        if isinstance(links, list):
            links = [link.model_dump(exclude_none=True) if isinstance(link, VectorLink) else link for link in links]
        return {
            "driver_id": self.driver_id,
            "entity_id": entry.entity_id,
            "record_id": str(entry.record_id),
            "tenant_id": str(entry.tenant_id),
            "organization_id": entry.organization_id,
            "checksum": entry.checksum,
            "embedding": list(entry.embedding),
            "result_title": entry.result_title,
            "result_subtitle": entry.result_subtitle,
            "result_icon": entry.result_icon,
            "result_badge": entry.result_badge,
            "result_snapshot": entry.result_snapshot,
            "primary_link_href": entry.primary_link_href,
            "primary_link_label": entry.primary_link_label,
            "url": entry.url,
            "links": links,
            "payload": entry.payload,
            "created_at": entry.created_at,
            "updated_at": utcnow(),
        }

    @staticmethod
    def _to_entry(row: VectorSearchRecord, score: Optional[float] = None) -> VectorIndexEntry:
        embedding = [float(value) for value in row.embedding] if row.embedding is not None else []
        return VectorIndexEntry(
            driver_id=row.driver_id,
            entity_id=row.entity_id,
            record_id=row.record_id,
            tenant_id=row.tenant_id,
            organization_id=row.organization_id,
            checksum=row.checksum,
            embedding=embedding,
            result_title=row.result_title,
            result_subtitle=row.result_subtitle,
            result_icon=row.result_icon,
            result_badge=row.result_badge,
            result_snapshot=row.result_snapshot,
            primary_link_href=row.primary_link_href,
            primary_link_label=row.primary_link_label,
            url=row.url,
            links=row.links,
            payload=row.payload,
            created_at=row.created_at,
            updated_at=row.updated_at,
            score=score,
        )

    def _conditions(self, filter: VectorQueryFilter) -> list:
        conditions = [
            VectorSearchRecord.driver_id == self.driver_id,
            VectorSearchRecord.tenant_id == filter.tenant_id,
        ]
        if filter.organization_id is not None:
            conditions.append(VectorSearchRecord.organization_id == filter.organization_id)
        if filter.entity_ids:
            conditions.append(VectorSearchRecord.entity_id.in_(filter.entity_ids))
        return conditions

    def _key_conditions(self, entity_id: str, record_id: str, tenant_id: str) -> list:
        return [
            VectorSearchRecord.driver_id == self.driver_id,
            VectorSearchRecord.entity_id == entity_id,
            VectorSearchRecord.record_id == str(record_id),
            VectorSearchRecord.tenant_id == str(tenant_id),
        ]

    # ------------------------------------------------------------------
    # Required operations
    # ------------------------------------------------------------------

    async def upsert(self, entry: VectorIndexEntry) -> None:
        await asyncio.to_thread(self._upsert_sync, self._row_values(entry))

    def _upsert_sync(self, values: Dict[str, Any]) -> None:
        stmt = pg_insert(VectorSearchRecord.__table__).values(id=uuid4(), **values)
        replace = {
            column: stmt.excluded[column]
            for column in values
            if column not in KEY_COLUMNS and column != "created_at"
        }
        stmt = stmt.on_conflict_do_update(constraint=UNIQUE_CONSTRAINT, set_=replace)
        with Session(self.engine) as session:
            session.exec(stmt)
            session.commit()

    async def get_checksum(self, entity_id, record_id, tenant_id) -> Optional[str]:
        return await asyncio.to_thread(self._get_checksum_sync, entity_id, record_id, tenant_id)

    def _get_checksum_sync(self, entity_id, record_id, tenant_id) -> Optional[str]:
        with Session(self.engine) as session:
            statement = select(VectorSearchRecord.checksum).where(
                *self._key_conditions(entity_id, record_id, tenant_id)
            )
            return session.exec(statement).first()

    async def delete(self, entity_id, record_id, tenant_id) -> None:
        await asyncio.to_thread(
            self._delete_where, self._key_conditions(entity_id, record_id, tenant_id)
        )

    def _delete_where(self, conditions: list) -> int:
        with Session(self.engine) as session:
            result = session.exec(delete(VectorSearchRecord).where(*conditions))
            session.commit()
            return result.rowcount or 0

    async def query(self, vector, limit, filter) -> List[VectorIndexEntry]:
        if limit <= 0:
            return []
        return await asyncio.to_thread(self._query_sync, list(vector), limit, filter)

    def _query_sync(self, vector: List[float], limit: int, filter: VectorQueryFilter) -> List[VectorIndexEntry]:
        distance = VectorSearchRecord.embedding.cosine_distance(vector).label("distance")
        statement = (
            select(VectorSearchRecord, distance)
            .where(*self._conditions(filter))
            .order_by(distance)
            .limit(limit)
        )
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
            return [self._to_entry(row, score=1.0 - float(dist)) for row, dist in rows]

    # ------------------------------------------------------------------
    # Optional operations
    # ------------------------------------------------------------------

    async def purge(self, entity_id, tenant_id) -> None:
        removed = await asyncio.to_thread(self._delete_where, [
            VectorSearchRecord.driver_id == self.driver_id,
            VectorSearchRecord.entity_id == entity_id,
            VectorSearchRecord.tenant_id == str(tenant_id),
        ])
        logger.info("pgvector_purged", entity_id=entity_id, tenant_id=tenant_id, removed=removed)

    async def list(self, filter, limit=50, offset=0, order_by="updated_at") -> List[VectorIndexEntry]:
        if order_by not in ORDER_BY_FIELDS:
            raise ValueError(f"Unsupported order_by: {order_by}")
        return await asyncio.to_thread(self._list_sync, filter, limit, offset, order_by)

    def _list_sync(self, filter, limit, offset, order_by) -> List[VectorIndexEntry]:
        column = getattr(VectorSearchRecord, order_by)
        statement = (
            select(VectorSearchRecord)
            .where(*self._conditions(filter))
            .order_by(column.desc())
            .offset(offset)
            .limit(limit)
        )
        with Session(self.engine) as session:
            return [self._to_entry(row) for row in session.exec(statement).all()]

    async def count(self, filter) -> int:
        return await asyncio.to_thread(self._count_sync, filter)

    def _count_sync(self, filter) -> int:
        statement = select(func.count()).select_from(VectorSearchRecord).where(*self._conditions(filter))
        with Session(self.engine) as session:
            return int(session.exec(statement).one())

    async def remove_orphans(
        self,
        entity_id: str,
        older_than: datetime,
        tenant_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> int:
        conditions = [
            VectorSearchRecord.driver_id == self.driver_id,
            VectorSearchRecord.entity_id == entity_id,
            VectorSearchRecord.updated_at < older_than,
        ]
        if tenant_id is not None:
            conditions.append(VectorSearchRecord.tenant_id == str(tenant_id))
        if organization_id is not None:
            conditions.append(VectorSearchRecord.organization_id == organization_id)
        return await asyncio.to_thread(self._delete_where, conditions)
