"""
In-process reference driver. Supports every capability; used by tests and
for local development without Postgres.
"""
import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np

from vectorindex.core.logging import get_logger
from vectorindex.schema import DriverCapability, VectorIndexEntry, VectorQueryFilter, utcnow
from .base import ORDER_BY_FIELDS, VectorDriver

logger = get_logger(__name__)

EntryKey = Tuple[str, str, str]


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


class InMemoryVectorDriver(VectorDriver):
    capabilities = frozenset(DriverCapability)

    def __init__(self, driver_id: str = "memory"):
        self.driver_id = driver_id
        self._entries: Dict[EntryKey, VectorIndexEntry] = {}
        self._lock = asyncio.Lock()
        self.ready = False
        self.upsert_calls = 0

    async def ensure_ready(self) -> None:
        self.ready = True

    @staticmethod
    def _key(entity_id: str, record_id: str, tenant_id: str) -> EntryKey:
        return (entity_id, str(record_id), str(tenant_id))

    @staticmethod
    def _matches(entry: VectorIndexEntry, filter: VectorQueryFilter) -> bool:
        if entry.tenant_id != filter.tenant_id:
            return False
        if filter.organization_id is not None and entry.organization_id != filter.organization_id:
            return False
        if filter.entity_ids and entry.entity_id not in filter.entity_ids:
            return False
        return True

    async def upsert(self, entry: VectorIndexEntry) -> None:
        key = self._key(entry.entity_id, entry.record_id, entry.tenant_id)
        async with self._lock:
            previous = self._entries.get(key)
            stored = entry.model_copy(deep=True, update={
                "driver_id": self.driver_id,
                "created_at": previous.created_at if previous else entry.created_at,
                "updated_at": utcnow(),
                "score": None,
            })
            self._entries[key] = stored
            self.upsert_calls += 1

    async def get_checksum(self, entity_id, record_id, tenant_id) -> Optional[str]:
        entry = self._entries.get(self._key(entity_id, record_id, tenant_id))
        return entry.checksum if entry else None

    async def delete(self, entity_id, record_id, tenant_id) -> None:
        async with self._lock:
            self._entries.pop(self._key(entity_id, record_id, tenant_id), None)

    async def query(self, vector, limit, filter) -> List[VectorIndexEntry]:
        if limit <= 0:
            return []
        probe = np.asarray(vector, dtype=float)
        scored = []
        for entry in list(self._entries.values()):
            if not self._matches(entry, filter) or not entry.embedding:
                continue
            score = cosine_similarity(probe, np.asarray(entry.embedding, dtype=float))
            scored.append((score, entry))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [entry.model_copy(deep=True, update={"score": score}) for score, entry in scored[:limit]]

    async def purge(self, entity_id, tenant_id) -> None:
        async with self._lock:
            doomed = [key for key in self._entries if key[0] == entity_id and key[2] == str(tenant_id)]
            for key in doomed:
                del self._entries[key]
        logger.info("memory_driver_purged", entity_id=entity_id, tenant_id=tenant_id, removed=len(doomed))

    async def list(self, filter, limit=50, offset=0, order_by="updated_at") -> List[VectorIndexEntry]:
        if order_by not in ORDER_BY_FIELDS:
            raise ValueError(f"Unsupported order_by: {order_by}")
        matching = [entry for entry in self._entries.values() if self._matches(entry, filter)]
        matching.sort(key=lambda entry: getattr(entry, order_by), reverse=True)
        return [entry.model_copy(deep=True) for entry in matching[offset:offset + limit]]

    async def count(self, filter) -> int:
        return sum(1 for entry in self._entries.values() if self._matches(entry, filter))

    async def remove_orphans(
        self,
        entity_id: str,
        older_than: datetime,
        tenant_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> int:
        async with self._lock:
            doomed = [
                key for key, entry in self._entries.items()
                if entry.entity_id == entity_id
                and (tenant_id is None or entry.tenant_id == tenant_id)
                and (organization_id is None or entry.organization_id == organization_id)
                and entry.updated_at < older_than
            ]
            for key in doomed:
                del self._entries[key]
        return len(doomed)
