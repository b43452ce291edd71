"""
VectorIndexService: the API the surrounding application calls.

All operations are tenant scoped. Collaborators are injected once at
construction; nothing is looked up at call time.
"""
from datetime import datetime
from typing import Dict, List, Optional

from vectorindex.core.exceptions import DriverCapabilityError
from vectorindex.core.logging import get_logger
from vectorindex.core.pipeline import IndexingPipeline
from vectorindex.core.query import QueryService, decrypt_entry, hydrate_links
from vectorindex.core.records import RecordSource
from vectorindex.core.registry import EntityConfigRegistry
from vectorindex.core.reindex import OrphanReaper, ReindexMode, ReindexOrchestrator, DEFAULT_PAGE_SIZE
from vectorindex.core.sources import SourceResolver
from vectorindex.drivers.base import DriverSet, VectorDriver
from vectorindex.schema import (
    DriverCapability, ReindexReport, VectorIndexEntry, VectorIndexOperationResult,
    VectorQueryFilter, VectorSearchHit,
)
from vectorindex.utils.embeddings import EmbeddingClient
from vectorindex.utils.encryption import EncryptionAdapter

logger = get_logger(__name__)

COUNT_PAGE_SIZE = 1000


class VectorIndexService:
    def __init__(
        self,
        registry: EntityConfigRegistry,
        drivers: DriverSet,
        record_source: RecordSource,
        embedding: EmbeddingClient,
        encryption: Optional[EncryptionAdapter] = None,
        reindex_mode: Optional[ReindexMode] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.registry = registry
        self.drivers = drivers
        self.record_source = record_source
        self.embedding = embedding
        self.encryption = encryption or EncryptionAdapter(None)

        self.pipeline = IndexingPipeline(
            registry, drivers, record_source, embedding, self.encryption, SourceResolver()
        )
        self.reaper = OrphanReaper(registry, drivers)
        self.reindexer = ReindexOrchestrator(
            registry,
            drivers,
            self.pipeline,
            record_source,
            mode=reindex_mode,
            reaper=self.reaper,
            page_size=page_size,
        )
        self.query_service = QueryService(registry, drivers, embedding, self.encryption)

    # ------------------------------------------------------------------
    # Single record
    # ------------------------------------------------------------------

    async def index_record(self, entity_id: str, record_id: str, tenant_id: str,
                           organization_id: Optional[str] = None) -> VectorIndexOperationResult:
        return await self.pipeline.index_record(entity_id, record_id, tenant_id, organization_id)

    async def delete_record(self, entity_id: str, record_id: str, tenant_id: str,
                            organization_id: Optional[str] = None) -> VectorIndexOperationResult:
        return await self.pipeline.delete_record(entity_id, record_id, tenant_id, organization_id)

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def reindex_entity(self, entity_id: str, tenant_id: Optional[str] = None,
                             organization_id: Optional[str] = None, purge_first: bool = False) -> ReindexReport:
        return await self.reindexer.reindex_entity(entity_id, tenant_id, organization_id, purge_first)

    async def reindex_all(self, tenant_id: Optional[str] = None, organization_id: Optional[str] = None,
                          purge_first: bool = False) -> List[ReindexReport]:
        return await self.reindexer.reindex_all(tenant_id, organization_id, purge_first)

    def cancel_reindex(self, tenant_id: str, organization_id: Optional[str] = None) -> int:
        return self.reindexer.cancel(tenant_id, organization_id)

    async def remove_orphans(self, entity_id: str, older_than: datetime, tenant_id: Optional[str] = None,
                             organization_id: Optional[str] = None) -> int:
        return await self.reaper.remove_orphans(entity_id, older_than, tenant_id, organization_id)

    async def purge_index(
        self,
        tenant_id: str,
        organization_id: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> List[str]:
        """
        Remove every entry of the tenant for one entity (or all registered
        entities). Fails before touching anything if a target driver cannot
        purge. Returns the purged entity ids.
        """
        targets = [entity_id] if entity_id else self.registry.list_enabled_entities()

        grouped: Dict[str, List[str]] = {}
        for target in targets:
            registered = self.registry.get(target)
            if registered is None:
                continue
            driver = self.drivers.get(registered.driver_id)
            if not driver.supports(DriverCapability.PURGE):
                raise DriverCapabilityError(driver.driver_id, DriverCapability.PURGE.value)
            grouped.setdefault(registered.driver_id, []).append(target)

        purged = []
        for driver_id, entity_ids in grouped.items():
            driver = self.drivers.get(driver_id)
            await driver.ensure_ready()
            for target in entity_ids:
                await driver.purge(target, tenant_id)
                purged.append(target)

        logger.info("index_purged", tenant_id=tenant_id, organization_id=organization_id, entities=purged)
        return purged

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def _target_driver(self, entity_id: Optional[str], driver_id: Optional[str]) -> Optional[VectorDriver]:
        registered = self.registry.get(entity_id) if entity_id else None
        if entity_id and registered is None:
            return None
        resolved = driver_id or (registered.driver_id if registered else self.registry.default_driver_id)
        return self.drivers.get(resolved)

    async def count_index_entries(
        self,
        tenant_id: str,
        organization_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        driver_id: Optional[str] = None,
    ) -> int:
        if not tenant_id:
            return 0
        driver = self._target_driver(entity_id, driver_id)
        if driver is None:
            return 0
        await driver.ensure_ready()
        filter = VectorQueryFilter(
            tenant_id=tenant_id,
            organization_id=organization_id,
            entity_ids=[entity_id] if entity_id else None,
        )

        if driver.supports(DriverCapability.COUNT):
            try:
                return await driver.count(filter)
            except Exception as e:
                logger.warning("driver_count_failed", driver_id=driver.driver_id, error=str(e))

        if driver.supports(DriverCapability.LIST):
            total, offset = 0, 0
            while True:
                batch = await driver.list(filter, limit=COUNT_PAGE_SIZE, offset=offset, order_by="created_at")
                total += len(batch)
                if len(batch) < COUNT_PAGE_SIZE:
                    return total
                offset += COUNT_PAGE_SIZE

        logger.warning("driver_cannot_count", driver_id=driver.driver_id)
        return 0

    async def list_index_entries(
        self,
        tenant_id: str,
        organization_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        driver_id: Optional[str] = None,
    ) -> List[VectorIndexEntry]:
        """Newest first, decrypted, with a primary link synthesised when no links were stored."""
        driver = self._target_driver(entity_id, driver_id)
        if driver is None:
            return []
        if not driver.supports(DriverCapability.LIST):
            raise DriverCapabilityError(driver.driver_id, DriverCapability.LIST.value)
        await driver.ensure_ready()

        entries = await driver.list(
            VectorQueryFilter(
                tenant_id=tenant_id,
                organization_id=organization_id,
                entity_ids=[entity_id] if entity_id else None,
            ),
            limit=limit,
            offset=offset,
            order_by="updated_at",
        )
        listed = []
        for entry in entries:
            plain = decrypt_entry(self.encryption, entry)
            listed.append(plain.model_copy(update={"links": hydrate_links(plain)}))
        return listed

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        tenant_id: str,
        organization_id: Optional[str] = None,
        limit: int = 10,
        driver_id: Optional[str] = None,
        entity_ids: Optional[List[str]] = None,
    ) -> List[VectorSearchHit]:
        return await self.query_service.search(query, tenant_id, organization_id, limit, driver_id, entity_ids)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_driver_ready(self, entity_id: Optional[str] = None) -> None:
        if entity_id:
            registered = self.registry.get(entity_id)
            driver_ids = [registered.driver_id] if registered else []
        else:
            driver_ids = self.registry.driver_ids() or [self.registry.default_driver_id]
        for driver_id in driver_ids:
            await self.drivers.get(driver_id).ensure_ready()

    def list_enabled_entities(self) -> List[str]:
        return self.registry.list_enabled_entities()
