"""
Single-record indexing pipeline.

Coordinates: fetch → resolve source → checksum gate → embed → presenter/links
→ encrypt → upsert (or delete when the record is gone).

Decision table:
    record missing, no entry            -> skipped(missing_record)
    record missing, entry present       -> deleted
    source is None, no entry            -> skipped(missing_record)
    source is None, entry present       -> deleted (unless skip_delete)
    checksum == stored                  -> skipped(checksum_match), no embedding call (unless force)
    checksum != stored / no entry       -> embed + store
"""
from typing import Any, Dict, Optional

from vectorindex.core.checksum import compute_checksum
from vectorindex.core.exceptions import ConfigurationError
from vectorindex.core.logging import get_logger, tenant_context
from vectorindex.core.records import RecordPayload, RecordSource, decode_record
from vectorindex.core.registry import EntityConfigRegistry, RegisteredEntity
from vectorindex.core.sources import (
    SourceContext, SourceResolver, default_entity_icon, derive_snapshot, resolve_primary_link,
)
from vectorindex.drivers.base import DriverSet, VectorDriver
from vectorindex.schema import (
    IndexAction, SkipReason, VectorIndexEntry, VectorIndexOperationResult,
)
from vectorindex.utils.embeddings import EmbeddingClient
from vectorindex.utils.encryption import EncryptionAdapter

logger = get_logger(__name__)

# Stored alongside the encrypted fields but never encrypted
PLAINTEXT_FIELDS = ("result_badge", "url")


# ============================================================================
# RESULT HELPERS
# ============================================================================

def skipped(reason: SkipReason, tenant_id: str, organization_id: Optional[str], existed: bool = False):
    return VectorIndexOperationResult(
        action=IndexAction.SKIPPED,
        reason=reason,
        existed=existed,
        tenant_id=tenant_id,
        organization_id=organization_id,
    )


def deleted(tenant_id: str, organization_id: Optional[str]):
    return VectorIndexOperationResult(
        action=IndexAction.DELETED,
        existed=True,
        tenant_id=tenant_id,
        organization_id=organization_id,
    )


# ============================================================================
# PIPELINE
# ============================================================================

class IndexingPipeline:
    """
    Indexes or removes one record at a time.

    Stateless per call: concurrent calls for different records are
    independent, and two calls for the same record converge at the driver's
    upsert (last write wins).
    """

    def __init__(
        self,
        registry: EntityConfigRegistry,
        drivers: DriverSet,
        record_source: RecordSource,
        embedding: EmbeddingClient,
        encryption: Optional[EncryptionAdapter] = None,
        resolver: Optional[SourceResolver] = None,
    ):
        self.registry = registry
        self.drivers = drivers
        self.record_source = record_source
        self.embedding = embedding
        self.encryption = encryption or EncryptionAdapter(None)
        self.resolver = resolver or SourceResolver()

    async def _driver_for(self, registered: RegisteredEntity) -> VectorDriver:
        driver = self.drivers.get(registered.driver_id)
        await driver.ensure_ready()
        return driver

    async def index_record(
        self,
        entity_id: str,
        record_id: str,
        tenant_id: str,
        organization_id: Optional[str] = None,
    ) -> VectorIndexOperationResult:
        registered = self.registry.get(entity_id)
        if registered is None:
            logger.debug("index_skipped_unsupported", entity_id=entity_id, record_id=record_id)
            return skipped(SkipReason.UNSUPPORTED, tenant_id, organization_id)

        driver = await self._driver_for(registered)
        fetched = await self.record_source.fetch(
            entity_id,
            [str(record_id)],
            tenant_id,
            organization_id,
            registered.config.fetch_fields(),
        )
        raw = (fetched or {}).get(str(record_id))
        if raw is None:
            return await self._remove_if_present(driver, entity_id, str(record_id), tenant_id, organization_id)

        return await self.index_existing(
            entity_id,
            decode_record(raw),
            tenant_id,
            organization_id,
            record_id=str(record_id),
        )

    async def delete_record(
        self,
        entity_id: str,
        record_id: str,
        tenant_id: str,
        organization_id: Optional[str] = None,
    ) -> VectorIndexOperationResult:
        registered = self.registry.get(entity_id)
        if registered is None:
            return skipped(SkipReason.UNSUPPORTED, tenant_id, organization_id)
        driver = await self._driver_for(registered)
        return await self._remove_if_present(driver, entity_id, str(record_id), tenant_id, organization_id)

    async def _remove_if_present(
        self,
        driver: VectorDriver,
        entity_id: str,
        record_id: str,
        tenant_id: str,
        organization_id: Optional[str],
    ) -> VectorIndexOperationResult:
        existing = await driver.get_checksum(entity_id, record_id, tenant_id)
        if existing is None:
            return skipped(SkipReason.MISSING_RECORD, tenant_id, organization_id)
        await driver.delete(entity_id, record_id, tenant_id)
        logger.info("vector_entry_deleted", entity_id=entity_id, record_id=record_id, tenant_id=tenant_id)
        return deleted(tenant_id, organization_id)

    async def index_existing(
        self,
        entity_id: str,
        payload: RecordPayload,
        tenant_id: str,
        organization_id: Optional[str] = None,
        skip_delete: bool = False,
        record_id: Optional[str] = None,
        force: bool = False,
    ) -> VectorIndexOperationResult:
        """
        Embed and store an already fetched record.

        With skip_delete=True a record whose source resolves to None is left
        alone (reindex walks defer that cleanup to orphan removal).
        With force=True an unchanged checksum is re-stored anyway, which
        refreshes the entry timestamp.
        """
        registered = self.registry.get(entity_id)
        if registered is None:
            return skipped(SkipReason.UNSUPPORTED, tenant_id, organization_id)
        driver = await self._driver_for(registered)
        config = registered.config

        record_id = record_id or payload.record_id
        resolved_org = organization_id or payload.organization_id
        ctx = SourceContext(
            entity_id=entity_id,
            record_id=record_id,
            record=payload.record,
            custom_fields=payload.custom_fields,
            tenant_id=tenant_id,
            organization_id=resolved_org,
        )

        with tenant_context(tenant_id, resolved_org, entity_id=entity_id, record_id=record_id):
            source = await self.resolver.resolve_source(config, ctx)
            if source is None:
                existing = await driver.get_checksum(entity_id, record_id, tenant_id)
                if existing is not None and not skip_delete:
                    await driver.delete(entity_id, record_id, tenant_id)
                    logger.info("vector_entry_deleted", reason="not_indexable")
                    return deleted(tenant_id, resolved_org)
                return skipped(SkipReason.MISSING_RECORD, tenant_id, resolved_org, existed=existing is not None)

            checksum = compute_checksum(source.checksum_source)
            current = await driver.get_checksum(entity_id, record_id, tenant_id)
            if not force and current is not None and current == checksum:
                logger.debug("index_skipped_checksum_match")
                return skipped(SkipReason.CHECKSUM_MATCH, tenant_id, organization_id, existed=True)

            if not self.embedding.available:
                raise ConfigurationError("Embedding service unavailable (missing OPENAI_API_KEY)")
            vector = await self.embedding.create_embedding(source.input)

            fields = await self._result_fields(config, ctx, source)
            stored_fields = self.encryption.encrypt_fields(fields, tenant_id, resolved_org)

            entry = VectorIndexEntry(
                driver_id=registered.driver_id,
                entity_id=entity_id,
                record_id=record_id,
                tenant_id=tenant_id,
                organization_id=resolved_org,
                checksum=checksum,
                embedding=list(vector),
                result_badge=fields.get("result_badge"),
                url=fields.get("url"),
                **{name: value for name, value in stored_fields.items() if name not in PLAINTEXT_FIELDS},
            )
            await driver.upsert(entry)
            logger.info("vector_entry_indexed", created=current is None, dimensions=len(entry.embedding))

        return VectorIndexOperationResult(
            action=IndexAction.INDEXED,
            created=current is None,
            existed=current is not None,
            tenant_id=tenant_id,
            organization_id=resolved_org,
        )

    async def _result_fields(self, config, ctx: SourceContext, source) -> Dict[str, Any]:
        """Plaintext presentation fields for storage."""
        presenter = await self.resolver.resolve_presenter(config, ctx, fallback=source.presenter)
        links = await self.resolver.resolve_links(config, ctx, fallback=source.links)
        url = await self.resolver.resolve_url(config, ctx)

        snapshot = derive_snapshot(ctx.record, ctx.custom_fields)
        primary = resolve_primary_link(links, url, presenter.title)

        return {
            "result_title": presenter.title,
            "result_subtitle": presenter.subtitle or snapshot,
            "result_icon": presenter.icon or default_entity_icon(ctx.entity_id, config.icon),
            "result_badge": presenter.badge,
            "result_snapshot": snapshot,
            "primary_link_href": primary.href if primary else None,
            "primary_link_label": primary.label if primary else None,
            "url": url,
            "links": [link.model_dump(exclude_none=True) for link in links] if links else None,
            "payload": source.payload,
        }
