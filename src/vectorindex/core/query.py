"""Similarity search over the index, scoped to one tenant."""
from typing import Any, Dict, List, Optional, Union

from vectorindex.core.exceptions import ConfigurationError
from vectorindex.core.logging import get_logger
from vectorindex.core.registry import EntityConfigRegistry
from vectorindex.drivers.base import DriverSet
from vectorindex.schema import (
    VectorIndexEntry, VectorLink, VectorQueryFilter, VectorResultPresenter, VectorSearchHit,
)
from vectorindex.utils.embeddings import EmbeddingClient
from vectorindex.utils.encryption import ENCRYPTED_RESULT_FIELDS, EncryptionAdapter

logger = get_logger(__name__)

DEFAULT_LIMIT = 10


def coerce_links(value: Union[List[Any], str, None]) -> Optional[List[VectorLink]]:
    """Stored links as VectorLink objects; a leftover ciphertext string yields None."""
    if not isinstance(value, list) or not value:
        return None
    links = []
    for link in value:
        if isinstance(link, VectorLink):
            links.append(link)
        elif isinstance(link, dict) and link.get("href"):
            links.append(VectorLink.model_validate(link))
    return links or None


def decrypt_entry(encryption: EncryptionAdapter, entry: VectorIndexEntry) -> VectorIndexEntry:
    """Copy of the entry with its result fields decrypted (plain links restored)."""
    fields = {name: getattr(entry, name) for name in ENCRYPTED_RESULT_FIELDS}
    if isinstance(fields["links"], list):
        fields["links"] = [
            link.model_dump(exclude_none=True) if isinstance(link, VectorLink) else link
            for link in fields["links"]
        ]
    plain = encryption.decrypt_fields(fields, entry.tenant_id, entry.organization_id)

    links = plain.get("links")
    payload = plain.get("payload")
    plain["links"] = coerce_links(links) if isinstance(links, list) else (links if isinstance(links, str) else None)
    plain["payload"] = payload if isinstance(payload, (dict, str)) else None
    return entry.model_copy(update=plain)


def hydrate_links(entry: VectorIndexEntry) -> Optional[List[VectorLink]]:
    """Stored links, else a single primary link synthesised from the stored href/label."""
    links = coerce_links(entry.links)
    if links:
        return links
    if entry.primary_link_href:
        return [VectorLink(
            href=entry.primary_link_href,
            label=entry.primary_link_label or entry.result_title,
            kind="primary",
        )]
    return None


def entry_to_hit(entry: VectorIndexEntry) -> VectorSearchHit:
    metadata: Optional[Dict[str, Any]] = None
    if isinstance(entry.payload, dict):
        metadata = entry.payload
    elif entry.result_snapshot:
        metadata = {"snapshot": entry.result_snapshot}

    return VectorSearchHit(
        entity_id=entry.entity_id,
        record_id=entry.record_id,
        score=entry.score,
        url=entry.url or entry.primary_link_href,
        presenter=VectorResultPresenter(
            title=entry.result_title,
            subtitle=entry.result_subtitle,
            icon=entry.result_icon,
            badge=entry.result_badge,
        ),
        links=hydrate_links(entry),
        driver_id=entry.driver_id,
        metadata=metadata,
    )


class QueryService:
    def __init__(
        self,
        registry: EntityConfigRegistry,
        drivers: DriverSet,
        embedding: EmbeddingClient,
        encryption: Optional[EncryptionAdapter] = None,
    ):
        self.registry = registry
        self.drivers = drivers
        self.embedding = embedding
        self.encryption = encryption or EncryptionAdapter(None)

    async def search(
        self,
        query: str,
        tenant_id: str,
        organization_id: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        driver_id: Optional[str] = None,
        entity_ids: Optional[List[str]] = None,
    ) -> List[VectorSearchHit]:
        """
        Embed the query and return hits from one driver, never crossing the
        tenant boundary. Embedding unavailability surfaces as ConfigurationError.
        """
        if not tenant_id:
            raise ValueError("tenant_id is required for search")
        if not self.embedding.available:
            raise ConfigurationError("Embedding service unavailable (missing OPENAI_API_KEY)")

        driver = self.drivers.get(driver_id or self.registry.default_driver_id)
        await driver.ensure_ready()

        vector = await self.embedding.create_embedding(query)
        entries = await driver.query(
            vector,
            limit,
            VectorQueryFilter(tenant_id=tenant_id, organization_id=organization_id, entity_ids=entity_ids),
        )

        hits = []
        for entry in entries:
            if entry.tenant_id != tenant_id:
                logger.error("cross_tenant_hit_dropped", driver_id=driver.driver_id, entity_id=entry.entity_id)
                continue
            hits.append(entry_to_hit(decrypt_entry(self.encryption, entry)))

        logger.info("vector_search_completed", tenant_id=tenant_id, driver_id=driver.driver_id, hits=len(hits))
        return hits
