"""
Service assembly.

`build_service` wires a VectorIndexService from settings plus whatever the
host application passes in (entity configs, record source, event sink).
The CLI and the HTTP app get their service from `load_service`, which calls
the factory named by SERVICE_FACTORY ("package.module:callable") once.
"""
import importlib
from typing import Callable, Iterable, List, Optional

from vectorindex.config import Settings, settings
from vectorindex.core.events import EventSink
from vectorindex.core.exceptions import ConfigurationError
from vectorindex.core.logging import get_logger
from vectorindex.core.records import InMemoryRecordSource, RecordSource
from vectorindex.core.registry import EntityConfigRegistry, ModuleConfig
from vectorindex.core.reindex import DispatchedReindex, InlineReindex
from vectorindex.core.service import VectorIndexService
from vectorindex.drivers import DriverSet, InMemoryVectorDriver, PgVectorDriver, VectorDriver
from vectorindex.utils.embeddings import EmbeddingClient, get_embedding_service
from vectorindex.utils.encryption import AesGcmTenantEncryption, EncryptionAdapter, TenantEncryptionService

logger = get_logger(__name__)

_service: Optional[VectorIndexService] = None


def default_drivers(config: Settings) -> List[VectorDriver]:
    if config.default_driver_id == "memory":
        return [InMemoryVectorDriver()]
    if config.default_driver_id == "pgvector":
        return [PgVectorDriver(database_url=config.database_url or None)]
    raise ConfigurationError(f"No built-in driver for '{config.default_driver_id}'")


def build_service(
    module_configs: Iterable[ModuleConfig] = (),
    record_source: Optional[RecordSource] = None,
    drivers: Optional[Iterable[VectorDriver]] = None,
    embedding: Optional[EmbeddingClient] = None,
    encryption_service: Optional[TenantEncryptionService] = None,
    event_sink: Optional[EventSink] = None,
    config: Optional[Settings] = None,
) -> VectorIndexService:
    config = config or settings

    registry = EntityConfigRegistry(default_driver_id=config.default_driver_id)
    registry.register(module_configs)

    driver_set = DriverSet(drivers if drivers is not None else default_drivers(config))
    for driver_id in registry.driver_ids():
        if driver_id not in driver_set:
            raise ConfigurationError(f"Entities reference unregistered vector driver '{driver_id}'")

    if record_source is None:
        logger.warning("record_source_not_configured", fallback="in_memory")
        record_source = InMemoryRecordSource()

    if encryption_service is None and config.encryption_master_key:
        encryption_service = AesGcmTenantEncryption(config.encryption_master_key)

    mode = DispatchedReindex(event_sink) if event_sink is not None else InlineReindex()

    service = VectorIndexService(
        registry,
        driver_set,
        record_source,
        embedding or get_embedding_service(config.embedding_model),
        encryption=EncryptionAdapter(encryption_service),
        reindex_mode=mode,
        page_size=config.reindex_page_size,
    )
    logger.info(
        "vector_service_built",
        entities=len(registry),
        drivers=driver_set.ids(),
        reindex_mode=mode.kind.value,
        encryption=encryption_service is not None,
    )
    return service


def _import_factory(path: str) -> Callable[[], VectorIndexService]:
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"SERVICE_FACTORY must look like 'package.module:callable', got '{path}'")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load service factory '{path}': {e}") from e


def load_service(factory_path: Optional[str] = None) -> VectorIndexService:
    """Resolve the configured factory once and cache the service it returns."""
    global _service
    if _service is not None:
        return _service

    path = factory_path or settings.service_factory
    if not path:
        raise ConfigurationError("No service factory configured (set SERVICE_FACTORY)")

    service = _import_factory(path)()
    if not isinstance(service, VectorIndexService):
        raise ConfigurationError(f"Service factory '{path}' did not return a VectorIndexService")
    _service = service
    return _service


def reset_service() -> None:
    """Forget the cached service (useful for tests)."""
    global _service
    _service = None
