"""
Bulk reindexing and orphan cleanup.

The mode is fixed when the orchestrator is built:
- InlineReindex: walk the record source page by page in this process.
- DispatchedReindex(sink): optionally purge, then emit a
  `query_index.reindex` event and return; a worker does the walk.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from vectorindex.core.audit import log_vector_operation
from vectorindex.core.events import REINDEX_EVENT, EventSink
from vectorindex.core.exceptions import ConfigurationError, DriverCapabilityError, ReindexCancelled
from vectorindex.core.logging import get_logger, tenant_context
from vectorindex.core.pipeline import IndexingPipeline
from vectorindex.core.records import RecordSource, decode_record
from vectorindex.core.registry import EntityConfigRegistry
from vectorindex.drivers.base import DriverSet, VectorDriver
from vectorindex.schema import DriverCapability, ReindexModeKind, ReindexReport, utcnow

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50


@dataclass(frozen=True)
class InlineReindex:
    kind = ReindexModeKind.INLINE


@dataclass(frozen=True)
class DispatchedReindex:
    sink: EventSink
    kind = ReindexModeKind.DISPATCHED


ReindexMode = Union[InlineReindex, DispatchedReindex]


class CancellationToken:
    """Cooperative cancellation for one inline walk, checked between pages."""

    def __init__(self, entity_id: str, tenant_id: str, organization_id: Optional[str] = None):
        self.id = uuid.uuid4().hex
        self.entity_id = entity_id
        self.tenant_id = tenant_id
        self.organization_id = organization_id
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ReindexCancelled(
                f"Reindex of {self.entity_id} for tenant {self.tenant_id} was cancelled"
            )


class OrphanReaper:
    """Best-effort removal of entries not touched since a point in time."""

    def __init__(self, registry: EntityConfigRegistry, drivers: DriverSet):
        self.registry = registry
        self.drivers = drivers

    async def remove_orphans(
        self,
        entity_id: str,
        older_than: datetime,
        tenant_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> int:
        registered = self.registry.get(entity_id)
        if registered is None:
            return 0
        driver = self.drivers.get(registered.driver_id)
        await driver.ensure_ready()
        if not driver.supports(DriverCapability.REMOVE_ORPHANS):
            logger.warning("orphan_removal_unsupported", driver_id=driver.driver_id, entity_id=entity_id)
            return 0
        try:
            removed = await driver.remove_orphans(
                entity_id,
                older_than,
                tenant_id=tenant_id,
                organization_id=organization_id,
            )
        except DriverCapabilityError as e:
            logger.warning("orphan_removal_unsupported", driver_id=driver.driver_id, error=str(e))
            return 0
        logger.info(
            "orphans_removed",
            entity_id=entity_id,
            tenant_id=tenant_id,
            organization_id=organization_id,
            removed=removed,
        )
        return removed


class ReindexOrchestrator:
    def __init__(
        self,
        registry: EntityConfigRegistry,
        drivers: DriverSet,
        pipeline: IndexingPipeline,
        record_source: RecordSource,
        mode: Optional[ReindexMode] = None,
        reaper: Optional[OrphanReaper] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.registry = registry
        self.drivers = drivers
        self.pipeline = pipeline
        self.record_source = record_source
        self.mode = mode or InlineReindex()
        self.reaper = reaper or OrphanReaper(registry, drivers)
        self.page_size = page_size
        self._running: Dict[str, CancellationToken] = {}

    async def reindex_entity(
        self,
        entity_id: str,
        tenant_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        purge_first: bool = False,
    ) -> ReindexReport:
        report = ReindexReport(
            entity_id=entity_id,
            tenant_id=tenant_id,
            organization_id=organization_id,
            mode=self.mode.kind,
        )
        registered = self.registry.get(entity_id)
        if registered is None:
            logger.warning("reindex_unknown_entity", entity_id=entity_id)
            return report

        driver = self.drivers.get(registered.driver_id)
        await driver.ensure_ready()

        if isinstance(self.mode, DispatchedReindex):
            await self._dispatch(driver, report, purge_first)
            return report

        return await self._walk(driver, report, purge_first)

    async def reindex_all(
        self,
        tenant_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        purge_first: bool = False,
    ) -> List[ReindexReport]:
        reports = []
        for entity_id in self.registry.list_enabled_entities():
            reports.append(await self.reindex_entity(
                entity_id,
                tenant_id=tenant_id,
                organization_id=organization_id,
                purge_first=purge_first,
            ))
        return reports

    def cancel(self, tenant_id: str, organization_id: Optional[str] = None) -> int:
        """Signal every running walk in the scope; returns how many were signalled."""
        signalled = 0
        for token in list(self._running.values()):
            if token.tenant_id != tenant_id:
                continue
            if organization_id is not None and token.organization_id != organization_id:
                continue
            if not token.cancelled:
                token.cancel()
                signalled += 1
        if signalled:
            logger.info("reindex_cancel_requested", tenant_id=tenant_id, organization_id=organization_id, walks=signalled)
        return signalled

    async def handle_reindex_event(self, event_name: str, payload: Dict[str, Any]) -> ReindexReport:
        """
        Worker side of a dispatched reindex: always walks inline, whatever
        mode this orchestrator was built with. Events without a tenant
        cannot be walked; they come back as a report carrying the error.
        """
        entity_id = payload["entity_id"]
        report = ReindexReport(
            entity_id=entity_id,
            tenant_id=payload.get("tenant_id"),
            organization_id=payload.get("organization_id"),
            mode=ReindexModeKind.INLINE,
        )
        registered = self.registry.get(entity_id)
        if registered is None:
            logger.warning("reindex_unknown_entity", entity_id=entity_id, event_name=event_name)
            return report
        if not report.tenant_id:
            logger.warning("reindex_event_missing_tenant", entity_id=entity_id, event_name=event_name)
            report.errors.append({"record_id": "", "error": "tenant_id is required to walk records"})
            return report
        driver = self.drivers.get(registered.driver_id)
        await driver.ensure_ready()
        return await self._walk(driver, report, bool(payload.get("force")))

    # ------------------------------------------------------------------

    async def _purge(self, driver: VectorDriver, entity_id: str, tenant_id: str) -> bool:
        if not driver.supports(DriverCapability.PURGE):
            logger.warning("reindex_purge_unsupported", driver_id=driver.driver_id, entity_id=entity_id)
            return False
        await driver.purge(entity_id, tenant_id)
        return True

    async def _dispatch(self, driver: VectorDriver, report: ReindexReport, purge_first: bool) -> None:
        if purge_first and report.tenant_id:
            report.purged = await self._purge(driver, report.entity_id, report.tenant_id)
        elif purge_first:
            logger.warning("reindex_purge_skipped", reason="tenant not provided", entity_id=report.entity_id)

        payload: Dict[str, Any] = {"entity_id": report.entity_id}
        if purge_first:
            payload["force"] = True
            payload["reset_coverage"] = True
        if report.tenant_id is not None:
            payload["tenant_id"] = report.tenant_id
        if report.organization_id is not None:
            payload["organization_id"] = report.organization_id

        await self.mode.sink.emit(REINDEX_EVENT, payload)
        logger.info("reindex_dispatched", entity_id=report.entity_id, tenant_id=report.tenant_id)

    async def _walk(self, driver: VectorDriver, report: ReindexReport, purge_first: bool) -> ReindexReport:
        entity_id, tenant_id, organization_id = report.entity_id, report.tenant_id, report.organization_id
        if not tenant_id:
            raise ConfigurationError("Reindex without tenant_id requires event dispatch")

        started_at = utcnow()
        if purge_first:
            report.purged = await self._purge(driver, entity_id, tenant_id)
        # Unpurged entries must be re-stored so orphan removal keeps them
        refresh = purge_first and not report.purged

        fields = self.registry.get(entity_id).config.fetch_fields()
        token = CancellationToken(entity_id, tenant_id, organization_id)
        self._running[token.id] = token

        with tenant_context(tenant_id, organization_id, entity_id=entity_id):
            logger.info("reindex_started", purge_first=purge_first, page_size=self.page_size)
            try:
                page = 1
                while True:
                    token.raise_if_cancelled()
                    result = await self.record_source.query(
                        entity_id,
                        tenant_id,
                        organization_id,
                        page=page,
                        page_size=self.page_size,
                        fields=fields,
                    )
                    if not result.items:
                        break
                    for raw in result.items:
                        await self._index_one(report, raw, force=refresh)
                    if len(result.items) < self.page_size:
                        break
                    page += 1
            except ReindexCancelled as e:
                report.cancelled = True
                logger.warning("reindex_cancelled", error=str(e), processed=report.processed)
            finally:
                self._running.pop(token.id, None)

            if purge_first and not report.cancelled:
                report.orphans_removed = await self.reaper.remove_orphans(
                    entity_id,
                    started_at,
                    tenant_id=tenant_id,
                    organization_id=organization_id,
                )

            logger.info(
                "reindex_finished",
                indexed=report.indexed,
                skipped=report.skipped,
                deleted=report.deleted,
                errors=len(report.errors),
                cancelled=report.cancelled,
            )
        return report

    async def _index_one(self, report: ReindexReport, raw: Dict[str, Any], force: bool = False) -> None:
        payload = decode_record(raw)
        record_id = payload.record_id
        if not record_id:
            return
        try:
            result = await self.pipeline.index_existing(
                report.entity_id,
                payload,
                report.tenant_id,
                report.organization_id,
                skip_delete=True,
                record_id=record_id,
                force=force,
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("reindex_record_failed", record_id=record_id, error=str(e))
            report.errors.append({"record_id": record_id, "error": str(e)})
            return
        report.record(result)
        log_vector_operation("reindex", report.entity_id, record_id, result)
