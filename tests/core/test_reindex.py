"""
Tests for ReindexOrchestrator: inline walks, dispatch, cancellation, orphans.
"""
from datetime import timedelta

import pytest

from tests.conftest import COMPANY_ENTITY, DEAL_ENTITY
from vectorindex.core.events import REINDEX_EVENT, LocalEventBus
from vectorindex.core.exceptions import ConfigurationError
from vectorindex.core.reindex import CancellationToken, DispatchedReindex, OrphanReaper
from vectorindex.core.registry import EntityConfig, EntityConfigRegistry, ModuleConfig
from vectorindex.core.service import VectorIndexService
from vectorindex.drivers import DriverSet, InMemoryVectorDriver
from vectorindex.drivers.base import VectorDriver
from vectorindex.schema import DriverCapability, ReindexModeKind, VectorQueryFilter, utcnow


def company(record_id, tenant_id="t1", **extra):
    return {"id": record_id, "tenant_id": tenant_id, "name": f"Company {record_id}", **extra}


class TestInlineReindex:

    @pytest.mark.asyncio
    async def test_scenario_e_purge_then_rebuild(self, service, record_source, memory_driver, tenant_id):
        """
        Given three indexed records, one of which was since deleted at the source
        When the entity is reindexed with purge_first
        Then exactly the two live records remain indexed
        """
        for record_id in ("r1", "r2", "r3"):
            record_source.put(COMPANY_ENTITY, company(record_id))
            await service.index_record(COMPANY_ENTITY, record_id, tenant_id)
        record_source.remove(COMPANY_ENTITY, "r3")

        report = await service.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id, purge_first=True)

        assert report.mode == ReindexModeKind.INLINE
        assert report.purged is True
        assert report.indexed == 2
        assert report.cancelled is False
        assert await service.count_index_entries(tenant_id, entity_id=COMPANY_ENTITY) == 2
        assert await memory_driver.get_checksum(COMPANY_ENTITY, "r3", tenant_id) is None

    @pytest.mark.asyncio
    async def test_walk_without_purge_skips_unchanged(self, service, record_source, embedding, tenant_id):
        record_source.put(COMPANY_ENTITY, company("r1"))
        await service.index_record(COMPANY_ENTITY, "r1", tenant_id)
        record_source.put(COMPANY_ENTITY, company("r2"))

        report = await service.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id)

        assert report.indexed == 1
        assert report.skipped == 1
        assert report.purged is False
        assert len(embedding.calls) == 2

    @pytest.mark.asyncio
    async def test_paginates_until_short_page(self, service_factory, record_source, mocker, tenant_id):
        service = service_factory(page_size=2)
        for index in range(5):
            record_source.put(COMPANY_ENTITY, company(f"r{index}"))
        query_spy = mocker.spy(record_source, "query")

        report = await service.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id)

        assert report.indexed == 5
        assert [call.kwargs["page"] for call in query_spy.call_args_list] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_requires_tenant(self, service):
        with pytest.raises(ConfigurationError):
            await service.reindex_entity(COMPANY_ENTITY)

    @pytest.mark.asyncio
    async def test_record_errors_are_collected(self, service, record_source, mocker, tenant_id):
        record_source.put(COMPANY_ENTITY, company("r1"))
        record_source.put(COMPANY_ENTITY, company("r2"))
        original = service.pipeline.index_existing

        async def flaky(entity_id, payload, *args, **kwargs):
            if payload.record_id == "r1":
                raise RuntimeError("boom")
            return await original(entity_id, payload, *args, **kwargs)

        mocker.patch.object(service.pipeline, "index_existing", side_effect=flaky)

        report = await service.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id)

        assert report.indexed == 1
        assert report.errors == [{"record_id": "r1", "error": "boom"}]

    @pytest.mark.asyncio
    async def test_configuration_error_aborts_walk(self, service, record_source, embedding, tenant_id):
        record_source.put(COMPANY_ENTITY, company("r1"))
        embedding.available = False

        with pytest.raises(ConfigurationError):
            await service.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id)

    @pytest.mark.asyncio
    async def test_every_result_is_audited(self, service, record_source, mocker, tenant_id):
        record_source.put(COMPANY_ENTITY, company("r1"))
        audit = mocker.patch("vectorindex.core.reindex.log_vector_operation")

        await service.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id)

        audit.assert_called_once()
        handler, entity_id, record_id, result = audit.call_args.args
        assert (handler, entity_id, record_id) == ("reindex", COMPANY_ENTITY, "r1")
        assert result.action.value == "indexed"

    @pytest.mark.asyncio
    async def test_reindex_all_covers_every_entity(self, service, record_source, tenant_id):
        record_source.put(COMPANY_ENTITY, company("c1"))
        record_source.put(DEAL_ENTITY, {"id": "d1", "tenant_id": tenant_id, "name": "Deal"})

        reports = await service.reindex_all(tenant_id=tenant_id)

        assert [(r.entity_id, r.indexed) for r in reports] == [(COMPANY_ENTITY, 1), (DEAL_ENTITY, 1)]

    @pytest.mark.asyncio
    async def test_unknown_entity_returns_empty_report(self, service, tenant_id):
        report = await service.reindex_entity("nope:x", tenant_id=tenant_id)

        assert report.processed == 0


class TestCancellation:

    def test_token(self):
        token = CancellationToken("m:a", "t1")
        token.raise_if_cancelled()

        token.cancel()

        assert token.cancelled is True

    @pytest.mark.asyncio
    async def test_cancel_stops_walk_between_pages(self, service_factory, record_source, tenant_id, mocker):
        """
        Given a walk over three pages
        When cancel_reindex is called while the first page is being fetched
        Then the walk stops before the second page and reports cancellation
        """
        service = service_factory(page_size=2)
        for index in range(6):
            record_source.put(COMPANY_ENTITY, company(f"r{index}"))
        original_query = record_source.query
        signalled = []

        async def query_and_cancel(*args, **kwargs):
            page = await original_query(*args, **kwargs)
            if kwargs.get("page") == 1:
                signalled.append(service.cancel_reindex(tenant_id))
            return page

        mocker.patch.object(record_source, "query", side_effect=query_and_cancel)

        report = await service.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id, purge_first=True)

        assert signalled == [1]
        assert report.cancelled is True
        assert report.indexed == 2
        assert report.orphans_removed == 0

    def test_cancel_with_nothing_running(self, service, tenant_id):
        assert service.cancel_reindex(tenant_id) == 0


class TestDispatchedReindex:

    @pytest.mark.asyncio
    async def test_emits_event_and_purges(self, service_factory, record_source, memory_driver, tenant_id):
        bus = LocalEventBus()
        service = service_factory(reindex_mode=DispatchedReindex(bus))
        record_source.put(COMPANY_ENTITY, company("r1"))
        await service.index_record(COMPANY_ENTITY, "r1", tenant_id)

        report = await service.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id, organization_id="o1", purge_first=True)

        assert report.mode == ReindexModeKind.DISPATCHED
        assert report.purged is True
        assert await memory_driver.count(VectorQueryFilter(tenant_id=tenant_id)) == 0
        assert bus.emitted == [(REINDEX_EVENT, {
            "entity_id": COMPANY_ENTITY,
            "force": True,
            "reset_coverage": True,
            "tenant_id": tenant_id,
            "organization_id": "o1",
        })]

    @pytest.mark.asyncio
    async def test_without_tenant_skips_purge(self, service_factory):
        bus = LocalEventBus()
        service = service_factory(reindex_mode=DispatchedReindex(bus))

        report = await service.reindex_entity(COMPANY_ENTITY, purge_first=True)

        assert report.purged is False
        assert bus.emitted == [(REINDEX_EVENT, {"entity_id": COMPANY_ENTITY, "force": True, "reset_coverage": True})]

    @pytest.mark.asyncio
    async def test_worker_walks_inline(self, service_factory, record_source, tenant_id):
        bus = LocalEventBus()
        dispatcher = service_factory(reindex_mode=DispatchedReindex(bus))
        worker = service_factory()
        bus.subscribe(REINDEX_EVENT, worker.reindexer.handle_reindex_event)
        record_source.put(COMPANY_ENTITY, company("r1"))

        await dispatcher.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id)

        assert await worker.count_index_entries(tenant_id) == 1


    @pytest.mark.asyncio
    async def test_worker_reports_event_without_tenant(self, service_factory, record_source, tenant_id):
        """
        Given a dispatcher that emits a reindex event without a tenant
        When a worker receives it
        Then the worker reports the error instead of raising
        """
        bus = LocalEventBus()
        dispatcher = service_factory(reindex_mode=DispatchedReindex(bus))
        worker = service_factory()
        reports = []

        async def work(event_name, payload):
            reports.append(await worker.reindexer.handle_reindex_event(event_name, payload))

        bus.subscribe(REINDEX_EVENT, work)
        record_source.put(COMPANY_ENTITY, company("r1"))

        await dispatcher.reindex_entity(COMPANY_ENTITY)

        assert len(reports) == 1
        assert reports[0].indexed == 0
        assert len(reports[0].errors) == 1
        assert await worker.count_index_entries(tenant_id) == 0

class TestOrphanReaper:

    @pytest.mark.asyncio
    async def test_removes_entries_older_than_cutoff(self, service, record_source, tenant_id):
        record_source.put(COMPANY_ENTITY, company("r1"))
        await service.index_record(COMPANY_ENTITY, "r1", tenant_id)

        kept = await service.remove_orphans(COMPANY_ENTITY, utcnow() - timedelta(hours=1), tenant_id)
        removed = await service.remove_orphans(COMPANY_ENTITY, utcnow() + timedelta(seconds=1), tenant_id)

        assert (kept, removed) == (0, 1)

    @pytest.mark.asyncio
    async def test_purge_first_reaps_orphans_when_driver_cannot_purge(self, registry, record_source, embedding, tenant_id):
        """
        Given a driver that can remove orphans but not purge
        When an entity is reindexed with purge_first after a record was deleted at the source
        Then the stale entry is removed by orphan removal
        """
        class NoPurgeDriver(InMemoryVectorDriver):
            capabilities = frozenset({DriverCapability.LIST, DriverCapability.COUNT, DriverCapability.REMOVE_ORPHANS})

        service = VectorIndexService(registry, DriverSet([NoPurgeDriver("memory")]), record_source, embedding)
        for record_id in ("r1", "r2", "r3"):
            record_source.put(COMPANY_ENTITY, company(record_id))
            await service.index_record(COMPANY_ENTITY, record_id, tenant_id)
        record_source.remove(COMPANY_ENTITY, "r3")

        report = await service.reindex_entity(COMPANY_ENTITY, tenant_id=tenant_id, purge_first=True)

        assert report.purged is False
        assert report.orphans_removed == 1
        assert await service.count_index_entries(tenant_id) == 2

    @pytest.mark.asyncio
    async def test_unsupported_driver_is_a_logged_noop(self):
        class MinimalDriver(VectorDriver):
            driver_id = "minimal"

            async def ensure_ready(self):
                pass

            async def upsert(self, entry):
                pass

            async def get_checksum(self, entity_id, record_id, tenant_id):
                return None

            async def delete(self, entity_id, record_id, tenant_id):
                pass

            async def query(self, vector, limit, filter):
                return []

        registry = EntityConfigRegistry(default_driver_id="minimal")
        registry.register([ModuleConfig("m", [EntityConfig("m:a")])])
        reaper = OrphanReaper(registry, DriverSet([MinimalDriver()]))

        assert await reaper.remove_orphans("m:a", utcnow(), "t1") == 0

    @pytest.mark.asyncio
    async def test_unknown_entity(self, registry):
        reaper = OrphanReaper(registry, DriverSet([InMemoryVectorDriver("memory")]))

        assert await reaper.remove_orphans("nope:x", utcnow()) == 0
