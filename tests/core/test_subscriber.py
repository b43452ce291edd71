"""
Tests for VectorIndexSubscriber: record change events drive the index.
"""
import pytest

from tests.conftest import COMPANY_ENTITY
from vectorindex.core.events import LocalEventBus
from vectorindex.core.subscriber import VectorIndexSubscriber
from vectorindex.schema import IndexAction


@pytest.fixture
def bus(service):
    bus = LocalEventBus()
    VectorIndexSubscriber(service).attach(bus)
    return bus


class TestVectorIndexSubscriber:

    @pytest.mark.asyncio
    async def test_created_then_deleted(self, bus, record_source, memory_driver, acme_row, tenant_id):
        """
        Given a subscriber attached to the bus
        When a record is created and later deleted
        Then the index follows both events
        """
        record_source.put(COMPANY_ENTITY, acme_row)

        await bus.emit("customers.customer_company.created", {"id": "r1", "tenant_id": tenant_id})
        assert await memory_driver.get_checksum(COMPANY_ENTITY, "r1", tenant_id) is not None

        await bus.emit("customers.customer_company.deleted", {"record_id": "r1", "tenant_id": tenant_id})
        assert await memory_driver.get_checksum(COMPANY_ENTITY, "r1", tenant_id) is None

    @pytest.mark.asyncio
    async def test_explicit_entity_id_wins(self, service, record_source, acme_row, tenant_id):
        record_source.put(COMPANY_ENTITY, acme_row)
        subscriber = VectorIndexSubscriber(service)

        result = await subscriber.handle(
            "crm.company.updated",
            {"entity_id": COMPANY_ENTITY, "record_id": "r1", "tenant_id": tenant_id},
        )

        assert result.action == IndexAction.INDEXED

    @pytest.mark.asyncio
    async def test_missing_scope_is_ignored(self, service, mocker):
        index = mocker.patch.object(service, "index_record")
        subscriber = VectorIndexSubscriber(service)

        assert await subscriber.handle("customers.customer_company.updated", {"record_id": "r1"}) is None
        assert await subscriber.handle("customers.updated", {"record_id": "r1", "tenant_id": "t1"}) is None
        index.assert_not_called()

    @pytest.mark.asyncio
    async def test_failures_are_absorbed(self, service, bus, mocker, tenant_id):
        mocker.patch.object(service, "index_record", side_effect=RuntimeError("db down"))

        await bus.emit("customers.customer_company.updated", {"id": "r1", "tenant_id": tenant_id})

        result = await VectorIndexSubscriber(service).handle(
            "customers.customer_company.updated", {"id": "r1", "tenant_id": tenant_id}
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_successful_event_returns_result(self, service, record_source, acme_row, tenant_id):
        record_source.put(COMPANY_ENTITY, acme_row)

        result = await VectorIndexSubscriber(service).handle(
            "customers.customer_company.created", {"id": "r1", "tenant_id": tenant_id}
        )

        assert result.action == IndexAction.INDEXED


class TestLocalEventBus:

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        """
        Given two handlers on the same event, the first of which raises
        When the event is emitted
        Then emit returns normally and the second handler still runs
        """
        bus = LocalEventBus()
        seen = []

        async def broken(event_name, payload):
            raise RuntimeError("handler down")

        bus.subscribe("customers.*.created", broken)
        bus.subscribe("customers.*.created", lambda event_name, payload: seen.append(payload["id"]))

        await bus.emit("customers.customer_company.created", {"id": "r1"})

        assert seen == ["r1"]
        assert bus.emitted == [("customers.customer_company.created", {"id": "r1"})]
