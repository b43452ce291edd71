"""
Keeps the index in step with record writes.

Record change events are named `<module>.<entity>.created|updated|deleted`;
the payload carries `record_id` (or `id`), `tenant_id`, optional
`organization_id` and optionally the full `entity_id`
(default `<module>:<entity>`). Failures are logged and absorbed so the write
path that emitted the event never breaks because of indexing.
"""
from typing import Any, Dict, Optional

from vectorindex.core.events import LocalEventBus
from vectorindex.core.logging import get_logger
from vectorindex.schema import VectorIndexOperationResult

logger = get_logger(__name__)

INDEX_ACTIONS = ("created", "updated")
DELETE_ACTIONS = ("deleted",)


class VectorIndexSubscriber:
    def __init__(self, service):
        self.service = service

    def attach(self, bus: LocalEventBus) -> None:
        for action in INDEX_ACTIONS + DELETE_ACTIONS:
            bus.subscribe(f"*.*.{action}", self.handle)

    async def handle(self, event_name: str, payload: Dict[str, Any]) -> Optional[VectorIndexOperationResult]:
        parts = event_name.split(".")
        if len(parts) != 3 or parts[2] not in INDEX_ACTIONS + DELETE_ACTIONS:
            logger.debug("event_ignored", event_name=event_name)
            return None
        module_id, entity_name, action = parts

        entity_id = payload.get("entity_id") or f"{module_id}:{entity_name}"
        record_id = payload.get("record_id", payload.get("id"))
        tenant_id = payload.get("tenant_id")
        organization_id = payload.get("organization_id")
        if record_id is None or not tenant_id:
            logger.warning("event_missing_scope", event_name=event_name, entity_id=entity_id)
            return None

        try:
            if action in DELETE_ACTIONS:
                result = await self.service.delete_record(entity_id, str(record_id), tenant_id, organization_id)
            else:
                result = await self.service.index_record(entity_id, str(record_id), tenant_id, organization_id)
        except Exception as e:
            logger.error(
                "vector_index_event_failed",
                event_name=event_name,
                entity_id=entity_id,
                record_id=str(record_id),
                tenant_id=tenant_id,
                error=str(e),
                exc_info=True,
            )
            return None

        logger.debug("vector_index_event_handled", event_name=event_name, action=result.action.value)
        return result
