"""Audit trail of per-record index operations."""
from vectorindex.core.logging import AUDIT_LOGGER_NAME, get_logger
from vectorindex.schema import VectorIndexOperationResult

audit_logger = get_logger(AUDIT_LOGGER_NAME)


def log_vector_operation(
    handler: str,
    entity_id: str,
    record_id: str,
    result: VectorIndexOperationResult,
) -> None:
    audit_logger.info(
        "vector_operation",
        handler=handler,
        entity_id=entity_id,
        record_id=record_id,
        action=result.action.value,
        reason=result.reason.value if result.reason else None,
        created=result.created,
        existed=result.existed,
        tenant_id=result.tenant_id,
        organization_id=result.organization_id,
    )
