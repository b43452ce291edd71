"""
Record source boundary.

The record source hands back raw rows in which custom fields are encoded as
`cf:<key>` (with an optional `cf:<key>__is_multi` flag). `decode_record` is
the only place that understands that encoding; everything past the pipeline
entry point works with a RecordPayload.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

CUSTOM_FIELD_PREFIX = "cf:"
MULTI_FLAG_SUFFIX = "__is_multi"


@dataclass
class RecordPayload:
    record: Dict[str, Any]
    custom_fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def record_id(self) -> str:
        value = self.record.get("id")
        return "" if value is None else str(value)

    @property
    def organization_id(self) -> Optional[str]:
        value = self.record.get("organization_id", self.record.get("organizationId"))
        return None if value is None else str(value)

    def as_checksum_source(self) -> Dict[str, Any]:
        return {"record": self.record, "customFields": self.custom_fields}


def decode_record(raw: Dict[str, Any]) -> RecordPayload:
    """Split a raw row into plain record columns and custom field values."""
    record: Dict[str, Any] = {}
    custom_fields: Dict[str, Any] = {}
    multi: Dict[str, bool] = {}

    for key, value in raw.items():
        if key.startswith(CUSTOM_FIELD_PREFIX) and key.endswith(MULTI_FLAG_SUFFIX):
            bare = key[len(CUSTOM_FIELD_PREFIX):-len(MULTI_FLAG_SUFFIX)]
            multi[bare] = bool(value)
            continue
        if key.startswith(CUSTOM_FIELD_PREFIX):
            custom_fields[key[len(CUSTOM_FIELD_PREFIX):]] = value
            continue
        record[key] = value

    for bare, is_multi in multi.items():
        value = custom_fields.get(bare)
        if is_multi and value is not None and not isinstance(value, list):
            custom_fields[bare] = [value]

    return RecordPayload(record=record, custom_fields=custom_fields)


@dataclass
class RecordPage:
    items: List[Dict[str, Any]]
    has_more: bool = False


@runtime_checkable
class RecordSource(Protocol):
    """
    Returns only live records the tenant may see. A missing id is simply
    absent from the fetch result.
    """

    async def fetch(
        self,
        entity_id: str,
        ids: List[str],
        tenant_id: str,
        organization_id: Optional[str] = None,
        fields: Optional[List[str]] = None,
    ) -> Dict[str, Dict[str, Any]]:
        ...

    async def query(
        self,
        entity_id: str,
        tenant_id: str,
        organization_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
        fields: Optional[List[str]] = None,
    ) -> RecordPage:
        ...


class InMemoryRecordSource:
    """
    Dict-backed record source for local development and tests.

    Rows are stored per entity and must carry `id` and `tenant_id`;
    `organization_id` is optional.
    """

    def __init__(self, rows: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._rows: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for entity_id, items in (rows or {}).items():
            for row in items:
                self.put(entity_id, row)

    def put(self, entity_id: str, row: Dict[str, Any]) -> None:
        self._rows.setdefault(entity_id, {})[str(row["id"])] = dict(row)

    def remove(self, entity_id: str, record_id: str) -> None:
        self._rows.get(entity_id, {}).pop(str(record_id), None)

    def _visible(self, row: Dict[str, Any], tenant_id: str, organization_id: Optional[str]) -> bool:
        if str(row.get("tenant_id")) != str(tenant_id):
            return False
        if organization_id is not None and row.get("organization_id") not in (None, organization_id):
            return False
        return True

    @staticmethod
    def _project(row: Dict[str, Any], fields: Optional[List[str]]) -> Dict[str, Any]:
        if not fields:
            return dict(row)
        wanted = set(fields)
        return {
            key: value for key, value in row.items()
            if key in wanted or key.startswith(CUSTOM_FIELD_PREFIX)
        }

    async def fetch(self, entity_id, ids, tenant_id, organization_id=None, fields=None):
        rows = self._rows.get(entity_id, {})
        found = {}
        for record_id in ids:
            row = rows.get(str(record_id))
            if row is not None and self._visible(row, tenant_id, organization_id):
                found[str(record_id)] = self._project(row, fields)
        return found

    async def query(self, entity_id, tenant_id, organization_id=None, page=1, page_size=50, fields=None):
        visible = [
            row for row in self._rows.get(entity_id, {}).values()
            if self._visible(row, tenant_id, organization_id)
        ]
        start = (max(page, 1) - 1) * page_size
        items = visible[start:start + page_size]
        return RecordPage(
            items=[self._project(row, fields) for row in items],
            has_more=start + page_size < len(visible),
        )
