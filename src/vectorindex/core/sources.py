"""
Source resolution: turns a decoded record into embeddable text plus the
presentation data stored alongside the vector.

Each entity may register a SourceProvider. Its hook methods default to the
generic behaviour, so an entity without a provider is indexed exactly as if
it had registered GenericSourceProvider. Hooks may be sync or async.
"""
import inspect
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from vectorindex.core.records import RecordPayload
from vectorindex.core.registry import EntityConfig
from vectorindex.schema import VectorIndexSource, VectorLink, VectorResultPresenter

PREFERRED_FIELDS = ("title", "name", "displayName", "summary", "subject")
BOOKKEEPING_FIELDS = (
    "id",
    "tenantId", "tenant_id",
    "organizationId", "organization_id",
    "createdAt", "created_at",
    "updatedAt", "updated_at",
)

TITLE_FIELDS = ("display_name", "displayName", "title", "name", "subject")
SUBTITLE_FIELDS = ("summary", "description", "body")
SNAPSHOT_FIELDS = ("summary", "description", "body")

KIND_ICONS = {
    "person": "user",
    "company": "building",
    "organization": "building",
}

# Matched by entity id prefix
DEFAULT_ENTITY_ICONS = {
    "customers:customer_deal": "briefcase",
    "customers:customer_comment": "sticky-note",
    "customers:customer_activity": "bolt",
    "customers:customer_todo": "check-square",
}


@dataclass
class SourceContext:
    entity_id: str
    record_id: str
    record: Dict[str, Any]
    custom_fields: Dict[str, Any]
    tenant_id: str
    organization_id: Optional[str] = None


class SourceProvider:
    """
    Per-entity hooks. Override any subset.

    build_source returning None means "this record is not indexable right
    now"; the pipeline then removes any existing entry for it.
    """

    def build_source(self, ctx: SourceContext) -> Optional[VectorIndexSource]:
        return build_default_source(ctx)

    def format_result(self, ctx: SourceContext) -> Optional[VectorResultPresenter]:
        return None

    def resolve_links(self, ctx: SourceContext) -> Optional[List[VectorLink]]:
        return None

    def resolve_url(self, ctx: SourceContext) -> Optional[str]:
        return None


class GenericSourceProvider(SourceProvider):
    """Fallback provider used for entities registered without one."""
    pass


GENERIC_PROVIDER = GenericSourceProvider()


# ============================================================================
# Small helpers
# ============================================================================

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def first_text(*candidates: Any) -> Optional[str]:
    """First candidate that is a non-empty string (after stripping)."""
    for value in candidates:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _pick(mapping: Dict[str, Any], keys: Sequence[str]) -> List[Any]:
    return [mapping.get(key) for key in keys]


def _format_line(label: str, value: Any) -> Optional[str]:
    if _is_blank(value):
        return None
    if isinstance(value, (dict, list)):
        return f"{label}: {json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)}"
    if isinstance(value, bool):
        return f"{label}: {'true' if value else 'false'}"
    return f"{label}: {value}"


async def _call_hook(hook, ctx: SourceContext):
    result = hook(ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


# ============================================================================
# Generic fallbacks
# ============================================================================

def build_default_source(ctx: SourceContext) -> VectorIndexSource:
    """
    One "<label>: <value>" line per non-empty field: preferred fields first,
    then the remaining record columns (bookkeeping columns excluded), then
    custom fields as custom.<key>. Never returns an empty input.
    """
    lines: List[str] = []

    for key in PREFERRED_FIELDS:
        line = _format_line(key, ctx.record.get(key))
        if line:
            lines.append(line)

    for key, value in ctx.record.items():
        if key in PREFERRED_FIELDS or key in BOOKKEEPING_FIELDS:
            continue
        line = _format_line(key, value)
        if line:
            lines.append(line)

    for key, value in ctx.custom_fields.items():
        line = _format_line(f"custom.{key}", value)
        if line:
            lines.append(line)

    if not lines:
        lines.append(f"{ctx.entity_id}#{ctx.record_id}")

    return VectorIndexSource(
        input=lines,
        payload=None,
        checksum_source=RecordPayload(ctx.record, ctx.custom_fields).as_checksum_source(),
    )


def map_kind_icon(kind: Any) -> Optional[str]:
    if not isinstance(kind, str):
        return None
    return KIND_ICONS.get(kind.strip().lower())


def default_entity_icon(entity_id: str, configured: Optional[str] = None) -> Optional[str]:
    if configured:
        return configured
    for prefix, icon in DEFAULT_ENTITY_ICONS.items():
        if entity_id.startswith(prefix):
            return icon
    return None


def build_fallback_presenter(ctx: SourceContext, configured_icon: Optional[str] = None) -> VectorResultPresenter:
    record, custom = ctx.record, ctx.custom_fields
    title = first_text(*_pick(record, TITLE_FIELDS), ctx.record_id) or ctx.record_id
    subtitle = first_text(
        *_pick(record, SUBTITLE_FIELDS),
        custom.get("summary"),
        custom.get("description"),
    )
    icon = map_kind_icon(record.get("kind")) or default_entity_icon(ctx.entity_id, configured_icon)
    return VectorResultPresenter(title=title, subtitle=subtitle, icon=icon)


def derive_snapshot(record: Dict[str, Any], custom_fields: Dict[str, Any]) -> Optional[str]:
    return first_text(*_pick(record, SNAPSHOT_FIELDS), *_pick(custom_fields, SNAPSHOT_FIELDS))


def resolve_primary_link(
    links: Optional[List[VectorLink]],
    url: Optional[str],
    fallback_label: str,
) -> Optional[VectorLink]:
    """First "primary" link, else the first link, else the resolved url."""
    if links:
        primary = next((link for link in links if link.kind == "primary"), links[0])
        if primary.href:
            return VectorLink(href=primary.href, label=primary.label or fallback_label, kind="primary")
    if url:
        return VectorLink(href=url, label=fallback_label, kind="primary")
    return None


# ============================================================================
# Resolver
# ============================================================================

class SourceResolver:
    """Hook-first, fallback-second resolution for one entity config."""

    @staticmethod
    def provider_for(config: EntityConfig) -> SourceProvider:
        return config.provider or GENERIC_PROVIDER

    async def resolve_source(self, config: EntityConfig, ctx: SourceContext) -> Optional[VectorIndexSource]:
        built = await _call_hook(self.provider_for(config).build_source, ctx)
        if not built:
            return None
        if isinstance(built, dict):
            built = VectorIndexSource.model_validate(built)
        if built.checksum_source is None:
            built = built.model_copy(update={
                "checksum_source": RecordPayload(ctx.record, ctx.custom_fields).as_checksum_source(),
            })
        if not [line for line in built.input if line and line.strip()]:
            built = built.model_copy(update={"input": [f"{ctx.entity_id}#{ctx.record_id}"]})
        return built

    async def resolve_presenter(
        self,
        config: EntityConfig,
        ctx: SourceContext,
        fallback: Optional[VectorResultPresenter] = None,
    ) -> VectorResultPresenter:
        """Never returns a presenter without a title."""
        formatted = await _call_hook(self.provider_for(config).format_result, ctx)
        if isinstance(formatted, dict):
            formatted = VectorResultPresenter.model_validate(formatted)
        if formatted and first_text(formatted.title):
            return formatted
        if fallback and first_text(fallback.title):
            return fallback

        name_like = first_text(
            ctx.record.get("display_name"),
            ctx.record.get("displayName"),
            ctx.record.get("title"),
            ctx.record.get("name"),
        )
        if name_like:
            subtitle = first_text(ctx.record.get("description"), ctx.record.get("summary"))
            icon = map_kind_icon(ctx.record.get("kind")) or default_entity_icon(ctx.entity_id, config.icon)
            return VectorResultPresenter(title=name_like, subtitle=subtitle, icon=icon)

        return build_fallback_presenter(ctx, config.icon)

    async def resolve_links(
        self,
        config: EntityConfig,
        ctx: SourceContext,
        fallback: Optional[List[VectorLink]] = None,
    ) -> Optional[List[VectorLink]]:
        resolved = await _call_hook(self.provider_for(config).resolve_links, ctx)
        if resolved:
            return [
                VectorLink.model_validate(link) if isinstance(link, dict) else link
                for link in resolved
            ]
        return list(fallback) if fallback else None

    async def resolve_url(self, config: EntityConfig, ctx: SourceContext) -> Optional[str]:
        return first_text(await _call_hook(self.provider_for(config).resolve_url, ctx))
