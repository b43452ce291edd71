"""
Entity configuration registry.

Built once at startup from the per-module configs; read-only afterwards.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, TYPE_CHECKING

from vectorindex.core.logging import get_logger

if TYPE_CHECKING:
    from vectorindex.core.sources import SourceProvider

logger = get_logger(__name__)


@dataclass
class EntityConfig:
    entity_id: str
    driver_id: Optional[str] = None
    enabled: bool = True
    provider: Optional["SourceProvider"] = None
    # Columns to request from the record source; "id" is always added
    fields: Optional[List[str]] = None
    icon: Optional[str] = None

    def fetch_fields(self) -> Optional[List[str]]:
        if not self.fields:
            return None
        ordered = ["id"] + [f for f in self.fields if f != "id"]
        return list(dict.fromkeys(ordered))


@dataclass
class ModuleConfig:
    module_id: str
    entities: List[EntityConfig] = field(default_factory=list)
    default_driver_id: Optional[str] = None


@dataclass(frozen=True)
class RegisteredEntity:
    config: EntityConfig
    driver_id: str


class EntityConfigRegistry:
    """Maps entity id -> (config, resolved driver id)."""

    def __init__(self, default_driver_id: str = "pgvector"):
        self.default_driver_id = default_driver_id
        self._entries: Dict[str, RegisteredEntity] = {}

    def register(self, module_configs: Iterable[ModuleConfig]) -> None:
        """
        Register module configs. A later registration of the same entity id
        replaces the earlier one. Disabled entries are skipped and leave any
        earlier registration in place.
        """
        for module in module_configs:
            module_driver = module.default_driver_id or self.default_driver_id
            for entity in module.entities:
                if not entity.entity_id:
                    continue
                if not entity.enabled:
                    logger.debug("entity_disabled", entity_id=entity.entity_id, module=module.module_id)
                    continue
                if entity.entity_id in self._entries:
                    logger.info("entity_config_replaced", entity_id=entity.entity_id, module=module.module_id)
                self._entries[entity.entity_id] = RegisteredEntity(
                    config=entity,
                    driver_id=entity.driver_id or module_driver,
                )

    def get(self, entity_id: str) -> Optional[RegisteredEntity]:
        return self._entries.get(entity_id)

    def list_enabled_entities(self) -> List[str]:
        return list(self._entries.keys())

    def driver_ids(self) -> List[str]:
        return list(dict.fromkeys(entry.driver_id for entry in self._entries.values()))

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
