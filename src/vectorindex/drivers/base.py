"""
Vector driver contract.

A driver stores VectorIndexEntry rows keyed by
(driver_id, entity_id, record_id, tenant_id) and answers similarity queries.
Purge, list, count and orphan removal are optional; a driver advertises what
it implements through `capabilities` and the base class raises
DriverCapabilityError for everything else.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional

from vectorindex.core.exceptions import DriverCapabilityError, DriverNotRegisteredError
from vectorindex.schema import DriverCapability, VectorIndexEntry, VectorQueryFilter

ORDER_BY_FIELDS = ("updated_at", "created_at")


class VectorDriver(ABC):
    driver_id: str = ""
    capabilities: FrozenSet[DriverCapability] = frozenset()

    def supports(self, capability: DriverCapability) -> bool:
        return capability in self.capabilities

    def _unsupported(self, capability: DriverCapability) -> DriverCapabilityError:
        return DriverCapabilityError(self.driver_id, capability.value)

    @abstractmethod
    async def ensure_ready(self) -> None:
        """Idempotent lazy setup; safe to call repeatedly and concurrently."""

    @abstractmethod
    async def upsert(self, entry: VectorIndexEntry) -> None:
        """Insert or atomically replace the entry with the same key tuple."""

    @abstractmethod
    async def get_checksum(self, entity_id: str, record_id: str, tenant_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def delete(self, entity_id: str, record_id: str, tenant_id: str) -> None:
        ...

    @abstractmethod
    async def query(self, vector: List[float], limit: int, filter: VectorQueryFilter) -> List[VectorIndexEntry]:
        """Entries ranked by descending similarity, `score` populated."""

    async def purge(self, entity_id: str, tenant_id: str) -> None:
        raise self._unsupported(DriverCapability.PURGE)

    async def list(
        self,
        filter: VectorQueryFilter,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "updated_at",
    ) -> List[VectorIndexEntry]:
        raise self._unsupported(DriverCapability.LIST)

    async def count(self, filter: VectorQueryFilter) -> int:
        raise self._unsupported(DriverCapability.COUNT)

    async def remove_orphans(
        self,
        entity_id: str,
        older_than: datetime,
        tenant_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> int:
        raise self._unsupported(DriverCapability.REMOVE_ORPHANS)


class DriverSet:
    """Registered drivers by id."""

    def __init__(self, drivers: Iterable[VectorDriver] = ()):
        self._drivers: Dict[str, VectorDriver] = {}
        for driver in drivers:
            self.add(driver)

    def add(self, driver: VectorDriver) -> None:
        self._drivers[driver.driver_id] = driver

    def get(self, driver_id: str) -> VectorDriver:
        driver = self._drivers.get(driver_id)
        if driver is None:
            raise DriverNotRegisteredError(driver_id)
        return driver

    def ids(self) -> List[str]:
        return list(self._drivers.keys())

    def __contains__(self, driver_id: str) -> bool:
        return driver_id in self._drivers

    def __iter__(self) -> Iterator[VectorDriver]:
        return iter(self._drivers.values())
