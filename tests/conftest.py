"""
Pytest configuration and shared fixtures for vectorindex tests.
"""
import hashlib
import os
import re
from typing import List, Sequence, Union

import pytest

from vectorindex.core.records import InMemoryRecordSource
from vectorindex.core.registry import EntityConfig, EntityConfigRegistry, ModuleConfig
from vectorindex.core.service import VectorIndexService
from vectorindex.drivers import DriverSet, InMemoryVectorDriver
from vectorindex.utils.encryption import EncryptionAdapter

COMPANY_ENTITY = "customers:customer_company"
DEAL_ENTITY = "customers:customer_deal"

# ============================================================================
# DB CONFIGURATION
# ============================================================================
# Postgres-backed tests only run when a database is provided
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


def pytest_collection_modifyitems(config, items):
    if TEST_DATABASE_URL:
        return
    skip = pytest.mark.skip(reason="TEST_DATABASE_URL not set")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


# ============================================================================
# Stub Services
# ============================================================================

class StubEmbeddingService:
    """
    Deterministic bag-of-words embedder. Records every call so tests can
    assert on how often (and with what) the provider was hit.
    """

    def __init__(self, dimensions: int = 64, available: bool = True):
        self.dimensions = dimensions
        self._available = available
        self.calls: List[Union[str, Sequence[str]]] = []

    @property
    def available(self) -> bool:
        return self._available

    @available.setter
    def available(self, value: bool):
        self._available = value

    def vector_for(self, text: str) -> List[float]:
        vector = [0.0] * self.dimensions
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).hexdigest()
            vector[int(digest, 16) % self.dimensions] += 1.0
        return vector

    async def create_embedding(self, content):
        self.calls.append(content)
        text = content if isinstance(content, str) else "\n".join(content)
        return self.vector_for(text)


class FailingEncryptionService:
    """Tenant encryption that is enabled but always blows up."""

    def is_enabled(self):
        return True

    def encrypt_entity_payload(self, kind, fields, tenant_id, organization_id):
        raise RuntimeError("kms unavailable")

    def decrypt_entity_payload(self, kind, fields, tenant_id, organization_id):
        raise RuntimeError("kms unavailable")


class PrefixEncryptionService:
    """Reversible fake encryption: prefixes strings with 'x:'."""

    def is_enabled(self):
        return True

    def encrypt_entity_payload(self, kind, fields, tenant_id, organization_id):
        return {k: f"x:{v}" if isinstance(v, str) else v for k, v in fields.items()}

    def decrypt_entity_payload(self, kind, fields, tenant_id, organization_id):
        return {
            k: v[2:] if isinstance(v, str) and v.startswith("x:") else v
            for k, v in fields.items()
        }


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def tenant_id() -> str:
    return "t1"


@pytest.fixture
def other_tenant_id() -> str:
    return "t2"


@pytest.fixture
def embedding():
    return StubEmbeddingService()


@pytest.fixture
def memory_driver():
    return InMemoryVectorDriver("memory")


@pytest.fixture
def record_source():
    return InMemoryRecordSource()


@pytest.fixture
def registry():
    registry = EntityConfigRegistry(default_driver_id="memory")
    registry.register([
        ModuleConfig(
            module_id="customers",
            entities=[EntityConfig(COMPANY_ENTITY), EntityConfig(DEAL_ENTITY)],
        )
    ])
    return registry


@pytest.fixture
def service_factory(registry, memory_driver, record_source, embedding):
    """Build a service over the shared fixtures, optionally with encryption/mode."""
    def _build(encryption_service=None, reindex_mode=None, page_size=50):
        return VectorIndexService(
            registry,
            DriverSet([memory_driver]),
            record_source,
            embedding,
            encryption=EncryptionAdapter(encryption_service),
            reindex_mode=reindex_mode,
            page_size=page_size,
        )
    return _build


@pytest.fixture
def service(service_factory):
    return service_factory()


@pytest.fixture
def acme_row(tenant_id):
    return {
        "id": "r1",
        "tenant_id": tenant_id,
        "organization_id": None,
        "display_name": "Acme Corp",
        "description": "industrial supplier",
    }
