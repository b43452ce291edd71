"""
Exceptions raised by the vector index engine.

Unsupported entities and missing records are not errors: they come back as
skipped/deleted operation results.
"""
from typing import Optional


class VectorIndexError(Exception):
    """Base exception for the vector index engine."""
    pass


class ConfigurationError(VectorIndexError):
    """
    The engine cannot do what was asked with the current configuration.

    Raised when:
    - The embedding provider is unavailable (e.g. missing OPENAI_API_KEY)
    - An inline reindex is requested without a tenant
    - No service factory / database URL is configured
    """
    pass


class DriverNotRegisteredError(VectorIndexError):
    """An entity or request points at a driver id nobody registered."""

    def __init__(self, driver_id: str):
        super().__init__(f"Vector driver '{driver_id}' is not registered")
        self.driver_id = driver_id


class DriverCapabilityError(VectorIndexError):
    """An optional driver operation (purge/list/count/orphans) is unsupported."""

    def __init__(self, driver_id: str, capability: str, message: Optional[str] = None):
        super().__init__(
            message or f"Vector driver '{driver_id}' does not support {capability}"
        )
        self.driver_id = driver_id
        self.capability = capability


class ReindexCancelled(VectorIndexError):
    """A running reindex walk observed its cancellation token."""
    pass
