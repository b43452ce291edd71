from .base import DriverSet, VectorDriver
from .memory import InMemoryVectorDriver
from .pgvector import PgVectorDriver

__all__ = ["DriverSet", "VectorDriver", "InMemoryVectorDriver", "PgVectorDriver"]
