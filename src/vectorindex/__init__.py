"""
vectorindex

Turns domain records into searchable embeddings, keeps the index in step with
the source of truth and serves tenant-scoped similarity queries.
"""

__version__ = "0.3.0"
