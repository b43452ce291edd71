from enum import Enum


class IndexAction(str, Enum):
    INDEXED = "indexed"
    DELETED = "deleted"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    UNSUPPORTED = "unsupported"        # entity not registered / disabled
    MISSING_RECORD = "missing_record"  # no backing row, or provider said "not indexable"
    CHECKSUM_MATCH = "checksum_match"  # content unchanged since last index


class DriverCapability(str, Enum):
    PURGE = "purge"
    LIST = "list"
    COUNT = "count"
    REMOVE_ORPHANS = "remove_orphans"


class ReindexModeKind(str, Enum):
    INLINE = "inline"
    DISPATCHED = "dispatched"
