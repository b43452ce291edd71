"""
Content checksums for the skip-if-unchanged gate.

The checksum is SHA-256 over a canonical JSON rendering of the content:
- Keys are sorted recursively
- Unicode is normalized (NFC)
- No insignificant whitespace
- Datetimes/dates as ISO-8601, UUIDs and Decimals as strings
- Sets are rendered as sorted lists

Checksums are persisted next to each index entry, so this format has to stay
stable across deploys: changing it forces a full re-embed of every record.
"""

import hashlib
import json
import unicodedata
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel


def canonicalize(obj: Any) -> str:
    """Render an object as canonical JSON (key-order independent)."""
    return json.dumps(
        _normalize(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=_canonical_default,
    )


def compute_checksum(content: Any) -> str:
    """SHA-256 hex digest of the canonical form of `content`."""
    return hashlib.sha256(canonicalize(content).encode("utf-8")).hexdigest()


def _normalize(obj: Any) -> Any:
    if obj is None or isinstance(obj, bool):
        return obj

    if isinstance(obj, str):
        return unicodedata.normalize("NFC", obj)

    if isinstance(obj, (int, float)):
        return obj

    if isinstance(obj, BaseModel):
        return _normalize(obj.model_dump(mode="json"))

    if isinstance(obj, dict):
        return {str(_normalize(k)): _normalize(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple)):
        return [_normalize(item) for item in obj]

    if isinstance(obj, (set, frozenset)):
        items = [_normalize(item) for item in obj]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True, default=str))

    return _canonical_default(obj)


def _canonical_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()
    return str(obj)
