"""
Tenant encryption of the presentation fields stored with each vector.

The embedding itself is never encrypted (the driver has to compare it); only
the human readable result fields are. Encryption is optional and fails open:
indexing and search stay available when the encryption service is missing,
disabled or broken, at the cost of storing/returning plaintext.
"""
import base64
import json
import os
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from vectorindex.core.logging import get_logger

logger = get_logger(__name__)

VECTOR_ENTRY_ENCRYPTION_KIND = "vector:vector_search"

ENCRYPTED_RESULT_FIELDS = (
    "result_title",
    "result_subtitle",
    "result_icon",
    "result_snapshot",
    "primary_link_href",
    "primary_link_label",
    "links",
    "payload",
)

TEXT_PREFIX = "enc:v1:"
JSON_PREFIX = "enc:v1j:"


@runtime_checkable
class TenantEncryptionService(Protocol):
    def is_enabled(self) -> bool:
        ...

    def encrypt_entity_payload(
        self, kind: str, fields: Dict[str, Any], tenant_id: str, organization_id: Optional[str]
    ) -> Dict[str, Any]:
        ...

    def decrypt_entity_payload(
        self, kind: str, fields: Dict[str, Any], tenant_id: str, organization_id: Optional[str]
    ) -> Dict[str, Any]:
        ...


class AesGcmTenantEncryption:
    """
    AES-256-GCM with one key per tenant, derived from a master key via
    HKDF-SHA256. The kind is bound as associated data.

    Strings become "enc:v1:<b64(nonce|ciphertext)>"; lists and dicts are JSON
    encoded first and tagged "enc:v1j:". Untagged values pass through
    decryption unchanged, so plaintext written while encryption was off stays
    readable.
    """

    def __init__(self, master_key: str, enabled: bool = True):
        if not master_key:
            raise ValueError("Encryption master key is required")
        self._master_key = master_key.encode("utf-8")
        self._enabled = enabled
        self._keys: Dict[str, bytes] = {}

    def is_enabled(self) -> bool:
        return self._enabled

    def _tenant_key(self, tenant_id: str) -> bytes:
        key = self._keys.get(tenant_id)
        if key is None:
            key = HKDF(
                algorithm=hashes.SHA256(),
                length=32,
                salt=None,
                info=f"vectorindex:tenant:{tenant_id}".encode("utf-8"),
            ).derive(self._master_key)
            self._keys[tenant_id] = key
        return key

    def _seal(self, key: bytes, kind: str, data: bytes) -> str:
        nonce = os.urandom(12)
        sealed = AESGCM(key).encrypt(nonce, data, kind.encode("utf-8"))
        return base64.b64encode(nonce + sealed).decode("ascii")

    def _open(self, key: bytes, kind: str, token: str) -> bytes:
        raw = base64.b64decode(token.encode("ascii"))
        return AESGCM(key).decrypt(raw[:12], raw[12:], kind.encode("utf-8"))

    def encrypt_entity_payload(self, kind, fields, tenant_id, organization_id=None):
        key = self._tenant_key(tenant_id)
        out: Dict[str, Any] = {}
        for name, value in fields.items():
            if value is None or (isinstance(value, str) and value.startswith((TEXT_PREFIX, JSON_PREFIX))):
                out[name] = value
            elif isinstance(value, (dict, list)):
                data = json.dumps(value, ensure_ascii=False, default=str).encode("utf-8")
                out[name] = JSON_PREFIX + self._seal(key, kind, data)
            else:
                out[name] = TEXT_PREFIX + self._seal(key, kind, str(value).encode("utf-8"))
        return out

    def decrypt_entity_payload(self, kind, fields, tenant_id, organization_id=None):
        key = self._tenant_key(tenant_id)
        out: Dict[str, Any] = {}
        for name, value in fields.items():
            if isinstance(value, str) and value.startswith(JSON_PREFIX):
                out[name] = json.loads(self._open(key, kind, value[len(JSON_PREFIX):]).decode("utf-8"))
            elif isinstance(value, str) and value.startswith(TEXT_PREFIX):
                out[name] = self._open(key, kind, value[len(TEXT_PREFIX):]).decode("utf-8")
            else:
                out[name] = value
        return out


class EncryptionAdapter:
    """
    Fail-open wrapper around an optional TenantEncryptionService.

    Any failure (service absent, disabled, raising) returns the input fields
    unchanged and logs a warning. A field the service hands back as None
    keeps its original value.
    """

    def __init__(self, service: Optional[TenantEncryptionService] = None):
        self.service = service

    def is_enabled(self) -> bool:
        if self.service is None:
            return False
        try:
            return bool(self.service.is_enabled())
        except Exception as e:
            logger.warning("encryption_status_check_failed", error=str(e))
            return False

    def encrypt_fields(self, fields: Dict[str, Any], tenant_id: str, organization_id: Optional[str]) -> Dict[str, Any]:
        return self._apply("encrypt", fields, tenant_id, organization_id)

    def decrypt_fields(self, fields: Dict[str, Any], tenant_id: str, organization_id: Optional[str]) -> Dict[str, Any]:
        return self._apply("decrypt", fields, tenant_id, organization_id)

    def _apply(self, direction: str, fields: Dict[str, Any], tenant_id: str, organization_id: Optional[str]) -> Dict[str, Any]:
        if not self.is_enabled():
            return dict(fields)
        target = {name: fields.get(name) for name in ENCRYPTED_RESULT_FIELDS if name in fields}
        try:
            if direction == "encrypt":
                transformed = self.service.encrypt_entity_payload(
                    VECTOR_ENTRY_ENCRYPTION_KIND, target, tenant_id, organization_id
                )
            else:
                transformed = self.service.decrypt_entity_payload(
                    VECTOR_ENTRY_ENCRYPTION_KIND, target, tenant_id, organization_id
                )
        except Exception as e:
            logger.warning(
                "vector_encryption_degraded",
                direction=direction,
                tenant_id=tenant_id,
                organization_id=organization_id,
                error=str(e) or type(e).__name__,
            )
            return dict(fields)

        merged = dict(fields)
        for name in target:
            value = (transformed or {}).get(name)
            if value is not None:
                merged[name] = value
        return merged
