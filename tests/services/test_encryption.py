"""
Unit tests for tenant encryption of stored result fields.
"""
import pytest
from cryptography.exceptions import InvalidTag

from tests.conftest import FailingEncryptionService
from vectorindex.utils.encryption import (
    JSON_PREFIX,
    TEXT_PREFIX,
    VECTOR_ENTRY_ENCRYPTION_KIND,
    AesGcmTenantEncryption,
    EncryptionAdapter,
    TenantEncryptionService,
)

KIND = VECTOR_ENTRY_ENCRYPTION_KIND


@pytest.fixture
def aes():
    return AesGcmTenantEncryption("master-secret")


class TestAesGcmTenantEncryption:

    def test_round_trip(self, aes):
        fields = {
            "result_title": "Acme Corp",
            "links": [{"href": "/a", "label": "A"}],
            "payload": {"stage": "won"},
            "result_icon": None,
        }

        sealed = aes.encrypt_entity_payload(KIND, fields, "t1", None)

        assert sealed["result_title"].startswith(TEXT_PREFIX)
        assert sealed["links"].startswith(JSON_PREFIX)
        assert sealed["payload"].startswith(JSON_PREFIX)
        assert sealed["result_icon"] is None
        assert aes.decrypt_entity_payload(KIND, sealed, "t1", None) == fields

    def test_ciphertext_differs_per_call(self, aes):
        first = aes.encrypt_entity_payload(KIND, {"result_title": "Acme"}, "t1", None)
        second = aes.encrypt_entity_payload(KIND, {"result_title": "Acme"}, "t1", None)

        assert first["result_title"] != second["result_title"]

    def test_already_encrypted_values_are_left_alone(self, aes):
        sealed = aes.encrypt_entity_payload(KIND, {"result_title": "Acme"}, "t1", None)

        assert aes.encrypt_entity_payload(KIND, sealed, "t1", None) == sealed

    def test_tenants_cannot_read_each_other(self, aes):
        sealed = aes.encrypt_entity_payload(KIND, {"result_title": "Acme"}, "t1", None)

        with pytest.raises(InvalidTag):
            aes.decrypt_entity_payload(KIND, sealed, "t2", None)

    def test_kind_is_bound(self, aes):
        sealed = aes.encrypt_entity_payload(KIND, {"result_title": "Acme"}, "t1", None)

        with pytest.raises(InvalidTag):
            aes.decrypt_entity_payload("vector:other", sealed, "t1", None)

    def test_plaintext_passes_through_decrypt(self, aes):
        assert aes.decrypt_entity_payload(KIND, {"result_title": "plain"}, "t1", None) == {"result_title": "plain"}

    def test_requires_master_key(self):
        with pytest.raises(ValueError):
            AesGcmTenantEncryption("")

    def test_satisfies_protocol(self, aes):
        assert isinstance(aes, TenantEncryptionService)


class TestEncryptionAdapter:

    def test_without_service_is_identity(self):
        adapter = EncryptionAdapter()
        fields = {"result_title": "Acme"}

        assert adapter.is_enabled() is False
        assert adapter.encrypt_fields(fields, "t1", None) == fields

    def test_disabled_service_is_identity(self):
        adapter = EncryptionAdapter(AesGcmTenantEncryption("k", enabled=False))

        assert adapter.encrypt_fields({"result_title": "Acme"}, "t1", None) == {"result_title": "Acme"}

    def test_only_result_fields_are_touched(self, aes):
        adapter = EncryptionAdapter(aes)

        sealed = adapter.encrypt_fields({"result_title": "Acme", "checksum": "abc", "result_badge": "VIP"}, "t1", None)

        assert sealed["result_title"].startswith(TEXT_PREFIX)
        assert sealed["checksum"] == "abc"
        assert sealed["result_badge"] == "VIP"

    def test_fails_open_and_logs(self, mocker):
        """
        Given an encryption service that raises
        When fields are encrypted or decrypted
        Then the input comes back unchanged and a warning is logged
        """
        warning = mocker.patch("vectorindex.utils.encryption.logger").warning
        adapter = EncryptionAdapter(FailingEncryptionService())
        fields = {"result_title": "Acme", "payload": {"a": 1}}

        assert adapter.encrypt_fields(fields, "t1", "o1") == fields
        assert adapter.decrypt_fields(fields, "t1", "o1") == fields
        assert warning.call_count == 2
        assert warning.call_args.args[0] == "vector_encryption_degraded"

    def test_wrong_tenant_decrypt_fails_open(self, aes):
        adapter = EncryptionAdapter(aes)
        sealed = adapter.encrypt_fields({"result_title": "Acme"}, "t1", None)

        assert adapter.decrypt_fields(sealed, "t2", None) == sealed

    def test_none_from_service_keeps_original(self, mocker):
        service = mocker.Mock()
        service.is_enabled.return_value = True
        service.encrypt_entity_payload.return_value = {"result_title": None}

        adapter = EncryptionAdapter(service)

        assert adapter.encrypt_fields({"result_title": "Acme"}, "t1", None) == {"result_title": "Acme"}
