"""
Unit tests for the checksum gate's canonical hashing.
"""
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from vectorindex.core.checksum import canonicalize, compute_checksum


class TestCanonicalize:

    def test_key_order_does_not_matter(self):
        """
        Given two structurally equal objects with differently ordered keys
        When they are canonicalized
        Then the output is identical
        """
        a = {"record": {"name": "Acme", "tags": ["x", "y"]}, "customFields": {"tier": 1}}
        b = {"customFields": {"tier": 1}, "record": {"tags": ["x", "y"], "name": "Acme"}}

        assert canonicalize(a) == canonicalize(b)

    def test_compact_separators(self):
        assert canonicalize({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_unicode_is_nfc_normalized(self):
        composed = "Caf\u00e9"
        decomposed = "Cafe\u0301"

        assert canonicalize({"name": composed}) == canonicalize({"name": decomposed})

    def test_scalar_types_render_stably(self):
        value = {
            "when": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            "id": UUID("12345678-1234-5678-1234-567812345678"),
            "amount": Decimal("10.50"),
        }

        assert canonicalize(value) == (
            '{"amount":"10.50","id":"12345678-1234-5678-1234-567812345678",'
            '"when":"2024-01-02T03:04:05+00:00"}'
        )

    def test_sets_are_sorted(self):
        assert canonicalize({"tags": {"b", "a", "c"}}) == '{"tags":["a","b","c"]}'

    def test_list_order_matters(self):
        assert canonicalize([1, 2]) != canonicalize([2, 1])


class TestComputeChecksum:

    def test_is_sha256_hex(self):
        checksum = compute_checksum({"a": 1})

        assert len(checksum) == 64
        assert all(c in "0123456789abcdef" for c in checksum)

    def test_invariant_under_key_permutation(self):
        assert compute_checksum({"x": {"b": 2, "a": 1}}) == compute_checksum({"x": {"a": 1, "b": 2}})

    def test_value_change_changes_checksum(self):
        assert compute_checksum({"name": "Acme"}) != compute_checksum({"name": "Acme Corp"})
