"""
Tests for lexbrain.hashing — canonical JSON, digests, fact identity.
"""

import math

import pytest

from lexbrain.hashing import (
    EncodingError,
    canonical_json,
    fact_id,
    hash_value,
    payload_hash,
)
from lexbrain.types import Plain, Scope, Sealed


class TestCanonicalJson:
    def test_sorted_keys_compact(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_nested_keys_sorted(self):
        assert canonical_json({"z": {"y": 1, "x": 2}}) == '{"z":{"x":2,"y":1}}'

    def test_unicode_kept(self):
        assert canonical_json({"k": "café"}) == '{"k":"café"}'

    def test_dataclass_records_via_to_dict(self):
        assert canonical_json(Scope(repo="r", commit="c")) == '{"commit":"c","repo":"r"}'

    def test_integral_float_as_int(self):
        assert canonical_json({"a": 1.0, "b": [2.0, -3.0]}) == '{"a":1,"b":[2,-3]}'

    def test_fractional_float_kept(self):
        assert canonical_json([1.5, 0.25]) == "[1.5,0.25]"

    def test_huge_float_kept(self):
        assert canonical_json(1e21) == "1e+21"

    def test_set_rejected(self):
        with pytest.raises(EncodingError):
            canonical_json({"s": {1, 2}})

    def test_bytes_rejected(self):
        with pytest.raises(EncodingError):
            canonical_json(b"raw")

    def test_nan_rejected(self):
        with pytest.raises(EncodingError):
            canonical_json({"x": math.nan})

    def test_encoding_error_is_value_error(self):
        assert issubclass(EncodingError, ValueError)


class TestHashValue:
    def test_key_order_independent(self):
        assert hash_value({"a": 1, "b": {"c": 2, "d": 3}}) == \
            hash_value({"b": {"d": 3, "c": 2}, "a": 1})

    def test_sha256_hex(self):
        h = hash_value("x")
        assert len(h) == 64
        int(h, 16)

    def test_int_and_integral_float_agree(self):
        assert hash_value({"a": 1}) == hash_value({"a": 1.0})

    def test_different_values_differ(self):
        assert hash_value([1, 2]) != hash_value([2, 1])

    def test_deterministic(self):
        assert hash_value({"k": [1, "two", None]}) == hash_value({"k": [1, "two", None]})


class TestPayloadHash:
    def test_plain_hashes_value(self):
        assert payload_hash(Plain({"a": 1})) == hash_value({"a": 1})

    def test_sealed_ignores_iv(self):
        a = payload_hash(Sealed(ciphertext="Y2lwaGVy", iv="aXYx"))
        b = payload_hash(Sealed(ciphertext="Y2lwaGVy", iv="aXYy"))
        assert a == b == hash_value("Y2lwaGVy")


class TestFactId:
    def test_scope_dict_or_record(self):
        ph = hash_value(1)
        assert fact_id("note", {"repo": "r", "commit": "c"}, "h", ph) == \
            fact_id("note", Scope(repo="r", commit="c"), "h", ph)

    def test_none_path_same_as_missing(self):
        ph = hash_value(1)
        assert fact_id("note", {"repo": "r", "commit": "c", "path": None}, "h", ph) == \
            fact_id("note", {"repo": "r", "commit": "c"}, "h", ph)

    def test_each_component_contributes(self):
        ph = hash_value(1)
        base = fact_id("note", {"repo": "r", "commit": "c"}, "h", ph)
        assert base != fact_id("plan", {"repo": "r", "commit": "c"}, "h", ph)
        assert base != fact_id("note", {"repo": "r", "commit": "d"}, "h", ph)
        assert base != fact_id("note", {"repo": "r", "commit": "c"}, "h2", ph)
        assert base != fact_id("note", {"repo": "r", "commit": "c"}, "h", hash_value(2))
