"""
Content Hashing — canonical encoding and SHA-256 identities.

Every identity in lexbrain is a hex SHA-256 digest over a canonical JSON
encoding: keys sorted, no insignificant whitespace, UTF-8. Two structurally
equal values hash identically whatever their key order, which is what makes
fact writes idempotent.

Numbers follow JSON's single number type: an integral float encodes as the
integer (``1.0`` -> ``1``), so ``{"a": 1}`` and ``{"a": 1.0}`` share a digest,
as they do for clients that cannot tell the two apart.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Union

from lexbrain.types import Plain, Scope, Sealed


class EncodingError(ValueError):
    """Raised when a value cannot be canonically encoded."""


def _default(obj: Any) -> Any:
    """json.dumps hook: records serialize through their own to_dict()."""
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


# Integral floats at or above this magnitude print in exponent form in JSON
# clients, so they are left as floats.
_INT_FLOAT_LIMIT = 1e21


def _normalize_numbers(value: Any) -> Any:
    if isinstance(value, float):
        if value.is_integer() and abs(value) < _INT_FLOAT_LIMIT:
            return int(value)
        return value
    if isinstance(value, dict):
        return {k: _normalize_numbers(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_numbers(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    """Canonical JSON text for *value*.

    Raises:
        EncodingError: value contains sets, bytes, NaN/Infinity, or any
            other object JSON cannot represent.
    """
    try:
        return json.dumps(
            _normalize_numbers(value),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
            default=_default,
        )
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"Value is not canonically encodable: {exc}") from exc


def hash_value(value: Any) -> str:
    """SHA-256 hex digest of the canonical encoding of *value*."""
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


def payload_hash(payload: Union[Plain, Sealed]) -> str:
    """Digest of a payload envelope.

    Sealed payloads hash over the ciphertext only; the iv is transport detail.
    """
    if isinstance(payload, Sealed):
        return hash_value(payload.ciphertext)
    return hash_value(payload.value)


def fact_id(
    kind: str,
    scope: Union[Scope, Dict[str, Any]],
    inputs_hash: str,
    payload_digest: str,
) -> str:
    """Identity of a fact: digest over its four identifying components."""
    if not isinstance(scope, Scope):
        scope = Scope.from_dict(scope)
    return hash_value({
        "kind": kind,
        "scope": scope.to_dict(),
        "inputs_hash": inputs_hash,
        "payload_hash": payload_digest,
    })
