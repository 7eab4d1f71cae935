"""
Deterministic JSON canonicalization (c14n).

json_c14n_v1 produces the byte representation that prescription signatures
and stored medication lists are computed over. Identical logical structures
always produce identical bytes; any change here invalidates every existing
prescription signature.

Rules (v1):
1. UTF-8 encoding
2. No whitespace outside strings
3. Object keys sorted by Unicode codepoint
4. Array order preserved (medication order is significant)
5. No NaN/Infinity

Supported types: dict, list, tuple, str, int, float, bool, None.
"""

import json
import math
from typing import Any


def json_c14n_v1(obj: Any) -> bytes:
    """
    Produce canonical JSON bytes for an object.

    Raises:
        ValueError: If obj contains unsupported types or non-finite numbers

    Examples:
        >>> json_c14n_v1({"b": 2, "a": 1})
        b'{"a":1,"b":2}'
    """
    _validate_object(obj)

    canonical_str = json.dumps(
        obj,
        separators=(",", ":"),
        ensure_ascii=False,
        sort_keys=True,
        allow_nan=False,
    )
    return canonical_str.encode("utf-8")


def _validate_object(obj: Any) -> None:
    if obj is None or isinstance(obj, (bool, int, str)):
        return
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float not allowed: {obj}")
        return
    if isinstance(obj, dict):
        for key, value in obj.items():
            if not isinstance(key, str):
                raise ValueError(f"Dictionary keys must be strings, got {type(key).__name__}")
            _validate_object(value)
        return
    if isinstance(obj, (list, tuple)):
        for item in obj:
            _validate_object(item)
        return
    raise ValueError(f"Unsupported type: {type(obj).__name__}")
