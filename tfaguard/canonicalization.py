"""
TFA Guard Canonical Encoding

Every signed request is hashed over a canonical byte representation of its
unsigned fields, so that a signer and the guard always agree on the exact
bytes that were signed.
"""

import json
from typing import Any, Dict, List, Union

from .util import b64e


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to its canonical JSON encoding.

    Rules:
    - Object keys sorted lexicographically (Unicode code point order)
    - No whitespace between tokens (compact form)
    - UTF-8 encoding, no BOM
    - Bytes rendered as standard base64 strings
    - Integers only; floats are rejected so amounts never lose precision
    - Arrays preserve order

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    canonical = _canonicalize_value(obj)
    return json.dumps(canonical, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return canonicalize(obj).decode('utf-8')


def _canonicalize_value(value: Any) -> Any:
    """Recursively canonicalize a value."""
    if value is None:
        return None
    elif isinstance(value, bool):
        return value
    elif isinstance(value, int):
        return value
    elif isinstance(value, str):
        return value
    elif isinstance(value, (bytes, bytearray)):
        return b64e(bytes(value))
    elif isinstance(value, dict):
        return _canonicalize_object(value)
    elif isinstance(value, (list, tuple)):
        return _canonicalize_array(value)
    else:
        raise ValueError(f"Cannot canonicalize type: {type(value)}")


def _canonicalize_object(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Canonicalize an object by sorting its (string) keys."""
    for key in obj:
        if not isinstance(key, str):
            raise ValueError(f"Object keys must be strings, got {type(key)}")
    return {k: _canonicalize_value(obj[k]) for k in sorted(obj.keys())}


def _canonicalize_array(arr: Union[List, tuple]) -> List:
    return [_canonicalize_value(item) for item in arr]
