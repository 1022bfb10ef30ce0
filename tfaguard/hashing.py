"""
TFA Guard Hashing

All digests are SHA-256. Signatures are always computed over raw 32-byte
digests; the prefixed hexadecimal form is used for logs and audit records.
"""

import hashlib
from typing import Any, Dict, Union

from .canonicalization import canonicalize


CERTIFICATE_VALID_UNTIL_BYTES = 8


def sha256_hash(data: Union[bytes, str]) -> str:
    """
    Compute SHA-256 hash in display format.

    Returns:
        Hash string in format "sha256:abcdef..."
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    digest = hashlib.sha256(data).hexdigest().lower()
    return f"sha256:{digest}"


def signing_payload(op_code: int, replay_counter: int, valid_until: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return the unsigned request fields in the order they are bound."""
    return {
        "op_code": int(op_code),
        "replay_counter": replay_counter,
        "valid_until": valid_until,
        "payload": payload,
    }


def message_hash(op_code: int, replay_counter: int, valid_until: int, payload: Dict[str, Any]) -> bytes:
    """
    Compute the digest both request signatures are made over.

    message_hash = SHA-256(CJE(op_code || replay_counter || valid_until || payload))
    """
    canonical_bytes = canonicalize(signing_payload(op_code, replay_counter, valid_until, payload))
    return hashlib.sha256(canonical_bytes).digest()


def certificate_hash(valid_until: int, pubkey: bytes) -> bytes:
    """
    Compute the digest a root key signs when issuing a certificate.

    certificate_hash = SHA-256(valid_until as 64-bit big-endian || pubkey)
    """
    if valid_until < 0 or valid_until >= 2 ** (8 * CERTIFICATE_VALID_UNTIL_BYTES):
        raise ValueError("Certificate valid_until out of range")
    encoded = valid_until.to_bytes(CERTIFICATE_VALID_UNTIL_BYTES, "big") + bytes(pubkey)
    return hashlib.sha256(encoded).digest()


def state_hash(state: Dict[str, Any]) -> str:
    """Hash of a guard state snapshot, used to prove a rejection left it untouched."""
    return sha256_hash(canonicalize(state))


def content_hash(data: Union[bytes, str]) -> str:
    """
    Compute content-addressed reference for opaque blobs (e.g. state templates).

    Returns:
        Content reference in format "content:sha256:abcdef..."
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    digest = hashlib.sha256(data).hexdigest().lower()
    return f"content:sha256:{digest}"
