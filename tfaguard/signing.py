"""
TFA Guard Cryptographic Signing

Uses Ed25519 (RFC 8032) for every credential: service, seed, device, root
and certificate keys. Signatures are made over 32-byte SHA-256 digests.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .hashing import certificate_hash
from .util import b64d, b64e


PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64


@dataclass
class KeyPair:
    """Ed25519 key pair."""
    signing_key: bytes
    verify_key: bytes

    @classmethod
    def generate(cls) -> 'KeyPair':
        signing_key = SigningKey.generate()
        return cls(signing_key=bytes(signing_key), verify_key=bytes(signing_key.verify_key))

    @classmethod
    def from_seed(cls, seed: bytes) -> 'KeyPair':
        """Derive a key pair deterministically from a 32-byte seed."""
        signing_key = SigningKey(seed)
        return cls(signing_key=bytes(signing_key), verify_key=bytes(signing_key.verify_key))

    def sign(self, digest: bytes) -> bytes:
        return sign_data(digest, self.signing_key)

    def public_key_b64(self) -> str:
        return b64e(self.verify_key)


@dataclass(frozen=True)
class Certificate:
    """
    Short-lived primary credential issued by the root trust anchor.

    The root signs SHA-256(valid_until || pubkey); the holder of the matching
    private key may then act as the primary signer until valid_until.
    """
    pubkey: bytes
    valid_until: int
    signature: bytes

    def digest(self) -> bytes:
        return certificate_hash(self.valid_until, self.pubkey)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pubkey": b64e(self.pubkey),
            "valid_until": self.valid_until,
            "signature": b64e(self.signature),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Certificate':
        required = ["pubkey", "valid_until", "signature"]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing certificate fields: {missing}")

        valid_until = data["valid_until"]
        if isinstance(valid_until, bool) or not isinstance(valid_until, int) or valid_until < 0:
            raise ValueError("Certificate valid_until must be a non-negative integer")

        return cls(
            pubkey=decode_key(data["pubkey"], PUBLIC_KEY_SIZE, "certificate pubkey"),
            valid_until=valid_until,
            signature=decode_key(data["signature"], SIGNATURE_SIZE, "certificate signature"),
        )


def generate_signing_key() -> Tuple[bytes, bytes]:
    """
    Generate an Ed25519 key pair.

    Returns:
        Tuple of (signing_key_bytes, verify_key_bytes)
    """
    signing_key = SigningKey.generate()
    return bytes(signing_key), bytes(signing_key.verify_key)


def sign_data(data: bytes, signing_key: bytes) -> bytes:
    """Sign data with Ed25519 signing key."""
    key = SigningKey(signing_key)
    return key.sign(data).signature


def verify_signature(data: bytes, signature: Optional[bytes], verify_key: Optional[bytes]) -> bool:
    """
    Verify an Ed25519 signature.

    Never raises: a missing signature, a malformed key or a malformed
    signature all verify as False.
    """
    if signature is None or verify_key is None:
        return False
    if len(signature) != SIGNATURE_SIZE or len(verify_key) != PUBLIC_KEY_SIZE:
        return False

    try:
        key = VerifyKey(bytes(verify_key))
        key.verify(data, bytes(signature))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def issue_certificate(root_signing_key: bytes, pubkey: bytes, valid_until: int) -> Certificate:
    """
    Issue a certificate for `pubkey` signed by the root trust anchor.

    Args:
        root_signing_key: Root Ed25519 private key (32-byte seed form)
        pubkey: Public key of the certificate holder
        valid_until: Unix timestamp after which the certificate is rejected

    Returns:
        Certificate ready to be attached to requests
    """
    digest = certificate_hash(valid_until, pubkey)
    return Certificate(
        pubkey=bytes(pubkey),
        valid_until=valid_until,
        signature=sign_data(digest, root_signing_key),
    )


def verify_certificate(certificate: Certificate, root_pubkey: bytes, now: int) -> bool:
    """A certificate is trusted while valid_until > now and the root signature verifies."""
    if certificate.valid_until <= now:
        return False
    return verify_signature(certificate.digest(), certificate.signature, root_pubkey)


def decode_key(value: Any, size: int, name: str) -> bytes:
    """Decode a base64 key or signature (bytes are passed through) and check its length."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        try:
            raw = b64d(value)
        except (ValueError, UnicodeEncodeError) as e:
            raise ValueError(f"Invalid base64 for {name}") from e
    else:
        raise ValueError(f"{name} must be base64 string or bytes")

    if len(raw) != size:
        raise ValueError(f"{name} must be {size} bytes, got {len(raw)}")
    return raw
