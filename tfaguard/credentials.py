"""
TFA Guard Credential Store

Holds the long-lived trust anchors of a guard. Two shapes exist and are
fixed at install time:

    DEVICE_SET:   service_pubkey + seed_pubkey + {device_id -> pubkey}
    CERTIFICATE:  root_pubkey + seed_pubkey

Both shapes expose the same capability set (verify_primary, verify_secondary,
verify_seed), which is all the authenticator and the state machines rely on.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from .errors import GuardRejection, RejectReason
from .signing import Certificate, PUBLIC_KEY_SIZE, decode_key, verify_certificate, verify_signature
from .util import b64e


class CredentialShape(str, Enum):
    DEVICE_SET = "device_set"
    CERTIFICATE = "certificate"


@dataclass
class DeviceSetCredentials:
    """
    Service key, seed key and an arena of device keys.

    Device ids are stable integer keys: removing a device never shifts the
    others, and an id only comes back if it is explicitly re-added.
    """
    service_pubkey: bytes
    seed_pubkey: bytes
    devices: Dict[int, bytes] = field(default_factory=dict)

    shape = CredentialShape.DEVICE_SET

    def verify_primary(
        self,
        signature: Optional[bytes],
        digest: bytes,
        certificate: Optional[Certificate] = None,
        now: int = 0,
    ) -> bool:
        return verify_signature(digest, signature, self.service_pubkey)

    def verify_secondary(self, signature: Optional[bytes], digest: bytes, device_id: Optional[int] = None) -> bool:
        if device_id is None:
            return False
        return verify_signature(digest, signature, self.devices.get(device_id))

    def verify_seed(self, signature: Optional[bytes], digest: bytes) -> bool:
        return verify_signature(digest, signature, self.seed_pubkey)

    def get_device(self, device_id: int) -> Optional[bytes]:
        return self.devices.get(device_id)

    def add_device(self, device_id: int, pubkey: bytes) -> None:
        if device_id in self.devices:
            raise GuardRejection(RejectReason.DUPLICATE_ID, f"Device {device_id} already registered")
        self.devices[device_id] = bytes(pubkey)

    def remove_device(self, device_id: int) -> None:
        if device_id not in self.devices:
            raise GuardRejection(RejectReason.UNKNOWN_ID, f"Device {device_id} is not registered")
        del self.devices[device_id]

    def install_device(self, device_id: int, pubkey: bytes) -> None:
        """Insert or overwrite; used when a recovery completes."""
        self.devices[device_id] = bytes(pubkey)

    def copy(self) -> 'DeviceSetCredentials':
        return DeviceSetCredentials(
            service_pubkey=self.service_pubkey,
            seed_pubkey=self.seed_pubkey,
            devices=dict(self.devices),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shape": self.shape.value,
            "service_pubkey": b64e(self.service_pubkey),
            "seed_pubkey": b64e(self.seed_pubkey),
            "devices": {str(k): b64e(v) for k, v in sorted(self.devices.items())},
        }


@dataclass
class CertificateCredentials:
    """
    Root trust anchor plus seed key.

    Any holder of an unexpired root-signed certificate is a primary signer.
    Certificates are reissued out-of-band by the root, so this shape has no
    device registry and no device recovery.
    """
    root_pubkey: bytes
    seed_pubkey: bytes

    shape = CredentialShape.CERTIFICATE

    def verify_primary(
        self,
        signature: Optional[bytes],
        digest: bytes,
        certificate: Optional[Certificate] = None,
        now: int = 0,
    ) -> bool:
        if certificate is None:
            return False
        cert_ok = verify_certificate(certificate, self.root_pubkey, now)
        sig_ok = verify_signature(digest, signature, certificate.pubkey)
        return cert_ok and sig_ok

    def verify_secondary(self, signature: Optional[bytes], digest: bytes, device_id: Optional[int] = None) -> bool:
        return verify_signature(digest, signature, self.seed_pubkey)

    def verify_seed(self, signature: Optional[bytes], digest: bytes) -> bool:
        return verify_signature(digest, signature, self.seed_pubkey)

    def copy(self) -> 'CertificateCredentials':
        return CertificateCredentials(root_pubkey=self.root_pubkey, seed_pubkey=self.seed_pubkey)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shape": self.shape.value,
            "root_pubkey": b64e(self.root_pubkey),
            "seed_pubkey": b64e(self.seed_pubkey),
        }


CredentialStore = Union[DeviceSetCredentials, CertificateCredentials]


def credentials_from_dict(data: Dict[str, Any]) -> CredentialStore:
    """
    Build a credential store from its install/snapshot form.

    Raises:
        ValueError: on unknown shape or malformed keys
    """
    if not isinstance(data, dict):
        raise ValueError("credentials must be an object/dict")

    shape = data.get("shape")
    if shape == CredentialShape.DEVICE_SET.value:
        raw_devices = data.get("devices") or {}
        if not isinstance(raw_devices, dict):
            raise ValueError("devices must be an object/dict")
        devices = {}
        for raw_id, raw_key in raw_devices.items():
            try:
                device_id = int(raw_id)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid device id: {raw_id!r}") from e
            if device_id < 0 or device_id > 2 ** 32 - 1:
                raise ValueError(f"Device id out of range: {device_id}")
            devices[device_id] = decode_key(raw_key, PUBLIC_KEY_SIZE, f"device {device_id} pubkey")
        return DeviceSetCredentials(
            service_pubkey=decode_key(data.get("service_pubkey"), PUBLIC_KEY_SIZE, "service_pubkey"),
            seed_pubkey=decode_key(data.get("seed_pubkey"), PUBLIC_KEY_SIZE, "seed_pubkey"),
            devices=devices,
        )

    if shape == CredentialShape.CERTIFICATE.value:
        return CertificateCredentials(
            root_pubkey=decode_key(data.get("root_pubkey"), PUBLIC_KEY_SIZE, "root_pubkey"),
            seed_pubkey=decode_key(data.get("seed_pubkey"), PUBLIC_KEY_SIZE, "seed_pubkey"),
        )

    raise ValueError(f"Unknown credential shape: {shape!r}")
