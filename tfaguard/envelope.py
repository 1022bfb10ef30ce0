"""
TFA Guard Request Envelope

The structured representation of a signed request addressed to the guard.
The unsigned fields (op_code, replay_counter, valid_until, payload) are bound
by the message hash; signatures, the signing device id and the certificate
travel alongside and are never part of the hash.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Union

from .canonicalization import canonicalize
from .hashing import message_hash
from .signing import Certificate, PUBLIC_KEY_SIZE, SIGNATURE_SIZE, decode_key
from .util import b64d, b64e


UINT32_MAX = 2 ** 32 - 1
UINT64_MAX = 2 ** 64 - 1


class OpCode(IntEnum):
    """Operation codes accepted by the guard."""
    INSTALL = 125
    SEND_ACTIONS = 130
    AUTHORIZE_DEVICE = 131
    UNAUTHORIZE_DEVICE = 132
    FAST_RECOVER = 133
    CANCEL_RECOVERY = 134
    SLOW_RECOVER = 135
    DELEGATE = 136
    CANCEL_DELEGATION = 137
    REMOVE_EXTENSION = 138


SIGNED_OPS = frozenset(op for op in OpCode if op != OpCode.INSTALL)
RECOVERY_OPS = frozenset({OpCode.FAST_RECOVER, OpCode.SLOW_RECOVER, OpCode.CANCEL_RECOVERY})
DELEGATION_OPS = frozenset({OpCode.DELEGATE, OpCode.CANCEL_DELEGATION})
DEVICE_OPS = frozenset({OpCode.AUTHORIZE_DEVICE, OpCode.UNAUTHORIZE_DEVICE})


@dataclass(frozen=True)
class SendActionsParams:
    """
    Forwarded wallet request.

    `message` is opaque to the guard apart from its attached `value` and its
    `actions` list; the wallet interprets the actions.
    """
    message: Dict[str, Any]
    send_mode: int = 0

    @property
    def value(self) -> int:
        return self.message["value"]

    @property
    def actions(self) -> List[Any]:
        return self.message["actions"]


@dataclass(frozen=True)
class DeviceParams:
    """Target device for AUTHORIZE_DEVICE and both recovery paths."""
    device_id: int
    device_pubkey: bytes


@dataclass(frozen=True)
class DeviceIdParams:
    device_id: int


@dataclass(frozen=True)
class DelegationParams:
    """Account template to deploy and the value forwarded with it."""
    state_init: bytes
    forward_value: int


@dataclass(frozen=True)
class EmptyParams:
    pass


OpParams = Union[SendActionsParams, DeviceParams, DeviceIdParams, DelegationParams, EmptyParams]


def _require_uint(value: Any, name: str, upper: int = UINT64_MAX) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if value < 0 or value > upper:
        raise ValueError(f"{name} out of range: {value}")
    return value


def _require_keys(payload: Dict[str, Any], required: List[str], optional: List[str] = ()) -> None:
    missing = [k for k in required if k not in payload]
    if missing:
        raise ValueError(f"Missing payload fields: {missing}")
    unexpected = sorted(set(payload) - set(required) - set(optional))
    if unexpected:
        raise ValueError(f"Unexpected payload fields: {unexpected}")


def _decode_blob(value: Any, name: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return b64d(value)
        except (ValueError, UnicodeEncodeError) as e:
            raise ValueError(f"Invalid base64 for {name}") from e
    raise ValueError(f"{name} must be base64 string or bytes")


def parse_params(op_code: OpCode, payload: Dict[str, Any]) -> OpParams:
    """
    Validate an op-specific payload and return its typed form.

    Raises:
        ValueError: if the payload does not match the op's schema
    """
    if not isinstance(payload, dict):
        raise ValueError("payload must be an object/dict")

    if op_code == OpCode.SEND_ACTIONS:
        _require_keys(payload, ["message"], ["send_mode"])
        message = payload["message"]
        if not isinstance(message, dict):
            raise ValueError("message must be an object/dict")
        if "value" not in message or "actions" not in message:
            raise ValueError("message must carry 'value' and 'actions'")
        _require_uint(message["value"], "message.value")
        if not isinstance(message["actions"], list):
            raise ValueError("message.actions must be a list")
        send_mode = _require_uint(payload.get("send_mode", 0), "send_mode", 255)
        return SendActionsParams(message=message, send_mode=send_mode)

    if op_code in (OpCode.AUTHORIZE_DEVICE, OpCode.FAST_RECOVER, OpCode.SLOW_RECOVER):
        _require_keys(payload, ["device_id", "device_pubkey"])
        return DeviceParams(
            device_id=_require_uint(payload["device_id"], "device_id", UINT32_MAX),
            device_pubkey=decode_key(payload["device_pubkey"], PUBLIC_KEY_SIZE, "device_pubkey"),
        )

    if op_code == OpCode.UNAUTHORIZE_DEVICE:
        _require_keys(payload, ["device_id"])
        return DeviceIdParams(device_id=_require_uint(payload["device_id"], "device_id", UINT32_MAX))

    if op_code == OpCode.DELEGATE:
        _require_keys(payload, ["state_init", "forward_value"])
        return DelegationParams(
            state_init=_decode_blob(payload["state_init"], "state_init"),
            forward_value=_require_uint(payload["forward_value"], "forward_value"),
        )

    _require_keys(payload, [])
    return EmptyParams()


@dataclass
class RequestEnvelope:
    """
    Signed request envelope.

    Required fields:
    - op_code: Operation requested
    - replay_counter: Must equal the guard's counter exactly
    - valid_until: Absolute unix timestamp after which the request is void
    - payload: Op-specific parameters (JSON form; bytes as base64)

    Credential fields:
    - primary_signature: Service key or certificate key signature
    - secondary_signature: Device key or seed key signature
    - device_id: Signing device (device-set shape only)
    - certificate: Root-issued certificate (certificate shape only)
    """
    op_code: OpCode
    replay_counter: int
    valid_until: int
    payload: Dict[str, Any] = field(default_factory=dict)
    primary_signature: Optional[bytes] = None
    secondary_signature: Optional[bytes] = None
    device_id: Optional[int] = None
    certificate: Optional[Certificate] = None
    params: OpParams = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self._validate()

    def _validate(self):
        try:
            self.op_code = OpCode(self.op_code)
        except ValueError:
            raise ValueError(f"Unknown op_code: {self.op_code}")
        if self.op_code not in SIGNED_OPS:
            raise ValueError(f"{self.op_code.name} is not a signed request")

        _require_uint(self.replay_counter, "replay_counter", UINT32_MAX)
        _require_uint(self.valid_until, "valid_until")

        if self.device_id is not None:
            _require_uint(self.device_id, "device_id", UINT32_MAX)

        for name in ("primary_signature", "secondary_signature"):
            sig = getattr(self, name)
            if sig is not None and (not isinstance(sig, (bytes, bytearray)) or len(sig) != SIGNATURE_SIZE):
                raise ValueError(f"{name} must be {SIGNATURE_SIZE} bytes")

        if self.certificate is not None and not isinstance(self.certificate, Certificate):
            raise ValueError("certificate must be a Certificate")

        self.params = parse_params(self.op_code, self.payload)
        try:
            canonicalize(self.payload)
        except ValueError as e:
            raise ValueError(f"payload is not canonical JSON: {e}") from e

    def message_hash(self) -> bytes:
        """Digest over the unsigned fields; what both signatures cover."""
        return message_hash(self.op_code, self.replay_counter, self.valid_until, self.payload)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "op_code": int(self.op_code),
            "replay_counter": self.replay_counter,
            "valid_until": self.valid_until,
            "payload": self.payload,
        }
        if self.primary_signature is not None:
            d["primary_signature"] = b64e(self.primary_signature)
        if self.secondary_signature is not None:
            d["secondary_signature"] = b64e(self.secondary_signature)
        if self.device_id is not None:
            d["device_id"] = self.device_id
        if self.certificate is not None:
            d["certificate"] = self.certificate.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RequestEnvelope':
        """Create an envelope from its wire form. Raises ValueError on any malformed field."""
        if not isinstance(data, dict):
            raise ValueError("request must be an object/dict")

        required = ["op_code", "replay_counter", "valid_until", "payload"]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")

        primary = data.get("primary_signature")
        secondary = data.get("secondary_signature")
        certificate = data.get("certificate")
        if certificate is not None and not isinstance(certificate, dict):
            raise ValueError("certificate must be an object/dict")

        op_code = data["op_code"]
        if isinstance(op_code, bool) or not isinstance(op_code, int):
            raise ValueError("op_code must be an integer")

        return cls(
            op_code=op_code,
            replay_counter=data["replay_counter"],
            valid_until=data["valid_until"],
            payload=data["payload"],
            primary_signature=decode_key(primary, SIGNATURE_SIZE, "primary_signature") if primary is not None else None,
            secondary_signature=decode_key(secondary, SIGNATURE_SIZE, "secondary_signature") if secondary is not None else None,
            device_id=data.get("device_id"),
            certificate=Certificate.from_dict(certificate) if certificate is not None else None,
        )
