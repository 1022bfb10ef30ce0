"""
Request construction for guard users.

Builds envelopes, computes the message hash and attaches the signatures the
guard expects for each op and credential shape. The guard never uses this
module; it exists for wallets, operators and tests.
"""

from typing import Any, Dict, List, Optional, Union

from .credentials import CertificateCredentials, CredentialShape, DeviceSetCredentials
from .envelope import OpCode, RequestEnvelope
from .hashing import message_hash
from .signing import Certificate, KeyPair, issue_certificate
from .util import b64e


SEED_ONLY_OPS = frozenset({OpCode.SLOW_RECOVER, OpCode.DELEGATE, OpCode.CANCEL_DELEGATION})
SERVICE_AND_SEED_OPS = frozenset({OpCode.FAST_RECOVER, OpCode.CANCEL_RECOVERY})


def send_actions_payload(value: int, actions: List[Any], send_mode: int = 0) -> Dict[str, Any]:
    return {"message": {"value": value, "actions": actions}, "send_mode": send_mode}


def device_payload(device_id: int, device_pubkey: bytes) -> Dict[str, Any]:
    return {"device_id": device_id, "device_pubkey": b64e(device_pubkey)}


def delegation_payload(state_init: bytes, forward_value: int) -> Dict[str, Any]:
    return {"state_init": b64e(state_init), "forward_value": forward_value}


def sign_request(
    op_code: Union[OpCode, int],
    replay_counter: int,
    valid_until: int,
    payload: Optional[Dict[str, Any]] = None,
    primary: Optional[KeyPair] = None,
    secondary: Optional[KeyPair] = None,
    device_id: Optional[int] = None,
    certificate: Optional[Certificate] = None,
) -> RequestEnvelope:
    """
    Build a signed envelope from explicit signers.

    Either signer may be omitted; the guard decides whether that is enough.
    """
    payload = payload if payload is not None else {}
    digest = message_hash(op_code, replay_counter, valid_until, payload)
    return RequestEnvelope(
        op_code=op_code,
        replay_counter=replay_counter,
        valid_until=valid_until,
        payload=payload,
        primary_signature=primary.sign(digest) if primary else None,
        secondary_signature=secondary.sign(digest) if secondary else None,
        device_id=device_id,
        certificate=certificate,
    )


class RequestBuilder:
    """
    Signs requests on behalf of one guard user.

    A device-set user holds the seed key, usually a device key with its id,
    and talks to a service that holds the service key. A certificate user
    holds the seed key and a key certified by the root.

    Usage:
        builder = RequestBuilder.device_set(service, seed, device, device_id=1)
        guard.install(account.address, builder.install_credentials())
        guard.submit(builder.send_actions(0, valid_until, value=10, actions=[]))
    """

    def __init__(
        self,
        shape: CredentialShape,
        seed: KeyPair,
        service: Optional[KeyPair] = None,
        device: Optional[KeyPair] = None,
        device_id: Optional[int] = None,
        root_pubkey: Optional[bytes] = None,
        certificate: Optional[Certificate] = None,
        certificate_key: Optional[KeyPair] = None,
    ):
        self.shape = shape
        self.seed = seed
        self.service = service
        self.device = device
        self.device_id = device_id
        self.root_pubkey = root_pubkey
        self.certificate = certificate
        self.certificate_key = certificate_key

    @classmethod
    def device_set(
        cls,
        service: KeyPair,
        seed: KeyPair,
        device: Optional[KeyPair] = None,
        device_id: Optional[int] = None,
    ) -> 'RequestBuilder':
        return cls(CredentialShape.DEVICE_SET, seed, service=service, device=device, device_id=device_id)

    @classmethod
    def with_certificate(
        cls,
        root: KeyPair,
        seed: KeyPair,
        certificate_key: KeyPair,
        valid_until: int,
    ) -> 'RequestBuilder':
        """Issue a certificate for `certificate_key` from `root` and build a certificate-shape user."""
        certificate = issue_certificate(root.signing_key, certificate_key.verify_key, valid_until)
        return cls(
            CredentialShape.CERTIFICATE,
            seed,
            root_pubkey=root.verify_key,
            certificate=certificate,
            certificate_key=certificate_key,
        )

    def install_credentials(self) -> Dict[str, Any]:
        """Credential store in the form accepted by install."""
        if self.shape == CredentialShape.CERTIFICATE:
            return CertificateCredentials(root_pubkey=self.root_pubkey, seed_pubkey=self.seed.verify_key).to_dict()
        devices = {}
        if self.device is not None and self.device_id is not None:
            devices[self.device_id] = self.device.verify_key
        return DeviceSetCredentials(
            service_pubkey=self.service.verify_key,
            seed_pubkey=self.seed.verify_key,
            devices=devices,
        ).to_dict()

    def use_device(self, device: KeyPair, device_id: int) -> None:
        self.device = device
        self.device_id = device_id

    def build(
        self,
        op_code: OpCode,
        replay_counter: int,
        valid_until: int,
        payload: Optional[Dict[str, Any]] = None,
        seed_only: bool = False,
    ) -> RequestEnvelope:
        """
        Sign `op_code` with the signers the guard requires for it.

        seed_only drops the service signature from cancel_recovery, which
        the guard accepts for a pending slow recovery.
        """
        op_code = OpCode(op_code)

        if op_code in SEED_ONLY_OPS or (seed_only and op_code == OpCode.CANCEL_RECOVERY):
            return sign_request(op_code, replay_counter, valid_until, payload, secondary=self.seed)

        if op_code in SERVICE_AND_SEED_OPS:
            return sign_request(
                op_code, replay_counter, valid_until, payload,
                primary=self.service, secondary=self.seed,
            )

        if self.shape == CredentialShape.CERTIFICATE:
            return sign_request(
                op_code, replay_counter, valid_until, payload,
                primary=self.certificate_key, secondary=self.seed, certificate=self.certificate,
            )

        return sign_request(
            op_code, replay_counter, valid_until, payload,
            primary=self.service, secondary=self.device, device_id=self.device_id,
        )

    def send_actions(self, replay_counter: int, valid_until: int, value: int,
                     actions: List[Any], send_mode: int = 0) -> RequestEnvelope:
        return self.build(OpCode.SEND_ACTIONS, replay_counter, valid_until,
                          send_actions_payload(value, actions, send_mode))

    def authorize_device(self, replay_counter: int, valid_until: int,
                         device_id: int, device_pubkey: bytes) -> RequestEnvelope:
        return self.build(OpCode.AUTHORIZE_DEVICE, replay_counter, valid_until,
                          device_payload(device_id, device_pubkey))

    def unauthorize_device(self, replay_counter: int, valid_until: int, device_id: int) -> RequestEnvelope:
        return self.build(OpCode.UNAUTHORIZE_DEVICE, replay_counter, valid_until, {"device_id": device_id})

    def fast_recover(self, replay_counter: int, valid_until: int,
                     device_id: int, device_pubkey: bytes) -> RequestEnvelope:
        return self.build(OpCode.FAST_RECOVER, replay_counter, valid_until,
                          device_payload(device_id, device_pubkey))

    def slow_recover(self, replay_counter: int, valid_until: int,
                     device_id: int, device_pubkey: bytes, co_signed: bool = False) -> RequestEnvelope:
        """co_signed adds the service signature, needed to replace a pending fast recovery."""
        payload = device_payload(device_id, device_pubkey)
        if co_signed:
            return sign_request(OpCode.SLOW_RECOVER, replay_counter, valid_until, payload,
                                primary=self.service, secondary=self.seed)
        return self.build(OpCode.SLOW_RECOVER, replay_counter, valid_until, payload)

    def cancel_recovery(self, replay_counter: int, valid_until: int, seed_only: bool = False) -> RequestEnvelope:
        return self.build(OpCode.CANCEL_RECOVERY, replay_counter, valid_until, seed_only=seed_only)

    def delegate(self, replay_counter: int, valid_until: int,
                 state_init: bytes, forward_value: int) -> RequestEnvelope:
        return self.build(OpCode.DELEGATE, replay_counter, valid_until,
                          delegation_payload(state_init, forward_value))

    def cancel_delegation(self, replay_counter: int, valid_until: int) -> RequestEnvelope:
        return self.build(OpCode.CANCEL_DELEGATION, replay_counter, valid_until)

    def remove_extension(self, replay_counter: int, valid_until: int) -> RequestEnvelope:
        return self.build(OpCode.REMOVE_EXTENSION, replay_counter, valid_until)
