"""
TFA Guard Request Authenticator

Validates an incoming request against the guard state before any effect is
applied:

    1. replay_counter equals the guard counter exactly
    2. valid_until has not passed
    3. the op exists for this credential shape and is not blocked by a
       pending recovery or delegation
    4. every required signature verifies over the recomputed message hash

A failure at any step raises GuardRejection and leaves the state untouched.
Signatures are checked last so that unauthenticated callers learn nothing
about pending recoveries or delegations beyond BLOCKED_BY_RECOVERY.
"""

from enum import Enum

from .credentials import CredentialShape
from .envelope import DELEGATION_OPS, OpCode, RECOVERY_OPS, RequestEnvelope
from .errors import GuardRejection, RejectReason
from .state import GuardState, RecoveryStatus


class SignatureRequirement(str, Enum):
    """Which credentials must co-sign a request."""
    PRIMARY_AND_SECONDARY = "PRIMARY_AND_SECONDARY"   # service/cert + device/seed
    PRIMARY_AND_SEED = "PRIMARY_AND_SEED"             # service + seed (device lost)
    SEED_ONLY = "SEED_ONLY"                           # user-unilateral paths


CERTIFICATE_SHAPE_OPS = frozenset({
    OpCode.SEND_ACTIONS,
    OpCode.REMOVE_EXTENSION,
    OpCode.DELEGATE,
    OpCode.CANCEL_DELEGATION,
})


def required_signatures(envelope: RequestEnvelope, state: GuardState) -> SignatureRequirement:
    op = envelope.op_code

    if op == OpCode.SLOW_RECOVER and state.recovery.status == RecoveryStatus.FAST_PENDING:
        # Replacing a co-signed fast recovery needs the service as well.
        return SignatureRequirement.PRIMARY_AND_SEED

    if op in (OpCode.SLOW_RECOVER, OpCode.DELEGATE, OpCode.CANCEL_DELEGATION):
        return SignatureRequirement.SEED_ONLY

    if op == OpCode.FAST_RECOVER:
        return SignatureRequirement.PRIMARY_AND_SEED

    if op == OpCode.CANCEL_RECOVERY:
        # Seed alone may abort anything but a fast recovery, which the
        # service co-signed and must co-sign again to cancel.
        if envelope.primary_signature is None and state.recovery.status != RecoveryStatus.FAST_PENDING:
            return SignatureRequirement.SEED_ONLY
        return SignatureRequirement.PRIMARY_AND_SEED

    return SignatureRequirement.PRIMARY_AND_SECONDARY


class RequestAuthenticator:
    """
    Stateless validator for signed requests.

    Usage:
        authenticator = RequestAuthenticator()
        authenticator.authorize(envelope, state, now)   # raises GuardRejection
    """

    def authorize(self, envelope: RequestEnvelope, state: GuardState, now: int) -> SignatureRequirement:
        self.check_counter(envelope, state)
        self.check_expiry(envelope, now)
        self.check_supported(envelope, state)
        self.check_not_blocked(envelope, state)
        return self.check_signatures(envelope, state, now)

    def check_counter(self, envelope: RequestEnvelope, state: GuardState) -> None:
        if envelope.replay_counter != state.replay_counter:
            raise GuardRejection(
                RejectReason.INVALID_COUNTER,
                f"Expected counter {state.replay_counter}, got {envelope.replay_counter}"
            )

    def check_expiry(self, envelope: RequestEnvelope, now: int) -> None:
        if envelope.valid_until < now:
            raise GuardRejection(
                RejectReason.EXPIRED,
                f"Request expired at {envelope.valid_until} (now {now})"
            )

    def check_supported(self, envelope: RequestEnvelope, state: GuardState) -> None:
        if state.credentials.shape == CredentialShape.CERTIFICATE and envelope.op_code not in CERTIFICATE_SHAPE_OPS:
            raise GuardRejection(
                RejectReason.UNSUPPORTED_OPERATION,
                f"{envelope.op_code.name} is not available for certificate credentials"
            )

    def check_not_blocked(self, envelope: RequestEnvelope, state: GuardState) -> None:
        op = envelope.op_code

        if state.delegation.is_pending() and op not in DELEGATION_OPS:
            raise GuardRejection(
                RejectReason.BLOCKED_BY_RECOVERY,
                f"{op.name} is blocked while a delegation is pending"
            )

        if state.recovery.is_pending() and op not in RECOVERY_OPS:
            raise GuardRejection(
                RejectReason.BLOCKED_BY_RECOVERY,
                f"{op.name} is blocked while a recovery is pending"
            )

    def check_signatures(self, envelope: RequestEnvelope, state: GuardState, now: int) -> SignatureRequirement:
        requirement = required_signatures(envelope, state)
        credentials = state.credentials
        digest = envelope.message_hash()

        if requirement == SignatureRequirement.SEED_ONLY:
            ok = credentials.verify_seed(envelope.secondary_signature, digest)
        else:
            # Both halves are always evaluated; the caller only ever sees a
            # single BAD_SIGNATURE, never which half failed.
            primary_ok = credentials.verify_primary(
                envelope.primary_signature, digest, certificate=envelope.certificate, now=now
            )
            if requirement == SignatureRequirement.PRIMARY_AND_SEED:
                secondary_ok = credentials.verify_seed(envelope.secondary_signature, digest)
            else:
                secondary_ok = credentials.verify_secondary(
                    envelope.secondary_signature, digest, device_id=envelope.device_id
                )
            ok = primary_ok & secondary_ok

        if not ok:
            raise GuardRejection(RejectReason.BAD_SIGNATURE, "Signature verification failed")
        return requirement
