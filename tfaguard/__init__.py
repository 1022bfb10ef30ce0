"""
TFA Guard

Version: 1.0.0
License: Apache 2.0

Two-factor authorization guard for a programmable account.

Once installed, the guard is the only path through which the protected
account acts. Every request needs two independent signatures:

    primary   = service key, or a key certified by a root trust anchor
    secondary = a registered device key, or the user's seed key

Lost devices are replaced through time-locked recovery, and the user can
always leave unilaterally through a time-locked delegation.

Usage:
    from tfaguard import (
        InMemoryAccount,
        KeyPair,
        RequestBuilder,
        TwoFactorGuard,
    )

    account = InMemoryAccount("account-1")
    guard = TwoFactorGuard("guard-1", account)

    builder = RequestBuilder.device_set(
        service=KeyPair.generate(),
        seed=KeyPair.generate(),
        device=KeyPair.generate(),
        device_id=1,
    )
    guard.install(account.address, builder.install_credentials())

    envelope = builder.send_actions(
        guard.get_counter(), valid_until, value=1_000_000_000, actions=[...]
    )
    decision = guard.handle(envelope)

    if decision.accepted():
        # Counter advanced, actions forwarded to the account
        ...
    else:
        # Nothing changed
        decision.reason
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

# Canonicalization and hashing
from .canonicalization import canonicalize, canonicalize_str
from .hashing import (
    sha256_hash,
    message_hash,
    certificate_hash,
    state_hash,
    content_hash,
)

# Signing
from .signing import (
    KeyPair,
    Certificate,
    generate_signing_key,
    sign_data,
    verify_signature,
    issue_certificate,
    verify_certificate,
)

# Wire types
from .envelope import OpCode, RequestEnvelope

# Credentials and state
from .credentials import (
    CredentialShape,
    DeviceSetCredentials,
    CertificateCredentials,
    credentials_from_dict,
)
from .state import (
    GuardState,
    RecoveryState,
    RecoveryStatus,
    DelegationState,
    DelegationStatus,
)

# Components
from .authenticator import RequestAuthenticator, SignatureRequirement
from .recovery import RecoveryStateMachine, RecoveryKind
from .delegation import DelegationStateMachine
from .fees import (
    FeeSchedule,
    estimate_attached_value,
    estimate_guard_fee,
    estimate_total_cost,
)

# Collaborators
from .account import ProtectedAccount, InMemoryAccount, ForwardedAction
from .store import GuardStore, InMemoryGuardStore, SqliteGuardStore

# Guard
from .config import GuardConfig
from .errors import RejectReason, GuardRejection, RequestRejected
from .guard import (
    TwoFactorGuard,
    GuardDecision,
    DecisionResult,
    RequestOrigin,
    InMemoryAuditLog,
)
from .client import RequestBuilder, sign_request


__all__ = [
    # Version
    "__version__",

    # Canonicalization
    "canonicalize",
    "canonicalize_str",

    # Hashing
    "sha256_hash",
    "message_hash",
    "certificate_hash",
    "state_hash",
    "content_hash",

    # Signing
    "KeyPair",
    "Certificate",
    "generate_signing_key",
    "sign_data",
    "verify_signature",
    "issue_certificate",
    "verify_certificate",

    # Wire types
    "OpCode",
    "RequestEnvelope",

    # Credentials and state
    "CredentialShape",
    "DeviceSetCredentials",
    "CertificateCredentials",
    "credentials_from_dict",
    "GuardState",
    "RecoveryState",
    "RecoveryStatus",
    "DelegationState",
    "DelegationStatus",

    # Components
    "RequestAuthenticator",
    "SignatureRequirement",
    "RecoveryStateMachine",
    "RecoveryKind",
    "DelegationStateMachine",
    "FeeSchedule",
    "estimate_attached_value",
    "estimate_guard_fee",
    "estimate_total_cost",

    # Collaborators
    "ProtectedAccount",
    "InMemoryAccount",
    "ForwardedAction",
    "GuardStore",
    "InMemoryGuardStore",
    "SqliteGuardStore",

    # Guard
    "GuardConfig",
    "RejectReason",
    "GuardRejection",
    "RequestRejected",
    "TwoFactorGuard",
    "GuardDecision",
    "DecisionResult",
    "RequestOrigin",
    "InMemoryAuditLog",
    "RequestBuilder",
    "sign_request",
]
