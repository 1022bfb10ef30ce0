"""
TFA Guard Orchestrator

The guard is the only path through which a protected account acts once it
is installed. It enforces the critical invariant:

    NO REQUEST CHANGES THE GUARD OR THE ACCOUNT WITHOUT BOTH REQUIRED SIGNATURES

Pipeline for every signed request:

    1. Parse the envelope (malformed input is rejected, never fatal)
    2. Authenticate: counter, expiry, shape support, blocking, signatures
    3. Apply the op to a staged copy of the state, counter + 1
    4. Persist the staged state (or delete it when the guard is destroyed)
    5. Dispatch account effects (best-effort; failures are logged and recorded)
    6. Record the decision in the audit log

A rejection at any step before 4 leaves the stored state byte-identical.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .account import ForwardedAction, ProtectedAccount, derive_address
from .authenticator import RequestAuthenticator
from .config import GuardConfig
from .credentials import (
    CertificateCredentials,
    CredentialStore,
    DeviceSetCredentials,
    credentials_from_dict,
)
from .delegation import DelegationStateMachine
from .effects import (
    AttachDeployedTemplate,
    DeployTemplate,
    DestroyGuard,
    DetachGuard,
    Effect,
    ForwardActions,
    SetSignatureAuth,
)
from .envelope import DEVICE_OPS, OpCode, RequestEnvelope
from .errors import GuardRejection, RejectReason, RequestRejected
from .fees import DEFAULT_SCHEDULE, FeeSchedule, estimate_attached_value
from .hashing import sha256_hash
from .logging_config import audit_log as structured_audit
from .recovery import RecoveryKind, RecoveryStateMachine
from .state import DelegationState, GuardState, RecoveryState
from .store import GuardStore, InMemoryGuardStore
from .util import now_epoch


logger = logging.getLogger(__name__)


class DecisionResult(str, Enum):
    """Outcome of a guard decision."""
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class RequestOrigin(str, Enum):
    """How a request reached the guard."""
    EXTERNAL = "external"   # signed message from outside
    INTERNAL = "internal"   # relayed by any on-ledger sender
    INSTALL = "install"     # install from the owner account


@dataclass
class GuardDecision:
    """Decision returned for every install and request."""
    result: DecisionResult
    reason: Optional[RejectReason] = None
    details: Optional[str] = None
    op: Optional[str] = None
    replay_counter: Optional[int] = None
    event: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def accepted(self) -> bool:
        return self.result == DecisionResult.ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.value,
            "reason": self.reason.value if self.reason else None,
            "details": self.details,
            "op": self.op,
            "replay_counter": self.replay_counter,
            "event": self.event,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }


@dataclass
class GuardRecord:
    """Immutable record of one request reaching the guard."""
    record_id: str
    guard_address: str
    origin: RequestOrigin
    sender: Optional[str]
    decision: GuardDecision
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "guard_address": self.guard_address,
            "origin": self.origin.value,
            "sender": self.sender,
            "decision": self.decision.to_dict(),
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }


class AuditLog(ABC):
    """
    Abstract interface for decision records.

    Accepted and rejected requests are both recorded.
    """

    @abstractmethod
    def record(self, guard_record: GuardRecord) -> None:
        pass

    @abstractmethod
    def query(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        op: Optional[str] = None,
        origin: Optional[RequestOrigin] = None,
        result: Optional[DecisionResult] = None,
    ) -> List[GuardRecord]:
        pass


class InMemoryAuditLog(AuditLog):
    """
    In-memory audit log for development/testing.

    WARNING: Not suitable for production.
    - Not persistent
    - Oldest records are dropped past max_records
    """

    def __init__(self, max_records: int = 10000):
        self._records: List[GuardRecord] = []
        self._lock = threading.Lock()
        self._max_records = max_records

    def record(self, guard_record: GuardRecord) -> None:
        with self._lock:
            self._records.append(guard_record)
            if len(self._records) > self._max_records:
                self._records = self._records[-self._max_records:]

    def query(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        op: Optional[str] = None,
        origin: Optional[RequestOrigin] = None,
        result: Optional[DecisionResult] = None,
    ) -> List[GuardRecord]:
        with self._lock:
            records = self._records[:]

        if start_time:
            records = [r for r in records if r.timestamp >= start_time]
        if end_time:
            records = [r for r in records if r.timestamp <= end_time]
        if op:
            records = [r for r in records if r.decision.op == op]
        if origin:
            records = [r for r in records if r.origin == origin]
        if result:
            records = [r for r in records if r.decision.result == result]

        return records


class TwoFactorGuard:
    """
    Two-factor authorization guard for one protected account.

    Usage:
        guard = TwoFactorGuard("guard-1", account)
        guard.install(account.address, credentials)

        decision = guard.handle(envelope)
        if decision.accepted():
            ...

        # Or raise on rejection
        guard.submit(envelope)
    """

    def __init__(
        self,
        guard_address: str,
        account: ProtectedAccount,
        store: Optional[GuardStore] = None,
        config: Optional[GuardConfig] = None,
        fee_schedule: FeeSchedule = DEFAULT_SCHEDULE,
        clock: Callable[[], int] = now_epoch,
        audit_log: Optional[AuditLog] = None,
    ):
        self.guard_address = guard_address
        self.account = account
        self.store = store or InMemoryGuardStore()
        self.config = config or GuardConfig()
        self.fee_schedule = fee_schedule
        self.audit_log = audit_log or InMemoryAuditLog(self.config.audit_max_records)
        self.authenticator = RequestAuthenticator()
        self.recovery = RecoveryStateMachine(self.config)
        self.delegation = DelegationStateMachine(self.config)
        self._clock = clock
        self._lock = threading.RLock()
        self._record_counter = 0
        self._state: Optional[GuardState] = self.store.load(guard_address)

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install(
        self,
        sender: str,
        credentials: Union[CredentialStore, Dict[str, Any]],
    ) -> GuardDecision:
        """
        Install the guard on its account.

        Only the owner account may install, and only once per instance.
        The guard attaches itself as the account's extension and disables
        the account's own signature authentication.
        """
        with self._lock:
            now = self._clock()
            try:
                if sender != self.account.address:
                    raise GuardRejection(
                        RejectReason.UNAUTHORIZED_SENDER,
                        f"Install must come from {self.account.address}"
                    )
                if self._state is not None:
                    raise GuardRejection(RejectReason.ALREADY_INSTALLED, "Guard is already installed")
                store = self._parse_credentials(credentials)
            except GuardRejection as e:
                return self._reject(e, OpCode.INSTALL.name, RequestOrigin.INSTALL, sender, now)

            state = GuardState(
                owner_account=self.account.address,
                guard_address=self.guard_address,
                credentials=store,
            )
            self.store.save(state)
            self._state = state

            self.account.attach_extension(self.guard_address)
            self.account.set_signature_auth(False)

            structured_audit.guard_lifecycle(self.guard_address, "installed", state.owner_account)
            logger.info("Guard %s installed with %s credentials", self.guard_address, store.shape.value)

            decision = GuardDecision(
                result=DecisionResult.ACCEPTED,
                op=OpCode.INSTALL.name,
                replay_counter=state.replay_counter,
                event="installed",
                timestamp=self._timestamp(now),
            )
            self._audit(decision, RequestOrigin.INSTALL, sender, now)
            return decision

    @staticmethod
    def _parse_credentials(credentials: Union[CredentialStore, Dict[str, Any]]) -> CredentialStore:
        if isinstance(credentials, (DeviceSetCredentials, CertificateCredentials)):
            return credentials.copy()
        if isinstance(credentials, dict):
            try:
                return credentials_from_dict(credentials)
            except (ValueError, TypeError) as e:
                raise GuardRejection(RejectReason.MALFORMED_REQUEST, str(e))
        raise GuardRejection(RejectReason.MALFORMED_REQUEST, "Unsupported credential type")

    # ------------------------------------------------------------------
    # Signed requests
    # ------------------------------------------------------------------

    def handle(
        self,
        request: Union[RequestEnvelope, Dict[str, Any]],
        origin: RequestOrigin = RequestOrigin.EXTERNAL,
        sender: Optional[str] = None,
    ) -> GuardDecision:
        """
        Process one signed request.

        Args:
            request: A RequestEnvelope or its wire (dict) form
            origin: External message or internal relay; validated identically
            sender: Relaying address, recorded for internal requests

        Returns:
            GuardDecision; rejected decisions never change any state
        """
        with self._lock:
            now = self._clock()
            op_name: Optional[str] = None
            try:
                if self._state is None:
                    raise GuardRejection(RejectReason.NOT_INSTALLED, "Guard is not installed")

                envelope = self._parse_request(request)
                op_name = envelope.op_code.name
                structured_audit.request_received(
                    self.guard_address, op_name, envelope.replay_counter, origin.value
                )

                self.authenticator.authorize(envelope, self._state, now)

                staged = self._state.copy()
                staged.replay_counter += 1
                event, effects = self._apply(staged, envelope, now)
            except GuardRejection as e:
                return self._reject(e, op_name, origin, sender, now)

            destroyed = any(isinstance(effect, DestroyGuard) for effect in effects)
            if destroyed:
                self.store.delete(self.guard_address)
                self._state = None
            else:
                self.store.save(staged)
                self._state = staged

            structured_audit.request_accepted(self.guard_address, op_name, staged.replay_counter)
            self._log_transition(envelope.op_code, event, staged)
            # The transition is committed; account effects are best-effort from here.
            details = None
            try:
                self._dispatch(effects, staged)
            except Exception as e:
                logger.exception("Effect dispatch failed for %s", op_name)
                structured_audit.security_event(
                    "effect_dispatch_failed",
                    severity="high",
                    guard=self.guard_address,
                    op=op_name,
                    replay_counter=staged.replay_counter,
                    error=str(e),
                )
                details = f"Effect dispatch failed: {e}"

            decision = GuardDecision(
                result=DecisionResult.ACCEPTED,
                details=details,
                op=op_name,
                replay_counter=staged.replay_counter,
                event=event,
                timestamp=self._timestamp(now),
            )
            self._audit(decision, origin, sender, now)
            return decision

    def submit(
        self,
        request: Union[RequestEnvelope, Dict[str, Any]],
        origin: RequestOrigin = RequestOrigin.EXTERNAL,
        sender: Optional[str] = None,
    ) -> GuardDecision:
        """Like handle(), but raises RequestRejected instead of returning a rejection."""
        decision = self.handle(request, origin=origin, sender=sender)
        if not decision.accepted():
            raise RequestRejected(decision)
        return decision

    def _parse_request(self, request: Union[RequestEnvelope, Dict[str, Any]]) -> RequestEnvelope:
        if isinstance(request, RequestEnvelope):
            return request
        try:
            return RequestEnvelope.from_dict(request)
        except (ValueError, TypeError, KeyError) as e:
            raise GuardRejection(RejectReason.MALFORMED_REQUEST, str(e))

    def _apply(self, staged: GuardState, envelope: RequestEnvelope, now: int) -> Tuple[str, List[Effect]]:
        """Run the op against the staged state. Returns (event, effects)."""
        op = envelope.op_code
        params = envelope.params

        if op == OpCode.SEND_ACTIONS:
            return "actions_forwarded", [
                ForwardActions(message=params.message, send_mode=params.send_mode, value=params.value)
            ]

        if op == OpCode.AUTHORIZE_DEVICE:
            staged.credentials.add_device(params.device_id, params.device_pubkey)
            return "device_authorized", []

        if op == OpCode.UNAUTHORIZE_DEVICE:
            staged.credentials.remove_device(params.device_id)
            return "device_unauthorized", []

        if op == OpCode.FAST_RECOVER:
            return "recovery_" + self.recovery.request(staged, RecoveryKind.FAST, params, now).value, []

        if op == OpCode.SLOW_RECOVER:
            return "recovery_" + self.recovery.request(staged, RecoveryKind.SLOW, params, now).value, []

        if op == OpCode.CANCEL_RECOVERY:
            return "recovery_" + self.recovery.cancel(staged).value, []

        if op == OpCode.DELEGATE:
            event, effects = self.delegation.delegate(staged, params, now)
            return "delegation_" + event.value, effects

        if op == OpCode.CANCEL_DELEGATION:
            return "delegation_" + self.delegation.cancel(staged).value, []

        if op == OpCode.REMOVE_EXTENSION:
            event, effects = self.delegation.remove_extension()
            return "extension_" + event.value, effects

        raise GuardRejection(RejectReason.UNSUPPORTED_OPERATION, f"{op.name} has no handler")

    def _dispatch(self, effects: List[Effect], state: GuardState) -> None:
        """Hand committed effects to the protected account, in order."""
        deployed: Dict[bytes, str] = {}
        for effect in effects:
            if isinstance(effect, ForwardActions):
                self.account.submit_actions(ForwardedAction(
                    account_seqno=self.account.get_seqno(),
                    message=effect.message,
                    send_mode=effect.send_mode,
                    value=effect.value,
                ))
            elif isinstance(effect, DeployTemplate):
                deployed[effect.state_init] = self.account.deploy(effect.state_init, effect.value)
            elif isinstance(effect, AttachDeployedTemplate):
                address = deployed.get(effect.state_init) or derive_address(effect.state_init)
                self.account.attach_extension(address)
            elif isinstance(effect, DetachGuard):
                self.account.detach_extension(self.guard_address)
            elif isinstance(effect, SetSignatureAuth):
                self.account.set_signature_auth(effect.enabled)
            elif isinstance(effect, DestroyGuard):
                structured_audit.guard_lifecycle(self.guard_address, "destroyed", state.owner_account)

    def _log_transition(self, op: OpCode, event: str, staged: GuardState) -> None:
        if event.startswith("recovery_"):
            pending = staged.recovery
            structured_audit.recovery_event(
                self.guard_address,
                event[len("recovery_"):],
                device_id=pending.device_id,
                unblock_at=pending.unblock_at,
            )
        elif event.startswith("delegation_"):
            pending = staged.delegation
            structured_audit.delegation_event(
                self.guard_address,
                event[len("delegation_"):],
                forward_value=pending.forward_value,
                unblock_at=pending.unblock_at,
            )
        elif op in DEVICE_OPS:
            structured_audit.security_event(event, severity="medium", guard=self.guard_address)

    def _reject(
        self,
        rejection: GuardRejection,
        op_name: Optional[str],
        origin: RequestOrigin,
        sender: Optional[str],
        now: int,
    ) -> GuardDecision:
        decision = GuardDecision(
            result=DecisionResult.REJECTED,
            reason=rejection.reason,
            details=rejection.details,
            op=op_name,
            replay_counter=self._state.replay_counter if self._state is not None else None,
            timestamp=self._timestamp(now),
        )
        structured_audit.request_rejected(self.guard_address, op_name, rejection.reason.value, rejection.details)
        if rejection.reason == RejectReason.BAD_SIGNATURE:
            structured_audit.security_event(
                "bad_signature", severity="high", guard=self.guard_address, op=op_name, origin=origin.value
            )
        self._audit(decision, origin, sender, now)
        return decision

    def _audit(self, decision: GuardDecision, origin: RequestOrigin, sender: Optional[str], now: int) -> None:
        self.audit_log.record(GuardRecord(
            record_id=self._generate_record_id(now),
            guard_address=self.guard_address,
            origin=origin,
            sender=sender,
            decision=decision,
            timestamp=self._timestamp(now),
        ))

    def _generate_record_id(self, now: int) -> str:
        self._record_counter += 1
        data = f"{self.guard_address}:{now}:{self._record_counter}"
        return f"rec-{sha256_hash(data)[len('sha256:'):][:16]}"

    @staticmethod
    def _timestamp(now: int) -> datetime:
        return datetime.fromtimestamp(now, tz=timezone.utc)

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def _require_state(self) -> GuardState:
        if self._state is None:
            raise GuardRejection(RejectReason.NOT_INSTALLED, "Guard is not installed")
        return self._state

    def is_installed(self) -> bool:
        with self._lock:
            return self._state is not None

    def get_counter(self) -> int:
        with self._lock:
            return self._require_state().replay_counter

    def get_owner_account(self) -> str:
        with self._lock:
            return self._require_state().owner_account

    def get_credentials(self) -> Dict[str, Any]:
        with self._lock:
            return self._require_state().credentials.to_dict()

    def get_device_pubkey(self, device_id: int) -> Optional[bytes]:
        """Registered key for `device_id`, or None. Device-set shape only."""
        with self._lock:
            credentials = self._require_state().credentials
            if not isinstance(credentials, DeviceSetCredentials):
                raise GuardRejection(
                    RejectReason.UNSUPPORTED_OPERATION,
                    "Certificate credentials have no device registry"
                )
            return credentials.get_device(device_id)

    def get_recovery_state(self) -> RecoveryState:
        with self._lock:
            return self._require_state().recovery

    def get_delegation_state(self) -> DelegationState:
        with self._lock:
            return self._require_state().delegation

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self._require_state().to_dict()

    def estimate_attached_value(
        self,
        forward_message: Union[bytes, Dict[str, Any]],
        output_message_count: int,
        extended_action_count: int,
    ) -> int:
        """Pure fee estimate; callable without authorization or install."""
        return estimate_attached_value(
            forward_message, output_message_count, extended_action_count, self.fee_schedule
        )

    def get_audit_log(self) -> AuditLog:
        return self.audit_log
