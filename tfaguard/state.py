"""
TFA Guard state record.

One GuardState exists per protected account. It is created by install,
mutated only by accepted requests and destroyed by removal or delegation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .credentials import CredentialStore, credentials_from_dict
from .hashing import content_hash, state_hash
from .util import b64d, b64e


class RecoveryStatus(str, Enum):
    IDLE = "IDLE"
    FAST_PENDING = "FAST_PENDING"
    SLOW_PENDING = "SLOW_PENDING"


class DelegationStatus(str, Enum):
    IDLE = "IDLE"
    PENDING = "PENDING"


@dataclass(frozen=True)
class RecoveryState:
    """Tagged recovery variant; payload fields are set only while pending."""
    status: RecoveryStatus = RecoveryStatus.IDLE
    device_id: Optional[int] = None
    device_pubkey: Optional[bytes] = None
    unblock_at: Optional[int] = None

    def is_pending(self) -> bool:
        return self.status != RecoveryStatus.IDLE

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"status": self.status.value}
        if self.is_pending():
            d["device_id"] = self.device_id
            d["device_pubkey"] = b64e(self.device_pubkey)
            d["unblock_at"] = self.unblock_at
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecoveryState':
        status = RecoveryStatus(data.get("status", RecoveryStatus.IDLE.value))
        if status == RecoveryStatus.IDLE:
            return cls()
        return cls(
            status=status,
            device_id=int(data["device_id"]),
            device_pubkey=b64d(data["device_pubkey"]),
            unblock_at=int(data["unblock_at"]),
        )


IDLE_RECOVERY = RecoveryState()


@dataclass(frozen=True)
class DelegationState:
    status: DelegationStatus = DelegationStatus.IDLE
    state_init: Optional[bytes] = None
    forward_value: Optional[int] = None
    unblock_at: Optional[int] = None

    def is_pending(self) -> bool:
        return self.status != DelegationStatus.IDLE

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"status": self.status.value}
        if self.is_pending():
            d["state_init"] = b64e(self.state_init)
            d["state_init_hash"] = content_hash(self.state_init)
            d["forward_value"] = self.forward_value
            d["unblock_at"] = self.unblock_at
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DelegationState':
        status = DelegationStatus(data.get("status", DelegationStatus.IDLE.value))
        if status == DelegationStatus.IDLE:
            return cls()
        return cls(
            status=status,
            state_init=b64d(data["state_init"]),
            forward_value=int(data["forward_value"]),
            unblock_at=int(data["unblock_at"]),
        )


IDLE_DELEGATION = DelegationState()


@dataclass
class GuardState:
    """
    Persistent record of a guard instance.

    owner_account is immutable after install; replay_counter only ever
    increases by one per accepted request.
    """
    owner_account: str
    guard_address: str
    credentials: CredentialStore
    replay_counter: int = 0
    recovery: RecoveryState = field(default_factory=RecoveryState)
    delegation: DelegationState = field(default_factory=DelegationState)

    def copy(self) -> 'GuardState':
        """Staged copy for transactional processing; variants are immutable."""
        return GuardState(
            owner_account=self.owner_account,
            guard_address=self.guard_address,
            credentials=self.credentials.copy(),
            replay_counter=self.replay_counter,
            recovery=self.recovery,
            delegation=self.delegation,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_account": self.owner_account,
            "guard_address": self.guard_address,
            "replay_counter": self.replay_counter,
            "credentials": self.credentials.to_dict(),
            "recovery": self.recovery.to_dict(),
            "delegation": self.delegation.to_dict(),
        }

    def fingerprint(self) -> str:
        return state_hash(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GuardState':
        return cls(
            owner_account=data["owner_account"],
            guard_address=data["guard_address"],
            credentials=credentials_from_dict(data["credentials"]),
            replay_counter=int(data["replay_counter"]),
            recovery=RecoveryState.from_dict(data.get("recovery", {})),
            delegation=DelegationState.from_dict(data.get("delegation", {})),
        )
