"""
Protected account collaborator.

The guard never encodes wallet actions itself. It only needs the account to:

    - report its current action sequence number
    - execute a forwarded action on the guard's behalf
    - attach/detach extensions and toggle its own signature authentication
    - deploy an account template (delegation completion)

Host-specific implementations wrap the real wallet; InMemoryAccount records
every call for development and testing.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .hashing import content_hash


@dataclass(frozen=True)
class ForwardedAction:
    """A wallet request forwarded by the guard after authorization."""
    account_seqno: int
    message: Dict[str, Any]
    send_mode: int
    value: int


class ProtectedAccount(ABC):
    """Abstract interface the guard uses to act on the protected account."""

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @abstractmethod
    def get_seqno(self) -> int:
        """Current action sequence number of the account."""
        pass

    @abstractmethod
    def submit_actions(self, action: ForwardedAction) -> None:
        """Execute a forwarded action with the guard as authorizing extension."""
        pass

    @abstractmethod
    def attach_extension(self, address: str) -> None:
        pass

    @abstractmethod
    def detach_extension(self, address: str) -> None:
        pass

    @abstractmethod
    def set_signature_auth(self, enabled: bool) -> None:
        """Enable or disable the account's own single-key authentication."""
        pass

    @abstractmethod
    def deploy(self, state_init: bytes, value: int) -> str:
        """Deploy an account template, funding it with `value`. Returns its address."""
        pass


class InMemoryAccount(ProtectedAccount):
    """
    In-memory protected account for development/testing.

    WARNING: Not a wallet. It applies no fee accounting and only records
    what the guard asked it to do.
    """

    def __init__(self, address: str, seqno: int = 0, balance: int = 0):
        self._address = address
        self._lock = threading.Lock()
        self.seqno = seqno
        self.balance = balance
        self.signature_auth_enabled = True
        self.extensions: List[str] = []
        self.executed: List[ForwardedAction] = []
        self.deployed: Dict[str, int] = {}

    @property
    def address(self) -> str:
        return self._address

    def get_seqno(self) -> int:
        with self._lock:
            return self.seqno

    def submit_actions(self, action: ForwardedAction) -> None:
        with self._lock:
            if action.account_seqno != self.seqno:
                raise ValueError(f"Stale account seqno {action.account_seqno}, expected {self.seqno}")
            self.executed.append(action)
            self.seqno += 1

    def attach_extension(self, address: str) -> None:
        with self._lock:
            if address not in self.extensions:
                self.extensions.append(address)

    def detach_extension(self, address: str) -> None:
        with self._lock:
            if address in self.extensions:
                self.extensions.remove(address)

    def set_signature_auth(self, enabled: bool) -> None:
        with self._lock:
            self.signature_auth_enabled = enabled

    def deploy(self, state_init: bytes, value: int) -> str:
        address = derive_address(state_init)
        with self._lock:
            self.deployed[address] = self.deployed.get(address, 0) + value
            self.balance -= value
        return address

    def last_action(self) -> Optional[ForwardedAction]:
        with self._lock:
            return self.executed[-1] if self.executed else None


def derive_address(state_init: bytes) -> str:
    """Address of an account template: the content hash of its initial state."""
    return content_hash(state_init)
