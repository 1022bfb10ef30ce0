"""
Wallet-facing side effects of an accepted request.

State-machine handlers only describe effects; the guard dispatches them to
the protected account after the new state has been committed.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union


@dataclass(frozen=True)
class ForwardActions:
    message: Dict[str, Any]
    send_mode: int
    value: int


@dataclass(frozen=True)
class DeployTemplate:
    state_init: bytes
    value: int


@dataclass(frozen=True)
class AttachDeployedTemplate:
    """Attach the account deployed from `state_init` as the new extension."""
    state_init: bytes


@dataclass(frozen=True)
class DetachGuard:
    pass


@dataclass(frozen=True)
class SetSignatureAuth:
    enabled: bool


@dataclass(frozen=True)
class DestroyGuard:
    pass


Effect = Union[ForwardActions, DeployTemplate, AttachDeployedTemplate, DetachGuard, SetSignatureAuth, DestroyGuard]
