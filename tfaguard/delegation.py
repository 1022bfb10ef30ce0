"""
TFA Guard Delegation / Removal State Machine

    IDLE --delegate(seed)--> PENDING{state_init, forward_value, unblock_at}
    PENDING --same delegate, now >= unblock_at--> guard destroyed
    PENDING --cancel_delegation(seed)--> IDLE

Delegation is the user-unilateral exit: it needs no service co-signature,
so it is the only path that can destroy the guard without the operator.
remove_extension is the cooperative exit: both signatures, no delay.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

from .config import GuardConfig
from .effects import (
    AttachDeployedTemplate,
    DeployTemplate,
    DestroyGuard,
    DetachGuard,
    Effect,
    SetSignatureAuth,
)
from .envelope import DelegationParams
from .errors import GuardRejection, RejectReason
from .state import DelegationState, DelegationStatus, GuardState, IDLE_DELEGATION


class DelegationEvent(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REMOVED = "removed"


@dataclass
class DelegationStateMachine:
    config: GuardConfig

    def delegate(self, state: GuardState, params: DelegationParams, now: int) -> Tuple[DelegationEvent, List[Effect]]:
        """
        Start or complete a delegation on the staged state.

        Raises:
            GuardRejection: PARAMETER_MISMATCH if the template or value differ
                from the pending delegation; DELAY_NOT_ELAPSED before unblock_at
        """
        pending = state.delegation

        if not pending.is_pending():
            state.delegation = DelegationState(
                status=DelegationStatus.PENDING,
                state_init=params.state_init,
                forward_value=params.forward_value,
                unblock_at=now + self.config.delegation_delay,
            )
            return DelegationEvent.STARTED, []

        if pending.state_init != params.state_init or pending.forward_value != params.forward_value:
            raise GuardRejection(
                RejectReason.PARAMETER_MISMATCH,
                "Delegation parameters differ from the pending delegation"
            )

        if now < pending.unblock_at:
            raise GuardRejection(
                RejectReason.DELAY_NOT_ELAPSED,
                f"Delegation unlocks at {pending.unblock_at} (now {now})"
            )

        state.delegation = IDLE_DELEGATION
        effects: List[Effect] = [
            DeployTemplate(state_init=params.state_init, value=params.forward_value),
            AttachDeployedTemplate(state_init=params.state_init),
            DetachGuard(),
            DestroyGuard(),
        ]
        return DelegationEvent.COMPLETED, effects

    def cancel(self, state: GuardState) -> DelegationEvent:
        if not state.delegation.is_pending():
            raise GuardRejection(RejectReason.NOT_PENDING, "No delegation is pending")
        state.delegation = IDLE_DELEGATION
        return DelegationEvent.CANCELLED

    def remove_extension(self) -> Tuple[DelegationEvent, List[Effect]]:
        """Cooperative removal; restores the account's own signature authentication."""
        effects: List[Effect] = [
            DetachGuard(),
            SetSignatureAuth(enabled=True),
            DestroyGuard(),
        ]
        return DelegationEvent.REMOVED, effects
