"""
TFA Guard Recovery State Machine

Time-locked replacement of a lost device credential (device-set shape only).

    IDLE --fast_recover(service + seed)--> FAST_PENDING   unblock_at = now + fast delay
    IDLE --slow_recover(seed)-----------> SLOW_PENDING   unblock_at = now + slow delay
    *_PENDING --same request, now >= unblock_at--> IDLE  (device installed/overwritten)
    *_PENDING --cancel_recovery------------------> IDLE

A request for a different kind or target while one is pending re-arms the
pending recovery with a fresh delay; it never inherits the old deadline.
Replacing a fast recovery with a slow one needs the service signature too.
Timeouts only gate completion; nothing is ever cancelled by time alone.
"""

from dataclasses import dataclass
from enum import Enum

from .config import GuardConfig
from .envelope import DeviceParams
from .errors import GuardRejection, RejectReason
from .state import GuardState, IDLE_RECOVERY, RecoveryState, RecoveryStatus


class RecoveryKind(str, Enum):
    FAST = "FAST"
    SLOW = "SLOW"


class RecoveryEvent(str, Enum):
    STARTED = "started"
    REARMED = "rearmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


_PENDING_STATUS = {
    RecoveryKind.FAST: RecoveryStatus.FAST_PENDING,
    RecoveryKind.SLOW: RecoveryStatus.SLOW_PENDING,
}


@dataclass
class RecoveryStateMachine:
    config: GuardConfig

    def delay_for(self, kind: RecoveryKind) -> int:
        if kind == RecoveryKind.FAST:
            return self.config.fast_recovery_delay
        return self.config.slow_recovery_delay

    def request(self, state: GuardState, kind: RecoveryKind, params: DeviceParams, now: int) -> RecoveryEvent:
        """
        Start, re-arm or complete a recovery on the staged state.

        Raises:
            GuardRejection: DELAY_NOT_ELAPSED when the matching recovery is
                still locked; PARAMETER_MISMATCH when re-arming is disabled
        """
        pending = state.recovery
        status = _PENDING_STATUS[kind]
        armed = RecoveryState(
            status=status,
            device_id=params.device_id,
            device_pubkey=params.device_pubkey,
            unblock_at=now + self.delay_for(kind),
        )

        if not pending.is_pending():
            state.recovery = armed
            return RecoveryEvent.STARTED

        if self._matches(pending, status, params):
            if now < pending.unblock_at:
                raise GuardRejection(
                    RejectReason.DELAY_NOT_ELAPSED,
                    f"Recovery unlocks at {pending.unblock_at} (now {now})"
                )
            state.credentials.install_device(params.device_id, params.device_pubkey)
            state.recovery = IDLE_RECOVERY
            return RecoveryEvent.COMPLETED

        if not self.config.rearm_recovery:
            raise GuardRejection(
                RejectReason.PARAMETER_MISMATCH,
                "A different recovery is already pending"
            )
        state.recovery = armed
        return RecoveryEvent.REARMED

    def cancel(self, state: GuardState) -> RecoveryEvent:
        if not state.recovery.is_pending():
            raise GuardRejection(RejectReason.NOT_PENDING, "No recovery is pending")
        state.recovery = IDLE_RECOVERY
        return RecoveryEvent.CANCELLED

    @staticmethod
    def _matches(pending: RecoveryState, status: RecoveryStatus, params: DeviceParams) -> bool:
        return (
            pending.status == status
            and pending.device_id == params.device_id
            and pending.device_pubkey == params.device_pubkey
        )
