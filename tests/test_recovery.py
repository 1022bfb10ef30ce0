"""
Recovery and delegation state machine tests.

Time locks gate completion only; nothing is cancelled by time alone.
"""

import unittest

from tfaguard.config import GuardConfig
from tfaguard.credentials import DeviceSetCredentials
from tfaguard.delegation import DelegationEvent, DelegationStateMachine
from tfaguard.effects import (
    AttachDeployedTemplate,
    DeployTemplate,
    DestroyGuard,
    DetachGuard,
    SetSignatureAuth,
)
from tfaguard.envelope import DelegationParams, DeviceParams
from tfaguard.errors import GuardRejection, RejectReason
from tfaguard.recovery import RecoveryEvent, RecoveryKind, RecoveryStateMachine
from tfaguard.state import DelegationStatus, GuardState, RecoveryStatus

from support import ONE_DAY, key, make_guard


T0 = 1_000_000


def make_state():
    return GuardState(
        owner_account="account-1",
        guard_address="guard-1",
        credentials=DeviceSetCredentials(
            service_pubkey=key(1).verify_key,
            seed_pubkey=key(2).verify_key,
            devices={1: key(3).verify_key},
        ),
    )


class TestRecoveryStateMachine(unittest.TestCase):

    def setUp(self):
        self.config = GuardConfig(fast_recovery_delay=ONE_DAY, slow_recovery_delay=14 * ONE_DAY)
        self.machine = RecoveryStateMachine(self.config)
        self.state = make_state()
        self.new_key = key(4).verify_key
        self.params = DeviceParams(device_id=1, device_pubkey=self.new_key)

    def test_fast_start(self):
        event = self.machine.request(self.state, RecoveryKind.FAST, self.params, T0)
        self.assertEqual(event, RecoveryEvent.STARTED)
        self.assertEqual(self.state.recovery.status, RecoveryStatus.FAST_PENDING)
        self.assertEqual(self.state.recovery.unblock_at, T0 + ONE_DAY)
        self.assertEqual(self.state.credentials.get_device(1), key(3).verify_key)

    def test_slow_start_uses_slow_delay(self):
        self.machine.request(self.state, RecoveryKind.SLOW, self.params, T0)
        self.assertEqual(self.state.recovery.status, RecoveryStatus.SLOW_PENDING)
        self.assertEqual(self.state.recovery.unblock_at, T0 + 14 * ONE_DAY)

    def test_completion_one_second_early_rejected(self):
        self.machine.request(self.state, RecoveryKind.FAST, self.params, T0)
        unblock_at = self.state.recovery.unblock_at
        with self.assertRaises(GuardRejection) as ctx:
            self.machine.request(self.state, RecoveryKind.FAST, self.params, unblock_at - 1)
        self.assertEqual(ctx.exception.reason, RejectReason.DELAY_NOT_ELAPSED)
        self.assertEqual(self.state.recovery.status, RecoveryStatus.FAST_PENDING)

    def test_completion_at_unblock_time(self):
        self.machine.request(self.state, RecoveryKind.FAST, self.params, T0)
        event = self.machine.request(self.state, RecoveryKind.FAST, self.params, T0 + ONE_DAY)
        self.assertEqual(event, RecoveryEvent.COMPLETED)
        self.assertEqual(self.state.recovery.status, RecoveryStatus.IDLE)
        self.assertEqual(self.state.credentials.get_device(1), self.new_key)

    def test_completion_installs_new_id(self):
        params = DeviceParams(device_id=8, device_pubkey=self.new_key)
        self.machine.request(self.state, RecoveryKind.SLOW, params, T0)
        self.machine.request(self.state, RecoveryKind.SLOW, params, T0 + 20 * ONE_DAY)
        self.assertEqual(self.state.credentials.get_device(8), self.new_key)

    def test_different_target_rearms_with_fresh_delay(self):
        self.machine.request(self.state, RecoveryKind.FAST, self.params, T0)
        other = DeviceParams(device_id=2, device_pubkey=self.new_key)
        event = self.machine.request(self.state, RecoveryKind.FAST, other, T0 + ONE_DAY)
        self.assertEqual(event, RecoveryEvent.REARMED)
        self.assertEqual(self.state.recovery.device_id, 2)
        self.assertEqual(self.state.recovery.unblock_at, T0 + 2 * ONE_DAY)

    def test_different_kind_rearms(self):
        self.machine.request(self.state, RecoveryKind.FAST, self.params, T0)
        event = self.machine.request(self.state, RecoveryKind.SLOW, self.params, T0 + ONE_DAY)
        self.assertEqual(event, RecoveryEvent.REARMED)
        self.assertEqual(self.state.recovery.status, RecoveryStatus.SLOW_PENDING)
        self.assertEqual(self.state.recovery.unblock_at, T0 + 15 * ONE_DAY)

    def test_rearm_disabled_rejects_mismatch(self):
        machine = RecoveryStateMachine(GuardConfig(
            fast_recovery_delay=ONE_DAY, slow_recovery_delay=14 * ONE_DAY, rearm_recovery=False
        ))
        machine.request(self.state, RecoveryKind.FAST, self.params, T0)
        other = DeviceParams(device_id=1, device_pubkey=key(5).verify_key)
        with self.assertRaises(GuardRejection) as ctx:
            machine.request(self.state, RecoveryKind.FAST, other, T0 + 1)
        self.assertEqual(ctx.exception.reason, RejectReason.PARAMETER_MISMATCH)
        self.assertEqual(self.state.recovery.device_pubkey, self.new_key)

    def test_cancel(self):
        self.machine.request(self.state, RecoveryKind.SLOW, self.params, T0)
        self.assertEqual(self.machine.cancel(self.state), RecoveryEvent.CANCELLED)
        self.assertEqual(self.state.recovery.status, RecoveryStatus.IDLE)
        self.assertIsNone(self.state.recovery.device_pubkey)
        self.assertIsNone(self.state.recovery.unblock_at)

    def test_cancel_when_idle(self):
        with self.assertRaises(GuardRejection) as ctx:
            self.machine.cancel(self.state)
        self.assertEqual(ctx.exception.reason, RejectReason.NOT_PENDING)



class TestFastRecoveryProtection(unittest.TestCase):
    """A seed-only caller can neither replace nor cancel a fast recovery."""

    def setUp(self):
        self.guard, _, self.builder, self.clock = make_guard()
        self.valid_until = self.clock.now + 60
        self.guard.submit(self.builder.fast_recover(0, self.valid_until, 1, key(4).verify_key))

    def test_seed_only_slow_recover_cannot_replace_fast(self):
        decision = self.guard.handle(self.builder.slow_recover(1, self.valid_until, 9, key(5).verify_key))
        self.assertEqual(decision.reason, RejectReason.BAD_SIGNATURE)
        pending = self.guard.get_recovery_state()
        self.assertEqual(pending.status, RecoveryStatus.FAST_PENDING)
        self.assertEqual(pending.device_id, 1)

        cancel = self.guard.handle(self.builder.cancel_recovery(1, self.valid_until, seed_only=True))
        self.assertEqual(cancel.reason, RejectReason.BAD_SIGNATURE)
        self.assertEqual(self.guard.get_recovery_state().status, RecoveryStatus.FAST_PENDING)

    def test_co_signed_slow_recover_rearms(self):
        envelope = self.builder.slow_recover(1, self.valid_until, 9, key(5).verify_key, co_signed=True)
        decision = self.guard.submit(envelope)
        self.assertEqual(decision.event, "recovery_rearmed")
        pending = self.guard.get_recovery_state()
        self.assertEqual(pending.status, RecoveryStatus.SLOW_PENDING)
        self.assertEqual(pending.unblock_at, self.clock.now + 14 * ONE_DAY)


class TestDelegationStateMachine(unittest.TestCase):

    def setUp(self):
        self.machine = DelegationStateMachine(GuardConfig(delegation_delay=14 * ONE_DAY))
        self.state = make_state()
        self.params = DelegationParams(state_init=b"wallet-v5", forward_value=10 ** 9)

    def test_start(self):
        event, effects = self.machine.delegate(self.state, self.params, T0)
        self.assertEqual(event, DelegationEvent.STARTED)
        self.assertEqual(effects, [])
        self.assertEqual(self.state.delegation.status, DelegationStatus.PENDING)
        self.assertEqual(self.state.delegation.unblock_at, T0 + 14 * ONE_DAY)

    def test_early_completion_rejected(self):
        self.machine.delegate(self.state, self.params, T0)
        with self.assertRaises(GuardRejection) as ctx:
            self.machine.delegate(self.state, self.params, T0 + 14 * ONE_DAY - 1)
        self.assertEqual(ctx.exception.reason, RejectReason.DELAY_NOT_ELAPSED)

    def test_completion_effects(self):
        self.machine.delegate(self.state, self.params, T0)
        event, effects = self.machine.delegate(self.state, self.params, T0 + 14 * ONE_DAY)
        self.assertEqual(event, DelegationEvent.COMPLETED)
        self.assertEqual(effects, [
            DeployTemplate(state_init=b"wallet-v5", value=10 ** 9),
            AttachDeployedTemplate(state_init=b"wallet-v5"),
            DetachGuard(),
            DestroyGuard(),
        ])

    def test_changed_template_rejected(self):
        self.machine.delegate(self.state, self.params, T0)
        changed = DelegationParams(state_init=b"other", forward_value=10 ** 9)
        with self.assertRaises(GuardRejection) as ctx:
            self.machine.delegate(self.state, changed, T0 + 20 * ONE_DAY)
        self.assertEqual(ctx.exception.reason, RejectReason.PARAMETER_MISMATCH)

    def test_changed_value_rejected(self):
        self.machine.delegate(self.state, self.params, T0)
        changed = DelegationParams(state_init=b"wallet-v5", forward_value=1)
        with self.assertRaises(GuardRejection) as ctx:
            self.machine.delegate(self.state, changed, T0 + 1)
        self.assertEqual(ctx.exception.reason, RejectReason.PARAMETER_MISMATCH)

    def test_cancel(self):
        self.machine.delegate(self.state, self.params, T0)
        self.assertEqual(self.machine.cancel(self.state), DelegationEvent.CANCELLED)
        self.assertFalse(self.state.delegation.is_pending())
        self.assertIsNone(self.state.delegation.state_init)

    def test_cancel_when_idle(self):
        with self.assertRaises(GuardRejection) as ctx:
            self.machine.cancel(self.state)
        self.assertEqual(ctx.exception.reason, RejectReason.NOT_PENDING)

    def test_remove_extension_effects(self):
        event, effects = self.machine.remove_extension()
        self.assertEqual(event, DelegationEvent.REMOVED)
        self.assertEqual(effects, [DetachGuard(), SetSignatureAuth(enabled=True), DestroyGuard()])


if __name__ == "__main__":
    unittest.main()
