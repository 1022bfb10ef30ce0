"""
Request Authenticator Test Suite

Critical invariant tested:
    NO REQUEST IS AUTHORIZED WITHOUT EVERY REQUIRED SIGNATURE
"""

import unittest

from tfaguard.authenticator import RequestAuthenticator, SignatureRequirement
from tfaguard.client import device_payload, send_actions_payload, sign_request
from tfaguard.credentials import CertificateCredentials, DeviceSetCredentials
from tfaguard.envelope import OpCode
from tfaguard.errors import GuardRejection, RejectReason
from tfaguard.signing import issue_certificate
from tfaguard.state import (
    DelegationState,
    DelegationStatus,
    GuardState,
    RecoveryState,
    RecoveryStatus,
)

from support import key


NOW = 1000
LATER = 2000


class AuthenticatorTestCase(unittest.TestCase):

    def setUp(self):
        self.service, self.seed, self.device = key(1), key(2), key(3)
        self.authenticator = RequestAuthenticator()
        self.state = GuardState(
            owner_account="account-1",
            guard_address="guard-1",
            credentials=DeviceSetCredentials(
                service_pubkey=self.service.verify_key,
                seed_pubkey=self.seed.verify_key,
                devices={1: self.device.verify_key},
            ),
            replay_counter=5,
        )

    def assertRejected(self, envelope, reason, state=None):
        with self.assertRaises(GuardRejection) as ctx:
            self.authenticator.authorize(envelope, state or self.state, NOW)
        self.assertEqual(ctx.exception.reason, reason)

    def send(self, counter=5, valid_until=LATER, primary=None, secondary=None, device_id=1):
        return sign_request(
            OpCode.SEND_ACTIONS, counter, valid_until, send_actions_payload(1, []),
            primary=primary, secondary=secondary, device_id=device_id,
        )


class TestReplayAndExpiry(AuthenticatorTestCase):

    def test_valid_request_authorized(self):
        envelope = self.send(primary=self.service, secondary=self.device)
        requirement = self.authenticator.authorize(envelope, self.state, NOW)
        self.assertEqual(requirement, SignatureRequirement.PRIMARY_AND_SECONDARY)

    def test_stale_counter(self):
        self.assertRejected(self.send(counter=4, primary=self.service, secondary=self.device),
                            RejectReason.INVALID_COUNTER)

    def test_future_counter(self):
        self.assertRejected(self.send(counter=6, primary=self.service, secondary=self.device),
                            RejectReason.INVALID_COUNTER)

    def test_expired(self):
        self.assertRejected(self.send(valid_until=NOW - 1, primary=self.service, secondary=self.device),
                            RejectReason.EXPIRED)

    def test_valid_until_now_accepted(self):
        envelope = self.send(valid_until=NOW, primary=self.service, secondary=self.device)
        self.authenticator.authorize(envelope, self.state, NOW)

    def test_counter_checked_before_signatures(self):
        self.assertRejected(self.send(counter=0), RejectReason.INVALID_COUNTER)


class TestDualSignatureNecessity(AuthenticatorTestCase):

    def test_missing_secondary(self):
        self.assertRejected(self.send(primary=self.service), RejectReason.BAD_SIGNATURE)

    def test_missing_primary(self):
        self.assertRejected(self.send(secondary=self.device), RejectReason.BAD_SIGNATURE)

    def test_wrong_secondary(self):
        self.assertRejected(self.send(primary=self.service, secondary=key(9)), RejectReason.BAD_SIGNATURE)

    def test_wrong_primary(self):
        self.assertRejected(self.send(primary=key(9), secondary=self.device), RejectReason.BAD_SIGNATURE)

    def test_seed_cannot_stand_in_for_device(self):
        self.assertRejected(self.send(primary=self.service, secondary=self.seed), RejectReason.BAD_SIGNATURE)

    def test_unknown_device_id(self):
        self.assertRejected(self.send(primary=self.service, secondary=self.device, device_id=7),
                            RejectReason.BAD_SIGNATURE)

    def test_both_halves_always_evaluated(self):
        calls = []
        credentials = self.state.credentials

        class Recording(DeviceSetCredentials):
            def verify_primary(self, *args, **kwargs):
                calls.append("primary")
                return False

            def verify_secondary(self, *args, **kwargs):
                calls.append("secondary")
                return True

        self.state.credentials = Recording(
            service_pubkey=credentials.service_pubkey,
            seed_pubkey=credentials.seed_pubkey,
            devices=dict(credentials.devices),
        )
        self.assertRejected(self.send(primary=self.service, secondary=self.device), RejectReason.BAD_SIGNATURE)
        self.assertEqual(calls, ["primary", "secondary"])

    def test_signature_over_other_request_rejected(self):
        other = self.send(primary=self.service, secondary=self.device)
        envelope = sign_request(
            OpCode.SEND_ACTIONS, 5, LATER, send_actions_payload(2, []),
            device_id=1,
        )
        envelope.primary_signature = other.primary_signature
        envelope.secondary_signature = other.secondary_signature
        self.assertRejected(envelope, RejectReason.BAD_SIGNATURE)


class TestSignatureRequirements(AuthenticatorTestCase):

    def _device(self, op, primary=None, secondary=None):
        return sign_request(op, 5, LATER, device_payload(2, key(4).verify_key),
                            primary=primary, secondary=secondary)

    def test_fast_recover_needs_service_and_seed(self):
        ok = self._device(OpCode.FAST_RECOVER, primary=self.service, secondary=self.seed)
        self.assertEqual(self.authenticator.authorize(ok, self.state, NOW), SignatureRequirement.PRIMARY_AND_SEED)
        self.assertRejected(self._device(OpCode.FAST_RECOVER, secondary=self.seed), RejectReason.BAD_SIGNATURE)

    def test_slow_recover_needs_seed_only(self):
        ok = self._device(OpCode.SLOW_RECOVER, secondary=self.seed)
        self.assertEqual(self.authenticator.authorize(ok, self.state, NOW), SignatureRequirement.SEED_ONLY)
        self.assertRejected(self._device(OpCode.SLOW_RECOVER, secondary=self.device), RejectReason.BAD_SIGNATURE)

    def test_delegate_needs_seed_only(self):
        envelope = sign_request(OpCode.DELEGATE, 5, LATER, {"state_init": "AA==", "forward_value": 1},
                                secondary=self.seed)
        self.assertEqual(self.authenticator.authorize(envelope, self.state, NOW), SignatureRequirement.SEED_ONLY)

    def test_cancel_of_slow_recovery_seed_only(self):
        self.state.recovery = RecoveryState(RecoveryStatus.SLOW_PENDING, 2, key(4).verify_key, NOW + 10)
        envelope = sign_request(OpCode.CANCEL_RECOVERY, 5, LATER, {}, secondary=self.seed)
        self.assertEqual(self.authenticator.authorize(envelope, self.state, NOW), SignatureRequirement.SEED_ONLY)

    def test_cancel_of_fast_recovery_needs_service(self):
        self.state.recovery = RecoveryState(RecoveryStatus.FAST_PENDING, 2, key(4).verify_key, NOW + 10)
        self.assertRejected(sign_request(OpCode.CANCEL_RECOVERY, 5, LATER, {}, secondary=self.seed),
                            RejectReason.BAD_SIGNATURE)
        envelope = sign_request(OpCode.CANCEL_RECOVERY, 5, LATER, {}, primary=self.service, secondary=self.seed)
        self.authenticator.authorize(envelope, self.state, NOW)


    def test_slow_recover_replacing_fast_needs_service(self):
        self.state.recovery = RecoveryState(RecoveryStatus.FAST_PENDING, 2, key(4).verify_key, NOW + 10)
        self.assertRejected(self._device(OpCode.SLOW_RECOVER, secondary=self.seed), RejectReason.BAD_SIGNATURE)
        ok = self._device(OpCode.SLOW_RECOVER, primary=self.service, secondary=self.seed)
        self.assertEqual(self.authenticator.authorize(ok, self.state, NOW), SignatureRequirement.PRIMARY_AND_SEED)


class TestBlocking(AuthenticatorTestCase):

    def test_pending_recovery_blocks_ordinary_ops(self):
        self.state.recovery = RecoveryState(RecoveryStatus.SLOW_PENDING, 2, key(4).verify_key, NOW + 10)
        self.assertRejected(self.send(primary=self.service, secondary=self.device), RejectReason.BLOCKED_BY_RECOVERY)

    def test_pending_recovery_blocks_delegation(self):
        self.state.recovery = RecoveryState(RecoveryStatus.FAST_PENDING, 2, key(4).verify_key, NOW + 10)
        envelope = sign_request(OpCode.DELEGATE, 5, LATER, {"state_init": "AA==", "forward_value": 1},
                                secondary=self.seed)
        self.assertRejected(envelope, RejectReason.BLOCKED_BY_RECOVERY)

    def test_pending_delegation_blocks_recovery(self):
        self.state.delegation = DelegationState(DelegationStatus.PENDING, b"\x00", 1, NOW + 10)
        envelope = sign_request(OpCode.SLOW_RECOVER, 5, LATER, device_payload(2, key(4).verify_key),
                                secondary=self.seed)
        self.assertRejected(envelope, RejectReason.BLOCKED_BY_RECOVERY)

    def test_blocked_regardless_of_signatures(self):
        self.state.delegation = DelegationState(DelegationStatus.PENDING, b"\x00", 1, NOW + 10)
        self.assertRejected(self.send(), RejectReason.BLOCKED_BY_RECOVERY)

    def test_pending_delegation_blocks_removal(self):
        self.state.delegation = DelegationState(DelegationStatus.PENDING, b"\x00", 1, NOW + 10)
        envelope = sign_request(OpCode.REMOVE_EXTENSION, 5, LATER, {},
                                primary=self.service, secondary=self.device, device_id=1)
        self.assertRejected(envelope, RejectReason.BLOCKED_BY_RECOVERY)


class TestCertificateShape(unittest.TestCase):

    def setUp(self):
        self.root, self.seed, self.holder = key(10), key(2), key(11)
        self.authenticator = RequestAuthenticator()
        self.state = GuardState(
            owner_account="account-1",
            guard_address="guard-1",
            credentials=CertificateCredentials(root_pubkey=self.root.verify_key, seed_pubkey=self.seed.verify_key),
        )
        self.cert = issue_certificate(self.root.signing_key, self.holder.verify_key, LATER)

    def _send(self, certificate, primary=None, secondary=None):
        return sign_request(OpCode.SEND_ACTIONS, 0, LATER, send_actions_payload(1, []),
                            primary=primary, secondary=secondary, certificate=certificate)

    def test_certificate_and_seed_authorized(self):
        envelope = self._send(self.cert, primary=self.holder, secondary=self.seed)
        self.authenticator.authorize(envelope, self.state, NOW)

    def test_missing_certificate(self):
        with self.assertRaises(GuardRejection) as ctx:
            self.authenticator.authorize(self._send(None, primary=self.holder, secondary=self.seed), self.state, NOW)
        self.assertEqual(ctx.exception.reason, RejectReason.BAD_SIGNATURE)

    def test_expired_certificate(self):
        expired = issue_certificate(self.root.signing_key, self.holder.verify_key, NOW)
        with self.assertRaises(GuardRejection) as ctx:
            self.authenticator.authorize(self._send(expired, primary=self.holder, secondary=self.seed), self.state, NOW)
        self.assertEqual(ctx.exception.reason, RejectReason.BAD_SIGNATURE)

    def test_device_management_unsupported(self):
        envelope = sign_request(OpCode.AUTHORIZE_DEVICE, 0, LATER, device_payload(1, key(3).verify_key),
                                primary=self.holder, secondary=self.seed, certificate=self.cert)
        with self.assertRaises(GuardRejection) as ctx:
            self.authenticator.authorize(envelope, self.state, NOW)
        self.assertEqual(ctx.exception.reason, RejectReason.UNSUPPORTED_OPERATION)

    def test_recovery_unsupported(self):
        envelope = sign_request(OpCode.SLOW_RECOVER, 0, LATER, device_payload(1, key(3).verify_key),
                                secondary=self.seed)
        with self.assertRaises(GuardRejection) as ctx:
            self.authenticator.authorize(envelope, self.state, NOW)
        self.assertEqual(ctx.exception.reason, RejectReason.UNSUPPORTED_OPERATION)


if __name__ == "__main__":
    unittest.main()
