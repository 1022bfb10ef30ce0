#!/usr/bin/env python3
"""
TFA Guard Example - Lost Device Recovery

Installs a guard with one device, sends a payment, loses the device, and
replaces it through the fast recovery path (service + seed, one day lock).

Run with: python examples/device_recovery_example.py
"""

import json

from tfaguard import (
    GuardConfig,
    InMemoryAccount,
    KeyPair,
    RequestBuilder,
    RequestRejected,
    TwoFactorGuard,
)
from tfaguard.logging_config import configure_logging


class Clock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


def main():
    configure_logging(level="INFO", json_format=False)

    clock = Clock(1_700_000_000)
    account = InMemoryAccount("account-demo", balance=10 ** 10)
    guard = TwoFactorGuard("guard-demo", account, config=GuardConfig(), clock=clock)

    phone = KeyPair.generate()
    user = RequestBuilder.device_set(
        service=KeyPair.generate(),
        seed=KeyPair.generate(),
        device=phone,
        device_id=1,
    )

    print("Install:", guard.install(account.address, user.install_credentials()).to_dict())

    payment = user.send_actions(guard.get_counter(), clock.now + 60, 5 * 10 ** 8,
                                [{"type": "transfer", "to": "merchant-1", "amount": 5 * 10 ** 8}])
    print("Payment:", guard.submit(payment).to_dict())

    # The phone is lost; a replacement is enrolled under the same id.
    replacement = KeyPair.generate()
    start = user.fast_recover(guard.get_counter(), clock.now + 60, 1, replacement.verify_key)
    print("Recovery started:", guard.submit(start).to_dict())

    early = user.fast_recover(guard.get_counter(), clock.now + 60, 1, replacement.verify_key)
    try:
        guard.submit(early)
    except RequestRejected as e:
        print("Too early:", e.reason.value)

    clock.now = guard.get_recovery_state().unblock_at
    done = user.fast_recover(guard.get_counter(), clock.now + 60, 1, replacement.verify_key)
    print("Recovery completed:", guard.submit(done).to_dict())

    user.use_device(replacement, 1)
    payment = user.send_actions(guard.get_counter(), clock.now + 60, 10 ** 8, [])
    print("Payment with new device:", guard.submit(payment).to_dict())

    print(json.dumps(guard.snapshot(), indent=2))


if __name__ == "__main__":
    main()
