"""Shared fixtures for the guard test suites."""

from tfaguard.account import InMemoryAccount
from tfaguard.client import RequestBuilder
from tfaguard.config import GuardConfig
from tfaguard.guard import TwoFactorGuard
from tfaguard.signing import KeyPair


ONE_DAY = 24 * 60 * 60
START = 1_700_000_000
ACCOUNT = "account-1"
GUARD = "guard-1"


class FakeClock:
    """Controllable clock; the guard reads it once per request."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def key(n: int) -> KeyPair:
    """Deterministic key pair, distinct for each n."""
    return KeyPair.from_seed(bytes([n]) * 32)


def device_set_builder(device_id: int = 1) -> RequestBuilder:
    return RequestBuilder.device_set(service=key(1), seed=key(2), device=key(3), device_id=device_id)


def certificate_builder(valid_until: int = START + 30 * ONE_DAY) -> RequestBuilder:
    return RequestBuilder.with_certificate(root=key(10), seed=key(2), certificate_key=key(11), valid_until=valid_until)


def make_guard(builder=None, config=None, store=None, clock=None, install=True):
    """Build an installed guard over an in-memory account."""
    builder = builder or device_set_builder()
    clock = clock or FakeClock()
    account = InMemoryAccount(ACCOUNT, balance=10 ** 12)
    guard = TwoFactorGuard(
        GUARD,
        account,
        store=store,
        config=config or GuardConfig(
            fast_recovery_delay=ONE_DAY,
            slow_recovery_delay=14 * ONE_DAY,
            delegation_delay=14 * ONE_DAY,
        ),
        clock=clock,
    )
    if install:
        decision = guard.install(ACCOUNT, builder.install_credentials())
        assert decision.accepted(), decision.to_dict()
    return guard, account, builder, clock
