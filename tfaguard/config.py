"""
Configuration module for TFA Guard.

Centralizes time-lock delays, storage and logging settings with
environment variable support and validation.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict


# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("TFA_ENV", "dev")  # dev|stage|prod

ONE_DAY = 60 * 60 * 24

# Time-lock delays (seconds)
FAST_RECOVERY_DELAY = int(os.getenv("TFA_FAST_RECOVERY_DELAY", str(ONE_DAY)))
SLOW_RECOVERY_DELAY = int(os.getenv("TFA_SLOW_RECOVERY_DELAY", str(14 * ONE_DAY)))
DELEGATION_DELAY = int(os.getenv("TFA_DELEGATION_DELAY", str(14 * ONE_DAY)))

# A recovery request for a different target re-arms the pending one
REARM_RECOVERY = os.getenv("TFA_REARM_RECOVERY", "true").lower() in ("1", "true", "yes")

# Hosting (dev service)
ACCOUNT_ADDRESS = os.getenv("TFA_ACCOUNT_ADDRESS", "account-0")
GUARD_ADDRESS = os.getenv("TFA_GUARD_ADDRESS", "guard-0")

# Storage
DB_PATH = os.getenv("TFA_DB_PATH", "data/tfaguard.db")

# Logging
LOG_LEVEL = os.getenv("TFA_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("TFA_LOG_JSON", "true").lower() in ("1", "true", "yes")
AUDIT_MAX_RECORDS = int(os.getenv("TFA_AUDIT_MAX_RECORDS", "10000"))


@dataclass(frozen=True)
class GuardConfig:
    """
    Per-guard policy.

    The slow path must be materially longer than the fast one: fast recovery
    assumes one compromised credential, slow recovery assumes the service
    itself may be unreachable or hostile.
    """
    fast_recovery_delay: int = FAST_RECOVERY_DELAY
    slow_recovery_delay: int = SLOW_RECOVERY_DELAY
    delegation_delay: int = DELEGATION_DELAY
    rearm_recovery: bool = REARM_RECOVERY
    audit_max_records: int = AUDIT_MAX_RECORDS

    def __post_init__(self):
        for name in ("fast_recovery_delay", "slow_recovery_delay", "delegation_delay"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        if self.slow_recovery_delay < self.fast_recovery_delay:
            raise ValueError("slow_recovery_delay must not be shorter than fast_recovery_delay")
        if self.audit_max_records < 1:
            raise ValueError("audit_max_records must be positive")

    @classmethod
    def from_env(cls) -> 'GuardConfig':
        """Read settings fresh from the environment (module constants are import-time)."""
        return cls(
            fast_recovery_delay=int(os.getenv("TFA_FAST_RECOVERY_DELAY", str(ONE_DAY))),
            slow_recovery_delay=int(os.getenv("TFA_SLOW_RECOVERY_DELAY", str(14 * ONE_DAY))),
            delegation_delay=int(os.getenv("TFA_DELEGATION_DELAY", str(14 * ONE_DAY))),
            rearm_recovery=os.getenv("TFA_REARM_RECOVERY", "true").lower() in ("1", "true", "yes"),
            audit_max_records=int(os.getenv("TFA_AUDIT_MAX_RECORDS", "10000")),
        )


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate the process configuration.
    Returns dict of check name -> passed.
    """
    checks = {
        "delays_non_negative": min(FAST_RECOVERY_DELAY, SLOW_RECOVERY_DELAY, DELEGATION_DELAY) >= 0,
        "slow_not_shorter_than_fast": SLOW_RECOVERY_DELAY >= FAST_RECOVERY_DELAY,
        "db_dir_writable": _dir_writable(Path(DB_PATH).parent),
    }
    return checks


def _dir_writable(path: Path) -> bool:
    probe = path
    while not probe.exists():
        if probe.parent == probe:
            return False
        probe = probe.parent
    return os.access(probe, os.W_OK)


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("TFA_DEBUG", "").lower() in ("1", "true", "yes")
