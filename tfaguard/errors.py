"""
TFA Guard rejection taxonomy.

Every rejection is local and terminal for a single request. Nothing is
retried by the guard; the caller resubmits a corrected request.
"""

from enum import Enum
from typing import Optional


class RejectReason(str, Enum):
    """Reason a request was rejected."""
    INVALID_COUNTER = "INVALID_COUNTER"
    EXPIRED = "EXPIRED"
    BAD_SIGNATURE = "BAD_SIGNATURE"
    BLOCKED_BY_RECOVERY = "BLOCKED_BY_RECOVERY"
    DUPLICATE_ID = "DUPLICATE_ID"
    UNKNOWN_ID = "UNKNOWN_ID"
    PARAMETER_MISMATCH = "PARAMETER_MISMATCH"
    NOT_PENDING = "NOT_PENDING"
    DELAY_NOT_ELAPSED = "DELAY_NOT_ELAPSED"
    MALFORMED_REQUEST = "MALFORMED_REQUEST"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    NOT_INSTALLED = "NOT_INSTALLED"
    ALREADY_INSTALLED = "ALREADY_INSTALLED"
    UNAUTHORIZED_SENDER = "UNAUTHORIZED_SENDER"


class GuardRejection(Exception):
    """
    Raised inside the guard pipeline to abort a request.

    The guard converts it into a rejected GuardDecision before anything
    leaves the guard; staged state is discarded.
    """

    def __init__(self, reason: RejectReason, details: Optional[str] = None):
        self.reason = reason
        self.details = details
        super().__init__(f"{reason.value}: {details}" if details else reason.value)


class RequestRejected(Exception):
    """Raised by TwoFactorGuard.submit() when a request is rejected."""

    def __init__(self, decision):
        self.decision = decision
        reason = decision.reason.value if decision.reason else "unknown"
        super().__init__(f"Request rejected: {reason}")

    @property
    def reason(self) -> Optional[RejectReason]:
        return self.decision.reason
