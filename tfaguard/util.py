"""
Utility functions for TFA Guard.

Provides encoding and time helpers shared by the wire types.
"""

import base64
import time


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes, rejecting non-alphabet characters."""
    return base64.b64decode(s.encode('ascii'), validate=True)

