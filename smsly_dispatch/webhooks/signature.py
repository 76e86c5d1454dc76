"""
Webhook Signatures
==================
HMAC verification for provider callbacks.
"""

import hmac
import hashlib
import time
from typing import Optional, Union

# Configuration
MAX_TIMESTAMP_SKEW_SECONDS = 300  # 5 minutes

Body = Union[bytes, str]


def _as_bytes(body: Body) -> bytes:
    return body.encode() if isinstance(body, str) else body


def compute_signature(secret: str, timestamp: Union[int, str], body: Body) -> str:
    """
    Compute the HMAC-SHA256 signature of a webhook.

    The signed message is ``"{timestamp}.{body}"``.

    Args:
        secret: Shared secret configured with the provider
        timestamp: Unix timestamp sent in X-Provider-Timestamp
        body: Raw request body

    Returns:
        Hex-encoded HMAC-SHA256 signature
    """
    message = str(timestamp).encode() + b"." + _as_bytes(body)
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(
    secret: str,
    timestamp: Union[int, str],
    body: Body,
    provided_signature: Optional[str],
) -> bool:
    """Verify a webhook signature using constant-time comparison."""
    if not secret or not provided_signature:
        return False
    expected = compute_signature(secret, timestamp, body)
    return hmac.compare_digest(expected, provided_signature.strip().lower())


def check_timestamp_skew(
    timestamp: Union[int, str, None],
    max_skew: int = MAX_TIMESTAMP_SKEW_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """
    Check that a webhook timestamp is within the allowed clock skew.

    Returns:
        False for missing, unparseable or out-of-window timestamps
    """
    if timestamp is None:
        return False
    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        return False
    current = int(now if now is not None else time.time())
    return abs(current - ts) <= max_skew
