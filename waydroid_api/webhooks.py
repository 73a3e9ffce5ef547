"""Webhook payload signing.

Outgoing deliveries carry ``X-Webhook-Signature: <hex hmac-sha256>``
computed over the exact JSON body when the subscription has a secret.
Receivers verify with :func:`verify_signature`.
"""

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature"


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of *payload* keyed with *secret*."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Return True if *signature* matches the digest of *payload*.

    Uses a constant-time comparison.
    """
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(payload, secret), signature)
