"""HMAC helpers for webhook authentication."""

import hashlib
import hmac


def compute_signature(secret: str, payload: bytes) -> str:
    """Return the hex HMAC-SHA256 of ``payload`` keyed with ``secret``."""
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=payload,
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: str | None) -> bool:
    """Check a webhook signature in constant time.

    Accepts either a bare hex digest or one prefixed with ``sha256=``.

    Args:
        secret: Shared webhook secret
        payload: Raw request body
        signature: Header value sent by the provider

    Returns:
        True if the signature matches
    """
    if not secret or not signature:
        return False

    if signature.startswith("sha256="):
        signature = signature[7:]

    return hmac.compare_digest(compute_signature(secret, payload), signature.strip().lower())
