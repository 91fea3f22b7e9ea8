"""Webhook signature verification.

The header looks like ``t=1700000000,v1=<hex>[,v1=<hex>...]`` where each
``v1`` is HMAC-SHA256 over ``"{t}.{raw body}"`` with the endpoint secret.
"""

import hashlib
import hmac
import time
from typing import Optional


class InvalidSignature(Exception):
    pass


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def build_signature_header(
    payload: bytes, secret: str, timestamp: Optional[int] = None
) -> str:
    """Produce a header the way the processor does (tests, local tooling)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={compute_signature(payload, secret, timestamp)}"


def verify_webhook_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance_seconds: int,
    now: Optional[float] = None,
) -> int:
    """Validate the signature header. Returns the signed timestamp.

    Raises ``InvalidSignature`` when the header is missing or malformed, no
    signature matches, or the timestamp is outside the tolerance window.
    """
    if not header:
        raise InvalidSignature("Missing signature header")

    timestamp: Optional[int] = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise InvalidSignature("Malformed timestamp")
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise InvalidSignature("Malformed signature header")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise InvalidSignature("Signature mismatch")

    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance_seconds:
        raise InvalidSignature("Timestamp outside tolerance")

    return timestamp
