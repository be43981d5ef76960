"""HMAC signatures for the cross-origin Gmail add-on status check.

The add-on signs ``"<email>|<unix-seconds>"`` with the shared secret and sends
the hex digest. Signatures are only honoured for five minutes.
"""
import hashlib
import hmac
import time

MAX_AGE_SECONDS = 300


def sign(email: str, ts, secret: str) -> str:
    message = f"{email}|{ts}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify(email: str, ts, sig: str, secret: str, now: float | None = None) -> bool:
    """Return True only for a fresh, untampered signature. Never raises."""
    if not secret or not email or sig is None:
        return False
    try:
        issued = int(str(ts))
    except (TypeError, ValueError):
        return False

    current = int(time.time() if now is None else now)
    age = current - issued
    if age < 0 or age > MAX_AGE_SECONDS:
        return False

    expected = bytes.fromhex(sign(email, str(ts), secret))
    try:
        provided = bytes.fromhex(str(sig))
    except ValueError:
        return False
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(provided, expected)
