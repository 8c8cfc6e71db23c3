"""Anti-forgery nonces bound to an action name and a browser session.

A nonce is an HMAC over the action, the session id and a time tick. A tick
lasts half of NONCE_TTL_HOURS; the current and previous ticks are accepted, so
a nonce stays valid for between one half and one full TTL.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time

from formstage.core.config import settings


def _tick(now: float | None = None) -> int:
    half_life = max(settings.NONCE_TTL_HOURS, 1) * 3600 / 2
    return int((now if now is not None else time.time()) // half_life)


def _digest(action: str, session_id: str, tick: int) -> str:
    message = f"{action}|{session_id}|{tick}".encode()
    return hmac.new(settings.NONCE_SECRET.encode(), message, hashlib.sha256).hexdigest()


def generate_session_id() -> str:
    """Generate a new opaque session id for the nonce cookie."""
    return secrets.token_urlsafe(24)


def create_nonce(action: str, session_id: str = "", now: float | None = None) -> str:
    """Return the nonce for an action in the current tick."""
    return _digest(action, session_id, _tick(now))


def verify_nonce(nonce: str | None, action: str, session_id: str = "", now: float | None = None) -> bool:
    """Check a submitted nonce against the current and previous tick."""
    if not nonce or not isinstance(nonce, str):
        return False
    tick = _tick(now)
    for candidate in (tick, tick - 1):
        if hmac.compare_digest(nonce, _digest(action, session_id, candidate)):
            return True
    return False
