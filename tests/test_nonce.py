from formstage.core.config import settings
from formstage.core.nonce import create_nonce, generate_session_id, verify_nonce

HOUR = 3600


def test_nonce_verifies_for_same_action_and_session():
    nonce = create_nonce("form", "session-a", now=1_000_000)

    assert verify_nonce(nonce, "form", "session-a", now=1_000_000) is True


def test_nonce_bound_to_action_and_session():
    nonce = create_nonce("form", "session-a", now=1_000_000)

    assert verify_nonce(nonce, "other", "session-a", now=1_000_000) is False
    assert verify_nonce(nonce, "form", "session-b", now=1_000_000) is False


def test_nonce_accepts_previous_tick_then_expires(monkeypatch):
    monkeypatch.setattr(settings, "NONCE_TTL_HOURS", 12)
    issued = 6 * HOUR * 100
    nonce = create_nonce("form", "s", now=issued)

    assert verify_nonce(nonce, "form", "s", now=issued + 6 * HOUR) is True
    assert verify_nonce(nonce, "form", "s", now=issued + 12 * HOUR) is False


def test_missing_nonce_fails():
    assert verify_nonce(None, "form") is False
    assert verify_nonce("", "form") is False


def test_session_ids_are_unique():
    assert generate_session_id() != generate_session_id()
