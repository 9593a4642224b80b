"""
tests/test_reset.py -- Password reset tokens: issue, consume, expire, purge.

Manager tests run against a bare store with an injected clock. API tests go
through /api/auth/forgot-password and /api/auth/reset-password.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from auth.models import Role, User
from auth.passwords import basic_policy
from auth.reset import (
    GENERIC_REQUEST_MESSAGE,
    SUCCESS_MESSAGE,
    ExpiredTokenError,
    InvalidTokenError,
    MissingDataError,
    MissingEmailError,
    PasswordPolicyError,
    PasswordResetManager,
    UsedTokenError,
    UserGoneError,
)
from auth.store import UserStore, users
from auth.tokens import hash_password, verify_password
from core.config import get_settings

EMAIL = "dana@example.com"


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def token_from(message: dict) -> str:
    return parse_qs(urlparse(message["context"]["reset_url"]).query)["token"][0]


@pytest.fixture
def store(engine):
    store = UserStore(engine)
    store.create_user(User(email=EMAIL, name="Dana", role=Role.CLIENT, password_hash=hash_password("old-secret")))
    return store


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def manager(store, mailer, clock):
    return PasswordResetManager(
        store, mailer, basic_policy(get_settings()), base_url="https://portal.example.com/", clock=clock
    )


class TestRequestReset:
    def test_only_the_latest_token_survives(self, manager, store, mailer):
        for _ in range(3):
            manager.request_reset(EMAIL)
        tokens = store.reset_tokens_for(EMAIL)
        assert len(tokens) == 1, "each request must replace earlier tokens"
        assert tokens[0].token == token_from(mailer.sent[-1])

    def test_token_is_64_hex_chars_and_expires_in_an_hour(self, manager, store, clock):
        manager.request_reset(EMAIL)
        token = store.reset_tokens_for(EMAIL)[0]
        assert len(token.token) == 64
        int(token.token, 16)
        assert datetime.fromisoformat(token.expires_at) == clock.now + timedelta(hours=1)

    def test_unknown_email_gets_the_same_answer(self, manager, store, mailer):
        known = manager.request_reset(EMAIL)
        unknown = manager.request_reset("nobody@example.com")
        assert known == unknown == GENERIC_REQUEST_MESSAGE
        assert store.reset_tokens_for("nobody@example.com") == []
        assert [m["to"] for m in mailer.sent] == [EMAIL]

    def test_blank_email_is_rejected(self, manager):
        with pytest.raises(MissingEmailError):
            manager.request_reset("   ")

    def test_link_points_at_the_front_end(self, manager, mailer):
        manager.request_reset(EMAIL)
        url = mailer.sent[-1]["context"]["reset_url"]
        assert url.startswith("https://portal.example.com/reset-password?token=")

    def test_email_body_contains_the_link(self, manager, mailer):
        manager.request_reset(EMAIL)
        body = mailer.messages[-1].get_content()
        assert token_from(mailer.sent[-1]) in body
        assert "Dana" in body


class TestConsumeReset:
    def test_token_is_single_use(self, manager, store, mailer):
        manager.request_reset(EMAIL)
        token = token_from(mailer.sent[-1])

        assert manager.consume_reset(token, "new-secret") == SUCCESS_MESSAGE
        first_hash = store.get_by_email(EMAIL).password_hash
        assert verify_password("new-secret", first_hash)

        with pytest.raises(UsedTokenError):
            manager.consume_reset(token, "other-secret")
        assert store.get_by_email(EMAIL).password_hash == first_hash, "a used token must not change the password"

    def test_success_sends_confirmation(self, manager, mailer):
        manager.request_reset(EMAIL)
        manager.consume_reset(token_from(mailer.sent[-1]), "new-secret")
        assert mailer.sent[-1]["template"] == "password_reset_success.html"

    def test_expired_token_is_rejected(self, manager, clock, mailer):
        manager.request_reset(EMAIL)
        clock.advance(3601)
        with pytest.raises(ExpiredTokenError):
            manager.consume_reset(token_from(mailer.sent[-1]), "new-secret")

    def test_expiry_wins_over_used(self, manager, clock, mailer):
        manager.request_reset(EMAIL)
        token = token_from(mailer.sent[-1])
        manager.consume_reset(token, "new-secret")
        clock.advance(7200)
        with pytest.raises(ExpiredTokenError):
            manager.consume_reset(token, "newer-secret")

    def test_superseded_token_is_invalid(self, manager, mailer):
        manager.request_reset(EMAIL)
        old = token_from(mailer.sent[-1])
        manager.request_reset(EMAIL)
        with pytest.raises(InvalidTokenError):
            manager.consume_reset(old, "new-secret")

    def test_missing_input(self, manager):
        with pytest.raises(MissingDataError):
            manager.consume_reset("", "new-secret")
        with pytest.raises(MissingDataError):
            manager.consume_reset("abc", None)

    def test_policy_checked_before_token_lookup(self, manager):
        with pytest.raises(PasswordPolicyError) as exc_info:
            manager.consume_reset("does-not-exist", "123")
        assert exc_info.value.status_code == 400

    def test_deleted_user_is_404(self, manager, store, mailer):
        manager.request_reset(EMAIL)
        with store.engine.begin() as conn:
            conn.execute(users.delete().where(users.c.email == EMAIL))
        with pytest.raises(UserGoneError) as exc_info:
            manager.consume_reset(token_from(mailer.sent[-1]), "new-secret")
        assert exc_info.value.status_code == 404


class TestTokenStore:
    def test_conditional_claim_succeeds_once(self, manager, store, mailer):
        manager.request_reset(EMAIL)
        token = token_from(mailer.sent[-1])
        assert store.consume_reset_token(token, EMAIL, hash_password("first-pass"))
        assert not store.consume_reset_token(token, EMAIL, hash_password("second-pass"))
        assert verify_password("first-pass", store.get_by_email(EMAIL).password_hash)

    def test_purge_removes_used_and_expired(self, manager, store, clock, mailer, engine):
        other = UserStore(engine)
        other.create_user(User(email="eli@example.com", name="Eli", role=Role.CLIENT))
        manager.request_reset(EMAIL)
        manager.consume_reset(token_from(mailer.sent[-1]), "new-secret")
        manager.request_reset("eli@example.com")
        assert manager.purge_stale() == 1
        assert store.reset_tokens_for("eli@example.com")
        clock.advance(3601)
        assert manager.purge_stale() == 1
        assert store.reset_tokens_for("eli@example.com") == []


class TestResetEndpoints:
    def test_full_flow_then_login(self, env):
        client = env.client
        resp = client.post("/api/auth/forgot-password", json={"email": "client1@example.com"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": GENERIC_REQUEST_MESSAGE}

        token = token_from(env.mailer.last_to("client1@example.com"))
        resp = client.post("/api/auth/reset-password", json={"token": token, "password": "brand-new"})
        assert resp.status_code == 200
        assert resp.json()["message"] == SUCCESS_MESSAGE

        login = client.post("/api/auth/login", json={"email": "client1@example.com", "password": "brand-new"})
        assert login.status_code == 200

        again = client.post("/api/auth/reset-password", json={"token": token, "password": "brand-new-2"})
        assert again.status_code == 400
        assert again.json() == {"error": "הקישור כבר שומש"}

    def test_unknown_email_payload_is_identical(self, env):
        known = env.client.post("/api/auth/forgot-password", json={"email": "client1@example.com"})
        unknown = env.client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_missing_email_is_400(self, env):
        resp = env.client.post("/api/auth/forgot-password", json={})
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_invalid_token_is_400(self, env):
        resp = env.client.post("/api/auth/reset-password", json={"token": "f" * 64, "password": "long-enough"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "הקישור לא תקף"}

    def test_missing_fields_is_400(self, env):
        resp = env.client.post("/api/auth/reset-password", json={"token": "abc"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "נתונים חסרים"}
