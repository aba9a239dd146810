import pytest

from community_messaging.core.config import settings
from community_messaging.core.errors import RateLimited
from community_messaging.core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)
from community_messaging.security.csrf import CSRFTokenManager
from community_messaging.security.rate_limiter import RateLimiter, enforce_send_limit


def test_password_hashing():
    hashed = hash_password("Correct-Horse-9")
    assert hashed != "Correct-Horse-9"
    assert verify_password("Correct-Horse-9", hashed)
    assert not verify_password("correct-horse-9", hashed)


def test_access_token_round_trip():
    token = create_access_token(subject="42", extra={"role": "admin"})
    payload = decode_access_token(token)
    assert payload["sub"] == "42"
    assert payload["role"] == "admin"
    assert decode_access_token(token + "x") is None


class TestCSRFTokens:
    def test_valid_token(self):
        manager = CSRFTokenManager("secret", token_ttl=60)
        assert manager.verify_token(manager.generate_token())

    def test_expired_token(self):
        manager = CSRFTokenManager("secret", token_ttl=60)
        token = manager.generate_token(now=1_000)
        assert manager.verify_token(token, now=1_030)
        assert not manager.verify_token(token, now=1_061)

    def test_foreign_or_garbled_token(self):
        token = CSRFTokenManager("other-secret").generate_token()
        manager = CSRFTokenManager("secret")
        assert not manager.verify_token(token)
        assert not manager.verify_token("not-hex")
        assert not manager.verify_token("abcd")

    def test_tampered_token(self):
        manager = CSRFTokenManager("secret")
        token = manager.generate_token()
        flipped = token[:-1] + ("0" if token[-1] != "0" else "1")
        assert not manager.verify_token(flipped)


class TestCSRFMiddleware:
    @pytest.fixture(autouse=True)
    def _enable_csrf(self, monkeypatch):
        monkeypatch.setattr(settings, "csrf_enabled", True)

    def test_state_change_without_token(self, client, admin, auth_headers):
        resp = client.put("/messages/read-all", headers=auth_headers(admin))
        assert resp.status_code == 403
        assert resp.json()["code"] == "CSRF_MISSING"

    def test_state_change_with_bad_token(self, client, admin, auth_headers):
        headers = {**auth_headers(admin), "X-CSRF-Token": "deadbeef"}
        resp = client.put("/messages/read-all", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "CSRF_INVALID"

    def test_state_change_with_token(self, client, admin, auth_headers):
        token = client.get("/auth/csrf-token").json()["csrf_token"]
        headers = {**auth_headers(admin), "X-CSRF-Token": token}
        assert client.put("/messages/read-all", headers=headers).status_code == 200

    def test_reads_and_auth_are_exempt(self, client, admin, auth_headers):
        assert client.get("/messages/unread/count", headers=auth_headers(admin)).status_code == 200
        resp = client.post("/auth/login", json={"email": "nobody@example.com", "password": "x"})
        assert resp.status_code == 401


class TestRateLimiter:
    def test_sliding_window(self):
        limiter = RateLimiter()
        assert limiter.is_allowed(1, "send", max_attempts=2, window_seconds=10, now=0)
        assert limiter.is_allowed(1, "send", max_attempts=2, window_seconds=10, now=1)
        assert not limiter.is_allowed(1, "send", max_attempts=2, window_seconds=10, now=5)
        # the first attempt has left the window
        assert limiter.is_allowed(1, "send", max_attempts=2, window_seconds=10, now=10)

    def test_keys_are_independent(self):
        limiter = RateLimiter()
        assert limiter.is_allowed(1, "send", max_attempts=1, window_seconds=10, now=0)
        assert limiter.is_allowed(2, "send", max_attempts=1, window_seconds=10, now=0)
        assert limiter.is_allowed(1, "other", max_attempts=1, window_seconds=10, now=0)
        assert not limiter.is_allowed(1, "send", max_attempts=1, window_seconds=10, now=0)

    def test_idle_keys_are_forgotten(self):
        limiter = RateLimiter()
        limiter.is_allowed(1, "send", max_attempts=5, window_seconds=10, now=0)
        limiter.is_allowed(2, "send", max_attempts=5, window_seconds=10, now=6)
        assert limiter.tracked_keys() == 2

        limiter.prune(now=12)
        assert limiter.tracked_keys() == 1
        limiter.prune(now=20)
        assert limiter.tracked_keys() == 0

    def test_checks_prune_other_users_periodically(self, monkeypatch):
        limiter = RateLimiter()
        monkeypatch.setattr(limiter, "PRUNE_EVERY", 3)
        for user_id in range(2):
            limiter.is_allowed(user_id, "send", max_attempts=5, window_seconds=10, now=0)
        assert limiter.tracked_keys() == 2

        # third check: the two idle users are dropped, the caller is tracked
        assert limiter.is_allowed(99, "send", max_attempts=5, window_seconds=10, now=100)
        assert limiter.tracked_keys() == 1

    def test_many_one_off_users_stay_bounded(self):
        limiter = RateLimiter()
        for user_id in range(10 * RateLimiter.PRUNE_EVERY):
            limiter.is_allowed(user_id, "send", max_attempts=1, window_seconds=1, now=user_id * 2)
        assert limiter.tracked_keys() <= RateLimiter.PRUNE_EVERY

    def test_enforce_send_limit(self, monkeypatch):
        monkeypatch.setattr(settings, "send_rate_limit", 1)
        enforce_send_limit(5)
        with pytest.raises(RateLimited) as exc_info:
            enforce_send_limit(5)
        assert exc_info.value.status_code == 429
