"""Tests for session tokens and rate limiting"""
import pytest

from conftest import FakeClock
from gateway.auth import issue_session_token, verify_session_token, parse_bearer
from gateway.ratelimit import RateLimiter

SECRET = "session-secret"
WALLET = "0xSession00000000001"


class TestSessionTokenGeneration:

    def test_token_format(self):
        token = issue_session_token(SECRET, WALLET, issued_at=1_700_000_000)

        # Token should be timestamp|wallet|signature
        timestamp, wallet, signature = token.split("|")
        assert timestamp == "1700000000"
        assert wallet == WALLET
        assert len(signature) == 64
        assert all(c in "0123456789abcdef" for c in signature)

    def test_deterministic_for_same_timestamp(self):
        assert issue_session_token(SECRET, WALLET, 100) == issue_session_token(SECRET, WALLET, 100)

    def test_different_wallets_differ(self):
        assert issue_session_token(SECRET, "0xA", 100) != issue_session_token(SECRET, "0xB", 100)

    def test_requires_secret(self):
        with pytest.raises(ValueError):
            issue_session_token("", WALLET)

    @pytest.mark.parametrize("wallet", ["", "0xA|0xB"])
    def test_rejects_unsafe_wallet(self, wallet):
        with pytest.raises(ValueError):
            issue_session_token(SECRET, wallet)


class TestSessionTokenValidation:

    def test_valid_token(self):
        token = issue_session_token(SECRET, WALLET)
        assert verify_session_token(SECRET, token) == (WALLET, None)

    def test_expired_token(self):
        token = issue_session_token(SECRET, WALLET, issued_at=1000)
        wallet, error = verify_session_token(SECRET, token, max_age=60, now=1061)

        assert wallet is None
        assert "expired" in error

    def test_future_token(self):
        token = issue_session_token(SECRET, WALLET, issued_at=2000)
        wallet, error = verify_session_token(SECRET, token, now=1000)

        assert wallet is None
        assert "future" in error

    def test_tampered_wallet(self):
        timestamp, _, signature = issue_session_token(SECRET, WALLET, issued_at=1000).split("|")
        forged = f"{timestamp}|0xAttacker|{signature}"

        wallet, error = verify_session_token(SECRET, forged, now=1000)
        assert wallet is None
        assert "signature" in error

    def test_wrong_secret(self):
        token = issue_session_token("other", WALLET, issued_at=1000)
        assert verify_session_token(SECRET, token, now=1000)[0] is None

    def test_non_ascii_signature(self):
        token = issue_session_token(SECRET, WALLET, issued_at=1000) + "\xe9"

        wallet, error = verify_session_token(SECRET, token, now=1000)
        assert wallet is None
        assert "signature" in error

    @pytest.mark.parametrize("token", ["", "garbage", "a|b|c", "1|2|3|4"])
    def test_malformed(self, token):
        wallet, error = verify_session_token(SECRET, token, now=1000)
        assert wallet is None
        assert error


class TestParseBearer:

    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc", "abc"),
        ("Bearer   abc  ", "abc"),
        ("Bearer ", None),
        ("Basic abc", None),
        (None, None),
        ("", None),
    ])
    def test_parse(self, header, expected):
        assert parse_bearer(header) == expected


class TestRateLimiter:

    def test_allows_up_to_limit(self):
        limiter = RateLimiter({"catch": 3}, clock=FakeClock())
        results = [limiter.check("catch", "1.2.3.4")[0] for _ in range(4)]
        assert results == [True, True, True, False]

    def test_retry_after(self):
        clock = FakeClock()
        limiter = RateLimiter({"catch": 1}, clock=clock)
        limiter.check("catch", "ip")
        clock.advance(20)

        allowed, retry_after = limiter.check("catch", "ip")
        assert allowed is False
        assert retry_after == 41

    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter({"catch": 1}, clock=clock)
        limiter.check("catch", "ip")
        clock.advance(60)
        assert limiter.check("catch", "ip") == (True, None)

    def test_keys_and_routes_independent(self):
        limiter = RateLimiter({"catch": 1, "spawn": 1}, clock=FakeClock())
        assert limiter.check("catch", "ip-1")[0]
        assert limiter.check("catch", "ip-2")[0]
        assert limiter.check("spawn", "ip-1")[0]
        assert not limiter.check("catch", "ip-1")[0]

    def test_default_limit(self):
        limiter = RateLimiter({}, clock=FakeClock())
        assert all(limiter.check("other", "ip")[0] for _ in range(60))
        assert not limiter.check("other", "ip")[0]

    def test_reset(self):
        limiter = RateLimiter({"catch": 1}, clock=FakeClock())
        limiter.check("catch", "ip")
        limiter.reset()
        assert limiter.check("catch", "ip")[0]

    def test_idle_buckets_are_dropped(self):
        clock = FakeClock()
        limiter = RateLimiter({"catch": 5}, clock=clock)
        for i in range(100):
            limiter.check("catch", f"ip-{i}")
        assert limiter.tracked_keys() == 100

        clock.advance(61)
        limiter.check("catch", "ip-late")

        assert limiter.tracked_keys() == 1
