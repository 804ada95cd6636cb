"""Tests for the caller-side guard helpers."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from starlette.requests import Request

from app.adapters.rate_limit.base import RateLimitStore
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.core import rate_limit as rate_limit_module
from app.core.config import RateLimitPolicy
from app.core.errors import RateLimitAppError, StoreUnavailableError
from app.core.rate_limit import (
    RateLimitDimension,
    RateLimiter,
    client_ip,
    enforce_rate_limits,
    hash_key_part,
    retry_after_seconds,
    window_start_ms,
)


def _request(headers: dict[str, str] | None = None, peer: str | None = "10.0.0.1") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (peer, 1234) if peer else None,
    }
    return Request(scope)


class TestClientIp:
    def test_prefers_first_forwarded_hop(self) -> None:
        request = _request({"X-Forwarded-For": " 203.0.113.7 , 10.0.0.2", "X-Real-IP": "198.51.100.1"})
        assert client_ip(request) == "203.0.113.7"

    def test_falls_back_to_real_ip_header(self) -> None:
        assert client_ip(_request({"X-Real-IP": "198.51.100.1"})) == "198.51.100.1"

    def test_falls_back_to_socket_peer(self) -> None:
        assert client_ip(_request()) == "10.0.0.1"

    def test_unknown_when_nothing_available(self) -> None:
        assert client_ip(_request(peer=None)) == "unknown"

    def test_truncates_to_bounded_length(self) -> None:
        assert len(client_ip(_request({"X-Forwarded-For": "x" * 500}))) == 64


def test_hash_key_part_is_deterministic_and_truncated() -> None:
    value = hash_key_part("user@example.com")

    assert value == hash_key_part("user@example.com")
    assert len(value) == 32
    assert "example" not in value
    assert len(hash_key_part("user@example.com", 16)) == 16


@pytest.mark.parametrize(
    "delta, expected",
    [
        (timedelta(seconds=200), 200),
        (timedelta(seconds=199, milliseconds=1), 200),
        (timedelta(milliseconds=1), 1),
        (timedelta(0), 0),
        (timedelta(seconds=-5), 0),
    ],
)
def test_retry_after_rounds_up_and_clamps(delta: timedelta, expected: int) -> None:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert retry_after_seconds(now + delta, now) == expected


class TestEnforceRateLimits:
    def test_allows_while_every_dimension_in_budget(self, limiter: RateLimiter) -> None:
        policy = RateLimitPolicy(limit=2, window_seconds=300)
        dims = [RateLimitDimension("ip", "op:ip:1", policy), RateLimitDimension("email", "op:email:1", policy)]

        enforce_rate_limits(limiter, dims, scope="op")
        enforce_rate_limits(limiter, dims, scope="op")

    def test_rejects_with_retry_after_when_exceeded(self, limiter: RateLimiter) -> None:
        dims = [RateLimitDimension("ip", "op:ip:1", RateLimitPolicy(limit=1, window_seconds=300))]
        enforce_rate_limits(limiter, dims, scope="op")

        with pytest.raises(RateLimitAppError) as exc_info:
            enforce_rate_limits(limiter, dims, scope="op", message="Too many signups. Try again later.")

        exc = exc_info.value
        assert exc.code == "rate_limit"
        assert exc.message == "Too many signups. Try again later."
        # FIXED_NOW=1_000_000 s sits 100 s into the [999_900, 1_000_200) window
        assert exc.details == {"retry_after": 200}

    def test_short_circuits_on_first_failing_dimension(
        self, limiter: RateLimiter, store: InMemoryRateLimitStore
    ) -> None:
        ip_policy = RateLimitPolicy(limit=1, window_seconds=300)
        email_policy = RateLimitPolicy(limit=10, window_seconds=300)
        dims = [
            RateLimitDimension("ip", "op:ip:1", ip_policy),
            RateLimitDimension("email", "op:email:1", email_policy),
        ]
        enforce_rate_limits(limiter, dims, scope="op")

        with pytest.raises(RateLimitAppError):
            enforce_rate_limits(limiter, dims, scope="op")

        window = window_start_ms(1_000_000_000, 300)
        assert store.get_count("op:ip:1", window) == 2
        assert store.get_count("op:email:1", window) == 1

    def test_rejection_is_identical_across_dimensions(self, limiter: RateLimiter) -> None:
        tight = RateLimitPolicy(limit=1, window_seconds=300)
        loose = RateLimitPolicy(limit=100, window_seconds=300)
        errors = []
        for dims in (
            [RateLimitDimension("ip", "a:ip", tight), RateLimitDimension("email", "a:email", loose)],
            [RateLimitDimension("ip", "b:ip", loose), RateLimitDimension("email", "b:email", tight)],
        ):
            enforce_rate_limits(limiter, dims, scope="op")
            with pytest.raises(RateLimitAppError) as exc_info:
                enforce_rate_limits(limiter, dims, scope="op")
            errors.append(exc_info.value)

        assert errors[0].message == errors[1].message
        assert errors[0].details == errors[1].details

    def test_logs_which_dimension_tripped(self, limiter: RateLimiter, caplog: pytest.LogCaptureFixture) -> None:
        dims = [
            RateLimitDimension("ip", "op:ip:1", RateLimitPolicy(limit=5, window_seconds=300)),
            RateLimitDimension("email", "op:email:secret", RateLimitPolicy(limit=1, window_seconds=300)),
        ]
        enforce_rate_limits(limiter, dims, scope="auth.login")

        with caplog.at_level(logging.WARNING, logger="app.core.rate_limit"):
            with pytest.raises(RateLimitAppError):
                enforce_rate_limits(limiter, dims, scope="auth.login")

        records = [r for r in caplog.records if r.getMessage() == "rate_limit.exceeded"]
        assert len(records) == 1
        assert records[0].dimension == "email"
        assert records[0].scope == "auth.login"
        assert "secret" not in records[0].key_hash

    def test_disabled_limiter_skips_all_checks(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(rate_limit_module.settings.rate_limit, "enabled", False)
        store = Mock(spec=RateLimitStore)
        limiter = RateLimiter(store)

        dims = [RateLimitDimension("ip", "op:ip:1", RateLimitPolicy(limit=1, window_seconds=60))]
        for _ in range(5):
            enforce_rate_limits(limiter, dims, scope="op")

        store.upsert_and_increment.assert_not_called()

    def test_store_failure_propagates(self) -> None:
        store = Mock(spec=RateLimitStore)
        store.upsert_and_increment.side_effect = StoreUnavailableError(
            code="rate_limit_store_unavailable", message="down"
        )
        dims = [RateLimitDimension("ip", "op:ip:1", RateLimitPolicy(limit=1, window_seconds=60))]

        with pytest.raises(StoreUnavailableError):
            enforce_rate_limits(RateLimiter(store), dims, scope="op")


def test_get_rate_limiter_is_cached_per_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    rate_limit_module.reset_rate_limiter()
    monkeypatch.setattr(rate_limit_module.settings.rate_limit, "backend", "memory")

    first = rate_limit_module.get_rate_limiter()
    assert rate_limit_module.get_rate_limiter() is first
    assert isinstance(first.store, InMemoryRateLimitStore)

    rate_limit_module.reset_rate_limiter()
    assert rate_limit_module.get_rate_limiter() is not first
    rate_limit_module.reset_rate_limiter()


def test_unknown_backend_is_rejected() -> None:
    with pytest.raises(ValueError):
        rate_limit_module.build_rate_limit_store("redis")
