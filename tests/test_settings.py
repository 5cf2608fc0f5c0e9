"""
Environment-driven settings and the provider rate limiter.
"""

import asyncio
import time
from pathlib import Path

import pytest

from infra.rate_limit import LimitConfig, RateLimiter, TokenBucket
from infra.settings import DEFAULT_SCAN_CONCURRENCY, Settings

ENV_KEYS = (
    "FINNHUB_API_KEY",
    "FINNHUB_BASE_URL",
    "FINNHUB_MAX_RPM",
    "SCAN_CONCURRENCY",
    "SCAN_TIMEOUT_SECONDS",
    "RULE_STORE_PATH",
    "CANDLE_LOOKBACK_DAYS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


# ── settings ────────────────────────────────────────────────────────────────

class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings.from_env()
        assert settings.finnhub_api_key is None
        assert settings.scan_concurrency == DEFAULT_SCAN_CONCURRENCY
        assert settings.rule_store_path == Path("data/rules.json")

    def test_values_from_env(self, clean_env):
        clean_env.setenv("FINNHUB_API_KEY", " abc ")
        clean_env.setenv("FINNHUB_BASE_URL", "http://localhost:9000/api/")
        clean_env.setenv("FINNHUB_MAX_RPM", "30")
        clean_env.setenv("SCAN_TIMEOUT_SECONDS", "2.5")
        clean_env.setenv("RULE_STORE_PATH", "/tmp/rules.json")
        settings = Settings.from_env()
        assert settings.finnhub_api_key == "abc"
        assert settings.finnhub_base_url == "http://localhost:9000/api"
        assert settings.finnhub_max_rpm == 30
        assert settings.scan_timeout == 2.5
        assert settings.rule_store_path == Path("/tmp/rules.json")

    def test_bad_values_fall_back(self, clean_env):
        clean_env.setenv("FINNHUB_MAX_RPM", "lots")
        clean_env.setenv("SCAN_TIMEOUT_SECONDS", "soon")
        clean_env.setenv("FINNHUB_API_KEY", "   ")
        settings = Settings.from_env()
        assert settings.finnhub_max_rpm == 60
        assert settings.scan_timeout == 30.0
        assert settings.finnhub_api_key is None

    def test_lower_bounds(self, clean_env):
        clean_env.setenv("SCAN_CONCURRENCY", "0")
        clean_env.setenv("FINNHUB_MAX_RPM", "-5")
        clean_env.setenv("CANDLE_LOOKBACK_DAYS", "0")
        settings = Settings.from_env()
        assert settings.scan_concurrency == 1
        assert settings.finnhub_max_rpm == 0
        assert settings.candle_lookback_days == 1


# ── rate limiting ───────────────────────────────────────────────────────────

class TestRateLimiter:
    def test_unlimited_has_no_bucket(self):
        limiter = RateLimiter.unlimited()
        assert limiter.bucket("finnhub") is None

        started = time.monotonic()
        for _ in range(100):
            limiter.throttle("finnhub")
        assert time.monotonic() - started < 1.0

    def test_zero_rpm_disables_bucket(self):
        assert LimitConfig(provider="finnhub", rpm=0).enabled is False
        assert RateLimiter.from_settings(Settings(finnhub_max_rpm=0)).bucket("finnhub") is None

    def test_provider_name_prefix_match(self):
        limiter = RateLimiter.from_settings(Settings(finnhub_max_rpm=10))
        assert limiter._config_for("FINNHUB_quote").provider == "finnhub"
        assert limiter._config_for("yahoo") is None

    def test_throttle_takes_one_token_per_call(self):
        limiter = RateLimiter.from_settings(Settings(finnhub_max_rpm=60))
        for _ in range(5):
            limiter.throttle("finnhub")
        assert limiter.bucket("finnhub").tokens == pytest.approx(55, abs=0.5)

    def test_bucket_denies_when_empty(self):
        bucket = TokenBucket(capacity=2, refill_rate=0.0)
        assert bucket._reserve() == 0
        assert bucket._reserve() == 0
        assert bucket._reserve() > 0

    def test_async_acquire_shares_the_bucket(self):
        bucket = TokenBucket(capacity=3, refill_rate=0.0)

        async def run():
            for _ in range(3):
                await bucket.acquire()

        asyncio.run(run())
        assert bucket.tokens < 1.0

    def test_symbol_gate_spaces_calls(self):
        limiter = RateLimiter.from_settings(Settings(finnhub_symbol_interval=0.1))

        async def run():
            started = time.monotonic()
            await limiter.wait_symbol("finnhub", "AAPL")
            await limiter.wait_symbol("finnhub", "MSFT")
            await limiter.wait_symbol("finnhub", "aapl")
            return time.monotonic() - started

        assert asyncio.run(run()) >= 0.09
