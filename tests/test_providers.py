"""
Finnhub provider, signal and snapshot assembly against a canned HTTP session.
No network access.
"""

import asyncio
import threading
from datetime import date, datetime, timedelta, timezone

import pytest
import requests

from datahub.providers import FinnhubClient, FinnhubProvider, ProviderError, map_metrics, nearest_event_date
from datahub.scanner import RuleScanner
from datahub.signals import FinnhubSignals, NeutralSignals, recommendation_score
from datahub.snapshot import build_snapshot
from datahub.universe import default_universe, get_sector, normalize_symbols
from engine.models import ConditionGroup
from engine.rules import evaluate
from infra.rate_limit import RateLimiter
from infra.settings import Settings

from fakes import make_candles


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """Maps endpoint path suffix -> payload (or FakeResponse)."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, dict(params or {})))
        for suffix, payload in self.routes.items():
            if url.endswith(suffix):
                return payload if isinstance(payload, FakeResponse) else FakeResponse(payload)
        return FakeResponse({}, status=404)


NOW_TS = int(datetime.now(timezone.utc).timestamp())
QUOTE = {"c": 150.0, "d": 3.0, "dp": 2.04, "h": 152.0, "l": 147.0, "o": 148.0, "pc": 147.0, "t": NOW_TS}
CLOSES = [100 + i * 0.5 for i in range(60)]
CANDLES = {
    "s": "ok",
    "t": [1_700_000_000 + i * 86_400 for i in range(60)],
    "o": CLOSES,
    "h": [c + 1 for c in CLOSES],
    "l": [c - 1 for c in CLOSES],
    "c": CLOSES,
    "v": [1_000_000] * 59 + [3_000_000],
}


def _client(routes, key="token"):
    return FinnhubClient(api_key=key, session=FakeSession(routes))


def _full_routes():
    today = datetime.now(timezone.utc).date()
    return {
        "/quote": QUOTE,
        "/stock/candle": CANDLES,
        "/stock/profile2": {"name": "Apple Inc", "finnhubIndustry": "Technology", "exchange": "NASDAQ",
                            "country": "US", "marketCapitalization": 2_500_000},
        "/stock/metric": {"metric": {"peTTM": 28.5, "pbAnnual": 40.1, "currentDividendYieldTTM": 0.5,
                                     "beta": 1.2}},
        "/stock/earnings": [{"period": "2024-01-01", "surprisePercent": 4.2},
                            {"period": "2024-04-01", "surprisePercent": 6.1}],
        "/calendar/earnings": {"earningsCalendar": [{"date": (today + timedelta(days=3)).isoformat()}]},
        "/stock/dividend": [
            {"date": (today - timedelta(days=80)).isoformat(), "payDate": (today - timedelta(days=60)).isoformat()},
            {"date": (today + timedelta(days=5)).isoformat(), "payDate": (today + timedelta(days=20)).isoformat()},
        ],
    }


# ── HTTP client ─────────────────────────────────────────────────────────────

class TestFinnhubClient:
    def test_missing_key(self):
        with pytest.raises(ProviderError):
            FinnhubClient(api_key=None, session=FakeSession({})).get("/quote", symbol="AAPL")

    def test_token_passed_as_param(self):
        client = _client({"/quote": QUOTE})
        client.get("/quote", symbol="AAPL")
        url, params = client.session.requests[0]
        assert url == "https://finnhub.io/api/v1/quote"
        assert params == {"symbol": "AAPL", "token": "token"}

    def test_http_error_wrapped(self):
        with pytest.raises(ProviderError):
            _client({"/quote": FakeResponse({}, status=429)}).get("/quote", symbol="AAPL")

    def test_bad_json_wrapped(self):
        with pytest.raises(ProviderError):
            _client({"/quote": FakeResponse(ValueError("not json"))}).get("/quote", symbol="AAPL")


# ── provider ────────────────────────────────────────────────────────────────

class TestFinnhubProvider:
    def test_full_snapshot(self):
        snap = FinnhubProvider(_client(_full_routes())).fetch_snapshot("aapl")
        assert snap.symbol == "AAPL"
        assert snap.current_price == 150.0
        assert snap.change_percent == pytest.approx(2.04)
        assert snap.volume == 3_000_000
        assert snap.profile["sector"] == "Technology"
        assert snap.profile["market_cap"] == pytest.approx(2.5e12)
        assert snap.fundamentals["pe_ratio"] == 28.5
        assert snap.fundamentals["dividend_yield"] == 0.5
        assert snap.fundamentals["earnings_surprise"] == 6.1
        today = datetime.now(timezone.utc).date()
        assert snap.events["earnings_date"] == today + timedelta(days=3)
        assert snap.events["ex_dividend_date"] == today + timedelta(days=5)
        assert snap.events["dividend_date"] == today + timedelta(days=20)
        assert snap.indicators["sma_50"] is not None
        assert snap.indicators["volume_ratio"] == pytest.approx(3_000_000 / 1_100_000)

    def test_quote_required(self):
        routes = _full_routes()
        routes["/quote"] = {"c": 0, "d": None}
        with pytest.raises(ProviderError):
            FinnhubProvider(_client(routes)).fetch_snapshot("AAPL")

    def test_missing_candles_and_metrics_tolerated(self):
        routes = {"/quote": QUOTE, "/stock/candle": {"s": "no_data"}}
        snap = FinnhubProvider(_client(routes)).fetch_snapshot("AAPL")
        assert snap.current_price == 150.0
        assert snap.indicators["rsi"] is None
        assert snap.fundamentals.get("pe_ratio") is None
        assert snap.profile == {}
        assert snap.events["dividend_date"] is None
        assert snap.events["ex_dividend_date"] is None

    def test_ex_dividend_rule_matches_fetched_calendar(self):
        snap = FinnhubProvider(_client(_full_routes())).fetch_snapshot("KO")
        group = ConditionGroup.model_validate(
            {"operator": "AND", "conditions": [
                {"type": "time", "field": "ex_dividend_date", "operator": "equals", "value": "upcoming"},
            ]}
        )
        assert evaluate(group, snap).matched

    def test_dividend_window(self):
        provider = FinnhubProvider(_client({"/stock/dividend": {"error": "premium"}}))
        today = date(2024, 6, 1)
        assert provider.fetch_dividends("KO", today) == {"ex_dividend_date": None, "dividend_date": None}
        _, params = provider.client.session.requests[0]
        assert params["from"] < today.isoformat() < params["to"]

    def test_fetch_candles(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        provider = FinnhubProvider(_client({"/stock/candle": CANDLES}))
        candles = provider.fetch_candles("AAPL", "D", start, start + timedelta(days=90))
        assert len(candles) == 60
        assert candles[-1].volume == 3_000_000
        _, params = provider.client.session.requests[0]
        assert params["from"] == int(start.timestamp())


# ── request budget ──────────────────────────────────────────────────────────

class TestRequestBudget:
    def _limited(self, rpm, routes=None):
        limiter = RateLimiter.from_settings(Settings(finnhub_max_rpm=rpm))
        client = FinnhubClient(api_key="token", session=FakeSession(routes or _full_routes()), limiter=limiter)
        return client, limiter

    def test_every_http_request_takes_a_token(self):
        client, limiter = self._limited(60)
        scanner = RuleScanner(FinnhubProvider(client), signals=NeutralSignals(), limiter=limiter)
        batch = asyncio.run(scanner.fetch_snapshots(["AAPL", "MSFT", "JPM"]))

        assert len(batch.snapshots) == 3
        sent = len(client.session.requests)
        assert sent == 21
        assert limiter.bucket("finnhub").tokens == pytest.approx(60 - sent, abs=0.5)

    def test_requests_stop_when_budget_is_spent(self):
        client, _ = self._limited(3)
        worker = threading.Thread(target=FinnhubProvider(client).fetch_snapshot, args=("AAPL",), daemon=True)
        worker.start()
        worker.join(timeout=0.5)

        assert worker.is_alive()
        assert len(client.session.requests) == 3

    def test_signal_requests_share_the_budget(self):
        routes = {"/news-sentiment": {"companyNewsScore": 0.5}}
        client, limiter = self._limited(60, routes)
        FinnhubSignals(client).news_score("AAPL")
        assert limiter.bucket("finnhub").tokens == pytest.approx(59, abs=0.5)


class TestMetricHelpers:
    def test_map_metrics_falls_back_in_order(self):
        metrics = map_metrics({"peAnnual": 20, "pbQuarterly": 3, "pbAnnual": 4})
        assert metrics["pe_ratio"] == 20
        assert metrics["pb_ratio"] == 3
        assert metrics["roe"] is None

    def test_nearest_event_date(self):
        today = date(2024, 3, 15)
        raw = ["2024-03-01", "2024-03-18", "bad", None]
        assert nearest_event_date(raw, today) == date(2024, 3, 18)
        assert nearest_event_date([], today) is None


# ── snapshot assembly ───────────────────────────────────────────────────────

class TestBuildSnapshot:
    def test_volume_falls_back_to_last_candle(self):
        snap = build_snapshot("msft", QUOTE, make_candles(CLOSES, volume=2_000))
        assert snap.symbol == "MSFT"
        assert snap.volume == 2_000
        assert snap.indicators["volume_ratio"] == pytest.approx(1.0)
        assert snap.indicators["price_change_1d"] == pytest.approx(2.04)

    def test_price_vs_sma20(self):
        snap = build_snapshot("MSFT", QUOTE, make_candles([100.0] * 20))
        assert snap.indicators["price_vs_sma20"] == pytest.approx(1.5)

    def test_no_history(self):
        snap = build_snapshot("MSFT", {"c": 10, "t": 0}, [])
        assert snap.volume == 0
        assert snap.indicators["volume_ratio"] is None
        assert snap.indicators["price_vs_sma20"] is None
        assert snap.timestamp.tzinfo is not None


# ── signals ─────────────────────────────────────────────────────────────────

class TestSignals:
    def test_recommendation_weighting(self):
        trend = {"strongBuy": 1, "buy": 1, "hold": 1, "sell": 1, "strongSell": 0}
        assert recommendation_score(trend) == pytest.approx((100 + 75 + 50 + 25) / 4)
        assert recommendation_score({}) is None

    def test_finnhub_signals(self):
        routes = {
            "/stock/recommendation": [
                {"period": "2024-02-01", "strongBuy": 0, "buy": 0, "hold": 4, "sell": 0, "strongSell": 0},
                {"period": "2024-03-01", "strongBuy": 2, "buy": 2, "hold": 0, "sell": 0, "strongSell": 0},
            ],
            "/news-sentiment": {"companyNewsScore": 0.73},
        }
        signals = FinnhubSignals(_client(routes))
        assert signals.analyst_score("AAPL") == pytest.approx(87.5)
        assert signals.news_score("AAPL") == pytest.approx(73.0)

    def test_finnhub_signals_degrade_to_none(self):
        signals = FinnhubSignals(_client({}))
        assert signals.analyst_score("AAPL") is None
        assert signals.news_score("AAPL") is None

    def test_neutral_overrides(self):
        signals = NeutralSignals(overrides={"aapl": {"news": 80}})
        assert signals.news_score("AAPL") == 80
        assert signals.analyst_score("AAPL") == 50


# ── universe ────────────────────────────────────────────────────────────────

class TestUniverse:
    def test_sector_lookup(self):
        assert get_sector("aapl") == "Technology"
        assert get_sector("JPM") == "Financial Services"
        assert get_sector("ZZZZ") == "Other"
        assert get_sector("ZZZZ", default=None) is None

    def test_default_universe_is_unique(self):
        universe = default_universe()
        assert len(universe) == len(set(universe))
        assert default_universe(5) == universe[:5]

    def test_normalize_symbols(self):
        assert normalize_symbols([" aapl", "AAPL", "", "msft"]) == ["AAPL", "MSFT"]
        assert normalize_symbols(None) == []
