"""
行情数据提供方适配器。

`MarketDataProvider` 是引擎消费行情的唯一入口；默认实现基于 Finnhub REST 接口，
所有网络调用都是同步阻塞的，由扫描器放入线程池执行。
"""

from __future__ import annotations

import abc
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import requests

from engine.models import StockSnapshot
from infra.rate_limit import RateLimiter
from infra.settings import Settings

from .indicators import Candle
from .snapshot import build_snapshot
from .universe import get_sector

logger = logging.getLogger(__name__)

# Finnhub /stock/metric 字段 -> 规则字段，按优先级依次取值
METRIC_FIELDS: Dict[str, Sequence[str]] = {
    "pe_ratio": ("peTTM", "peBasicExclExtraTTM", "peAnnual"),
    "pb_ratio": ("pbQuarterly", "pbAnnual"),
    "ps_ratio": ("psTTM", "psAnnual"),
    "peg_ratio": ("pegTTM",),
    "debt_to_equity": ("totalDebt/totalEquityQuarterly", "totalDebt/totalEquityAnnual"),
    "roe": ("roeTTM", "roeRfy"),
    "roa": ("roaTTM", "roaRfy"),
    "revenue_growth": ("revenueGrowthTTMYoy", "revenueGrowthQuarterlyYoy"),
    "eps_growth": ("epsGrowthTTMYoy", "epsGrowthQuarterlyYoy"),
    "dividend_yield": ("currentDividendYieldTTM", "dividendYieldIndicatedAnnual"),
    "payout_ratio": ("payoutRatioTTM", "payoutRatioAnnual"),
    "dividend_growth_5y": ("dividendGrowthRate5Y",),
    "beta": ("beta",),
}

EARNINGS_LOOKAROUND_DAYS = 30
DIVIDEND_LOOKBACK_DAYS = 400
DIVIDEND_LOOKAHEAD_DAYS = 120


class ProviderError(RuntimeError):
    """数据提供方抛出的统一异常。"""


class MarketDataProvider(abc.ABC):
    """行情快照与 K 线提供方的抽象基类。"""

    name: str

    @abc.abstractmethod
    def fetch_snapshot(self, symbol: str) -> StockSnapshot:
        """返回单个标的的完整快照，失败时抛出 ProviderError。"""

    @abc.abstractmethod
    def fetch_candles(
        self,
        symbol: str,
        resolution: str,
        start: datetime,
        end: datetime,
    ) -> List[Candle]:
        """抓取指定区间的 K 线数据。"""


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_unix(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class FinnhubClient:
    """Finnhub REST 的最小封装，统一异常、鉴权参数与按请求限流。"""

    name = "finnhub"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://finnhub.io/api/v1",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.limiter = limiter or RateLimiter.unlimited()

    def get(self, path: str, **params: Any) -> Any:
        if not self.api_key:
            raise ProviderError("FINNHUB_API_KEY 未配置")
        url = f"{self.base_url}/{path.lstrip('/')}"
        # 每个 HTTP 请求消耗一个令牌
        self.limiter.throttle(self.name)
        logger.debug("请求 Finnhub %s %s", path, params)
        try:
            response = self.session.get(url, params={**params, "token": self.api_key}, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ProviderError(f"Finnhub 请求失败 {path}: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(f"Finnhub 返回非 JSON 内容 {path}") from exc

    @classmethod
    def from_settings(cls, settings: Settings, limiter: Optional[RateLimiter] = None) -> "FinnhubClient":
        return cls(
            api_key=settings.finnhub_api_key,
            base_url=settings.finnhub_base_url,
            timeout=settings.finnhub_timeout,
            limiter=limiter,
        )


class FinnhubProvider(MarketDataProvider):
    """基于 Finnhub 的行情、基本面与财报日历。"""

    name = "finnhub"

    def __init__(
        self,
        client: FinnhubClient,
        resolution: str = "D",
        lookback_days: int = 120,
    ) -> None:
        self.client = client
        self.resolution = resolution
        self.lookback_days = lookback_days

    def fetch_quote(self, symbol: str) -> Dict[str, Any]:
        data = self.client.get("/quote", symbol=symbol)
        if not isinstance(data, dict) or not _to_float(data.get("c")):
            raise ProviderError(f"{symbol} 无有效报价")
        return data

    def fetch_candles(
        self,
        symbol: str,
        resolution: str,
        start: datetime,
        end: datetime,
    ) -> List[Candle]:
        data = self.client.get(
            "/stock/candle",
            symbol=symbol,
            resolution=resolution,
            **{"from": _to_unix(start), "to": _to_unix(end)},
        )
        if not isinstance(data, dict) or data.get("s") != "ok":
            raise ProviderError(f"{symbol} 无 K 线数据 ({resolution})")
        columns = [data.get(key) or [] for key in ("t", "o", "h", "l", "c", "v")]
        return [
            Candle(timestamp=int(t), open=float(o), high=float(h), low=float(l), close=float(c), volume=float(v))
            for t, o, h, l, c, v in zip(*columns)
        ]

    def fetch_profile(self, symbol: str) -> Dict[str, Any]:
        data = self.client.get("/stock/profile2", symbol=symbol) or {}
        market_cap = _to_float(data.get("marketCapitalization"))
        industry = data.get("finnhubIndustry")
        return {
            "name": data.get("name"),
            "sector": get_sector(symbol, default=industry or None),
            "industry": industry,
            "exchange": data.get("exchange"),
            "country": data.get("country"),
            # Finnhub 以百万为单位
            "market_cap": market_cap * 1_000_000 if market_cap is not None else None,
        }

    def fetch_fundamentals(self, symbol: str) -> Dict[str, Any]:
        data = self.client.get("/stock/metric", symbol=symbol, metric="all") or {}
        return map_metrics(data.get("metric") or {})

    def fetch_earnings(self, symbol: str, today: date) -> Dict[str, Any]:
        surprises = self.client.get("/stock/earnings", symbol=symbol) or []
        calendar = self.client.get(
            "/calendar/earnings",
            symbol=symbol,
            **{
                "from": (today - timedelta(days=EARNINGS_LOOKAROUND_DAYS)).isoformat(),
                "to": (today + timedelta(days=EARNINGS_LOOKAROUND_DAYS)).isoformat(),
            },
        ) or {}
        result: Dict[str, Any] = {"earnings_surprise": None, "earnings_date": None}
        if isinstance(surprises, list) and surprises:
            latest = max(surprises, key=lambda row: str(row.get("period") or ""))
            result["earnings_surprise"] = _to_float(latest.get("surprisePercent"))
        result["earnings_date"] = nearest_event_date(
            [row.get("date") for row in calendar.get("earningsCalendar") or []],
            today,
        )
        return result

    def fetch_dividends(self, symbol: str, today: date) -> Dict[str, Any]:
        rows = self.client.get(
            "/stock/dividend",
            symbol=symbol,
            **{
                "from": (today - timedelta(days=DIVIDEND_LOOKBACK_DAYS)).isoformat(),
                "to": (today + timedelta(days=DIVIDEND_LOOKAHEAD_DAYS)).isoformat(),
            },
        ) or []
        if not isinstance(rows, list):
            rows = []
        # Finnhub 的 date 字段即除息日
        return {
            "ex_dividend_date": nearest_event_date([row.get("date") for row in rows], today),
            "dividend_date": nearest_event_date([row.get("payDate") for row in rows], today),
        }

    def fetch_snapshot(self, symbol: str) -> StockSnapshot:
        symbol = symbol.strip().upper()
        quote = self.fetch_quote(symbol)
        now = datetime.now(timezone.utc)

        candles: List[Candle] = []
        try:
            candles = self.fetch_candles(
                symbol,
                self.resolution,
                now - timedelta(days=self.lookback_days),
                now,
            )
        except ProviderError as exc:
            logger.warning("%s K 线缺失，技术指标将为空：%s", symbol, exc)

        profile = self._optional(symbol, "公司资料", self.fetch_profile, symbol)
        fundamentals = self._optional(symbol, "基本面指标", self.fetch_fundamentals, symbol)
        earnings = self._optional(symbol, "财报数据", self.fetch_earnings, symbol, now.date())
        fundamentals["earnings_surprise"] = earnings.get("earnings_surprise")
        dividends = self._optional(symbol, "分红日历", self.fetch_dividends, symbol, now.date())
        events: Dict[str, Any] = {
            "earnings_date": earnings.get("earnings_date"),
            "dividend_date": dividends.get("dividend_date"),
            "ex_dividend_date": dividends.get("ex_dividend_date"),
        }

        return build_snapshot(
            symbol,
            quote,
            candles,
            profile=profile,
            fundamentals=fundamentals,
            events=events,
        )

    @staticmethod
    def _optional(symbol: str, label: str, fetch: Callable[..., Dict[str, Any]], *args: Any) -> Dict[str, Any]:
        try:
            return fetch(*args)
        except ProviderError as exc:
            logger.warning("%s %s缺失：%s", symbol, label, exc)
            return {}

    @classmethod
    def from_settings(cls, settings: Settings, limiter: Optional[RateLimiter] = None) -> "FinnhubProvider":
        return cls(
            FinnhubClient.from_settings(settings, limiter=limiter),
            resolution=settings.candle_resolution,
            lookback_days=settings.candle_lookback_days,
        )


def map_metrics(metric: Mapping[str, Any]) -> Dict[str, Optional[float]]:
    fundamentals: Dict[str, Optional[float]] = {}
    for field_name, keys in METRIC_FIELDS.items():
        value = None
        for key in keys:
            value = _to_float(metric.get(key))
            if value is not None:
                break
        fundamentals[field_name] = value
    return fundamentals


def nearest_event_date(raw_dates: Sequence[Optional[str]], today: date) -> Optional[date]:
    parsed: List[date] = []
    for raw in raw_dates:
        if not raw:
            continue
        try:
            parsed.append(date.fromisoformat(str(raw)[:10]))
        except ValueError:
            continue
    if not parsed:
        return None
    return min(parsed, key=lambda day: (abs((day - today).days), day))
