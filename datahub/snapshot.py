"""
行情快照组装。

把报价、K 线历史、公司资料与基本面拼成引擎消费的 `StockSnapshot`，
并补齐只能由报价与历史共同推导的技术字段。
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from engine.models import StockSnapshot

from .indicators import Candle, compute_all


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if not numerator or not denominator or denominator <= 0:
        return None
    return numerator / denominator


def _quote_time(raw: Any) -> datetime:
    seconds = _to_float(raw)
    if seconds <= 0:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def build_snapshot(
    symbol: str,
    quote: Mapping[str, Any],
    candles: Iterable[Candle] = (),
    profile: Optional[Mapping[str, Any]] = None,
    fundamentals: Optional[Mapping[str, Any]] = None,
    events: Optional[Mapping[str, Any]] = None,
) -> StockSnapshot:
    """由 Finnhub 风格报价（c/d/dp/h/l/o/pc/t/v）与 K 线构建快照。"""

    history = list(candles)
    indicators: Dict[str, Optional[float]] = compute_all(history)

    price = _to_float(quote.get("c"))
    volume = _to_float(quote.get("v"))
    if volume <= 0 and history:
        volume = float(history[-1].volume)
    change_percent = _to_float(quote.get("dp"))

    indicators["volume_ratio"] = _ratio(volume, indicators.get("avg_volume_20"))
    indicators["price_change_1d"] = change_percent
    indicators["price_vs_sma20"] = _ratio(price, indicators.get("sma_20"))

    return StockSnapshot(
        symbol=symbol.strip().upper(),
        current_price=price,
        change=_to_float(quote.get("d")),
        change_percent=change_percent,
        volume=volume,
        high=_to_float(quote.get("h")),
        low=_to_float(quote.get("l")),
        open=_to_float(quote.get("o")),
        previous_close=_to_float(quote.get("pc")),
        timestamp=_quote_time(quote.get("t")),
        indicators=indicators,
        fundamentals=dict(fundamentals or {}),
        profile=dict(profile or {}),
        events=dict(events or {}),
    )
