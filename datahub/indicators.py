"""Indicator computation utilities."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

TRADING_DAYS_PER_YEAR = 252


@dataclass(frozen=True)
class Candle:
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class MACDResult:
    macd: float
    signal: Optional[float]
    histogram: Optional[float]


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


def _as_series(values: Iterable[float]) -> pd.Series:
    return pd.Series(list(values), dtype="float64")


def _check_period(period: int) -> None:
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")


def _ema(series: pd.Series, span: int) -> pd.Series:
    # adjust=False seeds with the first value: ema[i] = x[i]*k + ema[i-1]*(1-k), k = 2/(span+1)
    return series.ewm(span=span, adjust=False).mean()


def sma(prices: Sequence[float], period: int) -> Optional[float]:
    """Arithmetic mean of the last ``period`` prices."""
    _check_period(period)
    series = _as_series(prices)
    if len(series) < period:
        return None
    return float(series.iloc[-period:].mean())


def ema(prices: Sequence[float], period: int) -> Optional[float]:
    """EMA warmed up from the very first price over the whole sequence."""
    _check_period(period)
    series = _as_series(prices)
    if len(series) < period:
        return None
    return float(_ema(series, period).iloc[-1])


def rsi(prices: Sequence[float], period: int = 14) -> Optional[float]:
    """RSI from simple average gain/loss over the first ``period`` deltas."""
    _check_period(period)
    series = _as_series(prices)
    if len(series) < period + 1:
        return None
    deltas = series.diff().iloc[1 : period + 1]
    avg_gain = float(deltas.clip(lower=0).sum()) / period
    avg_loss = float(-deltas.clip(upper=0).sum()) / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def macd(
    prices: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> Optional[MACDResult]:
    """MACD line with a ``signal``-period EMA signal line.

    The MACD series starts at the first index where the slow EMA is defined,
    so the signal needs ``slow + signal - 1`` prices; below that only the
    MACD value is reported.
    """
    for period in (fast, slow, signal):
        _check_period(period)
    series = _as_series(prices)
    if len(series) < max(fast, slow):
        return None

    macd_line = _ema(series, fast) - _ema(series, slow)
    macd_value = float(macd_line.iloc[-1])

    usable = macd_line.iloc[max(fast, slow) - 1 :].reset_index(drop=True)
    if len(usable) < signal:
        return MACDResult(macd=macd_value, signal=None, histogram=None)

    signal_value = float(_ema(usable, signal).iloc[-1])
    return MACDResult(macd=macd_value, signal=signal_value, histogram=macd_value - signal_value)


def bollinger_bands(
    prices: Sequence[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> Optional[BollingerBands]:
    _check_period(period)
    series = _as_series(prices)
    if len(series) < period:
        return None
    window = series.iloc[-period:]
    middle = float(window.mean())
    band = std_dev * float(window.std(ddof=0))
    return BollingerBands(upper=middle + band, middle=middle, lower=middle - band)


def stochastic(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> Optional[float]:
    """%K over the trailing window; 50 when the window has no range."""
    _check_period(period)
    if len(highs) < period or len(lows) < period or len(closes) < period:
        return None
    highest_high = float(_as_series(highs).iloc[-period:].max())
    lowest_low = float(_as_series(lows).iloc[-period:].min())
    close = float(closes[-1])
    if highest_high == lowest_low:
        return 50.0
    return (close - lowest_low) / (highest_high - lowest_low) * 100


def volatility(closes: Sequence[float], period: int = 30) -> Optional[float]:
    """Annualised volatility of daily returns, in percent."""
    _check_period(period)
    series = _as_series(closes)
    if len(series) < period + 1:
        return None
    returns = series.pct_change().iloc[-period:].replace([np.inf, -np.inf], np.nan)
    if returns.isna().any():
        return None
    return float(returns.std(ddof=0)) * math.sqrt(TRADING_DAYS_PER_YEAR) * 100


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """Candles as an OHLCV frame indexed by strictly increasing timestamp."""
    rows = [
        {
            "Timestamp": int(candle.timestamp),
            "Open": float(candle.open),
            "High": float(candle.high),
            "Low": float(candle.low),
            "Close": float(candle.close),
            "Volume": float(candle.volume),
        }
        for candle in candles
    ]
    if not rows:
        return pd.DataFrame(columns=["Open", "High", "Low", "Close", "Volume"])
    frame = pd.DataFrame(rows).set_index("Timestamp")
    frame.sort_index(inplace=True, kind="mergesort")
    return frame[~frame.index.duplicated(keep="last")]


def compute_all(candles: Iterable[Candle]) -> Dict[str, Any]:
    """Technical fields derivable from candle history alone.

    Every key is always present; values are ``None`` where history is too
    short for the indicator.
    """
    data = candles_to_frame(candles)
    closes: List[float] = data["Close"].tolist()
    highs: List[float] = data["High"].tolist()
    lows: List[float] = data["Low"].tolist()
    volumes: List[float] = data["Volume"].tolist()

    macd_result = macd(closes)
    bands = bollinger_bands(closes, period=20)

    return {
        "sma_20": sma(closes, 20),
        "sma_50": sma(closes, 50),
        "ema_12": ema(closes, 12),
        "ema_26": ema(closes, 26),
        "ema_50": ema(closes, 50),
        "rsi": rsi(closes, 14),
        "macd": macd_result.macd if macd_result else None,
        "macd_signal": macd_result.signal if macd_result else None,
        "macd_histogram": macd_result.histogram if macd_result else None,
        "bollinger_upper": bands.upper if bands else None,
        "bollinger_middle": bands.middle if bands else None,
        "bollinger_lower": bands.lower if bands else None,
        "stochastic_k": stochastic(highs, lows, closes, 14),
        "volatility_30d": volatility(closes, 30),
        "avg_volume_20": sma(volumes, 20),
        "last_close": closes[-1] if closes else None,
    }
