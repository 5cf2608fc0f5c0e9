"""Composite scoring blending momentum, volume, technical, news and analyst views."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .models import ScoreBreakdown, StockSnapshot

MOMENTUM_WEIGHT = 0.25
VOLUME_WEIGHT = 0.20
TECHNICAL_WEIGHT = 0.20
NEWS_WEIGHT = 0.20
ANALYST_WEIGHT = 0.15

SCORE_WEIGHTS: Dict[str, float] = {
    "momentum": MOMENTUM_WEIGHT,
    "volume": VOLUME_WEIGHT,
    "technical": TECHNICAL_WEIGHT,
    "news": NEWS_WEIGHT,
    "analyst": ANALYST_WEIGHT,
}

if not math.isclose(sum(SCORE_WEIGHTS.values()), 1.0):
    raise RuntimeError("composite score weights must sum to 1.0")

NEUTRAL_SIGNAL = 50
DEFAULT_AVG_VOLUME = 1_000_000.0
DEFAULT_SECTOR = "Other"


def _round(value: float) -> int:
    # half-up, matching the dashboard's historical scores
    return int(math.floor(value + 0.5))


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def price_momentum(change_percent: float) -> float:
    """Map -5%..+5% linearly onto 0..100."""
    return _clamp(50 + change_percent * 10)


def momentum_score(change_percent: float, volume: float, avg_volume: float) -> int:
    price = price_momentum(change_percent)
    if volume > 0 and avg_volume > 0:
        volume_momentum = 100.0 if volume > avg_volume else volume / avg_volume * 100
    else:
        # sparse volume data: lean on the price move instead
        volume_momentum = max(20.0, price * 0.5)
    return _round(_clamp(price * 0.7 + volume_momentum * 0.3))


def volume_score(volume: float, avg_volume: float) -> int:
    if not volume or not avg_volume or volume <= 0 or avg_volume <= 0:
        return 20
    ratio = volume / avg_volume
    if ratio > 2:
        return 100
    if ratio > 1.5:
        return 80
    if ratio > 1:
        return 60
    if ratio > 0.5:
        return 40
    return 20


def technical_score(change_percent: float, high: float, low: float, current: float) -> int:
    momentum = _clamp(50 + change_percent * 20)
    if high == low or high == 0 or low == 0:
        return _round(momentum)
    position = (current - low) / (high - low) * 100
    return _round(_clamp(position * 0.6 + momentum * 0.4))


def overall_score(momentum: float, volume: float, technical: float, news: float, analyst: float) -> int:
    return _round(
        momentum * MOMENTUM_WEIGHT
        + volume * VOLUME_WEIGHT
        + technical * TECHNICAL_WEIGHT
        + news * NEWS_WEIGHT
        + analyst * ANALYST_WEIGHT
    )


def _signal(value: Optional[float]) -> int:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return NEUTRAL_SIGNAL
    return _round(_clamp(float(value)))


def score_snapshot(
    snapshot: StockSnapshot,
    avg_volume: float,
    news_score: Optional[float] = None,
    analyst_score: Optional[float] = None,
    sector: Optional[str] = None,
) -> ScoreBreakdown:
    """Score one snapshot; missing news/analyst signals count as neutral."""
    volume = float(snapshot.volume or 0.0)
    change_percent = float(snapshot.change_percent or 0.0)

    momentum = momentum_score(change_percent, volume, avg_volume)
    volume_points = volume_score(volume, avg_volume)
    technical = technical_score(
        change_percent,
        float(snapshot.high or 0.0),
        float(snapshot.low or 0.0),
        float(snapshot.current_price or 0.0),
    )
    news = _signal(news_score)
    analyst = _signal(analyst_score)

    return ScoreBreakdown(
        symbol=snapshot.symbol,
        overall_score=overall_score(momentum, volume_points, technical, news, analyst),
        momentum_score=momentum,
        volume_score=volume_points,
        technical_score=technical,
        news_score=news,
        analyst_score=analyst,
        sector=sector or snapshot.sector or DEFAULT_SECTOR,
        price=snapshot.current_price,
        change=snapshot.change,
        change_percent=snapshot.change_percent,
        volume=volume,
        last_updated=datetime.now(timezone.utc),
    )


def average_volume(snapshots: Iterable[StockSnapshot]) -> float:
    volumes = [float(snapshot.volume or 0.0) for snapshot in snapshots]
    total = sum(volumes)
    if total <= 0:
        return DEFAULT_AVG_VOLUME
    return total / len(volumes)


def rank_scores(scores: Iterable[ScoreBreakdown]) -> List[ScoreBreakdown]:
    return sorted(scores, key=lambda item: (-item.overall_score, item.symbol))
