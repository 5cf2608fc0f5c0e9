"""Deterministic snapshots and providers shared by the test modules."""

import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from datahub.indicators import Candle
from datahub.providers import MarketDataProvider, ProviderError
from engine.models import StockSnapshot

AS_OF = datetime(2024, 3, 15, 16, 0, tzinfo=timezone.utc)


def make_snapshot(
    symbol: str = "AAPL",
    price: float = 100.0,
    change_percent: float = 1.0,
    volume: float = 1_000_000,
    high: float = 102.0,
    low: float = 98.0,
    indicators: Optional[dict] = None,
    fundamentals: Optional[dict] = None,
    profile: Optional[dict] = None,
    events: Optional[dict] = None,
) -> StockSnapshot:
    return StockSnapshot(
        symbol=symbol,
        current_price=price,
        change=price * change_percent / 100,
        change_percent=change_percent,
        volume=volume,
        high=high,
        low=low,
        open=price,
        previous_close=price,
        timestamp=AS_OF,
        indicators=dict(indicators or {}),
        fundamentals=dict(fundamentals or {}),
        profile=dict(profile or {}),
        events=dict(events or {}),
    )


def make_candles(closes: Iterable[float], volume: float = 1_000.0) -> List[Candle]:
    return [
        Candle(timestamp=1_700_000_000 + i * 86_400, open=c, high=c + 1, low=c - 1, close=c, volume=volume)
        for i, c in enumerate(closes)
    ]


class FakeProvider(MarketDataProvider):
    """Serves canned snapshots; listed symbols raise or block until released."""

    name = "fake"

    def __init__(
        self,
        snapshots: Dict[str, StockSnapshot],
        failing: Iterable[str] = (),
        blocking: Iterable[str] = (),
    ):
        self.snapshots = snapshots
        self.failing = set(failing)
        self.blocking = set(blocking)
        self.release = threading.Event()
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fetch_snapshot(self, symbol: str) -> StockSnapshot:
        with self._lock:
            self.calls.append(symbol)
        if symbol in self.failing:
            raise ProviderError(f"{symbol} unavailable")
        if symbol in self.blocking:
            self.release.wait(timeout=1)
        if symbol not in self.snapshots:
            raise ProviderError(f"{symbol} unknown")
        return self.snapshots[symbol]

    def fetch_candles(self, symbol, resolution, start, end) -> List[Candle]:
        return []
