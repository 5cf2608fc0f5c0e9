"""
新闻情绪与分析师评级信号。

综合评分只定义这两路信号的权重与接入点；具体取值由 `SignalProvider`
实现提供，返回 0-100 的分数或 None（视为中性）。
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, Mapping, Optional

from .providers import FinnhubClient, ProviderError

logger = logging.getLogger(__name__)

# strongBuy / buy / hold / sell / strongSell 对应分值
RECOMMENDATION_POINTS: Dict[str, float] = {
    "strongBuy": 100.0,
    "buy": 75.0,
    "hold": 50.0,
    "sell": 25.0,
    "strongSell": 0.0,
}


class SignalProvider(abc.ABC):
    """新闻 / 分析师信号提供方。"""

    @abc.abstractmethod
    def news_score(self, symbol: str) -> Optional[float]:
        """新闻情绪分数，0-100。"""

    @abc.abstractmethod
    def analyst_score(self, symbol: str) -> Optional[float]:
        """分析师一致预期分数，0-100。"""


class NeutralSignals(SignalProvider):
    """确定性信号：默认中性值，可按标的覆盖，测试与离线场景使用。"""

    def __init__(
        self,
        news: float = 50.0,
        analyst: float = 50.0,
        overrides: Optional[Mapping[str, Mapping[str, float]]] = None,
    ) -> None:
        self.news = news
        self.analyst = analyst
        self.overrides = {symbol.upper(): dict(values) for symbol, values in (overrides or {}).items()}

    def news_score(self, symbol: str) -> Optional[float]:
        return self.overrides.get(symbol.upper(), {}).get("news", self.news)

    def analyst_score(self, symbol: str) -> Optional[float]:
        return self.overrides.get(symbol.upper(), {}).get("analyst", self.analyst)


def recommendation_score(trend: Mapping[str, Any]) -> Optional[float]:
    total = 0.0
    points = 0.0
    for key, weight in RECOMMENDATION_POINTS.items():
        try:
            count = float(trend.get(key) or 0)
        except (TypeError, ValueError):
            count = 0.0
        total += count
        points += count * weight
    if total <= 0:
        return None
    return points / total


class FinnhubSignals(SignalProvider):
    """基于 Finnhub 推荐趋势与新闻情绪的信号。"""

    def __init__(self, client: FinnhubClient) -> None:
        self.client = client

    def news_score(self, symbol: str) -> Optional[float]:
        try:
            data = self.client.get("/news-sentiment", symbol=symbol) or {}
        except ProviderError as exc:
            logger.warning("%s 新闻情绪获取失败，按中性处理：%s", symbol, exc)
            return None
        raw = data.get("companyNewsScore")
        if raw is None:
            return None
        return max(0.0, min(100.0, float(raw) * 100))

    def analyst_score(self, symbol: str) -> Optional[float]:
        try:
            trends = self.client.get("/stock/recommendation", symbol=symbol) or []
        except ProviderError as exc:
            logger.warning("%s 分析师评级获取失败，按中性处理：%s", symbol, exc)
            return None
        if not isinstance(trends, list) or not trends:
            return None
        latest = max(trends, key=lambda row: str(row.get("period") or ""))
        return recommendation_score(latest)
