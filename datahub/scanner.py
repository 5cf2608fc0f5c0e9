"""
规则扫描器。

并发抓取一批标的的行情快照（信号量控制并发、闸门控制单标的间隔、阻塞调用放入线程池；
请求频率由数据源客户端按 HTTP 请求扣减令牌），
在整批截止时间内收集结果，再交给引擎做规则匹配或综合评分。单个标的失败只记录、
不影响整批；只有全部标的都抓取失败时才视为数据源整体不可用。
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from engine.analyzer import average_volume, rank_scores, score_snapshot
from engine.matcher import ExecutionStatsSink, match_rule
from engine.models import MatchResult, Rule, ScoreBreakdown, StockSnapshot
from infra.rate_limit import RateLimiter
from infra.settings import Settings

from .providers import FinnhubProvider, MarketDataProvider, ProviderError
from .signals import FinnhubSignals, NeutralSignals, SignalProvider
from .universe import normalize_symbols

logger = logging.getLogger(__name__)


@dataclass
class SnapshotBatch:
    """一次批量抓取的结果。"""

    snapshots: List[StockSnapshot] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: int = 0
    timed_out: bool = False

    def total_outage(self, requested: int) -> bool:
        return requested > 0 and not self.snapshots and not self.timed_out and self.errors >= requested


class RuleScanner:
    """异步批量执行规则匹配与评分。"""

    def __init__(
        self,
        provider: MarketDataProvider,
        signals: Optional[SignalProvider] = None,
        limiter: Optional[RateLimiter] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.provider = provider
        self.signals = signals or NeutralSignals()
        self.limiter = limiter or RateLimiter.unlimited()
        self.settings = settings or Settings()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RuleScanner":
        """Finnhub 行情 + Finnhub 信号，行情与信号请求共用同一个限流器。"""
        limiter = RateLimiter.from_settings(settings)
        provider = FinnhubProvider.from_settings(settings, limiter=limiter)
        return cls(
            provider=provider,
            signals=FinnhubSignals(provider.client),
            limiter=limiter,
            settings=settings,
        )

    @property
    def concurrency(self) -> int:
        return max(self.settings.scan_concurrency, 1)

    @property
    def deadline(self) -> Optional[float]:
        return self.settings.scan_timeout or None

    async def _fetch(self, symbol: str, semaphore: asyncio.Semaphore) -> StockSnapshot:
        async with semaphore:
            await self.limiter.wait_symbol(self.provider.name, symbol)
            return await asyncio.to_thread(self.provider.fetch_snapshot, symbol)

    async def fetch_snapshots(self, symbols: Iterable[str]) -> SnapshotBatch:
        """并发抓取快照；超过截止时间仍未完成的标的被取消并记入 failed。"""
        tickers = normalize_symbols(symbols)
        batch = SnapshotBatch()
        if not tickers:
            return batch

        semaphore = asyncio.Semaphore(self.concurrency)
        tasks: Dict[asyncio.Task, str] = {
            asyncio.create_task(self._fetch(symbol, semaphore)): symbol for symbol in tickers
        }
        done, pending = await asyncio.wait(list(tasks), timeout=self.deadline)

        if pending:
            batch.timed_out = True
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "扫描超时（%.1fs），%d 个标的未完成：%s",
                self.deadline,
                len(pending),
                ", ".join(sorted(tasks[task] for task in pending)),
            )

        snapshots: Dict[str, StockSnapshot] = {}
        for task in done:
            symbol = tasks[task]
            exc = task.exception()
            if exc is not None:
                batch.errors += 1
                logger.warning("%s 行情获取失败，已跳过：%s", symbol, exc)
                continue
            snapshots[symbol] = task.result()

        for symbol in tickers:
            if symbol in snapshots:
                batch.snapshots.append(snapshots[symbol])
            else:
                batch.failed.append(symbol)
        return batch

    async def scan_rule(
        self,
        rule: Rule,
        symbols: Iterable[str],
        limit: Optional[int] = None,
        store: Optional[ExecutionStatsSink] = None,
    ) -> MatchResult:
        """对一批标的执行规则，返回按得分排序的匹配结果。"""
        start_time = time.perf_counter()
        tickers = normalize_symbols(symbols)
        batch = await self.fetch_snapshots(tickers)
        if batch.total_outage(len(tickers)):
            raise ProviderError(f"全部 {len(tickers)} 个标的行情获取失败，规则 {rule.id} 未执行")

        # 匹配结束后会同步写入执行统计，放到线程池里执行
        result = await asyncio.to_thread(
            match_rule, rule, batch.snapshots, store=store, limit=limit, failed=batch.failed
        )
        result.timed_out = batch.timed_out
        result.execution_time_ms = int((time.perf_counter() - start_time) * 1000)
        return result

    async def _signals_for(self, symbol: str, semaphore: asyncio.Semaphore) -> Tuple[Optional[float], Optional[float]]:
        async with semaphore:
            news = await asyncio.to_thread(self.signals.news_score, symbol)
            analyst = await asyncio.to_thread(self.signals.analyst_score, symbol)
        return news, analyst

    async def _score(self, snapshots: List[StockSnapshot], avg_volume: float) -> List[ScoreBreakdown]:
        semaphore = asyncio.Semaphore(self.concurrency)
        signals = await asyncio.gather(
            *(self._signals_for(snapshot.symbol, semaphore) for snapshot in snapshots),
            return_exceptions=True,
        )
        scores: List[ScoreBreakdown] = []
        for snapshot, outcome in zip(snapshots, signals):
            if isinstance(outcome, BaseException):
                logger.warning("%s 新闻/评级信号获取失败，按中性处理：%s", snapshot.symbol, outcome)
                news, analyst = None, None
            else:
                news, analyst = outcome
            scores.append(score_snapshot(snapshot, avg_volume, news_score=news, analyst_score=analyst))
        return scores

    async def score_universe(self, symbols: Iterable[str]) -> List[ScoreBreakdown]:
        """评分矩阵：以整批平均成交量为基准，对每个标的打分并排序。"""
        tickers = normalize_symbols(symbols)
        batch = await self.fetch_snapshots(tickers)
        if batch.total_outage(len(tickers)):
            raise ProviderError(f"全部 {len(tickers)} 个标的行情获取失败，无法生成评分矩阵")
        scores = await self._score(batch.snapshots, average_volume(batch.snapshots))
        logger.info("评分矩阵完成：%d 个标的，失败 %d", len(scores), len(batch.failed))
        return rank_scores(scores)

    async def score_symbol(self, symbol: str) -> ScoreBreakdown:
        """单只股票评分，成交量基准取其自身成交量。"""
        semaphore = asyncio.Semaphore(1)
        snapshot = await self._fetch(symbol.strip().upper(), semaphore)
        scores = await self._score([snapshot], float(snapshot.volume or 0.0))
        return scores[0]
