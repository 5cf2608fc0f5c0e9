"""
行情接口限流器：令牌桶 + 单标的最小间隔闸门。

Finnhub 免费档按每分钟请求数计费，令牌按 HTTP 请求扣减：`FinnhubClient`
在每次请求前调用 `RateLimiter.throttle("finnhub")`（运行在工作线程中）；
扫描器在抓取某个标的前通过 `RateLimiter.wait_symbol` 控制同一标的的最小间隔。
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

from .settings import Settings


@dataclass
class LimitConfig:
    provider: str
    rpm: int
    per_symbol_interval: float = 0.0

    @property
    def enabled(self) -> bool:
        return self.rpm > 0


class TokenBucket:
    """线程安全的令牌桶，同时支持阻塞（工作线程）与异步两种等待方式。"""

    def __init__(self, capacity: int, refill_rate: float) -> None:
        self.capacity = capacity
        self.tokens = float(capacity)
        self.refill_rate = refill_rate  # tokens per second
        self.updated_at = time.monotonic()
        self._lock = threading.Lock()

    def _reserve(self) -> float:
        """尝试取一个令牌；成功返回 0，否则返回建议等待的秒数。"""
        with self._lock:
            now = time.monotonic()
            elapsed = now - self.updated_at
            self.updated_at = now
            if elapsed > 0:
                self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return 0.0
            wait_for = (1.0 - self.tokens) / self.refill_rate if self.refill_rate > 0 else 1.0
        return min(max(wait_for, 0.05), 5.0)

    def acquire_blocking(self) -> None:
        while True:
            wait_for = self._reserve()
            if wait_for <= 0:
                return
            time.sleep(wait_for)

    async def acquire(self) -> None:
        while True:
            wait_for = self._reserve()
            if wait_for <= 0:
                return
            await asyncio.sleep(wait_for)


class SymbolGate:
    """限制同一 provider + symbol 的调用最小间隔。"""

    def __init__(self, min_interval: float) -> None:
        self.min_interval = min_interval
        self._last_seen: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def wait(self, symbol_key: str) -> None:
        if self.min_interval <= 0:
            return
        while True:
            async with self._lock:
                now = time.monotonic()
                last = self._last_seen.get(symbol_key)
                if last is None or now - last >= self.min_interval:
                    self._last_seen[symbol_key] = now
                    return
                remaining = self.min_interval - (now - last)
            await asyncio.sleep(min(max(remaining, 0.05), self.min_interval))


class RateLimiter:
    """按 provider 管理令牌桶与闸门。"""

    def __init__(self, configs: Dict[str, LimitConfig]) -> None:
        self._configs = {name.lower(): config for name, config in configs.items()}
        self._buckets: Dict[str, TokenBucket] = {}
        self._gates: Dict[str, SymbolGate] = {}
        self._registry_lock = threading.Lock()

    def _config_for(self, provider: str) -> Optional[LimitConfig]:
        name = provider.lower()
        if name in self._configs:
            return self._configs[name]
        base = name.split("_", 1)[0]
        return self._configs.get(base)

    def _bucket_for(self, config: LimitConfig) -> TokenBucket:
        with self._registry_lock:
            bucket = self._buckets.get(config.provider)
            if bucket is None:
                bucket = TokenBucket(max(config.rpm, 1), config.rpm / 60.0)
                self._buckets[config.provider] = bucket
            return bucket

    def _gate_for(self, config: LimitConfig) -> SymbolGate:
        gate = self._gates.get(config.provider)
        if gate is None:
            gate = SymbolGate(config.per_symbol_interval)
            self._gates[config.provider] = gate
        return gate

    def bucket(self, provider: str) -> Optional[TokenBucket]:
        config = self._config_for(provider)
        if config is None or not config.enabled:
            return None
        return self._bucket_for(config)

    def throttle(self, provider: str) -> None:
        """阻塞当前线程直到获得一次请求许可；每个 HTTP 请求调用一次。"""
        bucket = self.bucket(provider)
        if bucket is not None:
            bucket.acquire_blocking()

    async def wait_symbol(self, provider: str, symbol: str) -> None:
        """同一标的两次抓取之间至少间隔 per_symbol_interval 秒。"""
        config = self._config_for(provider)
        if config is None or config.per_symbol_interval <= 0:
            return
        await self._gate_for(config).wait(f"{config.provider}:{symbol.upper()}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls(
            {
                "finnhub": LimitConfig(
                    provider="finnhub",
                    rpm=settings.finnhub_max_rpm,
                    per_symbol_interval=settings.finnhub_symbol_interval,
                )
            }
        )

    @classmethod
    def unlimited(cls) -> "RateLimiter":
        return cls({})
