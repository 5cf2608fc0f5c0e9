"""
运行配置读取。

所有参数来自环境变量（可由 .env 提供，见 env.py），解析失败时回退默认值，
与限流模块的 `_parse_int` / `_parse_float` 保持一致的宽松策略。
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_FINNHUB_BASE_URL = "https://finnhub.io/api/v1"
DEFAULT_FINNHUB_TIMEOUT = 10.0
DEFAULT_FINNHUB_RPM = 60
DEFAULT_FINNHUB_SYMBOL_INTERVAL = 0.0
DEFAULT_SCAN_CONCURRENCY = 8
DEFAULT_SCAN_TIMEOUT = 30.0
DEFAULT_CANDLE_RESOLUTION = "D"
DEFAULT_CANDLE_LOOKBACK_DAYS = 120
DEFAULT_RULE_STORE_PATH = "data/rules.json"
DEFAULT_SCORING_UNIVERSE_SIZE = 20


def _parse_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return max(int(raw), 0)
    except ValueError:
        return default


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return default


def _parse_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default


@dataclass(frozen=True)
class Settings:
    """一次性构建、显式传递给各服务的配置。"""

    finnhub_api_key: Optional[str] = None
    finnhub_base_url: str = DEFAULT_FINNHUB_BASE_URL
    finnhub_timeout: float = DEFAULT_FINNHUB_TIMEOUT
    finnhub_max_rpm: int = DEFAULT_FINNHUB_RPM
    finnhub_symbol_interval: float = DEFAULT_FINNHUB_SYMBOL_INTERVAL
    scan_concurrency: int = DEFAULT_SCAN_CONCURRENCY
    scan_timeout: float = DEFAULT_SCAN_TIMEOUT
    candle_resolution: str = DEFAULT_CANDLE_RESOLUTION
    candle_lookback_days: int = DEFAULT_CANDLE_LOOKBACK_DAYS
    rule_store_path: Path = Path(DEFAULT_RULE_STORE_PATH)
    scoring_universe_size: int = DEFAULT_SCORING_UNIVERSE_SIZE

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            finnhub_api_key=_parse_str("FINNHUB_API_KEY"),
            finnhub_base_url=_parse_str("FINNHUB_BASE_URL", DEFAULT_FINNHUB_BASE_URL).rstrip("/"),
            finnhub_timeout=_parse_float("FINNHUB_TIMEOUT", DEFAULT_FINNHUB_TIMEOUT),
            finnhub_max_rpm=_parse_int("FINNHUB_MAX_RPM", DEFAULT_FINNHUB_RPM),
            finnhub_symbol_interval=_parse_float(
                "FINNHUB_PER_SYMBOL_MIN_INTERVAL", DEFAULT_FINNHUB_SYMBOL_INTERVAL
            ),
            scan_concurrency=max(_parse_int("SCAN_CONCURRENCY", DEFAULT_SCAN_CONCURRENCY), 1),
            scan_timeout=_parse_float("SCAN_TIMEOUT_SECONDS", DEFAULT_SCAN_TIMEOUT),
            candle_resolution=_parse_str("CANDLE_RESOLUTION", DEFAULT_CANDLE_RESOLUTION),
            candle_lookback_days=max(_parse_int("CANDLE_LOOKBACK_DAYS", DEFAULT_CANDLE_LOOKBACK_DAYS), 1),
            rule_store_path=Path(_parse_str("RULE_STORE_PATH", DEFAULT_RULE_STORE_PATH)),
            scoring_universe_size=max(
                _parse_int("SCORING_UNIVERSE_SIZE", DEFAULT_SCORING_UNIVERSE_SIZE), 1
            ),
        )
