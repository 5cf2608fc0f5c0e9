"""行情获取、指标计算、规则存储与批量扫描工具。"""

from .indicators import Candle, compute_all  # noqa: F401
from .providers import (  # noqa: F401
    FinnhubClient,
    FinnhubProvider,
    MarketDataProvider,
    ProviderError,
)
from .rule_store import InMemoryRuleStore, JsonRuleStore, RuleNotFound, RuleStore  # noqa: F401
from .scanner import RuleScanner, SnapshotBatch  # noqa: F401
from .signals import FinnhubSignals, NeutralSignals, SignalProvider  # noqa: F401
from .snapshot import build_snapshot  # noqa: F401
from .universe import default_universe, get_sector, normalize_symbols  # noqa: F401

__all__ = [
    "Candle",
    "FinnhubClient",
    "FinnhubProvider",
    "FinnhubSignals",
    "InMemoryRuleStore",
    "JsonRuleStore",
    "MarketDataProvider",
    "NeutralSignals",
    "ProviderError",
    "RuleNotFound",
    "RuleScanner",
    "RuleStore",
    "SignalProvider",
    "SnapshotBatch",
    "build_snapshot",
    "compute_all",
    "default_universe",
    "get_sector",
    "normalize_symbols",
]
