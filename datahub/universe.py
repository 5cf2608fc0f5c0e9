"""
默认股票池与行业归属。

评分矩阵与未指定标的的规则执行都从这里取股票池。
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

SECTOR_MEMBERS: Dict[str, List[str]] = {
    "Technology": [
        "AAPL", "MSFT", "GOOGL", "GOOG", "AMZN", "META", "NVDA", "TSLA", "NFLX", "ADBE",
        "CRM", "ORCL", "INTC", "AMD", "CSCO", "IBM", "QCOM", "AVGO", "TXN", "AMAT",
    ],
    "Financial Services": [
        "JPM", "BAC", "WFC", "GS", "MS", "C", "AXP", "BLK", "SPGI", "V",
        "MA", "PYPL", "COF", "USB", "PNC", "TFC", "BK", "STT", "SCHW", "CB",
    ],
    "Healthcare": [
        "JNJ", "PFE", "UNH", "ABBV", "MRK", "TMO", "ABT", "DHR", "BMY", "LLY",
        "AMGN", "GILD", "BIIB", "REGN", "VRTX", "MRNA", "BNTX", "ILMN", "ISRG", "ZTS",
    ],
    "Consumer": [
        "WMT", "HD", "PG", "KO", "PEP", "NKE", "SBUX", "MCD", "DIS", "CMCSA",
        "T", "VZ", "TMUS", "CHTR", "ROKU", "SPOT", "UBER", "LYFT", "ABNB",
    ],
    "Industrial": [
        "BA", "CAT", "GE", "HON", "MMM", "UPS", "FDX", "LMT", "RTX", "NOC",
        "XOM", "CVX", "COP", "EOG", "SLB", "OXY", "MPC", "VLO", "PSX", "KMI",
    ],
    "Other": ["BRK.B"],
}

_SECTOR_BY_SYMBOL: Dict[str, str] = {
    symbol: sector for sector, members in SECTOR_MEMBERS.items() for symbol in members
}

DEFAULT_UNIVERSE: List[str] = [symbol for members in SECTOR_MEMBERS.values() for symbol in members]


def get_sector(symbol: str, default: Optional[str] = "Other") -> Optional[str]:
    return _SECTOR_BY_SYMBOL.get(symbol.strip().upper(), default)


def normalize_symbols(symbols: Optional[Iterable[str]]) -> List[str]:
    """去空白、转大写并去重，保留首次出现的顺序。"""
    normalized: List[str] = []
    for symbol in symbols or []:
        cleaned = symbol.strip().upper()
        if cleaned and cleaned not in normalized:
            normalized.append(cleaned)
    return normalized


def default_universe(size: Optional[int] = None) -> List[str]:
    if size is None:
        return list(DEFAULT_UNIVERSE)
    return DEFAULT_UNIVERSE[: max(size, 0)]
