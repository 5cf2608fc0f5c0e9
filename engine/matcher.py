"""Runs a rule over a universe of snapshots and ranks the matches."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Protocol, Sequence

from .models import MatchResult, Rule, StockSnapshot, SymbolMatch
from .rules import describe, evaluate

logger = logging.getLogger(__name__)


class ExecutionStatsSink(Protocol):
    def increment_execution_stats(self, rule_id: str, matched: bool) -> object:
        ...


def _ranked(matches: Iterable[SymbolMatch]) -> List[SymbolMatch]:
    # score descending, ties by symbol ascending
    return sorted(matches, key=lambda match: (-match.score, match.symbol))


def match_rule(
    rule: Rule,
    snapshots: Sequence[StockSnapshot],
    store: Optional[ExecutionStatsSink] = None,
    limit: Optional[int] = None,
    failed: Sequence[str] = (),
) -> MatchResult:
    """Evaluate ``rule`` for every snapshot.

    A snapshot that cannot be evaluated is logged and reported in ``failed``;
    it counts toward neither ``total_evaluated`` nor the matches. When a store
    is given its execution counters are bumped once per run.
    """
    start_time = time.perf_counter()
    executed_at = datetime.now(timezone.utc)

    matched: List[SymbolMatch] = []
    partial: List[SymbolMatch] = []
    failed_symbols: List[str] = list(failed)
    evaluated = 0

    for snapshot in snapshots:
        symbol = getattr(snapshot, "symbol", None) or "<unknown>"
        try:
            result = evaluate(rule.conditions, snapshot, rule.scoring_config)
            match = SymbolMatch(
                symbol=snapshot.symbol,
                score=result.condition_score,
                matched_conditions=result.matched_conditions,
                reasoning=describe(result),
                current_price=float(snapshot.current_price),
                price_change=float(snapshot.change_percent),
            )
        except Exception as exc:
            logger.warning("规则 %s 评估 %s 失败，已跳过：%s", rule.id, symbol, exc)
            failed_symbols.append(symbol)
            continue

        evaluated += 1
        if result.matched:
            matched.append(match)
        elif result.matched_conditions:
            partial.append(match)

    ranked = _ranked(matched)
    matching_count = len(ranked)
    if limit:
        ranked = ranked[:limit]

    latency = int((time.perf_counter() - start_time) * 1000)
    logger.info(
        "规则 %s 执行完成：评估 %d，命中 %d，失败 %d，耗时 %dms",
        rule.id,
        evaluated,
        matching_count,
        len(failed_symbols),
        latency,
    )

    if store is not None:
        store.increment_execution_stats(rule.id, matched=matching_count > 0)

    return MatchResult(
        rule_id=rule.id,
        executed_at=executed_at,
        total_evaluated=evaluated,
        matching_count=matching_count,
        results=ranked,
        partial_matches=_ranked(partial),
        failed=failed_symbols,
        execution_time_ms=latency,
    )
