"""Rule evaluation engine: walks a condition tree against one stock snapshot."""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

from .models import (
    ConditionGroup,
    ConditionOutcome,
    EvaluationResult,
    LogicalOperator,
    MarketCondition,
    Operator,
    RuleDraft,
    ScoringConfig,
    StockSnapshot,
    TimeCondition,
    _ConditionBase,
    parse_rule_draft,
)

EVENT_WINDOW_DAYS = 7


def evaluate(
    group: ConditionGroup,
    snapshot: StockSnapshot,
    scoring: Optional[ScoringConfig] = None,
) -> EvaluationResult:
    """Evaluate ``group`` against ``snapshot``.

    ``matched`` follows ordered short-circuit semantics: AND stops at the
    first false entry, OR at the first true one, and only visited conditions
    are recorded in ``outcomes``. ``matched_conditions`` and the weighted
    ``condition_score`` come from every leaf in the tree, so reordering
    conditions never changes them.
    """
    outcomes: List[ConditionOutcome] = []
    matched = _evaluate_group(group, snapshot, outcomes)

    scoring = scoring or ScoringConfig()
    score = float(scoring.base_score)
    matched_conditions: List[str] = []
    for condition in group.iter_conditions():
        actual = snapshot.lookup(condition.type, condition.field)
        if not evaluate_condition(condition, actual, as_of=snapshot.timestamp):
            continue
        score += float(scoring.condition_weights.get(condition.field, 0.0))
        if condition.field not in matched_conditions:
            matched_conditions.append(condition.field)

    return EvaluationResult(
        matched=matched,
        matched_conditions=matched_conditions,
        condition_score=round(score, 4),
        outcomes=outcomes,
    )


def validate_rule_definition(definition: Union[RuleDraft, Mapping[str, Any]]) -> RuleDraft:
    """Check a rule (model or raw payload) before it is stored or run.

    Raises MalformedRule naming every invalid field, operator or weight.
    """
    if isinstance(definition, RuleDraft):
        definition = definition.model_dump()
    return parse_rule_draft(definition)


def _evaluate_group(group: ConditionGroup, snapshot: StockSnapshot, outcomes: List[ConditionOutcome]) -> bool:
    if group.operator is LogicalOperator.AND:
        for item in group.conditions:
            if not _evaluate_item(item, snapshot, outcomes):
                return False
        return True

    for item in group.conditions:
        if _evaluate_item(item, snapshot, outcomes):
            return True
    return False


def _evaluate_item(
    item: Union[ConditionGroup, _ConditionBase],
    snapshot: StockSnapshot,
    outcomes: List[ConditionOutcome],
) -> bool:
    if isinstance(item, ConditionGroup):
        return _evaluate_group(item, snapshot, outcomes)

    actual = snapshot.lookup(item.type, item.field)
    passed = evaluate_condition(item, actual, as_of=snapshot.timestamp)
    outcomes.append(
        ConditionOutcome(
            field=item.field,
            type=item.type,
            operator=item.operator.value,
            expected=item.value,
            actual=actual,
            passed=passed,
        )
    )
    return passed


def evaluate_condition(condition: _ConditionBase, actual: Any, as_of: Optional[datetime] = None) -> bool:
    """Apply one condition to an observed value; absent or unusable values never match."""
    if actual is None:
        return False
    if isinstance(condition, TimeCondition):
        return _compare_event(condition.operator, str(condition.value), actual, as_of)
    if isinstance(condition, MarketCondition) and isinstance(condition.value, str):
        return _compare_text(condition.operator, condition.value, actual)
    return _compare_numeric(condition.operator, condition.value, actual)


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _compare_numeric(operator: Operator, expected: Any, actual: Any) -> bool:
    observed = _to_number(actual)
    if observed is None:
        return False

    if operator is Operator.BETWEEN:
        low, high = (float(bound) for bound in expected)
        return low <= observed <= high

    target = float(expected)
    if operator is Operator.EQUALS:
        return math.isclose(observed, target, rel_tol=1e-9, abs_tol=1e-9)
    if operator is Operator.NOT_EQUALS:
        return not math.isclose(observed, target, rel_tol=1e-9, abs_tol=1e-9)
    if operator is Operator.GREATER_THAN:
        return observed > target
    if operator is Operator.LESS_THAN:
        return observed < target
    if operator is Operator.GREATER_THAN_OR_EQUAL:
        return observed >= target
    if operator is Operator.LESS_THAN_OR_EQUAL:
        return observed <= target
    return False


def _compare_text(operator: Operator, expected: str, actual: Any) -> bool:
    observed = str(actual).strip().lower()
    if not observed:
        return False
    target = expected.strip().lower()
    if operator is Operator.EQUALS:
        return observed == target
    if operator is Operator.NOT_EQUALS:
        return observed != target
    if operator is Operator.CONTAINS:
        return target in observed
    if operator is Operator.NOT_CONTAINS:
        return target not in observed
    return False


def _to_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError:
            return None
    return None


def _in_window(window: str, event_day: date, today: date) -> bool:
    if window == "today":
        return event_day == today
    if window == "recent":
        return today - timedelta(days=EVENT_WINDOW_DAYS) <= event_day <= today
    if window == "upcoming":
        return today <= event_day <= today + timedelta(days=EVENT_WINDOW_DAYS)
    return False


def _compare_event(operator: Operator, window: str, actual: Any, as_of: Optional[datetime]) -> bool:
    event_day = _to_date(actual)
    if event_day is None:
        return False
    today = (as_of or datetime.now()).date()
    inside = _in_window(window, event_day, today)
    return inside if operator is Operator.EQUALS else not inside


_OPERATOR_SYMBOLS: Dict[str, str] = {
    "equals": "=",
    "not_equals": "!=",
    "greater_than": ">",
    "less_than": "<",
    "greater_than_or_equal": ">=",
    "less_than_or_equal": "<=",
    "between": "in",
    "contains": "contains",
    "not_contains": "lacks",
}


def _format_value(value: Any) -> str:
    if isinstance(value, list):
        return "[" + ", ".join(_format_value(item) for item in value) + "]"
    if isinstance(value, float):
        return f"{value:,.2f}".rstrip("0").rstrip(".")
    return str(value)


def describe(result: EvaluationResult) -> str:
    """Human-readable summary of which conditions fired."""
    passed: List[str] = []
    failed: List[str] = []
    for outcome in result.outcomes:
        symbol = _OPERATOR_SYMBOLS.get(outcome.operator, outcome.operator)
        actual = "n/a" if outcome.actual is None else _format_value(outcome.actual)
        text = f"{outcome.field} {actual} {symbol} {_format_value(outcome.expected)}"
        (passed if outcome.passed else failed).append(text)

    if not result.outcomes:
        return "No conditions evaluated"

    head = "Matched" if result.matched else "Not matched"
    parts: List[str] = [f"{head}: {len(passed)}/{len(result.outcomes)} evaluated conditions passed"]
    if passed:
        parts.append("passed " + "; ".join(passed))
    if failed:
        parts.append("failed " + "; ".join(failed))
    return " | ".join(parts)
