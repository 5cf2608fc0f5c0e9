"""Rule language and the value objects flowing through the matching engine.

Rule definitions are pydantic models so that every invalid field/operator
combination is rejected when a rule is parsed (create/update time), never in
the middle of a batch. Snapshots and results are plain dataclasses produced
fresh per evaluation run.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, Iterator, List, Literal, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    field_validator,
    model_validator,
)


class MalformedRule(ValueError):
    """Rule definition references an unknown field or an invalid operator/value."""


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    BETWEEN = "between"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class RuleStatus(str, Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    ARCHIVED = "archived"


class RuleAction(str, Enum):
    RECOMMEND = "recommend"
    ALERT = "alert"
    ADD_TO_WATCHLIST = "add_to_watchlist"
    ADD_TO_PORTFOLIO = "add_to_portfolio"
    SELL_SIGNAL = "sell_signal"


class NotificationChannel(str, Enum):
    DASHBOARD = "dashboard"
    EMAIL = "email"
    PUSH = "push"
    SMS = "sms"


TECHNICAL_FIELDS = frozenset(
    {
        "rsi",
        "macd",
        "macd_signal",
        "macd_histogram",
        "sma_20",
        "sma_50",
        "ema_12",
        "ema_26",
        "ema_50",
        "bollinger_upper",
        "bollinger_middle",
        "bollinger_lower",
        "stochastic_k",
        "volume_ratio",
        "price_change_1d",
        "price_vs_sma20",
        "volatility_30d",
    }
)

FUNDAMENTAL_FIELDS = frozenset(
    {
        "pe_ratio",
        "pb_ratio",
        "ps_ratio",
        "peg_ratio",
        "debt_to_equity",
        "roe",
        "roa",
        "revenue_growth",
        "eps_growth",
        "dividend_yield",
        "payout_ratio",
        "dividend_growth_5y",
        "earnings_surprise",
        "beta",
    }
)

MARKET_NUMERIC_FIELDS = frozenset({"market_cap", "current_price", "change", "change_percent", "volume"})
MARKET_TEXT_FIELDS = frozenset({"sector", "industry", "exchange", "country"})
TIME_FIELDS = frozenset({"earnings_date", "dividend_date", "ex_dividend_date"})

NUMERIC_OPERATORS = frozenset(
    {
        Operator.EQUALS,
        Operator.NOT_EQUALS,
        Operator.GREATER_THAN,
        Operator.LESS_THAN,
        Operator.GREATER_THAN_OR_EQUAL,
        Operator.LESS_THAN_OR_EQUAL,
        Operator.BETWEEN,
    }
)
TEXT_OPERATORS = frozenset({Operator.EQUALS, Operator.NOT_EQUALS, Operator.CONTAINS, Operator.NOT_CONTAINS})
TIME_OPERATORS = frozenset({Operator.EQUALS, Operator.NOT_EQUALS})
TIME_WINDOWS = frozenset({"today", "recent", "upcoming"})

ConditionValue = Union[float, str, List[float]]


def _check_numeric(field_name: str, operator: Operator, value: Any) -> None:
    if operator not in NUMERIC_OPERATORS:
        raise MalformedRule(f"operator '{operator.value}' is not valid for numeric field '{field_name}'")
    if operator is Operator.BETWEEN:
        if not isinstance(value, list) or len(value) != 2:
            raise MalformedRule(f"'between' on '{field_name}' needs a [low, high] pair")
        if value[0] > value[1]:
            raise MalformedRule(f"'between' bounds on '{field_name}' are reversed")
        return
    if not isinstance(value, (int, float)):
        raise MalformedRule(f"field '{field_name}' needs a numeric value, got {value!r}")


def _check_text(field_name: str, operator: Operator, value: Any) -> None:
    if operator not in TEXT_OPERATORS:
        raise MalformedRule(f"operator '{operator.value}' is not valid for text field '{field_name}'")
    if not isinstance(value, str) or not value.strip():
        raise MalformedRule(f"field '{field_name}' needs a non-empty string value")


def _numeric_string(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        number = float(value.strip())
    except ValueError:
        return value
    return number if math.isfinite(number) else value


class _ConditionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    numeric_fields: ClassVar[FrozenSet[str]] = frozenset()

    field: str
    operator: Operator
    value: ConditionValue

    @model_validator(mode="before")
    @classmethod
    def _coerce_numeric_value(cls, data: Any) -> Any:
        # form inputs send numbers as strings
        if not isinstance(data, dict) or str(data.get("field", "")).strip() not in cls.numeric_fields:
            return data
        value = data.get("value")
        if isinstance(value, list):
            value = [_numeric_string(item) for item in value]
        else:
            value = _numeric_string(value)
        return {**data, "value": value}

    @field_validator("field")
    @classmethod
    def _strip_field(cls, value: str) -> str:
        return value.strip()


class TechnicalCondition(_ConditionBase):
    type: Literal["technical"] = "technical"
    numeric_fields: ClassVar[FrozenSet[str]] = TECHNICAL_FIELDS

    @model_validator(mode="after")
    def _check(self) -> "TechnicalCondition":
        if self.field not in TECHNICAL_FIELDS:
            raise MalformedRule(f"unknown technical field '{self.field}'")
        _check_numeric(self.field, self.operator, self.value)
        return self


class FundamentalCondition(_ConditionBase):
    type: Literal["fundamental"] = "fundamental"
    numeric_fields: ClassVar[FrozenSet[str]] = FUNDAMENTAL_FIELDS

    @model_validator(mode="after")
    def _check(self) -> "FundamentalCondition":
        if self.field not in FUNDAMENTAL_FIELDS:
            raise MalformedRule(f"unknown fundamental field '{self.field}'")
        _check_numeric(self.field, self.operator, self.value)
        return self


class MarketCondition(_ConditionBase):
    type: Literal["market"] = "market"
    numeric_fields: ClassVar[FrozenSet[str]] = MARKET_NUMERIC_FIELDS

    @model_validator(mode="after")
    def _check(self) -> "MarketCondition":
        if self.field in MARKET_NUMERIC_FIELDS:
            _check_numeric(self.field, self.operator, self.value)
        elif self.field in MARKET_TEXT_FIELDS:
            _check_text(self.field, self.operator, self.value)
        else:
            raise MalformedRule(f"unknown market field '{self.field}'")
        return self


class TimeCondition(_ConditionBase):
    type: Literal["time"] = "time"

    @model_validator(mode="after")
    def _check(self) -> "TimeCondition":
        if self.field not in TIME_FIELDS:
            raise MalformedRule(f"unknown time field '{self.field}'")
        if self.operator not in TIME_OPERATORS:
            raise MalformedRule(f"operator '{self.operator.value}' is not valid for time field '{self.field}'")
        if not isinstance(self.value, str) or self.value not in TIME_WINDOWS:
            raise MalformedRule(
                f"time field '{self.field}' needs one of {sorted(TIME_WINDOWS)}, got {self.value!r}"
            )
        return self


def _entry_kind(value: Any) -> Optional[str]:
    """Tag for one entry of a group: "group" when it nests conditions, else its ``type``."""
    if isinstance(value, dict):
        return "group" if "conditions" in value else value.get("type")
    if isinstance(value, ConditionGroup):
        return "group"
    return getattr(value, "type", None)


ConditionEntry = Annotated[
    Union[
        Annotated[TechnicalCondition, Tag("technical")],
        Annotated[FundamentalCondition, Tag("fundamental")],
        Annotated[MarketCondition, Tag("market")],
        Annotated[TimeCondition, Tag("time")],
        Annotated["ConditionGroup", Tag("group")],
    ],
    Discriminator(_entry_kind),
]


class ConditionGroup(BaseModel):
    """AND/OR combination of conditions, evaluated in declared order."""

    model_config = ConfigDict(frozen=True)

    operator: LogicalOperator = LogicalOperator.AND
    conditions: List[ConditionEntry] = Field(..., min_length=1)

    @field_validator("operator", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    def iter_conditions(self) -> Iterator[_ConditionBase]:
        for item in self.conditions:
            if isinstance(item, ConditionGroup):
                yield from item.iter_conditions()
            else:
                yield item

    def fields(self) -> List[str]:
        seen: List[str] = []
        for condition in self.iter_conditions():
            if condition.field not in seen:
                seen.append(condition.field)
        return seen


ConditionGroup.model_rebuild()


class ScoringConfig(BaseModel):
    base_score: float = 0.0
    condition_weights: Dict[str, float] = Field(default_factory=dict)


class RuleActions(BaseModel):
    primary_action: RuleAction = RuleAction.RECOMMEND
    secondary_actions: List[RuleAction] = Field(default_factory=list)
    notifications: List[NotificationChannel] = Field(default_factory=lambda: [NotificationChannel.DASHBOARD])


class RuleDraft(BaseModel):
    """User-editable part of a rule (create / update / dry-run payloads)."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    priority: int = Field(1, ge=1, le=3, description="1=high, 2=medium, 3=low")
    status: RuleStatus = RuleStatus.DRAFT
    conditions: ConditionGroup
    scoring_config: ScoringConfig = Field(default_factory=ScoringConfig)
    actions: RuleActions = Field(default_factory=RuleActions)
    tags: List[str] = Field(default_factory=list)
    is_public: bool = False

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise MalformedRule("rule name must not be blank")
        return value

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: List[str]) -> List[str]:
        tags: List[str] = []
        for tag in value:
            tag = tag.strip().lower()
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    @model_validator(mode="after")
    def _check_weights(self) -> "RuleDraft":
        referenced = set(self.conditions.fields())
        unknown = sorted(set(self.scoring_config.condition_weights) - referenced)
        if unknown:
            raise MalformedRule(f"condition_weights reference fields without a condition: {unknown}")
        return self


class Rule(RuleDraft):
    id: str
    execution_count: int = Field(0, ge=0)
    success_count: int = Field(0, ge=0)
    last_executed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = Field(1, ge=1)


def parse_rule_draft(payload: Mapping[str, Any]) -> RuleDraft:
    """Validate a raw rule payload, raising MalformedRule with every problem found."""
    try:
        return RuleDraft.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'rule'}: {error['msg']}"
            for error in exc.errors()
        )
        raise MalformedRule(problems) from exc


@dataclass
class StockSnapshot:
    """Everything known about one symbol at evaluation time."""

    symbol: str
    current_price: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: float = 0.0
    high: float = 0.0
    low: float = 0.0
    open: float = 0.0
    previous_close: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    indicators: Dict[str, Optional[float]] = field(default_factory=dict)
    fundamentals: Dict[str, Any] = field(default_factory=dict)
    profile: Dict[str, Any] = field(default_factory=dict)
    events: Dict[str, Union[date, datetime, str, None]] = field(default_factory=dict)

    def lookup(self, kind: str, name: str) -> Any:
        if kind == "technical":
            return self.indicators.get(name)
        if kind == "fundamental":
            return self.fundamentals.get(name)
        if kind == "market":
            if name in MARKET_NUMERIC_FIELDS and name != "market_cap":
                return getattr(self, name)
            return self.profile.get(name)
        if kind == "time":
            return self.events.get(name)
        raise KeyError(f"unknown condition type '{kind}'")

    @property
    def sector(self) -> Optional[str]:
        return self.profile.get("sector")


@dataclass(frozen=True)
class ConditionOutcome:
    field: str
    type: str
    operator: str
    expected: Any
    actual: Any
    passed: bool


@dataclass
class EvaluationResult:
    matched: bool
    matched_conditions: List[str]
    condition_score: float
    outcomes: List[ConditionOutcome]


@dataclass
class ScoreBreakdown:
    symbol: str
    overall_score: int
    momentum_score: int
    volume_score: int
    technical_score: int
    news_score: int
    analyst_score: int
    sector: str
    price: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0
    volume: float = 0.0
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "score": self.overall_score,
            "price": self.price,
            "change": self.change,
            "change_percent": self.change_percent,
            "volume": self.volume,
            "momentum_score": self.momentum_score,
            "volume_score": self.volume_score,
            "technical_score": self.technical_score,
            "news_score": self.news_score,
            "analyst_score": self.analyst_score,
            "sector": self.sector,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass
class SymbolMatch:
    symbol: str
    score: float
    matched_conditions: List[str]
    reasoning: str
    current_price: float
    price_change: float

    def to_payload(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "score": round(self.score, 2),
            "matched_conditions": list(self.matched_conditions),
            "current_price": self.current_price,
            "price_change": self.price_change,
            "reason": self.reasoning,
        }


@dataclass
class MatchResult:
    rule_id: str
    executed_at: datetime
    total_evaluated: int
    matching_count: int
    results: List[SymbolMatch]
    partial_matches: List[SymbolMatch] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    execution_time_ms: int = 0
    timed_out: bool = False

    @property
    def symbols(self) -> List[str]:
        return [match.symbol for match in self.results]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "executed_at": self.executed_at.isoformat(),
            "total_stocks_evaluated": self.total_evaluated,
            "matching_stocks": self.matching_count,
            "results": [match.to_payload() for match in self.results],
            "partial_matches": [match.to_payload() for match in self.partial_matches],
            "failed": list(self.failed),
            "execution_time_ms": self.execution_time_ms,
            "timed_out": self.timed_out,
            "success": True,
        }
