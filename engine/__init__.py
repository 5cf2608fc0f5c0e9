"""Rule matching and scoring engine components."""

from .analyzer import SCORE_WEIGHTS, average_volume, rank_scores, score_snapshot  # noqa: F401
from .matcher import match_rule  # noqa: F401
from .models import (  # noqa: F401
    ConditionGroup,
    MalformedRule,
    MatchResult,
    Rule,
    RuleDraft,
    ScoreBreakdown,
    StockSnapshot,
    parse_rule_draft,
)
from .rules import describe, evaluate, validate_rule_definition  # noqa: F401
from .templates import RULE_TEMPLATES, list_templates, rule_from_template  # noqa: F401

__all__ = [
    "ConditionGroup",
    "MalformedRule",
    "MatchResult",
    "RULE_TEMPLATES",
    "Rule",
    "RuleDraft",
    "SCORE_WEIGHTS",
    "ScoreBreakdown",
    "StockSnapshot",
    "average_volume",
    "describe",
    "evaluate",
    "list_templates",
    "match_rule",
    "parse_rule_draft",
    "rank_scores",
    "rule_from_template",
    "score_snapshot",
    "validate_rule_definition",
]
