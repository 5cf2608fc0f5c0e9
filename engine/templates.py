"""Built-in rule templates users can start from."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .models import ConditionGroup, RuleActions, RuleDraft, RuleStatus, ScoringConfig


class RuleTemplate(BaseModel):
    id: str
    name: str
    description: str
    category: str
    conditions: ConditionGroup
    scoring_config: ScoringConfig
    actions: RuleActions = Field(default_factory=RuleActions)
    is_system: bool = True


def _template(
    template_id: str,
    name: str,
    description: str,
    category: str,
    conditions: List[Dict[str, Any]],
    weights: Dict[str, float],
    actions: Dict[str, Any],
) -> RuleTemplate:
    return RuleTemplate.model_validate(
        {
            "id": template_id,
            "name": name,
            "description": description,
            "category": category,
            "conditions": {"operator": "AND", "conditions": conditions},
            "scoring_config": {"base_score": 100, "condition_weights": weights},
            "actions": actions,
        }
    )


RULE_TEMPLATES: List[RuleTemplate] = [
    _template(
        "1",
        "Value Stock Picker",
        "Find undervalued stocks with strong fundamentals",
        "value",
        [
            {"field": "pe_ratio", "operator": "less_than", "value": 15, "type": "fundamental"},
            {"field": "pb_ratio", "operator": "less_than", "value": 2, "type": "fundamental"},
            {"field": "debt_to_equity", "operator": "less_than", "value": 0.5, "type": "fundamental"},
            {"field": "roe", "operator": "greater_than", "value": 10, "type": "fundamental"},
        ],
        {"pe_ratio": 25, "pb_ratio": 20, "debt_to_equity": 20, "roe": 35},
        {
            "primary_action": "recommend",
            "secondary_actions": ["add_to_watchlist"],
            "notifications": ["dashboard", "email"],
        },
    ),
    _template(
        "2",
        "Momentum Trader",
        "Identify stocks with strong momentum signals",
        "momentum",
        [
            {"field": "rsi", "operator": "greater_than", "value": 70, "type": "technical"},
            {"field": "price_vs_sma20", "operator": "greater_than", "value": 1.05, "type": "technical"},
            {"field": "volume_ratio", "operator": "greater_than", "value": 1.5, "type": "technical"},
            {"field": "price_change_1d", "operator": "greater_than", "value": 5, "type": "technical"},
        ],
        {"rsi": 30, "price_vs_sma20": 25, "volume_ratio": 25, "price_change_1d": 20},
        {"primary_action": "alert", "secondary_actions": ["recommend"], "notifications": ["push", "dashboard"]},
    ),
    _template(
        "3",
        "Dividend Investor",
        "Find high-quality dividend-paying stocks",
        "dividend",
        [
            {"field": "dividend_yield", "operator": "greater_than", "value": 3, "type": "fundamental"},
            {"field": "payout_ratio", "operator": "less_than", "value": 60, "type": "fundamental"},
            {"field": "dividend_growth_5y", "operator": "greater_than", "value": 5, "type": "fundamental"},
            {"field": "market_cap", "operator": "greater_than", "value": 1_000_000_000, "type": "market"},
        ],
        {"dividend_yield": 30, "payout_ratio": 25, "dividend_growth_5y": 25, "market_cap": 20},
        {
            "primary_action": "add_to_watchlist",
            "secondary_actions": ["recommend"],
            "notifications": ["email", "dashboard"],
        },
    ),
    _template(
        "4",
        "Growth Stock Hunter",
        "Target high-growth companies with strong fundamentals",
        "growth",
        [
            {"field": "revenue_growth", "operator": "greater_than", "value": 20, "type": "fundamental"},
            {"field": "eps_growth", "operator": "greater_than", "value": 15, "type": "fundamental"},
            {"field": "roe", "operator": "greater_than", "value": 15, "type": "fundamental"},
            {"field": "sector", "operator": "equals", "value": "Technology", "type": "market"},
        ],
        {"revenue_growth": 35, "eps_growth": 30, "roe": 25, "sector": 10},
        {
            "primary_action": "recommend",
            "secondary_actions": ["add_to_watchlist", "add_to_portfolio"],
            "notifications": ["dashboard", "email", "push"],
        },
    ),
    _template(
        "5",
        "Earnings Surprise",
        "Catch stocks with positive earnings surprises",
        "earnings",
        [
            {"field": "earnings_surprise", "operator": "greater_than", "value": 5, "type": "fundamental"},
            {"field": "earnings_date", "operator": "equals", "value": "recent", "type": "time"},
            {"field": "volume_ratio", "operator": "greater_than", "value": 1.2, "type": "technical"},
            {"field": "price_change_1d", "operator": "greater_than", "value": 2, "type": "technical"},
        ],
        {"earnings_surprise": 40, "earnings_date": 20, "volume_ratio": 20, "price_change_1d": 20},
        {"primary_action": "alert", "secondary_actions": ["recommend"], "notifications": ["push", "email"]},
    ),
    _template(
        "6",
        "Low Volatility",
        "Find stable stocks with low volatility",
        "stability",
        [
            {"field": "volatility_30d", "operator": "less_than", "value": 20, "type": "technical"},
            {"field": "beta", "operator": "less_than", "value": 0.8, "type": "fundamental"},
            {"field": "dividend_yield", "operator": "greater_than", "value": 2, "type": "fundamental"},
            {"field": "market_cap", "operator": "greater_than", "value": 5_000_000_000, "type": "market"},
        ],
        {"volatility_30d": 30, "beta": 25, "dividend_yield": 25, "market_cap": 20},
        {"primary_action": "add_to_watchlist", "secondary_actions": ["recommend"], "notifications": ["dashboard"]},
    ),
]


def list_templates(category: Optional[str] = None) -> List[RuleTemplate]:
    if not category or category == "all":
        return list(RULE_TEMPLATES)
    return [template for template in RULE_TEMPLATES if template.category == category]


def get_template(template_id: str) -> RuleTemplate:
    for template in RULE_TEMPLATES:
        if template.id == template_id:
            return template
    raise KeyError(template_id)


def rule_from_template(template_id: str, name: Optional[str] = None) -> RuleDraft:
    """Draft rule pre-filled from a template, ready for the rule store."""
    template = get_template(template_id)
    return RuleDraft(
        name=name or template.name,
        description=template.description,
        status=RuleStatus.DRAFT,
        conditions=template.conditions,
        scoring_config=template.scoring_config,
        actions=template.actions,
        tags=[template.category],
    )
