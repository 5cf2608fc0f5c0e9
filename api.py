"""规则匹配与评分服务的 FastAPI 入口。"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import env  # noqa: F401

from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from datahub.providers import ProviderError
from datahub.rule_store import JsonRuleStore, RuleNotFound, RuleStore
from datahub.scanner import RuleScanner
from datahub.universe import default_universe, normalize_symbols
from engine.models import MalformedRule, Rule, RuleDraft, RuleStatus
from engine.rules import validate_rule_definition
from engine.templates import list_templates
from infra.settings import Settings

logger = logging.getLogger(__name__)


class ExecuteRequest(BaseModel):
    symbols: Optional[List[str]] = Field(None, description="股票池，缺省时使用默认股票池")
    limit: Optional[int] = Field(None, ge=1, le=500, description="返回命中数量上限")


class RuleTestRequest(ExecuteRequest):
    rule: Dict[str, Any] = Field(..., description="未保存的规则定义")


def _ok(data: Any, **extra: Any) -> Dict[str, Any]:
    return {"success": True, "data": jsonable_encoder(data), **extra}


def _rule_payload(rule: Rule) -> Dict[str, Any]:
    return rule.model_dump(mode="json")


def create_app(
    store: Optional[RuleStore] = None,
    scanner: Optional[RuleScanner] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """组装服务实例并注册路由；测试可注入内存存储与假行情。"""

    settings = settings or Settings.from_env()
    store = store or JsonRuleStore(settings.rule_store_path)
    scanner = scanner or RuleScanner.from_settings(settings)

    app = FastAPI(
        title="Stock Rule Engine API",
        version="1.0.0",
        description="规则选股与综合评分接口",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _validate(payload: Dict[str, Any]) -> RuleDraft:
        try:
            return validate_rule_definition(payload)
        except MalformedRule as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    def _get(rule_id: str) -> Rule:
        try:
            return store.get_rule(rule_id)
        except RuleNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    def _universe(symbols: Optional[List[str]]) -> List[str]:
        return normalize_symbols(symbols) or default_universe(settings.scoring_universe_size)

    @app.get("/healthz")
    async def health_check() -> Dict[str, str]:
        return {"status": "ok"}

    # 以下路由同步读写规则存储，由 FastAPI 在线程池中执行
    @app.get("/rules")
    def list_rules(
        status: Optional[str] = None,
        priority: Optional[int] = None,
        tag: Optional[str] = None,
    ) -> Dict[str, Any]:
        status_filter: Optional[RuleStatus] = None
        if status and status != "all":
            try:
                status_filter = RuleStatus(status)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=f"未知的规则状态：{status}") from exc
        rules = store.list_rules(status=status_filter, priority=priority, tag=tag)
        return _ok([_rule_payload(rule) for rule in rules], total=len(rules))

    @app.post("/rules", status_code=201)
    def create_rule(payload: Dict[str, Any]) -> Dict[str, Any]:
        rule = store.create_rule(_validate(payload))
        return _ok(_rule_payload(rule))

    @app.post("/rules/test")
    async def test_rule(request: RuleTestRequest) -> Dict[str, Any]:
        draft = _validate(request.rule)
        preview = Rule(**draft.model_dump(), id="preview")
        try:
            result = await scanner.scan_rule(preview, _universe(request.symbols), limit=request.limit)
        except ProviderError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _ok(result.to_payload())

    @app.get("/rules/{rule_id}")
    def get_rule(rule_id: str) -> Dict[str, Any]:
        return _ok(_rule_payload(_get(rule_id)))

    @app.put("/rules/{rule_id}")
    def update_rule(rule_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        draft = _validate(payload)
        try:
            rule = store.update_rule(rule_id, draft)
        except RuleNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _ok(_rule_payload(rule))

    @app.delete("/rules/{rule_id}")
    def archive_rule(rule_id: str) -> Dict[str, Any]:
        try:
            rule = store.archive_rule(rule_id)
        except RuleNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _ok(_rule_payload(rule))

    @app.post("/rules/{rule_id}/execute")
    async def execute_rule(rule_id: str, request: Optional[ExecuteRequest] = None) -> Dict[str, Any]:
        request = request or ExecuteRequest()
        rule = _get(rule_id)
        if rule.status == RuleStatus.ARCHIVED:
            raise HTTPException(status_code=409, detail=f"规则 {rule_id} 已归档，不能执行")
        try:
            result = await scanner.scan_rule(rule, _universe(request.symbols), limit=request.limit, store=store)
        except ProviderError as exc:
            logger.error("规则 %s 执行失败：%s", rule_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _ok(result.to_payload())

    @app.get("/templates")
    async def get_templates(category: Optional[str] = None) -> Dict[str, Any]:
        templates = list_templates(category)
        return _ok([template.model_dump(mode="json") for template in templates])

    @app.get("/scoring/matrix")
    async def scoring_matrix(symbols: Optional[str] = None) -> Dict[str, Any]:
        tickers = _universe(symbols.split(",") if symbols else None)
        try:
            scores = await scanner.score_universe(tickers)
        except ProviderError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        payload = [score.to_payload() for score in scores]
        return _ok(payload, total_stocks=len(payload))

    @app.get("/scoring/stock/{symbol}")
    async def stock_score(symbol: str) -> Dict[str, Any]:
        try:
            score = await scanner.score_symbol(symbol)
        except ProviderError as exc:
            raise HTTPException(status_code=404, detail=f"未找到 {symbol.upper()} 的行情数据") from exc
        return _ok(score.to_payload())

    return app


app = create_app()
