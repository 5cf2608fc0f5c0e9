"""
规则存储。

默认采用 JSON 文件持久化，测试与临时场景可用内存实现；两者共享同一接口，
执行统计的递增在单把锁内完成，保证并发执行时计数不丢失。
"""

from __future__ import annotations

import abc
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from engine.models import Rule, RuleDraft, RuleStatus

logger = logging.getLogger(__name__)

RULE_STORE_PATH = Path("data/rules.json")


class RuleNotFound(KeyError):
    """指定 ID 的规则不存在。"""

    def __init__(self, rule_id: str) -> None:
        super().__init__(rule_id)
        self.rule_id = rule_id

    def __str__(self) -> str:
        return f"rule '{self.rule_id}' not found"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RuleStore(abc.ABC):
    """规则的增删改查与执行统计。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rules: Dict[str, Rule] = {}

    def _persist(self, rules: Dict[str, Rule]) -> None:
        """在持有锁的情况下把整份规则写回存储；内存实现无需落盘。"""

    def _commit(self, rule: Rule) -> None:
        # 先写副本，落盘成功后才替换内存中的规则
        rules = {**self._rules, rule.id: rule}
        self._persist(rules)
        self._rules = rules

    def get_rule(self, rule_id: str) -> Rule:
        with self._lock:
            try:
                return self._rules[rule_id]
            except KeyError:
                raise RuleNotFound(rule_id) from None

    def list_rules(
        self,
        status: Optional[RuleStatus] = None,
        priority: Optional[int] = None,
        tag: Optional[str] = None,
    ) -> List[Rule]:
        """按优先级、创建时间排序返回规则，可选按状态 / 优先级 / 标签过滤。"""
        with self._lock:
            rules = list(self._rules.values())
        if status is not None:
            rules = [rule for rule in rules if rule.status == status]
        if priority is not None:
            rules = [rule for rule in rules if rule.priority == priority]
        if tag:
            needle = tag.strip().lower()
            rules = [rule for rule in rules if needle in rule.tags]
        return sorted(rules, key=lambda rule: (rule.priority, rule.created_at, rule.id))

    def create_rule(self, draft: RuleDraft) -> Rule:
        now = _now()
        rule = Rule(**draft.model_dump(), id=uuid.uuid4().hex, created_at=now, updated_at=now)
        with self._lock:
            self._commit(rule)
        logger.info("新建规则 %s（%s）", rule.id, rule.name)
        return rule

    def update_rule(self, rule_id: str, draft: RuleDraft) -> Rule:
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise RuleNotFound(rule_id)
            updated = Rule(
                **{
                    **current.model_dump(),
                    **draft.model_dump(),
                    "version": current.version + 1,
                    "updated_at": _now(),
                }
            )
            self._commit(updated)
        logger.info("更新规则 %s 至版本 %d", rule_id, updated.version)
        return updated

    def archive_rule(self, rule_id: str) -> Rule:
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise RuleNotFound(rule_id)
            archived = current.model_copy(update={"status": RuleStatus.ARCHIVED, "updated_at": _now()})
            self._commit(archived)
        logger.info("归档规则 %s", rule_id)
        return archived

    def increment_execution_stats(self, rule_id: str, matched: bool) -> Rule:
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise RuleNotFound(rule_id)
            bumped = current.model_copy(
                update={
                    "execution_count": current.execution_count + 1,
                    "success_count": current.success_count + (1 if matched else 0),
                    "last_executed_at": _now(),
                }
            )
            self._commit(bumped)
        return bumped


class InMemoryRuleStore(RuleStore):
    """进程内规则存储。"""


class JsonRuleStore(RuleStore):
    """JSON 文件规则存储，每次变更整体重写文件。"""

    def __init__(self, path: Optional[Path] = None) -> None:
        super().__init__()
        self.path = Path(path or RULE_STORE_PATH)
        self._rules = self._load()

    def _load(self) -> Dict[str, Rule]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        rules = [Rule.model_validate(item) for item in data.get("rules") or []]
        logger.info("从 %s 载入 %d 条规则", self.path, len(rules))
        return {rule.id: rule for rule in rules}

    def _persist(self, rules: Dict[str, Rule]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "rules": [rule.model_dump(mode="json") for rule in rules.values()],
            "updated_at": _now().isoformat(),
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)
