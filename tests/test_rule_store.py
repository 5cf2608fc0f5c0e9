"""
Rule store lifecycle for the in-memory and JSON-file implementations.
"""

import json
import threading
from pathlib import Path

import pytest

from datahub.rule_store import InMemoryRuleStore, JsonRuleStore, RuleNotFound
from engine.models import RuleStatus, parse_rule_draft


def _draft(name="Value", priority=1, status="active", tags=("value",)):
    return parse_rule_draft(
        {
            "name": name,
            "priority": priority,
            "status": status,
            "tags": list(tags),
            "conditions": {
                "operator": "AND",
                "conditions": [{"field": "pe_ratio", "operator": "less_than", "value": 15, "type": "fundamental"}],
            },
            "scoring_config": {"base_score": 10, "condition_weights": {"pe_ratio": 5}},
        }
    )


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryRuleStore()
    return JsonRuleStore(tmp_path / "rules.json")


# ── lifecycle ───────────────────────────────────────────────────────────────

class TestLifecycle:
    def test_create_sets_metadata(self, store):
        rule = store.create_rule(_draft())
        assert rule.id
        assert rule.version == 1
        assert rule.execution_count == 0
        assert rule.success_count == 0
        assert rule.last_executed_at is None
        assert store.get_rule(rule.id) == rule

    def test_update_bumps_version(self, store):
        rule = store.create_rule(_draft())
        updated = store.update_rule(rule.id, _draft(name="Deep value", priority=2))
        assert updated.version == 2
        assert updated.name == "Deep value"
        assert updated.priority == 2
        assert updated.created_at == rule.created_at
        assert updated.updated_at >= rule.updated_at

    def test_update_keeps_execution_stats(self, store):
        rule = store.create_rule(_draft())
        store.increment_execution_stats(rule.id, matched=True)
        updated = store.update_rule(rule.id, _draft(name="Renamed"))
        assert updated.execution_count == 1
        assert updated.success_count == 1

    def test_archive(self, store):
        rule = store.create_rule(_draft())
        archived = store.archive_rule(rule.id)
        assert archived.status == RuleStatus.ARCHIVED
        assert store.get_rule(rule.id).status == RuleStatus.ARCHIVED

    def test_unknown_rule(self, store):
        with pytest.raises(RuleNotFound):
            store.get_rule("missing")
        with pytest.raises(RuleNotFound):
            store.update_rule("missing", _draft())
        with pytest.raises(RuleNotFound):
            store.archive_rule("missing")
        with pytest.raises(RuleNotFound):
            store.increment_execution_stats("missing", matched=False)

    def test_not_found_is_a_key_error(self):
        with pytest.raises(KeyError):
            InMemoryRuleStore().get_rule("missing")


# ── listing ─────────────────────────────────────────────────────────────────

class TestListing:
    def test_filters_and_priority_order(self, store):
        low = store.create_rule(_draft(name="Low", priority=3, tags=("growth",)))
        high = store.create_rule(_draft(name="High", priority=1))
        draft = store.create_rule(_draft(name="Draft", priority=2, status="draft"))

        assert [rule.id for rule in store.list_rules()] == [high.id, draft.id, low.id]
        assert [rule.id for rule in store.list_rules(status=RuleStatus.DRAFT)] == [draft.id]
        assert [rule.id for rule in store.list_rules(priority=3)] == [low.id]
        assert [rule.id for rule in store.list_rules(tag="GROWTH")] == [low.id]


# ── execution statistics ────────────────────────────────────────────────────

class TestExecutionStats:
    def test_counters(self, store):
        rule = store.create_rule(_draft())
        store.increment_execution_stats(rule.id, matched=True)
        store.increment_execution_stats(rule.id, matched=False)
        current = store.get_rule(rule.id)
        assert current.execution_count == 2
        assert current.success_count == 1
        assert current.last_executed_at is not None

    def test_concurrent_increments_are_not_lost(self, store):
        rule = store.create_rule(_draft())

        def bump():
            for _ in range(25):
                store.increment_execution_stats(rule.id, matched=True)

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert store.get_rule(rule.id).execution_count == 100


# ── JSON persistence ────────────────────────────────────────────────────────

class TestJsonPersistence:
    def test_reload_from_disk(self, tmp_path):
        path = tmp_path / "nested" / "rules.json"
        first = JsonRuleStore(path)
        rule = first.create_rule(_draft())
        first.increment_execution_stats(rule.id, matched=True)

        reloaded = JsonRuleStore(path).get_rule(rule.id)
        assert reloaded.name == rule.name
        assert reloaded.execution_count == 1
        assert reloaded.conditions.model_dump() == rule.conditions.model_dump()

    def test_file_is_plain_json(self, tmp_path):
        path = tmp_path / "rules.json"
        JsonRuleStore(path).create_rule(_draft())
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["rules"][0]["conditions"]["conditions"][0]["type"] == "fundamental"

    def test_failed_write_leaves_memory_and_disk_unchanged(self, tmp_path, monkeypatch):
        path = tmp_path / "rules.json"
        store = JsonRuleStore(path)
        rule = store.create_rule(_draft(name="Kept"))
        on_disk = path.read_text(encoding="utf-8")

        def disk_full(self, *args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(Path, "write_text", disk_full)

        with pytest.raises(OSError):
            store.create_rule(_draft(name="Lost"))
        with pytest.raises(OSError):
            store.update_rule(rule.id, _draft(name="Renamed"))
        with pytest.raises(OSError):
            store.archive_rule(rule.id)
        with pytest.raises(OSError):
            store.increment_execution_stats(rule.id, matched=True)

        monkeypatch.undo()
        assert [r.name for r in store.list_rules()] == ["Kept"]
        current = store.get_rule(rule.id)
        assert current.version == 1
        assert current.status == RuleStatus.ACTIVE
        assert current.execution_count == 0
        assert path.read_text(encoding="utf-8") == on_disk
