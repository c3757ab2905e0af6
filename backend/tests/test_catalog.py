"""ルールカタログのユニットテスト"""

import logging

import pytest

from docrisk.core.exceptions import ResourceNotFoundError, RuleConfigurationError
from docrisk.core.logging import audit_log
from docrisk.models import RiskRule, RiskSeverity, RuleScope


def _insert_raw(sqlite_db, rule_id, code, weight, owner_id=None, config="{}"):
    sqlite_db.execute(
        """
        INSERT INTO risk_rules (rule_id, owner_id, scope, code, weight, severity,
                                is_active, config)
        VALUES (?, ?, 'document', ?, ?, 'medium', 1, ?)
        """,
        (rule_id, owner_id, code, weight, config),
    )


class TestListActiveRules:
    """list_active_rulesのテスト"""

    def test_empty_catalog(self, catalog):
        assert catalog.list_active_rules("ent_001", RuleScope.DOCUMENT) == []

    def test_global_rules_sorted_by_code(self, catalog, make_rule):
        catalog.save_rule(make_rule("INV_TOTAL_MISMATCH"))
        catalog.save_rule(make_rule("INV_DUE_BEFORE_ISSUE"))

        rules = catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)
        assert [r.code for r in rules] == ["INV_DUE_BEFORE_ISSUE", "INV_TOTAL_MISMATCH"]

    def test_entity_rule_overrides_global(self, catalog, make_rule):
        catalog.save_rule(make_rule("INV_TOTAL_MISMATCH", weight=10))
        catalog.save_rule(make_rule("INV_TOTAL_MISMATCH", weight=40, owner_id="ent_001"))

        own = catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)
        other = catalog.list_active_rules("ent_002", RuleScope.DOCUMENT)

        assert [(r.code, r.weight, r.owner_id) for r in own] == [
            ("INV_TOTAL_MISMATCH", 40, "ent_001")
        ]
        assert [(r.weight, r.owner_id) for r in other] == [(10, None)]

    def test_scope_filter(self, catalog, make_rule):
        catalog.save_rule(make_rule("INV_X"))
        catalog.save_rule(make_rule("COMP_X", scope=RuleScope.COMPANY))

        assert [r.code for r in catalog.list_active_rules(None, RuleScope.COMPANY)] == [
            "COMP_X"
        ]

    def test_inactive_rules_excluded(self, catalog, make_rule):
        catalog.save_rule(make_rule("INV_X", is_active=False))
        assert catalog.list_active_rules("ent_001", RuleScope.DOCUMENT) == []

    def test_inactive_entity_rule_does_not_hide_global(self, catalog, make_rule):
        catalog.save_rule(make_rule("INV_X", weight=10))
        catalog.save_rule(make_rule("INV_X", weight=40, owner_id="ent_001", is_active=False))

        rules = catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)
        assert [(r.weight, r.owner_id) for r in rules] == [(10, None)]

    def test_config_round_trips(self, catalog, make_rule):
        catalog.save_rule(
            make_rule("INV_MISSING_TAX_NUMBER", config={"document_types": ["invoice", "receipt"]})
        )
        rule = catalog.list_active_rules(None, RuleScope.DOCUMENT)[0]
        assert rule.config == {"document_types": ["invoice", "receipt"]}


class TestCaching:
    """キャッシュと無効化のテスト"""

    def test_results_are_cached(self, catalog, sqlite_db, make_rule):
        catalog.save_rule(make_rule("INV_X"))
        catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)

        # カタログを経由しない書き込みはTTL内では見えない
        _insert_raw(sqlite_db, "raw_1", "INV_Y", 5)
        rules = catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)
        assert [r.code for r in rules] == ["INV_X"]

        catalog.invalidate()
        rules = catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)
        assert [r.code for r in rules] == ["INV_X", "INV_Y"]

    def test_save_invalidates(self, catalog, make_rule):
        assert catalog.list_active_rules("ent_001", RuleScope.DOCUMENT) == []
        catalog.save_rule(make_rule("INV_X"))
        assert len(catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)) == 1

    def test_entity_save_only_invalidates_that_entity(self, catalog, make_rule):
        catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)
        catalog.list_active_rules("ent_002", RuleScope.DOCUMENT)

        catalog.save_rule(make_rule("INV_X", owner_id="ent_001"))

        assert catalog.cache.get(("ent_001", "document")) is None
        assert catalog.cache.get(("ent_002", "document")) == ()

    def test_delete_invalidates(self, catalog, make_rule):
        saved = catalog.save_rule(make_rule("INV_X"))
        catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)

        assert catalog.delete_rule(saved.rule_id) is True
        assert catalog.list_active_rules("ent_001", RuleScope.DOCUMENT) == []

    def test_delete_missing(self, catalog):
        assert catalog.delete_rule("missing") is False


class TestSaveRule:
    """save_ruleのテスト"""

    def test_upsert_keeps_rule_id(self, catalog, make_rule):
        first = catalog.save_rule(make_rule("INV_X", weight=10))
        second = catalog.save_rule(
            make_rule("INV_X", weight=20, severity=RiskSeverity.HIGH)
        )

        assert second.rule_id == first.rule_id
        stored = catalog.get_rule(first.rule_id)
        assert stored.weight == 20
        assert stored.severity is RiskSeverity.HIGH

    def test_same_code_different_owner_is_separate(self, catalog, make_rule):
        a = catalog.save_rule(make_rule("INV_X"))
        b = catalog.save_rule(make_rule("INV_X", owner_id="ent_001"))
        assert a.rule_id != b.rule_id

    def test_non_positive_weight_rejected(self, catalog):
        rule = RiskRule.model_construct(
            rule_id="r1",
            owner_id=None,
            scope=RuleScope.DOCUMENT,
            code="INV_X",
            description=None,
            weight=0.0,
            severity=RiskSeverity.LOW,
            is_active=True,
            config={},
        )
        with pytest.raises(RuleConfigurationError):
            catalog.save_rule(rule)

    def test_model_rejects_non_positive_weight(self, make_rule):
        with pytest.raises(ValueError):
            make_rule("INV_X", weight=-5)

    def test_code_normalized(self, catalog, make_rule):
        saved = catalog.save_rule(make_rule("  inv_x "))
        assert saved.code == "INV_X"

    def test_get_rule_missing(self, catalog):
        with pytest.raises(ResourceNotFoundError):
            catalog.get_rule("missing")


class TestConfigErrors:
    """不正なルール行の扱いのテスト"""

    def test_invalid_weight_skipped_and_reported(
        self, catalog, sqlite_db, caplog, monkeypatch
    ):
        monkeypatch.setattr(audit_log, "propagate", True)
        _insert_raw(sqlite_db, "good", "INV_GOOD", 10)
        _insert_raw(sqlite_db, "bad", "INV_BAD", -3)

        with caplog.at_level(logging.ERROR):
            rules = catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)

        assert [r.code for r in rules] == ["INV_GOOD"]
        assert "bad" in catalog.config_errors
        assert "weight" in catalog.config_errors["bad"]
        audit = [r for r in caplog.records if r.name == "docrisk.audit"]
        assert audit and audit[0].rule_code == "INV_BAD"
        assert audit[0].error_code == "RULE_CONFIGURATION_ERROR"

    def test_invalid_config_json_skipped(self, catalog, sqlite_db):
        _insert_raw(sqlite_db, "bad", "INV_BAD", 10, config="{not json")
        assert catalog.list_active_rules(None, RuleScope.DOCUMENT) == []
        assert "bad" in catalog.config_errors

    def test_invalid_entity_override_falls_back_to_global(self, catalog, sqlite_db):
        _insert_raw(sqlite_db, "global", "INV_X", 10)
        _insert_raw(sqlite_db, "override", "INV_X", 0, owner_id="ent_001")

        rules = catalog.list_active_rules("ent_001", RuleScope.DOCUMENT)
        assert [(r.rule_id, r.weight) for r in rules] == [("global", 10)]

    def test_get_rule_invalid_row(self, catalog, sqlite_db):
        _insert_raw(sqlite_db, "bad", "INV_BAD", 0)
        with pytest.raises(RuleConfigurationError):
            catalog.get_rule("bad")
