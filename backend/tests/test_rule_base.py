"""ルール基盤（設定アクセス・評価結果の集約）のユニットテスト"""

import logging
from datetime import date, datetime

import pytest

from docrisk.core.exceptions import RuleConfigurationError
from docrisk.models import RiskSeverity, RuleScope
from docrisk.services.rules.base import (
    OutcomeStatus,
    RuleConfig,
    RuleOutcome,
    fold_outcomes,
    run_rule,
    severity_for_score,
)

# ============================================================
# 重大度マッピング
# ============================================================


class TestSeverityForScore:
    """severity_for_scoreのテスト"""

    @pytest.mark.parametrize(
        "score,severity",
        [
            (0, RiskSeverity.LOW),
            (30, RiskSeverity.LOW),
            (30.01, RiskSeverity.MEDIUM),
            (65, RiskSeverity.MEDIUM),
            (65.5, RiskSeverity.HIGH),
            (100, RiskSeverity.HIGH),
        ],
    )
    def test_tiers(self, score, severity):
        assert severity_for_score(score) is severity


# ============================================================
# RuleConfig
# ============================================================


class TestRuleConfig:
    """RuleConfigのテスト"""

    def test_defaults_for_missing_keys(self):
        config = RuleConfig({}, "X")
        assert config.get_float("tolerance", 0.01) == 0.01
        assert config.get_int("days", 90) == 90
        assert config.get_str("feature") is None
        assert config.get_list("types", ["invoice"]) == ["invoice"]
        assert config.get_bool("strict", False) is False
        assert config.get_date("since") is None

    def test_none_value_treated_as_missing(self):
        config = RuleConfig({"threshold": None}, "X")
        assert "threshold" not in config
        assert config.get_int("threshold", 5) == 5

    def test_typed_values(self):
        config = RuleConfig(
            {
                "tolerance": "0.05",
                "days": 30.0,
                "feature": "f",
                "types": ("a", "b"),
                "strict": True,
                "since": "2025-01-31",
            },
            "X",
        )
        assert config.get_float("tolerance", 0) == 0.05
        assert config.get_int("days", 0) == 30
        assert config.get_str("feature") == "f"
        assert config.get_list("types") == ["a", "b"]
        assert config.get_bool("strict", False) is True
        assert config.get_date("since") == date(2025, 1, 31)

    def test_date_from_datetime(self):
        config = RuleConfig({"since": datetime(2025, 1, 2, 3, 4)}, "X")
        assert config.get_date("since") == date(2025, 1, 2)

    @pytest.mark.parametrize(
        "values,getter",
        [
            ({"v": "abc"}, lambda c: c.get_float("v", 0)),
            ({"v": True}, lambda c: c.get_float("v", 0)),
            ({"v": 1.5}, lambda c: c.get_int("v", 0)),
            ({"v": 3}, lambda c: c.get_str("v")),
            ({"v": "yes"}, lambda c: c.get_bool("v", False)),
            ({"v": "31/01/2025"}, lambda c: c.get_date("v")),
            ({"v": "invoice"}, lambda c: c.get_list("v")),
        ],
    )
    def test_wrong_type_raises(self, values, getter):
        with pytest.raises(RuleConfigurationError) as exc_info:
            getter(RuleConfig(values, "INV_X"))
        assert exc_info.value.detail["rule_code"] == "INV_X"

    def test_to_dict_is_copy(self):
        source = {"a": 1}
        config = RuleConfig(source, "X")
        config.to_dict()["a"] = 2
        assert source == {"a": 1}


# ============================================================
# RuleOutcome / RuleEvaluation
# ============================================================


class TestRuleOutcome:
    """RuleOutcomeのテスト"""

    def test_triggered_carries_rule_weight(self, make_rule):
        rule = make_rule("INV_X", weight=25, severity=RiskSeverity.HIGH)
        outcome = RuleOutcome.triggered(rule, "evidence", amount=10)
        assert outcome.is_triggered
        assert outcome.weight == 25
        assert outcome.severity is RiskSeverity.HIGH
        assert outcome.details == {"amount": 10}

    def test_to_flag(self, make_rule):
        outcome = RuleOutcome.triggered(make_rule("INV_X"), "why", k=1)
        flag = outcome.to_flag()
        assert flag.code == "INV_X"
        assert flag.evidence == "why"
        assert flag.details == {"k": 1}

    def test_skipped_and_failed_not_triggered(self, make_rule):
        rule = make_rule("INV_X")
        assert not RuleOutcome.skipped(rule, "missing").is_triggered
        assert not RuleOutcome.failed(rule, "boom").is_triggered


class TestFoldOutcomes:
    """fold_outcomesのテスト"""

    def test_fold_preserves_order_and_partitions(self, make_rule):
        outcomes = [
            RuleOutcome.triggered(make_rule("B", weight=10), "b"),
            RuleOutcome.skipped(make_rule("C"), "missing"),
            RuleOutcome.triggered(make_rule("A", weight=5), "a"),
            RuleOutcome.failed(make_rule("D"), "boom"),
            RuleOutcome.not_triggered(make_rule("E")),
        ]
        evaluation = fold_outcomes(RuleScope.DOCUMENT, outcomes)

        assert evaluation.triggered_codes == ["B", "A"]
        assert [t.weight for t in evaluation.triggered] == [10, 5]
        assert evaluation.skipped_codes == ["C"]
        assert evaluation.failed_codes == ["D"]
        assert [f.code for f in evaluation.flags] == ["B", "A"]
        assert evaluation.get("E").status is OutcomeStatus.NOT_TRIGGERED
        assert evaluation.get("Z") is None

    def test_fold_empty(self):
        evaluation = fold_outcomes(RuleScope.COMPANY, [])
        assert evaluation.triggered == []
        assert evaluation.to_dict()["scope"] == "company"


class TestRunRule:
    """run_ruleのテスト"""

    def test_returns_handler_outcome_with_timing(self, make_rule):
        rule = make_rule("INV_X", config={"threshold": 2})

        def handler(rule, config, ctx):
            assert config.get_int("threshold", 0) == 2
            return RuleOutcome.triggered(rule, f"ctx={ctx}")

        outcome = run_rule(rule, handler, "context")
        assert outcome.is_triggered
        assert outcome.evidence == "ctx=context"
        assert outcome.execution_time_ms >= 0

    def test_exception_becomes_failed_outcome(self, make_rule, caplog):
        rule = make_rule("INV_X")

        def handler(rule, config, ctx):
            raise ConnectionError("lookup timed out")

        with caplog.at_level(logging.WARNING):
            outcome = run_rule(rule, handler, None, entity_id="ent_001")

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error == "lookup timed out"
        record = next(r for r in caplog.records if r.levelno == logging.WARNING)
        assert record.rule_code == "INV_X"
        assert record.entity_id == "ent_001"
        assert record.error_code == "RULE_EXECUTION_ERROR"

    def test_configuration_error_keeps_its_code(self, make_rule, caplog):
        rule = make_rule("INV_X", config={"days": "many"})

        def handler(rule, config, ctx):
            config.get_int("days", 30)

        with caplog.at_level(logging.WARNING):
            outcome = run_rule(rule, handler, None)

        assert outcome.status is OutcomeStatus.FAILED
        record = next(r for r in caplog.records if r.levelno == logging.WARNING)
        assert record.error_code == "RULE_CONFIGURATION_ERROR"
