"""データモデルのユニットテスト"""

from datetime import date, datetime

import pytest
from pydantic import ValidationError

from docrisk.models import (
    DocumentFields,
    DocumentRiskScore,
    LineItem,
    RiskFlag,
    RiskRule,
    RiskSeverity,
    RuleScope,
)


class TestRiskRule:
    """RiskRuleのテスト"""

    def test_defaults(self):
        rule = RiskRule(scope=RuleScope.DOCUMENT, code="inv_x", weight=10)
        assert rule.code == "INV_X"
        assert rule.is_global is True
        assert rule.is_active is True
        assert rule.severity is RiskSeverity.MEDIUM
        assert rule.config == {}
        assert len(rule.rule_id) == 32

    @pytest.mark.parametrize("weight", [0, -1])
    def test_weight_must_be_positive(self, weight):
        with pytest.raises(ValidationError):
            RiskRule(scope=RuleScope.DOCUMENT, code="INV_X", weight=weight)

    def test_scope_from_string(self):
        rule = RiskRule(scope="company", code="COMP_X", weight=1, owner_id="ent_001")
        assert rule.scope is RuleScope.COMPANY
        assert rule.is_global is False

    def test_frozen(self):
        rule = RiskRule(scope=RuleScope.DOCUMENT, code="INV_X", weight=1)
        with pytest.raises(ValidationError):
            rule.weight = 5


class TestDocumentFields:
    """DocumentFields / LineItemのテスト"""

    def test_effective_total(self):
        assert LineItem(line_total=50, quantity=2, unit_price=30).effective_total == 50
        assert LineItem(quantity=2, unit_price=30).effective_total == 60
        assert LineItem(quantity=2).effective_total is None

    def test_negative_tax_rate_rejected(self):
        with pytest.raises(ValidationError):
            LineItem(line_total=10, tax_rate=-0.1)

    def test_has_counterparty(self, make_document):
        assert make_document().has_counterparty is True
        assert make_document(counterparty_name=None).has_counterparty is True
        assert (
            make_document(counterparty_name=None, counterparty_tax_id=None).has_counterparty
            is False
        )

    def test_identifiers_required(self):
        with pytest.raises(ValidationError):
            DocumentFields(document_id="", entity_id="ent_001", business_unit_id="bu_001")

    def test_iso_dates_parsed(self):
        doc = DocumentFields(
            document_id="doc_001",
            entity_id="ent_001",
            business_unit_id="bu_001",
            issue_date="2025-03-01",
        )
        assert doc.issue_date == date(2025, 3, 1)


class TestScores:
    """スコアモデルのテスト"""

    def test_score_bounds(self):
        with pytest.raises(ValidationError):
            DocumentRiskScore(
                document_id="doc_001",
                entity_id="ent_001",
                business_unit_id="bu_001",
                score=101,
                severity=RiskSeverity.HIGH,
                generated_at=datetime(2025, 3, 14),
            )

    def test_flag_serialization(self):
        flag = RiskFlag(code="INV_X", severity=RiskSeverity.HIGH, evidence="why")
        assert flag.model_dump(mode="json") == {
            "code": "INV_X",
            "severity": "high",
            "evidence": "why",
            "details": {},
        }
