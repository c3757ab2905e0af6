"""取引先分析サービスのユニットテスト"""

from datetime import date, datetime

import pytest

from docrisk.core.exceptions import DataValidationError
from docrisk.services.counterparty import CounterpartyAnalysisService


@pytest.fixture
def service(store):
    return CounterpartyAnalysisService(store=store)


@pytest.fixture
def history(store, make_transaction):
    """1000と2000の2件の取引履歴"""
    store.save_transaction(make_transaction(1000.0, datetime(2025, 1, 1, 10, 0)))
    store.save_transaction(make_transaction(2000.0, datetime(2025, 1, 5, 10, 0)))


class TestGetCounterpartyHistory:
    """get_counterparty_historyのテスト"""

    def test_no_history(self, service):
        assert service.get_counterparty_history("ent_001", "bu_001", "Acme Supplies") is None

    def test_aggregates(self, service, history):
        result = service.get_counterparty_history(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890"
        )
        assert result.transaction_count == 2
        assert result.total_amount == 3000.0
        assert result.average_amount == 1500.0
        assert result.first_seen == date(2025, 1, 1)
        assert result.last_seen == date(2025, 1, 5)

    def test_documents_count_as_history(self, store, service, history, make_document):
        store.save_document(
            make_document(document_id="doc_000", total_amount=3000.0, issue_date=date(2025, 1, 9))
        )
        result = service.get_counterparty_history(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890"
        )
        assert result.transaction_count == 3
        assert result.last_seen == date(2025, 1, 9)

    def test_excluded_document_left_out(self, store, service, make_document):
        store.save_document(make_document())
        result = service.get_counterparty_history(
            "ent_001",
            "bu_001",
            "Acme Supplies",
            "TR1234567890",
            exclude_document_id="doc_001",
        )
        assert result is None

    def test_tax_id_wins_over_name(self, store, service, make_transaction):
        store.save_transaction(
            make_transaction(
                500.0, datetime(2025, 1, 2), counterparty_name="ACME SUPPLIES LTD"
            )
        )
        result = service.get_counterparty_history(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890"
        )
        assert result.transaction_count == 1

    def test_other_tax_id_with_same_name_is_different(
        self, store, service, make_transaction
    ):
        store.save_transaction(
            make_transaction(500.0, datetime(2025, 1, 2), counterparty_tax_id="TR999")
        )
        assert (
            service.get_counterparty_history(
                "ent_001", "bu_001", "Acme Supplies", "TR1234567890"
            )
            is None
        )

    def test_name_match_for_records_without_tax_id(
        self, store, service, make_transaction
    ):
        store.save_transaction(
            make_transaction(500.0, datetime(2025, 1, 2), counterparty_tax_id=None)
        )
        result = service.get_counterparty_history(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890"
        )
        assert result.transaction_count == 1

    def test_business_units_are_separate(self, service, history):
        assert service.get_counterparty_history("ent_001", "bu_002", "Acme Supplies") is None

    def test_identity_required(self, service):
        with pytest.raises(DataValidationError):
            service.get_counterparty_history("ent_001", "bu_001", None, None)


class TestAnalyzeCounterparty:
    """analyze_counterpartyのテスト"""

    def test_first_time_counterparty(self, service):
        result = service.analyze_counterparty(
            "ent_001", "bu_001", "Acme Supplies", None, 1000.0, date(2025, 1, 11)
        )
        assert result.is_new_counterparty is True
        assert result.is_unusual_counterparty is True
        assert result.history is None
        assert result.unusual_patterns[0].startswith("First time seen")

    def test_normal_occurrence(self, service, history):
        result = service.analyze_counterparty(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890", 2500.0, date(2025, 1, 11)
        )
        assert result.is_new_counterparty is False
        assert result.is_unusual_counterparty is False
        assert result.unusual_patterns == []

    def test_amount_above_multiplier(self, service, history):
        result = service.analyze_counterparty(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890", 5000.0, date(2025, 1, 11)
        )
        assert result.is_unusual_counterparty is True
        assert result.unusual_patterns == [
            "Amount 5000.00 is 3.3x the historical average of 1500.00"
        ]

    def test_amount_exactly_at_multiplier(self, service, history):
        result = service.analyze_counterparty(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890", 4500.0, date(2025, 1, 11)
        )
        assert result.is_unusual_counterparty is False

    def test_custom_multiplier(self, store, history):
        service = CounterpartyAnalysisService(store=store, amount_multiplier=1.5)
        result = service.analyze_counterparty(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890", 2500.0, date(2025, 1, 11)
        )
        assert result.is_unusual_counterparty is True

    def test_dormant_counterparty(self, service, history):
        result = service.analyze_counterparty(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890", 1500.0, date(2025, 5, 1)
        )
        assert result.unusual_patterns == [
            "Dormant counterparty reactivated after 116 days"
        ]

    def test_sudden_frequency_change(self, store, service, make_transaction):
        store.save_transaction(make_transaction(1000.0, datetime(2024, 6, 1)))
        store.save_transaction(make_transaction(1000.0, datetime(2025, 3, 10)))

        result = service.analyze_counterparty(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890", 1000.0, date(2025, 3, 12)
        )
        assert result.unusual_patterns == ["Sudden change in transaction frequency"]

    def test_date_checks_skipped_without_date(self, service, history):
        result = service.analyze_counterparty(
            "ent_001", "bu_001", "Acme Supplies", "TR1234567890", 1500.0, None
        )
        assert result.is_unusual_counterparty is False

    def test_datetime_occurrence_accepted(self, service, history):
        result = service.analyze_counterparty(
            "ent_001",
            "bu_001",
            "Acme Supplies",
            "TR1234567890",
            None,
            datetime(2025, 1, 11, 15, 30),
        )
        assert result.is_unusual_counterparty is False


class TestListCounterparties:
    """list_counterpartiesのテスト"""

    def test_most_recent_first(self, store, service, history, make_transaction):
        store.save_transaction(
            make_transaction(
                300.0,
                datetime(2025, 2, 1),
                counterparty_name="Beta Logistics",
                counterparty_tax_id=None,
            )
        )

        result = service.list_counterparties("ent_001", "bu_001")

        assert [c.counterparty_name for c in result] == ["Beta Logistics", "Acme Supplies"]
        acme = result[1]
        assert acme.counterparty_tax_id == "TR1234567890"
        assert acme.transaction_count == 2
        assert acme.average_amount == 1500.0

    def test_empty(self, service):
        assert service.list_counterparties("ent_001", "bu_001") == []
