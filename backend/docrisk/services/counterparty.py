"""Counterparty behavioural baselining.

Builds a baseline from prior invoices and transactions with a counterparty
inside one business unit, then flags first-time counterparties and
occurrences that deviate from that baseline.
"""

from datetime import date, datetime

import polars as pl

from docrisk.core.config import settings
from docrisk.core.exceptions import DataValidationError
from docrisk.core.logging import get_logger
from docrisk.db.store import RiskStore
from docrisk.models import CounterpartyAnalysis, CounterpartyHistory

logger = get_logger(__name__)

# Sudden reactivation: a counterparty that historically trades less than
# once per FREQUENCY_FLOOR_PER_DAY days shows up again within RECENT_DAYS
FREQUENCY_FLOOR_PER_DAY = 0.1
RECENT_DAYS = 7


class CounterpartyAnalysisService:
    """Service for counterparty novelty and deviation checks."""

    def __init__(
        self,
        store: RiskStore | None = None,
        amount_multiplier: float | None = None,
        dormant_days: int | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: History source.
            amount_multiplier: Amount above ``multiplier x average`` is unusual.
            dormant_days: Gap since last occurrence that counts as dormant.
        """
        self.store = store or RiskStore()
        self.amount_multiplier = (
            amount_multiplier or settings.counterparty_amount_multiplier
        )
        self.dormant_days = dormant_days or settings.counterparty_dormant_days

    def get_counterparty_history(
        self,
        entity_id: str,
        business_unit_id: str,
        counterparty_name: str | None,
        counterparty_tax_id: str | None = None,
        exclude_document_id: str | None = None,
    ) -> CounterpartyHistory | None:
        """Aggregate prior records with a counterparty.

        Args:
            entity_id: Tenant ID.
            business_unit_id: Business unit ID.
            counterparty_name: Counterparty name (exact match).
            counterparty_tax_id: Counterparty tax id; preferred when given.
            exclude_document_id: Document to leave out (the one being evaluated).

        Returns:
            History aggregates, or None when nothing matches.

        Raises:
            DataValidationError: Neither name nor tax id was given.
        """
        self._require_identity(counterparty_name, counterparty_tax_id)
        records = self.store.get_counterparty_records(
            entity_id,
            business_unit_id,
            counterparty_name,
            counterparty_tax_id,
            exclude_document_id=exclude_document_id,
        )
        if records.is_empty():
            return None

        stats = records.select(
            pl.len().alias("count"),
            pl.col("amount").sum().alias("total"),
            pl.col("occurred_on").min().alias("first_seen"),
            pl.col("occurred_on").max().alias("last_seen"),
        ).row(0, named=True)

        total = float(stats["total"])
        return CounterpartyHistory(
            counterparty_name=counterparty_name,
            counterparty_tax_id=counterparty_tax_id,
            transaction_count=stats["count"],
            total_amount=total,
            average_amount=total / stats["count"],
            first_seen=stats["first_seen"],
            last_seen=stats["last_seen"],
        )

    def analyze_counterparty(
        self,
        entity_id: str,
        business_unit_id: str,
        counterparty_name: str | None,
        counterparty_tax_id: str | None,
        amount: float | None,
        occurred_on: date | datetime | None,
        exclude_document_id: str | None = None,
    ) -> CounterpartyAnalysis:
        """Check whether a counterparty occurrence is new or unusual.

        The amount and date checks run only when the respective value is
        given. Any detected pattern makes the counterparty unusual.
        """
        history = self.get_counterparty_history(
            entity_id,
            business_unit_id,
            counterparty_name,
            counterparty_tax_id,
            exclude_document_id=exclude_document_id,
        )
        label = counterparty_name or counterparty_tax_id

        if history is None:
            return CounterpartyAnalysis(
                is_new_counterparty=True,
                is_unusual_counterparty=True,
                unusual_patterns=[f"First time seen: no prior records with {label}"],
            )

        patterns: list[str] = []
        if isinstance(occurred_on, datetime):
            occurred_on = occurred_on.date()

        if occurred_on is not None:
            days_since_last = (occurred_on - history.last_seen).days
            if days_since_last > self.dormant_days:
                patterns.append(
                    f"Dormant counterparty reactivated after {days_since_last} days"
                )

            active_days = max(1, (occurred_on - history.first_seen).days)
            frequency = history.transaction_count / active_days
            if 0 <= days_since_last < RECENT_DAYS and frequency < FREQUENCY_FLOOR_PER_DAY:
                patterns.append("Sudden change in transaction frequency")

        if (
            amount is not None
            and history.average_amount > 0
            and amount > history.average_amount * self.amount_multiplier
        ):
            patterns.append(
                f"Amount {amount:.2f} is {amount / history.average_amount:.1f}x "
                f"the historical average of {history.average_amount:.2f}"
            )

        return CounterpartyAnalysis(
            is_new_counterparty=False,
            is_unusual_counterparty=bool(patterns),
            unusual_patterns=patterns,
            history=history,
        )

    def list_counterparties(
        self, entity_id: str, business_unit_id: str
    ) -> list[CounterpartyHistory]:
        """Baselines of every counterparty of a business unit, most recent first."""
        summaries = self.store.get_counterparty_summaries(entity_id, business_unit_id)
        return [
            CounterpartyHistory(
                counterparty_name=row["counterparty_name"],
                counterparty_tax_id=row["counterparty_tax_id"],
                transaction_count=row["transaction_count"],
                total_amount=float(row["total_amount"]),
                average_amount=float(row["total_amount"]) / row["transaction_count"],
                first_seen=row["first_seen"],
                last_seen=row["last_seen"],
            )
            for row in summaries.iter_rows(named=True)
        ]

    @staticmethod
    def _require_identity(name: str | None, tax_id: str | None) -> None:
        if not name and not tax_id:
            raise DataValidationError(
                "Counterparty name or tax id is required",
                field="counterparty_name",
            )
