"""Counterparty baseline models. Computed per query, never persisted."""

from datetime import date

from pydantic import BaseModel, Field


class CounterpartyHistory(BaseModel):
    """Aggregates over prior invoices and transactions with one counterparty."""

    counterparty_name: str | None = None
    counterparty_tax_id: str | None = None
    transaction_count: int = Field(gt=0)
    total_amount: float
    average_amount: float
    first_seen: date
    last_seen: date


class CounterpartyAnalysis(BaseModel):
    """Novelty and deviation verdict for one counterparty occurrence."""

    is_new_counterparty: bool
    is_unusual_counterparty: bool
    unusual_patterns: list[str] = Field(default_factory=list)
    history: CounterpartyHistory | None = None
