"""Extracted document and transaction models.

These are produced by the upstream extraction pipeline; the engine only
reads them.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field


class LineItem(BaseModel):
    """Single invoice line."""

    description: str | None = None
    quantity: float | None = None
    unit_price: float | None = None
    line_total: float | None = None
    tax_rate: float | None = Field(
        default=None,
        ge=0,
        description="税率（0.18 = 18%）",
    )

    @property
    def effective_total(self) -> float | None:
        """Declared line total, or quantity x unit price when it is missing."""
        if self.line_total is not None:
            return self.line_total
        if self.quantity is not None and self.unit_price is not None:
            return self.quantity * self.unit_price
        return None


class DocumentFields(BaseModel):
    """Fields extracted from one financial document."""

    document_id: str = Field(
        ...,
        min_length=1,
        description="ドキュメントID",
    )
    entity_id: str = Field(
        ...,
        min_length=1,
        description="テナント（エンティティ）ID",
    )
    business_unit_id: str = Field(
        ...,
        min_length=1,
        description="事業単位（クライアント企業）ID",
    )
    document_type: str = Field(
        default="invoice",
        description="ドキュメント種別（invoice, receipt, bank_statement など）",
    )
    external_id: str | None = Field(
        default=None,
        description="外部ドキュメント番号（請求書番号など）",
    )
    issue_date: date | None = None
    due_date: date | None = None
    total_amount: float | None = None
    tax_amount: float | None = None
    net_amount: float | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    counterparty_name: str | None = None
    counterparty_tax_id: str | None = None

    @property
    def has_counterparty(self) -> bool:
        return bool(self.counterparty_name or self.counterparty_tax_id)


class TransactionRecord(BaseModel):
    """Bank transaction belonging to a business unit."""

    transaction_id: str = Field(..., min_length=1)
    entity_id: str = Field(..., min_length=1)
    business_unit_id: str = Field(..., min_length=1)
    amount: float
    transaction_date: datetime
    counterparty_name: str | None = None
    counterparty_tax_id: str | None = None
    description: str | None = None
