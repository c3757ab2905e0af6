"""Pydantic models for the risk engine."""

from docrisk.models.counterparty import CounterpartyAnalysis, CounterpartyHistory
from docrisk.models.document import DocumentFields, LineItem, TransactionRecord
from docrisk.models.rule import RiskRule, RiskSeverity, RuleScope
from docrisk.models.score import (
    CompanyRiskScore,
    ContributingFactor,
    DocumentRiskScore,
    RiskExplanation,
    RiskFlag,
)

__all__ = [
    "RiskRule",
    "RiskSeverity",
    "RuleScope",
    "DocumentFields",
    "LineItem",
    "TransactionRecord",
    "RiskFlag",
    "DocumentRiskScore",
    "CompanyRiskScore",
    "ContributingFactor",
    "RiskExplanation",
    "CounterpartyHistory",
    "CounterpartyAnalysis",
]
