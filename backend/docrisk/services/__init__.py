"""Business logic services for DocRisk.

Services:
- RiskEngine: Document and company evaluation orchestration
- CounterpartyAnalysisService: Counterparty novelty and deviation checks
- RiskExplanationService: Breakdown of stored scores
"""

from docrisk.services.counterparty import CounterpartyAnalysisService
from docrisk.services.explanation import RiskExplanationService
from docrisk.services.risk_engine import BatchResult, RiskEngine

__all__ = [
    "RiskEngine",
    "BatchResult",
    "CounterpartyAnalysisService",
    "RiskExplanationService",
]
