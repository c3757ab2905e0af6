"""Risk score aggregation and persistence.

Scoring methodology:
1. Base score starts at 0 (no risk)
2. Each triggered rule adds its configured weight
3. Score is capped at 100

Severity tiers:
- Low (0-30)
- Medium (30-65)
- High (65-100)

Rules that were skipped or failed contribute nothing.
"""

from collections.abc import Iterable
from datetime import date, datetime

from docrisk.core.exceptions import RuleConfigurationError
from docrisk.core.logging import audit_log, get_logger
from docrisk.db.store import RiskStore
from docrisk.models import CompanyRiskScore, DocumentFields, DocumentRiskScore, RiskSeverity
from docrisk.services.rules.base import RuleEvaluation, TriggeredRule, severity_for_score

logger = get_logger(__name__)

MAX_SCORE = 100.0


def calculate_score(triggered: Iterable[TriggeredRule]) -> float:
    """Sum the weights of triggered rules, capped at 100.

    Raises:
        RuleConfigurationError: A weight is zero or negative.
    """
    total = 0.0
    for rule in triggered:
        if rule.weight <= 0:
            raise RuleConfigurationError(
                "Rule weight must be positive",
                rule_code=rule.code,
                detail={"weight": rule.weight},
            )
        total += rule.weight
    return min(total, MAX_SCORE)


def map_score_to_severity(score: float) -> RiskSeverity:
    """Severity tier of a 0-100 score."""
    return severity_for_score(score)


class RiskScoreAggregator:
    """Turns rule evaluations into persisted risk scores."""

    def __init__(self, store: RiskStore | None = None) -> None:
        """Initialize the aggregator.

        Args:
            store: Score persistence.
        """
        self.store = store or RiskStore()

    def score_document(
        self,
        document: DocumentFields,
        evaluation: RuleEvaluation,
        now: datetime,
    ) -> DocumentRiskScore:
        """Build and persist a document's score, replacing any prior one."""
        score = calculate_score(evaluation.triggered)
        result = DocumentRiskScore(
            document_id=document.document_id,
            entity_id=document.entity_id,
            business_unit_id=document.business_unit_id,
            score=score,
            severity=map_score_to_severity(score),
            triggered_rule_codes=evaluation.triggered_codes,
            flags=evaluation.flags,
            document_date=document.issue_date or now.date(),
            generated_at=now,
        )
        self.store.upsert_document_score(result)

        audit_log.info(
            f"Document {document.document_id} scored",
            extra={
                "entity_id": document.entity_id,
                "business_unit_id": document.business_unit_id,
                "document_id": document.document_id,
                "risk_score": result.score,
                "severity": result.severity.value,
                "triggered_count": len(result.triggered_rule_codes),
            },
        )
        return result

    def score_company(
        self,
        entity_id: str,
        business_unit_id: str,
        evaluation: RuleEvaluation,
        window_days: int,
        window_start: date,
        now: datetime,
    ) -> CompanyRiskScore:
        """Build and persist a business unit's score, replacing any prior one."""
        score = calculate_score(evaluation.triggered)
        result = CompanyRiskScore(
            entity_id=entity_id,
            business_unit_id=business_unit_id,
            score=score,
            severity=map_score_to_severity(score),
            triggered_rule_codes=evaluation.triggered_codes,
            flags=evaluation.flags,
            window_days=window_days,
            window_start=window_start,
            generated_at=now,
        )
        self.store.upsert_company_score(result)

        audit_log.info(
            f"Business unit {business_unit_id} scored",
            extra={
                "entity_id": entity_id,
                "business_unit_id": business_unit_id,
                "risk_score": result.score,
                "severity": result.severity.value,
                "triggered_count": len(result.triggered_rule_codes),
            },
        )
        return result
