"""Explanations of stored risk scores.

Pairs a stored score with the rules currently active for its scope, so a
reviewer can see which rules contributed, with what weight, and why.
"""

from docrisk.core.exceptions import ResourceNotFoundError
from docrisk.core.logging import get_logger
from docrisk.db.store import RiskStore
from docrisk.models import (
    ContributingFactor,
    RiskExplanation,
    RiskFlag,
    RiskRule,
    RiskSeverity,
    RuleScope,
)
from docrisk.services.rules.catalog import RuleCatalog

logger = get_logger(__name__)


def _factors(rules: list[RiskRule], flags: list[RiskFlag]) -> list[ContributingFactor]:
    by_code = {flag.code: flag for flag in flags}
    factors = [
        ContributingFactor(
            code=rule.code,
            description=rule.description,
            weight=rule.weight,
            severity=rule.severity,
            triggered=rule.code in by_code,
            evidence=by_code[rule.code].evidence if rule.code in by_code else None,
        )
        for rule in rules
    ]

    # Flags of rules deactivated since the score was stored
    active = {rule.code for rule in rules}
    factors.extend(
        ContributingFactor(
            code=flag.code,
            description="Rule no longer active",
            weight=0.0,
            severity=flag.severity,
            triggered=True,
            evidence=flag.evidence,
        )
        for flag in flags
        if flag.code not in active
    )
    return factors


def _summary(score: float, severity: RiskSeverity, factors: list[ContributingFactor]) -> str:
    triggered = [f for f in factors if f.triggered]
    if not triggered:
        return f"Score {score:.1f} ({severity.value}): no rules triggered"
    top = sorted(triggered, key=lambda f: f.weight, reverse=True)
    return (
        f"Score {score:.1f} ({severity.value}): {len(triggered)} of "
        f"{len(factors)} rules triggered, led by "
        f"{', '.join(f.code for f in top[:3])}"
    )


class RiskExplanationService:
    """Builds explanations for document and company scores."""

    def __init__(
        self,
        store: RiskStore | None = None,
        catalog: RuleCatalog | None = None,
    ) -> None:
        self.store = store or RiskStore()
        self.catalog = catalog or RuleCatalog()

    def explain_document(self, document_id: str) -> RiskExplanation:
        """Explain the stored score of a document.

        Raises:
            ResourceNotFoundError: The document has not been scored.
        """
        stored = self.store.get_document_score(document_id)
        if stored is None:
            raise ResourceNotFoundError(
                f"No risk score stored for document {document_id}",
                resource_type="document_risk_score",
                resource_id=document_id,
            )

        rules = self.catalog.list_active_rules(stored.entity_id, RuleScope.DOCUMENT)
        factors = _factors(rules, stored.flags)
        return RiskExplanation(
            subject_type=RuleScope.DOCUMENT.value,
            subject_id=document_id,
            score=stored.score,
            severity=stored.severity,
            contributing_factors=factors,
            summary=_summary(stored.score, stored.severity, factors),
        )

    def explain_company(self, entity_id: str, business_unit_id: str) -> RiskExplanation:
        """Explain the stored score of a business unit.

        Raises:
            ResourceNotFoundError: The business unit has not been scored.
        """
        stored = self.store.get_company_score(entity_id, business_unit_id)
        if stored is None:
            raise ResourceNotFoundError(
                f"No risk score stored for business unit {business_unit_id}",
                resource_type="company_risk_score",
                resource_id=business_unit_id,
            )

        rules = self.catalog.list_active_rules(entity_id, RuleScope.COMPANY)
        factors = _factors(rules, stored.flags)
        return RiskExplanation(
            subject_type=RuleScope.COMPANY.value,
            subject_id=business_unit_id,
            score=stored.score,
            severity=stored.severity,
            contributing_factors=factors,
            summary=_summary(stored.score, stored.severity, factors),
        )
