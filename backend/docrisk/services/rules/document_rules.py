"""Document-scope risk rules.

Each rule inspects one extracted document (plus its feature map) and, for
the history-based rules, point-in-time lookups against the store. Rules
whose input is absent are skipped rather than triggered.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from functools import cached_property
from typing import Any

from docrisk.core.config import settings
from docrisk.core.logging import get_logger
from docrisk.db.store import RiskStore
from docrisk.models import CounterpartyAnalysis, DocumentFields, RiskRule, RuleScope
from docrisk.services.counterparty import CounterpartyAnalysisService
from docrisk.services.rules.base import (
    RuleConfig,
    RuleEvaluation,
    RuleHandler,
    RuleOutcome,
    fold_outcomes,
    run_rule,
)
from docrisk.services.rules.fraud_patterns import FraudPatternDetector, FraudPatternResult

logger = get_logger(__name__)

DEFAULT_AMOUNT_TOLERANCE = 0.01
DEFAULT_TAX_NUMBER_DOCUMENT_TYPES = ["invoice"]
FAILED_EXTRACTION_STATUSES = {"failed", "partial"}


@dataclass
class DocumentRuleContext:
    """Everything a document rule may look at.

    History-based signals are computed on first use and shared by the
    remaining rules of the same evaluation.
    """

    document: DocumentFields
    store: RiskStore
    counterparty_service: CounterpartyAnalysisService
    detector: FraudPatternDetector
    now: datetime
    features: dict[str, Any] = field(default_factory=dict)
    history_lookback_days: int = settings.history_lookback_days
    history_sample_limit: int = settings.history_sample_limit

    @property
    def reference_date(self) -> date:
        """Issue date, or the evaluation date when the document has none."""
        return self.document.issue_date or self.now.date()

    @cached_property
    def counterparty(self) -> CounterpartyAnalysis:
        doc = self.document
        return self.counterparty_service.analyze_counterparty(
            doc.entity_id,
            doc.business_unit_id,
            doc.counterparty_name,
            doc.counterparty_tax_id,
            doc.total_amount,
            self.reference_date,
            exclude_document_id=doc.document_id,
        )

    @cached_property
    def fraud_patterns(self) -> FraudPatternResult:
        return detect_unit_patterns(
            self.store,
            self.detector,
            self.document.entity_id,
            self.document.business_unit_id,
            self.now,
            self.history_lookback_days,
            self.history_sample_limit,
        )


def detect_unit_patterns(
    store: RiskStore,
    detector: FraudPatternDetector,
    entity_id: str,
    business_unit_id: str,
    now: datetime,
    lookback_days: int,
    sample_limit: int,
) -> FraudPatternResult:
    """Run the fraud pattern detector on a business unit's recent amounts."""
    samples = store.get_amount_samples(
        entity_id,
        business_unit_id,
        since=now - timedelta(days=lookback_days),
        until=now,
        limit=sample_limit,
    )
    logger.debug(
        f"Fraud pattern sample: {samples.height} records",
        extra={"entity_id": entity_id, "business_unit_id": business_unit_id},
    )
    return detector.detect(
        samples["amount"].to_list(), samples["occurred_at"].to_list()
    )


# =========================================================================
# Document field checks
# =========================================================================


def due_before_issue(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    doc = ctx.document
    if doc.issue_date is None or doc.due_date is None:
        return RuleOutcome.skipped(rule, "issue date or due date missing")
    if doc.due_date < doc.issue_date:
        return RuleOutcome.triggered(
            rule,
            f"Due date {doc.due_date} is before issue date {doc.issue_date}",
            issue_date=doc.issue_date.isoformat(),
            due_date=doc.due_date.isoformat(),
        )
    return RuleOutcome.not_triggered(rule)


def total_mismatch(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    """Declared total matches neither the line sum nor line sum plus tax."""
    doc = ctx.document
    tolerance = config.get_float("tolerance", DEFAULT_AMOUNT_TOLERANCE)
    if doc.total_amount is None:
        return RuleOutcome.skipped(rule, "total amount missing")
    if not doc.line_items:
        return RuleOutcome.skipped(rule, "no line items")

    line_totals = [item.effective_total for item in doc.line_items]
    if any(total is None for total in line_totals):
        return RuleOutcome.skipped(rule, "line item without total")

    line_sum = sum(line_totals)
    with_tax = line_sum + (doc.tax_amount or 0.0)
    if (
        abs(doc.total_amount - line_sum) > tolerance
        and abs(doc.total_amount - with_tax) > tolerance
    ):
        return RuleOutcome.triggered(
            rule,
            f"Total {doc.total_amount:.2f} does not match line items "
            f"({line_sum:.2f}, {with_tax:.2f} with tax)",
            total_amount=doc.total_amount,
            line_sum=round(line_sum, 2),
            line_sum_with_tax=round(with_tax, 2),
            tolerance=tolerance,
        )
    return RuleOutcome.not_triggered(rule, line_sum=round(line_sum, 2))


def vat_rate_inconsistency(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    doc = ctx.document
    tolerance = config.get_float("tolerance", DEFAULT_AMOUNT_TOLERANCE)
    if doc.tax_amount is None:
        return RuleOutcome.skipped(rule, "tax amount missing")
    if not doc.line_items:
        return RuleOutcome.skipped(rule, "no line items")

    expected = 0.0
    for item in doc.line_items:
        total = item.effective_total
        if total is None or item.tax_rate is None:
            return RuleOutcome.skipped(rule, "line item without total or tax rate")
        expected += total * item.tax_rate

    if abs(doc.tax_amount - expected) > tolerance:
        return RuleOutcome.triggered(
            rule,
            f"Declared tax {doc.tax_amount:.2f} differs from "
            f"{expected:.2f} computed from line tax rates",
            tax_amount=doc.tax_amount,
            expected_tax=round(expected, 2),
            tolerance=tolerance,
        )
    return RuleOutcome.not_triggered(rule, expected_tax=round(expected, 2))


def missing_tax_number(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    doc = ctx.document
    required_for = config.get_list("document_types", DEFAULT_TAX_NUMBER_DOCUMENT_TYPES)
    if doc.document_type not in required_for:
        return RuleOutcome.skipped(
            rule, f"tax number not required for {doc.document_type}"
        )
    if not (doc.counterparty_tax_id or "").strip():
        return RuleOutcome.triggered(
            rule,
            f"Counterparty tax number missing on {doc.document_type}",
            document_type=doc.document_type,
        )
    return RuleOutcome.not_triggered(rule)


def parsing_failed(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    status = str(ctx.features.get("extraction_status") or "").lower()
    if ctx.features.get("parsing_failed") or status in FAILED_EXTRACTION_STATUSES:
        return RuleOutcome.triggered(
            rule,
            f"Document extraction incomplete (status: {status or 'failed'})",
            extraction_status=status or None,
        )
    return RuleOutcome.not_triggered(rule)


# =========================================================================
# History lookups
# =========================================================================


def duplicate_number(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    doc = ctx.document
    if not doc.external_id:
        return RuleOutcome.skipped(rule, "external id missing")
    duplicates = ctx.store.find_documents_by_external_id(
        doc.entity_id, doc.external_id, exclude_document_id=doc.document_id
    )
    if duplicates:
        return RuleOutcome.triggered(
            rule,
            f"External id {doc.external_id} already used by "
            f"{len(duplicates)} other document(s)",
            external_id=doc.external_id,
            duplicate_document_ids=duplicates,
        )
    return RuleOutcome.not_triggered(rule)


def duplicate_invoice(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    """Same counterparty and total invoiced again within the window."""
    doc = ctx.document
    days = config.get_int("days", settings.duplicate_invoice_window_days)
    if doc.document_type != "invoice":
        return RuleOutcome.skipped(rule, "not an invoice")
    if doc.total_amount is None or doc.issue_date is None:
        return RuleOutcome.skipped(rule, "total amount or issue date missing")
    if not doc.has_counterparty:
        return RuleOutcome.skipped(rule, "counterparty missing")

    duplicates = ctx.store.find_duplicate_invoices(
        doc.entity_id,
        doc.business_unit_id,
        doc.counterparty_name,
        doc.counterparty_tax_id,
        doc.total_amount,
        doc.issue_date,
        days,
        exclude_document_id=doc.document_id,
    )
    if duplicates:
        return RuleOutcome.triggered(
            rule,
            f"{len(duplicates)} invoice(s) with the same counterparty and total "
            f"within {days} days",
            duplicate_document_ids=duplicates,
            window_days=days,
        )
    return RuleOutcome.not_triggered(rule)


def new_counterparty(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    if not ctx.document.has_counterparty:
        return RuleOutcome.skipped(rule, "counterparty missing")
    analysis = ctx.counterparty
    if analysis.is_new_counterparty:
        return RuleOutcome.triggered(rule, analysis.unusual_patterns[0])
    return RuleOutcome.not_triggered(
        rule, transaction_count=analysis.history.transaction_count
    )


def unusual_counterparty(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    if not ctx.document.has_counterparty:
        return RuleOutcome.skipped(rule, "counterparty missing")
    analysis = ctx.counterparty
    if analysis.is_unusual_counterparty:
        return RuleOutcome.triggered(
            rule,
            "; ".join(analysis.unusual_patterns),
            patterns=analysis.unusual_patterns,
        )
    return RuleOutcome.not_triggered(rule)


def benfords_law_violation(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    benford = ctx.fraud_patterns.benford
    if not benford.is_sufficient:
        return RuleOutcome.skipped(
            rule, f"{benford.sample_size} amounts, {benford.min_samples} required"
        )
    if benford.violation:
        return RuleOutcome.triggered(
            rule,
            f"Business unit amounts deviate from Benford's Law "
            f"(chi-square {benford.chi_square:.2f})",
            chi_square=round(benford.chi_square, 4),
            p_value=benford.p_value,
            sample_size=benford.sample_size,
        )
    return RuleOutcome.not_triggered(rule, chi_square=round(benford.chi_square, 4))


def round_number_suspicious(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    summary = ctx.fraud_patterns.round_numbers
    if summary.total_count == 0:
        return RuleOutcome.skipped(rule, "no amounts in history")
    if summary.suspicious:
        return RuleOutcome.triggered(
            rule,
            f"{summary.suspicious_ratio:.0%} of recent amounts are suspiciously round",
            **summary.to_dict(),
        )
    return RuleOutcome.not_triggered(
        rule, suspicious_ratio=round(summary.suspicious_ratio, 4)
    )


def unusual_timing(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    timing = ctx.fraud_patterns.timing
    if timing.sample_size < ctx.detector.timing_min_samples:
        return RuleOutcome.skipped(
            rule,
            f"{timing.sample_size} dated records, "
            f"{ctx.detector.timing_min_samples} required",
        )
    if timing.unusual_timing:
        return RuleOutcome.triggered(
            rule,
            "; ".join(p.description for p in timing.patterns),
            patterns=[p.to_dict() for p in timing.patterns],
        )
    return RuleOutcome.not_triggered(rule)


def feature_rule(
    rule: RiskRule, config: RuleConfig, ctx: DocumentRuleContext
) -> RuleOutcome:
    """Fallback for codes without a dedicated check.

    Reads ``config.feature`` (default: the lower-cased code) from the
    feature map. With ``config.min_value`` the feature must reach that
    value, otherwise it must be truthy.
    """
    name = config.get_str("feature", rule.code.lower())
    value = ctx.features.get(name)
    if value is None:
        return RuleOutcome.skipped(rule, f"feature '{name}' not provided")

    if "min_value" in config:
        threshold = config.get_float("min_value", 0.0)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return RuleOutcome.skipped(rule, f"feature '{name}' is not numeric")
        if value >= threshold:
            return RuleOutcome.triggered(
                rule,
                f"{name} = {value} (threshold {threshold})",
                feature=name,
                value=value,
                threshold=threshold,
            )
        return RuleOutcome.not_triggered(rule, feature=name, value=value)

    if value:
        return RuleOutcome.triggered(rule, f"{name} reported", feature=name, value=value)
    return RuleOutcome.not_triggered(rule, feature=name)


DOCUMENT_RULES: dict[str, RuleHandler] = {
    "INV_DUE_BEFORE_ISSUE": due_before_issue,
    "INV_TOTAL_MISMATCH": total_mismatch,
    "INV_DUPLICATE_NUMBER": duplicate_number,
    "INV_MISSING_TAX_NUMBER": missing_tax_number,
    "DOC_PARSING_FAILED": parsing_failed,
    "INV_DUPLICATE_INVOICE": duplicate_invoice,
    "VAT_RATE_INCONSISTENCY": vat_rate_inconsistency,
    "NEW_COUNTERPARTY": new_counterparty,
    "UNUSUAL_COUNTERPARTY": unusual_counterparty,
    "BENFORDS_LAW_VIOLATION": benfords_law_violation,
    "ROUND_NUMBER_SUSPICIOUS": round_number_suspicious,
    "UNUSUAL_TIMING": unusual_timing,
}


def evaluate_document_rules(
    rules: list[RiskRule], context: DocumentRuleContext
) -> RuleEvaluation:
    """Evaluate every rule against one document.

    Args:
        rules: Active document-scope rules.
        context: Document, features and history collaborators.

    Returns:
        Folded outcomes in rule order.
    """
    outcomes = (
        run_rule(
            rule,
            DOCUMENT_RULES.get(rule.code, feature_rule),
            context,
            entity_id=context.document.entity_id,
        )
        for rule in rules
    )
    return fold_outcomes(RuleScope.DOCUMENT, outcomes)
