"""Company-scope risk rules.

Company rules judge a business unit by the document scores it accumulated
in a rolling window, plus the fraud pattern verdicts over its recent
amounts. Window statistics are built page by page so memory stays bounded
by ``settings.score_page_size`` no matter how many documents the unit has.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from functools import cached_property
from typing import Any

import polars as pl

from docrisk.core.config import settings
from docrisk.core.logging import get_logger
from docrisk.db.store import RiskStore
from docrisk.models import RiskRule, RiskSeverity, RuleScope
from docrisk.services.rules.base import (
    RuleConfig,
    RuleEvaluation,
    RuleHandler,
    RuleOutcome,
    fold_outcomes,
    run_rule,
)
from docrisk.services.rules.document_rules import detect_unit_patterns
from docrisk.services.rules.fraud_patterns import FraudPatternDetector, FraudPatternResult

logger = get_logger(__name__)

DEFAULT_HIGH_RISK_COUNT = 5
DEFAULT_HIGH_RISK_RATIO = 0.3
DEFAULT_DUPLICATE_COUNT = 3
DEFAULT_DUPLICATE_RULE_CODE = "INV_DUPLICATE_NUMBER"
DEFAULT_FRAUD_PATTERN_COUNT = 3


@dataclass(frozen=True)
class WindowStats:
    """Document score statistics of one business unit over a window."""

    days: int
    total_documents: int = 0
    high_risk_documents: int = 0
    flag_counts: dict[str, int] = field(default_factory=dict)

    @property
    def high_risk_ratio(self) -> float:
        if self.total_documents == 0:
            return 0.0
        return self.high_risk_documents / self.total_documents

    def documents_flagged(self, code: str) -> int:
        """Number of documents in the window that triggered ``code``."""
        return self.flag_counts.get(code, 0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "days": self.days,
            "total_documents": self.total_documents,
            "high_risk_documents": self.high_risk_documents,
            "high_risk_ratio": round(self.high_risk_ratio, 4),
            "flag_counts": self.flag_counts,
        }


def _reduce_page(page: pl.DataFrame) -> tuple[int, int, dict[str, int]]:
    high = page.filter(pl.col("severity") == RiskSeverity.HIGH.value).height
    counts = (
        page.select(
            pl.col("triggered_rule_codes")
            .str.json_decode(pl.List(pl.String))
            .list.unique()
            .alias("code")
        )
        .explode("code")
        .drop_nulls()
        .group_by("code")
        .agg(pl.len().alias("documents"))
    )
    return page.height, high, dict(counts.iter_rows())


@dataclass
class CompanyRuleContext:
    """Business unit under evaluation and its history collaborators."""

    entity_id: str
    business_unit_id: str
    store: RiskStore
    detector: FraudPatternDetector
    now: datetime
    page_size: int = settings.score_page_size
    history_lookback_days: int = settings.history_lookback_days
    history_sample_limit: int = settings.history_sample_limit
    _windows: dict[int, WindowStats] = field(
        default_factory=dict, init=False, repr=False
    )

    def window_stats(self, days: int) -> WindowStats:
        """Statistics over the ``days`` ending on the evaluation date, computed once."""
        if days not in self._windows:
            self._windows[days] = self._compute_window(days)
        return self._windows[days]

    def _compute_window(self, days: int) -> WindowStats:
        until = self.now.date()
        total = high = 0
        flag_counts: dict[str, int] = {}
        for page in self.store.iter_document_score_pages(
            self.entity_id,
            self.business_unit_id,
            since=window_start(until, days),
            until=until,
            page_size=self.page_size,
        ):
            page_total, page_high, page_counts = _reduce_page(page)
            total += page_total
            high += page_high
            for code, count in page_counts.items():
                flag_counts[code] = flag_counts.get(code, 0) + count

        logger.debug(
            f"Window {days}d: {total} documents, {high} high risk",
            extra={
                "entity_id": self.entity_id,
                "business_unit_id": self.business_unit_id,
            },
        )
        return WindowStats(
            days=days,
            total_documents=total,
            high_risk_documents=high,
            flag_counts=flag_counts,
        )

    @property
    def window_days(self) -> int:
        """Widest window the evaluated rules read, or the configured default."""
        return max(self._windows, default=settings.company_window_days)

    @cached_property
    def fraud_patterns(self) -> FraudPatternResult:
        return detect_unit_patterns(
            self.store,
            self.detector,
            self.entity_id,
            self.business_unit_id,
            self.now,
            self.history_lookback_days,
            self.history_sample_limit,
        )


def window_start(until: date, days: int) -> date:
    """First day of a ``days``-long window ending on ``until``."""
    return until - timedelta(days=days - 1)


def _window_days(config: RuleConfig) -> int:
    return config.get_int("days", settings.company_window_days)


def many_high_risk_docs(
    rule: RiskRule, config: RuleConfig, ctx: CompanyRuleContext
) -> RuleOutcome:
    threshold = config.get_int("threshold", DEFAULT_HIGH_RISK_COUNT)
    stats = ctx.window_stats(_window_days(config))
    if stats.high_risk_documents > threshold:
        return RuleOutcome.triggered(
            rule,
            f"{stats.high_risk_documents} high-risk documents in the last "
            f"{stats.days} days (threshold {threshold})",
            high_risk_documents=stats.high_risk_documents,
            threshold=threshold,
            days=stats.days,
        )
    return RuleOutcome.not_triggered(
        rule, high_risk_documents=stats.high_risk_documents
    )


def high_risk_ratio(
    rule: RiskRule, config: RuleConfig, ctx: CompanyRuleContext
) -> RuleOutcome:
    threshold = config.get_float("threshold", DEFAULT_HIGH_RISK_RATIO)
    stats = ctx.window_stats(_window_days(config))
    if stats.total_documents == 0:
        return RuleOutcome.skipped(rule, f"no documents in the last {stats.days} days")
    if stats.high_risk_ratio > threshold:
        return RuleOutcome.triggered(
            rule,
            f"{stats.high_risk_ratio:.0%} of {stats.total_documents} documents in "
            f"the last {stats.days} days are high risk (threshold {threshold:.0%})",
            high_risk_ratio=round(stats.high_risk_ratio, 4),
            total_documents=stats.total_documents,
            threshold=threshold,
            days=stats.days,
        )
    return RuleOutcome.not_triggered(
        rule, high_risk_ratio=round(stats.high_risk_ratio, 4)
    )


def frequent_duplicates(
    rule: RiskRule, config: RuleConfig, ctx: CompanyRuleContext
) -> RuleOutcome:
    threshold = config.get_int("threshold", DEFAULT_DUPLICATE_COUNT)
    code = config.get_str("rule_code", DEFAULT_DUPLICATE_RULE_CODE)
    stats = ctx.window_stats(_window_days(config))
    flagged = stats.documents_flagged(code)
    if flagged > threshold:
        return RuleOutcome.triggered(
            rule,
            f"{flagged} documents flagged {code} in the last {stats.days} days "
            f"(threshold {threshold})",
            flagged_documents=flagged,
            rule_code=code,
            threshold=threshold,
            days=stats.days,
        )
    return RuleOutcome.not_triggered(rule, flagged_documents=flagged)


def benfords_law_violation(
    rule: RiskRule, config: RuleConfig, ctx: CompanyRuleContext
) -> RuleOutcome:
    benford = ctx.fraud_patterns.benford
    if not benford.is_sufficient:
        return RuleOutcome.skipped(
            rule, f"{benford.sample_size} amounts, {benford.min_samples} required"
        )
    if benford.violation:
        return RuleOutcome.triggered(
            rule,
            f"Amounts deviate from Benford's Law "
            f"(chi-square {benford.chi_square:.2f}, n={benford.sample_size})",
            chi_square=round(benford.chi_square, 4),
            p_value=benford.p_value,
            conformity=benford.conformity,
        )
    return RuleOutcome.not_triggered(rule, chi_square=round(benford.chi_square, 4))


def high_fraud_patterns(
    rule: RiskRule, config: RuleConfig, ctx: CompanyRuleContext
) -> RuleOutcome:
    threshold = config.get_int("threshold", DEFAULT_FRAUD_PATTERN_COUNT)
    result = ctx.fraud_patterns
    if result.pattern_count > threshold:
        return RuleOutcome.triggered(
            rule,
            f"{result.pattern_count} fraud patterns detected (threshold {threshold})",
            patterns=[p.to_dict() for p in result.patterns],
            threshold=threshold,
        )
    return RuleOutcome.not_triggered(rule, pattern_count=result.pattern_count)


def unknown_rule(
    rule: RiskRule, config: RuleConfig, ctx: CompanyRuleContext
) -> RuleOutcome:
    logger.debug(
        f"No company check for rule code {rule.code}",
        extra={"rule_code": rule.code, "entity_id": ctx.entity_id},
    )
    return RuleOutcome.not_triggered(rule, reason="unknown rule code")


COMPANY_RULES: dict[str, RuleHandler] = {
    "COMP_MANY_HIGH_RISK_DOCS": many_high_risk_docs,
    "COMP_HIGH_RISK_RATIO": high_risk_ratio,
    "COMP_FREQUENT_DUPLICATES": frequent_duplicates,
    "COMP_BENFORDS_LAW_VIOLATION": benfords_law_violation,
    "COMP_HIGH_FRAUD_PATTERNS": high_fraud_patterns,
}


def evaluate_company_rules(
    rules: list[RiskRule], context: CompanyRuleContext
) -> RuleEvaluation:
    """Evaluate every company rule against one business unit."""
    outcomes = (
        run_rule(
            rule,
            COMPANY_RULES.get(rule.code, unknown_rule),
            context,
            entity_id=context.entity_id,
        )
        for rule in rules
    )
    return fold_outcomes(RuleScope.COMPANY, outcomes)
