"""Risk rule package.

This package provides:
- Rule building blocks (config access, outcomes, evaluation fold)
- Rule catalog over the SQLite metadata store
- Document rules (field checks, history lookups, feature fallback)
- Company rules over rolling windows of document scores
- Fraud pattern analyzers (Benford's Law, round numbers, timing)
- Score aggregation
"""

from docrisk.services.rules.base import (
    OutcomeStatus,
    RuleConfig,
    RuleEvaluation,
    RuleOutcome,
    TriggeredRule,
    fold_outcomes,
    run_rule,
    severity_for_score,
)
from docrisk.services.rules.benford import BenfordAnalyzer, BenfordResult
from docrisk.services.rules.catalog import RuleCatalog
from docrisk.services.rules.company_rules import (
    COMPANY_RULES,
    CompanyRuleContext,
    WindowStats,
    evaluate_company_rules,
)
from docrisk.services.rules.document_rules import (
    DOCUMENT_RULES,
    DocumentRuleContext,
    evaluate_document_rules,
)
from docrisk.services.rules.fraud_patterns import (
    FraudPattern,
    FraudPatternDetector,
    FraudPatternResult,
    FraudPatternType,
)
from docrisk.services.rules.round_numbers import (
    Roundness,
    RoundNumberResult,
    RoundNumberSummary,
    detect_round_numbers,
    summarize_round_numbers,
)
from docrisk.services.rules.scoring import (
    RiskScoreAggregator,
    calculate_score,
    map_score_to_severity,
)
from docrisk.services.rules.timing import (
    TimingPattern,
    TimingPatternType,
    TimingResult,
    analyze_timing_patterns,
)

__all__ = [
    # Base
    "OutcomeStatus",
    "RuleConfig",
    "RuleOutcome",
    "RuleEvaluation",
    "TriggeredRule",
    "fold_outcomes",
    "run_rule",
    "severity_for_score",
    # Catalog
    "RuleCatalog",
    # Document rules
    "DOCUMENT_RULES",
    "DocumentRuleContext",
    "evaluate_document_rules",
    # Company rules
    "COMPANY_RULES",
    "CompanyRuleContext",
    "WindowStats",
    "evaluate_company_rules",
    # Fraud patterns
    "BenfordAnalyzer",
    "BenfordResult",
    "Roundness",
    "RoundNumberResult",
    "RoundNumberSummary",
    "detect_round_numbers",
    "summarize_round_numbers",
    "TimingPattern",
    "TimingPatternType",
    "TimingResult",
    "analyze_timing_patterns",
    "FraudPattern",
    "FraudPatternType",
    "FraudPatternDetector",
    "FraudPatternResult",
    # Scoring
    "RiskScoreAggregator",
    "calculate_score",
    "map_score_to_severity",
]
