"""Combined fraud pattern detection over a business unit's history.

Runs the Benford, round-number and timing analyzers on one sample of
amounts and dates and reports typed pattern descriptors. Stateless: the
caller supplies the sample, nothing here touches storage.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from docrisk.core.config import settings
from docrisk.models import RiskSeverity
from docrisk.services.rules.benford import BenfordAnalyzer, BenfordResult
from docrisk.services.rules.round_numbers import (
    RoundNumberSummary,
    detect_round_numbers,
    summarize_round_numbers,
)
from docrisk.services.rules.timing import TimingResult, analyze_timing_patterns


class FraudPatternType(StrEnum):
    """Kinds of fraud pattern descriptors."""

    BENFORDS_LAW = "benfords_law"
    ROUND_NUMBER = "round_number"
    UNUSUAL_TIMING = "unusual_timing"


@dataclass(frozen=True)
class FraudPattern:
    """One detected pattern."""

    type: FraudPatternType
    severity: RiskSeverity
    description: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "details": self.details,
        }


@dataclass
class FraudPatternResult:
    """Combined verdicts of all analyzers."""

    benford: BenfordResult
    round_numbers: RoundNumberSummary
    timing: TimingResult
    patterns: list[FraudPattern] = field(default_factory=list)

    @property
    def benfords_law_violation(self) -> bool:
        return self.benford.violation

    @property
    def round_number_suspicious(self) -> bool:
        return self.round_numbers.suspicious

    @property
    def unusual_timing(self) -> bool:
        return self.timing.unusual_timing

    @property
    def pattern_count(self) -> int:
        return len(self.patterns)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "benfords_law_violation": self.benfords_law_violation,
            "round_number_suspicious": self.round_number_suspicious,
            "unusual_timing": self.unusual_timing,
            "patterns": [p.to_dict() for p in self.patterns],
            "benford": self.benford.to_dict(),
            "round_numbers": self.round_numbers.to_dict(),
            "timing": self.timing.to_dict(),
        }


class FraudPatternDetector:
    """Runs all statistical analyzers on one sample."""

    def __init__(
        self,
        benford_min_samples: int | None = None,
        round_number_min_amount: float | None = None,
        round_number_suspicious_ratio: float | None = None,
        timing_min_samples: int | None = None,
    ) -> None:
        self.benford = BenfordAnalyzer(
            min_samples=benford_min_samples or settings.benford_min_samples
        )
        self.round_number_min_amount = (
            settings.round_number_min_amount
            if round_number_min_amount is None
            else round_number_min_amount
        )
        self.round_number_suspicious_ratio = (
            settings.round_number_suspicious_ratio
            if round_number_suspicious_ratio is None
            else round_number_suspicious_ratio
        )
        self.timing_min_samples = timing_min_samples or settings.timing_min_samples

    def detect(
        self,
        amounts: Iterable[Any],
        dates: Iterable[Any],
    ) -> FraudPatternResult:
        """Analyze amounts and dates; never raises for malformed values."""
        amounts = list(amounts)

        benford = self.benford.analyze(amounts)
        round_numbers = summarize_round_numbers(
            detect_round_numbers(amounts, min_amount=self.round_number_min_amount),
            suspicious_ratio=self.round_number_suspicious_ratio,
        )
        timing = analyze_timing_patterns(dates, min_samples=self.timing_min_samples)

        result = FraudPatternResult(
            benford=benford, round_numbers=round_numbers, timing=timing
        )

        if benford.violation:
            result.patterns.append(
                FraudPattern(
                    type=FraudPatternType.BENFORDS_LAW,
                    severity=RiskSeverity(benford.severity),
                    description=(
                        f"Leading digits deviate from Benford's Law "
                        f"(chi-square {benford.chi_square:.2f} > "
                        f"{benford.critical_value}, n={benford.sample_size})"
                    ),
                    details=benford.to_dict(),
                )
            )

        if round_numbers.suspicious:
            result.patterns.append(
                FraudPattern(
                    type=FraudPatternType.ROUND_NUMBER,
                    severity=RiskSeverity(round_numbers.severity),
                    description=(
                        f"{round_numbers.suspicious_ratio:.0%} of amounts are "
                        f"suspiciously round"
                    ),
                    details=round_numbers.to_dict(),
                )
            )

        for timing_pattern in timing.patterns:
            result.patterns.append(
                FraudPattern(
                    type=FraudPatternType.UNUSUAL_TIMING,
                    severity=RiskSeverity.MEDIUM,
                    description=timing_pattern.description,
                    details=timing_pattern.to_dict(),
                )
            )

        return result
