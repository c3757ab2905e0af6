"""Round-number clustering detection.

Fabricated amounts tend to be round. Each amount gets a roundness tier:

- high:   whole multiple of 1000
- medium: whole multiple of 100
- low:    whole multiple of 10
- none:   anything else (including any non-zero cents)

Small round amounts are everyday noise, so nothing below the minimum
amount (default 100) is ever suspicious, and the weak ``low`` tier only
counts from 1000 upwards.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from docrisk.core.config import settings
from docrisk.services.rules.benford import to_amount

# ``low`` roundness only becomes suspicious from this magnitude
LOW_ROUNDNESS_MIN_AMOUNT = 1000.0

# Share of suspicious amounts above which the summary is high severity
HIGH_SEVERITY_RATIO = 0.5


class Roundness(StrEnum):
    """How round an amount is."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


@dataclass(frozen=True)
class RoundNumberResult:
    """Roundness verdict for a single amount."""

    amount: float
    roundness: Roundness
    suspicious: bool


@dataclass
class RoundNumberSummary:
    """Share of suspicious round amounts in a sample."""

    total_count: int = 0
    round_count: int = 0
    suspicious_count: int = 0
    suspicious_ratio: float = 0.0
    threshold: float = 0.0
    suspicious: bool = False
    by_roundness: dict[str, int] = field(default_factory=dict)

    @property
    def severity(self) -> str:
        return "high" if self.suspicious_ratio > HIGH_SEVERITY_RATIO else "medium"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_count": self.total_count,
            "round_count": self.round_count,
            "suspicious_count": self.suspicious_count,
            "suspicious_ratio": round(self.suspicious_ratio, 4),
            "threshold": self.threshold,
            "suspicious": self.suspicious,
            "by_roundness": self.by_roundness,
        }


def classify_roundness(amount: float) -> Roundness:
    """Roundness tier of one amount, judged on whole cents."""
    cents = round(abs(amount) * 100)
    if cents == 0:
        return Roundness.NONE
    if cents % 100_000 == 0:
        return Roundness.HIGH
    if cents % 10_000 == 0:
        return Roundness.MEDIUM
    if cents % 1_000 == 0:
        return Roundness.LOW
    return Roundness.NONE


def is_suspicious(amount: float, roundness: Roundness, min_amount: float) -> bool:
    magnitude = abs(amount)
    if magnitude < min_amount:
        return False
    if roundness in (Roundness.HIGH, Roundness.MEDIUM):
        return True
    return roundness is Roundness.LOW and magnitude >= LOW_ROUNDNESS_MIN_AMOUNT


def detect_round_numbers(
    amounts: Iterable[Any],
    min_amount: float | None = None,
) -> list[RoundNumberResult]:
    """Classify every usable amount; unusable values are skipped.

    Args:
        amounts: Amount values.
        min_amount: Magnitude below which nothing is suspicious.

    Returns:
        One result per finite numeric input, in input order.
    """
    floor = settings.round_number_min_amount if min_amount is None else min_amount
    results = []
    for raw in amounts:
        amount = to_amount(raw)
        if amount is None:
            continue
        roundness = classify_roundness(amount)
        results.append(
            RoundNumberResult(
                amount=amount,
                roundness=roundness,
                suspicious=is_suspicious(amount, roundness, floor),
            )
        )
    return results


def summarize_round_numbers(
    results: list[RoundNumberResult],
    suspicious_ratio: float | None = None,
) -> RoundNumberSummary:
    """Flag the sample when the suspicious share exceeds ``suspicious_ratio``."""
    threshold = (
        settings.round_number_suspicious_ratio
        if suspicious_ratio is None
        else suspicious_ratio
    )
    summary = RoundNumberSummary(total_count=len(results), threshold=threshold)
    if not results:
        return summary

    for result in results:
        summary.by_roundness[result.roundness.value] = (
            summary.by_roundness.get(result.roundness.value, 0) + 1
        )
    summary.round_count = sum(1 for r in results if r.roundness is not Roundness.NONE)
    summary.suspicious_count = sum(1 for r in results if r.suspicious)
    summary.suspicious_ratio = summary.suspicious_count / summary.total_count
    summary.suspicious = summary.suspicious_ratio > threshold
    return summary
