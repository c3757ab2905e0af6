"""Temporal clustering detection.

Detects disproportionate activity:
- on weekends (calendar baseline 2/7 of days)
- in the last days of the month (period-end window dressing)
- outside business hours, for values that carry a time of day
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import StrEnum
from typing import Any

from docrisk.core.config import settings

WEEKEND_BASELINE = 2 / 7
WEEKEND_THRESHOLD = 0.40

END_OF_MONTH_DAYS = 3
END_OF_MONTH_BASELINE = END_OF_MONTH_DAYS / 30.44
END_OF_MONTH_THRESHOLD = 0.40

BUSINESS_HOURS_START = 9
BUSINESS_HOURS_END = 18
ODD_HOURS_THRESHOLD = 0.30


class TimingPatternType(StrEnum):
    """Kinds of temporal clustering."""

    WEEKEND = "weekend"
    END_OF_MONTH = "end_of_month"
    ODD_HOURS = "odd_hours"


@dataclass(frozen=True)
class TimingPattern:
    """One detected clustering pattern."""

    type: TimingPatternType
    count: int
    sample_size: int
    percentage: float
    threshold: float
    expected_percentage: float | None = None

    @property
    def deviation(self) -> float:
        """How far the observed share lies above the detection threshold."""
        return self.percentage - self.threshold

    @property
    def description(self) -> str:
        labels = {
            TimingPatternType.WEEKEND: "on weekends",
            TimingPatternType.END_OF_MONTH: (
                f"in the last {END_OF_MONTH_DAYS} days of the month"
            ),
            TimingPatternType.ODD_HOURS: "outside business hours",
        }
        return (
            f"{self.percentage:.0%} of {self.sample_size} records dated "
            f"{labels[self.type]} (threshold {self.threshold:.0%})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "count": self.count,
            "sample_size": self.sample_size,
            "percentage": round(self.percentage, 4),
            "threshold": self.threshold,
            "expected_percentage": (
                round(self.expected_percentage, 4)
                if self.expected_percentage is not None
                else None
            ),
            "deviation": round(self.deviation, 4),
            "description": self.description,
        }


@dataclass
class TimingResult:
    """Result of timing-pattern analysis."""

    sample_size: int = 0
    unusual_timing: bool = False
    patterns: list[TimingPattern] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "sample_size": self.sample_size,
            "unusual_timing": self.unusual_timing,
            "patterns": [p.to_dict() for p in self.patterns],
        }


def _to_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return None


def _is_end_of_month(value: date) -> bool:
    # The month's last N days are those whose date N days later is in the next month
    return (value + timedelta(days=END_OF_MONTH_DAYS)).month != value.month


def _is_odd_hour(value: datetime) -> bool:
    return not BUSINESS_HOURS_START <= value.hour < BUSINESS_HOURS_END


def _pattern(
    pattern_type: TimingPatternType,
    count: int,
    sample_size: int,
    threshold: float,
    expected: float | None,
) -> TimingPattern | None:
    share = count / sample_size
    if share <= threshold:
        return None
    return TimingPattern(
        type=pattern_type,
        count=count,
        sample_size=sample_size,
        percentage=share,
        threshold=threshold,
        expected_percentage=expected,
    )


def analyze_timing_patterns(
    dates: Iterable[Any],
    min_samples: int | None = None,
) -> TimingResult:
    """Detect weekend, month-end and after-hours clustering.

    Values that are neither dates nor datetimes are ignored. A datetime at
    exactly midnight is treated as date-only and does not take part in the
    business-hours check.

    Args:
        dates: Date or datetime values.
        min_samples: Minimum usable values for any verdict.

    Returns:
        TimingResult; negative when the sample is too small.
    """
    required = min_samples or settings.timing_min_samples
    values = [v for v in (_to_datetime(d) for d in dates) if v is not None]
    result = TimingResult(sample_size=len(values))
    if len(values) < required:
        return result

    candidates = [
        _pattern(
            TimingPatternType.WEEKEND,
            sum(1 for v in values if v.weekday() >= 5),
            len(values),
            WEEKEND_THRESHOLD,
            WEEKEND_BASELINE,
        ),
        _pattern(
            TimingPatternType.END_OF_MONTH,
            sum(1 for v in values if _is_end_of_month(v.date())),
            len(values),
            END_OF_MONTH_THRESHOLD,
            END_OF_MONTH_BASELINE,
        ),
    ]

    timed = [v for v in values if v.time() != time.min]
    if len(timed) >= required:
        candidates.append(
            _pattern(
                TimingPatternType.ODD_HOURS,
                sum(1 for v in timed if _is_odd_hour(v)),
                len(timed),
                ODD_HOURS_THRESHOLD,
                None,
            )
        )

    result.patterns = [p for p in candidates if p is not None]
    result.unusual_timing = bool(result.patterns)
    return result
