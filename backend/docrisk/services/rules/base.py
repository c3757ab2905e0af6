"""Shared building blocks for document and company rules.

Rules are plain functions registered by code. Each one receives the rule
definition, a typed view of its config map and an evaluation context, and
returns a ``RuleOutcome``. Outcomes are folded into a ``RuleEvaluation``;
a failing rule never stops the fold.
"""

import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import StrEnum
from functools import reduce
from typing import Any

from docrisk.core.exceptions import RuleConfigurationError, RuleExecutionError
from docrisk.core.logging import get_logger
from docrisk.models import RiskFlag, RiskRule, RiskSeverity, RuleScope

logger = get_logger(__name__)

# Severity tier boundaries (inclusive upper bounds)
LOW_SEVERITY_MAX = 30.0
MEDIUM_SEVERITY_MAX = 65.0


def severity_for_score(score: float) -> RiskSeverity:
    """Map a 0-100 score to its severity tier."""
    if score <= LOW_SEVERITY_MAX:
        return RiskSeverity.LOW
    if score <= MEDIUM_SEVERITY_MAX:
        return RiskSeverity.MEDIUM
    return RiskSeverity.HIGH


class RuleConfig:
    """Typed read access to a rule's free-form config map.

    Missing keys return the caller's default. A present value of the wrong
    type is a configuration error, not a silent fallback.
    """

    def __init__(self, values: Mapping[str, Any] | None, rule_code: str = "") -> None:
        self._values = dict(values or {})
        self.rule_code = rule_code

    def __contains__(self, name: str) -> bool:
        return self._values.get(name) is not None

    def _invalid(self, name: str, expected: str) -> RuleConfigurationError:
        return RuleConfigurationError(
            f"Config '{name}' must be {expected}",
            rule_code=self.rule_code,
            detail={"value": repr(self._values.get(name))},
        )

    def get(self, name: str, default: Any = None) -> Any:
        value = self._values.get(name)
        return default if value is None else value

    def get_str(self, name: str, default: str | None = None) -> str | None:
        value = self._values.get(name)
        if value is None:
            return default
        if not isinstance(value, str):
            raise self._invalid(name, "a string")
        return value

    def get_float(self, name: str, default: float) -> float:
        value = self._values.get(name)
        if value is None:
            return default
        if isinstance(value, bool):
            raise self._invalid(name, "a number")
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise self._invalid(name, "a number") from e

    def get_int(self, name: str, default: int) -> int:
        value = self.get_float(name, default)
        if value != int(value):
            raise self._invalid(name, "an integer")
        return int(value)

    def get_bool(self, name: str, default: bool) -> bool:
        value = self._values.get(name)
        if value is None:
            return default
        if not isinstance(value, bool):
            raise self._invalid(name, "a boolean")
        return value

    def get_date(self, name: str, default: date | None = None) -> date | None:
        value = self._values.get(name)
        if value is None:
            return default
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value)
            except ValueError as e:
                raise self._invalid(name, "an ISO date") from e
        raise self._invalid(name, "an ISO date")

    def get_list(self, name: str, default: list[Any] | None = None) -> list[Any]:
        value = self._values.get(name)
        if value is None:
            return list(default or [])
        if not isinstance(value, (list, tuple)):
            raise self._invalid(name, "a list")
        return list(value)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)


class OutcomeStatus(StrEnum):
    """What happened when a single rule was evaluated."""

    TRIGGERED = "triggered"
    NOT_TRIGGERED = "not_triggered"
    SKIPPED = "skipped"  # required data absent
    FAILED = "failed"  # raised; counted as not triggered


@dataclass(frozen=True)
class RuleOutcome:
    """Result of evaluating one rule against one subject."""

    code: str
    status: OutcomeStatus
    weight: float
    severity: RiskSeverity
    evidence: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    execution_time_ms: float = 0.0

    @classmethod
    def triggered(cls, rule: RiskRule, evidence: str, **details: Any) -> "RuleOutcome":
        return cls(
            code=rule.code,
            status=OutcomeStatus.TRIGGERED,
            weight=rule.weight,
            severity=rule.severity,
            evidence=evidence,
            details=details,
        )

    @classmethod
    def not_triggered(cls, rule: RiskRule, **details: Any) -> "RuleOutcome":
        return cls(
            code=rule.code,
            status=OutcomeStatus.NOT_TRIGGERED,
            weight=rule.weight,
            severity=rule.severity,
            details=details,
        )

    @classmethod
    def skipped(cls, rule: RiskRule, reason: str) -> "RuleOutcome":
        return cls(
            code=rule.code,
            status=OutcomeStatus.SKIPPED,
            weight=rule.weight,
            severity=rule.severity,
            details={"reason": reason},
        )

    @classmethod
    def failed(cls, rule: RiskRule, error: str) -> "RuleOutcome":
        return cls(
            code=rule.code,
            status=OutcomeStatus.FAILED,
            weight=rule.weight,
            severity=rule.severity,
            error=error,
        )

    @property
    def is_triggered(self) -> bool:
        return self.status is OutcomeStatus.TRIGGERED

    def to_flag(self) -> RiskFlag:
        return RiskFlag(
            code=self.code,
            severity=self.severity,
            evidence=self.evidence or self.code,
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "code": self.code,
            "status": self.status.value,
            "weight": self.weight,
            "severity": self.severity.value,
            "evidence": self.evidence,
            "details": self.details,
            "error": self.error,
            "execution_time_ms": round(self.execution_time_ms, 2),
        }


@dataclass(frozen=True)
class TriggeredRule:
    """A (code, weight, severity) triple fed to the score aggregator."""

    code: str
    weight: float
    severity: RiskSeverity


@dataclass
class RuleEvaluation:
    """Folded outcomes of all rules of one scope for one subject."""

    scope: RuleScope
    outcomes: list[RuleOutcome] = field(default_factory=list)

    def add(self, outcome: RuleOutcome) -> "RuleEvaluation":
        self.outcomes.append(outcome)
        return self

    @property
    def triggered(self) -> list[TriggeredRule]:
        """Triggered rules in evaluation order."""
        return [
            TriggeredRule(code=o.code, weight=o.weight, severity=o.severity)
            for o in self.outcomes
            if o.is_triggered
        ]

    @property
    def triggered_codes(self) -> list[str]:
        return [o.code for o in self.outcomes if o.is_triggered]

    @property
    def flags(self) -> list[RiskFlag]:
        return [o.to_flag() for o in self.outcomes if o.is_triggered]

    @property
    def skipped_codes(self) -> list[str]:
        return [o.code for o in self.outcomes if o.status is OutcomeStatus.SKIPPED]

    @property
    def failed_codes(self) -> list[str]:
        return [o.code for o in self.outcomes if o.status is OutcomeStatus.FAILED]

    def get(self, code: str) -> RuleOutcome | None:
        return next((o for o in self.outcomes if o.code == code), None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "scope": self.scope.value,
            "triggered_codes": self.triggered_codes,
            "skipped_codes": self.skipped_codes,
            "failed_codes": self.failed_codes,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def fold_outcomes(scope: RuleScope, outcomes: Iterable[RuleOutcome]) -> RuleEvaluation:
    """Fold per-rule outcomes into one evaluation, preserving order."""
    return reduce(RuleEvaluation.add, outcomes, RuleEvaluation(scope=scope))


RuleHandler = Callable[[RiskRule, RuleConfig, Any], RuleOutcome]


def run_rule(
    rule: RiskRule,
    handler: RuleHandler,
    context: Any,
    entity_id: str | None = None,
) -> RuleOutcome:
    """Evaluate one rule in isolation.

    Any exception raised by the handler, including lookups against the
    store, is logged and turned into a FAILED outcome.
    """
    start_time = time.perf_counter()
    try:
        outcome = handler(rule, RuleConfig(rule.config, rule.code), context)
    except Exception as e:
        error = RuleExecutionError(
            f"Rule {rule.code} failed: {e}",
            rule_code=rule.code,
            entity_id=entity_id,
        )
        logger.warning(
            str(error),
            extra={
                "rule_code": rule.code,
                "entity_id": entity_id,
                "error_code": getattr(e, "error_code", error.error_code),
            },
            exc_info=True,
        )
        outcome = RuleOutcome.failed(rule, str(e))

    return replace(outcome, execution_time_ms=(time.perf_counter() - start_time) * 1000)
