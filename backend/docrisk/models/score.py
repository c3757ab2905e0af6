"""Risk score and flag models."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docrisk.models.rule import RiskSeverity


class RiskFlag(BaseModel):
    """One triggered rule or detector signal."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(
        description="ルールコードまたは検出シグナル名",
    )
    severity: RiskSeverity
    evidence: str = Field(
        description="人が読める根拠",
    )
    details: dict[str, Any] = Field(default_factory=dict)


class DocumentRiskScore(BaseModel):
    """Aggregate risk result for one document."""

    document_id: str
    entity_id: str
    business_unit_id: str
    score: float = Field(ge=0, le=100)
    severity: RiskSeverity
    triggered_rule_codes: list[str] = Field(default_factory=list)
    flags: list[RiskFlag] = Field(default_factory=list)
    document_date: date | None = Field(
        default=None,
        description="企業ウィンドウ集計に使う日付（発行日、なければ評価日）",
    )
    generated_at: datetime


class CompanyRiskScore(BaseModel):
    """Aggregate risk result for one business unit over a rolling window."""

    entity_id: str
    business_unit_id: str
    score: float = Field(ge=0, le=100)
    severity: RiskSeverity
    triggered_rule_codes: list[str] = Field(default_factory=list)
    flags: list[RiskFlag] = Field(default_factory=list)
    window_days: int = Field(gt=0)
    window_start: date
    generated_at: datetime


class ContributingFactor(BaseModel):
    """One active rule and whether it contributed to a stored score."""

    code: str
    description: str | None = None
    weight: float
    severity: RiskSeverity
    triggered: bool
    evidence: str | None = None


class RiskExplanation(BaseModel):
    """Human-oriented breakdown of a stored score."""

    subject_type: str = Field(description="document または company")
    subject_id: str
    score: float
    severity: RiskSeverity
    contributing_factors: list[ContributingFactor] = Field(default_factory=list)
    summary: str
