"""Risk rule definition models."""

from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuleScope(StrEnum):
    """Granularity a rule is evaluated at."""

    DOCUMENT = "document"  # 単一ドキュメント
    COMPANY = "company"  # 事業単位の集計


class RiskSeverity(StrEnum):
    """Severity tier of a score or a triggered rule."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskRule(BaseModel):
    """Weighted scoring rule owned globally or by one entity."""

    model_config = ConfigDict(frozen=True)

    rule_id: str = Field(
        default_factory=lambda: uuid4().hex,
        description="ルールID",
    )
    owner_id: str | None = Field(
        default=None,
        description="所有エンティティID（Noneはグローバルルール）",
    )
    scope: RuleScope = Field(
        description="評価スコープ",
    )
    code: str = Field(
        min_length=1,
        max_length=100,
        description="ルールコード（所有者・スコープ内で一意）",
    )
    description: str | None = Field(
        default=None,
        description="説明",
    )
    weight: float = Field(
        gt=0,
        description="発火時にスコアへ加算される重み",
    )
    severity: RiskSeverity = Field(
        default=RiskSeverity.MEDIUM,
        description="発火時のフラグ重要度",
    )
    is_active: bool = True
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="ルール固有の設定（閾値、期間など）",
    )

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        """Rule codes are stored upper-case without surrounding whitespace."""
        return v.strip().upper()

    @property
    def is_global(self) -> bool:
        return self.owner_id is None
