"""
DocRisk コアモジュール

エンジン全体で使用される基盤機能を提供します。

モジュール:
- config: 設定管理（環境変数、.env）
- logging: ロギングシステム（構造化ログ、監査ログ）
- exceptions: カスタム例外クラス
- cache: ルールカタログ用のTTLキャッシュ
"""

from docrisk.core.cache import TTLCache
from docrisk.core.config import Settings, settings
from docrisk.core.exceptions import (
    AnalysisError,
    ConfigurationError,
    DatabaseError,
    DataValidationError,
    DocRiskError,
    IntegrityError,
    QueryError,
    ResourceNotFoundError,
    RuleConfigurationError,
    RuleExecutionError,
    ValidationError,
)
from docrisk.core.logging import (
    LogContext,
    audit_log,
    get_evaluation_id,
    get_logger,
    perf_log,
    set_evaluation_id,
    setup_logging,
)

__all__ = [
    # 設定
    "Settings",
    "settings",
    # キャッシュ
    "TTLCache",
    # ロギング
    "setup_logging",
    "get_logger",
    "audit_log",
    "perf_log",
    "get_evaluation_id",
    "set_evaluation_id",
    "LogContext",
    # 例外
    "DocRiskError",
    "ValidationError",
    "DataValidationError",
    "ConfigurationError",
    "RuleConfigurationError",
    "DatabaseError",
    "QueryError",
    "IntegrityError",
    "AnalysisError",
    "RuleExecutionError",
    "ResourceNotFoundError",
]
