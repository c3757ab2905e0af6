"""
DocRisk カスタム例外クラス

リスク評価エンジン全体で使用する例外クラスを定義します。

例外の階層:
    DocRiskError (基底クラス)
    ├── ValidationError
    │   └── DataValidationError
    ├── ConfigurationError
    │   └── RuleConfigurationError
    ├── DatabaseError
    │   ├── QueryError
    │   └── IntegrityError
    ├── AnalysisError
    │   └── RuleExecutionError
    └── ResourceNotFoundError

データ不足は例外ではありません。該当ルールは「スキップ」として扱われます。
例外は設定不備、永続化の失敗、個々のルールの実行失敗にのみ使用します。

使用例:
    from docrisk.core.exceptions import RuleConfigurationError

    if rule.weight <= 0:
        raise RuleConfigurationError(
            message="ルールの重みは正の値である必要があります",
            rule_code=rule.code,
            detail={"weight": rule.weight},
        )
"""

from typing import Any


class DocRiskError(Exception):
    """
    DocRisk基底例外クラス。

    全てのDocRisk固有の例外はこのクラスを継承します。

    Attributes:
        message: エラーメッセージ
        error_code: エラーコード（ログ・呼び出し元での判別用）
        detail: 追加の詳細情報
    """

    error_code: str = "DOCRISK_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        detail: dict[str, Any] | None = None,
    ):
        """
        例外を初期化します。

        Args:
            message: エラーメッセージ
            error_code: エラーコード（省略時はクラスのデフォルト）
            detail: 追加の詳細情報
        """
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        """
        例外を辞書形式に変換します。

        Returns:
            dict: エラー情報を含む辞書
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "detail": self.detail,
        }

    def __str__(self) -> str:
        """文字列表現を返します。"""
        if self.detail:
            return f"[{self.error_code}] {self.message} - {self.detail}"
        return f"[{self.error_code}] {self.message}"


# ========================================
# バリデーション関連の例外
# ========================================


class ValidationError(DocRiskError):
    """バリデーションエラーの基底クラス。"""

    error_code = "VALIDATION_ERROR"


class DataValidationError(ValidationError):
    """
    データ検証エラー。

    入力値の型や範囲の検証失敗時に発生します。
    """

    error_code = "DATA_VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        expected_value: Any = None,
        actual_value: Any = None,
        **kwargs,
    ):
        detail = kwargs.pop("detail", {})
        if field:
            detail["field"] = field
        if expected_value is not None:
            detail["expected_value"] = str(expected_value)
        if actual_value is not None:
            detail["actual_value"] = str(actual_value)
        super().__init__(message, detail=detail, **kwargs)


# ========================================
# 設定関連の例外
# ========================================


class ConfigurationError(DocRiskError):
    """設定エラーの基底クラス。"""

    error_code = "CONFIGURATION_ERROR"


class RuleConfigurationError(ConfigurationError):
    """
    ルール設定エラー。

    重みが正でない、設定値の型が不正などの場合に発生します。
    """

    error_code = "RULE_CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        rule_code: str | None = None,
        **kwargs,
    ):
        detail = kwargs.pop("detail", {})
        if rule_code:
            detail["rule_code"] = rule_code
        super().__init__(message, detail=detail, **kwargs)


# ========================================
# データベース関連の例外
# ========================================


class DatabaseError(DocRiskError):
    """データベースエラーの基底クラス。"""

    error_code = "DATABASE_ERROR"


class QueryError(DatabaseError):
    """
    クエリ実行エラー。

    SQLクエリの実行に失敗した場合に発生します。
    """

    error_code = "QUERY_ERROR"

    def __init__(
        self,
        message: str,
        query: str | None = None,
        parameters: list[Any] | None = None,
        **kwargs,
    ):
        detail = kwargs.pop("detail", {})
        if query:
            # クエリは長い場合があるため、先頭200文字のみ保持
            detail["query"] = query[:200] + ("..." if len(query) > 200 else "")
        if parameters:
            detail["parameters"] = [str(p) for p in parameters]
        super().__init__(message, detail=detail, **kwargs)


class IntegrityError(DatabaseError):
    """
    データ整合性エラー。

    書き込みの競合が再試行後も解消しない場合などに発生します。
    """

    error_code = "INTEGRITY_ERROR"


# ========================================
# 分析関連の例外
# ========================================


class AnalysisError(DocRiskError):
    """分析エラーの基底クラス。"""

    error_code = "ANALYSIS_ERROR"


class RuleExecutionError(AnalysisError):
    """
    ルール実行エラー。

    個々のリスクルールの評価中にエラーが発生した場合に使用します。
    評価全体は中断せず、当該ルールは「未発火」として記録されます。
    """

    error_code = "RULE_EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        rule_code: str,
        entity_id: str | None = None,
        **kwargs,
    ):
        detail = kwargs.pop("detail", {})
        detail["rule_code"] = rule_code
        if entity_id:
            detail["entity_id"] = entity_id
        super().__init__(message, detail=detail, **kwargs)


# ========================================
# リソース関連の例外
# ========================================


class ResourceNotFoundError(DocRiskError):
    """
    リソース未発見エラー。

    指定されたリソースが見つからない場合に発生します。
    """

    error_code = "RESOURCE_NOT_FOUND"

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
        **kwargs,
    ):
        detail = kwargs.pop("detail", {})
        detail["resource_type"] = resource_type
        detail["resource_id"] = resource_id
        super().__init__(message, detail=detail, **kwargs)
