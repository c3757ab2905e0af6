"""
DocRisk ロギングシステム

リスク評価エンジン向けのロギング設定を提供します。

機能:
- 構造化ログ出力（JSON形式対応）
- ファイルローテーション
- 評価IDによるトレーシング
- 監査ログの分離（スコア書き込み・ルール設定エラー）
- パフォーマンスログ
- 取引先税番号の自動マスキング

使用例:
    from docrisk.core.logging import get_logger, audit_log

    logger = get_logger(__name__)
    logger.info("評価を開始します", extra={"document_id": "doc_001"})

    audit_log.info("スコアを保存しました", extra={"risk_score": 42.0})
"""

import json
import logging
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any

from .config import settings

# コンテキスト変数：評価IDのスレッドセーフな管理
evaluation_id_var: ContextVar[str | None] = ContextVar("evaluation_id", default=None)


def get_evaluation_id() -> str:
    """
    現在の評価IDを取得します。

    Returns:
        str: 評価ID（未設定の場合は"no-evaluation-id"）
    """
    return evaluation_id_var.get() or "no-evaluation-id"


def set_evaluation_id(evaluation_id: str | None = None) -> str:
    """
    評価IDを設定します。

    Args:
        evaluation_id: 設定する評価ID（Noneの場合は自動生成）

    Returns:
        str: 設定された評価ID
    """
    if evaluation_id is None:
        evaluation_id = str(uuid.uuid4())[:8]
    evaluation_id_var.set(evaluation_id)
    return evaluation_id


class TaxIdMaskingFilter(logging.Filter):
    """
    取引先の税番号をマスキングするフィルター。

    ログに出力される税番号（VAT番号、法人番号など）の
    末尾4桁以外を伏せ字にします。
    """

    TAX_ID_PATTERN = re.compile(
        r"(?P<key>tax_id['\"]?\s*[:=]\s*['\"]?)(?P<value>[A-Za-z0-9-]{5,})",
        re.IGNORECASE,
    )

    def filter(self, record: logging.LogRecord) -> bool:
        """税番号をマスキングします。"""
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self.mask(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True

    @classmethod
    def mask(cls, msg: str) -> str:
        """税番号の値を末尾4文字のみ残して伏せ字にします。"""

        def _replace(match: re.Match[str]) -> str:
            value = match.group("value")
            return f"{match.group('key')}***{value[-4:]}"

        return cls.TAX_ID_PATTERN.sub(_replace, msg)


class EvaluationIdFilter(logging.Filter):
    """
    ログレコードに評価IDを追加するフィルター。

    一回のドキュメント評価・企業評価で出力される全ログに
    同じ評価IDを付与し、追跡できるようにします。
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.evaluation_id = get_evaluation_id()
        return True


class JSONFormatter(logging.Formatter):
    """
    JSON形式でログを出力するフォーマッター。

    構造化ログとして解析しやすい形式で出力します。
    """

    EXTRA_FIELDS = (
        "entity_id",
        "business_unit_id",
        "document_id",
        "rule_code",
        "risk_score",
        "severity",
        "triggered_count",
        "duration_ms",
        "success",
        "error_code",
    )

    def format(self, record: logging.LogRecord) -> str:
        """
        ログレコードをJSON形式に変換します。

        Args:
            record: ログレコード

        Returns:
            str: JSON形式のログ文字列
        """
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "evaluation_id": getattr(record, "evaluation_id", "no-evaluation-id"),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # 例外情報がある場合は追加
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """
    コンソール出力用のカラーフォーマッター。

    開発時の可読性を向上させるため、ログレベルに応じて
    色分けして出力します。
    """

    COLORS = {
        "DEBUG": "\033[36m",  # シアン
        "INFO": "\033[32m",  # 緑
        "WARNING": "\033[33m",  # 黄
        "ERROR": "\033[31m",  # 赤
        "CRITICAL": "\033[35m",  # マゼンタ
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        evaluation_id = getattr(record, "evaluation_id", "no-evaluation-id")

        formatted = (
            f"{color}{record.levelname:8}{self.RESET} "
            f"[{evaluation_id}] "
            f"{record.name}: "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def setup_logging() -> None:
    """
    ライブラリ全体のロギングを設定します。

    以下のロガーを設定:
    - メインロガー: 評価処理全般のログ
    - 監査ロガー: スコア書き込み・ルール設定エラーのログ
    - パフォーマンスロガー: 処理時間の測定

    組み込み先のアプリケーションが独自にロギングを設定している場合は
    呼び出す必要はありません。
    """
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    evaluation_id_filter = EvaluationIdFilter()
    tax_id_filter = TaxIdMaskingFilter()

    # ========================================
    # コンソールハンドラ
    # ========================================
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(evaluation_id_filter)
    console_handler.addFilter(tax_id_filter)

    if settings.debug:
        console_handler.setFormatter(ColoredFormatter())
    else:
        console_handler.setFormatter(JSONFormatter())

    root_logger.addHandler(console_handler)

    # ========================================
    # メインログファイル（ローテーション）
    # ========================================
    main_file_handler = RotatingFileHandler(
        filename=log_dir / "docrisk.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    main_file_handler.setLevel(log_level)
    main_file_handler.addFilter(evaluation_id_filter)
    main_file_handler.addFilter(tax_id_filter)
    main_file_handler.setFormatter(JSONFormatter())
    root_logger.addHandler(main_file_handler)

    # ========================================
    # エラーログファイル
    # ========================================
    error_file_handler = RotatingFileHandler(
        filename=log_dir / "docrisk_error.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    error_file_handler.setLevel(logging.ERROR)
    error_file_handler.addFilter(evaluation_id_filter)
    error_file_handler.addFilter(tax_id_filter)
    error_file_handler.setFormatter(JSONFormatter())
    root_logger.addHandler(error_file_handler)

    # ========================================
    # 監査ログ（日次ローテーション）
    # ========================================
    audit_logger = logging.getLogger("docrisk.audit")
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False

    audit_handler = TimedRotatingFileHandler(
        filename=log_dir / "docrisk_audit.log",
        when="midnight",
        interval=1,
        backupCount=90,  # 90日間保持
        encoding="utf-8",
    )
    audit_handler.addFilter(evaluation_id_filter)
    audit_handler.addFilter(tax_id_filter)
    audit_handler.setFormatter(JSONFormatter())
    audit_logger.addHandler(audit_handler)

    # ========================================
    # パフォーマンスログ
    # ========================================
    perf_logger = logging.getLogger("docrisk.performance")
    perf_logger.setLevel(logging.INFO)
    perf_logger.propagate = False

    perf_handler = RotatingFileHandler(
        filename=log_dir / "docrisk_performance.log",
        maxBytes=50 * 1024 * 1024,  # 50MB
        backupCount=5,
        encoding="utf-8",
    )
    perf_handler.addFilter(evaluation_id_filter)
    perf_handler.setFormatter(JSONFormatter())
    perf_logger.addHandler(perf_handler)

    logging.getLogger("duckdb").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    指定した名前のロガーを取得します。

    Args:
        name: ロガー名（通常は __name__ を使用）

    Returns:
        logging.Logger: ロガーインスタンス
    """
    return logging.getLogger(name)


# 特殊用途ロガーのエイリアス
audit_log = logging.getLogger("docrisk.audit")
perf_log = logging.getLogger("docrisk.performance")


class LogContext:
    """
    ログコンテキストを管理するコンテキストマネージャー。

    処理の開始・終了と所要時間を自動的にログ出力します。

    使用例:
        with LogContext(logger, "ドキュメント評価", document_id="doc_001"):
            ...
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.INFO,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.context = context
        self.start_time: datetime | None = None

    def __enter__(self) -> "LogContext":
        self.start_time = datetime.now()
        self.logger.log(
            self.level, f"{self.operation} を開始します", extra=self.context
        )
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        duration_ms = (datetime.now() - self.start_time).total_seconds() * 1000

        if exc_type is not None:
            self.logger.error(
                f"{self.operation} が失敗しました",
                extra={**self.context, "duration_ms": duration_ms},
                exc_info=True,
            )
        else:
            self.logger.log(
                self.level,
                f"{self.operation} が完了しました",
                extra={**self.context, "duration_ms": duration_ms},
            )

        perf_log.info(
            f"{self.operation}",
            extra={
                **self.context,
                "duration_ms": duration_ms,
                "success": exc_type is None,
            },
        )
