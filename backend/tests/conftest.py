"""
DocRisk テスト用共通フィクスチャ

pytest用の共通フィクスチャとヘルパー関数を提供します。
"""

import atexit
import os
import shutil
import tempfile
from collections.abc import Callable, Generator
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pytest

# テスト用環境変数（モジュールレベルで設定 - settings = Settings() より前に必要）
_test_data_dir = tempfile.mkdtemp(prefix="docrisk_test_")
atexit.register(shutil.rmtree, _test_data_dir, ignore_errors=True)

os.environ["DEBUG"] = "true"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["DATA_DIR"] = _test_data_dir
os.environ["DUCKDB_PATH"] = str(Path(_test_data_dir) / "test.duckdb")
os.environ["SQLITE_PATH"] = str(Path(_test_data_dir) / "test_rules.db")
os.environ["LOG_DIR"] = str(Path(_test_data_dir) / "logs")

# 評価時刻を固定（冪等性テストのため）
NOW = datetime(2025, 3, 14, 12, 0, 0)


@pytest.fixture(scope="session")
def temp_data_dir() -> Generator[Path, None, None]:
    """
    テスト用の一時データディレクトリを作成します。

    Yields:
        Path: 一時ディレクトリパス
    """
    yield Path(_test_data_dir)


@pytest.fixture(scope="session")
def test_settings():
    """
    テスト用の設定を取得します。
    """
    from docrisk.core.config import Settings

    return Settings()


@pytest.fixture
def now() -> datetime:
    """固定の評価時刻"""
    return NOW


@pytest.fixture
def duckdb_db(tmp_path):
    """スキーマ初期化済みのテスト用DuckDBマネージャー"""
    from docrisk.db.duckdb import DuckDBManager

    db = DuckDBManager(db_path=tmp_path / "test.duckdb")
    db.initialize_schema()
    yield db
    db.close()


@pytest.fixture
def sqlite_db(tmp_path):
    """スキーマ初期化済みのテスト用SQLiteマネージャー"""
    from docrisk.db.sqlite import SQLiteManager

    db = SQLiteManager(db_path=tmp_path / "test_rules.db")
    db.initialize_schema()
    return db


@pytest.fixture
def store(duckdb_db):
    """テスト用RiskStore"""
    from docrisk.db.store import RiskStore

    return RiskStore(db=duckdb_db)


@pytest.fixture
def catalog(sqlite_db):
    """テスト用RuleCatalog"""
    from docrisk.core.cache import TTLCache
    from docrisk.services.rules.catalog import RuleCatalog

    return RuleCatalog(db=sqlite_db, cache=TTLCache(max_size=32, ttl_seconds=60))


@pytest.fixture
def engine(store, catalog):
    """テスト用RiskEngine"""
    from docrisk.services.risk_engine import RiskEngine

    return RiskEngine(store=store, catalog=catalog, max_workers=2)


@pytest.fixture
def make_rule() -> Callable[..., Any]:
    """
    RiskRuleを生成するファクトリー。

    Returns:
        Callable: code と任意のフィールドを受け取るファクトリー関数
    """
    from docrisk.models import RiskRule, RiskSeverity, RuleScope

    def _make(
        code: str,
        weight: float = 10.0,
        scope: RuleScope = RuleScope.DOCUMENT,
        severity: RiskSeverity = RiskSeverity.MEDIUM,
        **kwargs: Any,
    ) -> RiskRule:
        return RiskRule(code=code, weight=weight, scope=scope, severity=severity, **kwargs)

    return _make


@pytest.fixture
def make_document() -> Callable[..., Any]:
    """
    DocumentFieldsを生成するファクトリー。

    Returns:
        Callable: 上書きするフィールドを受け取るファクトリー関数
    """
    from docrisk.models import DocumentFields

    def _make(**overrides: Any) -> DocumentFields:
        fields: dict[str, Any] = {
            "document_id": "doc_001",
            "entity_id": "ent_001",
            "business_unit_id": "bu_001",
            "document_type": "invoice",
            "external_id": "INV-2025-001",
            "issue_date": date(2025, 3, 1),
            "due_date": date(2025, 3, 31),
            "total_amount": 1180.0,
            "tax_amount": 180.0,
            "net_amount": 1000.0,
            "line_items": [],
            "counterparty_name": "Acme Supplies",
            "counterparty_tax_id": "TR1234567890",
        }
        fields.update(overrides)
        return DocumentFields(**fields)

    return _make


@pytest.fixture
def make_transaction() -> Callable[..., Any]:
    """TransactionRecordを生成するファクトリー"""
    from docrisk.models import TransactionRecord

    counter = {"n": 0}

    def _make(amount: float, transaction_date: datetime, **overrides: Any):
        counter["n"] += 1
        fields: dict[str, Any] = {
            "transaction_id": f"txn_{counter['n']:04d}",
            "entity_id": "ent_001",
            "business_unit_id": "bu_001",
            "amount": amount,
            "transaction_date": transaction_date,
            "counterparty_name": "Acme Supplies",
            "counterparty_tax_id": "TR1234567890",
        }
        fields.update(overrides)
        return TransactionRecord(**fields)

    return _make
