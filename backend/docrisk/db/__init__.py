"""Database modules for DocRisk."""

from docrisk.db.duckdb import DuckDBManager, duckdb_manager, get_db
from docrisk.db.sqlite import SQLiteManager, get_sqlite, sqlite_manager
from docrisk.db.store import RiskStore

__all__ = [
    "DuckDBManager",
    "SQLiteManager",
    "RiskStore",
    "duckdb_manager",
    "sqlite_manager",
    "get_db",
    "get_sqlite",
]
