"""SQLite connection manager for the rule catalog."""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from docrisk.core.config import settings
from docrisk.core.exceptions import QueryError


class SQLiteManager:
    """Manager for SQLite connections and operations.

    SQLite is used for:
    - Risk rule definitions (global and entity-specific)
    """

    def __init__(self, db_path: Path | None = None) -> None:
        """Initialize SQLite manager.

        Args:
            db_path: Path to SQLite file. Defaults to settings.sqlite_path.
        """
        self.db_path = db_path or settings.sqlite_path
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Create a connection context manager.

        Commits when the block exits normally, rolls back otherwise.

        Yields:
            SQLite connection object.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def execute(
        self,
        query: str,
        params: tuple[Any, ...] | dict[str, Any] | None = None,
    ) -> list[sqlite3.Row]:
        """Execute a query and return results.

        Args:
            query: SQL query to execute.
            params: Query parameters.

        Returns:
            List of result rows.

        Raises:
            QueryError: If SQLite rejects the query.
        """
        try:
            with self.connect() as conn:
                cursor = conn.execute(query, params) if params else conn.execute(query)
                return cursor.fetchall()
        except sqlite3.Error as e:
            raise QueryError(
                str(e),
                query=query,
                parameters=list(params) if isinstance(params, tuple) else None,
            ) from e

    def initialize_schema(self) -> None:
        """Initialize the rule catalog schema."""
        from docrisk.db.schema import SQLITE_SCHEMA

        with self.connect() as conn:
            conn.executescript(SQLITE_SCHEMA)


# Global instance
sqlite_manager = SQLiteManager()


def get_sqlite() -> SQLiteManager:
    """Get global SQLite manager instance."""
    return sqlite_manager
