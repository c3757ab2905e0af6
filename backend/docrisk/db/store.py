"""Read/write access to documents, transactions and risk scores.

The engine only reads documents and transactions. Scores are written
exclusively through ``upsert_document_score`` / ``upsert_company_score``,
each a single transaction that replaces the prior record for the subject.
"""

import json
import time
from collections.abc import Iterator
from datetime import date, datetime, timedelta
from typing import Any

import duckdb
import polars as pl

from docrisk.core.config import settings
from docrisk.core.exceptions import IntegrityError, QueryError
from docrisk.core.logging import audit_log, get_logger
from docrisk.db.duckdb import DuckDBManager, get_db
from docrisk.models import (
    CompanyRiskScore,
    DocumentFields,
    DocumentRiskScore,
    RiskFlag,
    TransactionRecord,
)

logger = get_logger(__name__)

# Two amounts closer than this are treated as the same invoice total
AMOUNT_EPSILON = 0.005


def _counterparty_condition(
    name: str | None, tax_id: str | None
) -> tuple[str, list[Any]]:
    """SQL predicate matching one counterparty identity.

    Tax id wins when present. Records that carry no tax id fall back to an
    exact name match.
    """
    if tax_id:
        if name:
            return (
                "(counterparty_tax_id = ? OR "
                "(COALESCE(counterparty_tax_id, '') = '' AND counterparty_name = ?))",
                [tax_id, name],
            )
        return "counterparty_tax_id = ?", [tax_id]
    return "counterparty_name = ?", [name]


class RiskStore:
    """DuckDB-backed persistence collaborator for the risk engine."""

    def __init__(
        self,
        db: DuckDBManager | None = None,
        max_retries: int | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            db: DuckDB manager instance.
            max_retries: Attempts for a score write that hits a write conflict.
        """
        self.db = db or get_db()
        self.max_retries = max_retries or settings.upsert_max_retries

    # =========================================================================
    # Source facts
    # =========================================================================

    def save_document(self, document: DocumentFields) -> None:
        """Insert or replace a document's header fields."""
        self._write(
            """
            INSERT INTO documents (
                document_id, entity_id, business_unit_id, document_type,
                external_id, counterparty_name, counterparty_tax_id,
                total_amount, tax_amount, issue_date, due_date
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (document_id) DO UPDATE SET
                entity_id = EXCLUDED.entity_id,
                business_unit_id = EXCLUDED.business_unit_id,
                document_type = EXCLUDED.document_type,
                external_id = EXCLUDED.external_id,
                counterparty_name = EXCLUDED.counterparty_name,
                counterparty_tax_id = EXCLUDED.counterparty_tax_id,
                total_amount = EXCLUDED.total_amount,
                tax_amount = EXCLUDED.tax_amount,
                issue_date = EXCLUDED.issue_date,
                due_date = EXCLUDED.due_date
            """,
            [
                document.document_id,
                document.entity_id,
                document.business_unit_id,
                document.document_type,
                document.external_id,
                document.counterparty_name,
                document.counterparty_tax_id,
                document.total_amount,
                document.tax_amount,
                document.issue_date,
                document.due_date,
            ],
        )

    def save_transaction(self, transaction: TransactionRecord) -> None:
        """Insert or replace a bank transaction."""
        self._write(
            """
            INSERT INTO transactions (
                transaction_id, entity_id, business_unit_id, counterparty_name,
                counterparty_tax_id, amount, transaction_date, description
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (transaction_id) DO UPDATE SET
                counterparty_name = EXCLUDED.counterparty_name,
                counterparty_tax_id = EXCLUDED.counterparty_tax_id,
                amount = EXCLUDED.amount,
                transaction_date = EXCLUDED.transaction_date,
                description = EXCLUDED.description
            """,
            [
                transaction.transaction_id,
                transaction.entity_id,
                transaction.business_unit_id,
                transaction.counterparty_name,
                transaction.counterparty_tax_id,
                transaction.amount,
                transaction.transaction_date,
                transaction.description,
            ],
        )

    def delete_document(self, document_id: str) -> bool:
        """Delete a document together with its stored score.

        Returns:
            True if the document existed.
        """
        existed = bool(
            self.db.execute(
                "SELECT 1 FROM documents WHERE document_id = ?", [document_id]
            )
        )
        self._write_many(
            [
                ("DELETE FROM document_risk_scores WHERE document_id = ?", [document_id]),
                ("DELETE FROM documents WHERE document_id = ?", [document_id]),
            ]
        )
        if existed:
            audit_log.info(
                "Document and score deleted", extra={"document_id": document_id}
            )
        return existed

    def list_business_units(self, entity_id: str) -> list[str]:
        """All business units of an entity that have documents or transactions."""
        rows = self.db.execute(
            """
            SELECT business_unit_id FROM documents WHERE entity_id = ?
            UNION
            SELECT business_unit_id FROM transactions WHERE entity_id = ?
            ORDER BY business_unit_id
            """,
            [entity_id, entity_id],
        )
        return [row[0] for row in rows]

    # =========================================================================
    # History queries (point-in-time reads)
    # =========================================================================

    def find_documents_by_external_id(
        self,
        entity_id: str,
        external_id: str,
        exclude_document_id: str | None = None,
    ) -> list[str]:
        """IDs of the entity's documents carrying exactly this external id."""
        rows = self.db.execute(
            """
            SELECT document_id FROM documents
            WHERE entity_id = ?
              AND external_id = ?
              AND document_id IS DISTINCT FROM ?
            ORDER BY document_id
            """,
            [entity_id, external_id, exclude_document_id],
        )
        return [row[0] for row in rows]

    def find_duplicate_invoices(
        self,
        entity_id: str,
        business_unit_id: str,
        counterparty_name: str | None,
        counterparty_tax_id: str | None,
        total_amount: float,
        issue_date: date,
        window_days: int,
        exclude_document_id: str | None = None,
    ) -> list[str]:
        """IDs of invoices with the same total and counterparty near ``issue_date``."""
        condition, params = _counterparty_condition(
            counterparty_name, counterparty_tax_id
        )
        rows = self.db.execute(
            f"""
            SELECT document_id FROM documents
            WHERE entity_id = ?
              AND business_unit_id = ?
              AND document_type = 'invoice'
              AND document_id IS DISTINCT FROM ?
              AND ABS(total_amount - ?) < ?
              AND issue_date BETWEEN ? AND ?
              AND {condition}
            ORDER BY document_id
            """,
            [
                entity_id,
                business_unit_id,
                exclude_document_id,
                total_amount,
                AMOUNT_EPSILON,
                issue_date - timedelta(days=window_days),
                issue_date + timedelta(days=window_days),
                *params,
            ],
        )
        return [row[0] for row in rows]

    def get_counterparty_records(
        self,
        entity_id: str,
        business_unit_id: str,
        counterparty_name: str | None,
        counterparty_tax_id: str | None,
        exclude_document_id: str | None = None,
    ) -> pl.DataFrame:
        """Prior documents and transactions with one counterparty.

        Returns:
            DataFrame with ``amount`` (Float64) and ``occurred_on`` (Date).
        """
        condition, params = _counterparty_condition(
            counterparty_name, counterparty_tax_id
        )
        return self.db.execute_df(
            f"""
            SELECT total_amount AS amount, issue_date AS occurred_on
            FROM documents
            WHERE entity_id = ? AND business_unit_id = ?
              AND document_id IS DISTINCT FROM ?
              AND total_amount IS NOT NULL AND issue_date IS NOT NULL
              AND {condition}
            UNION ALL
            SELECT amount, CAST(transaction_date AS DATE) AS occurred_on
            FROM transactions
            WHERE entity_id = ? AND business_unit_id = ?
              AND {condition}
            ORDER BY occurred_on
            """,
            [
                entity_id,
                business_unit_id,
                exclude_document_id,
                *params,
                entity_id,
                business_unit_id,
                *params,
            ],
        )

    def get_counterparty_summaries(
        self, entity_id: str, business_unit_id: str
    ) -> pl.DataFrame:
        """Per-counterparty aggregates for a business unit, most recent first."""
        return self.db.execute_df(
            """
            WITH records AS (
                SELECT counterparty_name, counterparty_tax_id,
                       total_amount AS amount, issue_date AS occurred_on
                FROM documents
                WHERE entity_id = ? AND business_unit_id = ?
                  AND total_amount IS NOT NULL AND issue_date IS NOT NULL
                UNION ALL
                SELECT counterparty_name, counterparty_tax_id,
                       amount, CAST(transaction_date AS DATE)
                FROM transactions
                WHERE entity_id = ? AND business_unit_id = ?
            )
            SELECT
                COALESCE(NULLIF(counterparty_tax_id, ''), counterparty_name) AS identity,
                MAX(counterparty_name) AS counterparty_name,
                MAX(NULLIF(counterparty_tax_id, '')) AS counterparty_tax_id,
                COUNT(*) AS transaction_count,
                SUM(amount) AS total_amount,
                MIN(occurred_on) AS first_seen,
                MAX(occurred_on) AS last_seen
            FROM records
            WHERE COALESCE(NULLIF(counterparty_tax_id, ''), counterparty_name) IS NOT NULL
            GROUP BY identity
            ORDER BY last_seen DESC, identity
            """,
            [entity_id, business_unit_id, entity_id, business_unit_id],
        )

    def get_amount_samples(
        self,
        entity_id: str,
        business_unit_id: str,
        since: datetime,
        until: datetime,
        limit: int,
    ) -> pl.DataFrame:
        """Most recent amounts and timestamps of a business unit.

        Returns:
            DataFrame with ``amount`` (Float64) and ``occurred_at`` (Datetime),
            at most ``limit`` rows.
        """
        return self.db.execute_df(
            """
            SELECT amount, occurred_at FROM (
                SELECT total_amount AS amount,
                       CAST(issue_date AS TIMESTAMP) AS occurred_at
                FROM documents
                WHERE entity_id = ? AND business_unit_id = ?
                  AND total_amount IS NOT NULL AND issue_date IS NOT NULL
                UNION ALL
                SELECT amount, transaction_date AS occurred_at
                FROM transactions
                WHERE entity_id = ? AND business_unit_id = ?
            )
            WHERE occurred_at >= ? AND occurred_at <= ?
            ORDER BY occurred_at DESC
            LIMIT ?
            """,
            [
                entity_id,
                business_unit_id,
                entity_id,
                business_unit_id,
                since,
                until,
                limit,
            ],
        )

    def iter_document_score_pages(
        self,
        entity_id: str,
        business_unit_id: str,
        since: date,
        until: date,
        page_size: int,
    ) -> Iterator[pl.DataFrame]:
        """Yield the document scores generated in the window, one page at a time.

        Both bounds are inclusive calendar dates of ``generated_at``, so a
        backlog or future-dated invoice scored today falls in today's window.

        Uses keyset pagination on document_id so every page is a fresh
        point-in-time read of at most ``page_size`` rows.
        """
        last_id = ""
        while True:
            page = self.db.execute_df(
                """
                SELECT document_id, severity, triggered_rule_codes
                FROM document_risk_scores
                WHERE entity_id = ? AND business_unit_id = ?
                  AND CAST(generated_at AS DATE) BETWEEN ? AND ?
                  AND document_id > ?
                ORDER BY document_id
                LIMIT ?
                """,
                [entity_id, business_unit_id, since, until, last_id, page_size],
            )
            if page.is_empty():
                return
            yield page
            if page.height < page_size:
                return
            last_id = page["document_id"][-1]

    # =========================================================================
    # Scores
    # =========================================================================

    def upsert_document_score(self, score: DocumentRiskScore) -> None:
        """Replace the stored score of one document and record it in history."""
        codes = json.dumps(score.triggered_rule_codes)
        self._write_many(
            [
                (
                    """
                    INSERT INTO document_risk_scores (
                        document_id, entity_id, business_unit_id, score, severity,
                        triggered_rule_codes, flags, document_date, generated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (document_id) DO UPDATE SET
                        entity_id = EXCLUDED.entity_id,
                        business_unit_id = EXCLUDED.business_unit_id,
                        score = EXCLUDED.score,
                        severity = EXCLUDED.severity,
                        triggered_rule_codes = EXCLUDED.triggered_rule_codes,
                        flags = EXCLUDED.flags,
                        document_date = EXCLUDED.document_date,
                        generated_at = EXCLUDED.generated_at
                    """,
                    [
                        score.document_id,
                        score.entity_id,
                        score.business_unit_id,
                        score.score,
                        score.severity.value,
                        codes,
                        self._dump_flags(score.flags),
                        score.document_date,
                        score.generated_at,
                    ],
                ),
                self._history_statement(
                    "document",
                    score.document_id,
                    score.entity_id,
                    score.business_unit_id,
                    score.score,
                    score.severity.value,
                    codes,
                    score.generated_at,
                ),
            ]
        )

    def upsert_company_score(self, score: CompanyRiskScore) -> None:
        """Replace the stored score of one business unit and record it in history."""
        codes = json.dumps(score.triggered_rule_codes)
        self._write_many(
            [
                (
                    """
                    INSERT INTO company_risk_scores (
                        entity_id, business_unit_id, score, severity,
                        triggered_rule_codes, flags, window_days, window_start,
                        generated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (entity_id, business_unit_id) DO UPDATE SET
                        score = EXCLUDED.score,
                        severity = EXCLUDED.severity,
                        triggered_rule_codes = EXCLUDED.triggered_rule_codes,
                        flags = EXCLUDED.flags,
                        window_days = EXCLUDED.window_days,
                        window_start = EXCLUDED.window_start,
                        generated_at = EXCLUDED.generated_at
                    """,
                    [
                        score.entity_id,
                        score.business_unit_id,
                        score.score,
                        score.severity.value,
                        codes,
                        self._dump_flags(score.flags),
                        score.window_days,
                        score.window_start,
                        score.generated_at,
                    ],
                ),
                self._history_statement(
                    "company",
                    score.business_unit_id,
                    score.entity_id,
                    score.business_unit_id,
                    score.score,
                    score.severity.value,
                    codes,
                    score.generated_at,
                ),
            ]
        )

    def get_document_score(self, document_id: str) -> DocumentRiskScore | None:
        """Stored score of a document, if any."""
        rows = self.db.execute(
            """
            SELECT document_id, entity_id, business_unit_id, score, severity,
                   triggered_rule_codes, flags, document_date, generated_at
            FROM document_risk_scores
            WHERE document_id = ?
            """,
            [document_id],
        )
        if not rows:
            return None
        row = rows[0]
        return DocumentRiskScore(
            document_id=row[0],
            entity_id=row[1],
            business_unit_id=row[2],
            score=row[3],
            severity=row[4],
            triggered_rule_codes=json.loads(row[5]),
            flags=self._load_flags(row[6]),
            document_date=row[7],
            generated_at=row[8],
        )

    def get_company_score(
        self, entity_id: str, business_unit_id: str
    ) -> CompanyRiskScore | None:
        """Latest stored score of a business unit, if any."""
        rows = self.db.execute(
            """
            SELECT entity_id, business_unit_id, score, severity,
                   triggered_rule_codes, flags, window_days, window_start,
                   generated_at
            FROM company_risk_scores
            WHERE entity_id = ? AND business_unit_id = ?
            """,
            [entity_id, business_unit_id],
        )
        if not rows:
            return None
        row = rows[0]
        return CompanyRiskScore(
            entity_id=row[0],
            business_unit_id=row[1],
            score=row[2],
            severity=row[3],
            triggered_rule_codes=json.loads(row[4]),
            flags=self._load_flags(row[5]),
            window_days=row[6],
            window_start=row[7],
            generated_at=row[8],
        )

    def get_score_history(
        self,
        subject_type: str,
        subject_id: str,
        entity_id: str | None = None,
        limit: int = 100,
    ) -> pl.DataFrame:
        """Recorded scores of a subject, newest first."""
        conditions = ["subject_type = ?", "subject_id = ?"]
        params: list[Any] = [subject_type, subject_id]
        if entity_id:
            conditions.append("entity_id = ?")
            params.append(entity_id)
        params.append(limit)
        return self.db.execute_df(
            f"""
            SELECT subject_type, subject_id, entity_id, business_unit_id,
                   score, severity, triggered_rule_codes, recorded_at
            FROM risk_score_history
            WHERE {" AND ".join(conditions)}
            ORDER BY recorded_at DESC
            LIMIT ?
            """,
            params,
        )

    # =========================================================================
    # Internal helpers
    # =========================================================================

    @staticmethod
    def _dump_flags(flags: list[RiskFlag]) -> str:
        return json.dumps(
            [flag.model_dump(mode="json") for flag in flags], ensure_ascii=False
        )

    @staticmethod
    def _load_flags(raw: str) -> list[RiskFlag]:
        return [RiskFlag.model_validate(item) for item in json.loads(raw)]

    @staticmethod
    def _history_statement(
        subject_type: str,
        subject_id: str,
        entity_id: str,
        business_unit_id: str,
        score: float,
        severity: str,
        codes: str,
        recorded_at: datetime,
    ) -> tuple[str, list[Any]]:
        return (
            """
            INSERT INTO risk_score_history (
                subject_type, subject_id, entity_id, business_unit_id,
                score, severity, triggered_rule_codes, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                subject_type,
                subject_id,
                entity_id,
                business_unit_id,
                score,
                severity,
                codes,
                recorded_at,
            ],
        )

    def _write(self, query: str, params: list[Any]) -> None:
        self._write_many([(query, params)])

    def _write_many(self, statements: list[tuple[str, list[Any]]]) -> None:
        """Run statements in one transaction, retrying on write conflicts.

        Raises:
            IntegrityError: Conflict persisted after ``max_retries`` attempts.
            QueryError: DuckDB rejected a statement.
        """
        for attempt in range(1, self.max_retries + 1):
            with self.db.connect() as cursor:
                cursor.begin()
                try:
                    for query, params in statements:
                        cursor.execute(query, params)
                    cursor.commit()
                    return
                except duckdb.TransactionException as e:
                    self._rollback(cursor)
                    if attempt == self.max_retries:
                        raise IntegrityError(
                            "Write conflict persisted after retries",
                            detail={"attempts": attempt, "reason": str(e)},
                        ) from e
                    logger.warning(
                        f"Write conflict, retrying ({attempt}/{self.max_retries})"
                    )
                except duckdb.Error as e:
                    self._rollback(cursor)
                    raise QueryError(
                        str(e), query=statements[0][0], parameters=statements[0][1]
                    ) from e
            time.sleep(0.05 * attempt)

    @staticmethod
    def _rollback(cursor: duckdb.DuckDBPyConnection) -> None:
        try:
            cursor.rollback()
        except duckdb.TransactionException:
            # a conflict detected at COMMIT has already ended the transaction
            pass
