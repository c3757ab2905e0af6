"""Rule catalog backed by the SQLite metadata store.

Resolves the applicable rule list for an entity: global rules
(``owner_id IS NULL``) overlaid with the entity's own rules, where an entity
rule replaces the global rule with the same code. Results are cached per
(entity, scope) and invalidated on every write through the catalog.
"""

import json
import sqlite3
from datetime import datetime

from pydantic import ValidationError as PydanticValidationError

from docrisk.core.cache import TTLCache
from docrisk.core.config import settings
from docrisk.core.exceptions import ResourceNotFoundError, RuleConfigurationError
from docrisk.core.logging import audit_log, get_logger
from docrisk.db.sqlite import SQLiteManager, get_sqlite
from docrisk.models import RiskRule, RuleScope

logger = get_logger(__name__)


def _row_to_rule(row: sqlite3.Row) -> RiskRule:
    return RiskRule(
        rule_id=row["rule_id"],
        owner_id=row["owner_id"],
        scope=row["scope"],
        code=row["code"],
        description=row["description"],
        weight=row["weight"],
        severity=row["severity"],
        is_active=bool(row["is_active"]),
        config=json.loads(row["config"] or "{}"),
    )


class RuleCatalog:
    """Read-mostly access to risk rule definitions."""

    def __init__(
        self,
        db: SQLiteManager | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        """Initialize the catalog.

        Args:
            db: SQLite manager holding the ``risk_rules`` table.
            cache: Cache for resolved rule lists.
        """
        self.db = db or get_sqlite()
        self.cache = cache or TTLCache(
            max_size=settings.rule_cache_max_size,
            ttl_seconds=settings.rule_cache_ttl_seconds,
        )
        self._config_errors: dict[str, str] = {}

    # =========================================================================
    # Read
    # =========================================================================

    def list_active_rules(
        self, entity_id: str | None, scope: RuleScope
    ) -> list[RiskRule]:
        """Active rules for ``scope`` owned globally or by ``entity_id``.

        Args:
            entity_id: Entity whose overrides apply (None for globals only).
            scope: Rule scope.

        Returns:
            Rules ordered by code; an entity rule hides the global one with
            the same code.
        """
        key = (entity_id, RuleScope(scope).value)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        rows = self.db.execute(
            """
            SELECT * FROM risk_rules
            WHERE scope = ? AND is_active = 1
              AND (owner_id IS NULL OR owner_id = ?)
            ORDER BY code, owner_id IS NOT NULL
            """,
            (RuleScope(scope).value, entity_id),
        )

        resolved: dict[str, RiskRule] = {}
        for row in rows:
            rule = self._load_valid(row)
            if rule is None:
                continue
            # Rows are ordered global first, so an entity rule overwrites
            resolved[rule.code] = rule

        rules = [resolved[code] for code in sorted(resolved)]
        self.cache.set(key, tuple(rules))
        return rules

    def get_rule(self, rule_id: str) -> RiskRule:
        """Fetch one rule by id, active or not.

        Raises:
            ResourceNotFoundError: No such rule.
            RuleConfigurationError: The stored row is invalid.
        """
        rows = self.db.execute("SELECT * FROM risk_rules WHERE rule_id = ?", (rule_id,))
        if not rows:
            raise ResourceNotFoundError(
                f"Rule {rule_id} not found", resource_type="risk_rule", resource_id=rule_id
            )
        try:
            return _row_to_rule(rows[0])
        except PydanticValidationError as e:
            raise RuleConfigurationError(
                f"Stored rule {rule_id} is invalid",
                rule_code=rows[0]["code"],
                detail={"errors": e.errors(include_url=False)},
            ) from e

    @property
    def config_errors(self) -> dict[str, str]:
        """Invalid rule rows seen while loading, keyed by rule id."""
        return dict(self._config_errors)

    # =========================================================================
    # Write (configuration management)
    # =========================================================================

    def save_rule(self, rule: RiskRule) -> RiskRule:
        """Create or update a rule, keyed by (owner, scope, code).

        Returns:
            The stored rule (keeps the existing rule_id on update).

        Raises:
            RuleConfigurationError: The weight is not positive.
        """
        if rule.weight <= 0:
            raise RuleConfigurationError(
                "Rule weight must be positive",
                rule_code=rule.code,
                detail={"weight": rule.weight},
            )

        now = datetime.now().isoformat()
        with self.db.connect() as conn:
            existing = conn.execute(
                """
                SELECT rule_id FROM risk_rules
                WHERE owner_id IS ? AND scope = ? AND code = ?
                """,
                (rule.owner_id, rule.scope.value, rule.code),
            ).fetchone()

            rule_id = existing["rule_id"] if existing else rule.rule_id
            conn.execute(
                """
                INSERT INTO risk_rules (
                    rule_id, owner_id, scope, code, description, weight,
                    severity, is_active, config, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (rule_id) DO UPDATE SET
                    description = excluded.description,
                    weight = excluded.weight,
                    severity = excluded.severity,
                    is_active = excluded.is_active,
                    config = excluded.config,
                    updated_at = excluded.updated_at
                """,
                (
                    rule_id,
                    rule.owner_id,
                    rule.scope.value,
                    rule.code,
                    rule.description,
                    rule.weight,
                    rule.severity.value,
                    rule.is_active,
                    json.dumps(rule.config, ensure_ascii=False, default=str),
                    now,
                ),
            )

        self._config_errors.pop(rule_id, None)
        self.invalidate(rule.owner_id)
        audit_log.info(
            f"Rule {rule.code} saved",
            extra={"rule_code": rule.code, "entity_id": rule.owner_id},
        )
        return rule.model_copy(update={"rule_id": rule_id})

    def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule. Returns True if it existed."""
        rows = self.db.execute(
            "SELECT owner_id, code FROM risk_rules WHERE rule_id = ?", (rule_id,)
        )
        if not rows:
            return False
        self.db.execute("DELETE FROM risk_rules WHERE rule_id = ?", (rule_id,))
        self._config_errors.pop(rule_id, None)
        self.invalidate(rows[0]["owner_id"])
        audit_log.info(
            f"Rule {rows[0]['code']} deleted",
            extra={"rule_code": rows[0]["code"], "entity_id": rows[0]["owner_id"]},
        )
        return True

    def invalidate(self, owner_id: str | None = None) -> None:
        """Drop cached rule lists affected by a change to ``owner_id``'s rules.

        A change to a global rule affects every entity.
        """
        if owner_id is None:
            self.cache.clear()
        else:
            self.cache.invalidate_where(lambda key: key[0] == owner_id)

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _load_valid(self, row: sqlite3.Row) -> RiskRule | None:
        """Parse a row; invalid rows are reported to the rule owner and skipped."""
        try:
            return _row_to_rule(row)
        except (PydanticValidationError, json.JSONDecodeError) as e:
            message = self._describe_error(e)
            self._config_errors[row["rule_id"]] = message
            audit_log.error(
                f"Invalid rule configuration skipped: {row['code']} ({message})",
                extra={
                    "rule_code": row["code"],
                    "entity_id": row["owner_id"],
                    "error_code": RuleConfigurationError.error_code,
                },
            )
            logger.error(
                f"Invalid rule configuration skipped: {row['code']}",
                extra={"rule_code": row["code"], "entity_id": row["owner_id"]},
            )
            return None

    @staticmethod
    def _describe_error(error: Exception) -> str:
        if isinstance(error, PydanticValidationError):
            return "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in error.errors(include_url=False)
            )
        return str(error)
