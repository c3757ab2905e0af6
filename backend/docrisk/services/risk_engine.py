"""Risk evaluation engine.

Orchestrates one evaluation: load the applicable rules, build the rule
context, evaluate, aggregate the score and persist it. Document evaluation
runs synchronously per document; company evaluation can be batched over
the business units of an entity.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from docrisk.core.config import settings
from docrisk.core.logging import LogContext, get_logger, set_evaluation_id
from docrisk.db.store import RiskStore
from docrisk.models import CompanyRiskScore, DocumentFields, DocumentRiskScore, RuleScope
from docrisk.services.counterparty import CounterpartyAnalysisService
from docrisk.services.rules.catalog import RuleCatalog
from docrisk.services.rules.company_rules import (
    CompanyRuleContext,
    evaluate_company_rules,
    window_start,
)
from docrisk.services.rules.document_rules import (
    DocumentRuleContext,
    evaluate_document_rules,
)
from docrisk.services.rules.fraud_patterns import FraudPatternDetector
from docrisk.services.rules.scoring import RiskScoreAggregator

logger = get_logger(__name__)


@dataclass
class BatchResult:
    """Result of a company evaluation batch."""

    entity_id: str
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    scores: dict[str, CompanyRiskScore] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    execution_time_ms: float = 0.0

    @property
    def succeeded(self) -> int:
        return len(self.scores)

    @property
    def failed(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "entity_id": self.entity_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat()
            if self.completed_at
            else None,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "scores": {
                bu: score.model_dump(mode="json") for bu, score in self.scores.items()
            },
            "errors": self.errors,
            "execution_time_ms": round(self.execution_time_ms, 2),
        }


class RiskEngine:
    """Entry point for document and company risk evaluation."""

    def __init__(
        self,
        store: RiskStore | None = None,
        catalog: RuleCatalog | None = None,
        counterparty_service: CounterpartyAnalysisService | None = None,
        detector: FraudPatternDetector | None = None,
        aggregator: RiskScoreAggregator | None = None,
        max_workers: int | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: History and score persistence.
            catalog: Rule definitions.
            counterparty_service: Counterparty baselining.
            detector: Fraud pattern detector.
            aggregator: Score aggregation and persistence.
            max_workers: Parallel business units in a company batch.
        """
        self.store = store or RiskStore()
        self.catalog = catalog or RuleCatalog()
        self.counterparty_service = counterparty_service or CounterpartyAnalysisService(
            store=self.store
        )
        self.detector = detector or FraudPatternDetector()
        self.aggregator = aggregator or RiskScoreAggregator(store=self.store)
        self.max_workers = max_workers or settings.max_workers

    def evaluate_document(
        self,
        document: DocumentFields,
        features: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> DocumentRiskScore:
        """Score one document and persist the result.

        Args:
            document: Extracted document fields.
            features: Extraction signals (e.g. ``parsing_failed``).
            now: Evaluation time; fixes the history windows.

        Returns:
            The stored document score.
        """
        now = now or datetime.now()
        set_evaluation_id()
        rules = self.catalog.list_active_rules(document.entity_id, RuleScope.DOCUMENT)
        context = DocumentRuleContext(
            document=document,
            store=self.store,
            counterparty_service=self.counterparty_service,
            detector=self.detector,
            now=now,
            features=dict(features or {}),
        )

        with LogContext(
            logger,
            "ドキュメント評価",
            entity_id=document.entity_id,
            business_unit_id=document.business_unit_id,
            document_id=document.document_id,
        ):
            evaluation = evaluate_document_rules(rules, context)
            if evaluation.failed_codes:
                logger.warning(
                    f"{len(evaluation.failed_codes)} rule(s) failed: "
                    f"{', '.join(evaluation.failed_codes)}",
                    extra={"document_id": document.document_id},
                )
            return self.aggregator.score_document(document, evaluation, now)

    def evaluate_company(
        self,
        entity_id: str,
        business_unit_id: str,
        now: datetime | None = None,
    ) -> CompanyRiskScore:
        """Score one business unit over the rolling window and persist it."""
        now = now or datetime.now()
        set_evaluation_id()
        rules = self.catalog.list_active_rules(entity_id, RuleScope.COMPANY)
        context = CompanyRuleContext(
            entity_id=entity_id,
            business_unit_id=business_unit_id,
            store=self.store,
            detector=self.detector,
            now=now,
        )

        with LogContext(
            logger,
            "企業評価",
            entity_id=entity_id,
            business_unit_id=business_unit_id,
        ):
            evaluation = evaluate_company_rules(rules, context)
            window_days = context.window_days
            return self.aggregator.score_company(
                entity_id,
                business_unit_id,
                evaluation,
                window_days=window_days,
                window_start=window_start(now.date(), window_days),
                now=now,
            )

    def evaluate_companies(
        self,
        entity_id: str,
        business_unit_ids: list[str] | None = None,
        now: datetime | None = None,
    ) -> BatchResult:
        """Score many business units in parallel.

        A unit that fails is logged and recorded in ``errors``; the others
        still complete.

        Args:
            entity_id: Tenant ID.
            business_unit_ids: Units to score (all known units if omitted).
            now: Evaluation time shared by the whole batch.
        """
        start_time = time.perf_counter()
        now = now or datetime.now()
        if business_unit_ids is None:
            business_unit_ids = self.store.list_business_units(entity_id)
        result = BatchResult(entity_id=entity_id)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self.evaluate_company, entity_id, bu, now): bu
                for bu in business_unit_ids
            }

            for future in as_completed(futures):
                bu = futures[future]
                try:
                    result.scores[bu] = future.result()
                except Exception as e:
                    logger.error(
                        f"Company evaluation failed for {bu}: {e}",
                        extra={
                            "entity_id": entity_id,
                            "business_unit_id": bu,
                            "error_code": getattr(e, "error_code", None),
                        },
                        exc_info=True,
                    )
                    result.errors[bu] = str(e)

        result.completed_at = datetime.now()
        result.execution_time_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Company batch finished: {result.succeeded} scored, {result.failed} failed",
            extra={"entity_id": entity_id, "duration_ms": result.execution_time_ms},
        )
        return result
