"""
Pipeline wiring.

Builds every component over one store and connects them by message passing:
the emitter's publish callable is the router's ingest_normalized, so anomaly
detection and outcome feedback influence the rest of the pipeline only by
emitting signals. No component holds a reference to an upstream component.
"""

import logging
from typing import Optional

from intelligence.core.defaults import PipelineDefaults
from intelligence.core.side_effects import run_non_blocking
from intelligence.models import PipelineRunResult
from intelligence.services.adapters import AdapterRegistry, build_default_registry
from intelligence.services.anomaly_detection import AnomalyDetector
from intelligence.services.insight_aggregator import InsightAggregator
from intelligence.services.outcome_feedback import OutcomeFeedbackService
from intelligence.services.priority_engine import PriorityEngine
from intelligence.services.signal_emitter import SignalEmitter
from intelligence.services.signal_router import SignalRouter
from intelligence.storage.base import PipelineStore


logger = logging.getLogger(__name__)


class IntelligencePipeline:
    """
    All pipeline components bound to one store.

    Args:
        store: Storage boundary shared by every component.
        defaults: Immutable default tables.
        registry: Adapter registry; the default set when omitted.
        claim_ttl_seconds: Batch-claim lifetime for aggregation and scoring.
        anomaly_history_days: Days of history per detection pass.
        trend_history_days: Days of history for trend analysis.
    """

    def __init__(
        self,
        store: PipelineStore,
        defaults: PipelineDefaults,
        registry: Optional[AdapterRegistry] = None,
        claim_ttl_seconds: int = 300,
        anomaly_history_days: int = 45,
        trend_history_days: int = 60,
    ) -> None:
        self.store = store
        self.defaults = defaults
        self.router = SignalRouter(store, registry or build_default_registry())
        self.emitter = SignalEmitter(self.router.ingest_normalized)
        self.detector = AnomalyDetector(
            store,
            self.emitter,
            defaults.anomaly,
            history_days=anomaly_history_days,
            trend_history_days=trend_history_days,
        )
        self.aggregator = InsightAggregator(store, defaults.aggregator, claim_ttl_seconds)
        self.priority_engine = PriorityEngine(store, defaults.priority, claim_ttl_seconds)
        self.feedback = OutcomeFeedbackService(store, self.emitter, defaults.feedback)

    async def run_pipeline(self, tenant_id: str) -> PipelineRunResult:
        """Aggregate pending signals, then score the resulting open insights."""
        aggregation = await self.aggregator.process_signals(tenant_id)
        prioritization = await self.priority_engine.process_insights(tenant_id)

        result = PipelineRunResult(
            tenant_id=tenant_id,
            aggregation=aggregation,
            prioritization=prioritization,
        )

        await run_non_blocking(
            self.store.record_pipeline_event(tenant_id, "pipeline_run", {
                "signals_processed": aggregation.processed,
                "insights_created": aggregation.insights_created,
                "signals_discarded": aggregation.discarded,
                "priorities_created": prioritization.priorities_created,
                "failures": len(aggregation.failures) + len(prioritization.failures),
            }),
            f"record pipeline run for tenant={tenant_id}",
        )

        logger.info(
            f"Pipeline run for tenant={tenant_id}: "
            f"{aggregation.insights_created} insights, {prioritization.priorities_created} priorities"
        )
        return result
