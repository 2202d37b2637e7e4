"""
PostgreSQL implementation of the storage boundary.

Built on the asyncpg helpers in intelligence.core.database and the SQL text in
intelligence.sql. JSONB columns are written as JSON text and decoded on read.

Dedup relies entirely on the signals (tenant_id, dedup_hash) unique
constraint: the insert uses ON CONFLICT DO NOTHING, and a caller that loses
the race re-reads and returns the winner's row instead of raising.
"""

import json
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from intelligence.core.database import (
    execute_command,
    execute_query,
    execute_query_one,
    rows_affected,
)
from intelligence.models import (
    AggregatorConfig,
    AnomalyThreshold,
    DailyMetrics,
    Insight,
    InsightStatus,
    NormalizedSignal,
    Outcome,
    Priority,
    PriorityStatus,
    PriorityWeights,
    QualityMetric,
    Signal,
    SignalRoute,
    SignalStatus,
)
from intelligence.sql import (
    get_aggregator_config_query,
    get_anomaly_thresholds_query,
    get_claim_batch_query,
    get_clients_for_tenant_query,
    get_delete_route_query,
    get_historical_metrics_query,
    get_insert_insight_query,
    get_insert_outcome_query,
    get_insert_pipeline_event_query,
    get_insert_route_query,
    get_insert_signal_query,
    get_insight_by_id_query,
    get_insights_by_status_query,
    get_matching_routes_query,
    get_outcome_by_id_query,
    get_outcomes_for_period_query,
    get_priorities_by_status_query,
    get_priority_config_query,
    get_quality_metrics_since_query,
    get_release_batch_query,
    get_routes_for_tenant_query,
    get_signal_by_dedup_hash_query,
    get_signal_by_id_query,
    get_signals_by_status_query,
    get_tenants_query,
    get_unprocessed_signals_query,
    get_update_insight_status_query,
    get_update_outcome_query,
    get_update_signal_status_query,
    get_upsert_priority_query,
    get_upsert_quality_metric_query,
)
from intelligence.storage.base import PipelineStore


logger = logging.getLogger(__name__)


# =============================================================================
# Row conversion helpers
# =============================================================================


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _loads(value: Any) -> Any:
    """Decode a JSONB column that asyncpg returned as text."""
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _record(row: Any, json_fields: Tuple[str, ...] = ()) -> Dict[str, Any]:
    data = dict(row)
    for field in json_fields:
        if field in data:
            data[field] = _loads(data[field])
    return data


def _signal(row: Any) -> Signal:
    return Signal(**_record(row, ("payload",)))


def _route(row: Any) -> SignalRoute:
    return SignalRoute(**_record(row, ("urgency_filter", "payload_filter")))


def _insight(row: Any) -> Insight:
    return Insight(**_record(row, ("source_signal_ids", "source_systems")))


def _priority(row: Any) -> Priority:
    return Priority(**_record(row, ("weights",)))


def _outcome(row: Any) -> Outcome:
    return Outcome(**_record(row, ("predicted_impact", "actual_impact")))


class PostgresStore(PipelineStore):
    """PipelineStore backed by the process-wide asyncpg pool."""

    # =========================================================================
    # Signals
    # =========================================================================

    async def insert_signal(self, signal: NormalizedSignal) -> Tuple[Signal, bool]:
        stored = Signal.from_normalized(signal)
        row = await execute_query_one(
            get_insert_signal_query(),
            stored.id,
            stored.tenant_id,
            stored.source,
            stored.signal_type,
            stored.category,
            _dumps(stored.payload),
            stored.urgency.value,
            stored.severity.value,
            stored.client_id,
            stored.correlation_key,
            stored.dedup_hash,
            stored.occurred_at,
        )
        if row is not None:
            return _signal(row), True

        # Lost the insert to an existing row; return the winner
        existing = await self.find_signal_by_dedup_hash(signal.tenant_id, signal.dedup_hash)
        if existing is None:
            raise RuntimeError(
                f"Signal insert conflicted but no row found for dedup_hash={signal.dedup_hash}"
            )
        logger.debug(f"Duplicate signal for tenant={signal.tenant_id} hash={signal.dedup_hash[:12]}")
        return existing, False

    async def find_signal_by_dedup_hash(self, tenant_id: str, dedup_hash: str) -> Optional[Signal]:
        row = await execute_query_one(get_signal_by_dedup_hash_query(), tenant_id, dedup_hash)
        return _signal(row) if row else None

    async def get_signal(self, tenant_id: str, signal_id: str) -> Optional[Signal]:
        row = await execute_query_one(get_signal_by_id_query(), tenant_id, signal_id)
        return _signal(row) if row else None

    async def update_signal_status(
        self,
        tenant_id: str,
        signal_id: str,
        status: SignalStatus,
        *,
        discard_reason: Optional[str] = None,
        insight_id: Optional[str] = None,
        last_error: Optional[str] = None,
        increment_retry: bool = False,
    ) -> Optional[Signal]:
        row = await execute_query_one(
            get_update_signal_status_query(),
            tenant_id,
            signal_id,
            status.value,
            discard_reason,
            insight_id,
            last_error,
            increment_retry,
        )
        return _signal(row) if row else None

    async def list_signals(self, tenant_id: str, status: SignalStatus, limit: int = 100) -> List[Signal]:
        rows = await execute_query(get_signals_by_status_query(), tenant_id, status.value, limit)
        return [_signal(row) for row in rows]

    async def get_unprocessed_signals(self, tenant_id: str, limit: int) -> List[Signal]:
        rows = await execute_query(get_unprocessed_signals_query(), tenant_id, limit)
        return [_signal(row) for row in rows]

    # =========================================================================
    # Routes
    # =========================================================================

    async def create_route(self, route: SignalRoute) -> SignalRoute:
        row = await execute_query_one(
            get_insert_route_query(),
            route.id,
            route.tenant_id,
            route.workflow_id,
            route.name,
            route.source,
            route.signal_type,
            _dumps([u.value for u in route.urgency_filter]),
            _dumps([c.model_dump(mode="json") for c in route.payload_filter]),
            route.enabled,
            route.priority,
            route.created_at,
        )
        return _route(row)

    async def list_routes(self, tenant_id: str) -> List[SignalRoute]:
        rows = await execute_query(get_routes_for_tenant_query(), tenant_id)
        return [_route(row) for row in rows]

    async def delete_route(self, tenant_id: str, route_id: str) -> bool:
        status = await execute_command(get_delete_route_query(), tenant_id, route_id)
        return rows_affected(status) > 0

    async def get_matching_routes(self, tenant_id: str, source: str, signal_type: str) -> List[SignalRoute]:
        rows = await execute_query(get_matching_routes_query(), tenant_id, source, signal_type)
        return [_route(row) for row in rows]

    # =========================================================================
    # Metrics and thresholds
    # =========================================================================

    async def get_historical_metrics(self, tenant_id: str, client_id: str, days: int) -> List[DailyMetrics]:
        rows = await execute_query(get_historical_metrics_query(), tenant_id, client_id, days)
        return [DailyMetrics(**dict(row)) for row in rows]

    async def get_anomaly_thresholds(self, tenant_id: str, client_id: str) -> List[AnomalyThreshold]:
        rows = await execute_query(get_anomaly_thresholds_query(), tenant_id, client_id)
        thresholds = []
        for row in rows:
            try:
                thresholds.append(AnomalyThreshold(**dict(row)))
            except ValueError as e:
                # Unknown metric or non-positive threshold: fall back to defaults
                logger.warning(
                    f"Ignoring invalid anomaly threshold for tenant={tenant_id} "
                    f"client={client_id}: {e}"
                )
        return thresholds

    async def list_clients(self, tenant_id: str) -> List[str]:
        rows = await execute_query(get_clients_for_tenant_query(), tenant_id)
        return [row["client_id"] for row in rows]

    async def list_tenants(self) -> List[str]:
        rows = await execute_query(get_tenants_query())
        return [row["tenant_id"] for row in rows]

    # =========================================================================
    # Insights and priorities
    # =========================================================================

    async def create_insight(self, insight: Insight) -> Insight:
        row = await execute_query_one(
            get_insert_insight_query(),
            insight.id,
            insight.tenant_id,
            insight.insight_type,
            insight.category,
            insight.title,
            insight.description,
            insight.summary,
            insight.suggested_action,
            insight.severity.value,
            insight.confidence_score,
            insight.client_id,
            insight.correlation_key,
            insight.metric_key,
            insight.current_value,
            insight.baseline_value,
            insight.delta_percent,
            _dumps(insight.source_signal_ids),
            _dumps(insight.source_systems),
            insight.status.value,
            insight.time_range_start,
            insight.time_range_end,
            insight.created_by_agent,
            insight.created_at,
        )
        return _insight(row)

    async def get_insight(self, tenant_id: str, insight_id: str) -> Optional[Insight]:
        row = await execute_query_one(get_insight_by_id_query(), tenant_id, insight_id)
        return _insight(row) if row else None

    async def list_insights(self, tenant_id: str, status: InsightStatus, limit: int = 100) -> List[Insight]:
        rows = await execute_query(get_insights_by_status_query(), tenant_id, status.value, limit)
        return [_insight(row) for row in rows]

    async def update_insight_status(self, tenant_id: str, insight_id: str, status: InsightStatus) -> None:
        await execute_command(get_update_insight_status_query(), tenant_id, insight_id, status.value)

    async def get_aggregator_config(self, tenant_id: str) -> Optional[AggregatorConfig]:
        row = await execute_query_one(get_aggregator_config_query(), tenant_id)
        return AggregatorConfig(**dict(row)) if row else None

    async def get_priority_weights(self, tenant_id: str) -> Optional[PriorityWeights]:
        row = await execute_query_one(get_priority_config_query(), tenant_id)
        if row is None:
            return None
        # Missing columns become 0 and are replaced by defaults in the engine
        return PriorityWeights(
            impact=row["impact_weight"] or 0.0,
            urgency=row["urgency_weight"] or 0.0,
            confidence=row["confidence_weight"] or 0.0,
            resource=row["resource_weight"] or 0.0,
        )

    async def upsert_priority(self, priority: Priority) -> Priority:
        row = await execute_query_one(
            get_upsert_priority_query(),
            priority.id,
            priority.tenant_id,
            priority.insight_id,
            priority.priority_score,
            priority.impact_score,
            priority.urgency_score,
            priority.confidence_score,
            priority.resource_score,
            priority.bucket.value,
            priority.status.value,
            priority.recommended_due_date,
            _dumps(priority.weights.model_dump()),
            priority.computed_at,
        )
        return _priority(row)

    async def list_priorities(
        self, tenant_id: str, status: PriorityStatus, limit: Optional[int] = None
    ) -> List[Priority]:
        if limit is None:
            rows = await execute_query(get_priorities_by_status_query(False), tenant_id, status.value)
        else:
            rows = await execute_query(get_priorities_by_status_query(True), tenant_id, status.value, limit)
        return [_priority(row) for row in rows]

    # =========================================================================
    # Outcomes and quality metrics
    # =========================================================================

    async def create_outcome(self, outcome: Outcome) -> Outcome:
        row = await execute_query_one(
            get_insert_outcome_query(),
            outcome.id,
            outcome.initiative_id,
            outcome.tenant_id,
            outcome.client_id,
            outcome.recommendation_type,
            outcome.recommendation_source_id,
            outcome.accepted,
            outcome.outcome_status.value,
            _dumps(outcome.predicted_impact),
            _dumps(outcome.actual_impact),
            outcome.variance_score,
            outcome.variance_direction.value if outcome.variance_direction else None,
            outcome.accepted_at,
            outcome.rejected_at,
            outcome.completed_at,
            outcome.measured_at,
            outcome.notes,
            outcome.lessons_learned,
            outcome.created_at,
            outcome.updated_at,
        )
        return _outcome(row)

    async def get_outcome(self, tenant_id: str, outcome_id: str) -> Optional[Outcome]:
        row = await execute_query_one(get_outcome_by_id_query(), tenant_id, outcome_id)
        return _outcome(row) if row else None

    async def save_outcome(self, outcome: Outcome) -> Outcome:
        row = await execute_query_one(
            get_update_outcome_query(),
            outcome.tenant_id,
            outcome.id,
            outcome.outcome_status.value,
            _dumps(outcome.actual_impact),
            outcome.variance_score,
            outcome.variance_direction.value if outcome.variance_direction else None,
            outcome.completed_at,
            outcome.measured_at,
            outcome.notes,
            outcome.lessons_learned,
            outcome.updated_at,
        )
        return _outcome(row)

    async def list_outcomes(
        self,
        tenant_id: str,
        recommendation_type: str,
        client_id: Optional[str],
        created_from: datetime,
        created_to: datetime,
    ) -> List[Outcome]:
        rows = await execute_query(
            get_outcomes_for_period_query(),
            tenant_id,
            recommendation_type,
            client_id,
            created_from,
            created_to,
        )
        return [_outcome(row) for row in rows]

    async def upsert_quality_metric(self, metric: QualityMetric) -> QualityMetric:
        row = await execute_query_one(
            get_upsert_quality_metric_query(),
            metric.id,
            metric.tenant_id,
            metric.client_id,
            metric.recommendation_type,
            metric.period_start,
            metric.period_end,
            metric.total_recommendations,
            metric.accepted_count,
            metric.rejected_count,
            metric.completed_count,
            metric.success_count,
            metric.failure_count,
            metric.overperform_count,
            metric.underperform_count,
            metric.acceptance_rate,
            metric.success_rate,
            metric.completion_rate,
            metric.avg_variance,
            metric.quality_score,
            metric.confidence_level.value,
            metric.updated_at,
            metric.client_id or "",
        )
        return QualityMetric(**dict(row))

    async def list_quality_metrics(
        self, tenant_id: str, since: date, client_id: Optional[str] = None
    ) -> List[QualityMetric]:
        rows = await execute_query(get_quality_metrics_since_query(), tenant_id, since, client_id)
        return [QualityMetric(**dict(row)) for row in rows]

    # =========================================================================
    # Batch claims and activity
    # =========================================================================

    async def try_claim_batch(self, tenant_id: str, batch_name: str, owner: str, ttl_seconds: int) -> bool:
        row = await execute_query_one(
            get_claim_batch_query(), tenant_id, batch_name, owner, float(ttl_seconds)
        )
        return row is not None

    async def release_batch_claim(self, tenant_id: str, batch_name: str, owner: str) -> None:
        await execute_command(get_release_batch_query(), tenant_id, batch_name, owner)

    async def record_pipeline_event(self, tenant_id: str, event_type: str, details: Dict[str, Any]) -> None:
        await execute_command(get_insert_pipeline_event_query(), tenant_id, event_type, _dumps(details))
