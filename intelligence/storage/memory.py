"""
Dict-backed PipelineStore.

Honors the same unique constraints as the PostgreSQL schema:
(tenant, dedup_hash) for signals, (tenant, type, client, period_start) for
quality metrics, one priority per insight and one claim per (tenant, batch).
Each mutating method finishes without awaiting, so on a single event loop
every check-then-write is atomic.

Used by the test suite and by local runs with STORAGE_BACKEND=memory.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

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
    utc_now,
)
from intelligence.storage.base import PipelineStore


class InMemoryStore(PipelineStore):

    def __init__(self) -> None:
        self.signals: Dict[str, Signal] = {}
        self._dedup_index: Dict[Tuple[str, str], str] = {}
        self.routes: Dict[str, SignalRoute] = {}
        self.metrics: Dict[Tuple[str, str], Dict[date, DailyMetrics]] = {}
        self.thresholds: Dict[Tuple[str, str], Dict[str, AnomalyThreshold]] = {}
        self.insights: Dict[str, Insight] = {}
        self.priorities: Dict[str, Priority] = {}
        self.aggregator_configs: Dict[str, AggregatorConfig] = {}
        self.priority_weights: Dict[str, PriorityWeights] = {}
        self.outcomes: Dict[str, Outcome] = {}
        self.quality_metrics: Dict[Tuple[str, str, str, date], QualityMetric] = {}
        self.claims: Dict[Tuple[str, str], Tuple[str, datetime]] = {}
        self.events: List[Dict[str, Any]] = []

    # =========================================================================
    # Seeding helpers (configuration records and metric syncs)
    # =========================================================================

    def add_daily_metrics(self, tenant_id: str, rows: List[DailyMetrics]) -> None:
        for row in rows:
            self.metrics.setdefault((tenant_id, row.client_id), {})[row.metric_date] = row

    def set_anomaly_threshold(self, tenant_id: str, client_id: str, threshold: AnomalyThreshold) -> None:
        self.thresholds.setdefault((tenant_id, client_id), {})[threshold.metric_type.value] = threshold

    def set_priority_weights(self, tenant_id: str, weights: PriorityWeights) -> None:
        self.priority_weights[tenant_id] = weights

    def set_aggregator_config(self, config: AggregatorConfig) -> None:
        self.aggregator_configs[config.tenant_id] = config

    # =========================================================================
    # Signals
    # =========================================================================

    async def insert_signal(self, signal: NormalizedSignal) -> Tuple[Signal, bool]:
        key = (signal.tenant_id, signal.dedup_hash)
        existing_id = self._dedup_index.get(key)
        if existing_id is not None:
            return self.signals[existing_id], False

        stored = Signal.from_normalized(signal)
        self.signals[stored.id] = stored
        self._dedup_index[key] = stored.id
        return stored, True

    async def find_signal_by_dedup_hash(self, tenant_id: str, dedup_hash: str) -> Optional[Signal]:
        signal_id = self._dedup_index.get((tenant_id, dedup_hash))
        return self.signals.get(signal_id) if signal_id else None

    async def get_signal(self, tenant_id: str, signal_id: str) -> Optional[Signal]:
        signal = self.signals.get(signal_id)
        if signal is None or signal.tenant_id != tenant_id:
            return None
        return signal

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
        signal = await self.get_signal(tenant_id, signal_id)
        if signal is None:
            return None

        changes: Dict[str, Any] = {"status": status, "last_error": last_error}
        if discard_reason is not None:
            changes["discard_reason"] = discard_reason
        if insight_id is not None:
            changes["insight_id"] = insight_id
        if increment_retry:
            changes["retry_count"] = signal.retry_count + 1
        if status in (SignalStatus.PROCESSED, SignalStatus.DISCARDED):
            changes["processed_at"] = utc_now()

        updated = signal.model_copy(update=changes)
        self.signals[signal_id] = updated
        return updated

    async def list_signals(self, tenant_id: str, status: SignalStatus, limit: int = 100) -> List[Signal]:
        matches = [s for s in self.signals.values() if s.tenant_id == tenant_id and s.status == status]
        matches.sort(key=lambda s: s.created_at, reverse=True)
        return matches[:limit]

    async def get_unprocessed_signals(self, tenant_id: str, limit: int) -> List[Signal]:
        pending = [
            s for s in self.signals.values()
            if s.tenant_id == tenant_id and s.status == SignalStatus.PENDING
        ]
        pending.sort(key=lambda s: s.created_at)
        return pending[:limit]

    # =========================================================================
    # Routes
    # =========================================================================

    async def create_route(self, route: SignalRoute) -> SignalRoute:
        self.routes[route.id] = route
        return route

    async def list_routes(self, tenant_id: str) -> List[SignalRoute]:
        return [r for r in self.routes.values() if r.tenant_id == tenant_id]

    async def delete_route(self, tenant_id: str, route_id: str) -> bool:
        route = self.routes.get(route_id)
        if route is None or route.tenant_id != tenant_id:
            return False
        del self.routes[route_id]
        return True

    async def get_matching_routes(self, tenant_id: str, source: str, signal_type: str) -> List[SignalRoute]:
        return [
            r for r in self.routes.values()
            if r.tenant_id == tenant_id
            and r.enabled
            and r.source in (None, source)
            and r.signal_type in (None, signal_type)
        ]

    # =========================================================================
    # Metrics and thresholds
    # =========================================================================

    async def get_historical_metrics(self, tenant_id: str, client_id: str, days: int) -> List[DailyMetrics]:
        rows = self.metrics.get((tenant_id, client_id), {})
        ordered = sorted(rows.values(), key=lambda r: r.metric_date, reverse=True)
        return ordered[:days]

    async def get_anomaly_thresholds(self, tenant_id: str, client_id: str) -> List[AnomalyThreshold]:
        return list(self.thresholds.get((tenant_id, client_id), {}).values())

    async def list_clients(self, tenant_id: str) -> List[str]:
        return sorted(client for tenant, client in self.metrics if tenant == tenant_id)

    async def list_tenants(self) -> List[str]:
        tenants = {tenant for tenant, _ in self.metrics}
        tenants.update(s.tenant_id for s in self.signals.values())
        return sorted(tenants)

    # =========================================================================
    # Insights and priorities
    # =========================================================================

    async def create_insight(self, insight: Insight) -> Insight:
        self.insights[insight.id] = insight
        return insight

    async def get_insight(self, tenant_id: str, insight_id: str) -> Optional[Insight]:
        insight = self.insights.get(insight_id)
        if insight is None or insight.tenant_id != tenant_id:
            return None
        return insight

    async def list_insights(self, tenant_id: str, status: InsightStatus, limit: int = 100) -> List[Insight]:
        matches = [i for i in self.insights.values() if i.tenant_id == tenant_id and i.status == status]
        matches.sort(key=lambda i: i.created_at)
        return matches[:limit]

    async def update_insight_status(self, tenant_id: str, insight_id: str, status: InsightStatus) -> None:
        insight = await self.get_insight(tenant_id, insight_id)
        if insight is not None:
            self.insights[insight_id] = insight.model_copy(update={"status": status})

    async def get_aggregator_config(self, tenant_id: str) -> Optional[AggregatorConfig]:
        return self.aggregator_configs.get(tenant_id)

    async def get_priority_weights(self, tenant_id: str) -> Optional[PriorityWeights]:
        return self.priority_weights.get(tenant_id)

    async def upsert_priority(self, priority: Priority) -> Priority:
        existing = next(
            (p for p in self.priorities.values() if p.insight_id == priority.insight_id),
            None,
        )
        if existing is not None:
            priority = priority.model_copy(update={"id": existing.id})
        self.priorities[priority.id] = priority
        return priority

    async def list_priorities(
        self, tenant_id: str, status: PriorityStatus, limit: Optional[int] = None
    ) -> List[Priority]:
        matches = [p for p in self.priorities.values() if p.tenant_id == tenant_id and p.status == status]
        matches.sort(key=lambda p: p.priority_score, reverse=True)
        return matches[:limit] if limit is not None else matches

    # =========================================================================
    # Outcomes and quality metrics
    # =========================================================================

    async def create_outcome(self, outcome: Outcome) -> Outcome:
        self.outcomes[outcome.id] = outcome
        return outcome

    async def get_outcome(self, tenant_id: str, outcome_id: str) -> Optional[Outcome]:
        outcome = self.outcomes.get(outcome_id)
        if outcome is None or outcome.tenant_id != tenant_id:
            return None
        return outcome

    async def save_outcome(self, outcome: Outcome) -> Outcome:
        self.outcomes[outcome.id] = outcome
        return outcome

    async def list_outcomes(
        self,
        tenant_id: str,
        recommendation_type: str,
        client_id: Optional[str],
        created_from: datetime,
        created_to: datetime,
    ) -> List[Outcome]:
        return [
            o for o in self.outcomes.values()
            if o.tenant_id == tenant_id
            and o.recommendation_type == recommendation_type
            and (client_id is None or o.client_id == client_id)
            and created_from <= o.created_at < created_to
        ]

    async def upsert_quality_metric(self, metric: QualityMetric) -> QualityMetric:
        key = (metric.tenant_id, metric.recommendation_type, metric.client_id or "", metric.period_start)
        existing = self.quality_metrics.get(key)
        if existing is not None:
            metric = metric.model_copy(update={"id": existing.id})
        self.quality_metrics[key] = metric
        return metric

    async def list_quality_metrics(
        self, tenant_id: str, since: date, client_id: Optional[str] = None
    ) -> List[QualityMetric]:
        matches = [
            m for m in self.quality_metrics.values()
            if m.tenant_id == tenant_id
            and m.period_start >= since
            and (client_id is None or m.client_id == client_id)
        ]
        matches.sort(key=lambda m: m.period_start, reverse=True)
        return matches

    # =========================================================================
    # Batch claims and activity
    # =========================================================================

    async def try_claim_batch(self, tenant_id: str, batch_name: str, owner: str, ttl_seconds: int) -> bool:
        now = utc_now()
        current = self.claims.get((tenant_id, batch_name))
        if current is not None and current[1] > now:
            return False
        self.claims[(tenant_id, batch_name)] = (owner, now + timedelta(seconds=ttl_seconds))
        return True

    async def release_batch_claim(self, tenant_id: str, batch_name: str, owner: str) -> None:
        current = self.claims.get((tenant_id, batch_name))
        if current is not None and current[0] == owner:
            del self.claims[(tenant_id, batch_name)]

    async def record_pipeline_event(self, tenant_id: str, event_type: str, details: Dict[str, Any]) -> None:
        self.events.append({
            "tenant_id": tenant_id,
            "event_type": event_type,
            "details": details,
            "created_at": utc_now(),
        })
