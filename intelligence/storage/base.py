"""
Storage boundary consumed by the pipeline.

Every pipeline component talks to persistence only through PipelineStore.
All methods are tenant-scoped and async. Implementations must back signal
dedup, quality metric upserts, priority-per-insight and batch claims with
unique constraints: the store's uniqueness guarantee is the only concurrency
control the pipeline relies on.

Implementations:
- intelligence.storage.postgres.PostgresStore: asyncpg + PostgreSQL
- intelligence.storage.memory.InMemoryStore: dict-backed, for tests and local runs
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
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
)


class PipelineStore(ABC):
    """Abstract storage boundary for signals, insights, priorities and outcomes."""

    # =========================================================================
    # Signals
    # =========================================================================

    @abstractmethod
    async def insert_signal(self, signal: NormalizedSignal) -> Tuple[Signal, bool]:
        """
        Insert a signal unless one with the same (tenant, dedup hash) exists.

        Returns:
            (signal, created): the stored row and whether this call created it.
            When created is False the returned row is the existing winner.
        """

    @abstractmethod
    async def find_signal_by_dedup_hash(self, tenant_id: str, dedup_hash: str) -> Optional[Signal]:
        ...

    @abstractmethod
    async def get_signal(self, tenant_id: str, signal_id: str) -> Optional[Signal]:
        ...

    @abstractmethod
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
        """Transition a signal's lifecycle fields; returns None if not found."""

    @abstractmethod
    async def list_signals(self, tenant_id: str, status: SignalStatus, limit: int = 100) -> List[Signal]:
        """Signals in a status, newest first."""

    @abstractmethod
    async def get_unprocessed_signals(self, tenant_id: str, limit: int) -> List[Signal]:
        """Pending signals, oldest first, bounded by limit."""

    # =========================================================================
    # Routes
    # =========================================================================

    @abstractmethod
    async def create_route(self, route: SignalRoute) -> SignalRoute:
        ...

    @abstractmethod
    async def list_routes(self, tenant_id: str) -> List[SignalRoute]:
        ...

    @abstractmethod
    async def delete_route(self, tenant_id: str, route_id: str) -> bool:
        ...

    @abstractmethod
    async def get_matching_routes(self, tenant_id: str, source: str, signal_type: str) -> List[SignalRoute]:
        """Enabled routes whose source/type are unset or equal to the given values."""

    # =========================================================================
    # Metrics and thresholds
    # =========================================================================

    @abstractmethod
    async def get_historical_metrics(self, tenant_id: str, client_id: str, days: int) -> List[DailyMetrics]:
        """Up to `days` most recent daily rows for a client, newest first."""

    @abstractmethod
    async def get_anomaly_thresholds(self, tenant_id: str, client_id: str) -> List[AnomalyThreshold]:
        ...

    @abstractmethod
    async def list_clients(self, tenant_id: str) -> List[str]:
        ...

    @abstractmethod
    async def list_tenants(self) -> List[str]:
        ...

    # =========================================================================
    # Insights and priorities
    # =========================================================================

    @abstractmethod
    async def create_insight(self, insight: Insight) -> Insight:
        ...

    @abstractmethod
    async def get_insight(self, tenant_id: str, insight_id: str) -> Optional[Insight]:
        ...

    @abstractmethod
    async def list_insights(self, tenant_id: str, status: InsightStatus, limit: int = 100) -> List[Insight]:
        """Insights in a status, oldest first."""

    @abstractmethod
    async def update_insight_status(self, tenant_id: str, insight_id: str, status: InsightStatus) -> None:
        ...

    @abstractmethod
    async def get_aggregator_config(self, tenant_id: str) -> Optional[AggregatorConfig]:
        ...

    @abstractmethod
    async def get_priority_weights(self, tenant_id: str) -> Optional[PriorityWeights]:
        ...

    @abstractmethod
    async def upsert_priority(self, priority: Priority) -> Priority:
        """One priority per insight; re-scoring replaces the earlier row."""

    @abstractmethod
    async def list_priorities(
        self, tenant_id: str, status: PriorityStatus, limit: Optional[int] = None
    ) -> List[Priority]:
        """Priorities in a status sorted by score, highest first."""

    # =========================================================================
    # Outcomes and quality metrics
    # =========================================================================

    @abstractmethod
    async def create_outcome(self, outcome: Outcome) -> Outcome:
        ...

    @abstractmethod
    async def get_outcome(self, tenant_id: str, outcome_id: str) -> Optional[Outcome]:
        ...

    @abstractmethod
    async def save_outcome(self, outcome: Outcome) -> Outcome:
        ...

    @abstractmethod
    async def list_outcomes(
        self,
        tenant_id: str,
        recommendation_type: str,
        client_id: Optional[str],
        created_from: datetime,
        created_to: datetime,
    ) -> List[Outcome]:
        """
        Outcomes of one recommendation type created in [created_from, created_to).

        client_id=None selects every client of the tenant.
        """

    @abstractmethod
    async def upsert_quality_metric(self, metric: QualityMetric) -> QualityMetric:
        ...

    @abstractmethod
    async def list_quality_metrics(
        self, tenant_id: str, since: date, client_id: Optional[str] = None
    ) -> List[QualityMetric]:
        """Metrics with period_start >= since, newest period first."""

    # =========================================================================
    # Batch claims and activity
    # =========================================================================

    @abstractmethod
    async def try_claim_batch(self, tenant_id: str, batch_name: str, owner: str, ttl_seconds: int) -> bool:
        """
        Atomically claim (tenant, batch_name) for `owner`.

        Succeeds when no claim exists or the existing one has expired.
        """

    @abstractmethod
    async def release_batch_claim(self, tenant_id: str, batch_name: str, owner: str) -> None:
        ...

    @abstractmethod
    async def record_pipeline_event(self, tenant_id: str, event_type: str, details: Dict[str, Any]) -> None:
        """Append an activity log entry. Callers treat this as non-blocking."""
