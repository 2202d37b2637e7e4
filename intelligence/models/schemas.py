"""
Pydantic schemas for the intelligence pipeline.

Sections:
- Signals: normalized signals, persisted signals, routes, ingestion results
- Anomalies: thresholds, daily metric rows, detected anomalies, trends
- Insights: insights, signal groups, aggregator configuration
- Priorities: weights, score breakdowns, priorities
- Outcomes: outcome capture/update, quality metrics, calibration needs
- Batch results: per-item failures and run summaries

Payloads are open string-keyed maps; anything that inspects them goes through
the path accessors in intelligence.services.payload_filter rather than
attribute access.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from intelligence.models.enums import (
    AnomalyType,
    CalibrationType,
    ConfidenceLevel,
    Direction,
    FilterOperator,
    InsightStatus,
    MetricType,
    OutcomeStatus,
    PriorityBucket,
    PriorityStatus,
    Severity,
    SignalStatus,
    TrendDirection,
    Urgency,
    VarianceDirection,
)


def utc_now() -> datetime:
    """Timezone-aware current time used for every pipeline timestamp."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# Signals
# =============================================================================


class NormalizedSignal(BaseModel):
    """
    Canonical signal produced by an adapter, before it is persisted.

    The dedup hash is computed by the normalizer from tenant, source, type,
    client and the canonicalized payload (or an explicit dedup key).
    """
    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(..., min_length=1)
    source: str = Field(..., description="Canonical source system name")
    signal_type: str = Field(..., description="Free-form event classification")
    category: str = Field(..., description="Grouping category for insights")
    payload: Dict[str, Any] = Field(default_factory=dict)
    urgency: Urgency = Urgency.NORMAL
    severity: Severity = Severity.MEDIUM
    client_id: Optional[str] = None
    correlation_key: Optional[str] = None
    dedup_hash: str
    occurred_at: datetime = Field(default_factory=utc_now)


class Signal(NormalizedSignal):
    """
    A persisted signal.

    Content fields are immutable once created; only lifecycle fields (status,
    retry count, discard reason, insight link, last error) change, and only
    through the storage boundary, which returns fresh copies.
    """

    id: str = Field(default_factory=new_id)
    status: SignalStatus = SignalStatus.PENDING
    retry_count: int = 0
    discard_reason: Optional[str] = None
    insight_id: Optional[str] = None
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    processed_at: Optional[datetime] = None

    @classmethod
    def from_normalized(cls, normalized: NormalizedSignal, **overrides: Any) -> "Signal":
        return cls(**{**normalized.model_dump(), **overrides})


class PayloadFilterCondition(BaseModel):
    """
    One condition of a route's payload filter.

    Example:
        {"path": "properties.dealstage", "operator": "eq", "value": "closedwon"}
    """
    path: str = Field(..., description="Dotted path into the signal payload")
    operator: FilterOperator
    value: Any = None


class SignalRoute(BaseModel):
    """
    Routing rule mapping signals to a downstream workflow.

    A route with source or signal_type set to None matches any value. Routes
    are evaluated in descending priority and disabled routes never match.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "tenant_id": "agency-1",
                "workflow_id": "wf-deal-followup",
                "name": "Closed-won deals",
                "source": "crm",
                "signal_type": "deal_update",
                "urgency_filter": ["high", "critical"],
                "payload_filter": [
                    {"path": "properties.dealstage", "operator": "eq", "value": "closedwon"}
                ],
                "priority": 10,
            }
        }
    )

    id: str = Field(default_factory=new_id)
    tenant_id: str
    workflow_id: str
    name: str
    source: Optional[str] = None
    signal_type: Optional[str] = None
    urgency_filter: List[Urgency] = Field(default_factory=list)
    payload_filter: List[PayloadFilterCondition] = Field(default_factory=list)
    enabled: bool = True
    priority: int = 0
    created_at: datetime = Field(default_factory=utc_now)


class SignalIngestionResult(BaseModel):
    signal: Signal
    is_duplicate: bool
    matching_routes: List[SignalRoute] = Field(default_factory=list)
    workflows_triggered: List[str] = Field(default_factory=list)


# =============================================================================
# Anomalies
# =============================================================================


class AnomalyThreshold(BaseModel):
    """Per-metric detection thresholds; stored overrides use the same shape."""
    model_config = ConfigDict(frozen=True)

    metric_type: MetricType
    z_score_threshold: float = Field(..., gt=0)
    percent_change_threshold: float = Field(..., gt=0)
    min_data_points: int = Field(default=14, ge=1)
    enabled: bool = True


class DailyMetrics(BaseModel):
    """One day of a client's metrics; missing metrics are None."""

    metric_date: date
    client_id: str
    sessions: Optional[float] = None
    conversions: Optional[float] = None
    clicks: Optional[float] = None
    impressions: Optional[float] = None
    organic_clicks: Optional[float] = None
    organic_impressions: Optional[float] = None
    avg_position: Optional[float] = None
    spend: Optional[float] = None


class AnomalyMetadata(BaseModel):
    iqr_lower: float
    iqr_upper: float
    is_iqr_outlier: bool
    data_point_count: int
    std_dev: float


class Anomaly(BaseModel):
    """
    A statistical outlier in a client's latest metric value.

    Computed fresh on every detection run and never mutated. False positives
    are reported for inspection but never converted into signals.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="First 16 hex chars of sha256(client:metric:date)")
    tenant_id: str
    client_id: str
    metric_type: MetricType
    anomaly_type: AnomalyType
    direction: Direction
    current_value: float
    expected_value: float
    z_score: float
    percent_change: float
    confidence: float = Field(..., ge=0, le=1)
    severity: Severity
    is_false_positive: bool = False
    data_point_date: date
    detected_at: datetime = Field(default_factory=utc_now)
    metadata: AnomalyMetadata


class TrendAnalysis(BaseModel):
    """Week-over-week and month-over-month movement of one metric."""

    client_id: str
    metric_type: MetricType
    current_week_avg: float
    previous_week_avg: float
    week_over_week: float
    month_over_month: Optional[float] = None
    trend: TrendDirection


class ClientScanResult(BaseModel):
    """Per-client outcome of an anomaly scan."""

    client_id: str
    anomalies: List[Anomaly] = Field(default_factory=list)
    signals_created: int = 0
    error: Optional[str] = None


# =============================================================================
# Insights
# =============================================================================


class Insight(BaseModel):
    """Human-meaningful conclusion synthesized from a group of signals."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    insight_type: str
    category: str
    title: str
    description: str
    summary: str
    suggested_action: Optional[str] = None
    severity: Severity
    confidence_score: float = Field(..., ge=0, le=1)
    client_id: Optional[str] = None
    correlation_key: Optional[str] = None
    metric_key: Optional[str] = None
    current_value: Optional[float] = None
    baseline_value: Optional[float] = None
    delta_percent: Optional[float] = None
    source_signal_ids: List[str] = Field(default_factory=list)
    source_systems: List[str] = Field(default_factory=list)
    status: InsightStatus = InsightStatus.OPEN
    time_range_start: Optional[datetime] = None
    time_range_end: Optional[datetime] = None
    created_by_agent: str = "insight_aggregator_v1"
    created_at: datetime = Field(default_factory=utc_now)


class SignalGroup(BaseModel):
    """Signals sharing (tenant, category, type, correlation key, client)."""

    key: str
    tenant_id: str
    category: str
    signal_type: str
    correlation_key: Optional[str] = None
    client_id: Optional[str] = None
    signals: List[Signal] = Field(default_factory=list)
    severity: Severity = Severity.LOW


class AggregatorConfig(BaseModel):
    """Tenant-scoped aggregator configuration record."""

    tenant_id: str
    batch_size: int = Field(default=100, ge=1)
    min_confidence_threshold: float = Field(default=0.3, ge=0, le=1)


# =============================================================================
# Priorities
# =============================================================================


class PriorityWeights(BaseModel):
    """
    Weights of the four priority components.

    Stored weights need not sum to 1; the priority engine renormalizes them.
    """
    model_config = ConfigDict(frozen=True)

    impact: float = 0.4
    urgency: float = 0.3
    confidence: float = 0.2
    resource: float = 0.1

    @property
    def total(self) -> float:
        return self.impact + self.urgency + self.confidence + self.resource


class ScoreBreakdown(BaseModel):
    """Weighted contribution of each component; they sum to `total`."""

    impact: float
    urgency: float
    confidence: float
    resource: float
    total: float


class Priority(BaseModel):
    id: str = Field(default_factory=new_id)
    tenant_id: str
    insight_id: str
    priority_score: float
    impact_score: float
    urgency_score: float
    confidence_score: float
    resource_score: float
    bucket: PriorityBucket
    status: PriorityStatus = PriorityStatus.PENDING
    recommended_due_date: datetime
    weights: PriorityWeights
    computed_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Outcomes and quality metrics
# =============================================================================


class OutcomeCapture(BaseModel):
    """Request to record whether a recommendation was accepted and how it went."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "initiative_id": "init-42",
                "tenant_id": "agency-1",
                "client_id": "client-7",
                "recommendation_type": "seo_content_refresh",
                "accepted": True,
                "predicted_impact": {"sessions": 1200, "conversions": 40},
            }
        }
    )

    initiative_id: str
    tenant_id: str
    client_id: Optional[str] = None
    recommendation_type: str = Field(..., min_length=1)
    recommendation_source_id: Optional[str] = None
    accepted: bool
    outcome_status: OutcomeStatus = OutcomeStatus.PENDING
    predicted_impact: Dict[str, float] = Field(default_factory=dict)
    actual_impact: Optional[Dict[str, float]] = None
    notes: Optional[str] = None


class OutcomeUpdate(BaseModel):
    outcome_status: Optional[OutcomeStatus] = None
    actual_impact: Optional[Dict[str, float]] = None
    lessons_learned: Optional[str] = None
    notes: Optional[str] = None


class Outcome(BaseModel):
    id: str = Field(default_factory=new_id)
    initiative_id: str
    tenant_id: str
    client_id: Optional[str] = None
    recommendation_type: str
    recommendation_source_id: Optional[str] = None
    accepted: bool
    outcome_status: OutcomeStatus = OutcomeStatus.PENDING
    predicted_impact: Dict[str, float] = Field(default_factory=dict)
    actual_impact: Optional[Dict[str, float]] = None
    variance_score: Optional[float] = None
    variance_direction: Optional[VarianceDirection] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    measured_at: Optional[datetime] = None
    notes: Optional[str] = None
    lessons_learned: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class QualityMetric(BaseModel):
    """
    Period-bucketed recommendation quality aggregate.

    Unique per (tenant, recommendation type, client, period start); the
    storage boundary upserts rather than appends.
    """

    id: str = Field(default_factory=new_id)
    tenant_id: str
    client_id: Optional[str] = None
    recommendation_type: str
    period_start: date
    period_end: date
    total_recommendations: int = 0
    accepted_count: int = 0
    rejected_count: int = 0
    completed_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    overperform_count: int = 0
    underperform_count: int = 0
    acceptance_rate: float = 0.0
    success_rate: float = 0.0
    completion_rate: float = 0.0
    avg_variance: Optional[float] = None
    quality_score: float = 0.0
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW
    updated_at: datetime = Field(default_factory=utc_now)


class CalibrationNeed(BaseModel):
    """A breached calibration rule for one (recommendation type, client)."""

    calibration_type: CalibrationType
    severity: Severity
    recommendation_type: str
    client_id: Optional[str] = None
    metrics: Dict[str, Optional[float]] = Field(default_factory=dict)
    suggested_action: str
    period_start: date
    period_end: date


class QualityDashboard(BaseModel):
    """
    Recent quality metrics grouped by recommendation type.

    `overall` is keyed by recommendation type and holds tenant-wide metrics;
    `by_client` is keyed by "client:type". Lists are newest period first.
    """

    overall: Dict[str, List[QualityMetric]] = Field(default_factory=dict)
    by_client: Dict[str, List[QualityMetric]] = Field(default_factory=dict)
    calibration_needed: List[CalibrationNeed] = Field(default_factory=list)


# =============================================================================
# Batch results
# =============================================================================


class BatchItemFailure(BaseModel):
    item_id: str
    error: str


class AggregationResult(BaseModel):
    processed: int = 0
    insights_created: int = 0
    discarded: int = 0
    skipped: bool = False
    failures: List[BatchItemFailure] = Field(default_factory=list)


class PrioritizationResult(BaseModel):
    processed: int = 0
    priorities_created: int = 0
    skipped: bool = False
    failures: List[BatchItemFailure] = Field(default_factory=list)


class PipelineRunResult(BaseModel):
    tenant_id: str
    aggregation: AggregationResult
    prioritization: PrioritizationResult


class SideEffectResult(BaseModel):
    """
    Result of a non-blocking side effect.

    The error, if any, has already been logged; callers may inspect it but
    are never required to act on it.
    """

    ok: bool
    error: Optional[str] = None


class TenantScanResult(BaseModel):
    tenant_id: str
    clients: List[ClientScanResult] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def signals_created(self) -> int:
        return sum(client.signals_created for client in self.clients)
