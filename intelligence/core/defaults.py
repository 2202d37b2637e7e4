"""
Immutable default tables for the pipeline components.

Each component receives its defaults as a frozen pydantic struct through its
constructor. The structs are built once per process by `get_pipeline_defaults`
and are never mutated; tests construct their own instances when they need
different values.

Tables:
- AnomalyDefaults: per-metric thresholds, severity cutoffs, confidence buckets
- AggregatorDefaults: batch size, minimum confidence, category text tables
- PriorityDefaults: weights, bucket cutoffs, SLA hours, effort/type classes
- FeedbackDefaults: sample-size and calibration thresholds
"""

from functools import lru_cache
from typing import Dict, FrozenSet, Tuple

from pydantic import BaseModel, ConfigDict, Field

from intelligence.core.config import Settings, get_settings
from intelligence.models.enums import (
    MetricType,
    PriorityBucket,
    Severity,
)
from intelligence.models.schemas import AnomalyThreshold, PriorityWeights


_FROZEN = ConfigDict(frozen=True)


# =============================================================================
# Anomaly detection
# =============================================================================


DEFAULT_ANOMALY_THRESHOLDS: Dict[MetricType, AnomalyThreshold] = {
    MetricType.SESSIONS: AnomalyThreshold(
        metric_type=MetricType.SESSIONS, z_score_threshold=2.5,
        percent_change_threshold=30, min_data_points=14,
    ),
    MetricType.CONVERSIONS: AnomalyThreshold(
        metric_type=MetricType.CONVERSIONS, z_score_threshold=2.0,
        percent_change_threshold=25, min_data_points=14,
    ),
    MetricType.CLICKS: AnomalyThreshold(
        metric_type=MetricType.CLICKS, z_score_threshold=2.5,
        percent_change_threshold=30, min_data_points=14,
    ),
    MetricType.IMPRESSIONS: AnomalyThreshold(
        metric_type=MetricType.IMPRESSIONS, z_score_threshold=2.5,
        percent_change_threshold=30, min_data_points=14,
    ),
    MetricType.ORGANIC_CLICKS: AnomalyThreshold(
        metric_type=MetricType.ORGANIC_CLICKS, z_score_threshold=2.5,
        percent_change_threshold=30, min_data_points=14,
    ),
    MetricType.ORGANIC_IMPRESSIONS: AnomalyThreshold(
        metric_type=MetricType.ORGANIC_IMPRESSIONS, z_score_threshold=2.5,
        percent_change_threshold=30, min_data_points=14,
    ),
    MetricType.AVG_POSITION: AnomalyThreshold(
        metric_type=MetricType.AVG_POSITION, z_score_threshold=2.0,
        percent_change_threshold=15, min_data_points=14,
    ),
    MetricType.SPEND: AnomalyThreshold(
        metric_type=MetricType.SPEND, z_score_threshold=2.0,
        percent_change_threshold=20, min_data_points=7,
    ),
}


class SeverityCutoff(BaseModel):
    """Minimum |z| or |percent change| for a severity level."""
    model_config = _FROZEN

    severity: Severity
    z_score: float
    percent_change: float


class AnomalyDefaults(BaseModel):
    """
    Default tables for the anomaly detection engine.

    Attributes:
        thresholds: Per-metric thresholds used when no override exists.
        severity_cutoffs: Checked in order; the first match wins, else LOW.
        z_confidence_buckets: (min |z|, contribution) pairs, highest first.
        sample_confidence_buckets: (min data points, contribution) pairs.
        z_confidence_floor / sample_confidence_floor: Contribution below all buckets.
        iqr_outlier_confidence: Contribution when the value is an IQR outlier.
        min_emit_confidence: Anomalies below this are dropped unless IQR outliers.
        min_history_days: Fewer rows than this yields no anomalies at all.
        iqr_min_window: Windows smaller than this get infinite IQR bounds.
        traffic_metrics: Metrics subject to the weekend-dip heuristic.
        weekend_z_floor: Weekend dips with z in (floor, 0) are false positives.
        recurrence_tolerance / recurrence_min_count: Repeated-value heuristic.
        min_absolute_value: Values below this (except avg_position) are noise.
    """
    model_config = _FROZEN

    thresholds: Dict[MetricType, AnomalyThreshold] = Field(
        default_factory=lambda: dict(DEFAULT_ANOMALY_THRESHOLDS)
    )
    severity_cutoffs: Tuple[SeverityCutoff, ...] = (
        SeverityCutoff(severity=Severity.CRITICAL, z_score=4.0, percent_change=75.0),
        SeverityCutoff(severity=Severity.HIGH, z_score=3.0, percent_change=50.0),
        SeverityCutoff(severity=Severity.MEDIUM, z_score=2.5, percent_change=30.0),
    )
    z_confidence_buckets: Tuple[Tuple[float, float], ...] = ((3.0, 0.4), (2.5, 0.3), (2.0, 0.2))
    z_confidence_floor: float = 0.1
    sample_confidence_buckets: Tuple[Tuple[int, float], ...] = ((30, 0.3), (21, 0.25), (14, 0.2))
    sample_confidence_floor: float = 0.1
    iqr_outlier_confidence: float = 0.3
    min_emit_confidence: float = 0.4
    min_history_days: int = 7
    iqr_min_window: int = 4
    traffic_metrics: FrozenSet[MetricType] = frozenset(
        {MetricType.SESSIONS, MetricType.CLICKS, MetricType.IMPRESSIONS}
    )
    weekend_z_floor: float = -3.0
    recurrence_tolerance: float = 0.1
    recurrence_min_count: int = 2
    min_absolute_value: float = 5.0
    trend_stable_band: float = 5.0
    trend_min_days: int = 14


# =============================================================================
# Insight aggregation
# =============================================================================


class AggregatorDefaults(BaseModel):
    """Fallback aggregator configuration and the deterministic text tables."""
    model_config = _FROZEN

    batch_size: int = 100
    min_confidence_threshold: float = 0.3
    severity_scores: Dict[Severity, float] = Field(default_factory=lambda: {
        Severity.CRITICAL: 1.0,
        Severity.HIGH: 0.8,
        Severity.MEDIUM: 0.6,
        Severity.LOW: 0.4,
    })
    category_titles: Dict[str, str] = Field(default_factory=lambda: {
        "analytics": "Analytics Alert",
        "crm": "CRM Activity",
        "workflow": "Workflow Event",
        "performance": "Performance Issue",
        "engagement": "Engagement Change",
        "revenue": "Revenue Signal",
    })
    action_templates: Dict[str, Dict[Severity, str]] = Field(default_factory=lambda: {
        "analytics": {
            Severity.CRITICAL: "Investigate traffic anomaly immediately and check for technical issues",
            Severity.HIGH: "Review analytics data and assess impact on campaign performance",
            Severity.MEDIUM: "Monitor trends and prepare adjustment recommendations",
            Severity.LOW: "Note for next reporting cycle",
        },
        "crm": {
            Severity.CRITICAL: "Urgent: Contact key account immediately",
            Severity.HIGH: "Schedule follow-up call within 24 hours",
            Severity.MEDIUM: "Add to weekly review queue",
            Severity.LOW: "Update CRM records as needed",
        },
        "workflow": {
            Severity.CRITICAL: "Immediate intervention required - check workflow execution",
            Severity.HIGH: "Review workflow configuration and recent executions",
            Severity.MEDIUM: "Schedule workflow optimization review",
            Severity.LOW: "Document for process improvement",
        },
        "performance": {
            Severity.CRITICAL: "Emergency: Site/campaign performance critical - investigate now",
            Severity.HIGH: "Priority optimization needed - technical review required",
            Severity.MEDIUM: "Add to optimization backlog",
            Severity.LOW: "Monitor and document",
        },
    })
    category_impacts: Dict[str, str] = Field(default_factory=lambda: {
        "revenue": "Direct revenue impact",
        "analytics": "Traffic/conversion impact",
        "crm": "Client relationship impact",
        "engagement": "User experience impact",
    })
    agent_name: str = "insight_aggregator_v1"


# =============================================================================
# Priority scoring
# =============================================================================


class PriorityDefaults(BaseModel):
    """Default weights, bucket cutoffs and lookup sets for the priority engine."""
    model_config = _FROZEN

    weights: PriorityWeights = PriorityWeights(
        impact=0.4, urgency=0.3, confidence=0.2, resource=0.1
    )
    # Checked in order with >=; scores below the last cutoff are MONITOR
    bucket_cutoffs: Tuple[Tuple[PriorityBucket, float], ...] = (
        (PriorityBucket.CRITICAL, 0.85),
        (PriorityBucket.HIGH, 0.70),
        (PriorityBucket.MEDIUM, 0.50),
        (PriorityBucket.LOW, 0.30),
    )
    sla_hours: Dict[PriorityBucket, int] = Field(default_factory=lambda: {
        PriorityBucket.CRITICAL: 4,
        PriorityBucket.HIGH: 24,
        PriorityBucket.MEDIUM: 72,
        PriorityBucket.LOW: 168,
        PriorityBucket.MONITOR: 336,
    })
    impact_severity_scores: Dict[Severity, float] = Field(default_factory=lambda: {
        Severity.CRITICAL: 1.0,
        Severity.HIGH: 0.8,
        Severity.MEDIUM: 0.6,
        Severity.LOW: 0.4,
    })
    urgency_severity_scores: Dict[Severity, float] = Field(default_factory=lambda: {
        Severity.CRITICAL: 1.0,
        Severity.HIGH: 0.75,
        Severity.MEDIUM: 0.5,
        Severity.LOW: 0.25,
    })
    unknown_severity_score: float = 0.5
    high_impact_types: FrozenSet[str] = frozenset(
        {"revenue_drop", "conversion_rate_issue", "pipeline_shortfall"}
    )
    urgent_types: FrozenSet[str] = frozenset(
        {"sla_breach", "deadline_approaching", "critical_alert"}
    )
    low_effort_types: FrozenSet[str] = frozenset(
        {"content_update", "notification", "review_request"}
    )
    high_effort_types: FrozenSet[str] = frozenset(
        {"infrastructure_change", "major_campaign", "strategy_pivot"}
    )


# =============================================================================
# Outcome feedback
# =============================================================================


class FeedbackDefaults(BaseModel):
    """Thresholds for quality metrics and calibration rules."""
    model_config = _FROZEN

    min_sample_size: int = 5
    variance_band: float = 0.1
    high_confidence_sample: int = 20
    medium_confidence_sample: int = 10
    min_acceptance_rate: float = 0.6
    critical_acceptance_rate: float = 0.3
    min_success_rate: float = 0.5
    critical_success_rate: float = 0.3
    min_measured_outcomes: int = 5
    max_abs_variance: float = 0.3
    high_abs_variance: float = 0.5
    dashboard_periods: int = 6


class PipelineDefaults(BaseModel):
    """Bundle of every component's defaults, built once per process."""
    model_config = _FROZEN

    anomaly: AnomalyDefaults = AnomalyDefaults()
    aggregator: AggregatorDefaults = AggregatorDefaults()
    priority: PriorityDefaults = PriorityDefaults()
    feedback: FeedbackDefaults = FeedbackDefaults()


def build_pipeline_defaults(settings: Settings) -> PipelineDefaults:
    """Build the defaults bundle, applying settings-level fallbacks."""
    return PipelineDefaults(
        aggregator=AggregatorDefaults(
            batch_size=settings.aggregator_batch_size,
            min_confidence_threshold=settings.aggregator_min_confidence,
        ),
    )


@lru_cache()
def get_pipeline_defaults() -> PipelineDefaults:
    """Process-wide defaults bundle derived from the cached settings."""
    return build_pipeline_defaults(get_settings())
