"""
Package initialization for intelligence models.

Re-exports every enumeration and schema so callers can import from
intelligence.models directly.

Usage:
    from intelligence.models import Signal, SignalStatus, Insight
"""

from intelligence.models.enums import (
    SEVERITY_ORDER,
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
    SignalCategory,
    SignalSource,
    SignalStatus,
    TrendDirection,
    Urgency,
    VarianceDirection,
)

from intelligence.models.schemas import (
    AggregationResult,
    AggregatorConfig,
    Anomaly,
    AnomalyMetadata,
    AnomalyThreshold,
    BatchItemFailure,
    CalibrationNeed,
    ClientScanResult,
    DailyMetrics,
    Insight,
    NormalizedSignal,
    Outcome,
    OutcomeCapture,
    OutcomeUpdate,
    PayloadFilterCondition,
    PipelineRunResult,
    PrioritizationResult,
    Priority,
    PriorityWeights,
    QualityDashboard,
    QualityMetric,
    ScoreBreakdown,
    SideEffectResult,
    Signal,
    SignalGroup,
    SignalIngestionResult,
    SignalRoute,
    TenantScanResult,
    TrendAnalysis,
    new_id,
    utc_now,
)


__all__ = [
    # Enums
    "SEVERITY_ORDER",
    "AnomalyType",
    "CalibrationType",
    "ConfidenceLevel",
    "Direction",
    "FilterOperator",
    "InsightStatus",
    "MetricType",
    "OutcomeStatus",
    "PriorityBucket",
    "PriorityStatus",
    "Severity",
    "SignalCategory",
    "SignalSource",
    "SignalStatus",
    "TrendDirection",
    "Urgency",
    "VarianceDirection",
    # Signals
    "NormalizedSignal",
    "Signal",
    "PayloadFilterCondition",
    "SignalRoute",
    "SignalIngestionResult",
    # Anomalies
    "AnomalyThreshold",
    "DailyMetrics",
    "AnomalyMetadata",
    "Anomaly",
    "TrendAnalysis",
    "ClientScanResult",
    "TenantScanResult",
    # Insights and priorities
    "Insight",
    "SignalGroup",
    "AggregatorConfig",
    "PriorityWeights",
    "ScoreBreakdown",
    "Priority",
    # Outcomes
    "OutcomeCapture",
    "OutcomeUpdate",
    "Outcome",
    "QualityMetric",
    "CalibrationNeed",
    "QualityDashboard",
    # Batch results
    "BatchItemFailure",
    "AggregationResult",
    "PrioritizationResult",
    "PipelineRunResult",
    "SideEffectResult",
    # Helpers
    "new_id",
    "utc_now",
]
