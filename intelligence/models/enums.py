"""
Enumeration definitions for the intelligence pipeline.

All enums inherit from both `str` and `Enum` so they serialize as plain
strings in pydantic models, JSON payloads and database rows.
"""

from enum import Enum


# =============================================================================
# Signal enums
# =============================================================================


class SignalSource(str, Enum):
    """
    Canonical source systems a signal can originate from.

    Legacy provider names (ga4, gsc, hubspot, linkedin) are accepted by the
    adapter registry as aliases and normalized to one of these values.
    """
    ANALYTICS = "analytics"
    CRM = "crm"
    SOCIAL = "social"
    INTERNAL = "internal"
    WEBHOOK = "webhook"


class Urgency(str, Enum):
    """How quickly a signal should be looked at. Default is NORMAL."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class Severity(str, Enum):
    """
    Severity shared by signals, anomalies, insights and calibration needs.

    Ordered low < medium < high < critical; see SEVERITY_ORDER.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_ORDER = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class SignalStatus(str, Enum):
    """
    Lifecycle of a persisted signal.

    - PENDING: waiting for the insight aggregator
    - PROCESSED: folded into an insight
    - DISCARDED: part of a low-confidence group, kept with a reason
    - FAILED: processing raised; eligible for retry
    """
    PENDING = "pending"
    PROCESSED = "processed"
    DISCARDED = "discarded"
    FAILED = "failed"


class SignalCategory(str, Enum):
    ANALYTICS = "analytics"
    CRM = "crm"
    ENGAGEMENT = "engagement"
    WORKFLOW = "workflow"
    PERFORMANCE = "performance"
    REVENUE = "revenue"
    AI_CALIBRATION = "ai_calibration"


class FilterOperator(str, Enum):
    """Operators of the route payload-filter DSL."""
    EQ = "eq"
    NEQ = "neq"
    CONTAINS = "contains"
    GT = "gt"
    LT = "lt"
    EXISTS = "exists"


# =============================================================================
# Anomaly enums
# =============================================================================


class MetricType(str, Enum):
    """
    Daily metrics scanned by the anomaly detection engine.

    AVG_POSITION is inverted: a higher number is a worse search ranking.
    """
    SESSIONS = "sessions"
    CONVERSIONS = "conversions"
    CLICKS = "clicks"
    IMPRESSIONS = "impressions"
    ORGANIC_CLICKS = "organic_clicks"
    ORGANIC_IMPRESSIONS = "organic_impressions"
    AVG_POSITION = "avg_position"
    SPEND = "spend"


class AnomalyType(str, Enum):
    """Direction plus metric classification of a detected anomaly."""
    TRAFFIC_SPIKE = "traffic_spike"
    TRAFFIC_DROP = "traffic_drop"
    CONVERSION_SPIKE = "conversion_spike"
    CONVERSION_DROP = "conversion_drop"
    CLICK_DROP = "click_drop"
    IMPRESSION_DROP = "impression_drop"
    RANKING_LOSS = "ranking_loss"
    RANKING_GAIN = "ranking_gain"
    SPEND_ANOMALY = "spend_anomaly"


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


# =============================================================================
# Insight / priority enums
# =============================================================================


class InsightStatus(str, Enum):
    OPEN = "open"
    PRIORITISED = "prioritised"
    DISMISSED = "dismissed"


class PriorityBucket(str, Enum):
    """Ranked tiers a composite priority score falls into."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    MONITOR = "monitor"


class PriorityStatus(str, Enum):
    PENDING = "pending"
    ACTED = "acted"
    EXPIRED = "expired"


# =============================================================================
# Outcome feedback enums
# =============================================================================


class OutcomeStatus(str, Enum):
    """
    Measured result of a recommendation.

    PARTIAL_SUCCESS counts as a success in quality metrics.
    """
    PENDING = "pending"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


class VarianceDirection(str, Enum):
    OVERPERFORMED = "overperformed"
    UNDERPERFORMED = "underperformed"
    ON_TARGET = "on_target"


class ConfidenceLevel(str, Enum):
    """Trust in a quality metric, derived from its sample size."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CalibrationType(str, Enum):
    HIGH_REJECTION = "high_rejection"
    LOW_SUCCESS = "low_success"
    HIGH_VARIANCE = "high_variance"
