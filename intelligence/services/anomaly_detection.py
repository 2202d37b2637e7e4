"""
Anomaly Detection Engine - statistical outliers in client metric series.

For each of the eight daily metrics the latest value is tested against the
historical window (every earlier day in the pulled history):

1. Z-SCORE - population mean and standard deviation of the window
   - z = (latest - mean) / std, or 0 when std is 0
2. PERCENT CHANGE - latest vs. window mean
   - a zero mean gives 100 when latest > 0, else 0
3. IQR BOUNDS - Q1 - 1.5*IQR and Q3 + 1.5*IQR on the sorted window
   - quartiles are floor-index picks; windows smaller than 4 get +/-inf

A metric is anomalous when |z| >= z threshold OR |percent change| >= percent
threshold. Thresholds resolve per metric as call override -> stored
tenant/client override -> default table, and a metric with fewer than
min_data_points historical values is skipped.

Confidence is the capped sum of a z-score bucket, a sample-size bucket and an
IQR-outlier bonus; anomalies under 0.4 are dropped unless they are IQR
outliers. False-positive heuristics (weekend traffic dips, recurring values,
tiny absolute values) flag an anomaly without dropping it; flagged anomalies
are reported but never converted into signals.

Conversion to a signal is keyed by (tenant, client, metric, date) so running
detection again for the same day is a no-op at the router.
"""

import hashlib
import logging
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from intelligence.core.defaults import AnomalyDefaults
from intelligence.models import (
    Anomaly,
    AnomalyMetadata,
    AnomalyThreshold,
    AnomalyType,
    ClientScanResult,
    DailyMetrics,
    Direction,
    MetricType,
    Severity,
    SignalCategory,
    SignalIngestionResult,
    SignalSource,
    TrendAnalysis,
    TrendDirection,
    utc_now,
)
from intelligence.services.signal_emitter import SignalEmitter, analytics_correlation_key
from intelligence.storage.base import PipelineStore


logger = logging.getLogger(__name__)


# Trend analysis covers every metric except spend
TREND_METRICS: Tuple[MetricType, ...] = tuple(m for m in MetricType if m != MetricType.SPEND)


# =============================================================================
# Statistical Helper Functions
# =============================================================================


def population_stats(values: Sequence[float]) -> Tuple[float, float]:
    """
    Mean and population standard deviation (ddof=0) of a window.

    Returns (0.0, 0.0) for an empty window.
    """
    if len(values) == 0:
        return (0.0, 0.0)
    array = np.asarray(values, dtype=np.float64)
    return (float(np.mean(array)), float(np.std(array)))


def z_score(value: float, mean: float, std_dev: float) -> float:
    if std_dev == 0:
        return 0.0
    return (value - mean) / std_dev


def percent_change(current: float, previous: float) -> float:
    """
    Percent change from previous to current.

    Example:
        >>> percent_change(120, 100)
        20.0
        >>> percent_change(5, 0)
        100.0
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100.0


def iqr_bounds(values: Sequence[float], min_window: int = 4) -> Tuple[float, float]:
    """
    Tukey fences using floor-index quartiles of the sorted window.

    q1 = sorted[floor(n * 0.25)], q3 = sorted[floor(n * 0.75)]. A window
    smaller than min_window yields (-inf, inf) so nothing is an outlier.
    """
    n = len(values)
    if n < min_window:
        return (float("-inf"), float("inf"))
    ordered = np.sort(np.asarray(values, dtype=np.float64))
    q1 = float(ordered[int(np.floor(n * 0.25))])
    q3 = float(ordered[int(np.floor(n * 0.75))])
    iqr = q3 - q1
    return (q1 - 1.5 * iqr, q3 + 1.5 * iqr)


# =============================================================================
# Classification
# =============================================================================


def is_anomalous(z: float, pct: float, threshold: AnomalyThreshold) -> bool:
    return abs(z) >= threshold.z_score_threshold or abs(pct) >= threshold.percent_change_threshold


def classify_severity(z: float, pct: float, defaults: AnomalyDefaults) -> Severity:
    """First cutoff reached by |z| or |pct| wins; below all cutoffs is LOW."""
    abs_z, abs_pct = abs(z), abs(pct)
    for cutoff in defaults.severity_cutoffs:
        if abs_z >= cutoff.z_score or abs_pct >= cutoff.percent_change:
            return cutoff.severity
    return Severity.LOW


def compute_confidence(z: float, data_points: int, is_iqr_outlier: bool, defaults: AnomalyDefaults) -> float:
    """
    Capped sum of z-score bucket, sample-size bucket and IQR bonus.

    Non-decreasing in data_points for fixed z and outlier flag.
    """
    abs_z = abs(z)
    z_part = next(
        (score for limit, score in defaults.z_confidence_buckets if abs_z >= limit),
        defaults.z_confidence_floor,
    )
    sample_part = next(
        (score for limit, score in defaults.sample_confidence_buckets if data_points >= limit),
        defaults.sample_confidence_floor,
    )
    iqr_part = defaults.iqr_outlier_confidence if is_iqr_outlier else 0.0
    return min(z_part + sample_part + iqr_part, 1.0)


def map_anomaly_type(metric: MetricType, direction: Direction) -> AnomalyType:
    up = direction == Direction.UP
    if metric == MetricType.SESSIONS:
        return AnomalyType.TRAFFIC_SPIKE if up else AnomalyType.TRAFFIC_DROP
    if metric == MetricType.CONVERSIONS:
        return AnomalyType.CONVERSION_SPIKE if up else AnomalyType.CONVERSION_DROP
    if metric in (MetricType.CLICKS, MetricType.ORGANIC_CLICKS):
        return AnomalyType.TRAFFIC_SPIKE if up else AnomalyType.CLICK_DROP
    if metric in (MetricType.IMPRESSIONS, MetricType.ORGANIC_IMPRESSIONS):
        return AnomalyType.TRAFFIC_SPIKE if up else AnomalyType.IMPRESSION_DROP
    if metric == MetricType.AVG_POSITION:
        # Higher position number is a worse ranking
        return AnomalyType.RANKING_LOSS if up else AnomalyType.RANKING_GAIN
    return AnomalyType.SPEND_ANOMALY


def is_false_positive(
    metric: MetricType,
    value: float,
    z: float,
    data_point_date: date,
    window: Sequence[float],
    defaults: AnomalyDefaults,
) -> bool:
    """
    Heuristics for anomalies that are real outliers but not actionable.

    - weekend dip in a traffic metric with z in (weekend_z_floor, 0)
    - the value recurred within tolerance at least recurrence_min_count times
    - absolute value below min_absolute_value (avg_position exempt)
    """
    is_weekend = data_point_date.weekday() >= 5
    if metric in defaults.traffic_metrics and is_weekend and defaults.weekend_z_floor < z < 0:
        return True

    tolerance = abs(value * defaults.recurrence_tolerance)
    recurrences = sum(1 for v in window if abs(v - value) < tolerance)
    if recurrences >= defaults.recurrence_min_count:
        return True

    if abs(value) < defaults.min_absolute_value and metric != MetricType.AVG_POSITION:
        return True

    return False


def anomaly_id(client_id: str, metric: MetricType, data_point_date: date) -> str:
    key = f"{client_id}:{metric.value}:{data_point_date.isoformat()}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def build_metric_frame(rows: Sequence[DailyMetrics]) -> pd.DataFrame:
    """Daily rows as a frame sorted newest first; missing values are NaN."""
    frame = pd.DataFrame([row.model_dump() for row in rows])
    if frame.empty:
        return frame
    frame = frame.sort_values("metric_date", ascending=False).reset_index(drop=True)
    for metric in MetricType:
        frame[metric.value] = pd.to_numeric(frame[metric.value], errors="coerce")
    return frame


class AnomalyDetector:
    """
    Runs detection passes for one store.

    Args:
        store: Storage boundary for history and stored threshold overrides.
        emitter: Channel used to publish non-false-positive anomalies.
        defaults: Immutable threshold and bucket tables.
        history_days: Days of history pulled per detection pass.
        trend_history_days: Days of history pulled for trend analysis.
    """

    def __init__(
        self,
        store: PipelineStore,
        emitter: SignalEmitter,
        defaults: AnomalyDefaults,
        history_days: int = 45,
        trend_history_days: int = 60,
    ) -> None:
        self.store = store
        self.emitter = emitter
        self.defaults = defaults
        self.history_days = history_days
        self.trend_history_days = trend_history_days

    async def resolve_thresholds(
        self,
        tenant_id: str,
        client_id: str,
        overrides: Optional[Dict[MetricType, AnomalyThreshold]] = None,
    ) -> Dict[MetricType, AnomalyThreshold]:
        thresholds = dict(self.defaults.thresholds)
        for stored in await self.store.get_anomaly_thresholds(tenant_id, client_id):
            thresholds[stored.metric_type] = stored
        if overrides:
            thresholds.update(overrides)
        return thresholds

    async def detect_anomalies_for_client(
        self,
        tenant_id: str,
        client_id: str,
        thresholds: Optional[Dict[MetricType, AnomalyThreshold]] = None,
    ) -> List[Anomaly]:
        """
        Test each metric's latest value against its history.

        Args:
            tenant_id: Owning tenant.
            client_id: Client whose metrics are scanned.
            thresholds: Per-metric overrides taking precedence over stored ones.

        Returns:
            List[Anomaly]: Anomalies with confidence >= 0.4 or IQR outliers,
            false positives included and flagged.
        """
        rows = await self.store.get_historical_metrics(tenant_id, client_id, self.history_days)
        if len(rows) < self.defaults.min_history_days:
            logger.debug(
                f"Skipping anomaly detection for client={client_id}: "
                f"{len(rows)} days of history"
            )
            return []

        frame = build_metric_frame(rows)
        resolved = await self.resolve_thresholds(tenant_id, client_id, thresholds)
        latest_date: date = frame["metric_date"].iloc[0]

        anomalies: List[Anomaly] = []
        for metric in MetricType:
            threshold = resolved.get(metric)
            if threshold is None or not threshold.enabled:
                continue

            anomaly = self._evaluate_metric(
                tenant_id, client_id, metric, frame[metric.value], latest_date, threshold
            )
            if anomaly is not None:
                anomalies.append(anomaly)

        logger.info(
            f"Anomaly detection for tenant={tenant_id} client={client_id}: "
            f"{len(anomalies)} anomalies ({sum(a.is_false_positive for a in anomalies)} false positives)"
        )
        return anomalies

    def _evaluate_metric(
        self,
        tenant_id: str,
        client_id: str,
        metric: MetricType,
        series: pd.Series,
        latest_date: date,
        threshold: AnomalyThreshold,
    ) -> Optional[Anomaly]:
        current = series.iloc[0]
        if pd.isna(current):
            return None
        current = float(current)

        window = series.iloc[1:].dropna().to_numpy(dtype=np.float64)
        if len(window) < threshold.min_data_points:
            return None

        mean, std_dev = population_stats(window)
        z = z_score(current, mean, std_dev)
        pct = percent_change(current, mean)

        if not is_anomalous(z, pct, threshold):
            return None

        lower, upper = iqr_bounds(window, self.defaults.iqr_min_window)
        outlier = current < lower or current > upper
        confidence = compute_confidence(z, len(window), outlier, self.defaults)

        if confidence < self.defaults.min_emit_confidence and not outlier:
            return None

        direction = Direction.UP if current > mean else Direction.DOWN

        return Anomaly(
            id=anomaly_id(client_id, metric, latest_date),
            tenant_id=tenant_id,
            client_id=client_id,
            metric_type=metric,
            anomaly_type=map_anomaly_type(metric, direction),
            direction=direction,
            current_value=current,
            expected_value=mean,
            z_score=z,
            percent_change=pct,
            confidence=confidence,
            severity=classify_severity(z, pct, self.defaults),
            is_false_positive=is_false_positive(metric, current, z, latest_date, window, self.defaults),
            data_point_date=latest_date,
            metadata=AnomalyMetadata(
                iqr_lower=lower,
                iqr_upper=upper,
                is_iqr_outlier=outlier,
                data_point_count=len(window),
                std_dev=std_dev,
            ),
        )

    # =========================================================================
    # Conversion to signals
    # =========================================================================

    async def convert_anomaly_to_signal(self, anomaly: Anomaly) -> Optional[SignalIngestionResult]:
        """
        Publish an anomaly as an analytics signal; false positives return None.

        The signal is deduplicated on (tenant, client, metric, date).
        """
        if anomaly.is_false_positive:
            logger.debug(f"Not emitting false-positive anomaly {anomaly.id}")
            return None

        payload = {
            "anomaly_id": anomaly.id,
            "client_id": anomaly.client_id,
            "metricType": anomaly.metric_type.value,
            "anomaly_type": anomaly.anomaly_type.value,
            "currentValue": anomaly.current_value,
            "expectedValue": anomaly.expected_value,
            "zScore": anomaly.z_score,
            "percentChange": anomaly.percent_change,
            "confidence": anomaly.confidence,
            "severity": anomaly.severity.value,
            "data_point_date": anomaly.data_point_date.isoformat(),
            "detected_at": anomaly.detected_at.isoformat(),
        }

        return await self.emitter.emit(
            anomaly.tenant_id,
            SignalSource.ANALYTICS,
            anomaly.anomaly_type.value,
            payload,
            severity=anomaly.severity,
            category=SignalCategory.ANALYTICS.value,
            client_id=anomaly.client_id,
            correlation_key=analytics_correlation_key(anomaly.client_id, anomaly.anomaly_type.value),
            dedup_key={
                "client": anomaly.client_id,
                "metric": anomaly.metric_type.value,
                "date": anomaly.data_point_date.isoformat(),
            },
            metadata={"origin": "anomaly_detection"},
        )

    async def detect_and_emit(
        self,
        tenant_id: str,
        client_id: str,
        thresholds: Optional[Dict[MetricType, AnomalyThreshold]] = None,
    ) -> ClientScanResult:
        """Detect anomalies for one client and publish the actionable ones."""
        anomalies = await self.detect_anomalies_for_client(tenant_id, client_id, thresholds)

        signals_created = 0
        for anomaly in anomalies:
            result = await self.convert_anomaly_to_signal(anomaly)
            if result is not None and not result.is_duplicate:
                signals_created += 1

        return ClientScanResult(client_id=client_id, anomalies=anomalies, signals_created=signals_created)

    async def run_detection_for_tenant(self, tenant_id: str) -> List[ClientScanResult]:
        """
        Scan every client of a tenant.

        A failing client is logged and reported with its error; the scan
        continues with the remaining clients.
        """
        results: List[ClientScanResult] = []
        for client_id in await self.store.list_clients(tenant_id):
            try:
                results.append(await self.detect_and_emit(tenant_id, client_id))
            except Exception as e:
                logger.error(
                    f"Anomaly detection failed for tenant={tenant_id} client={client_id}: {e}",
                    exc_info=True,
                )
                results.append(ClientScanResult(client_id=client_id, error=str(e)))
        return results

    # =========================================================================
    # Trend analysis
    # =========================================================================

    async def analyze_trends(self, tenant_id: str, client_id: str) -> List[TrendAnalysis]:
        """
        Week-over-week (last 7 vs previous 7 days) and month-over-month
        (last 30 vs previous 30 days) movement per metric.

        Needs trend_min_days rows; month-over-month is None until 60 days
        of history exist. A change within +/- trend_stable_band percent is
        STABLE.
        """
        rows = await self.store.get_historical_metrics(tenant_id, client_id, self.trend_history_days)
        if len(rows) < self.defaults.trend_min_days:
            return []

        frame = build_metric_frame(rows)
        band = self.defaults.trend_stable_band
        trends: List[TrendAnalysis] = []

        for metric in TREND_METRICS:
            series = frame[metric.value]
            current_week = series.iloc[0:7].dropna()
            previous_week = series.iloc[7:14].dropna()
            if current_week.empty or previous_week.empty:
                continue

            current_avg = float(current_week.mean())
            previous_avg = float(previous_week.mean())
            wow = percent_change(current_avg, previous_avg)

            mom: Optional[float] = None
            if len(series) >= 60:
                current_month = series.iloc[0:30].dropna()
                previous_month = series.iloc[30:60].dropna()
                if not current_month.empty and not previous_month.empty:
                    mom = percent_change(float(current_month.mean()), float(previous_month.mean()))

            if wow > band:
                trend = TrendDirection.UP
            elif wow < -band:
                trend = TrendDirection.DOWN
            else:
                trend = TrendDirection.STABLE

            trends.append(TrendAnalysis(
                client_id=client_id,
                metric_type=metric,
                current_week_avg=current_avg,
                previous_week_avg=previous_avg,
                week_over_week=wow,
                month_over_month=mom,
                trend=trend,
            ))

        return trends
