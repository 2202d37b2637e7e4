"""
Unit tests for the Anomaly Detection Engine.

Series are built so that mean and population std are exact:
an even-length window alternating (m - s, m + s) has mean m and std s.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import numpy as np
import pytest

from intelligence.core.defaults import AnomalyDefaults
from intelligence.models import (
    AnomalyThreshold,
    AnomalyType,
    Direction,
    MetricType,
    Severity,
    SignalSource,
    TrendDirection,
)
from intelligence.services.anomaly_detection import (
    anomaly_id,
    classify_severity,
    compute_confidence,
    iqr_bounds,
    is_anomalous,
    map_anomaly_type,
    percent_change,
    population_stats,
    z_score,
)
from intelligence.tests.conftest import (
    CLIENT_ID,
    LATEST_DATE,
    TENANT_ID,
    alternating,
    build_series,
    noisy,
)


DEFAULTS = AnomalyDefaults()


# =============================================================================
# Statistical helpers
# =============================================================================


class TestStatisticalHelpers:

    def test_population_stats_uses_ddof_zero(self):
        mean, std = population_stats(alternating(44, 95.0, 105.0))
        assert mean == 100.0
        assert std == 5.0

    def test_population_stats_empty_window(self):
        assert population_stats([]) == (0.0, 0.0)

    def test_population_stats_matches_numpy(self):
        values = noisy(40, 500.0, 25.0)
        mean, std = population_stats(values)
        assert mean == pytest.approx(float(np.mean(values)))
        assert std == pytest.approx(float(np.std(values, ddof=0)))

    def test_z_score_with_zero_std(self):
        assert z_score(150.0, 100.0, 0.0) == 0.0
        assert z_score(125.0, 100.0, 10.0) == 2.5

    def test_percent_change_zero_baseline(self):
        assert percent_change(5.0, 0.0) == 100.0
        assert percent_change(0.0, 0.0) == 0.0
        assert percent_change(-3.0, 0.0) == 0.0
        assert percent_change(80.0, 100.0) == pytest.approx(-20.0)

    def test_iqr_bounds_floor_index_quartiles(self):
        lower, upper = iqr_bounds([1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0])
        # q1 = sorted[2] = 3, q3 = sorted[6] = 7
        assert lower == pytest.approx(3.0 - 6.0)
        assert upper == pytest.approx(7.0 + 6.0)

    def test_iqr_bounds_small_window_is_unbounded(self):
        assert iqr_bounds([1.0, 2.0, 3.0]) == (float("-inf"), float("inf"))


class TestClassification:

    def test_threshold_is_inclusive(self):
        threshold = AnomalyThreshold(
            metric_type=MetricType.SESSIONS, z_score_threshold=2.5, percent_change_threshold=30,
        )
        assert is_anomalous(2.5, 0.0, threshold) is True
        assert is_anomalous(-2.5, 0.0, threshold) is True
        assert is_anomalous(0.0, -30.0, threshold) is True
        assert is_anomalous(2.49, 29.9, threshold) is False

    @pytest.mark.parametrize("z,pct,expected", [
        (4.0, 0.0, Severity.CRITICAL),
        (0.0, -75.0, Severity.CRITICAL),
        (3.0, 10.0, Severity.HIGH),
        (1.0, 50.0, Severity.HIGH),
        (-2.5, 0.0, Severity.MEDIUM),
        (0.0, 30.0, Severity.MEDIUM),
        (2.49, 29.9, Severity.LOW),
    ])
    def test_severity_cutoffs(self, z, pct, expected):
        assert classify_severity(z, pct, DEFAULTS) == expected

    def test_confidence_is_monotone_in_sample_size(self):
        for z in (1.0, 2.2, 2.7, 5.0):
            for outlier in (False, True):
                scores = [compute_confidence(z, n, outlier, DEFAULTS) for n in range(1, 60)]
                assert scores == sorted(scores)

    def test_confidence_is_capped(self):
        assert compute_confidence(10.0, 100, True, DEFAULTS) == 1.0
        assert compute_confidence(0.5, 3, False, DEFAULTS) == pytest.approx(0.2)

    @pytest.mark.parametrize("metric,direction,expected", [
        (MetricType.SESSIONS, Direction.UP, AnomalyType.TRAFFIC_SPIKE),
        (MetricType.SESSIONS, Direction.DOWN, AnomalyType.TRAFFIC_DROP),
        (MetricType.CONVERSIONS, Direction.DOWN, AnomalyType.CONVERSION_DROP),
        (MetricType.ORGANIC_CLICKS, Direction.DOWN, AnomalyType.CLICK_DROP),
        (MetricType.IMPRESSIONS, Direction.DOWN, AnomalyType.IMPRESSION_DROP),
        (MetricType.AVG_POSITION, Direction.UP, AnomalyType.RANKING_LOSS),
        (MetricType.AVG_POSITION, Direction.DOWN, AnomalyType.RANKING_GAIN),
        (MetricType.SPEND, Direction.UP, AnomalyType.SPEND_ANOMALY),
    ])
    def test_anomaly_type_mapping(self, metric, direction, expected):
        assert map_anomaly_type(metric, direction) == expected

    def test_anomaly_id_is_stable(self):
        first = anomaly_id(CLIENT_ID, MetricType.SESSIONS, LATEST_DATE)
        assert first == anomaly_id(CLIENT_ID, MetricType.SESSIONS, LATEST_DATE)
        assert len(first) == 16
        assert first != anomaly_id(CLIENT_ID, MetricType.CLICKS, LATEST_DATE)


# =============================================================================
# Detection
# =============================================================================


class TestDetectAnomaliesForClient:

    @pytest.mark.asyncio
    async def test_spike_is_detected(self, pipeline, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)

        anomalies = await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID)

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.metric_type == MetricType.SESSIONS
        assert anomaly.anomaly_type == AnomalyType.TRAFFIC_SPIKE
        assert anomaly.expected_value == 1000.0
        assert anomaly.z_score == pytest.approx(16.0)
        assert anomaly.percent_change == pytest.approx(80.0)
        assert anomaly.severity == Severity.CRITICAL
        assert anomaly.confidence == 1.0
        assert anomaly.metadata.is_iqr_outlier is True
        assert anomaly.metadata.data_point_count == 44
        assert anomaly.is_false_positive is False
        assert anomaly.data_point_date == LATEST_DATE

    @pytest.mark.asyncio
    async def test_z_threshold_boundary(self, pipeline, store):
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, alternating(44, 90.0, 110.0), 125.0))
        at_threshold = await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID)

        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, alternating(44, 90.0, 110.0), 124.9))
        below = await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID)

        assert len(at_threshold) == 1
        assert at_threshold[0].z_score == 2.5
        assert at_threshold[0].severity == Severity.MEDIUM
        assert at_threshold[0].metadata.is_iqr_outlier is False
        assert below == []

    @pytest.mark.asyncio
    async def test_drop_is_detected(self, pipeline, store):
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, alternating(44, 950.0, 1050.0), 400.0))

        anomalies = await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID)

        assert anomalies[0].anomaly_type == AnomalyType.TRAFFIC_DROP
        assert anomalies[0].direction == Direction.DOWN
        assert anomalies[0].percent_change == pytest.approx(-60.0)

    @pytest.mark.asyncio
    async def test_short_history_yields_nothing(self, pipeline, store):
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, alternating(5, 950.0, 1050.0), 5000.0))
        assert await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID) == []

    @pytest.mark.asyncio
    async def test_below_min_data_points_is_skipped(self, pipeline, store):
        # 10 history points: enough rows overall, fewer than the 14 sessions needs
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, alternating(10, 950.0, 1050.0), 5000.0))
        assert await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID) == []

    @pytest.mark.asyncio
    async def test_call_override_beats_defaults(self, pipeline, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)
        lenient = AnomalyThreshold(
            metric_type=MetricType.SESSIONS, z_score_threshold=20, percent_change_threshold=100,
        )

        anomalies = await pipeline.detector.detect_anomalies_for_client(
            TENANT_ID, CLIENT_ID, thresholds={MetricType.SESSIONS: lenient}
        )

        assert anomalies == []

    @pytest.mark.asyncio
    async def test_stored_disabled_threshold(self, pipeline, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)
        store.set_anomaly_threshold(TENANT_ID, CLIENT_ID, AnomalyThreshold(
            metric_type=MetricType.SESSIONS, z_score_threshold=2.5,
            percent_change_threshold=30, enabled=False,
        ))

        assert await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID) == []


class TestFalsePositives:

    @pytest.mark.asyncio
    async def test_weekend_traffic_dip(self, pipeline, store):
        saturday = LATEST_DATE - timedelta(days=2)
        assert saturday.weekday() == 5
        store.add_daily_metrics(
            TENANT_ID,
            build_series(CLIENT_ID, alternating(44, 90.0, 110.0), 72.0, latest_date=saturday),
        )

        anomalies = await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID)

        assert len(anomalies) == 1
        assert anomalies[0].z_score == pytest.approx(-2.8)
        assert anomalies[0].is_false_positive is True

    @pytest.mark.asyncio
    async def test_same_dip_on_weekday_is_real(self, pipeline, store):
        assert LATEST_DATE.weekday() == 0
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, alternating(44, 90.0, 110.0), 72.0))

        anomalies = await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID)

        assert anomalies[0].is_false_positive is False

    @pytest.mark.asyncio
    async def test_recurring_value(self, pipeline, store):
        # 112.5 is within 10% of the recurring 105 values
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, alternating(44, 95.0, 105.0), 112.5))

        anomalies = await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID)

        assert len(anomalies) == 1
        assert anomalies[0].is_false_positive is True

    @pytest.mark.asyncio
    async def test_tiny_absolute_value(self, pipeline, store):
        store.add_daily_metrics(
            TENANT_ID,
            build_series(CLIENT_ID, alternating(44, 1.0, 3.0), 4.5, metric="conversions"),
        )

        anomalies = await pipeline.detector.detect_anomalies_for_client(TENANT_ID, CLIENT_ID)

        assert anomalies[0].anomaly_type == AnomalyType.CONVERSION_SPIKE
        assert anomalies[0].is_false_positive is True

    @pytest.mark.asyncio
    async def test_false_positive_is_never_emitted(self, pipeline, store):
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, alternating(44, 95.0, 105.0), 112.5))

        result = await pipeline.detector.detect_and_emit(TENANT_ID, CLIENT_ID)

        assert len(result.anomalies) == 1
        assert result.signals_created == 0
        assert store.signals == {}


# =============================================================================
# Emission and tenant scans
# =============================================================================


class TestEmission:

    @pytest.mark.asyncio
    async def test_anomaly_becomes_analytics_signal(self, pipeline, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)

        result = await pipeline.detector.detect_and_emit(TENANT_ID, CLIENT_ID)

        assert result.signals_created == 1
        signal = next(iter(store.signals.values()))
        assert signal.source == SignalSource.ANALYTICS.value
        assert signal.signal_type == "traffic_spike"
        assert signal.category == "analytics"
        assert signal.severity == Severity.CRITICAL
        assert signal.client_id == CLIENT_ID
        assert signal.correlation_key == f"analytics:{CLIENT_ID}:traffic_spike"
        assert signal.payload["metricType"] == "sessions"
        assert signal.payload["currentValue"] == 1800.0
        assert signal.payload["_metadata"]["origin"] == "anomaly_detection"

    @pytest.mark.asyncio
    async def test_rerun_for_same_day_is_a_noop(self, pipeline, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)

        first = await pipeline.detector.detect_and_emit(TENANT_ID, CLIENT_ID)
        second = await pipeline.detector.detect_and_emit(TENANT_ID, CLIENT_ID)

        assert first.signals_created == 1
        assert second.signals_created == 0
        assert len(second.anomalies) == 1
        assert len(store.signals) == 1

    @pytest.mark.asyncio
    async def test_direction_revision_for_same_day_is_a_noop(self, pipeline, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)
        (spike,) = (await pipeline.detector.detect_and_emit(TENANT_ID, CLIENT_ID)).anomalies
        revised = spike.model_copy(update={"anomaly_type": AnomalyType.TRAFFIC_DROP, "current_value": 200.0})

        result = await pipeline.detector.convert_anomaly_to_signal(revised)

        assert result.is_duplicate is True
        assert result.signal.signal_type == "traffic_spike"
        assert len(store.signals) == 1

    @pytest.mark.asyncio
    async def test_failing_client_does_not_stop_tenant_scan(self, pipeline, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)
        store.add_daily_metrics(TENANT_ID, build_series("client-broken", alternating(44, 1.0, 2.0), 1.0))
        original = store.get_historical_metrics

        async def flaky(tenant_id, client_id, days):
            if client_id == "client-broken":
                raise RuntimeError("metrics sync unavailable")
            return await original(tenant_id, client_id, days)

        store.get_historical_metrics = AsyncMock(side_effect=flaky)

        results = await pipeline.detector.run_detection_for_tenant(TENANT_ID)

        by_client = {r.client_id: r for r in results}
        assert by_client["client-broken"].error == "metrics sync unavailable"
        assert by_client[CLIENT_ID].error is None
        assert by_client[CLIENT_ID].signals_created == 1


# =============================================================================
# Trends
# =============================================================================


class TestTrendAnalysis:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("recent,expected", [
        (130.0, TrendDirection.UP),
        (90.0, TrendDirection.DOWN),
        (102.0, TrendDirection.STABLE),
    ])
    async def test_week_over_week_direction(self, pipeline, store, recent, expected):
        history = [100.0] * 53 + [recent] * 6
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, history, recent))

        trends = await pipeline.detector.analyze_trends(TENANT_ID, CLIENT_ID)

        assert len(trends) == 1
        assert trends[0].metric_type == MetricType.SESSIONS
        assert trends[0].previous_week_avg == 100.0
        assert trends[0].current_week_avg == recent
        assert trends[0].trend == expected

    @pytest.mark.asyncio
    async def test_month_over_month_needs_sixty_days(self, pipeline, store):
        history = [100.0] * 53 + [130.0] * 6
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, history, 130.0))

        trends = await pipeline.detector.analyze_trends(TENANT_ID, CLIENT_ID)

        # last 30 days: 7 x 130 + 23 x 100, previous 30: all 100
        assert trends[0].month_over_month == pytest.approx(7.0)

    @pytest.mark.asyncio
    async def test_month_over_month_absent_with_short_history(self, pipeline, store):
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, [100.0] * 19, 120.0))

        trends = await pipeline.detector.analyze_trends(TENANT_ID, CLIENT_ID)

        assert trends[0].month_over_month is None

    @pytest.mark.asyncio
    async def test_too_little_history(self, pipeline, store):
        store.add_daily_metrics(TENANT_ID, build_series(CLIENT_ID, [100.0] * 10, 120.0))
        assert await pipeline.detector.analyze_trends(TENANT_ID, CLIENT_ID) == []
