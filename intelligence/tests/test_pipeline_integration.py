"""
End-to-end runs of the pipeline over an InMemoryStore.

metrics -> anomaly -> signal -> insight -> priority, and
outcomes -> quality metric -> calibration signal -> insight.
"""

import pytest

from intelligence.models import (
    InsightStatus,
    OutcomeCapture,
    PriorityBucket,
    Severity,
    SignalStatus,
)
from intelligence.tests.conftest import CLIENT_ID, TENANT_ID


pytestmark = pytest.mark.integration


class TestAnomalyToPriority:

    @pytest.mark.asyncio
    async def test_spike_becomes_critical_priority(self, pipeline, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)

        scan = await pipeline.detector.detect_and_emit(TENANT_ID, CLIENT_ID)
        run = await pipeline.run_pipeline(TENANT_ID)

        assert scan.signals_created == 1
        assert run.aggregation.insights_created == 1
        assert run.prioritization.priorities_created == 1

        (insight,) = store.insights.values()
        assert insight.insight_type == "traffic_spike"
        assert insight.severity == Severity.CRITICAL
        assert insight.confidence_score == pytest.approx(0.66)
        assert insight.metric_key == "sessions"
        assert insight.delta_percent == pytest.approx(80.0)
        assert insight.status == InsightStatus.PRIORITISED

        (priority,) = await pipeline.priority_engine.get_priority_queue(TENANT_ID)
        # impact 1.0, urgency 1.0, confidence 0.66, resource 0.7
        assert priority.priority_score == pytest.approx(0.902)
        assert priority.bucket == PriorityBucket.CRITICAL
        assert priority.insight_id == insight.id

        (signal,) = store.signals.values()
        assert signal.status == SignalStatus.PROCESSED
        assert signal.insight_id == insight.id

    @pytest.mark.asyncio
    async def test_second_scan_and_run_change_nothing(self, pipeline, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)
        await pipeline.detector.detect_and_emit(TENANT_ID, CLIENT_ID)
        await pipeline.run_pipeline(TENANT_ID)

        rescan = await pipeline.detector.detect_and_emit(TENANT_ID, CLIENT_ID)
        rerun = await pipeline.run_pipeline(TENANT_ID)

        assert rescan.signals_created == 0
        assert rerun.aggregation.processed == 0
        assert rerun.prioritization.processed == 0
        assert len(store.insights) == 1
        assert len(store.priorities) == 1


class TestCalibrationLoop:

    @pytest.mark.asyncio
    async def test_rejections_surface_as_calibration_insight(self, pipeline, store):
        for i in range(5):
            await pipeline.feedback.capture_outcome(OutcomeCapture(
                initiative_id=f"init-{i}",
                tenant_id=TENANT_ID,
                recommendation_type="ppc_bid_adjustment",
                accepted=False,
            ))

        run = await pipeline.run_pipeline(TENANT_ID)

        assert run.aggregation.insights_created == 1
        (insight,) = store.insights.values()
        assert insight.insight_type == "calibration:high_rejection"
        assert insight.category == "ai_calibration"
        assert insight.severity == Severity.CRITICAL
        assert insight.correlation_key == "calibration:ppc_bid_adjustment:global"
