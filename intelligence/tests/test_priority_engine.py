"""
Unit tests for the Priority Engine.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from intelligence.core.defaults import PriorityDefaults
from intelligence.models import (
    InsightStatus,
    PriorityBucket,
    PriorityWeights,
    Severity,
)
from intelligence.services.priority_engine import PRIORITY_BATCH, PriorityEngine
from intelligence.tests.conftest import TENANT_ID, make_insight


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(store) -> PriorityEngine:
    return PriorityEngine(store, PriorityDefaults())


# =============================================================================
# Sub-scores
# =============================================================================


class TestSubScores:

    def test_impact_score(self, engine):
        assert engine.impact_score(make_insight()) == pytest.approx(0.65)
        assert engine.impact_score(make_insight(delta_percent=-30.0, client_id=None)) == pytest.approx(0.7)
        assert engine.impact_score(make_insight(severity=Severity.CRITICAL, delta_percent=80.0)) == 1.0
        assert engine.impact_score(
            make_insight(severity=Severity.LOW, insight_type="revenue_drop", client_id=None)
        ) == pytest.approx(0.5)

    @pytest.mark.parametrize("age_hours,expected", [(1, 0.5), (25, 0.6), (73, 0.7)])
    def test_urgency_grows_with_age(self, engine, age_hours, expected):
        insight = make_insight(created_at=NOW - timedelta(hours=age_hours))
        assert engine.urgency_score(insight, NOW) == pytest.approx(expected)

    def test_urgent_type_bonus_is_clamped(self, engine):
        insight = make_insight(severity=Severity.CRITICAL, insight_type="sla_breach",
                               created_at=NOW - timedelta(hours=100))
        assert engine.urgency_score(insight, NOW) == 1.0

    @pytest.mark.parametrize("insight_type,action,expected", [
        ("content_update", "Refresh copy", 1.0),
        ("strategy_pivot", None, 0.4),
        ("traffic_drop", "Monitor", 0.7),
        ("traffic_drop", None, 0.6),
    ])
    def test_resource_score(self, engine, insight_type, action, expected):
        insight = make_insight(insight_type=insight_type, suggested_action=action)
        assert engine.resource_score(insight) == pytest.approx(expected)


# =============================================================================
# Composition
# =============================================================================


class TestScoreComposition:

    @pytest.mark.parametrize("weights", [
        PriorityWeights(),
        PriorityWeights(impact=2, urgency=1, confidence=1, resource=1),
        PriorityWeights(impact=0.05, urgency=0.05, confidence=0.05, resource=0.05),
        PriorityWeights(impact=10, urgency=0.5, confidence=3, resource=7),
    ])
    def test_contributions_sum_to_total(self, engine, weights):
        breakdown = engine.compute_score_breakdown(0.9, 0.4, 0.7, 0.2, weights)

        parts = breakdown.impact + breakdown.urgency + breakdown.confidence + breakdown.resource
        assert parts == pytest.approx(breakdown.total)
        assert 0.0 <= breakdown.total <= 1.0

    def test_weights_are_renormalized(self, engine):
        unnormalized = PriorityWeights(impact=4, urgency=3, confidence=2, resource=1)
        a = engine.compute_score_breakdown(0.9, 0.4, 0.7, 0.2, unnormalized)
        b = engine.compute_score_breakdown(0.9, 0.4, 0.7, 0.2, PriorityWeights())

        assert a.total == pytest.approx(b.total)
        assert engine.compute_score_breakdown(1, 1, 1, 1, unnormalized).total == pytest.approx(1.0)

    @pytest.mark.parametrize("score,expected", [
        (0.85, PriorityBucket.CRITICAL),
        (0.8499, PriorityBucket.HIGH),
        (0.70, PriorityBucket.HIGH),
        (0.50, PriorityBucket.MEDIUM),
        (0.30, PriorityBucket.LOW),
        (0.2999, PriorityBucket.MONITOR),
        (0.0, PriorityBucket.MONITOR),
    ])
    def test_bucket_cutoffs_are_inclusive(self, engine, score, expected):
        assert engine.bucket_for_score(score) == expected

    def test_compute_priority_medium(self, engine):
        priority = engine.compute_priority(make_insight(created_at=NOW), PriorityWeights(), NOW)

        assert priority.priority_score == pytest.approx(0.6)
        assert priority.bucket == PriorityBucket.MEDIUM
        assert priority.recommended_due_date == NOW + timedelta(hours=72)

    def test_compute_priority_critical(self, engine):
        insight = make_insight(severity=Severity.CRITICAL, confidence=0.9, delta_percent=-60.0, created_at=NOW)

        priority = engine.compute_priority(insight, PriorityWeights(), NOW)

        assert priority.priority_score == pytest.approx(0.95)
        assert priority.bucket == PriorityBucket.CRITICAL
        assert priority.recommended_due_date == NOW + timedelta(hours=4)
        assert priority.insight_id == insight.id


class TestWeights:

    @pytest.mark.asyncio
    async def test_defaults_without_stored_weights(self, engine):
        assert await engine.resolve_weights(TENANT_ID) == PriorityDefaults().weights

    @pytest.mark.asyncio
    async def test_non_positive_components_fall_back(self, engine, store):
        store.set_priority_weights(TENANT_ID, PriorityWeights(impact=0, urgency=-1, confidence=0.5, resource=0.5))

        weights = await engine.resolve_weights(TENANT_ID)

        assert weights == PriorityWeights(impact=0.4, urgency=0.3, confidence=0.5, resource=0.5)


# =============================================================================
# Batch processing
# =============================================================================


class TestProcessInsights:

    @pytest.mark.asyncio
    async def test_open_insights_are_scored_and_prioritised(self, engine, store):
        low = await store.create_insight(make_insight(severity=Severity.LOW, confidence=0.4))
        high = await store.create_insight(make_insight(severity=Severity.CRITICAL, confidence=0.9))

        result = await engine.process_insights(TENANT_ID)

        assert result.processed == 2
        assert result.priorities_created == 2
        assert store.insights[low.id].status == InsightStatus.PRIORITISED
        queue = await engine.get_priority_queue(TENANT_ID)
        assert [p.insight_id for p in queue] == [high.id, low.id]
        assert [p.insight_id for p in await engine.get_priority_queue(TENANT_ID, limit=1)] == [high.id]

    @pytest.mark.asyncio
    async def test_rescoring_upserts_one_priority_per_insight(self, engine, store):
        insight = await store.create_insight(make_insight())
        await engine.process_insights(TENANT_ID)
        await store.update_insight_status(TENANT_ID, insight.id, InsightStatus.OPEN)

        await engine.process_insights(TENANT_ID)

        assert len(store.priorities) == 1

    @pytest.mark.asyncio
    async def test_nothing_open(self, engine, store):
        result = await engine.process_insights(TENANT_ID)
        assert result.processed == 0
        assert (TENANT_ID, PRIORITY_BATCH) not in store.claims

    @pytest.mark.asyncio
    async def test_concurrent_run_is_skipped(self, engine, store):
        await store.create_insight(make_insight())
        await store.try_claim_batch(TENANT_ID, PRIORITY_BATCH, "other-worker", 300)

        result = await engine.process_insights(TENANT_ID)

        assert result.skipped is True
        assert store.priorities == {}

    @pytest.mark.asyncio
    async def test_failing_insight_is_reported(self, engine, store):
        ok = await store.create_insight(make_insight(client_id="client-ok"))
        bad = await store.create_insight(make_insight(client_id="client-bad"))
        original = store.upsert_priority

        async def flaky(priority):
            if priority.insight_id == bad.id:
                raise RuntimeError("constraint violation")
            return await original(priority)

        store.upsert_priority = AsyncMock(side_effect=flaky)

        result = await engine.process_insights(TENANT_ID)

        assert result.priorities_created == 1
        assert result.failures[0].item_id == bad.id
        assert store.insights[ok.id].status == InsightStatus.PRIORITISED
        assert store.insights[bad.id].status == InsightStatus.OPEN
