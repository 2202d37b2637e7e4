"""
Priority Engine - scores open insights and buckets them into a work queue.

Each open insight gets four independent sub-scores in [0, 1]:

1. IMPACT   - severity score, +0.2 for |delta| > 50% (+0.1 for > 25%),
              +0.05 when client-specific, +0.1 for known high-impact types
2. URGENCY  - severity score, +0.2 when older than 72h (+0.1 for > 24h),
              +0.15 for known urgent types
3. CONFIDENCE - the insight's own confidence score
4. RESOURCE - effort class (low 0.9, default 0.6, high 0.4), +0.1 when a
              suggested action exists

The composite score is the weighted sum with the tenant's weights divided by
their total, so the four weighted contributions always sum to the composite.
Buckets use >= cutoffs (critical 0.85, high 0.70, medium 0.50, low 0.30,
else monitor) and the recommended due date is now + the bucket's SLA hours.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from intelligence.core.defaults import PriorityDefaults
from intelligence.models import (
    BatchItemFailure,
    Insight,
    InsightStatus,
    PrioritizationResult,
    Priority,
    PriorityBucket,
    PriorityStatus,
    PriorityWeights,
    ScoreBreakdown,
    new_id,
    utc_now,
)
from intelligence.storage.base import PipelineStore


logger = logging.getLogger(__name__)


PRIORITY_BATCH = "intelligence-priority"


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


class PriorityEngine:
    """
    Computes priorities for a tenant's open insights.

    Args:
        store: Storage boundary.
        defaults: Weights, bucket cutoffs, SLA hours and type classes.
        claim_ttl_seconds: Lifetime of the per-tenant batch claim.
    """

    def __init__(self, store: PipelineStore, defaults: PriorityDefaults, claim_ttl_seconds: int = 300) -> None:
        self.store = store
        self.defaults = defaults
        self.claim_ttl_seconds = claim_ttl_seconds

    # =========================================================================
    # Batch processing
    # =========================================================================

    async def process_insights(self, tenant_id: str) -> PrioritizationResult:
        """
        Score every open insight of a tenant and mark it prioritised.

        Returns:
            PrioritizationResult: counts and per-insight failures; skipped=True
            when another run holds the tenant's priority claim.
        """
        owner = new_id()
        claimed = await self.store.try_claim_batch(tenant_id, PRIORITY_BATCH, owner, self.claim_ttl_seconds)
        if not claimed:
            logger.info(f"Priority scoring already running for tenant={tenant_id}, skipping")
            return PrioritizationResult(skipped=True)

        try:
            insights = await self.store.list_insights(tenant_id, InsightStatus.OPEN)
            result = PrioritizationResult(processed=len(insights))
            if not insights:
                return result

            weights = await self.resolve_weights(tenant_id)
            for insight in insights:
                try:
                    priority = self.compute_priority(insight, weights)
                    await self.store.upsert_priority(priority)
                    await self.store.update_insight_status(tenant_id, insight.id, InsightStatus.PRIORITISED)
                    result.priorities_created += 1
                except Exception as e:
                    logger.error(f"Failed to prioritise insight {insight.id}: {e}", exc_info=True)
                    result.failures.append(BatchItemFailure(item_id=insight.id, error=str(e)))

            logger.info(
                f"Priority scoring complete for tenant={tenant_id}: "
                f"{result.priorities_created}/{result.processed} insights prioritised"
            )
            return result
        finally:
            await self.store.release_batch_claim(tenant_id, PRIORITY_BATCH, owner)

    async def get_priority_queue(self, tenant_id: str, limit: Optional[int] = None) -> List[Priority]:
        """Pending priorities, highest composite score first."""
        return await self.store.list_priorities(tenant_id, PriorityStatus.PENDING, limit)

    # =========================================================================
    # Weights
    # =========================================================================

    async def resolve_weights(self, tenant_id: str) -> PriorityWeights:
        """
        Tenant weights with non-positive or missing components replaced by defaults.

        The result is not normalized; compute_score_breakdown divides by the total.
        """
        stored = await self.store.get_priority_weights(tenant_id)
        fallback = self.defaults.weights
        if stored is None:
            return fallback

        def pick(value: Optional[float], default: float) -> float:
            return value if value is not None and value > 0 else default

        return PriorityWeights(
            impact=pick(stored.impact, fallback.impact),
            urgency=pick(stored.urgency, fallback.urgency),
            confidence=pick(stored.confidence, fallback.confidence),
            resource=pick(stored.resource, fallback.resource),
        )

    # =========================================================================
    # Sub-scores
    # =========================================================================

    def impact_score(self, insight: Insight) -> float:
        score = self.defaults.impact_severity_scores.get(insight.severity, self.defaults.unknown_severity_score)
        if insight.delta_percent is not None:
            delta = abs(insight.delta_percent)
            if delta > 50:
                score += 0.2
            elif delta > 25:
                score += 0.1
        if insight.client_id:
            score += 0.05
        if insight.insight_type in self.defaults.high_impact_types:
            score += 0.1
        return _clamp(score)

    def urgency_score(self, insight: Insight, now: Optional[datetime] = None) -> float:
        now = now or utc_now()
        score = self.defaults.urgency_severity_scores.get(insight.severity, self.defaults.unknown_severity_score)
        age_hours = (now - insight.created_at).total_seconds() / 3600
        if age_hours > 72:
            score += 0.2
        elif age_hours > 24:
            score += 0.1
        if insight.insight_type in self.defaults.urgent_types:
            score += 0.15
        return _clamp(score)

    def confidence_score(self, insight: Insight) -> float:
        return _clamp(insight.confidence_score)

    def resource_score(self, insight: Insight) -> float:
        if insight.insight_type in self.defaults.low_effort_types:
            score = 0.9
        elif insight.insight_type in self.defaults.high_effort_types:
            score = 0.4
        else:
            score = 0.6
        if insight.suggested_action:
            score += 0.1
        return _clamp(score)

    # =========================================================================
    # Composition
    # =========================================================================

    def compute_score_breakdown(
        self,
        impact: float,
        urgency: float,
        confidence: float,
        resource: float,
        weights: PriorityWeights,
    ) -> ScoreBreakdown:
        """
        Weighted contribution of each sub-score, using weights divided by their total.

        `total` is computed as the sum of the four contributions so the
        breakdown is exact by construction.
        """
        total_weight = weights.total
        if total_weight <= 0:
            weights = self.defaults.weights
            total_weight = weights.total

        impact_part = impact * weights.impact / total_weight
        urgency_part = urgency * weights.urgency / total_weight
        confidence_part = confidence * weights.confidence / total_weight
        resource_part = resource * weights.resource / total_weight

        return ScoreBreakdown(
            impact=impact_part,
            urgency=urgency_part,
            confidence=confidence_part,
            resource=resource_part,
            total=impact_part + urgency_part + confidence_part + resource_part,
        )

    def bucket_for_score(self, score: float) -> PriorityBucket:
        for bucket, cutoff in self.defaults.bucket_cutoffs:
            if score >= cutoff:
                return bucket
        return PriorityBucket.MONITOR

    def recommended_due_date(self, bucket: PriorityBucket, now: Optional[datetime] = None) -> datetime:
        now = now or utc_now()
        return now + timedelta(hours=self.defaults.sla_hours.get(bucket, 72))

    def compute_priority(
        self,
        insight: Insight,
        weights: PriorityWeights,
        now: Optional[datetime] = None,
    ) -> Priority:
        now = now or utc_now()
        impact = self.impact_score(insight)
        urgency = self.urgency_score(insight, now)
        confidence = self.confidence_score(insight)
        resource = self.resource_score(insight)

        breakdown = self.compute_score_breakdown(impact, urgency, confidence, resource, weights)
        bucket = self.bucket_for_score(breakdown.total)

        return Priority(
            tenant_id=insight.tenant_id,
            insight_id=insight.id,
            priority_score=breakdown.total,
            impact_score=impact,
            urgency_score=urgency,
            confidence_score=confidence,
            resource_score=resource,
            bucket=bucket,
            status=PriorityStatus.PENDING,
            recommended_due_date=self.recommended_due_date(bucket, now),
            weights=weights,
            computed_at=now,
        )
