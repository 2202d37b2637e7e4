"""
Insight Aggregator - turns batches of pending signals into insights.

Algorithm:
1. Claim the tenant's aggregation batch; a concurrent run returns skipped.
2. Pull up to batch_size pending signals, oldest first.
3. Group by tenant::category::type::correlation-key::client, with "none"
   standing in for a missing correlation key or client.
4. Score each group:
       min(count / 5, 1) * 0.3
     + severity_score(max severity) * 0.3
     + 0.2 with a correlation key, else 0.1
     + 0.1
5. Groups under min_confidence_threshold are discarded signal by signal with
   "Low confidence: 0.xx"; the rest become one insight each, built from
   deterministic title/summary/action lookup tables, and their signals are
   marked processed with the insight id.

A failing group is logged, its signals are marked failed, and the batch
continues with the remaining groups.
"""

import logging
from typing import Any, Dict, List, Optional

from intelligence.core.defaults import AggregatorDefaults
from intelligence.core.side_effects import run_non_blocking
from intelligence.models import (
    SEVERITY_ORDER,
    AggregationResult,
    AggregatorConfig,
    BatchItemFailure,
    Insight,
    Severity,
    Signal,
    SignalGroup,
    SignalStatus,
    new_id,
)
from intelligence.storage.base import PipelineStore


logger = logging.getLogger(__name__)


AGGREGATION_BATCH = "intelligence-aggregation"


def group_key(signal: Signal) -> str:
    parts = [
        signal.tenant_id,
        signal.category,
        signal.signal_type,
        signal.correlation_key or "none",
        signal.client_id or "none",
    ]
    return "::".join(parts)


def group_signals(signals: List[Signal]) -> Dict[str, SignalGroup]:
    """Group signals by their aggregation key, tracking the max severity."""
    groups: Dict[str, SignalGroup] = {}
    for signal in signals:
        key = group_key(signal)
        group = groups.get(key)
        if group is None:
            group = SignalGroup(
                key=key,
                tenant_id=signal.tenant_id,
                category=signal.category,
                signal_type=signal.signal_type,
                correlation_key=signal.correlation_key,
                client_id=signal.client_id,
                severity=signal.severity,
            )
            groups[key] = group
        group.signals.append(signal)
        if SEVERITY_ORDER[signal.severity] > SEVERITY_ORDER[group.severity]:
            group.severity = signal.severity
    return groups


def _payload_float(payload: Dict[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class InsightAggregator:
    """
    Groups pending signals and synthesizes insights.

    Args:
        store: Storage boundary.
        defaults: Fallback config and the text lookup tables.
        claim_ttl_seconds: Lifetime of the per-tenant batch claim.
    """

    def __init__(self, store: PipelineStore, defaults: AggregatorDefaults, claim_ttl_seconds: int = 300) -> None:
        self.store = store
        self.defaults = defaults
        self.claim_ttl_seconds = claim_ttl_seconds

    async def resolve_config(self, tenant_id: str) -> AggregatorConfig:
        stored = await self.store.get_aggregator_config(tenant_id)
        if stored is not None:
            return stored
        return AggregatorConfig(
            tenant_id=tenant_id,
            batch_size=self.defaults.batch_size,
            min_confidence_threshold=self.defaults.min_confidence_threshold,
        )

    async def process_signals(self, tenant_id: str) -> AggregationResult:
        """
        Aggregate one batch of pending signals for a tenant.

        Returns:
            AggregationResult: counts plus per-group failures; skipped=True
            when another run holds the tenant's aggregation claim.
        """
        owner = new_id()
        claimed = await self.store.try_claim_batch(
            tenant_id, AGGREGATION_BATCH, owner, self.claim_ttl_seconds
        )
        if not claimed:
            logger.info(f"Aggregation already running for tenant={tenant_id}, skipping")
            return AggregationResult(skipped=True)

        try:
            return await self._process_batch(tenant_id)
        finally:
            await self.store.release_batch_claim(tenant_id, AGGREGATION_BATCH, owner)

    async def _process_batch(self, tenant_id: str) -> AggregationResult:
        config = await self.resolve_config(tenant_id)
        signals = await self.store.get_unprocessed_signals(tenant_id, config.batch_size)
        result = AggregationResult(processed=len(signals))

        if not signals:
            return result

        groups = group_signals(signals)
        logger.info(f"Aggregating {len(signals)} signals into {len(groups)} groups for tenant={tenant_id}")

        for group in groups.values():
            try:
                insight = await self.aggregate_group(group, config.min_confidence_threshold)
            except Exception as e:
                logger.error(f"Failed to aggregate signal group {group.key}: {e}", exc_info=True)
                result.failures.append(BatchItemFailure(item_id=group.key, error=str(e)))
                await run_non_blocking(
                    self._mark_group_failed(group, str(e)),
                    f"mark signal group {group.key} failed",
                )
                continue

            if insight is None:
                result.discarded += len(group.signals)
            else:
                result.insights_created += 1

        logger.info(
            f"Aggregation complete for tenant={tenant_id}: "
            f"{result.insights_created} insights, {result.discarded} signals discarded, "
            f"{len(result.failures)} failed groups"
        )
        return result

    async def aggregate_group(self, group: SignalGroup, min_confidence: float) -> Optional[Insight]:
        """Create the group's insight, or discard its signals below min_confidence."""
        confidence = self.calculate_group_confidence(group)

        if confidence < min_confidence:
            reason = f"Low confidence: {confidence:.2f}"
            for signal in group.signals:
                await self.store.update_signal_status(
                    group.tenant_id, signal.id, SignalStatus.DISCARDED, discard_reason=reason
                )
            logger.debug(f"Discarded group {group.key}: {reason}")
            return None

        insight = await self.store.create_insight(self.build_insight(group, confidence))
        for signal in group.signals:
            await self.store.update_signal_status(
                group.tenant_id, signal.id, SignalStatus.PROCESSED, insight_id=insight.id
            )
        return insight

    async def _mark_group_failed(self, group: SignalGroup, error: str) -> None:
        for signal in group.signals:
            await self.store.update_signal_status(
                group.tenant_id, signal.id, SignalStatus.FAILED, last_error=error
            )

    # =========================================================================
    # Scoring and text synthesis
    # =========================================================================

    def calculate_group_confidence(self, group: SignalGroup) -> float:
        count_factor = min(len(group.signals) / 5, 1.0) * 0.3
        severity_factor = self.defaults.severity_scores.get(group.severity, 0.5) * 0.3
        correlation_factor = 0.2 if group.correlation_key else 0.1
        return min(count_factor + severity_factor + correlation_factor + 0.1, 1.0)

    def build_insight(self, group: SignalGroup, confidence: float) -> Insight:
        summary = self.generate_summary(group)
        start, end = self._time_range(group)
        metrics = self._metric_values(group)

        return Insight(
            tenant_id=group.tenant_id,
            insight_type=group.signal_type,
            category=group.category,
            title=self.generate_title(group),
            description=f"{summary}\n\nPotential Impact: {self.estimate_impact(group)}",
            summary=summary,
            suggested_action=self.generate_suggested_action(group),
            severity=group.severity,
            confidence_score=confidence,
            client_id=group.client_id,
            correlation_key=group.correlation_key,
            metric_key=metrics.get("metric_key"),
            current_value=metrics.get("current_value"),
            baseline_value=metrics.get("baseline_value"),
            delta_percent=metrics.get("delta_percent"),
            source_signal_ids=[s.id for s in group.signals],
            source_systems=sorted({s.source for s in group.signals}),
            time_range_start=start,
            time_range_end=end,
            created_by_agent=self.defaults.agent_name,
        )

    def generate_title(self, group: SignalGroup) -> str:
        base = self.defaults.category_titles.get(group.category, "Intelligence Insight")
        prefix = ""
        if group.severity in (Severity.CRITICAL, Severity.HIGH):
            prefix = f"[{group.severity.value.upper()}] "
        return f"{prefix}{base}: {len(group.signals)} related signal(s)"

    def generate_summary(self, group: SignalGroup) -> str:
        signal_types = list(dict.fromkeys(s.signal_type for s in group.signals))
        sources = list(dict.fromkeys(s.source for s in group.signals))
        start, end = self._time_range(group)

        lines = [
            f"Aggregated from {len(group.signals)} signal(s) in the {group.category} category.",
            f"Signal types: {', '.join(signal_types)}",
            f"Sources: {', '.join(sources)}",
        ]
        if group.correlation_key:
            lines.append(f"Correlation key: {group.correlation_key}")
        lines.append(f"Time range: {start.isoformat()} to {end.isoformat()}")
        return "\n".join(lines)

    def generate_suggested_action(self, group: SignalGroup) -> str:
        templates = self.defaults.action_templates
        actions = templates.get(group.category) or templates.get("workflow", {})
        return actions.get(group.severity, "Review and assess appropriate action")

    def estimate_impact(self, group: SignalGroup) -> str:
        factors: List[str] = []
        if group.severity == Severity.CRITICAL:
            factors.append("Immediate business risk")
        elif group.severity == Severity.HIGH:
            factors.append("Significant performance impact")
        if group.client_id:
            factors.append("Client-specific")
        if len(group.signals) > 3:
            factors.append("Pattern indicates systemic issue")
        category_impact = self.defaults.category_impacts.get(group.category)
        if category_impact:
            factors.append(category_impact)
        return "; ".join(factors) or "Impact assessment pending"

    @staticmethod
    def _time_range(group: SignalGroup):
        times = [s.occurred_at for s in group.signals]
        return min(times), max(times)

    @staticmethod
    def _metric_values(group: SignalGroup) -> Dict[str, Any]:
        """Metric fields of the most recent signal whose payload names a metric."""
        carriers = [s for s in group.signals if s.payload.get("metricType")]
        if not carriers:
            return {}
        latest = max(carriers, key=lambda s: s.occurred_at)
        return {
            "metric_key": str(latest.payload["metricType"]),
            "current_value": _payload_float(latest.payload, "currentValue"),
            "baseline_value": _payload_float(latest.payload, "expectedValue"),
            "delta_percent": _payload_float(latest.payload, "percentChange"),
        }
