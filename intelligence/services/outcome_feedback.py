"""
Outcome Feedback & Calibration.

Records what happened to recommendations and closes the loop back into the
pipeline:

1. VARIANCE - mean of (actual - predicted) / predicted over keys present in
   both impact maps, skipping predicted == 0 and non-finite values.
   Direction: > +0.1 overperformed, < -0.1 underperformed, else on_target.
2. QUALITY METRICS - every capture/update recomputes the current month's
   metric for (tenant, client, recommendation type) and upserts it:
       quality = 0.3 * acceptance + 0.5 * success + 0.2 * (1 - |avg variance|)
   clamped to [0, 1]; confidence level from sample size (>= 20 high,
   >= 10 medium, else low).
3. CALIBRATION - with at least min_sample_size outcomes in the period:
   - acceptance < 0.6                          -> high_rejection
   - success < 0.5 with >= 5 measured outcomes -> low_success
   - |avg variance| > 0.3                      -> high_variance
   Each breach is emitted as an internal `calibration:{type}` signal. The
   dedup key includes the period start, so a breach produces at most one
   signal per (type, recommendation type, client, period). Signals correlate
   on `calibration:{recommendation type}:{client or global}`.
"""

import calendar
import logging
import math
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional, Tuple

from intelligence.core.defaults import FeedbackDefaults
from intelligence.core.exceptions import OutcomeNotFoundError
from intelligence.models import (
    CalibrationNeed,
    CalibrationType,
    ConfidenceLevel,
    Outcome,
    OutcomeCapture,
    OutcomeStatus,
    OutcomeUpdate,
    QualityDashboard,
    QualityMetric,
    Severity,
    SignalCategory,
    SignalSource,
    VarianceDirection,
    utc_now,
)
from intelligence.services.signal_emitter import SignalEmitter, calibration_correlation_key
from intelligence.storage.base import PipelineStore


logger = logging.getLogger(__name__)


SUCCESS_STATUSES = (OutcomeStatus.SUCCESS, OutcomeStatus.PARTIAL_SUCCESS)

CALIBRATION_ACTIONS: Dict[CalibrationType, str] = {
    CalibrationType.HIGH_REJECTION: "Review recommendation relevance and targeting for this client/type combination",
    CalibrationType.LOW_SUCCESS: "Analyze failed recommendations and adjust confidence thresholds",
    CalibrationType.HIGH_VARIANCE: "Recalibrate impact prediction models for this recommendation type",
}


# =============================================================================
# Period helpers
# =============================================================================


def month_bounds(day: date) -> Tuple[date, date]:
    """First and last day of the month containing `day`."""
    last = calendar.monthrange(day.year, day.month)[1]
    return date(day.year, day.month, 1), date(day.year, day.month, last)


def shift_month(day: date, months: int) -> date:
    """First day of the month `months` away from `day` (negative goes back)."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


# =============================================================================
# Variance
# =============================================================================


def calculate_variance(
    predicted: Optional[Dict[str, float]],
    actual: Optional[Dict[str, float]],
) -> Optional[float]:
    """
    Mean relative error of actual vs. predicted impact.

    Example:
        >>> calculate_variance({"sessions": 100}, {"sessions": 120})
        0.2

    Returns:
        None when either map is missing or no key qualifies.
    """
    if not predicted or not actual:
        return None

    variances: List[float] = []
    for key, predicted_value in predicted.items():
        if key not in actual:
            continue
        p, a = float(predicted_value), float(actual[key])
        if not (math.isfinite(p) and math.isfinite(a)) or p == 0:
            continue
        variances.append((a - p) / p)

    if not variances:
        return None
    return sum(variances) / len(variances)


def variance_direction(variance: Optional[float], band: float = 0.1) -> Optional[VarianceDirection]:
    if variance is None:
        return None
    if variance > band:
        return VarianceDirection.OVERPERFORMED
    if variance < -band:
        return VarianceDirection.UNDERPERFORMED
    return VarianceDirection.ON_TARGET


def quality_score(acceptance_rate: float, success_rate: float, avg_variance: Optional[float]) -> float:
    variance = abs(avg_variance) if avg_variance is not None else 0.0
    score = 0.3 * acceptance_rate + 0.5 * success_rate + 0.2 * (1 - variance)
    return max(0.0, min(score, 1.0))


class OutcomeFeedbackService:
    """
    Captures outcomes, maintains quality metrics and emits calibration signals.

    Args:
        store: Storage boundary.
        emitter: Channel for calibration signals.
        defaults: Sample-size and calibration thresholds.
    """

    def __init__(self, store: PipelineStore, emitter: SignalEmitter, defaults: FeedbackDefaults) -> None:
        self.store = store
        self.emitter = emitter
        self.defaults = defaults

    # =========================================================================
    # Outcome capture
    # =========================================================================

    async def capture_outcome(self, capture: OutcomeCapture) -> Outcome:
        """
        Record a recommendation outcome and refresh the period's quality metric.

        Timestamps: accepted_at or rejected_at from `accepted`, completed_at
        when the status is not pending, measured_at when actual impact is given.
        """
        now = utc_now()
        variance = calculate_variance(capture.predicted_impact, capture.actual_impact)

        outcome = Outcome(
            initiative_id=capture.initiative_id,
            tenant_id=capture.tenant_id,
            client_id=capture.client_id,
            recommendation_type=capture.recommendation_type,
            recommendation_source_id=capture.recommendation_source_id,
            accepted=capture.accepted,
            outcome_status=capture.outcome_status,
            predicted_impact=capture.predicted_impact,
            actual_impact=capture.actual_impact,
            variance_score=variance,
            variance_direction=variance_direction(variance, self.defaults.variance_band),
            accepted_at=now if capture.accepted else None,
            rejected_at=None if capture.accepted else now,
            completed_at=now if capture.outcome_status != OutcomeStatus.PENDING else None,
            measured_at=now if capture.actual_impact else None,
            notes=capture.notes,
            created_at=now,
            updated_at=now,
        )

        created = await self.store.create_outcome(outcome)
        logger.info(
            f"Captured outcome {created.id} for tenant={created.tenant_id} "
            f"type={created.recommendation_type} accepted={created.accepted}"
        )

        await self.refresh_quality(created.tenant_id, created.client_id, created.recommendation_type)
        return created

    async def update_outcome(self, tenant_id: str, outcome_id: str, update: OutcomeUpdate) -> Outcome:
        """
        Apply a status/impact update and refresh the period's quality metric.

        Raises:
            OutcomeNotFoundError: Unknown outcome id for the tenant.
        """
        existing = await self.store.get_outcome(tenant_id, outcome_id)
        if existing is None:
            raise OutcomeNotFoundError(outcome_id)

        now = utc_now()
        changes = {"updated_at": now}

        if update.outcome_status is not None:
            changes["outcome_status"] = update.outcome_status
            if update.outcome_status != OutcomeStatus.PENDING:
                changes["completed_at"] = now

        if update.actual_impact is not None:
            variance = calculate_variance(existing.predicted_impact, update.actual_impact)
            changes["actual_impact"] = update.actual_impact
            changes["measured_at"] = now
            changes["variance_score"] = variance
            changes["variance_direction"] = variance_direction(variance, self.defaults.variance_band)

        if update.notes is not None:
            changes["notes"] = update.notes
        if update.lessons_learned is not None:
            changes["lessons_learned"] = update.lessons_learned

        saved = await self.store.save_outcome(existing.model_copy(update=changes))
        await self.refresh_quality(saved.tenant_id, saved.client_id, saved.recommendation_type)
        return saved

    async def refresh_quality(self, tenant_id: str, client_id: Optional[str], recommendation_type: str) -> None:
        metric = await self.update_quality_metrics(tenant_id, client_id, recommendation_type)
        if metric is not None:
            await self.check_calibration(metric)

    # =========================================================================
    # Quality metrics
    # =========================================================================

    async def update_quality_metrics(
        self,
        tenant_id: str,
        client_id: Optional[str],
        recommendation_type: str,
        today: Optional[date] = None,
    ) -> Optional[QualityMetric]:
        """Recompute and upsert the current month's metric; None if it has no outcomes."""
        period_start, period_end = month_bounds(today or utc_now().date())
        outcomes = await self.store.list_outcomes(
            tenant_id,
            recommendation_type,
            client_id,
            _start_of_day(period_start),
            _start_of_day(shift_month(period_start, 1)),
        )
        if not outcomes:
            return None

        metric = self.build_quality_metric(
            tenant_id, client_id, recommendation_type, period_start, period_end, outcomes
        )
        return await self.store.upsert_quality_metric(metric)

    def build_quality_metric(
        self,
        tenant_id: str,
        client_id: Optional[str],
        recommendation_type: str,
        period_start: date,
        period_end: date,
        outcomes: List[Outcome],
    ) -> QualityMetric:
        total = len(outcomes)
        accepted = sum(1 for o in outcomes if o.accepted_at is not None)
        rejected = sum(1 for o in outcomes if o.rejected_at is not None)
        completed = [o for o in outcomes if o.completed_at is not None]
        successes = sum(1 for o in completed if o.outcome_status in SUCCESS_STATUSES)
        failures = sum(1 for o in completed if o.outcome_status == OutcomeStatus.FAILURE)

        variances = [o.variance_score for o in outcomes if o.variance_score is not None]
        avg_variance = sum(variances) / len(variances) if variances else None

        acceptance_rate = accepted / total
        success_rate = successes / len(completed) if completed else 0.0

        if total >= self.defaults.high_confidence_sample:
            confidence = ConfidenceLevel.HIGH
        elif total >= self.defaults.medium_confidence_sample:
            confidence = ConfidenceLevel.MEDIUM
        else:
            confidence = ConfidenceLevel.LOW

        return QualityMetric(
            tenant_id=tenant_id,
            client_id=client_id,
            recommendation_type=recommendation_type,
            period_start=period_start,
            period_end=period_end,
            total_recommendations=total,
            accepted_count=accepted,
            rejected_count=rejected,
            completed_count=len(completed),
            success_count=successes,
            failure_count=failures,
            overperform_count=sum(
                1 for o in outcomes if o.variance_direction == VarianceDirection.OVERPERFORMED
            ),
            underperform_count=sum(
                1 for o in outcomes if o.variance_direction == VarianceDirection.UNDERPERFORMED
            ),
            acceptance_rate=acceptance_rate,
            success_rate=success_rate,
            completion_rate=len(completed) / total,
            avg_variance=avg_variance,
            quality_score=quality_score(acceptance_rate, success_rate, avg_variance),
            confidence_level=confidence,
            updated_at=utc_now(),
        )

    # =========================================================================
    # Calibration
    # =========================================================================

    def evaluate_calibration(self, metric: QualityMetric) -> List[CalibrationNeed]:
        """Calibration rules breached by a metric; empty below the minimum sample size."""
        d = self.defaults
        if metric.total_recommendations < d.min_sample_size:
            return []

        needs: List[CalibrationNeed] = []

        def need(kind: CalibrationType, severity: Severity, metrics: Dict[str, Optional[float]]) -> None:
            needs.append(CalibrationNeed(
                calibration_type=kind,
                severity=severity,
                recommendation_type=metric.recommendation_type,
                client_id=metric.client_id,
                metrics=metrics,
                suggested_action=CALIBRATION_ACTIONS[kind],
                period_start=metric.period_start,
                period_end=metric.period_end,
            ))

        if metric.acceptance_rate < d.min_acceptance_rate:
            severity = Severity.CRITICAL if metric.acceptance_rate < d.critical_acceptance_rate else Severity.HIGH
            need(CalibrationType.HIGH_REJECTION, severity, {
                "acceptance_rate": metric.acceptance_rate,
                "rejected_count": metric.rejected_count,
            })

        measured = metric.success_count + metric.failure_count
        if metric.success_rate < d.min_success_rate and measured >= d.min_measured_outcomes:
            severity = Severity.CRITICAL if metric.success_rate < d.critical_success_rate else Severity.HIGH
            need(CalibrationType.LOW_SUCCESS, severity, {
                "success_rate": metric.success_rate,
                "success_count": metric.success_count,
                "failure_count": metric.failure_count,
            })

        abs_variance = abs(metric.avg_variance or 0.0)
        if abs_variance > d.max_abs_variance:
            severity = Severity.HIGH if abs_variance > d.high_abs_variance else Severity.MEDIUM
            need(CalibrationType.HIGH_VARIANCE, severity, {
                "avg_variance": metric.avg_variance,
                "overperform_count": metric.overperform_count,
                "underperform_count": metric.underperform_count,
            })

        return needs

    async def check_calibration(self, metric: QualityMetric) -> List[CalibrationNeed]:
        """Emit one calibration signal per breached rule; repeats within a period dedupe."""
        needs = self.evaluate_calibration(metric)
        for need in needs:
            kind = need.calibration_type.value
            result = await self.emitter.emit(
                metric.tenant_id,
                SignalSource.INTERNAL,
                f"calibration:{kind}",
                {
                    "recommendation_type": need.recommendation_type,
                    "client_id": need.client_id,
                    "metrics": need.metrics,
                    "suggested_action": need.suggested_action,
                    "period_start": need.period_start.isoformat(),
                    "period_end": need.period_end.isoformat(),
                },
                severity=need.severity,
                category=SignalCategory.AI_CALIBRATION.value,
                client_id=need.client_id,
                correlation_key=calibration_correlation_key(need.recommendation_type, need.client_id),
                dedup_key={
                    "kind": kind,
                    "recommendation_type": need.recommendation_type,
                    "client": need.client_id,
                    "period_start": need.period_start.isoformat(),
                },
                metadata={"origin": "outcome_feedback"},
            )
            if not result.is_duplicate:
                logger.warning(
                    f"Calibration needed ({kind}, {need.severity.value}) for tenant={metric.tenant_id} "
                    f"type={need.recommendation_type} client={need.client_id or 'global'}"
                )
        return needs

    # =========================================================================
    # Dashboard
    # =========================================================================

    async def get_quality_dashboard(
        self,
        tenant_id: str,
        client_id: Optional[str] = None,
        periods: Optional[int] = None,
        today: Optional[date] = None,
    ) -> QualityDashboard:
        """
        Quality metrics for the last `periods` months plus current calibration needs.

        Tenant-wide metrics land in `overall` keyed by recommendation type,
        client metrics in `by_client` keyed by "client:type". Calibration
        needs are evaluated on the current period only.
        """
        periods = periods or self.defaults.dashboard_periods
        current_start, _ = month_bounds(today or utc_now().date())
        since = shift_month(current_start, -(periods - 1))

        dashboard = QualityDashboard()
        for metric in await self.store.list_quality_metrics(tenant_id, since, client_id):
            if metric.client_id:
                key = f"{metric.client_id}:{metric.recommendation_type}"
                dashboard.by_client.setdefault(key, []).append(metric)
            else:
                dashboard.overall.setdefault(metric.recommendation_type, []).append(metric)

            if metric.period_start == current_start:
                dashboard.calibration_needed.extend(self.evaluate_calibration(metric))

        return dashboard
