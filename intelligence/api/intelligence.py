"""
FastAPI router for the processing stages of the intelligence pipeline.

Key Endpoints:
- POST  /intelligence/process-signals                - Aggregate pending signals into insights
- POST  /intelligence/compute-priorities             - Score open insights
- POST  /intelligence/run-pipeline                   - Both of the above, in order
- GET   /intelligence/insights                       - Insights by status
- GET   /intelligence/priorities                     - Priority queue, highest score first
- POST  /intelligence/anomalies/{client_id}/detect   - Detect and publish a client's anomalies
- GET   /intelligence/anomalies/{client_id}/trends   - Week/month-over-month trends
- POST  /intelligence/outcomes                       - Capture a recommendation outcome
- PATCH /intelligence/outcomes/{outcome_id}          - Update an outcome
- GET   /intelligence/quality                        - Quality dashboard

The tenant comes from the X-Tenant-Id header.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from intelligence.api.errors import http_error
from intelligence.core.dependencies import PipelineDep, TenantDep
from intelligence.models import (
    AggregationResult,
    ClientScanResult,
    Insight,
    InsightStatus,
    Outcome,
    OutcomeCapture,
    OutcomeStatus,
    OutcomeUpdate,
    PipelineRunResult,
    PrioritizationResult,
    Priority,
    QualityDashboard,
    TrendAnalysis,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/intelligence")


class OutcomeRequest(BaseModel):
    """Outcome capture body; the tenant comes from the request header."""

    initiative_id: str
    client_id: Optional[str] = None
    recommendation_type: str = Field(..., min_length=1)
    recommendation_source_id: Optional[str] = None
    accepted: bool
    outcome_status: OutcomeStatus = OutcomeStatus.PENDING
    predicted_impact: Dict[str, float] = Field(default_factory=dict)
    actual_impact: Optional[Dict[str, float]] = None
    notes: Optional[str] = None


# =============================================================================
# Batch stages
# =============================================================================


@router.post("/process-signals", response_model=AggregationResult)
async def process_signals(tenant_id: TenantDep, pipeline: PipelineDep) -> AggregationResult:
    try:
        return await pipeline.aggregator.process_signals(tenant_id)
    except Exception as e:
        raise http_error(e, "process signals") from e


@router.post("/compute-priorities", response_model=PrioritizationResult)
async def compute_priorities(tenant_id: TenantDep, pipeline: PipelineDep) -> PrioritizationResult:
    try:
        return await pipeline.priority_engine.process_insights(tenant_id)
    except Exception as e:
        raise http_error(e, "compute priorities") from e


@router.post("/run-pipeline", response_model=PipelineRunResult)
async def run_pipeline(tenant_id: TenantDep, pipeline: PipelineDep) -> PipelineRunResult:
    try:
        return await pipeline.run_pipeline(tenant_id)
    except Exception as e:
        raise http_error(e, "run pipeline") from e


@router.get("/insights", response_model=List[Insight])
async def list_insights(
    tenant_id: TenantDep,
    pipeline: PipelineDep,
    status: InsightStatus = Query(InsightStatus.OPEN),
    limit: int = Query(100, ge=1, le=1000),
) -> List[Insight]:
    try:
        return await pipeline.store.list_insights(tenant_id, status, limit)
    except Exception as e:
        raise http_error(e, "list insights") from e


@router.get("/priorities", response_model=List[Priority])
async def get_priority_queue(
    tenant_id: TenantDep,
    pipeline: PipelineDep,
    limit: Optional[int] = Query(None, ge=1, le=1000),
) -> List[Priority]:
    try:
        return await pipeline.priority_engine.get_priority_queue(tenant_id, limit)
    except Exception as e:
        raise http_error(e, "get priority queue") from e


# =============================================================================
# Anomalies
# =============================================================================


@router.post("/anomalies/{client_id}/detect", response_model=ClientScanResult)
async def detect_anomalies(client_id: str, tenant_id: TenantDep, pipeline: PipelineDep) -> ClientScanResult:
    """Detect anomalies for one client and publish the non-false-positive ones."""
    try:
        return await pipeline.detector.detect_and_emit(tenant_id, client_id)
    except Exception as e:
        raise http_error(e, "detect anomalies") from e


@router.get("/anomalies/{client_id}/trends", response_model=List[TrendAnalysis])
async def get_trends(client_id: str, tenant_id: TenantDep, pipeline: PipelineDep) -> List[TrendAnalysis]:
    try:
        return await pipeline.detector.analyze_trends(tenant_id, client_id)
    except Exception as e:
        raise http_error(e, "analyze trends") from e


# =============================================================================
# Outcomes and quality
# =============================================================================


@router.post("/outcomes", response_model=Outcome, status_code=201)
async def capture_outcome(body: OutcomeRequest, tenant_id: TenantDep, pipeline: PipelineDep) -> Outcome:
    try:
        capture = OutcomeCapture(tenant_id=tenant_id, **body.model_dump())
        return await pipeline.feedback.capture_outcome(capture)
    except Exception as e:
        raise http_error(e, "capture outcome") from e


@router.patch("/outcomes/{outcome_id}", response_model=Outcome)
async def update_outcome(
    outcome_id: str,
    update: OutcomeUpdate,
    tenant_id: TenantDep,
    pipeline: PipelineDep,
) -> Outcome:
    """
    Raises:
        HTTPException 404: Unknown outcome id for the tenant.
    """
    try:
        return await pipeline.feedback.update_outcome(tenant_id, outcome_id, update)
    except Exception as e:
        raise http_error(e, "update outcome") from e


@router.get("/quality", response_model=QualityDashboard)
async def get_quality_dashboard(
    tenant_id: TenantDep,
    pipeline: PipelineDep,
    client_id: Optional[str] = Query(None),
    periods: int = Query(6, ge=1, le=24),
) -> QualityDashboard:
    try:
        return await pipeline.feedback.get_quality_dashboard(tenant_id, client_id, periods)
    except Exception as e:
        raise http_error(e, "load quality dashboard") from e


__all__ = ["router"]
