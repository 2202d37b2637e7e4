"""
FastAPI router for signal ingestion and lifecycle.

Key Endpoints:
- POST /signals/{source}          - Ingest a raw event from a source system
- GET  /signals/sources           - Registered source names
- GET  /signals/pending           - Pending signals, newest first
- GET  /signals/failed            - Failed signals, newest first
- GET  /signals/{signal_id}       - One signal
- POST /signals/{signal_id}/retry - Reset a pending/failed signal to pending

The tenant comes from the X-Tenant-Id header. Matched workflow ids are
returned to the caller, which owns workflow execution.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Query

from intelligence.api.errors import http_error
from intelligence.core.dependencies import PipelineDep, TenantDep
from intelligence.models import Signal, SignalIngestionResult


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/sources", response_model=List[str])
async def list_sources(pipeline: PipelineDep) -> List[str]:
    return pipeline.router.supported_sources()


@router.get("/pending", response_model=List[Signal])
async def list_pending_signals(
    tenant_id: TenantDep,
    pipeline: PipelineDep,
    limit: int = Query(100, ge=1, le=1000),
) -> List[Signal]:
    try:
        return await pipeline.router.get_pending_signals(tenant_id, limit)
    except Exception as e:
        raise http_error(e, "list pending signals") from e


@router.get("/failed", response_model=List[Signal])
async def list_failed_signals(
    tenant_id: TenantDep,
    pipeline: PipelineDep,
    limit: int = Query(100, ge=1, le=1000),
) -> List[Signal]:
    try:
        return await pipeline.router.get_failed_signals(tenant_id, limit)
    except Exception as e:
        raise http_error(e, "list failed signals") from e


@router.post("/{source}", response_model=SignalIngestionResult)
async def ingest_signal(
    source: str,
    tenant_id: TenantDep,
    pipeline: PipelineDep,
    payload: Dict[str, Any] = Body(...),
    client_id: Optional[str] = Query(None),
) -> SignalIngestionResult:
    """
    Ingest one raw event.

    Returns:
        SignalIngestionResult: is_duplicate=True (and no routes) when the
        same event was already ingested for this tenant.

    Raises:
        HTTPException 400: Unsupported source or malformed payload.
        HTTPException 500: Storage failure.
    """
    try:
        result = await pipeline.router.ingest_signal(tenant_id, source, payload, client_id)
        logger.debug(f"POST /signals/{source}: signal={result.signal.id} duplicate={result.is_duplicate}")
        return result
    except Exception as e:
        raise http_error(e, f"ingest {source} signal") from e


@router.get("/{signal_id}", response_model=Signal)
async def get_signal(signal_id: str, tenant_id: TenantDep, pipeline: PipelineDep) -> Signal:
    try:
        return await pipeline.router.get_signal(tenant_id, signal_id)
    except Exception as e:
        raise http_error(e, "get signal") from e


@router.post("/{signal_id}/retry", response_model=Signal)
async def retry_signal(signal_id: str, tenant_id: TenantDep, pipeline: PipelineDep) -> Signal:
    """
    Raises:
        HTTPException 400: The signal is processed or discarded.
        HTTPException 404: Unknown signal id.
    """
    try:
        return await pipeline.router.retry_signal(tenant_id, signal_id)
    except Exception as e:
        raise http_error(e, "retry signal") from e


__all__ = ["router"]
