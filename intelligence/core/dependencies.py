"""
FastAPI dependency injection for the intelligence host surface.

Dependencies Provided:
- get_settings_dependency / SettingsDep: the cached Settings singleton
- get_store: the process-wide PipelineStore selected by STORAGE_BACKEND
- get_pipeline / PipelineDep: the IntelligencePipeline bound to that store
- get_tenant_id / TenantDep: tenant id from the X-Tenant-Id header

Tests override get_pipeline (or get_store) through app.dependency_overrides
to run the API against an InMemoryStore.
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException

from intelligence.core.config import Settings, get_settings
from intelligence.core.defaults import get_pipeline_defaults
from intelligence.services.pipeline import IntelligencePipeline
from intelligence.storage import InMemoryStore, PipelineStore, PostgresStore


logger = logging.getLogger(__name__)


# =============================================================================
# Settings Dependency
# =============================================================================


def get_settings_dependency() -> Settings:
    """Thin wrapper so tests can override settings via dependency_overrides."""
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


# =============================================================================
# Store and pipeline
# =============================================================================


@lru_cache()
def get_store() -> PipelineStore:
    """
    Process-wide store chosen by Settings.storage_backend.

    'memory' gives a dict-backed store for local runs; anything else uses
    PostgreSQL through the asyncpg pool initialized in the app lifespan.
    """
    backend = get_settings().storage_backend.lower()
    if backend == 'memory':
        logger.info("Using in-memory pipeline store")
        return InMemoryStore()
    return PostgresStore()


@lru_cache()
def get_pipeline() -> IntelligencePipeline:
    settings = get_settings()
    return IntelligencePipeline(
        get_store(),
        get_pipeline_defaults(),
        claim_ttl_seconds=settings.claim_ttl_seconds,
        anomaly_history_days=settings.anomaly_history_days,
        trend_history_days=settings.trend_history_days,
    )


PipelineDep = Annotated[IntelligencePipeline, Depends(get_pipeline)]


# =============================================================================
# Tenant scoping
# =============================================================================


def get_tenant_id(x_tenant_id: Annotated[str, Header()] = '') -> str:
    """
    Tenant id from the X-Tenant-Id header.

    Raises:
        HTTPException: 400 when the header is missing or blank.
    """
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(status_code=400, detail="X-Tenant-Id header is required")
    return tenant_id


TenantDep = Annotated[str, Depends(get_tenant_id)]
