"""
Pytest configuration and shared fixtures for the intelligence pipeline tests.

Provides:
- An InMemoryStore and a fully wired IntelligencePipeline over it
- Builders for daily metric series (deterministic, numpy-seeded where noisy)
- Builders for persisted signals and insights
- A mock asyncpg pool for the PostgreSQL store tests

Dependencies:
- pytest
- pytest-asyncio
- numpy
"""

from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from intelligence.core.defaults import PipelineDefaults
from intelligence.models import (
    DailyMetrics,
    Insight,
    Severity,
    Signal,
    Urgency,
)
from intelligence.services.pipeline import IntelligencePipeline
from intelligence.storage import InMemoryStore


TENANT_ID = "agency-1"
CLIENT_ID = "client-7"

# Monday; detection tests anchor their latest data point here
LATEST_DATE = date(2026, 3, 2)


def pytest_configure(config) -> None:
    config.addinivalue_line('markers', 'slow: marks tests as slow (deselect with -m "not slow")')
    config.addinivalue_line('markers', 'integration: marks tests spanning several pipeline stages')


# =============================================================================
# Data builders
# =============================================================================


def build_series(
    client_id: str,
    history: List[float],
    latest: Optional[float],
    metric: str = "sessions",
    latest_date: date = LATEST_DATE,
) -> List[DailyMetrics]:
    """
    Daily rows for one metric: `history` oldest first, then `latest` on latest_date.

    Other metrics are left empty so detection skips them.
    """
    values = list(history) + [latest]
    start = latest_date - timedelta(days=len(values) - 1)
    return [
        DailyMetrics(metric_date=start + timedelta(days=i), client_id=client_id, **{metric: value})
        for i, value in enumerate(values)
    ]


def alternating(n: int, low: float, high: float) -> List[float]:
    """n values alternating low/high; for even n the population std is (high - low) / 2."""
    return [low if i % 2 == 0 else high for i in range(n)]


def noisy(n: int, mean: float, std: float, seed: int = 42) -> List[float]:
    rng = np.random.default_rng(seed)
    return [float(v) for v in rng.normal(mean, std, n)]


def make_signal(
    signal_type: str = "traffic_drop",
    category: str = "analytics",
    correlation_key: Optional[str] = "analytics:client-7:traffic_drop",
    client_id: Optional[str] = CLIENT_ID,
    severity: Severity = Severity.MEDIUM,
    tenant_id: str = TENANT_ID,
    payload: Optional[Dict] = None,
    dedup_hash: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> Signal:
    kwargs = {}
    if occurred_at is not None:
        kwargs["occurred_at"] = occurred_at
    signal = Signal(
        tenant_id=tenant_id,
        source="analytics",
        signal_type=signal_type,
        category=category,
        payload=payload or {},
        urgency=Urgency.NORMAL,
        severity=severity,
        client_id=client_id,
        correlation_key=correlation_key,
        dedup_hash=dedup_hash or "placeholder",
        **kwargs,
    )
    if dedup_hash is None:
        signal = signal.model_copy(update={"dedup_hash": f"hash-{signal.id}"})
    return signal


def make_insight(
    severity: Severity = Severity.MEDIUM,
    confidence: float = 0.6,
    insight_type: str = "traffic_drop",
    client_id: Optional[str] = CLIENT_ID,
    delta_percent: Optional[float] = None,
    suggested_action: Optional[str] = "Monitor trends and prepare adjustment recommendations",
    created_at: Optional[datetime] = None,
    tenant_id: str = TENANT_ID,
) -> Insight:
    return Insight(
        tenant_id=tenant_id,
        insight_type=insight_type,
        category="analytics",
        title="Analytics Alert: 1 related signal(s)",
        description="",
        summary="",
        suggested_action=suggested_action,
        severity=severity,
        confidence_score=confidence,
        client_id=client_id,
        delta_percent=delta_percent,
        created_at=created_at or datetime.now(timezone.utc),
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def defaults() -> PipelineDefaults:
    return PipelineDefaults()


@pytest.fixture
def pipeline(store: InMemoryStore, defaults: PipelineDefaults) -> IntelligencePipeline:
    return IntelligencePipeline(store, defaults)


@pytest.fixture
def spike_history() -> List[DailyMetrics]:
    """
    45 days of sessions: 44 days alternating 950/1050 (mean 1000, std 50)
    followed by a latest value of 1800.
    """
    return build_series(CLIENT_ID, alternating(44, 950.0, 1050.0), 1800.0)


@pytest.fixture
def mock_db_pool() -> MagicMock:
    """
    Mock asyncpg pool whose acquired connection exposes fetch/fetchrow/execute.

    Usage:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetchrow.return_value = {...}
    """
    pool = MagicMock()
    connection = MagicMock()
    connection.fetch = AsyncMock(return_value=[])
    connection.fetchrow = AsyncMock(return_value=None)
    connection.execute = AsyncMock(return_value="INSERT 0 1")
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=connection)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
    return pool
