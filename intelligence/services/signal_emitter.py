"""
Signal emitter.

Stages downstream of the router (anomaly detection, outcome feedback) and
host code raising domain events never call the router directly. They hold a
SignalEmitter, which wraps a publish callable. Emitting a signal is the only
channel by which one stage influences another.

The pipeline wires `publish` to SignalRouter.ingest_normalized; tests can
wire it to a recorder.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from intelligence.models import (
    NormalizedSignal,
    Severity,
    SignalCategory,
    SignalIngestionResult,
    SignalSource,
    Urgency,
    utc_now,
)
from intelligence.services.normalizer import SEVERITY_URGENCY, normalize_signal


logger = logging.getLogger(__name__)


Publish = Callable[[NormalizedSignal], Awaitable[SignalIngestionResult]]


# =============================================================================
# Correlation key builders
# =============================================================================


def analytics_correlation_key(client_id: str, anomaly_type: str) -> str:
    return f"analytics:{client_id}:{anomaly_type}"


def crm_deal_correlation_key(deal_id: str) -> str:
    return f"crm:deal:{deal_id}"


def workflow_correlation_key(workflow_id: str, execution_id: str) -> str:
    return f"workflow:{workflow_id}:{execution_id}"


def calibration_correlation_key(recommendation_type: str, client_id: Optional[str]) -> str:
    return f"calibration:{recommendation_type}:{client_id or 'global'}"


class SignalEmitter:
    """Builds internally raised signals and hands them to the publish callable."""

    def __init__(self, publish: Publish) -> None:
        self._publish = publish

    async def emit(
        self,
        tenant_id: str,
        source: SignalSource,
        signal_type: str,
        data: Mapping[str, Any],
        *,
        severity: Severity = Severity.MEDIUM,
        category: Optional[str] = None,
        client_id: Optional[str] = None,
        correlation_key: Optional[str] = None,
        dedup_key: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> SignalIngestionResult:
        """
        Normalize and publish one signal.

        Urgency is derived from severity (medium maps to normal). When a
        dedup_key is given, the signal's identity is that key rather than
        the signal type and payload.
        """
        normalized = normalize_signal(
            tenant_id,
            source.value,
            signal_type,
            data,
            urgency=SEVERITY_URGENCY.get(severity, Urgency.NORMAL),
            severity=severity,
            client_id=client_id,
            correlation_key=correlation_key,
            category=category,
            metadata=metadata,
            occurred_at=occurred_at,
            dedup_key=dedup_key,
        )
        result = await self._publish(normalized)
        if result.is_duplicate:
            logger.debug(f"Emitted signal collapsed into existing {result.signal.id} ({signal_type})")
        return result

    async def emit_client_record_updated(
        self,
        tenant_id: str,
        client_id: str,
        updates: Dict[str, Any],
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> SignalIngestionResult:
        """Domain event raised when a client record changes."""
        return await self.emit(
            tenant_id,
            SignalSource.INTERNAL,
            "client_record_updated",
            {
                "client_id": client_id,
                "updates": updates,
                "actor_id": actor_id,
                "reason": reason,
                "updated_at": utc_now().isoformat(),
            },
            category=SignalCategory.WORKFLOW.value,
            client_id=client_id,
            metadata={"origin": "client_record"},
        )

    async def emit_workflow_event(
        self,
        tenant_id: str,
        workflow_id: str,
        execution_id: str,
        event_type: str,
        data: Mapping[str, Any],
        severity: Severity = Severity.MEDIUM,
        client_id: Optional[str] = None,
    ) -> SignalIngestionResult:
        return await self.emit(
            tenant_id,
            SignalSource.INTERNAL,
            event_type,
            {"workflow_id": workflow_id, "execution_id": execution_id, **dict(data)},
            severity=severity,
            category=SignalCategory.WORKFLOW.value,
            client_id=client_id,
            correlation_key=workflow_correlation_key(workflow_id, execution_id),
        )
