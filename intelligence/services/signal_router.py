"""
Signal router.

Deduplicates incoming signals, persists them, and matches them against the
tenant's routing rules to decide which downstream workflows should react.

Ingestion algorithm:
1. Adapt the raw payload into a NormalizedSignal (validation errors raise
   before anything is written).
2. Insert keyed by (tenant, dedup hash). On conflict the existing row is
   returned with is_duplicate=True and routing is skipped entirely, which
   gives at-most-once workflow triggering per logical event.
3. On a fresh insert, load the tenant's routes for (source, type), evaluate
   them in descending priority against the urgency allow-list and the
   payload filter, and return the matched workflow ids.
   A stored route whose filter is malformed is skipped with a warning, so
   one bad rule never fails an ingest that has already been written.

The router never invokes workflows itself; callers own execution. Retries
are explicit through retry_signal, which bumps the advisory retry count and
resets the status to pending without scheduling anything.
"""

import logging
from typing import Any, List, Mapping, Optional

from intelligence.core.exceptions import (
    InvalidSignalStateError,
    PayloadFilterError,
    SignalNotFoundError,
)
from intelligence.models import (
    NormalizedSignal,
    Signal,
    SignalIngestionResult,
    SignalRoute,
    SignalStatus,
)
from intelligence.services.adapters import AdapterRegistry
from intelligence.services.payload_filter import matches_filter, validate_filter
from intelligence.storage.base import PipelineStore


logger = logging.getLogger(__name__)


RETRYABLE_STATUSES = (SignalStatus.PENDING, SignalStatus.FAILED)


def route_matches(signal: Signal, route: SignalRoute) -> bool:
    """Evaluate one route against a signal."""
    if not route.enabled:
        return False
    if route.source is not None and route.source != signal.source:
        return False
    if route.signal_type is not None and route.signal_type != signal.signal_type:
        return False
    if route.urgency_filter and signal.urgency not in route.urgency_filter:
        return False
    return matches_filter(signal.payload, route.payload_filter)


def usable_routes(routes: List[SignalRoute]) -> List[SignalRoute]:
    """Drop stored routes whose payload filter does not validate."""
    usable = []
    for route in routes:
        try:
            validate_filter(route.payload_filter)
        except PayloadFilterError as e:
            logger.warning(f"Skipping route {route.id} (tenant={route.tenant_id}): {e}")
            continue
        usable.append(route)
    return usable


def find_matching_routes(signal: Signal, routes: List[SignalRoute]) -> List[SignalRoute]:
    """Routes that match the signal, highest priority first."""
    ordered = sorted(routes, key=lambda r: r.priority, reverse=True)
    return [route for route in ordered if route_matches(signal, route)]


class SignalRouter:
    """Dedup, persistence and route matching for one store."""

    def __init__(self, store: PipelineStore, registry: AdapterRegistry) -> None:
        self.store = store
        self.registry = registry

    # =========================================================================
    # Ingestion
    # =========================================================================

    async def ingest_signal(
        self,
        tenant_id: str,
        source: str,
        raw_payload: Mapping[str, Any],
        client_id: Optional[str] = None,
    ) -> SignalIngestionResult:
        """
        Adapt, dedupe, persist and route one raw event.

        Args:
            tenant_id: Owning tenant.
            source: Source name or alias (e.g. 'crm', 'hubspot').
            raw_payload: Source-specific payload.
            client_id: Client the event concerns, if known.

        Returns:
            SignalIngestionResult: The stored (or existing) signal, the
            duplicate flag, matched routes and triggered workflow ids.

        Raises:
            UnsupportedSourceError: No adapter for the source.
            InvalidPayloadError / InvalidUrgencyError: Malformed payload.
        """
        normalized = self.registry.adapt(tenant_id, source, raw_payload, client_id)
        return await self.ingest_normalized(normalized)

    async def ingest_normalized(self, normalized: NormalizedSignal) -> SignalIngestionResult:
        """Dedupe, persist and route a signal that is already normalized."""
        signal, created = await self.store.insert_signal(normalized)

        if not created:
            logger.info(
                f"Duplicate signal ignored: tenant={signal.tenant_id} "
                f"type={signal.signal_type} existing_id={signal.id}"
            )
            return SignalIngestionResult(signal=signal, is_duplicate=True)

        routes = await self.store.get_matching_routes(signal.tenant_id, signal.source, signal.signal_type)
        matched = find_matching_routes(signal, usable_routes(routes))
        workflows = [route.workflow_id for route in matched]

        logger.info(
            f"Signal ingested: id={signal.id} tenant={signal.tenant_id} "
            f"source={signal.source} type={signal.signal_type} "
            f"urgency={signal.urgency.value} workflows={len(workflows)}"
        )

        return SignalIngestionResult(
            signal=signal,
            is_duplicate=False,
            matching_routes=matched,
            workflows_triggered=workflows,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def get_signal(self, tenant_id: str, signal_id: str) -> Signal:
        signal = await self.store.get_signal(tenant_id, signal_id)
        if signal is None:
            raise SignalNotFoundError(signal_id)
        return signal

    async def update_signal_status(
        self,
        tenant_id: str,
        signal_id: str,
        status: SignalStatus,
        error: Optional[str] = None,
    ) -> Signal:
        updated = await self.store.update_signal_status(tenant_id, signal_id, status, last_error=error)
        if updated is None:
            raise SignalNotFoundError(signal_id)
        return updated

    async def mark_signal_failed(self, tenant_id: str, signal_id: str, error: str) -> Signal:
        return await self.update_signal_status(tenant_id, signal_id, SignalStatus.FAILED, error)

    async def retry_signal(self, tenant_id: str, signal_id: str) -> Signal:
        """
        Reset a pending or failed signal to pending and bump its retry count.

        Raises:
            SignalNotFoundError: Unknown id for the tenant.
            InvalidSignalStateError: The signal is already processed or discarded.
        """
        signal = await self.get_signal(tenant_id, signal_id)
        if signal.status not in RETRYABLE_STATUSES:
            raise InvalidSignalStateError(
                f"Signal {signal_id} is {signal.status.value} and cannot be retried"
            )

        updated = await self.store.update_signal_status(
            tenant_id, signal_id, SignalStatus.PENDING, increment_retry=True
        )
        if updated is None:
            raise SignalNotFoundError(signal_id)

        logger.info(f"Signal {signal_id} queued for retry (attempt {updated.retry_count})")
        return updated

    async def get_pending_signals(self, tenant_id: str, limit: int = 100) -> List[Signal]:
        return await self.store.list_signals(tenant_id, SignalStatus.PENDING, limit)

    async def get_failed_signals(self, tenant_id: str, limit: int = 100) -> List[Signal]:
        return await self.store.list_signals(tenant_id, SignalStatus.FAILED, limit)

    # =========================================================================
    # Route management
    # =========================================================================

    async def create_route(self, route: SignalRoute) -> SignalRoute:
        """
        Store a routing rule after validating its payload filter.

        Raises:
            PayloadFilterError: Malformed path or unknown operator.
        """
        validate_filter(route.payload_filter)
        return await self.store.create_route(route)

    async def list_routes(self, tenant_id: str) -> List[SignalRoute]:
        return await self.store.list_routes(tenant_id)

    async def delete_route(self, tenant_id: str, route_id: str) -> bool:
        return await self.store.delete_route(tenant_id, route_id)

    def supported_sources(self) -> List[str]:
        return self.registry.supported_sources()
