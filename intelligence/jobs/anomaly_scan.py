"""
Scheduled anomaly scan.

Runs a detection pass for every client of a tenant (or of every tenant the
store knows about) and publishes the actionable anomalies as signals. A
failing client or tenant is logged and reported in the results; the scan
carries on with the rest.

Usage:
    from intelligence.jobs.anomaly_scan import run_anomaly_scan, run_all_tenants

    result = await run_anomaly_scan("agency-1")
    summary = await run_all_tenants()
"""

import logging
from typing import Any, Dict, Optional

from intelligence.core.dependencies import get_pipeline
from intelligence.models import TenantScanResult
from intelligence.services.pipeline import IntelligencePipeline


logger = logging.getLogger(__name__)


async def run_anomaly_scan(
    tenant_id: str,
    pipeline: Optional[IntelligencePipeline] = None,
) -> TenantScanResult:
    """
    Scan every client of one tenant.

    Returns:
        TenantScanResult: per-client results; `error` is set only when the
        tenant's client list itself could not be loaded.
    """
    pipeline = pipeline or get_pipeline()
    try:
        clients = await pipeline.detector.run_detection_for_tenant(tenant_id)
    except Exception as e:
        logger.error(f"Anomaly scan failed for tenant={tenant_id}: {e}", exc_info=True)
        return TenantScanResult(tenant_id=tenant_id, error=str(e))

    result = TenantScanResult(tenant_id=tenant_id, clients=clients)
    failed = sum(1 for c in clients if c.error)
    logger.info(
        f"Anomaly scan for tenant={tenant_id}: {len(clients)} clients, "
        f"{result.signals_created} signals, {failed} failed"
    )
    return result


async def run_all_tenants(pipeline: Optional[IntelligencePipeline] = None) -> Dict[str, Any]:
    """
    Scan every tenant the store reports.

    Returns:
        Dict with the following keys:
        - success: True when no tenant or client failed
        - results: List of TenantScanResult per tenant
        - summary: tenant/client/signal/failure counts
    """
    pipeline = pipeline or get_pipeline()
    tenants = await pipeline.store.list_tenants()

    results = []
    failed_tenants = 0
    failed_clients = 0
    signals_created = 0

    for tenant_id in tenants:
        result = await run_anomaly_scan(tenant_id, pipeline)
        results.append(result)

        if result.error:
            failed_tenants += 1
        failed_clients += sum(1 for c in result.clients if c.error)
        signals_created += result.signals_created

    return {
        'success': failed_tenants == 0 and failed_clients == 0,
        'results': results,
        'summary': {
            'tenants': len(tenants),
            'clients': sum(len(r.clients) for r in results),
            'signals_created': signals_created,
            'failed_tenants': failed_tenants,
            'failed_clients': failed_clients,
        },
    }
