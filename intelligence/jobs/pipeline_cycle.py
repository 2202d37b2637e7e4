"""
Scheduled pipeline cycle: aggregation followed by priority scoring per tenant.

Each tenant's run is independent. A tenant whose run raises is logged and
reported; the cycle continues with the remaining tenants. Runs that lose the
batch claim to a concurrent run come back with skipped=True and are counted
separately from failures.
"""

import logging
from typing import Any, Dict, List, Optional

from intelligence.core.dependencies import get_pipeline
from intelligence.services.pipeline import IntelligencePipeline


logger = logging.getLogger(__name__)


async def run_pipeline_cycle(
    tenant_ids: Optional[List[str]] = None,
    pipeline: Optional[IntelligencePipeline] = None,
) -> Dict[str, Any]:
    pipeline = pipeline or get_pipeline()
    if tenant_ids is None:
        tenant_ids = await pipeline.store.list_tenants()

    results = []
    errors = []
    skipped = 0

    for tenant_id in tenant_ids:
        try:
            run = await pipeline.run_pipeline(tenant_id)
        except Exception as e:
            logger.error(f"Pipeline cycle failed for tenant={tenant_id}: {e}", exc_info=True)
            errors.append({'tenant_id': tenant_id, 'error': str(e)})
            continue

        results.append(run)
        if run.aggregation.skipped or run.prioritization.skipped:
            skipped += 1

    return {
        'success': not errors,
        'results': results,
        'errors': errors,
        'summary': {
            'tenants': len(tenant_ids),
            'insights_created': sum(r.aggregation.insights_created for r in results),
            'priorities_created': sum(r.prioritization.priorities_created for r in results),
            'skipped': skipped,
            'failed': len(errors),
        },
    }
