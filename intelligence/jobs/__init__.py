"""
Scheduled jobs for the intelligence pipeline.

Jobs are plain async functions invoked by an external scheduler; the
pipeline owns no event loop or timer of its own.
"""

from intelligence.jobs.anomaly_scan import run_all_tenants, run_anomaly_scan
from intelligence.jobs.pipeline_cycle import run_pipeline_cycle


__all__ = [
    'run_anomaly_scan',
    'run_all_tenants',
    'run_pipeline_cycle',
]
