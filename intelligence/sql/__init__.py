"""
SQL query module for the intelligence pipeline.

Parameterized PostgreSQL text used by intelligence.storage.postgres, kept
apart from the store so business logic and data access stay separate.

Submodules:
    schema: Idempotent DDL with the unique constraints the pipeline relies on.
    signal_queries: Signal dedup insert, lifecycle updates, route matching.
    metric_queries: Daily metric history and anomaly threshold overrides.
    intelligence_queries: Insights, priorities, tenant config, batch claims.
    feedback_queries: Outcomes and quality metric upserts.
"""

from intelligence.sql.schema import PIPELINE_SCHEMA_DDL, get_schema_ddl
from intelligence.sql.signal_queries import (
    get_delete_route_query,
    get_insert_route_query,
    get_insert_signal_query,
    get_matching_routes_query,
    get_routes_for_tenant_query,
    get_signal_by_dedup_hash_query,
    get_signal_by_id_query,
    get_signals_by_status_query,
    get_unprocessed_signals_query,
    get_update_signal_status_query,
)
from intelligence.sql.metric_queries import (
    get_anomaly_thresholds_query,
    get_clients_for_tenant_query,
    get_historical_metrics_query,
    get_tenants_query,
)
from intelligence.sql.intelligence_queries import (
    get_aggregator_config_query,
    get_claim_batch_query,
    get_insert_insight_query,
    get_insert_pipeline_event_query,
    get_insight_by_id_query,
    get_insights_by_status_query,
    get_priorities_by_status_query,
    get_priority_config_query,
    get_release_batch_query,
    get_update_insight_status_query,
    get_upsert_priority_query,
)
from intelligence.sql.feedback_queries import (
    get_insert_outcome_query,
    get_outcome_by_id_query,
    get_outcomes_for_period_query,
    get_quality_metrics_since_query,
    get_update_outcome_query,
    get_upsert_quality_metric_query,
)


__all__ = [
    "PIPELINE_SCHEMA_DDL",
    "get_schema_ddl",
    # Signals and routes
    "get_insert_signal_query",
    "get_signal_by_dedup_hash_query",
    "get_signal_by_id_query",
    "get_update_signal_status_query",
    "get_signals_by_status_query",
    "get_unprocessed_signals_query",
    "get_insert_route_query",
    "get_routes_for_tenant_query",
    "get_delete_route_query",
    "get_matching_routes_query",
    # Metrics
    "get_historical_metrics_query",
    "get_anomaly_thresholds_query",
    "get_clients_for_tenant_query",
    "get_tenants_query",
    # Insights, priorities, claims
    "get_insert_insight_query",
    "get_insight_by_id_query",
    "get_insights_by_status_query",
    "get_update_insight_status_query",
    "get_aggregator_config_query",
    "get_priority_config_query",
    "get_upsert_priority_query",
    "get_priorities_by_status_query",
    "get_claim_batch_query",
    "get_release_batch_query",
    "get_insert_pipeline_event_query",
    # Feedback
    "get_insert_outcome_query",
    "get_update_outcome_query",
    "get_outcome_by_id_query",
    "get_outcomes_for_period_query",
    "get_upsert_quality_metric_query",
    "get_quality_metrics_since_query",
]
