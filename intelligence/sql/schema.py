"""
PostgreSQL DDL for the intelligence pipeline tables.

Every statement is idempotent (IF NOT EXISTS) so `init_schema` can run on
each startup. The unique constraints here are the pipeline's concurrency
control:

- signals (tenant_id, dedup_hash): exactly-once signal ingestion
- quality_metrics (tenant_id, recommendation_type, client_key, period_start):
  one row per period; client_key is '' for tenant-wide metrics so the key
  never contains NULL
- priorities (insight_id): one priority per insight
- batch_claims (tenant_id, batch_name): one live aggregation/scoring run
"""


PIPELINE_SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS signals (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    source TEXT NOT NULL,
    signal_type TEXT NOT NULL,
    category TEXT NOT NULL,
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    urgency TEXT NOT NULL DEFAULT 'normal',
    severity TEXT NOT NULL DEFAULT 'medium',
    client_id TEXT,
    correlation_key TEXT,
    dedup_hash TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    retry_count INTEGER NOT NULL DEFAULT 0,
    discard_reason TEXT,
    insight_id TEXT,
    last_error TEXT,
    occurred_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    processed_at TIMESTAMPTZ,
    CONSTRAINT signals_tenant_dedup_key UNIQUE (tenant_id, dedup_hash)
);

CREATE INDEX IF NOT EXISTS signals_tenant_status_idx
    ON signals (tenant_id, status, created_at);

CREATE TABLE IF NOT EXISTS signal_routes (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    workflow_id TEXT NOT NULL,
    name TEXT NOT NULL,
    source TEXT,
    signal_type TEXT,
    urgency_filter JSONB NOT NULL DEFAULT '[]'::jsonb,
    payload_filter JSONB NOT NULL DEFAULT '[]'::jsonb,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    priority INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS daily_metrics (
    tenant_id TEXT NOT NULL,
    client_id TEXT NOT NULL,
    metric_date DATE NOT NULL,
    sessions DOUBLE PRECISION,
    conversions DOUBLE PRECISION,
    clicks DOUBLE PRECISION,
    impressions DOUBLE PRECISION,
    organic_clicks DOUBLE PRECISION,
    organic_impressions DOUBLE PRECISION,
    avg_position DOUBLE PRECISION,
    spend DOUBLE PRECISION,
    PRIMARY KEY (tenant_id, client_id, metric_date)
);

CREATE TABLE IF NOT EXISTS anomaly_thresholds (
    tenant_id TEXT NOT NULL,
    client_id TEXT NOT NULL,
    metric_type TEXT NOT NULL,
    z_score_threshold DOUBLE PRECISION NOT NULL,
    percent_change_threshold DOUBLE PRECISION NOT NULL,
    min_data_points INTEGER NOT NULL DEFAULT 14,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    PRIMARY KEY (tenant_id, client_id, metric_type)
);

CREATE TABLE IF NOT EXISTS insights (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    insight_type TEXT NOT NULL,
    category TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    summary TEXT NOT NULL,
    suggested_action TEXT,
    severity TEXT NOT NULL,
    confidence_score DOUBLE PRECISION NOT NULL,
    client_id TEXT,
    correlation_key TEXT,
    metric_key TEXT,
    current_value DOUBLE PRECISION,
    baseline_value DOUBLE PRECISION,
    delta_percent DOUBLE PRECISION,
    source_signal_ids JSONB NOT NULL DEFAULT '[]'::jsonb,
    source_systems JSONB NOT NULL DEFAULT '[]'::jsonb,
    status TEXT NOT NULL DEFAULT 'open',
    time_range_start TIMESTAMPTZ,
    time_range_end TIMESTAMPTZ,
    created_by_agent TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS insights_tenant_status_idx
    ON insights (tenant_id, status, created_at);

CREATE TABLE IF NOT EXISTS aggregator_config (
    tenant_id TEXT PRIMARY KEY,
    batch_size INTEGER NOT NULL DEFAULT 100,
    min_confidence_threshold DOUBLE PRECISION NOT NULL DEFAULT 0.3
);

CREATE TABLE IF NOT EXISTS priority_config (
    tenant_id TEXT PRIMARY KEY,
    impact_weight DOUBLE PRECISION,
    urgency_weight DOUBLE PRECISION,
    confidence_weight DOUBLE PRECISION,
    resource_weight DOUBLE PRECISION
);

CREATE TABLE IF NOT EXISTS priorities (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    insight_id TEXT NOT NULL UNIQUE,
    priority_score DOUBLE PRECISION NOT NULL,
    impact_score DOUBLE PRECISION NOT NULL,
    urgency_score DOUBLE PRECISION NOT NULL,
    confidence_score DOUBLE PRECISION NOT NULL,
    resource_score DOUBLE PRECISION NOT NULL,
    bucket TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    recommended_due_date TIMESTAMPTZ NOT NULL,
    weights JSONB NOT NULL,
    computed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS outcomes (
    id TEXT PRIMARY KEY,
    initiative_id TEXT NOT NULL,
    tenant_id TEXT NOT NULL,
    client_id TEXT,
    recommendation_type TEXT NOT NULL,
    recommendation_source_id TEXT,
    accepted BOOLEAN NOT NULL,
    outcome_status TEXT NOT NULL DEFAULT 'pending',
    predicted_impact JSONB NOT NULL DEFAULT '{}'::jsonb,
    actual_impact JSONB,
    variance_score DOUBLE PRECISION,
    variance_direction TEXT,
    accepted_at TIMESTAMPTZ,
    rejected_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    measured_at TIMESTAMPTZ,
    notes TEXT,
    lessons_learned TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS outcomes_tenant_type_idx
    ON outcomes (tenant_id, recommendation_type, created_at);

CREATE TABLE IF NOT EXISTS quality_metrics (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    client_id TEXT,
    client_key TEXT NOT NULL DEFAULT '',
    recommendation_type TEXT NOT NULL,
    period_start DATE NOT NULL,
    period_end DATE NOT NULL,
    total_recommendations INTEGER NOT NULL DEFAULT 0,
    accepted_count INTEGER NOT NULL DEFAULT 0,
    rejected_count INTEGER NOT NULL DEFAULT 0,
    completed_count INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    failure_count INTEGER NOT NULL DEFAULT 0,
    overperform_count INTEGER NOT NULL DEFAULT 0,
    underperform_count INTEGER NOT NULL DEFAULT 0,
    acceptance_rate DOUBLE PRECISION NOT NULL DEFAULT 0,
    success_rate DOUBLE PRECISION NOT NULL DEFAULT 0,
    completion_rate DOUBLE PRECISION NOT NULL DEFAULT 0,
    avg_variance DOUBLE PRECISION,
    quality_score DOUBLE PRECISION NOT NULL DEFAULT 0,
    confidence_level TEXT NOT NULL DEFAULT 'low',
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT quality_metrics_period_key
        UNIQUE (tenant_id, recommendation_type, client_key, period_start)
);

CREATE TABLE IF NOT EXISTS batch_claims (
    tenant_id TEXT NOT NULL,
    batch_name TEXT NOT NULL,
    owner TEXT NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (tenant_id, batch_name)
);

CREATE TABLE IF NOT EXISTS pipeline_events (
    id BIGSERIAL PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    details JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def get_schema_ddl() -> str:
    """Return the idempotent DDL for every pipeline table."""
    return PIPELINE_SCHEMA_DDL
