"""
Insight, priority, tenant configuration, batch claim and activity queries.
"""


INSIGHT_COLUMNS = """
    id, tenant_id, insight_type, category, title, description, summary,
    suggested_action, severity, confidence_score, client_id, correlation_key,
    metric_key, current_value, baseline_value, delta_percent,
    source_signal_ids, source_systems, status, time_range_start,
    time_range_end, created_by_agent, created_at
"""


def get_insert_insight_query() -> str:
    """Parameters follow INSIGHT_COLUMNS order ($1..$23)."""
    return f"""
    INSERT INTO insights ({INSIGHT_COLUMNS})
    VALUES (
        $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15,
        $16, $17::jsonb, $18::jsonb, $19, $20, $21, $22, $23
    )
    RETURNING {INSIGHT_COLUMNS}
    """


def get_insight_by_id_query() -> str:
    return f"""
    SELECT {INSIGHT_COLUMNS}
    FROM insights
    WHERE tenant_id = $1 AND id = $2
    """


def get_insights_by_status_query() -> str:
    return f"""
    SELECT {INSIGHT_COLUMNS}
    FROM insights
    WHERE tenant_id = $1 AND status = $2
    ORDER BY created_at ASC
    LIMIT $3
    """


def get_update_insight_status_query() -> str:
    return "UPDATE insights SET status = $3 WHERE tenant_id = $1 AND id = $2"


# =============================================================================
# Tenant configuration
# =============================================================================


def get_aggregator_config_query() -> str:
    return """
    SELECT tenant_id, batch_size, min_confidence_threshold
    FROM aggregator_config
    WHERE tenant_id = $1
    """


def get_priority_config_query() -> str:
    return """
    SELECT impact_weight, urgency_weight, confidence_weight, resource_weight
    FROM priority_config
    WHERE tenant_id = $1
    """


# =============================================================================
# Priorities
# =============================================================================


PRIORITY_COLUMNS = """
    id, tenant_id, insight_id, priority_score, impact_score, urgency_score,
    confidence_score, resource_score, bucket, status, recommended_due_date,
    weights, computed_at
"""


def get_upsert_priority_query() -> str:
    """
    Insert a priority or replace the scores of the insight's existing one.

    Parameters follow PRIORITY_COLUMNS order ($1..$13).
    """
    return f"""
    INSERT INTO priorities ({PRIORITY_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12::jsonb, $13)
    ON CONFLICT (insight_id) DO UPDATE SET
        priority_score = EXCLUDED.priority_score,
        impact_score = EXCLUDED.impact_score,
        urgency_score = EXCLUDED.urgency_score,
        confidence_score = EXCLUDED.confidence_score,
        resource_score = EXCLUDED.resource_score,
        bucket = EXCLUDED.bucket,
        status = EXCLUDED.status,
        recommended_due_date = EXCLUDED.recommended_due_date,
        weights = EXCLUDED.weights,
        computed_at = EXCLUDED.computed_at
    RETURNING {PRIORITY_COLUMNS}
    """


def get_priorities_by_status_query(with_limit: bool) -> str:
    """Priorities in a status, highest score first. $3 is the limit when with_limit."""
    limit_clause = "LIMIT $3" if with_limit else ""
    return f"""
    SELECT {PRIORITY_COLUMNS}
    FROM priorities
    WHERE tenant_id = $1 AND status = $2
    ORDER BY priority_score DESC
    {limit_clause}
    """


# =============================================================================
# Batch claims and activity log
# =============================================================================


def get_claim_batch_query() -> str:
    """
    Atomically take (tenant, batch) for an owner unless a live claim exists.

    Returns a row only when the claim was acquired: a fresh insert, or a
    takeover of an expired claim. A live claim makes the conditional
    DO UPDATE a no-op, so nothing is returned.

    Parameters: $1 tenant_id, $2 batch_name, $3 owner, $4 ttl seconds
    """
    return """
    INSERT INTO batch_claims (tenant_id, batch_name, owner, expires_at)
    VALUES ($1, $2, $3, NOW() + make_interval(secs => $4))
    ON CONFLICT (tenant_id, batch_name) DO UPDATE SET
        owner = EXCLUDED.owner,
        expires_at = EXCLUDED.expires_at
    WHERE batch_claims.expires_at <= NOW()
    RETURNING owner
    """


def get_release_batch_query() -> str:
    return """
    DELETE FROM batch_claims
    WHERE tenant_id = $1 AND batch_name = $2 AND owner = $3
    """


def get_insert_pipeline_event_query() -> str:
    return """
    INSERT INTO pipeline_events (tenant_id, event_type, details, created_at)
    VALUES ($1, $2, $3::jsonb, NOW())
    """
