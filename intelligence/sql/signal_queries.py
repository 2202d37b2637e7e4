"""
Signal and route queries.

All queries are parameterized ($1, $2, ...) and tenant-scoped. JSONB values
are passed as JSON text and cast in SQL.
"""


SIGNAL_COLUMNS = """
    id, tenant_id, source, signal_type, category, payload, urgency, severity,
    client_id, correlation_key, dedup_hash, status, retry_count,
    discard_reason, insight_id, last_error, occurred_at, created_at,
    processed_at
"""


def get_insert_signal_query() -> str:
    """
    Insert a signal, doing nothing when (tenant_id, dedup_hash) already exists.

    RETURNING yields the new row on insert and no row on conflict; the caller
    then re-reads the winner with get_signal_by_dedup_hash_query().

    Parameters:
        $1 id, $2 tenant_id, $3 source, $4 signal_type, $5 category,
        $6 payload (json text), $7 urgency, $8 severity, $9 client_id,
        $10 correlation_key, $11 dedup_hash, $12 occurred_at
    """
    return f"""
    INSERT INTO signals (
        id, tenant_id, source, signal_type, category, payload, urgency,
        severity, client_id, correlation_key, dedup_hash, status,
        retry_count, occurred_at, created_at
    ) VALUES (
        $1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10, $11, 'pending',
        0, $12, NOW()
    )
    ON CONFLICT (tenant_id, dedup_hash) DO NOTHING
    RETURNING {SIGNAL_COLUMNS}
    """


def get_signal_by_dedup_hash_query() -> str:
    return f"""
    SELECT {SIGNAL_COLUMNS}
    FROM signals
    WHERE tenant_id = $1 AND dedup_hash = $2
    """


def get_signal_by_id_query() -> str:
    return f"""
    SELECT {SIGNAL_COLUMNS}
    FROM signals
    WHERE tenant_id = $1 AND id = $2
    """


def get_update_signal_status_query() -> str:
    """
    Transition a signal's lifecycle fields.

    discard_reason and insight_id keep their current value when NULL is
    passed; processed_at is stamped for terminal statuses.

    Parameters:
        $1 tenant_id, $2 id, $3 status, $4 discard_reason, $5 insight_id,
        $6 last_error, $7 increment_retry (bool)
    """
    return f"""
    UPDATE signals
    SET status = $3,
        discard_reason = COALESCE($4, discard_reason),
        insight_id = COALESCE($5, insight_id),
        last_error = $6,
        retry_count = retry_count + CASE WHEN $7 THEN 1 ELSE 0 END,
        processed_at = CASE
            WHEN $3 IN ('processed', 'discarded') THEN NOW()
            ELSE processed_at
        END
    WHERE tenant_id = $1 AND id = $2
    RETURNING {SIGNAL_COLUMNS}
    """


def get_signals_by_status_query() -> str:
    """Signals in one status, newest first. Parameters: $1 tenant, $2 status, $3 limit."""
    return f"""
    SELECT {SIGNAL_COLUMNS}
    FROM signals
    WHERE tenant_id = $1 AND status = $2
    ORDER BY created_at DESC
    LIMIT $3
    """


def get_unprocessed_signals_query() -> str:
    """Pending signals, oldest first. Parameters: $1 tenant, $2 limit."""
    return f"""
    SELECT {SIGNAL_COLUMNS}
    FROM signals
    WHERE tenant_id = $1 AND status = 'pending'
    ORDER BY created_at ASC
    LIMIT $2
    """


# =============================================================================
# Routes
# =============================================================================


ROUTE_COLUMNS = """
    id, tenant_id, workflow_id, name, source, signal_type, urgency_filter,
    payload_filter, enabled, priority, created_at
"""


def get_insert_route_query() -> str:
    return f"""
    INSERT INTO signal_routes (
        id, tenant_id, workflow_id, name, source, signal_type,
        urgency_filter, payload_filter, enabled, priority, created_at
    ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8::jsonb, $9, $10, $11)
    RETURNING {ROUTE_COLUMNS}
    """


def get_routes_for_tenant_query() -> str:
    return f"""
    SELECT {ROUTE_COLUMNS}
    FROM signal_routes
    WHERE tenant_id = $1
    ORDER BY priority DESC, created_at ASC
    """


def get_delete_route_query() -> str:
    return "DELETE FROM signal_routes WHERE tenant_id = $1 AND id = $2"


def get_matching_routes_query() -> str:
    """
    Enabled routes for (tenant, source, type); NULL source/type match anything.

    Parameters: $1 tenant_id, $2 source, $3 signal_type
    """
    return f"""
    SELECT {ROUTE_COLUMNS}
    FROM signal_routes
    WHERE tenant_id = $1
      AND enabled = TRUE
      AND (source IS NULL OR source = $2)
      AND (signal_type IS NULL OR signal_type = $3)
    ORDER BY priority DESC, created_at ASC
    """
