"""
Outcome and quality metric queries for the feedback loop.
"""


OUTCOME_COLUMNS = """
    id, initiative_id, tenant_id, client_id, recommendation_type,
    recommendation_source_id, accepted, outcome_status, predicted_impact,
    actual_impact, variance_score, variance_direction, accepted_at,
    rejected_at, completed_at, measured_at, notes, lessons_learned,
    created_at, updated_at
"""


def get_insert_outcome_query() -> str:
    """Parameters follow OUTCOME_COLUMNS order ($1..$20)."""
    return f"""
    INSERT INTO outcomes ({OUTCOME_COLUMNS})
    VALUES (
        $1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10::jsonb, $11, $12,
        $13, $14, $15, $16, $17, $18, $19, $20
    )
    RETURNING {OUTCOME_COLUMNS}
    """


def get_update_outcome_query() -> str:
    """
    Persist the mutable fields of an outcome.

    Parameters: $1 tenant_id, $2 id, $3 outcome_status, $4 actual_impact,
    $5 variance_score, $6 variance_direction, $7 completed_at,
    $8 measured_at, $9 notes, $10 lessons_learned, $11 updated_at
    """
    return f"""
    UPDATE outcomes
    SET outcome_status = $3,
        actual_impact = $4::jsonb,
        variance_score = $5,
        variance_direction = $6,
        completed_at = $7,
        measured_at = $8,
        notes = $9,
        lessons_learned = $10,
        updated_at = $11
    WHERE tenant_id = $1 AND id = $2
    RETURNING {OUTCOME_COLUMNS}
    """


def get_outcome_by_id_query() -> str:
    return f"""
    SELECT {OUTCOME_COLUMNS}
    FROM outcomes
    WHERE tenant_id = $1 AND id = $2
    """


def get_outcomes_for_period_query() -> str:
    """
    Outcomes of one recommendation type created in [from, to).

    A NULL client selects every client of the tenant.

    Parameters: $1 tenant_id, $2 recommendation_type, $3 client_id,
    $4 created_from, $5 created_to
    """
    return f"""
    SELECT {OUTCOME_COLUMNS}
    FROM outcomes
    WHERE tenant_id = $1
      AND recommendation_type = $2
      AND ($3::text IS NULL OR client_id = $3)
      AND created_at >= $4
      AND created_at < $5
    """


QUALITY_METRIC_COLUMNS = """
    id, tenant_id, client_id, recommendation_type, period_start, period_end,
    total_recommendations, accepted_count, rejected_count, completed_count,
    success_count, failure_count, overperform_count, underperform_count,
    acceptance_rate, success_rate, completion_rate, avg_variance,
    quality_score, confidence_level, updated_at
"""


def get_upsert_quality_metric_query() -> str:
    """
    Upsert one period's quality metric.

    client_key ($22) is the client id or '' so the unique key is NULL-free.
    Other parameters follow QUALITY_METRIC_COLUMNS order ($1..$21).
    """
    return f"""
    INSERT INTO quality_metrics ({QUALITY_METRIC_COLUMNS}, client_key)
    VALUES (
        $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15,
        $16, $17, $18, $19, $20, $21, $22
    )
    ON CONFLICT (tenant_id, recommendation_type, client_key, period_start)
    DO UPDATE SET
        period_end = EXCLUDED.period_end,
        total_recommendations = EXCLUDED.total_recommendations,
        accepted_count = EXCLUDED.accepted_count,
        rejected_count = EXCLUDED.rejected_count,
        completed_count = EXCLUDED.completed_count,
        success_count = EXCLUDED.success_count,
        failure_count = EXCLUDED.failure_count,
        overperform_count = EXCLUDED.overperform_count,
        underperform_count = EXCLUDED.underperform_count,
        acceptance_rate = EXCLUDED.acceptance_rate,
        success_rate = EXCLUDED.success_rate,
        completion_rate = EXCLUDED.completion_rate,
        avg_variance = EXCLUDED.avg_variance,
        quality_score = EXCLUDED.quality_score,
        confidence_level = EXCLUDED.confidence_level,
        updated_at = EXCLUDED.updated_at
    RETURNING {QUALITY_METRIC_COLUMNS}
    """


def get_quality_metrics_since_query() -> str:
    """Parameters: $1 tenant_id, $2 since (date), $3 client_id or NULL."""
    return f"""
    SELECT {QUALITY_METRIC_COLUMNS}
    FROM quality_metrics
    WHERE tenant_id = $1
      AND period_start >= $2
      AND ($3::text IS NULL OR client_id = $3)
    ORDER BY period_start DESC
    """
