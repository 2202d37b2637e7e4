"""
Daily metric history and anomaly threshold queries.
"""


def get_historical_metrics_query() -> str:
    """
    Most recent daily metric rows for one client, newest first.

    Parameters: $1 tenant_id, $2 client_id, $3 number of days (row limit)
    """
    return """
    SELECT
        metric_date,
        client_id,
        sessions,
        conversions,
        clicks,
        impressions,
        organic_clicks,
        organic_impressions,
        avg_position,
        spend
    FROM daily_metrics
    WHERE tenant_id = $1 AND client_id = $2
    ORDER BY metric_date DESC
    LIMIT $3
    """


def get_anomaly_thresholds_query() -> str:
    return """
    SELECT
        metric_type,
        z_score_threshold,
        percent_change_threshold,
        min_data_points,
        enabled
    FROM anomaly_thresholds
    WHERE tenant_id = $1 AND client_id = $2
    """


def get_clients_for_tenant_query() -> str:
    return """
    SELECT DISTINCT client_id
    FROM daily_metrics
    WHERE tenant_id = $1
    ORDER BY client_id
    """


def get_tenants_query() -> str:
    return """
    SELECT tenant_id FROM daily_metrics
    UNION
    SELECT tenant_id FROM signals
    ORDER BY tenant_id
    """
