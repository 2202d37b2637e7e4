"""
Agency Intelligence pipeline package.

Turns heterogeneous business events (analytics metric syncs, CRM webhooks,
internal domain events) into canonical signals, deduplicates and routes them,
derives statistical anomalies and aggregated insights, ranks insights by a
weighted priority score, and closes the loop by measuring recommendation
outcomes to emit calibration signals.

Sub-packages:
- core: settings, database pool, dependencies, exceptions, default tables
- models: enumerations and pydantic schemas
- sql: parameterized SQL text for the PostgreSQL store
- storage: storage boundary with PostgreSQL and in-memory implementations
- services: pipeline components
- jobs: scheduled scans invoked by a host scheduler
- api: thin FastAPI surface over the pipeline
"""

__version__ = "1.0.0"
