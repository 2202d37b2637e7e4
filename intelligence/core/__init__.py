"""
Core infrastructure for the intelligence pipeline.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL connectivity via asyncpg
- Immutable default tables passed into each pipeline component
- The exception hierarchy and the non-blocking side-effect helper

FastAPI dependencies live in intelligence.core.dependencies and are not
re-exported here, so library callers can import the core without pulling in
the service layer.

Usage:
    from intelligence.core import get_settings, init_db, close_db
"""

# =============================================================================
# Re-exports from intelligence.core.config
# =============================================================================
from intelligence.core.config import Settings, get_settings

# =============================================================================
# Re-exports from intelligence.core.database
# =============================================================================
from intelligence.core.database import close_db, get_db_pool, init_db, init_schema

# =============================================================================
# Re-exports from intelligence.core.defaults
# =============================================================================
from intelligence.core.defaults import PipelineDefaults, get_pipeline_defaults

# =============================================================================
# Re-exports from intelligence.core.exceptions
# =============================================================================
from intelligence.core.exceptions import (
    NotFoundError,
    PipelineError,
    PipelineValidationError,
)

from intelligence.core.side_effects import run_non_blocking


__all__ = [
    # Configuration
    'Settings',
    'get_settings',
    # Database pool lifecycle
    'init_db',
    'init_schema',
    'close_db',
    'get_db_pool',
    # Default tables
    'PipelineDefaults',
    'get_pipeline_defaults',
    # Errors
    'PipelineError',
    'PipelineValidationError',
    'NotFoundError',
    # Side effects
    'run_non_blocking',
]
