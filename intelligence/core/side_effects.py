"""
Non-blocking side effects.

Activity logging and similar best-effort writes must never fail the unit of
work that triggered them. They run through `run_non_blocking`, which turns
any exception into a SideEffectResult carrying the error text. The error is
logged at warning level here and intentionally discarded by callers.
"""

import logging
from typing import Awaitable

from intelligence.models.schemas import SideEffectResult


logger = logging.getLogger(__name__)


async def run_non_blocking(effect: Awaitable[object], description: str) -> SideEffectResult:
    """
    Await a best-effort side effect and report, rather than raise, its failure.

    Args:
        effect: The awaitable to run (e.g. store.record_pipeline_event(...)).
        description: Short label used in the warning log line.

    Returns:
        SideEffectResult: ok=True on success, otherwise ok=False with the error.
    """
    try:
        await effect
    except Exception as e:
        logger.warning(f"Non-blocking side effect failed ({description}): {e}")
        return SideEffectResult(ok=False, error=str(e))
    return SideEffectResult(ok=True)
