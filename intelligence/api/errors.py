"""
Mapping of pipeline errors onto HTTP responses.

- PipelineValidationError -> 400
- NotFoundError           -> 404
- anything else           -> 500, logged with the traceback
"""

import logging

from fastapi import HTTPException

from intelligence.core.exceptions import NotFoundError, PipelineValidationError


logger = logging.getLogger(__name__)


def http_error(error: Exception, action: str) -> HTTPException:
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, PipelineValidationError):
        logger.warning(f"{action} rejected: {error}")
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))

    logger.error(f"Error during {action}: {str(error)}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Failed to {action}")
