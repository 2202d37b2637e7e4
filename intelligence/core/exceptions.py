"""
Exception hierarchy for the intelligence pipeline.

Validation errors are raised before anything is written, so a rejected input
is never partially applied. Not-found errors carry the identifier that was
looked up. Transient storage errors are not wrapped: asyncpg exceptions
propagate unchanged to the caller, which owns any retry policy.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


# =============================================================================
# Validation errors
# =============================================================================


class PipelineValidationError(PipelineError):
    """Malformed input to an adapter, route rule or service call."""


class UnsupportedSourceError(PipelineValidationError):
    """Raised when no adapter is registered for a source name."""

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Unsupported signal source: {source}")


class InvalidUrgencyError(PipelineValidationError):
    def __init__(self, urgency: object):
        self.urgency = urgency
        super().__init__(f"Invalid urgency: {urgency!r}")


class InvalidPayloadError(PipelineValidationError):
    """Raised when a raw payload is not a string-keyed mapping."""


class PayloadFilterError(PipelineValidationError):
    """Raised for a malformed payload-filter path or an unknown operator."""


class InvalidSignalStateError(PipelineValidationError):
    """Raised when an operation is not allowed for the signal's current status."""


# =============================================================================
# Not-found errors
# =============================================================================


class NotFoundError(PipelineError):
    """An entity referenced by id does not exist for the tenant."""

    entity = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found: {entity_id}")


class SignalNotFoundError(NotFoundError):
    entity = "Signal"


class OutcomeNotFoundError(NotFoundError):
    entity = "Outcome"


class InsightNotFoundError(NotFoundError):
    entity = "Insight"
