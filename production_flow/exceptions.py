"""
Error taxonomy for the production flow engine.

Every engine operation either succeeds or raises one of these; none leave
partial state behind. The API layer turns them into HTTP responses through
a single exception handler.
"""
from typing import Any, Dict, Optional


class FlowEngineError(Exception):
    """
    Base exception for engine errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional error details (dict)
    """

    status_code = 400
    code = "FLOW_ENGINE_ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "detail": self.message,
            "error_code": self.code,
            "details": self.details,
            "retryable": self.retryable,
        }


class InvalidTransition(FlowEngineError):
    """Requested status is not reachable from the current status."""
    status_code = 409
    code = "INVALID_TRANSITION"


class MissingJustification(FlowEngineError):
    status_code = 422
    code = "MISSING_JUSTIFICATION"


class MissingQuantities(FlowEngineError):
    """Completion requested without produced/defect quantities."""
    status_code = 422
    code = "MISSING_QUANTITIES"


class ConservationViolation(FlowEngineError):
    """produced + defect + loss exceeds the stage input."""
    status_code = 422
    code = "CONSERVATION_VIOLATION"


class InsufficientBalance(FlowEngineError):
    status_code = 409
    code = "INSUFFICIENT_BALANCE"


class InvalidAllocation(FlowEngineError):
    """Allocation or release request that can never succeed as posed."""
    status_code = 409
    code = "INVALID_ALLOCATION"


class UnitMismatch(FlowEngineError):
    status_code = 422
    code = "UNIT_MISMATCH"


class InvalidFlow(FlowEngineError):
    status_code = 409
    code = "INVALID_FLOW"


class NotFound(FlowEngineError):
    status_code = 404
    code = "NOT_FOUND"


class ConcurrencyConflict(FlowEngineError):
    """Lost an optimistic-lock race; safe to re-read and retry."""
    status_code = 409
    code = "CONCURRENCY_CONFLICT"
    retryable = True


class CatalogIntegrityError(Exception):
    """The static transition table is malformed. Raised at startup only."""
