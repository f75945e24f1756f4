"""Errors raised by the payout engine services.

Routes translate these into HTTP responses using `status_code`; the worker
logs them.
"""


class PayoutEngineError(Exception):
    """Base class for payout engine errors."""
    status_code = 400


class ValidationError(PayoutEngineError):
    """Malformed engagement, transaction, or commission input."""
    status_code = 422


class NotFoundError(PayoutEngineError):
    """Referenced creator, payout, or order does not exist."""
    status_code = 404


class InconsistentStateError(PayoutEngineError):
    """Operation conflicts with the current state (paid payout, open period, bad transition)."""
    status_code = 409


class AllocationInProgressError(InconsistentStateError):
    """Another allocation run holds the period."""
    pass


class ProviderUnavailableError(PayoutEngineError):
    """Transient payment provider failure; safe to retry with the same idempotency key."""
    status_code = 503
