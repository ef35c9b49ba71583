"""
Billing error taxonomy.

Every error is raised before any write happens, so callers can rely on
"failed means nothing changed". Each class carries the HTTP status the
routers translate it to.
"""


class BillingError(Exception):
    status_code = 400


class ValidationError(BillingError):
    """Malformed or out-of-range input (negative amounts, discount > 100%, ...)."""
    status_code = 400


class InvalidDiscount(ValidationError):
    pass


class NotFound(BillingError):
    status_code = 404


class InvalidTransition(BillingError):
    """Lifecycle action not allowed from the subscription's current status."""
    status_code = 409


class ExceedsBalance(BillingError):
    """Payment larger than the remaining balance. Never clamped."""
    status_code = 400


class ConcurrentModification(BillingError):
    status_code = 409
