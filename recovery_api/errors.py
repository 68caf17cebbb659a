"""Error taxonomy shared by every handler.

Handlers raise these; the exception handlers installed in ``main`` turn them
into ``{"error": ..., **extra}`` bodies with the matching status code.
"""


class ApiError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str | None = None, **extra):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {"error": self.message, **self.extra}


class Unauthorized(ApiError):
    status_code = 403
    message = "Unauthorized"


class NotFound(ApiError):
    status_code = 404
    message = "Not found"


class PolicyRejected(ApiError):
    status_code = 400
    message = "Request rejected"


class InvalidRequest(PolicyRejected):
    message = "Invalid request"


class Exhausted(PolicyRejected):
    message = "No passes remaining"


class AlreadyUsed(PolicyRejected):
    message = "Ticket already used"


class NoTicketAvailable(PolicyRejected):
    message = "No unused tickets available"


class AlreadyCancelled(PolicyRejected):
    message = "Booking is already cancelled"


class WindowClosed(PolicyRejected):
    message = "Cannot change a booking within 24 hours of the appointment"


class NoPaymentReference(PolicyRejected):
    message = "No payment intent found"


class Conflict(ApiError):
    status_code = 409
    message = "Record was modified concurrently, please retry"


class RateLimited(ApiError):
    status_code = 429
    message = "Too many requests"


class UpstreamFailure(ApiError):
    status_code = 500
    message = "Payment provider request failed"


class StatusSyncPending(UpstreamFailure):
    """The refund went through but the entity status could not be written."""

    message = "Refund issued; status update pending reconciliation"

    def __init__(self, payment_reference: str, message: str | None = None):
        self.payment_reference = payment_reference
        super().__init__(message)
