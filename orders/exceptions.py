"""Errors raised while reconciling gateway notifications.

Each error is scoped to a single notification. `status_code` is the HTTP
status the notification endpoint answers with, and `retryable` tells whether
the gateway should deliver the notification again.
"""


class ReconciliationError(Exception):
    status_code = 500
    retryable = False
    default_detail = "Notification could not be processed"

    def __init__(self, detail=None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidPayload(ReconciliationError):
    status_code = 400
    default_detail = "Invalid notification payload"


class AuthenticationFailed(ReconciliationError):
    status_code = 401
    default_detail = "Notification signature could not be verified"


class OrderNotFound(ReconciliationError):
    status_code = 404
    default_detail = "Order not found"

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class DuplicateEvent(ReconciliationError):
    """The event was already applied. Callers treat this as success."""
    status_code = 200
    default_detail = "Notification already processed"

    def __init__(self, event_id):
        self.event_id = event_id
        super().__init__(f"Event {event_id} already processed")


class InvalidTransition(ReconciliationError):
    # Acknowledged: stale or replayed events are expected, redelivery would
    # not change the outcome.
    status_code = 200

    def __init__(self, order_id, current, target):
        self.order_id = order_id
        self.current = current
        self.target = target
        super().__init__(
            f"Order {order_id} cannot move from {current} to {target or 'unknown status'}"
        )


class AmountMismatch(ReconciliationError):
    status_code = 422

    def __init__(self, order_id, expected, actual):
        self.order_id = order_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Order {order_id} amount {expected} does not match gateway amount {actual}"
        )


class UpstreamUnavailable(ReconciliationError):
    status_code = 503
    retryable = True
    default_detail = "Payment gateway unavailable"


class OrderNotFoundUpstream(ReconciliationError):
    status_code = 502
    retryable = True

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Payment gateway has no transaction for order {order_id}")


class ConcurrentUpdateConflict(ReconciliationError):
    status_code = 409
    retryable = True

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} was updated concurrently")
